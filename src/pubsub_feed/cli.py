#!/usr/bin/env python3
"""
Command-line interface for PubSub Feed.

Connects to the real-time event feed for a channel and logs every event,
or inspects the topic catalogue and configuration.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import List, Optional
from loguru import logger

from .client import PubSubClient
from .config import PubSubConfig, create_default_config
from .consumers import LoggingConsumer
from .events.catalog import default_registry
from .exceptions import ConfigurationError, PubSubError


DEFAULT_CONFIG_PATH = Path("pubsub.json")


def create_parser():
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pubsub-feed",
        description="PubSub Feed - Command Line Interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run                              # Log all events for the configured channel
  %(prog)s run --topic bits --topic raid    # Only bits and raid events
  %(prog)s topics                           # List the topic catalogue
  %(prog)s config init --channel-id 123     # Write a configuration file
  %(prog)s config show                      # Print the configuration (token redacted)
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help='Configuration file path (default: pubsub.json)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Run command
    run_parser = subparsers.add_parser('run', help='Connect and log events until interrupted')
    run_parser.add_argument('--topic', '-t', action='append', dest='topics', help='Topic spec to listen to (repeatable)')
    run_parser.add_argument('--channel-id', help='Override the configured channel id')

    # Topics command
    topics_parser = subparsers.add_parser('topics', help='List the topic catalogue')
    topics_parser.add_argument('--json', action='store_true', help='Output as JSON')

    # Config command
    config_parser = subparsers.add_parser('config', help='Manage the configuration file')
    config_sub = config_parser.add_subparsers(dest='config_command')
    init_parser = config_sub.add_parser('init', help='Write a default configuration file')
    init_parser.add_argument('--channel-id', help='Channel id to listen to')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')
    config_sub.add_parser('show', help='Print the configuration')

    return parser


def setup_logging(config: PubSubConfig, verbose: bool = False) -> None:
    """Console sink plus optional daily-rotated file sink."""
    level = "DEBUG" if verbose else config.log_level

    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
    )

    if config.log_file:
        logger.add(
            config.log_file,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="00:00",
            retention="14 days"
        )


def load_config(path: Path) -> PubSubConfig:
    """Load configuration file, or fall back to defaults plus environment."""
    if path.exists():
        return PubSubConfig.load_from_file(path)
    return create_default_config()


async def run_client(config: PubSubConfig, topics: List[str], stop_event: Optional[asyncio.Event] = None) -> None:
    """Listen to ``topics`` and log events until ``stop_event`` is set."""
    config.require_auth_token()
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass

    client = PubSubClient(config)
    LoggingConsumer().attach(client)

    if topics:
        for spec in topics:
            client.listen(spec)
    else:
        client.listen_all()

    await client.connect()
    try:
        await stop_event.wait()
    finally:
        await client.disconnect()


def cmd_run(args, config: PubSubConfig):
    """Handle run command."""
    if args.channel_id:
        config.channel_id = args.channel_id
    topics = args.topics or config.topics

    print("Starting PubSub Feed...")
    print("Press Ctrl+C to stop")
    try:
        asyncio.run(run_client(config, topics))
    except KeyboardInterrupt:
        pass
    print("Stopped")


def cmd_topics(args):
    """Handle topics command."""
    registry = default_registry()
    rows = [
        {
            "capability": d.capability,
            "topic": f"{d.name}.{d.scope_template}",
            "params": list(d.params),
            "description": d.description,
        }
        for d in registry
    ]

    if args.json:
        print(json.dumps(rows, indent=2))
        return

    print("Topic catalogue")
    print("=" * 15)
    for row in rows:
        print(f"{row['capability']:<16} {row['topic']}")
        print(f"{'':<16} {row['description']}")


def cmd_config(args, config_path: Path):
    """Handle config command."""
    if args.config_command == 'init':
        if config_path.exists() and not args.force:
            print(f"Error: {config_path} already exists (use --force to overwrite)")
            return 1
        config = PubSubConfig(channel_id=args.channel_id)
        config.save_to_file(config_path)
        print(f"Configuration written to {config_path}")
        print("Set PUBSUB_AUTH_TOKEN in the environment or auth_token in the file")
    elif args.config_command == 'show':
        config = load_config(config_path)
        print(json.dumps(config.to_dict(redact=True), indent=2))
    else:
        print("Error: Must specify 'init' or 'show'")
        return 1


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'topics':
            return cmd_topics(args) or 0
        if args.command == 'config':
            return cmd_config(args, args.config) or 0

        config = load_config(args.config)
        setup_logging(config, verbose=args.verbose)

        if args.command == 'run':
            return cmd_run(args, config) or 0

        print(f"Unknown command: {args.command}")
        return 1

    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2
    except PubSubError as e:
        print(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
