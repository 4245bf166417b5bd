#!/usr/bin/env python3
"""
Example usage of PubSub Feed.

This script demonstrates the basic functionality of PubSub Feed
including configuration, topic subscription, handlers and status.

Set PUBSUB_AUTH_TOKEN and PUBSUB_CHANNEL_ID before running.
"""

import asyncio

from pubsub_feed import LoggingConsumer, PubSubClient, create_default_config
from pubsub_feed.events import BitsEvent, RaidEvent
from pubsub_feed.exceptions import PubSubError


async def basic_example():
    """Listen to a couple of topics with custom handlers."""
    print("=== PubSub Feed - Basic Example ===\n")

    config = create_default_config()
    client = PubSubClient(config)

    def on_bits(event: BitsEvent):
        print(f"  - {event.username or 'anonymous'} cheered {event.bits_used} bits")

    async def on_raid(event: RaidEvent):
        print(f"  - Raiding {event.target_display_name} with {event.viewer_count} viewers")

    client.on_event("bits:*", on_bits)
    client.on_event("raid:*", on_raid)

    async with client:
        for capability in ("bits", "raid"):
            handle = client.listen(capability)
            try:
                await handle.wait(timeout=15)
                print(f"Listening to {handle.topic.wire}")
            except PubSubError as e:
                print(f"Could not listen to {capability}: {e}")

        print("\nWaiting for events for 60 seconds...")
        await asyncio.sleep(60)

        status = client.get_status()
        print("\nClient Status:")
        print(f"  - Connection: {status['transport']['state']}")
        print(f"  - Reconnect cycles: {status['transport']['reconnect_cycles']}")
        print(f"  - Frames dispatched: {status['dispatcher']['frames_dispatched']}")


async def logging_example():
    """Log every catalogue event for the configured channel."""
    print("=== PubSub Feed - Logging Consumer Example ===\n")

    client = PubSubClient(create_default_config())
    LoggingConsumer().attach(client)
    client.listen_all()

    async with client:
        await asyncio.sleep(300)


def main():
    """Run examples."""
    try:
        asyncio.run(basic_example())
        print()
        asyncio.run(logging_example())
    except KeyboardInterrupt:
        print("\nInterrupted")
    except PubSubError as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    main()
