"""Configuration management for PubSub Feed."""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any
from pathlib import Path
import json
import os

from .utils.validation import ConfigValidator
from .exceptions import ConfigurationError


DEFAULT_PUBSUB_URL = "wss://pubsub-edge.twitch.tv"


@dataclass
class SessionConfig:
    """Configuration for the transport session (connection, heartbeat, reconnect)."""
    url: str = DEFAULT_PUBSUB_URL
    connection_timeout: float = 10.0  # seconds
    close_timeout: float = 5.0  # seconds
    ping_interval: float = 240.0  # seconds - server expects a PING at least every 5 minutes
    pong_timeout: float = 15.0  # seconds
    reconnect_delay_base: float = 1.0  # base delay for exponential backoff
    reconnect_delay_max: float = 120.0  # max delay between reconnection attempts
    reconnect_jitter: float = 0.2  # +/- fraction applied to each delay
    max_reconnect_attempts: Optional[int] = None  # None retries forever


@dataclass
class SubscriptionConfig:
    """Configuration for LISTEN request handling."""
    ack_timeout: float = 10.0  # seconds to wait for a RESPONSE
    ack_retries: int = 1  # resends before a topic is marked failed
    max_topics_per_request: int = 10


@dataclass
class DispatcherConfig:
    """Configuration for inbound frame dispatch."""
    max_queue_size: int = 10000  # frames buffered inbound, and per topic lane
    lane_idle_timeout: float = 60.0  # seconds before an idle topic lane is retired
    max_concurrency: int = 8  # topic lanes running handlers at the same time
    max_workers: int = 4  # threads for synchronous handlers
    handler_timeout: float = 30.0  # seconds per frame before handlers are abandoned
    shutdown_grace: float = 5.0  # seconds in-flight handlers get on shutdown


@dataclass
class PubSubConfig:
    """Main configuration for PubSub Feed."""

    # Credentials and target channel
    auth_token: Optional[str] = None
    channel_id: Optional[str] = None

    # Topic specs to listen to, e.g. ["bits", "moderator:111.222"]; empty means the full catalogue
    topics: List[str] = field(default_factory=list)

    session: SessionConfig = field(default_factory=SessionConfig)
    subscriptions: SubscriptionConfig = field(default_factory=SubscriptionConfig)
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self):
        if self.log_file and isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)
        if isinstance(self.channel_id, int) and not isinstance(self.channel_id, bool):
            self.channel_id = str(self.channel_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PubSubConfig':
        """Build configuration from a plain dictionary, validating it first."""
        data = dict(data)
        channel_id = data.get('channel_id')
        if isinstance(channel_id, int) and not isinstance(channel_id, bool):
            data['channel_id'] = str(channel_id)
        try:
            ConfigValidator.validate_and_raise(data)
        except Exception as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")

        try:
            if isinstance(data.get('session'), dict):
                data['session'] = SessionConfig(**data['session'])
            if isinstance(data.get('subscriptions'), dict):
                data['subscriptions'] = SubscriptionConfig(**data['subscriptions'])
            if isinstance(data.get('dispatcher'), dict):
                data['dispatcher'] = DispatcherConfig(**data['dispatcher'])
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration field: {e}")

    @classmethod
    def load_from_file(cls, config_path: Path) -> 'PubSubConfig':
        """Load configuration from JSON file, then apply environment overrides."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigurationError(f"Failed to load configuration from {config_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be an object: {config_path}")

        config = cls.from_dict(data)
        config.apply_env_overrides()
        return config

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file."""
        try:
            config_path = Path(config_path)
            config_path.parent.mkdir(parents=True, exist_ok=True)

            data = self.to_dict()
            ConfigValidator.validate_and_raise(data)

            with open(config_path, 'w') as f:
                json.dump(data, f, indent=2)

        except Exception as e:
            raise ConfigurationError(f"Failed to save configuration to {config_path}: {e}")

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        """Serializable representation of the configuration."""
        data = asdict(self)
        if isinstance(self.log_file, Path):
            data['log_file'] = str(self.log_file)
        if redact and data.get('auth_token'):
            data['auth_token'] = '***'
        return data

    def apply_env_overrides(self) -> None:
        """Override credentials and channel from environment variables."""
        token = os.getenv('PUBSUB_AUTH_TOKEN')
        if token:
            self.auth_token = token

        channel_id = os.getenv('PUBSUB_CHANNEL_ID')
        if channel_id:
            if not ConfigValidator.validate_identifier(channel_id):
                raise ConfigurationError(f"PUBSUB_CHANNEL_ID must be numeric: {channel_id!r}")
            self.channel_id = channel_id

    def require_auth_token(self) -> str:
        """Return the auth token or fail; the feed cannot be used without one."""
        if not self.auth_token or not self.auth_token.strip():
            raise ConfigurationError(
                "No auth token configured (set auth_token or PUBSUB_AUTH_TOKEN)"
            )
        return self.auth_token


def create_default_config(channel_id: Optional[str] = None, auth_token: Optional[str] = None) -> PubSubConfig:
    """Create a default configuration listening to the whole catalogue."""
    config = PubSubConfig(auth_token=auth_token, channel_id=channel_id)
    config.apply_env_overrides()
    return config
