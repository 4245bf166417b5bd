"""Configuration validation utilities."""

import re
from typing import List, Dict, Any


class ValidationError(Exception):
    """Configuration validation error."""
    pass


class ConfigValidator:
    """Validator for PubSub Feed configuration."""

    # Numeric platform identifiers (channel ids, user ids)
    IDENTIFIER_PATTERN = re.compile(r'^[0-9]+$')

    # Topic spec, e.g. "bits", "bits:123", "moderator:111.222"
    TOPIC_SPEC_PATTERN = re.compile(r'^[a-z][a-z0-9-]*(:[^:\s]+)?$')

    WEBSOCKET_URL_PATTERN = re.compile(r'^wss?://[^\s]+$')

    @classmethod
    def validate_identifier(cls, value: str) -> bool:
        """Validate a numeric-string identifier."""
        if not isinstance(value, str):
            return False
        return bool(cls.IDENTIFIER_PATTERN.match(value))

    @classmethod
    def validate_topic_spec(cls, spec: str) -> bool:
        """Validate the shape of a topic spec string."""
        if not isinstance(spec, str):
            return False
        return bool(cls.TOPIC_SPEC_PATTERN.match(spec))

    @classmethod
    def validate_url(cls, url: str) -> bool:
        """Validate websocket URL."""
        if not isinstance(url, str):
            return False
        return bool(cls.WEBSOCKET_URL_PATTERN.match(url))

    @classmethod
    def validate_log_level(cls, log_level: str) -> bool:
        """Validate log level."""
        if not isinstance(log_level, str):
            return False

        valid_levels = ['TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        return log_level.upper() in valid_levels

    @classmethod
    def validate_positive_number(cls, value: Any) -> bool:
        """Validate a strictly positive int or float (bools excluded)."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return value > 0

    @classmethod
    def _validate_section(cls, name: str, section: Any, positive_fields: List[str]) -> List[str]:
        if not isinstance(section, dict):
            return [f"{name} must be an object"]

        errors = []
        for key in positive_fields:
            if key in section and section[key] is not None:
                if not cls.validate_positive_number(section[key]):
                    errors.append(f"{name}.{key} must be a positive number")
        return errors

    @classmethod
    def validate_session_config(cls, config: Dict[str, Any]) -> List[str]:
        """Validate transport session section."""
        errors = cls._validate_section(
            "session",
            config,
            ['connection_timeout', 'ping_interval', 'pong_timeout', 'close_timeout',
             'reconnect_delay_base', 'reconnect_delay_max', 'max_reconnect_attempts'],
        )
        if errors or not isinstance(config, dict):
            return errors

        if 'url' in config and not cls.validate_url(config['url']):
            errors.append(f"session.url is not a websocket URL: {config['url']}")

        jitter = config.get('reconnect_jitter')
        if jitter is not None:
            if isinstance(jitter, bool) or not isinstance(jitter, (int, float)) or not 0 <= jitter < 1:
                errors.append("session.reconnect_jitter must be in [0, 1)")

        base = config.get('reconnect_delay_base')
        cap = config.get('reconnect_delay_max')
        if cls.validate_positive_number(base) and cls.validate_positive_number(cap) and base > cap:
            errors.append("session.reconnect_delay_base must not exceed reconnect_delay_max")

        return errors

    @classmethod
    def validate_subscription_config(cls, config: Dict[str, Any]) -> List[str]:
        """Validate subscription manager section."""
        errors = cls._validate_section(
            "subscriptions", config, ['ack_timeout', 'max_topics_per_request']
        )
        if errors or not isinstance(config, dict):
            return errors

        retries = config.get('ack_retries')
        if retries is not None and (isinstance(retries, bool) or not isinstance(retries, int) or retries < 0):
            errors.append("subscriptions.ack_retries must be a non-negative integer")
        return errors

    @classmethod
    def validate_dispatcher_config(cls, config: Dict[str, Any]) -> List[str]:
        """Validate dispatcher section."""
        return cls._validate_section(
            "dispatcher",
            config,
            ['max_queue_size', 'lane_idle_timeout', 'max_concurrency', 'handler_timeout', 'shutdown_grace', 'max_workers'],
        )

    @classmethod
    def validate_pubsub_config(cls, config: Dict[str, Any]) -> List[str]:
        """Validate main configuration dictionary."""
        errors = []

        if 'log_level' in config:
            if not cls.validate_log_level(config['log_level']):
                errors.append("invalid log_level (must be one of: TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL)")

        channel_id = config.get('channel_id')
        if channel_id is not None and not cls.validate_identifier(channel_id):
            errors.append(f"channel_id must be a non-empty numeric string: {channel_id!r}")

        token = config.get('auth_token')
        if token is not None and (not isinstance(token, str) or not token.strip()):
            errors.append("auth_token must be a non-empty string")

        if 'topics' in config:
            if not isinstance(config['topics'], list):
                errors.append("topics must be a list")
            else:
                for i, spec in enumerate(config['topics']):
                    if not cls.validate_topic_spec(spec):
                        errors.append(f"topics[{i}]: invalid topic spec {spec!r}")

        if 'session' in config:
            errors.extend(cls.validate_session_config(config['session']))
        if 'subscriptions' in config:
            errors.extend(cls.validate_subscription_config(config['subscriptions']))
        if 'dispatcher' in config:
            errors.extend(cls.validate_dispatcher_config(config['dispatcher']))

        return errors

    @classmethod
    def validate_and_raise(cls, config: Dict[str, Any]) -> None:
        """Validate configuration and raise ValidationError if invalid."""
        errors = cls.validate_pubsub_config(config)
        if errors:
            raise ValidationError(f"Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))
