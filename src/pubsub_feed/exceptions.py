"""Custom exceptions for PubSub Feed."""


class PubSubError(Exception):
    """Base exception for PubSub Feed errors."""
    pass


class ConfigurationError(PubSubError):
    """Configuration related errors."""
    pass


class TopicValidationError(PubSubError, ValueError):
    """Topic name or parameter validation failed."""

    def __init__(self, message: str, capability: str = None):
        super().__init__(message)
        self.capability = capability


# Transport exceptions
class TransportError(PubSubError):
    """Base transport related errors."""
    pass


class ConnectError(TransportError):
    """Connection attempt failed."""

    def __init__(self, message: str, attempt: int = 0):
        super().__init__(message)
        self.attempt = attempt


class NotConnected(TransportError):
    """Operation requires a live connection."""
    pass


# Subscription exceptions
class SubscriptionRejected(PubSubError):
    """Server rejected a LISTEN request."""

    def __init__(self, message: str, topic: str = None, error: str = None, nonce: str = None):
        super().__init__(message)
        self.topic = topic
        self.error = error
        self.nonce = nonce


class SubscriptionTimeout(SubscriptionRejected):
    """No acknowledgement arrived for a LISTEN request."""
    pass


# Dispatch exceptions
class DecodeError(PubSubError):
    """Inbound frame or payload could not be decoded."""

    def __init__(self, message: str, topic: str = None, raw_data=None):
        super().__init__(message)
        self.topic = topic
        self.raw_data = raw_data


class HandlerFailure(PubSubError):
    """An event handler raised or timed out."""

    def __init__(self, message: str, handler: str = None, topic: str = None):
        super().__init__(message)
        self.handler = handler
        self.topic = topic
