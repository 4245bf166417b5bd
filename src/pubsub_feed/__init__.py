"""
PubSub Feed - A resilient client for a real-time event subscription feed.

This package keeps a websocket connection to the PubSub server alive,
re-subscribes to every requested topic after a reconnect and delivers
decoded events to handlers without letting one handler stall the others.

Main Components:
- PubSubClient: Main interface class
- PubSubConfig: Configuration management
- TopicRegistry: Capability to wire topic mapping
- TransportSession: Connection, heartbeat and reconnect
- SubscriptionManager: LISTEN requests and acknowledgements
- Dispatcher: Event decoding and handler routing

Example usage:
    >>> from pubsub_feed import PubSubClient, PubSubConfig
    >>>
    >>> client = PubSubClient(PubSubConfig(auth_token="...", channel_id="123456"))
    >>> client.on_event("bits:*", lambda e: print(e.username, e.total_bits_used))
    >>> client.listen("bits")
    >>>
    >>> async with client:
    >>>     await asyncio.sleep(60)
"""

__version__ = "0.1.0"
__author__ = "eugeny"
__email__ = "esshka@gmail.com"

# Main classes
from .client import PubSubClient
from .config import PubSubConfig, SessionConfig, SubscriptionConfig, DispatcherConfig, create_default_config
from .topics import Topic, TopicDefinition, TopicRegistry
from .session import ConnectionState, TransportSession
from .subscriptions import SubscriptionHandle, SubscriptionManager, SubscriptionState
from .dispatcher import Dispatcher, HandlerRegistration
from .consumers import LoggingConsumer
from .events import CATALOG, default_registry

# Convenience imports
__all__ = [
    # Main interface
    'PubSubClient',
    'LoggingConsumer',

    # Configuration
    'PubSubConfig',
    'SessionConfig',
    'SubscriptionConfig',
    'DispatcherConfig',
    'create_default_config',

    # Topics
    'Topic',
    'TopicDefinition',
    'TopicRegistry',
    'CATALOG',
    'default_registry',

    # Core components
    'ConnectionState',
    'TransportSession',
    'SubscriptionHandle',
    'SubscriptionManager',
    'SubscriptionState',
    'Dispatcher',
    'HandlerRegistration',

    # Package info
    '__version__',
    '__author__',
    '__email__',
]
