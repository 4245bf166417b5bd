"""Main PubSub client that coordinates all components."""

from typing import Any, Dict, Optional, Union
from loguru import logger

from .config import PubSubConfig
from .dispatcher import Dispatcher, EventCallback, HandlerRegistration
from .events.catalog import default_registry
from .exceptions import PubSubError
from .protocol import FrameType, InboundFrame
from .session import Authenticator, Connector, StateListener, TransportSession
from .subscriptions import FailureListener, SubscriptionHandle, SubscriptionManager
from .topics import Topic, TopicRegistry


class PubSubClient:
    """
    Resilient client for the real-time event feed.

    Wires the transport session, subscription manager and dispatcher
    together. Topics can be requested before connecting; they are sent as
    soon as a connection exists and again after every reconnect.

    Example:
        >>> client = PubSubClient(PubSubConfig(auth_token="...", channel_id="123"))
        >>> client.on_event("bits:*", lambda event: print(event.username, event.total_bits_used))
        >>> client.listen("bits")
        >>> await client.connect()
    """

    def __init__(
        self,
        config: Optional[PubSubConfig] = None,
        registry: Optional[TopicRegistry] = None,
        connector: Optional[Connector] = None,
        authenticator: Optional[Authenticator] = None
    ):
        """
        Initialize the client.

        Args:
            config: Client configuration (defaults to an empty PubSubConfig)
            registry: Topic registry (defaults to the full catalogue)
            connector: Custom websocket connector (for dependency injection)
            authenticator: Optional per-connection handshake
        """
        self.config = config or PubSubConfig()
        self.registry = registry or default_registry()

        self.transport = TransportSession(self.config.session, connector=connector, authenticator=authenticator)
        self.dispatcher = Dispatcher(self.registry, self.config.dispatcher)
        self.subscriptions = SubscriptionManager(
            self.transport, auth_token=self.config.auth_token, config=self.config.subscriptions
        )

        self.transport.add_state_listener(self.subscriptions.on_state_change)
        self.transport.add_frame_listener(self._route_frame)

    def _route_frame(self, frame: InboundFrame) -> None:
        if frame.frame_type == FrameType.RESPONSE:
            self.subscriptions.on_frame(frame)
        elif frame.frame_type == FrameType.MESSAGE:
            self.dispatcher.submit(frame)

    def _default_params(self) -> Dict[str, str]:
        channel_id = self.config.channel_id
        if not channel_id:
            return {}
        return {"channel_id": channel_id, "user_id": channel_id}

    def resolve(self, topic_spec: Union[str, Topic]) -> Topic:
        """Turn a spec string (``"bits"``, ``"bits:123"``) into a Topic."""
        if isinstance(topic_spec, Topic):
            return topic_spec
        return self.registry.parse(topic_spec, defaults=self._default_params())

    async def connect(self, retry: bool = True) -> bool:
        """
        Start dispatching and connect.

        With ``retry`` a failed first attempt hands over to background
        reconnection and returns False; without it ConnectError propagates.

        Raises:
            ConfigurationError: if no auth token is configured
        """
        token = self.config.require_auth_token()
        self.subscriptions.auth_token = token

        await self.dispatcher.start()
        if retry:
            return await self.transport.start()
        await self.transport.connect()
        return True

    async def disconnect(self) -> None:
        """Shut down: stop reconnecting, close the connection, drain handlers."""
        logger.info("Disconnecting pubsub client...")
        try:
            await self.transport.disconnect()
        finally:
            await self.dispatcher.stop()

    def listen(self, topic_spec: Union[str, Topic]) -> SubscriptionHandle:
        """Request a topic; idempotent for topics already pending or acknowledged."""
        return self.subscriptions.listen(self.resolve(topic_spec))

    def unlisten(self, topic_spec: Union[str, Topic]) -> bool:
        return self.subscriptions.unlisten(self.resolve(topic_spec))

    def listen_all(self) -> Dict[str, SubscriptionHandle]:
        """Listen to every catalogue capability for the configured channel."""
        if not self.config.channel_id:
            raise PubSubError("listen_all requires a configured channel_id")
        return {capability: self.listen(capability) for capability in self.registry.capabilities()}

    def on_event(self, topic_pattern: str, callback: EventCallback, name: Optional[str] = None) -> HandlerRegistration:
        """Register an event handler, e.g. ``on_event("bits:*", handler)``."""
        return self.dispatcher.register_handler(topic_pattern, callback, name=name)

    def remove_handler(self, registration: HandlerRegistration) -> bool:
        return self.dispatcher.unregister_handler(registration)

    def on_state_change(self, listener: StateListener) -> None:
        self.transport.add_state_listener(listener)

    def on_subscription_failure(self, listener: FailureListener) -> None:
        self.subscriptions.add_failure_listener(listener)

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    def get_status(self) -> Dict[str, Any]:
        """Get client status."""
        return {
            "transport": self.transport.get_stats(),
            "subscriptions": self.subscriptions.get_status(),
            "dispatcher": self.dispatcher.get_stats(),
        }

    async def __aenter__(self) -> 'PubSubClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
