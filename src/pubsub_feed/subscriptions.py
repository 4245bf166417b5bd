"""Subscription manager: LISTEN/UNLISTEN requests and acknowledgement tracking."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from loguru import logger

from .config import SubscriptionConfig
from .exceptions import NotConnected, SubscriptionRejected, SubscriptionTimeout
from .protocol import FrameType, InboundFrame, RequestType, build_request, generate_nonce
from .session import ConnectionState, Session, TransportSession, running_loop
from .topics import Topic


class SubscriptionState(Enum):
    """Subscription lifecycle."""
    PENDING = "pending"
    ACKED = "acked"
    FAILED = "failed"
    UNSUBSCRIBED = "unsubscribed"


_TRANSITIONS = {
    SubscriptionState.PENDING: {SubscriptionState.ACKED, SubscriptionState.FAILED, SubscriptionState.UNSUBSCRIBED},
    SubscriptionState.ACKED: {SubscriptionState.UNSUBSCRIBED},
    SubscriptionState.FAILED: {SubscriptionState.UNSUBSCRIBED},
    SubscriptionState.UNSUBSCRIBED: set(),
}


@dataclass
class Subscription:
    """A Topic bound to one session's LISTEN lifecycle."""
    topic: Topic
    session_id: Optional[int] = None
    state: SubscriptionState = SubscriptionState.PENDING
    nonce: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def advance(self, new_state: SubscriptionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal subscription transition {self.state.value} -> {new_state.value} for {self.topic}")
        self.state = new_state
        self.updated_at = time.time()


@dataclass
class PendingRequest:
    """An in-flight LISTEN awaiting its RESPONSE."""
    nonce: str
    topics: List[Topic]
    attempt: int
    timer: Optional[asyncio.TimerHandle] = None
    sent_at: float = field(default_factory=time.time)


class SubscriptionHandle:
    """Caller's view of one desired topic, stable across reconnects."""

    def __init__(self, manager: 'SubscriptionManager', topic: Topic):
        self.topic = topic
        self._manager = manager
        self._subscription: Optional[Subscription] = None
        self._settled = asyncio.Event()
        self.error: Optional[SubscriptionRejected] = None

    @property
    def state(self) -> SubscriptionState:
        if self._subscription is not None:
            return self._subscription.state
        if self._manager.is_desired(self.topic):
            return SubscriptionState.PENDING
        return SubscriptionState.UNSUBSCRIBED

    def _bind(self, subscription: Optional[Subscription]) -> None:
        self._subscription = subscription
        self.error = None
        self._settled.clear()

    def _settle(self, error: Optional[SubscriptionRejected] = None) -> None:
        self.error = error
        self._settled.set()

    async def wait(self, timeout: Optional[float] = None) -> SubscriptionState:
        """
        Wait until the current subscription is acknowledged or fails.

        Raises:
            SubscriptionRejected: if the server rejected (or never acknowledged) the topic
        """
        await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        if self.error is not None:
            raise self.error
        return self.state

    def unlisten(self) -> bool:
        return self._manager.unlisten(self.topic)

    def __repr__(self) -> str:
        return f"<SubscriptionHandle {self.topic.wire} {self.state.value}>"


FailureListener = Callable[[SubscriptionRejected], None]


class SubscriptionManager:
    """Keeps every desired topic acknowledged whenever a live session exists."""

    def __init__(
        self,
        transport: TransportSession,
        auth_token: Optional[str] = None,
        config: Optional[SubscriptionConfig] = None
    ):
        self._transport = transport
        self.auth_token = auth_token
        self.config = config or SubscriptionConfig()

        self._desired: Dict[Topic, SubscriptionHandle] = {}
        self._subscriptions: Dict[Topic, Subscription] = {}
        self._pending: Dict[str, PendingRequest] = {}
        self._unlisten_requests: Dict[str, List[Topic]] = {}
        self._failure_listeners: List[FailureListener] = []
        self._session_id: Optional[int] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Statistics
        self.requests_sent = 0
        self.topics_requested = 0

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def is_desired(self, topic: Topic) -> bool:
        return topic in self._desired

    def handle(self, topic: Topic) -> Optional[SubscriptionHandle]:
        return self._desired.get(topic)

    def state_of(self, topic: Topic) -> Optional[SubscriptionState]:
        handle = self._desired.get(topic)
        if handle is not None:
            return handle.state
        subscription = self._subscriptions.get(topic)
        return subscription.state if subscription else None

    def listen(self, topic: Topic) -> SubscriptionHandle:
        """Add a topic to the desired set; LISTEN now if connected, else on next connect."""
        return self._on_loop(self._listen, topic)

    def unlisten(self, topic: Topic) -> bool:
        """Drop a topic from the desired set and UNLISTEN it if it was live."""
        return self._on_loop(self._unlisten, topic)

    def _on_loop(self, func: Callable[[Topic], Any], topic: Topic) -> Any:
        """
        Run ``func`` on the event loop that owns the connection.

        Handlers running on worker threads may call listen/unlisten; their call
        is handed to the loop and the thread waits for the result.
        """
        loop = self._loop
        current = running_loop()
        if loop is None or current is loop or not loop.is_running():
            if current is not None:
                self._loop = current
            return func(topic)

        async def call():
            return func(topic)

        return asyncio.run_coroutine_threadsafe(call(), loop).result(timeout=self.config.ack_timeout)

    def _listen(self, topic: Topic) -> SubscriptionHandle:
        handle = self._desired.get(topic)
        if handle is None:
            handle = SubscriptionHandle(self, topic)
            self._desired[topic] = handle
        else:
            current = self._subscriptions.get(topic)
            if current is None or current.state in (SubscriptionState.PENDING, SubscriptionState.ACKED):
                # already requested, acknowledged or queued for the next connection
                return handle
            # explicit retry of a failed topic
            del self._subscriptions[topic]
            handle._bind(None)

        if self._transport.is_connected:
            self._subscribe([topic])
        else:
            logger.debug(f"Queued {topic.wire} until the next connection")
        return handle

    def _unlisten(self, topic: Topic) -> bool:
        handle = self._desired.pop(topic, None)
        if handle is None:
            return False

        subscription = self._subscriptions.pop(topic, None)
        was_live = subscription is not None and subscription.state in (
            SubscriptionState.PENDING, SubscriptionState.ACKED
        )
        if subscription is None:
            subscription = Subscription(topic=topic, session_id=self._session_id)
            handle._bind(subscription)
        subscription.advance(SubscriptionState.UNSUBSCRIBED)
        handle._settle(None)

        if was_live and self._transport.is_connected:
            nonce = generate_nonce()
            frame = build_request(RequestType.UNLISTEN, [topic.wire], self.auth_token, nonce)
            try:
                self._transport.send(frame)
                self._unlisten_requests[nonce] = [topic]
                self.requests_sent += 1
            except NotConnected:
                logger.debug(f"Connection gone before UNLISTEN {topic.wire}")

        logger.info(f"Stopped listening to {topic.wire}")
        return True

    # Transport callbacks

    def on_state_change(self, state: ConnectionState, session: Optional[Session]) -> None:
        """Re-subscribe on a new session; forget per-session state when it goes away."""
        self._loop = running_loop() or self._loop
        if state == ConnectionState.CONNECTED and session is not None:
            if self._session_id != session.session_id:
                self._reset_session()
                self._session_id = session.session_id
            self._resubscribe_all()
        elif state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
            if self._session_id is not None:
                self._reset_session()
                self._session_id = None

    def on_frame(self, frame: InboundFrame) -> None:
        """Match RESPONSE frames to their requests."""
        if frame.frame_type != FrameType.RESPONSE:
            return

        pending = self._pending.pop(frame.nonce, None)
        if pending is None:
            topics = self._unlisten_requests.pop(frame.nonce, None)
            if topics is not None:
                if not frame.is_success:
                    logger.warning(f"UNLISTEN {', '.join(t.wire for t in topics)} failed: {frame.failure_reason}")
                return
            logger.debug(f"Ignoring RESPONSE with unknown nonce {frame.nonce}")
            return

        if pending.timer is not None:
            pending.timer.cancel()

        for topic in pending.topics:
            subscription = self._current(topic, pending.nonce)
            if subscription is None:
                continue

            if frame.is_success:
                subscription.advance(SubscriptionState.ACKED)
                self._desired[topic]._settle(None)
                logger.info(f"Listening to {topic.wire}")
            else:
                self._fail(subscription, SubscriptionRejected(
                    f"Failed to listen to {topic.wire}: {frame.failure_reason}",
                    topic=topic.wire,
                    error=frame.failure_reason,
                    nonce=frame.nonce,
                ))

    # Internals

    def _current(self, topic: Topic, nonce: str) -> Optional[Subscription]:
        """The topic's live PENDING subscription, if it is still waiting on ``nonce``."""
        if topic not in self._desired:
            return None
        subscription = self._subscriptions.get(topic)
        if subscription is None or subscription.nonce != nonce:
            return None
        if subscription.state != SubscriptionState.PENDING:
            return None
        return subscription

    def _subscribe(self, topics: List[Topic]) -> None:
        """Create PENDING subscriptions and send LISTEN in bounded batches."""
        batch_size = max(1, self.config.max_topics_per_request)
        for start in range(0, len(topics), batch_size):
            batch = topics[start:start + batch_size]
            for topic in batch:
                subscription = Subscription(topic=topic, session_id=self._session_id)
                self._subscriptions[topic] = subscription
                self._desired[topic]._bind(subscription)
            self._send_listen(batch, attempt=1)

    def _send_listen(self, topics: List[Topic], attempt: int) -> None:
        nonce = generate_nonce()
        frame = build_request(RequestType.LISTEN, [t.wire for t in topics], self.auth_token, nonce)

        # the request must be known before its RESPONSE can arrive
        for topic in topics:
            subscription = self._subscriptions[topic]
            subscription.nonce = nonce
            subscription.attempts = attempt
        timer = asyncio.get_running_loop().call_later(
            self.config.ack_timeout, self._on_ack_timeout, nonce
        )
        self._pending[nonce] = PendingRequest(nonce=nonce, topics=list(topics), attempt=attempt, timer=timer)

        try:
            self._transport.send(frame)
        except NotConnected:
            # the next CONNECTED notification re-requests them
            logger.warning(f"Not connected, deferring LISTEN for {len(topics)} topic(s)")
            timer.cancel()
            del self._pending[nonce]
            for topic in topics:
                subscription = self._subscriptions.get(topic)
                if subscription is not None and subscription.state == SubscriptionState.PENDING:
                    del self._subscriptions[topic]
                    self._desired[topic]._bind(None)
            return

        self.requests_sent += 1
        self.topics_requested += len(topics)
        logger.debug(f"LISTEN {', '.join(t.wire for t in topics)} (nonce {nonce}, attempt {attempt})")

    def _on_ack_timeout(self, nonce: str) -> None:
        pending = self._pending.pop(nonce, None)
        if pending is None:
            return

        waiting = [t for t in pending.topics if self._current(t, nonce) is not None]
        if not waiting:
            return

        if pending.attempt <= self.config.ack_retries:
            logger.warning(
                f"No acknowledgement for {', '.join(t.wire for t in waiting)} "
                f"after {self.config.ack_timeout}s, retrying"
            )
            self._send_listen(waiting, attempt=pending.attempt + 1)
            return

        for topic in waiting:
            self._fail(self._subscriptions[topic], SubscriptionTimeout(
                f"No acknowledgement for {topic.wire} after {pending.attempt} attempt(s)",
                topic=topic.wire,
                error="timeout",
                nonce=nonce,
            ))

    def _fail(self, subscription: Subscription, error: SubscriptionRejected) -> None:
        subscription.advance(SubscriptionState.FAILED)
        subscription.error = error.error
        self._desired[subscription.topic]._settle(error)
        logger.error(str(error))

        for listener in list(self._failure_listeners):
            try:
                listener(error)
            except Exception as e:
                logger.error(f"Subscription failure listener error: {e}")

    def _resubscribe_all(self) -> None:
        """LISTEN every desired topic without a subscription on this session."""
        topics = [topic for topic in self._desired if topic not in self._subscriptions]
        if not topics:
            return
        logger.info(f"Subscribing to {len(topics)} topic(s)")
        self._subscribe(topics)

    def _reset_session(self) -> None:
        """Discard in-flight requests and per-session subscriptions; FAILED ones are kept."""
        for pending in self._pending.values():
            if pending.timer is not None:
                pending.timer.cancel()
        self._pending.clear()
        self._unlisten_requests.clear()

        for topic, subscription in list(self._subscriptions.items()):
            if subscription.state == SubscriptionState.FAILED:
                continue
            del self._subscriptions[topic]
            handle = self._desired.get(topic)
            if handle is not None:
                handle._bind(None)

    def get_status(self) -> Dict[str, Any]:
        return {
            "desired": len(self._desired),
            "states": {topic.wire: handle.state.value for topic, handle in self._desired.items()},
            "pending_requests": len(self._pending),
            "requests_sent": self.requests_sent,
            "topics_requested": self.topics_requested,
        }
