"""Transport session: one reconnecting websocket connection to the PubSub server."""

import asyncio
import itertools
import time
import websockets
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from loguru import logger

from .config import SessionConfig
from .exceptions import ConnectError, DecodeError, NotConnected
from .protocol import FrameType, InboundFrame, build_ping, encode_frame, parse_frame
from .utils.backoff import compute_backoff


class ConnectionState(Enum):
    """Connection state machine."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    CLOSING = "closing"


class Session:
    """
    One physical connection.

    A Session is never revived: once retired, the transport opens a new one.
    """

    def __init__(self, websocket: Any, session_id: int, reconnect_attempt: int = 0):
        self.websocket = websocket
        self.session_id = session_id
        self.reconnect_attempt = reconnect_attempt
        self.state = ConnectionState.CONNECTING
        self.connected_at = time.time()
        self.last_heartbeat: Optional[float] = None
        self.retired = False
        self.loop: Optional[asyncio.AbstractEventLoop] = None

        self.outbound: asyncio.Queue = asyncio.Queue()
        self.pong_received = asyncio.Event()
        self.tasks: List[asyncio.Task] = []

    @property
    def is_live(self) -> bool:
        return self.state == ConnectionState.CONNECTED and not self.retired

    def __repr__(self) -> str:
        return f"<Session #{self.session_id} {self.state.value}>"


FrameListener = Callable[[InboundFrame], None]
StateListener = Callable[[ConnectionState, Optional[Session]], None]
Connector = Callable[[str], Awaitable[Any]]
Authenticator = Callable[[Session], Awaitable[None]]


def running_loop() -> Optional[asyncio.AbstractEventLoop]:
    """The event loop running in the calling thread, if any."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class TransportSession:
    """Owns the connection lifecycle: connect, heartbeat, reconnect with backoff."""

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        connector: Optional[Connector] = None,
        authenticator: Optional[Authenticator] = None
    ):
        """
        Initialize transport.

        Args:
            config: Session configuration
            connector: Coroutine opening a websocket for a URL (defaults to websockets.connect)
            authenticator: Optional handshake run on every new connection before it is published
        """
        self.config = config or SessionConfig()
        self._connector = connector or self._default_connector
        self._authenticator = authenticator

        self._session: Optional[Session] = None
        self._state = ConnectionState.DISCONNECTED
        self._frame_listeners: List[FrameListener] = []
        self._state_listeners: List[StateListener] = []

        # Session swaps happen only under this lock, created on first use inside the loop
        self._lock: Optional[asyncio.Lock] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False
        self._session_ids = itertools.count(1)

        # Statistics
        self.reconnect_attempts = 0
        self.reconnect_cycles = 0
        self.frames_received = 0
        self.frames_sent = 0
        self.decode_errors = 0

    @property
    def _swap_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        """Most recent live session, if any."""
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_live

    def add_frame_listener(self, listener: FrameListener) -> None:
        """Listeners run on the reader task and must not block."""
        self._frame_listeners.append(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    async def connect(self) -> Session:
        """Open a connection; raises ConnectError if the attempt fails."""
        if self.is_connected:
            return self._session

        self._closing = False
        async with self._swap_lock:
            if self.is_connected:
                return self._session
            session = await self._open_session(attempt=0)
            self._publish(session)
            return session

    async def start(self) -> bool:
        """Connect, falling back to background reconnection if the first attempt fails."""
        try:
            await self.connect()
            return True
        except ConnectError as e:
            logger.warning(f"Initial connection failed, retrying in background: {e}")
            self._schedule_reconnect(None, "initial connection failed")
            return False

    async def disconnect(self) -> None:
        """Stop reconnecting, retire the live session and close the socket."""
        self._closing = True

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)
        self._reconnect_task = None

        async with self._swap_lock:
            session = self._session
            if session is not None:
                self._set_state(ConnectionState.CLOSING, session)
                await self._retire(session)
            self._set_state(ConnectionState.DISCONNECTED, None)

        logger.info("Connection closed to pubsub server")

    def send(self, frame: Dict[str, Any]) -> None:
        """Queue an outbound frame on the live session; safe to call from any thread."""
        session = self._session
        if session is None or not session.is_live:
            raise NotConnected("No live connection to the pubsub server")
        if running_loop() is session.loop:
            session.outbound.put_nowait(frame)
        else:
            session.loop.call_soon_threadsafe(session.outbound.put_nowait, frame)

    # Connection lifecycle

    async def _default_connector(self, url: str) -> Any:
        return await websockets.connect(
            url,
            ping_interval=None,  # heartbeat is protocol-level PING/PONG
            open_timeout=self.config.connection_timeout,
            close_timeout=self.config.close_timeout,
        )

    async def _open_session(self, attempt: int) -> Session:
        self._set_state(ConnectionState.CONNECTING, None)
        logger.info(f"Connecting to {self.config.url}")

        try:
            websocket = await asyncio.wait_for(
                self._connector(self.config.url),
                timeout=self.config.connection_timeout
            )
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED, None)
            raise
        except Exception as e:
            logger.error(f"WebSocket connection failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED, None)
            raise ConnectError(f"Connection failed: {e}", attempt=attempt) from e

        session = Session(websocket, next(self._session_ids), reconnect_attempt=attempt)

        if self._authenticator is not None:
            session.state = ConnectionState.AUTHENTICATING
            self._set_state(ConnectionState.AUTHENTICATING, session)
            try:
                await asyncio.wait_for(
                    self._authenticator(session),
                    timeout=self.config.connection_timeout
                )
            except asyncio.CancelledError:
                await self._close_socket(session)
                self._set_state(ConnectionState.DISCONNECTED, None)
                raise
            except Exception as e:
                logger.error(f"Authentication failed: {e}")
                await self._close_socket(session)
                self._set_state(ConnectionState.DISCONNECTED, None)
                raise ConnectError(f"Authentication failed: {e}", attempt=attempt) from e

        return session

    def _publish(self, session: Session) -> None:
        """Make a freshly opened session the live one and start its tasks."""
        session.state = ConnectionState.CONNECTED
        session.last_heartbeat = time.time()
        session.loop = asyncio.get_running_loop()
        self._session = session

        session.tasks = [
            asyncio.create_task(self._reader(session), name=f"pubsub-reader-{session.session_id}"),
            asyncio.create_task(self._writer(session), name=f"pubsub-writer-{session.session_id}"),
            asyncio.create_task(self._heartbeat(session), name=f"pubsub-heartbeat-{session.session_id}"),
        ]

        logger.info(f"Connected to pubsub server (session #{session.session_id})")
        self._set_state(ConnectionState.CONNECTED, session)

    async def _retire(self, session: Session) -> None:
        """Cancel the session's tasks and close its socket."""
        session.retired = True
        session.state = ConnectionState.CLOSING

        current = asyncio.current_task()
        tasks = [t for t in session.tasks if t is not current]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._close_socket(session)
        session.state = ConnectionState.DISCONNECTED
        if self._session is session:
            self._session = None

    async def _close_socket(self, session: Session) -> None:
        try:
            await asyncio.wait_for(session.websocket.close(), timeout=self.config.close_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Error closing websocket for session #{session.session_id}: {e}")

    def _session_lost(self, session: Session, reason: str) -> None:
        """Called from session tasks when the connection is unusable."""
        if session is not self._session or session.retired or self._closing:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return

        logger.warning(f"Session #{session.session_id} lost: {reason}")
        self._schedule_reconnect(session, reason)

    def _schedule_reconnect(self, session: Optional[Session], reason: str) -> None:
        self._reconnect_task = asyncio.create_task(
            self._reconnect(session, reason), name="pubsub-reconnect"
        )

    async def _reconnect(self, old: Optional[Session], reason: str) -> None:
        """Retire the dead session, then retry with exponential backoff until connected."""
        async with self._swap_lock:
            self.reconnect_cycles += 1
            if old is not None:
                await self._retire(old)
            self._set_state(ConnectionState.DISCONNECTED, None)

            attempt = 0
            max_attempts = self.config.max_reconnect_attempts
            while not self._closing:
                attempt += 1
                self.reconnect_attempts = attempt
                if max_attempts is not None and attempt > max_attempts:
                    logger.error("Max reconnection attempts reached, giving up")
                    return

                delay = compute_backoff(
                    attempt,
                    base=self.config.reconnect_delay_base,
                    maximum=self.config.reconnect_delay_max,
                    jitter=self.config.reconnect_jitter,
                )
                logger.info(f"Reconnecting in {delay:.2f}s (attempt {attempt}, {reason})")
                await asyncio.sleep(delay)
                if self._closing:
                    return

                try:
                    session = await self._open_session(attempt)
                except ConnectError as e:
                    logger.error(f"Reconnection attempt {attempt} failed: {e}")
                    continue

                self.reconnect_attempts = 0
                self._publish(session)
                return

    def _set_state(self, state: ConnectionState, session: Optional[Session]) -> None:
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state, session)
            except Exception as e:
                logger.error(f"State listener error on {state.value}: {e}")

    # Session tasks

    async def _reader(self, session: Session) -> None:
        """Read frames and hand them to listeners."""
        reason = "connection closed by server"
        try:
            async for raw in session.websocket:
                self.frames_received += 1
                try:
                    frame = parse_frame(raw)
                except DecodeError as e:
                    self.decode_errors += 1
                    logger.error(f"Dropping malformed frame: {e}")
                    continue
                self._route(session, frame)

        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"connection closed ({e})"
        except Exception as e:
            logger.error(f"Reader error: {e}")
            reason = f"reader error: {e}"

        self._session_lost(session, reason)

    def _route(self, session: Session, frame: InboundFrame) -> None:
        if frame.frame_type == FrameType.PONG:
            session.last_heartbeat = time.time()
            session.pong_received.set()
            return

        if frame.frame_type == FrameType.RECONNECT:
            logger.warning("Server requested reconnect")
            self._session_lost(session, "server requested reconnect")
            return

        for listener in list(self._frame_listeners):
            try:
                listener(frame)
            except Exception as e:
                logger.error(f"Frame listener error for {frame.frame_type.value}: {e}")

    async def _writer(self, session: Session) -> None:
        """Drain the outbound queue onto the socket."""
        try:
            while True:
                frame = await session.outbound.get()
                await session.websocket.send(encode_frame(frame))
                self.frames_sent += 1
                logger.debug(f"Sent {frame.get('type')} on session #{session.session_id}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Send failed on session #{session.session_id}: {e}")
            self._session_lost(session, f"send failed: {e}")

    async def _heartbeat(self, session: Session) -> None:
        """PING periodically; a missing PONG declares the session dead."""
        while True:
            await asyncio.sleep(self.config.ping_interval)

            session.pong_received.clear()
            session.outbound.put_nowait(build_ping())
            try:
                await asyncio.wait_for(session.pong_received.wait(), timeout=self.config.pong_timeout)
            except asyncio.TimeoutError:
                logger.error(f"No PONG within {self.config.pong_timeout}s on session #{session.session_id}")
                self._session_lost(session, "heartbeat timeout")
                return

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        session = self._session
        return {
            "state": self._state.value,
            "session_id": session.session_id if session else None,
            "last_heartbeat": session.last_heartbeat if session else None,
            "reconnect_attempts": self.reconnect_attempts,
            "reconnect_cycles": self.reconnect_cycles,
            "frames_received": self.frames_received,
            "frames_sent": self.frames_sent,
            "decode_errors": self.decode_errors,
        }
