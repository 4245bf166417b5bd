"""Dispatcher: decodes MESSAGE frames and routes them to isolated handlers."""

import asyncio
import inspect
import itertools
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, List, Optional, Tuple
from loguru import logger

from .config import DispatcherConfig
from .events.models import FeedEvent, RawEvent
from .exceptions import DecodeError, HandlerFailure
from .protocol import InboundFrame
from .topics import Topic, TopicRegistry


EventCallback = Callable[[FeedEvent], Any]


@dataclass
class HandlerRegistration:
    """Maps a topic pattern to a callback."""
    registration_id: int
    pattern: str
    callback: EventCallback
    name: str

    def matches(self, topic: Optional[Topic], wire_topic: str) -> bool:
        """Patterns match the capability key (``bits:*``) or the wire topic."""
        if fnmatchcase(wire_topic, self.pattern):
            return True
        return topic is not None and fnmatchcase(topic.key, self.pattern)


def _callback_name(callback: Callable) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    return name or repr(callback)


class Dispatcher:
    """
    Routes inbound frames to handlers without blocking the transport.

    Frames are accepted in wire order onto one queue, then fanned out into
    one lane per topic. A lane runs all handlers for a frame before taking
    the next frame of that topic; lanes of different topics run concurrently
    up to ``max_concurrency``. Both the inbound queue and each lane hold at
    most ``max_queue_size`` frames; overflow is dropped and counted.
    """

    def __init__(self, registry: Optional[TopicRegistry] = None, config: Optional[DispatcherConfig] = None):
        self.registry = registry or TopicRegistry()
        self.config = config or DispatcherConfig()

        self._handlers: Dict[int, HandlerRegistration] = {}
        self._ids = itertools.count(1)

        self._queue: Optional[asyncio.Queue] = None
        self._lanes: Dict[str, asyncio.Queue] = {}
        self._lane_tasks: Dict[str, asyncio.Task] = {}
        self._router_task: Optional[asyncio.Task] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False

        # Metrics
        self.frames_received = 0
        self.frames_dispatched = 0
        self.frames_dropped = 0
        self.decode_errors = 0
        self.handler_failures = 0
        self.unmatched = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def register_handler(self, topic_pattern: str, callback: EventCallback, name: Optional[str] = None) -> HandlerRegistration:
        """Register a callback for every topic matching ``topic_pattern``."""
        if not isinstance(topic_pattern, str) or not topic_pattern:
            raise ValueError("topic_pattern must be a non-empty string")
        if not callable(callback):
            raise ValueError(f"callback for {topic_pattern!r} is not callable")

        registration = HandlerRegistration(
            registration_id=next(self._ids),
            pattern=topic_pattern,
            callback=callback,
            name=name or _callback_name(callback),
        )
        self._handlers[registration.registration_id] = registration
        logger.debug(f"Registered handler {registration.name} for {topic_pattern}")
        return registration

    def unregister_handler(self, registration: HandlerRegistration) -> bool:
        return self._handlers.pop(registration.registration_id, None) is not None

    def handlers_for(self, topic: Optional[Topic], wire_topic: str) -> List[HandlerRegistration]:
        return [h for h in list(self._handlers.values()) if h.matches(topic, wire_topic)]

    async def start(self) -> None:
        """Start routing."""
        if self._running:
            return

        self._queue = asyncio.Queue(maxsize=self.config.max_queue_size)
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="pubsub-handler"
        )
        self._router_task = asyncio.create_task(self._router(), name="pubsub-dispatch-router")
        self._running = True
        logger.info("Dispatcher started")

    async def stop(self, grace: Optional[float] = None) -> None:
        """Stop accepting frames, let queued work finish within ``grace``, then cancel the rest."""
        if not self._running:
            return
        self._running = False
        grace = self.config.shutdown_grace if grace is None else grace

        try:
            await asyncio.wait_for(self.join(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"Abandoning in-flight handlers after {grace}s shutdown grace")

        tasks = list(self._lane_tasks.values())
        if self._router_task:
            tasks.append(self._router_task)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._lane_tasks.clear()
        self._lanes.clear()
        self._router_task = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

        logger.info("Dispatcher stopped")

    def submit(self, frame: InboundFrame) -> bool:
        """Hand a frame over without blocking; drops it if the queue is full."""
        if not self._running or self._queue is None:
            logger.warning(f"Dispatcher not running, dropping frame for {frame.topic}")
            self.frames_dropped += 1
            return False

        self.frames_received += 1
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(f"Dispatch queue full, dropping frame for {frame.topic}")
            self.frames_dropped += 1
            return False
        return True

    async def join(self) -> None:
        """Wait until every submitted frame has been dispatched."""
        if self._queue is not None:
            await self._queue.join()
        for lane in list(self._lanes.values()):
            await lane.join()

    def decode(self, frame: InboundFrame) -> Tuple[FeedEvent, Optional[Topic]]:
        """Decode a MESSAGE frame's payload using the topic's schema."""
        wire_topic = frame.topic or ""
        match = self.registry.lookup(wire_topic)
        definition, topic = match if match else (None, None)

        payload = frame.payload
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                raise DecodeError(f"Payload is not valid JSON: {e}", topic=wire_topic, raw_data=frame.payload)
        if not isinstance(payload, dict):
            raise DecodeError(
                f"Payload must be an object, got {type(payload).__name__}",
                topic=wire_topic, raw_data=frame.payload
            )

        if definition is not None and definition.decoder is not None:
            try:
                event = definition.decoder(payload)
            except DecodeError as e:
                e.topic = e.topic or wire_topic
                e.raw_data = e.raw_data if e.raw_data is not None else payload
                raise
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise DecodeError(f"Malformed {definition.capability} payload: {e}", topic=wire_topic, raw_data=payload)
        else:
            event = RawEvent(data=payload)

        if topic is not None:
            event.capability = topic.capability
        event.topic = topic
        event.wire_topic = wire_topic
        event.received_at = frame.received_at
        return event, topic

    async def dispatch(self, frame: InboundFrame) -> int:
        """Decode and run all matching handlers for one frame; returns handlers that succeeded."""
        try:
            event, topic = self.decode(frame)
        except DecodeError as e:
            self.decode_errors += 1
            logger.error(f"Dropping frame on {frame.topic}: {e}")
            return 0

        handlers = self.handlers_for(topic, frame.topic or "")
        if not handlers:
            self.unmatched += 1
            logger.debug(f"No handler for {frame.topic}, dropping")
            return 0

        results = await asyncio.gather(*(self._invoke(h, event, frame.topic) for h in handlers))
        self.frames_dispatched += 1
        return sum(1 for ok in results if ok)

    async def _invoke(self, registration: HandlerRegistration, event: FeedEvent, wire_topic: str) -> bool:
        """Run one handler; failures are logged and never propagate."""
        timeout = self.config.handler_timeout
        try:
            if inspect.iscoroutinefunction(registration.callback):
                await asyncio.wait_for(registration.callback(event), timeout=timeout)
            else:
                loop = asyncio.get_running_loop()
                result = await asyncio.wait_for(
                    loop.run_in_executor(self._executor, registration.callback, event),
                    timeout=timeout
                )
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=timeout)
            return True

        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            failure = HandlerFailure(
                f"Handler {registration.name} timed out after {timeout}s on {wire_topic}",
                handler=registration.name, topic=wire_topic
            )
        except Exception as e:
            failure = HandlerFailure(
                f"Handler {registration.name} failed on {wire_topic}: {type(e).__name__}: {e}",
                handler=registration.name, topic=wire_topic
            )

        self.handler_failures += 1
        logger.error(str(failure))
        return False

    async def _router(self) -> None:
        """Move frames from the inbound queue into per-topic lanes, preserving order."""
        while True:
            frame = await self._queue.get()
            try:
                self._lane_for(frame.topic or "").put_nowait(frame)
            except asyncio.QueueFull:
                logger.warning(f"Handlers for {frame.topic} are behind, dropping frame")
                self.frames_dropped += 1
            finally:
                self._queue.task_done()

    def _lane_for(self, wire_topic: str) -> asyncio.Queue:
        lane = self._lanes.get(wire_topic)
        if lane is None:
            lane = asyncio.Queue(maxsize=self.config.max_queue_size)
            self._lanes[wire_topic] = lane
            self._lane_tasks[wire_topic] = asyncio.create_task(
                self._run_lane(wire_topic, lane), name=f"pubsub-lane-{wire_topic}"
            )
        return lane

    async def _run_lane(self, wire_topic: str, lane: asyncio.Queue) -> None:
        """Handle one topic's frames in order; exits once the lane has been idle for a while."""
        while True:
            try:
                frame = await asyncio.wait_for(lane.get(), timeout=self.config.lane_idle_timeout)
            except asyncio.TimeoutError:
                if not lane.empty():
                    continue
                # the router builds a fresh lane for the next frame of this topic
                if self._lanes.get(wire_topic) is lane:
                    del self._lanes[wire_topic]
                    del self._lane_tasks[wire_topic]
                logger.debug(f"Retired idle lane for {wire_topic}")
                return

            try:
                async with self._semaphore:
                    await self.dispatch(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Unexpected dispatch error on {wire_topic}: {e}")
            finally:
                lane.task_done()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "handlers": len(self._handlers),
            "lanes": len(self._lanes),
            "queue_size": self._queue.qsize() if self._queue else 0,
            "lane_backlog": sum(lane.qsize() for lane in self._lanes.values()),
            "frames_received": self.frames_received,
            "frames_dispatched": self.frames_dispatched,
            "frames_dropped": self.frames_dropped,
            "decode_errors": self.decode_errors,
            "handler_failures": self.handler_failures,
            "unmatched": self.unmatched,
        }
