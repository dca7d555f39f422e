# minisiem/broadcaster.py
import json
import logging
import queue
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

from . import config
from .models import LogEvent

logger = logging.getLogger(__name__)

EVENT_CONNECTED = "connected"
EVENT_NEW_LOG = "newLog"
CONNECTED_MESSAGE = "Real-time feed connected"

Message = Tuple[str, Any]

_STOP = object()


class SubscriberGone(Exception):
    """Raised by a subscriber handle that can no longer take messages."""


def format_sse(event: str, data: Any) -> str:
    """Render one message as a server-sent events frame."""
    payload = data if isinstance(data, str) else json.dumps(data, default=str)
    lines = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in payload.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


class QueueSubscriber:
    """
    Subscriber handle backed by a bounded outbox.

    The broadcaster calls ``send``; the streaming endpoint drains the outbox
    with ``get`` or by iterating. ``send`` never blocks: a full outbox means
    the reader has fallen behind and the subscriber is treated as dead.
    """

    def __init__(self, maxsize: int = config.SUBSCRIBER_QUEUE_SIZE) -> None:
        self._outbox: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, event: str, data: Any) -> None:
        if self.closed:
            raise SubscriberGone("subscriber closed")
        try:
            self._outbox.put_nowait((event, data))
        except queue.Full:
            raise SubscriberGone("subscriber outbox full") from None

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next message, or None on timeout or once the subscriber is closed and drained."""
        if self.closed and self._outbox.empty():
            return None
        try:
            item = self._outbox.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _STOP:
            return None
        return item

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        # wake a reader blocked in get(); a full outbox is already readable
        try:
            self._outbox.put_nowait(_STOP)
        except queue.Full:
            pass

    def __iter__(self) -> Iterator[Message]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item

    def sse_stream(self, keepalive: float = 15.0) -> Iterator[str]:
        """SSE frames for a streaming response, with comment keep-alives."""
        while not self.closed or not self._outbox.empty():
            try:
                item = self._outbox.get(timeout=keepalive)
            except queue.Empty:
                yield ": keep-alive\n\n"
                continue
            if item is _STOP:
                return
            yield format_sse(*item)


def _close_handle(handle: Any) -> None:
    close = getattr(handle, "close", None)
    if close is not None:
        close()


def event_payload(event: LogEvent) -> Dict[str, Any]:
    return {
        "timestamp": event.to_dict()["timestamp"],
        "level": event.level,
        "source": event.source,
        "message": event.message,
        "ip": event.ip,
    }


class Broadcaster:
    """
    Pushes newly ingested log events to every live subscriber.

    A handle is any object with ``send(event_name, data)``. Sending must not
    block; an exception from ``send`` marks the handle dead, and it is removed
    and closed once the current pass is over.

    Ingested events are delivered by a single dispatcher thread, started by
    ``start`` or by the first ``on_log_ingested`` call.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[Any, str] = {}
        self._lock = threading.Lock()
        self._pending: "queue.Queue" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._lifecycle_lock = threading.Lock()

    # ---------------- subscriptions ----------------

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, handle: Any, identity: str) -> bool:
        # the ack is sent under the lock a broadcast snapshots with, so it is
        # always the first message a subscriber sees
        with self._lock:
            try:
                handle.send(EVENT_CONNECTED, CONNECTED_MESSAGE)
            except Exception as e:
                logger.error("Failed to send initial message to %s: %s", identity, e)
                return False
            self._subscribers[handle] = identity

        logger.info("Real-time stream connection from user: %s", identity)
        return True

    def unsubscribe(self, handle: Any) -> None:
        with self._lock:
            identity = self._subscribers.pop(handle, None)
        if identity is not None:
            logger.debug("Real-time client removed: %s", identity)

    def on_error(self, handle: Any, error: BaseException) -> None:
        """Transport error callback."""
        with self._lock:
            identity = self._subscribers.get(handle)
        if identity is not None:
            logger.error("Stream error for user %s: %s", identity, error)
        self.unsubscribe(handle)

    # completion and timeout callbacks
    on_complete = unsubscribe
    on_timeout = unsubscribe

    # ---------------- delivery ----------------

    def broadcast(self, event: LogEvent) -> int:
        """Deliver one event to every subscriber. Returns the number reached."""
        with self._lock:
            if not self._subscribers:
                return 0
            snapshot = list(self._subscribers.items())

        payload = event_payload(event)
        dead: List[Any] = []
        for handle, identity in snapshot:
            try:
                handle.send(EVENT_NEW_LOG, payload)
            except Exception:
                logger.debug("Real-time client disconnected: %s", identity)
                dead.append(handle)

        if dead:
            with self._lock:
                for handle in dead:
                    self._subscribers.pop(handle, None)
            for handle in dead:
                _close_handle(handle)
        return len(snapshot) - len(dead)

    def on_log_ingested(self, event: LogEvent) -> None:
        """Ingestion hook: queue the event and return without waiting for delivery."""
        self._pending.put(event)
        if self._dispatcher is None:
            self.start()

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._dispatcher is not None:
                return
            self._dispatcher = threading.Thread(
                target=self._dispatch, name="broadcaster", daemon=True
            )
            self._dispatcher.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Deliver everything already queued, then stop the dispatcher."""
        with self._lifecycle_lock:
            dispatcher = self._dispatcher
            if dispatcher is None:
                return
            self._pending.put(_STOP)
            dispatcher.join(timeout)
            self._dispatcher = None

    def close_all(self) -> None:
        with self._lock:
            handles = list(self._subscribers)
            self._subscribers.clear()
        for handle in handles:
            _close_handle(handle)

    def _dispatch(self) -> None:
        # one thread delivers in queue order, which keeps each subscriber FIFO
        while True:
            event = self._pending.get()
            if event is _STOP:
                return
            try:
                self.broadcast(event)
            except Exception:
                logger.exception("Broadcast failed for event %s", getattr(event, "id", None))
