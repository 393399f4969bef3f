"""Progress bus — fans scan progress events out to live observers.

One broadcaster is created per process (see ``main.create_app``) and
handed to the scan scheduler and to the streaming endpoint.  It is not
partitioned by scan: every subscriber sees every event and filters on
``scan_id`` itself.  Delivery is synchronous and best-effort; a handler
that raises is logged and skipped, never allowed to break publication.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

# Progress value of the terminal event published when a scan fails
FAILED_PROGRESS = -1

# Per-stream buffer; observers only need the latest value
STREAM_BUFFER_SIZE = 64


@dataclass(frozen=True)
class ProgressEvent:
    scan_id: str
    progress: int
    message: str

    @property
    def is_terminal(self) -> bool:
        return self.progress >= 100 or self.progress < 0

    def to_payload(self) -> dict:
        return {"progress": self.progress, "message": self.message}


ProgressHandler = Callable[[ProgressEvent], None]


class Subscription:
    """Handle for one attached handler; close it (or leave the ``with``) to detach."""

    def __init__(self, bus: "ProgressBroadcaster", handler: ProgressHandler) -> None:
        self._bus = bus
        self._handler = handler
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._bus._detach(self._handler)
            self._closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ProgressStream:
    """Async view of the events for a single scan.

    Backed by a bounded queue; when an observer falls behind the oldest
    buffered event is dropped, which is safe because ``progress`` is a
    last-value signal.  ``get`` returns ``None`` once the stream is closed.
    """

    _CLOSED = object()

    def __init__(self, bus: "ProgressBroadcaster", scan_id: str, maxsize: int = STREAM_BUFFER_SIZE) -> None:
        self.scan_id = scan_id
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._finished = False
        self._subscription = bus.subscribe(self._on_event)

    def _on_event(self, event: ProgressEvent) -> None:
        if event.scan_id == self.scan_id:
            self._offer(event)

    def _offer(self, item: object) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(item)

    def _shutdown(self) -> None:
        """Called by the bus when it is closed."""
        self._offer(self._CLOSED)

    async def get(self) -> ProgressEvent | None:
        if self._finished:
            return None
        item = await self._queue.get()
        if item is self._CLOSED:
            self._finished = True
            self.close()
            return None
        return item  # type: ignore[return-value]

    def close(self) -> None:
        self._subscription.close()
        self._bus._forget_stream(self)

    def __aiter__(self) -> "ProgressStream":
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        if event.is_terminal:
            self._finished = True
            self.close()
        return event

    def __enter__(self) -> "ProgressStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ProgressBroadcaster:
    """Process-wide publish/subscribe channel for scan progress."""

    def __init__(self) -> None:
        self._handlers: list[ProgressHandler] = []
        self._streams: set[ProgressStream] = set()
        self._lock = threading.Lock()
        self._closed = False

    # ── subscription ──────────────────────────────────────────

    def subscribe(self, handler: ProgressHandler) -> Subscription:
        """Attach *handler*; keep the returned subscription for as long as you observe."""
        with self._lock:
            self._handlers.append(handler)
        return Subscription(self, handler)

    def _detach(self, handler: ProgressHandler) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def open_stream(self, scan_id: str, maxsize: int = STREAM_BUFFER_SIZE) -> ProgressStream:
        """Return an async stream of events for *scan_id* (detach with ``close``)."""
        stream = ProgressStream(self, scan_id, maxsize=maxsize)
        with self._lock:
            self._streams.add(stream)
        return stream

    def _forget_stream(self, stream: ProgressStream) -> None:
        with self._lock:
            self._streams.discard(stream)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    # ── publication ───────────────────────────────────────────

    def publish(self, event: ProgressEvent) -> None:
        """Deliver *event* to every handler; handler errors are logged, never raised."""
        if self._closed:
            logger.debug("Progress bus closed; dropping event for scan %s", event.scan_id)
            return
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Progress subscriber failed for scan %s", event.scan_id)

    # ── lifecycle ─────────────────────────────────────────────

    def close(self) -> None:
        """Detach everything and end open streams (call from lifespan shutdown)."""
        with self._lock:
            self._closed = True
            streams = list(self._streams)
            self._streams.clear()
        for stream in streams:
            stream._shutdown()
        with self._lock:
            self._handlers.clear()

    @property
    def closed(self) -> bool:
        return self._closed
