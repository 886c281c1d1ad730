"""Best-effort fan-out of telemetry messages to subscribers.

Each subscriber owns a bounded queue.  ``publish`` never blocks: when a
subscriber's queue is full its oldest message is discarded, so a slow
reader loses history instead of stalling the emission loop.

Two message shapes travel over the same stream:

- **state** — ``{"type": "state", "config", "isRunning", "metrics"}``,
  delivered on subscribe and on run or configuration changes.
- **metrics** — ``{"type": "metrics", "currentBandwidth", "totalSent",
  "elapsedTime", ...}``, delivered at the snapshot cadence.

Usage::

    sub = broadcaster.subscribe(initial=supervisor.state_message())
    while (message := sub.get(timeout=1.0)) is not None:
        ws.send_json(message)
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from .aggregator import MetricsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIBER_BUFFER = 64

Message = dict[str, Any]


def metrics_message(snapshot: MetricsSnapshot) -> Message:
    """Build a periodic metrics message."""
    return {"type": "metrics", **snapshot.to_dict()}


def state_message(
    config: dict[str, Any],
    is_running: bool,
    metrics: MetricsSnapshot,
    reason: str | None = None,
    started_at: str | None = None,
) -> Message:
    """Build a full-state message."""
    message: Message = {
        "type": "state",
        "config": config,
        "isRunning": is_running,
        "metrics": metrics.to_dict(),
    }
    if started_at is not None:
        message["metrics"]["startTime"] = started_at
    if reason is not None:
        message["reason"] = reason
    return message


class Subscription:
    """A single subscriber's bounded message buffer.

    Args:
        broadcaster: Owning broadcaster, used for unsubscribe.
        maxsize: Maximum buffered messages before the oldest is dropped.
        on_offer: Called from the publishing thread after each enqueue and
            on close, so an event-loop reader can wait without polling.

    """

    def __init__(
        self,
        broadcaster: TelemetryBroadcaster,
        maxsize: int,
        on_offer: Callable[[], None] | None = None,
    ) -> None:
        """Initialize an open subscription."""
        self._broadcaster = broadcaster
        self._on_offer = on_offer
        self._queue: queue.Queue[Message] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        """Return ``True`` once the subscription has been closed."""
        return self._closed.is_set()

    def offer(self, message: Message) -> None:
        """Enqueue without blocking, evicting the oldest message if full."""
        if self.closed:
            return
        while True:
            try:
                self._queue.put_nowait(message)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass
        if self._on_offer is not None:
            self._on_offer()

    def get(self, timeout: float | None = None) -> Message | None:
        """Return the next message, or ``None`` on timeout or close."""
        if self.closed and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Message]:
        """Return every buffered message without waiting."""
        messages: list[Message] = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages

    def close(self) -> None:
        """Detach from the broadcaster.  Idempotent."""
        if not self.closed:
            self._closed.set()
            self._broadcaster.unsubscribe(self)
            if self._on_offer is not None:
                self._on_offer()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        self.close()


class TelemetryBroadcaster:
    """Fan telemetry messages out to any number of subscribers.

    Args:
        buffer_size: Per-subscriber queue bound.

    """

    def __init__(self, buffer_size: int = DEFAULT_SUBSCRIBER_BUFFER) -> None:
        """Initialize an empty broadcaster."""
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._buffer_size = buffer_size
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def subscriber_count(self) -> int:
        """Return the number of attached subscribers."""
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        initial: Message | None = None,
        on_offer: Callable[[], None] | None = None,
    ) -> Subscription:
        """Attach a subscriber, queueing ``initial`` ahead of any broadcast.

        Args:
            initial: Full-state message the subscriber sees first.
            on_offer: Wake-up hook passed to the ``Subscription``.

        Returns:
            The new ``Subscription``.

        """
        subscription = Subscription(self, self._buffer_size, on_offer)
        with self._lock:
            if initial is not None:
                subscription.offer(initial)
            self._subscribers.append(subscription)
        self._logger.debug("Subscriber attached (%d total)", self.subscriber_count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscriber if still attached."""
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
                self._logger.debug("Subscriber detached (%d left)", len(self._subscribers))

    def publish(self, message: Message) -> int:
        """Offer ``message`` to every open subscriber without blocking.

        Returns:
            Number of subscribers the message was offered to.

        """
        with self._lock:
            self._subscribers = [s for s in self._subscribers if not s.closed]
            targets = list(self._subscribers)
        for subscription in targets:
            subscription.offer(message)
        return len(targets)

    def close(self) -> None:
        """Close every subscription."""
        with self._lock:
            targets = list(self._subscribers)
        for subscription in targets:
            subscription.close()
