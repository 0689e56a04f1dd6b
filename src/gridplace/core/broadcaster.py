"""Fan-out broadcaster for live observers.

Every subscriber owns a bounded queue. ``publish`` never waits: it offers
the event to each queue and removes any subscriber whose queue is full or
closed, so one slow observer can never hold up the others.

All subscriber-set mutations are synchronous and therefore atomic with
respect to the event loop; no lock is held across I/O.
"""

import asyncio
import uuid
from collections import Counter
from collections.abc import Callable

from gridplace.schemas.types import ChangeEvent
from gridplace.utils.errors import CapacityExceededError, PerOriginLimitExceededError
from gridplace.utils.telemetry import (
    get_logger,
    now_ms,
    record_broadcast_drop,
    update_live_viewers,
)


class Subscription:
    """Handle for one observer connection.

    The transport drains events with ``next_event`` (or ``async for``) and
    stops when it receives ``None``, which is delivered once the
    subscription is closed.
    """

    def __init__(self, origin: str, connected_at: int, queue_size: int = 256):
        self.id = uuid.uuid4().hex
        self.origin = origin
        self.connected_at = connected_at
        self.closed = False
        self.close_reason: str | None = None
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(
            maxsize=queue_size
        )

    def offer(self, event: ChangeEvent) -> bool:
        """Enqueue an event without waiting. Returns False if it cannot."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self, reason: str = "closed") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason

        # Pending events are discarded so the sentinel always fits
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def next_event(self) -> ChangeEvent | None:
        """Wait for the next event; ``None`` once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    def __repr__(self) -> str:
        return (
            f"Subscription(id={self.id!r}, origin={self.origin!r}, "
            f"closed={self.closed})"
        )


class Broadcaster:
    """Process-wide publish/subscribe hub for observer connections.

    Created once per process, started with ``start()`` and torn down with
    ``shutdown()``. Caps on total and per-origin subscriptions come from
    configuration.
    """

    def __init__(
        self,
        max_connections: int = 1000,
        max_per_origin: int = 5,
        max_lifetime_seconds: float = 86400,
        ping_interval_seconds: float = 30,
        queue_size: int = 256,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the broadcaster.

        Args:
            max_connections: Global cap on concurrent subscriptions
            max_per_origin: Cap on concurrent subscriptions per origin
            max_lifetime_seconds: Age after which a subscription is force-closed
            ping_interval_seconds: Interval of the liveness loop
            queue_size: Per-subscriber queue bound
            clock: Millisecond clock
        """
        self.max_connections = max_connections
        self.max_per_origin = max_per_origin
        self.max_lifetime_ms = int(max_lifetime_seconds * 1000)
        self.ping_interval_seconds = ping_interval_seconds
        self.queue_size = queue_size
        self._clock = clock

        self._subscriptions: dict[str, Subscription] = {}
        self._per_origin: Counter[str] = Counter()
        self._liveness_task: asyncio.Task[None] | None = None

        self._logger = get_logger("gridplace.broadcaster")

    def count(self) -> int:
        """Current number of live subscriptions."""
        return len(self._subscriptions)

    def count_for_origin(self, origin: str) -> int:
        return self._per_origin.get(origin, 0)

    def subscribe(self, origin: str) -> Subscription:
        """Register a new observer.

        The new subscriber receives a ``connected`` frame; everyone receives
        the updated ``viewers`` count.

        Raises:
            CapacityExceededError: If the global cap is reached
            PerOriginLimitExceededError: If the origin's cap is reached
        """
        if len(self._subscriptions) >= self.max_connections:
            self._logger.warning(
                "Subscription rejected: at capacity",
                origin=origin,
                limit=self.max_connections,
            )
            raise CapacityExceededError(self.max_connections)

        if self.count_for_origin(origin) >= self.max_per_origin:
            self._logger.warning(
                "Subscription rejected: per-origin limit",
                origin=origin,
                limit=self.max_per_origin,
            )
            raise PerOriginLimitExceededError(origin, self.max_per_origin)

        now = self._clock()
        subscription = Subscription(origin, now, self.queue_size)
        self._subscriptions[subscription.id] = subscription
        self._per_origin[origin] += 1
        update_live_viewers(self.count())

        subscription.offer(
            {
                "type": "connected",
                "message": "Connected to live canvas updates",
                "liveViewerCount": self.count(),
                "timestamp": now,
            }
        )
        self._logger.info(
            "Observer subscribed",
            subscription_id=subscription.id,
            origin=origin,
            viewers=self.count(),
        )

        self.publish(self._viewers_event())
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove an observer. Safe to call any number of times."""
        if not self._remove(subscription, "closed"):
            return
        self.publish(self._viewers_event())

    def publish(self, event: ChangeEvent) -> int:
        """Offer an event to every live subscriber without waiting.

        Subscribers that cannot accept the event are removed, and the
        remaining ones are told the new viewer count.

        Returns:
            Number of subscribers that accepted the event
        """
        delivered, failed = self._fan_out(event)
        while failed:
            for subscription in failed:
                self._remove(subscription, "queue_full")
            _, failed = self._fan_out(self._viewers_event())
        return delivered

    def _fan_out(self, event: ChangeEvent) -> tuple[int, list[Subscription]]:
        delivered = 0
        failed: list[Subscription] = []
        for subscription in list(self._subscriptions.values()):
            if subscription.offer(event):
                delivered += 1
            else:
                failed.append(subscription)
        return delivered, failed

    def _remove(self, subscription: Subscription, reason: str) -> bool:
        if self._subscriptions.pop(subscription.id, None) is None:
            subscription.close(reason)
            return False

        self._per_origin[subscription.origin] -= 1
        if self._per_origin[subscription.origin] <= 0:
            del self._per_origin[subscription.origin]

        subscription.close(reason)
        update_live_viewers(self.count())
        if reason in ("queue_full", "expired"):
            record_broadcast_drop(reason)

        self._logger.info(
            "Observer removed",
            subscription_id=subscription.id,
            origin=subscription.origin,
            reason=reason,
            viewers=self.count(),
        )
        return True

    def _viewers_event(self) -> ChangeEvent:
        return {
            "type": "viewers",
            "liveViewerCount": self.count(),
            "timestamp": self._clock(),
        }

    def tick(self) -> int:
        """Run one liveness pass: reap expired subscriptions, then ping.

        Returns:
            Number of subscriptions reaped for exceeding their lifetime
        """
        now = self._clock()
        expired = [
            s
            for s in self._subscriptions.values()
            if now - s.connected_at >= self.max_lifetime_ms
        ]
        for subscription in expired:
            self._remove(subscription, "expired")

        self.publish({"type": "ping", "timestamp": now})
        if expired:
            self.publish(self._viewers_event())
        return len(expired)

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval_seconds)
            try:
                self.tick()
            except Exception as e:
                self._logger.error(
                    "Liveness pass failed", error=str(e), error_type=type(e).__name__
                )

    async def start(self) -> None:
        """Start the liveness loop. No-op if already running."""
        if self._liveness_task is None or self._liveness_task.done():
            self._liveness_task = asyncio.create_task(self._liveness_loop())
            self._logger.info(
                "Broadcaster started",
                ping_interval_seconds=self.ping_interval_seconds,
                max_connections=self.max_connections,
                max_per_origin=self.max_per_origin,
            )

    async def shutdown(self) -> None:
        """Stop the liveness loop and close every subscription."""
        if self._liveness_task is not None:
            self._liveness_task.cancel()
            try:
                await self._liveness_task
            except asyncio.CancelledError:
                pass
            self._liveness_task = None

        for subscription in list(self._subscriptions.values()):
            self._remove(subscription, "shutdown")

        self._logger.info("Broadcaster shut down")
