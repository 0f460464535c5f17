"""
Real-time Location Notifier

Fan-out of ``location:updated`` events to dashboard subscribers. Each
subscriber owns a bounded asyncio.Queue; publishing never blocks. When a
subscriber's queue is full the event is dropped for that slow consumer
only, so delivery is best-effort and at most once.

Events for one subject reach a given subscriber in publish order because
each queue is FIFO and the ingestor publishes while holding the subject's
lock. Nothing is guaranteed across subjects. Dashboards must treat events
as cache-invalidation hints and re-query after reconnecting.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from geotrack.config import settings
from geotrack.services.current_location_cache import CurrentLocationView
from geotrack.utils.metrics import NOTIFIER_EVENTS_DROPPED_TOTAL, NOTIFIER_SUBSCRIBERS

logger = logging.getLogger(__name__)

LOCATION_UPDATED = "location:updated"


@dataclass(frozen=True)
class LocationEvent:
    subject_id: int
    view: CurrentLocationView
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    type: str = LOCATION_UPDATED


@dataclass(eq=False)
class Subscription:
    """A subscriber's queue plus its subject interest (None = every subject)."""

    id: int
    queue: asyncio.Queue
    subject_ids: set[int] | None = None
    dropped: int = 0

    def wants(self, subject_id: int) -> bool:
        return self.subject_ids is None or subject_id in self.subject_ids

    def follow(self, subject_id: int) -> None:
        # Following a specific subject narrows an "every subject" subscription
        if self.subject_ids is None:
            self.subject_ids = {subject_id}
        else:
            self.subject_ids.add(subject_id)

    def unfollow(self, subject_id: int) -> None:
        if self.subject_ids is None:
            return
        self.subject_ids.discard(subject_id)

    async def get(self) -> LocationEvent:
        return await self.queue.get()


class RealtimeNotifier:
    def __init__(self, max_queue_size: int | None = None) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._max_queue_size = max_queue_size or settings.notifier_queue_size

    # ── Public API ────────────────────────────────────────────────────────────

    def subscribe(self, subject_ids: set[int] | list[int] | None = None) -> Subscription:
        """Register a subscriber.

        The caller reads events from ``subscription.get()`` and must call
        ``unsubscribe`` in a ``finally`` block.
        """
        subscription = Subscription(
            id=next(self._ids),
            queue=asyncio.Queue(maxsize=self._max_queue_size),
            subject_ids=set(subject_ids) if subject_ids is not None else None,
        )
        self._subscriptions[subscription.id] = subscription
        NOTIFIER_SUBSCRIBERS.set(len(self._subscriptions))
        logger.debug("Location subscriber %d added (total: %d)", subscription.id, len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscriber. Unsubscribing twice is harmless."""
        if self._subscriptions.pop(subscription.id, None) is not None:
            NOTIFIER_SUBSCRIBERS.set(len(self._subscriptions))
            logger.debug("Location subscriber %d removed (total: %d)", subscription.id, len(self._subscriptions))

    def publish(self, subject_id: int, view: CurrentLocationView) -> int:
        """Fire-and-forget broadcast of a subject's new current location.

        Returns the number of subscribers the event was queued for.
        """
        event = LocationEvent(subject_id=subject_id, view=view)
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.wants(subject_id):
                continue
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                subscription.dropped += 1
                NOTIFIER_EVENTS_DROPPED_TOTAL.inc()
                logger.warning(
                    "Location queue full; dropping event for subject %d (subscriber %d)",
                    subject_id,
                    subscription.id,
                )
        return delivered

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def get_stats(self) -> dict:
        return {
            "subscribers": len(self._subscriptions),
            "dropped_events": sum(s.dropped for s in self._subscriptions.values()),
        }


# ============== Global Instance ==============

realtime_notifier = RealtimeNotifier()


def get_realtime_notifier() -> RealtimeNotifier:
    """Get the RealtimeNotifier singleton."""
    return realtime_notifier
