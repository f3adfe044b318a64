"""
In-process change notifications.

Every committed write to a synced table is published as a coarse
"(table, owner) changed" event with no payload. Subscribers are expected
to refetch what they need; the feed carries no diff.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe(); call unsubscribe() on teardown."""

    table: str
    owner_id: str
    callback: ChangeCallback
    _feed: "ChangeFeed | None" = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._feed is not None

    def unsubscribe(self) -> None:
        if self._feed is not None:
            self._feed._remove(self)
            self._feed = None


class ChangeFeed:
    """Fan-out of table change events, scoped by owner id."""

    def __init__(self) -> None:
        self._subscribers: dict[tuple[str, str], list[Subscription]] = defaultdict(list)

    def subscribe(self, table: str, owner_id: str, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(table=table, owner_id=owner_id, callback=callback, _feed=self)
        self._subscribers[(table, owner_id)].append(subscription)
        return subscription

    def publish(self, table: str, owner_id: str) -> int:
        """
        Notify every subscriber of (table, owner_id).

        A failing subscriber is logged and does not stop delivery to the
        others, nor does it fail the write that triggered the event.

        Returns:
            Number of subscribers notified.
        """
        subscribers = list(self._subscribers.get((table, owner_id), ()))
        for subscription in subscribers:
            try:
                subscription.callback()
            except Exception:
                logger.exception("Change subscriber for %s failed", table)
        return len(subscribers)

    def subscriber_count(self, table: str, owner_id: str) -> int:
        return len(self._subscribers.get((table, owner_id), ()))

    def _remove(self, subscription: Subscription) -> None:
        key = (subscription.table, subscription.owner_id)
        subscribers = self._subscribers.get(key)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[key]
