"""Live entitlement updates — typed publish/subscribe keyed by user.

Webhook and admin paths publish a fresh ``EntitlementSnapshot`` after their
transaction commits; the SSE stream endpoint subscribes on behalf of a signed-in
client and unsubscribes when the client goes away or the user logs out.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass

from quillsign.billing.plans import NO_SUBSCRIPTION, Tier, is_active_status, tier_for_status
from quillsign.models.entitlement import Entitlement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementSnapshot:
    """What the UI needs to gate features for one user."""

    status: str
    tier: str
    is_active: bool
    is_pro: bool
    subscription_id: str | None = None
    current_period_end: int | None = None
    cancel_at_period_end: bool = False

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement | None) -> "EntitlementSnapshot":
        """Snapshot a record; no record means the default free tier."""
        if entitlement is None:
            return cls(
                status=NO_SUBSCRIPTION,
                tier=Tier.FREE.value,
                is_active=False,
                is_pro=False,
            )
        tier = tier_for_status(entitlement.status)
        return cls(
            status=entitlement.status,
            tier=tier.value,
            is_active=is_active_status(entitlement.status),
            is_pro=tier is Tier.PRO,
            subscription_id=entitlement.subscription_id,
            current_period_end=entitlement.current_period_end,
            cancel_at_period_end=entitlement.cancel_at_period_end,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class SubscriptionClosed(Exception):
    """Raised to a reader whose subscription was closed (stream ended, user logged out)."""


# Queued by close() so a reader blocked in get() wakes up
_CLOSED = object()


class EntitlementSubscription:
    """One listener's view of a user's entitlement changes.

    Only the newest snapshot is kept; a slow reader skips intermediate states.
    """

    def __init__(self, broker: "EntitlementBroker", user_id: uuid.UUID):
        self.user_id = user_id
        self._broker = broker
        self._queue: asyncio.Queue[EntitlementSnapshot | object] = asyncio.Queue(maxsize=1)
        self.closed = False

    def _deliver(self, item: EntitlementSnapshot | object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    async def get(self, timeout: float | None = None) -> EntitlementSnapshot:
        """Wait for the next snapshot.

        Raises:
            TimeoutError: Nothing arrived within ``timeout`` seconds.
            SubscriptionClosed: The subscription is closed, or was closed while waiting.
        """
        if self.closed:
            raise SubscriptionClosed(str(self.user_id))
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise SubscriptionClosed(str(self.user_id))
        return item

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._broker._remove(self)
            self._deliver(_CLOSED)

    def __aiter__(self) -> "EntitlementSubscription":
        return self

    async def __anext__(self) -> EntitlementSnapshot:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None

    async def __aenter__(self) -> "EntitlementSubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EntitlementBroker:
    """In-process fan-out of entitlement snapshots to subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[uuid.UUID, set[EntitlementSubscription]] = defaultdict(set)

    def subscribe(self, user_id: uuid.UUID) -> EntitlementSubscription:
        subscription = EntitlementSubscription(self, user_id)
        self._subscribers[user_id].add(subscription)
        logger.debug("Entitlement listener added for user %s", user_id)
        return subscription

    def publish(self, user_id: uuid.UUID, snapshot: EntitlementSnapshot) -> int:
        """Deliver ``snapshot`` to the user's listeners. Returns how many received it."""
        listeners = list(self._subscribers.get(user_id, ()))
        for subscription in listeners:
            subscription._deliver(snapshot)
        if listeners:
            logger.debug("Published %s to %d listener(s) for user %s", snapshot.status, len(listeners), user_id)
        return len(listeners)

    def close_user(self, user_id: uuid.UUID) -> int:
        """End every live subscription for a user (on logout). Returns how many were closed."""
        listeners = list(self._subscribers.get(user_id, ()))
        for subscription in listeners:
            subscription.close()
        if listeners:
            logger.info("Closed %d entitlement listener(s) for user %s", len(listeners), user_id)
        return len(listeners)

    def subscriber_count(self, user_id: uuid.UUID) -> int:
        return len(self._subscribers.get(user_id, ()))

    def _remove(self, subscription: EntitlementSubscription) -> None:
        listeners = self._subscribers.get(subscription.user_id)
        if not listeners:
            return
        listeners.discard(subscription)
        if not listeners:
            del self._subscribers[subscription.user_id]
        logger.debug("Entitlement listener removed for user %s", subscription.user_id)


entitlement_broker = EntitlementBroker()
