"""Tests for the entitlement broker and the SSE event stream generator."""

import asyncio
import json
import uuid

import pytest

from quillsign.api.v1.entitlements import entitlement_event_stream
from quillsign.models.entitlement import Entitlement
from quillsign.services.entitlement_events import EntitlementBroker, EntitlementSnapshot, SubscriptionClosed

FREE = EntitlementSnapshot.from_entitlement(None)
PRO = EntitlementSnapshot(status="active", tier="pro", is_active=True, is_pro=True, subscription_id="sub_1")
CANCELED = EntitlementSnapshot(status="canceled", tier="free", is_active=False, is_pro=False, subscription_id="sub_1")


class _FakeRequest:
    """Reports a client disconnect after ``connected_checks`` calls."""

    def __init__(self, connected_checks: int):
        self.connected_checks = connected_checks
        self.calls = 0

    async def is_disconnected(self) -> bool:
        self.calls += 1
        return self.calls > self.connected_checks


class TestEntitlementSnapshot:
    def test_no_record(self):
        assert FREE.status == "none"
        assert FREE.tier == "free"
        assert FREE.is_active is False
        assert FREE.is_pro is False

    def test_from_record(self):
        entitlement = Entitlement(
            status="trialing",
            subscription_id="sub_9",
            current_period_end=1702600000,
            cancel_at_period_end=True,
        )
        snapshot = EntitlementSnapshot.from_entitlement(entitlement)
        assert snapshot.to_dict() == {
            "status": "trialing",
            "tier": "pro",
            "is_active": True,
            "is_pro": True,
            "subscription_id": "sub_9",
            "current_period_end": 1702600000,
            "cancel_at_period_end": True,
        }


class TestEntitlementBroker:
    async def test_publish_reaches_only_that_user(self):
        broker = EntitlementBroker()
        user_a, user_b = uuid.uuid4(), uuid.uuid4()
        sub_a = broker.subscribe(user_a)
        sub_b = broker.subscribe(user_b)

        assert broker.publish(user_a, PRO) == 1
        assert await sub_a.get(timeout=1) == PRO
        with pytest.raises(TimeoutError):
            await sub_b.get(timeout=0.01)

    async def test_publish_without_listeners(self):
        assert EntitlementBroker().publish(uuid.uuid4(), PRO) == 0

    async def test_slow_reader_gets_latest(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        subscription = broker.subscribe(user_id)

        broker.publish(user_id, PRO)
        broker.publish(user_id, CANCELED)

        assert await subscription.get(timeout=1) == CANCELED

    async def test_context_manager_unsubscribes(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        async with broker.subscribe(user_id) as subscription:
            assert broker.subscriber_count(user_id) == 1
            broker.publish(user_id, PRO)
            assert await subscription.__anext__() == PRO
        assert broker.subscriber_count(user_id) == 0
        assert subscription.closed is True

    async def test_close_is_idempotent_and_ends_iteration(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        subscription = broker.subscribe(user_id)
        subscription.close()
        subscription.close()
        with pytest.raises(StopAsyncIteration):
            await subscription.__anext__()

    async def test_close_wakes_waiting_reader(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        subscription = broker.subscribe(user_id)

        async def _drain():
            return [snapshot async for snapshot in subscription]

        reader = asyncio.create_task(_drain())
        await asyncio.sleep(0.01)
        subscription.close()

        assert await asyncio.wait_for(reader, timeout=1) == []

    async def test_get_after_close_raises(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        subscription = broker.subscribe(user_id)
        broker.publish(user_id, PRO)
        subscription.close()
        with pytest.raises(SubscriptionClosed):
            await subscription.get(timeout=1)

    async def test_close_user_ends_only_that_users_subscriptions(self):
        broker = EntitlementBroker()
        user_id, other_id = uuid.uuid4(), uuid.uuid4()
        first = broker.subscribe(user_id)
        second = broker.subscribe(user_id)
        other = broker.subscribe(other_id)

        assert broker.close_user(user_id) == 2
        assert first.closed and second.closed
        assert broker.subscriber_count(user_id) == 0
        assert other.closed is False
        assert broker.close_user(user_id) == 0

    async def test_iterates_published_snapshots(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        subscription = broker.subscribe(user_id)

        async def _publish_later():
            await asyncio.sleep(0.01)
            broker.publish(user_id, CANCELED)

        task = asyncio.create_task(_publish_later())
        async for snapshot in subscription:
            assert snapshot == CANCELED
            subscription.close()
        await task


class TestEntitlementEventStream:
    async def test_initial_then_published_then_disconnect(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        subscription = broker.subscribe(user_id)
        stream = entitlement_event_stream(_FakeRequest(connected_checks=1), subscription, FREE, poll_seconds=1)

        first = await stream.__anext__()
        assert first["event"] == "entitlement"
        assert json.loads(first["data"])["status"] == "none"

        broker.publish(user_id, PRO)
        second = await stream.__anext__()
        assert json.loads(second["data"])["tier"] == "pro"

        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert broker.subscriber_count(user_id) == 0

    async def test_idle_stream_keeps_polling(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        request = _FakeRequest(connected_checks=2)
        stream = entitlement_event_stream(request, broker.subscribe(user_id), FREE, poll_seconds=0.01)

        await stream.__anext__()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert request.calls == 3
        assert broker.subscriber_count(user_id) == 0

    async def test_closing_stream_unsubscribes(self):
        broker = EntitlementBroker()
        user_id = uuid.uuid4()
        stream = entitlement_event_stream(_FakeRequest(connected_checks=10), broker.subscribe(user_id), FREE)

        await stream.__anext__()
        await stream.aclose()
        assert broker.subscriber_count(user_id) == 0
