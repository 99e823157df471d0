"""Tests for the fan-out broadcaster: delivery, isolation, heartbeats, lifecycle."""
import asyncio

import pytest

from jamqueue.services.broadcaster import HEARTBEAT, JamBroadcaster


async def _next(subscription, timeout: float = 1.0):
    return await asyncio.wait_for(subscription.queue.get(), timeout)


class TestDelivery:
    """Messages reach every live subscriber of the channel, in publish order."""

    @pytest.mark.asyncio
    async def test_publish_in_order(self):
        broadcaster = JamBroadcaster()
        first = await broadcaster.subscribe("evt", "jam")
        second = await broadcaster.subscribe("evt", "jam")

        for i in range(3):
            assert broadcaster.publish("evt", "jam", "song_created", {"song_id": f"s{i}"}) == 2

        for subscription in (first, second):
            received = [(await _next(subscription)).decoded() for _ in range(3)]
            assert received == [
                {"type": "song_created", "payload": {"song_id": f"s{i}"}} for i in range(3)
            ]
        broadcaster.shutdown()

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self):
        broadcaster = JamBroadcaster()
        here = await broadcaster.subscribe("evt", "jam-1")
        await broadcaster.subscribe("evt", "jam-2")

        assert broadcaster.publish("evt", "jam-1", "songs_opened", {"song_ids": []}) == 1
        assert broadcaster.publish("other", "jam-1", "songs_opened", {"song_ids": []}) == 0
        message = await _next(here)
        assert message.type == "songs_opened"
        assert here.queue.empty()
        broadcaster.shutdown()

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread(self):
        broadcaster = JamBroadcaster()
        subscription = await broadcaster.subscribe("evt", "jam")
        delivered = await asyncio.to_thread(
            broadcaster.publish, "evt", "jam", "song_deleted", {"song_id": "x"},
        )
        assert delivered == 1
        assert (await _next(subscription)).decoded()["payload"] == {"song_id": "x"}
        broadcaster.shutdown()

    def test_publish_without_subscribers(self):
        assert JamBroadcaster().publish("evt", "jam", "song_created", {}) == 0


class TestFailures:
    """A failing subscriber is dropped without affecting the others."""

    @pytest.mark.asyncio
    async def test_closed_handle_is_removed(self):
        broadcaster = JamBroadcaster()
        healthy = await broadcaster.subscribe("evt", "jam")
        broken = await broadcaster.subscribe("evt", "jam")
        broken.close()

        assert broadcaster.publish("evt", "jam", "song_created", {"song_id": "a"}) == 1
        assert broadcaster.subscriber_count("evt", "jam") == 1
        assert (await _next(healthy)).decoded()["payload"] == {"song_id": "a"}
        broadcaster.shutdown()


class TestLifecycle:
    """Heartbeats, unsubscribe and shutdown."""

    @pytest.mark.asyncio
    async def test_heartbeat_without_publishes(self):
        broadcaster = JamBroadcaster(heartbeat_interval=0.01)
        subscription = await broadcaster.subscribe("evt", "jam")
        message = await _next(subscription)
        assert message.type == HEARTBEAT
        assert message.decoded() == {}
        broadcaster.unsubscribe(subscription)

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self):
        broadcaster = JamBroadcaster()
        subscription = await broadcaster.subscribe("evt", "jam")
        broadcaster.unsubscribe(subscription)
        broadcaster.unsubscribe(subscription)

        assert subscription.closed
        assert broadcaster.subscriber_count("evt", "jam") == 0
        assert broadcaster.publish("evt", "jam", "song_created", {}) == 0
        received = [m async for m in subscription.messages()]
        assert received == []

    @pytest.mark.asyncio
    async def test_messages_end_on_close(self):
        broadcaster = JamBroadcaster()
        subscription = await broadcaster.subscribe("evt", "jam")
        broadcaster.publish("evt", "jam", "song_created", {"song_id": "a"})
        broadcaster.unsubscribe(subscription)

        received = [m.type async for m in subscription.messages()]
        assert received == ["song_created"]

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self):
        broadcaster = JamBroadcaster()
        subscriptions = [await broadcaster.subscribe("evt", f"jam-{i}") for i in range(3)]
        broadcaster.shutdown()

        assert all(s.closed for s in subscriptions)
        for i in range(3):
            assert broadcaster.subscriber_count("evt", f"jam-{i}") == 0
        for subscription in subscriptions:
            assert [m async for m in subscription.messages()] == []
