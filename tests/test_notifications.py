"""Tests for the owner notification hub."""

import asyncio

import pytest

from barback.core.notifications import NotificationHub


@pytest.fixture
def hub(clock):
    return NotificationHub(capacity=5, clock=clock)


def publish_many(hub, count, kind="grant_requested"):
    return [hub.publish(kind, {"n": n}, title=f"event {n}") for n in range(count)]


class TestHistory:
    def test_newest_first(self, hub):
        events = publish_many(hub, 3)

        assert [e.id for e in hub.list(10)] == [e.id for e in reversed(events)]

    def test_capacity_keeps_newest(self, hub):
        events = publish_many(hub, 8)

        retained = hub.list(100)
        assert [e.id for e in retained] == [e.id for e in reversed(events[3:])]
        assert hub.unread_count() == 5

    def test_limit(self, hub):
        publish_many(hub, 4)
        assert len(hub.list(2)) == 2
        assert hub.list(0) == []

    def test_publish_without_subscribers_is_retained(self, hub, clock):
        event = hub.publish("grant_resolved", {"request_id": "r1"}, priority="medium")

        assert hub.list(1)[0].id == event.id
        assert event.created_at == clock()
        assert event.read is False

    def test_payload_is_copied(self, hub):
        payload = {"item": {"id": "pappy-23"}}
        hub.publish("grant_requested", payload)
        payload["item"]["id"] = "tampered"

        assert hub.list(1)[0].payload == {"item": {"id": "pappy-23"}}

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            NotificationHub(capacity=0)

    def test_to_dict(self, hub, clock):
        event = hub.publish("grant_requested", {"request_id": "r1"}, title="New Ultra Shelf Request")
        data = event.to_dict()

        assert data["kind"] == "grant_requested"
        assert data["created_at"] == clock().isoformat()
        assert data["payload"] == {"request_id": "r1"}


class TestReadState:
    def test_mark_read(self, hub):
        first, second = publish_many(hub, 2)

        assert hub.mark_read(first.id) is True
        assert hub.unread_count() == 1
        assert [e.id for e in hub.list(10, unread_only=True)] == [second.id]
        assert hub.list(10)[1].read is True

    def test_mark_read_twice_counts_once(self, hub):
        first, _ = publish_many(hub, 2)
        hub.mark_read(first.id)
        hub.mark_read(first.id)

        assert hub.unread_count() == 1

    def test_mark_read_unknown(self, hub):
        publish_many(hub, 1)

        assert hub.mark_read("nope") is False
        assert hub.unread_count() == 1

    def test_mark_read_evicted_event(self, hub):
        events = publish_many(hub, 6)

        assert hub.mark_read(events[0].id) is False

    def test_mark_all_read(self, hub):
        publish_many(hub, 3)

        assert hub.mark_all_read() == 3
        assert hub.unread_count() == 0
        assert hub.list(10, unread_only=True) == []
        assert all(e.read for e in hub.list(10))

    def test_unread_count_tracks_evictions(self, clock):
        hub = NotificationHub(capacity=2, clock=clock)
        a, b = publish_many(hub, 2)
        hub.mark_read(a.id)
        hub.publish("grant_resolved")
        assert hub.unread_count() == 2

        hub.publish("grant_resolved")
        assert hub.unread_count() == 2
        assert all(not e.read for e in hub.list(10))

    def test_stored_events_never_mutate(self, hub):
        event = hub.publish("grant_requested")
        hub.mark_read(event.id)

        assert event.read is False
        assert hub.list(1)[0].read is True


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_subscriber_sees_only_later_events(self, hub):
        hub.publish("grant_requested", {"n": "before"})
        received = []
        hub.subscribe(received.append)
        later = hub.publish("grant_resolved", {"n": "after"})
        await hub.flush()

        assert [e.id for e in received] == [later.id]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, hub):
        received = []
        unsubscribe = hub.subscribe(received.append)
        hub.publish("grant_requested")
        await hub.flush()
        unsubscribe()
        unsubscribe()
        hub.publish("grant_resolved")
        await hub.flush()

        assert len(received) == 1
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_coroutine_callbacks(self, hub):
        received = []

        async def on_event(event):
            await asyncio.sleep(0)
            received.append(event.kind)

        hub.subscribe(on_event)
        publish_many(hub, 3)
        await hub.flush()

        assert received == ["grant_requested"] * 3

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self, hub):
        received = []

        def broken(event):
            raise RuntimeError("observer bug")

        hub.subscribe(broken)
        hub.subscribe(received.append)
        publish_many(hub, 2)
        await hub.flush()

        assert len(received) == 2
        assert hub.subscriber_count == 2

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_block_others(self, hub):
        gate = asyncio.Event()
        fast_done = asyncio.Event()
        fast = []

        async def slow(event):
            await gate.wait()

        def quick(event):
            fast.append(event)
            if len(fast) == 3:
                fast_done.set()

        hub.subscribe(slow)
        hub.subscribe(quick)
        publish_many(hub, 3)

        await asyncio.wait_for(fast_done.wait(), timeout=1)
        gate.set()
        await hub.flush()

    @pytest.mark.asyncio
    async def test_overflow_drops_for_that_subscriber_only(self, clock):
        hub = NotificationHub(capacity=10, subscriber_buffer_size=1, clock=clock)
        received = []
        hub.subscribe(received.append)
        events = publish_many(hub, 3)
        await hub.flush()

        assert [e.id for e in received] == [events[0].id]
        assert len(hub.list(10)) == 3

    @pytest.mark.asyncio
    async def test_close_stops_delivery(self, hub):
        hub.subscribe(lambda event: None)
        hub.subscribe(lambda event: None)
        await hub.close()

        assert hub.subscriber_count == 0
        hub.publish("grant_requested")
