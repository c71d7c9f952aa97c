"""Tests for the per-project event broker and activity recording."""

import asyncio

import pytest

from abap_migration.migration.activity import ActivityRecorder
from abap_migration.migration.events import Event, EventBroker


@pytest.mark.asyncio
async def test_publish_fans_out_to_every_subscriber_of_the_project():
    broker = EventBroker()
    first = broker.subscribe("p1")
    second = broker.subscribe("p1")
    other = broker.subscribe("p2")

    delivered = broker.publish("p1", "project_status", {"status": "in_progress"})

    assert delivered == 2
    assert await first.get() == Event("project_status", {"status": "in_progress"})
    assert await second.get() == Event("project_status", {"status": "in_progress"})
    assert other.queue.empty()


def test_publish_without_subscribers_is_a_no_op():
    assert EventBroker().publish("p1", "project_status", {"status": "paused"}) == 0


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValueError):
        EventBroker().publish("p1", "something_else", {})


@pytest.mark.asyncio
async def test_full_queue_drops_events_without_blocking():
    broker = EventBroker(queue_size=2)
    slow = broker.subscribe("p1")
    fast = broker.subscribe("p1")

    for i in range(3):
        broker.publish("p1", "sub_object_update", {"unit_id": str(i), "status": "pending"})
        if i == 0:
            await fast.get()

    assert slow.queue.qsize() == 2
    assert fast.queue.qsize() == 2
    assert (await slow.get()).payload["unit_id"] == "0"


@pytest.mark.asyncio
async def test_closed_subscription_stops_receiving():
    broker = EventBroker()
    with broker.subscribe("p1") as subscription:
        assert broker.subscriber_count("p1") == 1
    assert broker.subscriber_count("p1") == 0

    broker.publish("p1", "project_status", {"status": "completed"})
    assert subscription.queue.empty()


@pytest.mark.asyncio
async def test_subscription_iterates_events():
    broker = EventBroker()
    subscription = broker.subscribe("p1")
    broker.publish("p1", "discovery_complete", {"unit_count": 3, "object_count": 1})

    async def first_event():
        async for event in subscription:
            return event

    event = await asyncio.wait_for(first_event(), timeout=1)
    assert event.to_dict() == {
        "type": "discovery_complete",
        "payload": {"unit_count": 3, "object_count": 1},
    }


@pytest.mark.asyncio
async def test_activity_recorder_persists_and_publishes(store, broker, project):
    subscription = broker.subscribe(project.id)
    activity = ActivityRecorder(store, broker, project.id)

    entry = activity.record("info", "hello")
    activity.sub_object_status("u1", "in_progress")

    logged = store.list_activity(project.id)
    assert [e.content for e in logged] == ["hello"]

    published = await subscription.get()
    assert published.type == "activity"
    assert published.payload["id"] == entry.id
    assert published.payload["content"] == "hello"
    assert published.payload["type"] == "info"

    status = await subscription.get()
    assert status == Event("sub_object_update", {"unit_id": "u1", "status": "in_progress"})
