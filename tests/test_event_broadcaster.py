import asyncio

import pytest

from modstream.datatypes.event_datatypes import WARNING, EventDraft, ModerationEvent
from modstream.events.event_broadcaster import EventBroadcaster
from modstream.events.event_log import EventLog


def event(sequence_id: int) -> ModerationEvent:
    return ModerationEvent(
        sequence_id=sequence_id,
        type=WARNING,
        guild_id="1",
        subject_id="100",
        moderator_id="900",
        reason="test",
        timestamp=sequence_id,
    )


def ids(events) -> list[int]:
    return [e.sequence_id for e in events]


@pytest.mark.asyncio
async def test_subscriber_gets_replay_then_live_events(db) -> None:
    log = EventLog(db, max_page_size=500)
    await log.open()
    broadcaster = EventBroadcaster(history_size=100)
    log.add_listener(broadcaster.publish)

    for i in range(150):
        await log.append(EventDraft(WARNING, "1", "100", "900", f"#{i}", i))

    subscription = broadcaster.subscribe()
    await log.append(EventDraft(WARNING, "1", "100", "900", "live", 151))
    await log.append(EventDraft(WARNING, "1", "100", "900", "live", 152))

    assert ids(subscription.drain()) == list(range(51, 153))


def test_rehydrate_sorts_and_trims() -> None:
    broadcaster = EventBroadcaster(history_size=3)

    broadcaster.rehydrate([event(5), event(2), event(4), event(3)])

    assert ids(broadcaster.get_recent_history()) == [3, 4, 5]


def test_get_recent_history_limits() -> None:
    broadcaster = EventBroadcaster(history_size=10)
    for i in range(1, 8):
        broadcaster.publish(event(i))

    assert ids(broadcaster.get_recent_history(3)) == [5, 6, 7]
    assert ids(broadcaster.get_recent_history(50)) == list(range(1, 8))
    assert broadcaster.get_recent_history(0) == []


def test_out_of_order_event_is_ignored() -> None:
    broadcaster = EventBroadcaster()
    subscription = broadcaster.subscribe()

    broadcaster.publish(event(2))
    broadcaster.publish(event(1))
    broadcaster.publish(event(2))
    broadcaster.publish(event(3))

    assert ids(subscription.drain()) == [2, 3]
    assert ids(broadcaster.get_recent_history()) == [2, 3]


def test_full_queue_drops_only_for_slow_subscriber() -> None:
    broadcaster = EventBroadcaster(history_size=2, subscriber_queue_size=2)
    slow = broadcaster.subscribe()
    fast = broadcaster.subscribe()

    broadcaster.publish(event(1))
    broadcaster.publish(event(2))
    assert ids(fast.drain()) == [1, 2]
    broadcaster.publish(event(3))

    assert ids(slow.drain()) == [1, 2]
    assert slow.dropped == 1
    assert ids(fast.drain()) == [3]
    assert fast.dropped == 0


def test_unsubscribe_stops_delivery() -> None:
    broadcaster = EventBroadcaster()
    subscription = broadcaster.subscribe()
    assert broadcaster.subscriber_count == 1

    subscription.close()
    broadcaster.publish(event(1))

    assert broadcaster.subscriber_count == 0
    assert subscription.pending() == 0


@pytest.mark.asyncio
async def test_async_iteration_stops_after_close() -> None:
    broadcaster = EventBroadcaster()
    broadcaster.publish(event(1))
    subscription = broadcaster.subscribe()
    broadcaster.publish(event(2))
    subscription.close()

    received = [e async for e in subscription]

    assert ids(received) == [1, 2]


@pytest.mark.asyncio
async def test_get_waits_for_next_event() -> None:
    broadcaster = EventBroadcaster()
    subscription = broadcaster.subscribe()

    waiter = asyncio.create_task(subscription.get())
    await asyncio.sleep(0)
    broadcaster.publish(event(7))

    assert (await asyncio.wait_for(waiter, timeout=1)).sequence_id == 7


def test_history_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        EventBroadcaster(history_size=0)


@pytest.mark.asyncio
async def test_close_wakes_waiting_consumer() -> None:
    broadcaster = EventBroadcaster()
    subscription = broadcaster.subscribe()

    async def consume():
        return [e async for e in subscription]

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)
    broadcaster.publish(event(1))
    await asyncio.sleep(0)
    subscription.close()

    assert ids(await asyncio.wait_for(consumer, timeout=1)) == [1]
    assert await subscription.get() is None
