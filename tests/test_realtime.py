import threading

import anyio
import pytest

from realtime import ChangeEvent, ChangeFeed

pytestmark = pytest.mark.anyio


async def next_event(subscription, timeout=1):
    with anyio.fail_after(timeout):
        return await subscription.events().__anext__()


async def test_subscriber_gets_events_for_its_tables_only():
    feed = ChangeFeed()
    donations = feed.subscribe("donations")
    messages = feed.subscribe("contact_messages")

    feed.publish("donations", "INSERT", 1)
    feed.publish("contact_messages", "INSERT", 7)

    assert await next_event(donations) == ChangeEvent("donations", "INSERT", 1)
    assert await next_event(messages) == ChangeEvent("contact_messages", "INSERT", 7)
    assert donations.drain() == 0


async def test_subscribe_with_no_tables_watches_everything():
    feed = ChangeFeed()
    everything = feed.subscribe()
    feed.publish("profiles", "UPDATE", 3)
    assert (await next_event(everything)).table == "profiles"


async def test_unknown_table_is_rejected():
    with pytest.raises(ValueError):
        ChangeFeed().subscribe("donatoins")


async def test_iteration_can_be_restarted():
    feed = ChangeFeed()
    subscription = feed.subscribe("donations")
    for i in range(3):
        feed.publish("donations", "UPDATE", i)

    seen = []
    async for event in subscription:
        seen.append(event.record_id)
        break
    async for event in subscription:
        seen.append(event.record_id)
        if len(seen) == 3:
            break

    assert seen == [0, 1, 2]


async def test_close_ends_iteration_and_unsubscribes():
    feed = ChangeFeed()
    subscription = feed.subscribe("donations")
    assert feed.subscriber_count == 1

    subscription.close()
    feed.publish("donations", "INSERT", 1)

    with anyio.fail_after(1):
        events = [e async for e in subscription]
    assert events == []
    assert feed.subscriber_count == 0

    # a second close is harmless
    subscription.close()


async def test_context_manager_closes():
    feed = ChangeFeed()
    async with feed.subscribe("donations") as subscription:
        assert feed.subscriber_count == 1
    assert subscription.closed
    assert feed.subscriber_count == 0


async def test_publish_from_worker_thread():
    feed = ChangeFeed()
    subscription = feed.subscribe("donations")

    worker = threading.Thread(target=feed.publish, args=("donations", "UPDATE", 42))
    worker.start()
    worker.join()

    assert (await next_event(subscription)).record_id == 42


async def test_drain_drops_queued_events():
    feed = ChangeFeed()
    subscription = feed.subscribe("donations")
    for i in range(5):
        feed.publish("donations", "UPDATE", i)

    first = await next_event(subscription)
    assert first.record_id == 0
    assert subscription.drain() == 4
    assert subscription.drain() == 0
