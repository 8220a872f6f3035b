import pytest

from realtime.bus import EventBus, Notification
from realtime.sse import format_sse


@pytest.mark.asyncio
async def test_slow_subscriber_drops_oldest() -> None:
    bus = EventBus(queue_size=2)
    queue = await bus.subscribe()
    for i in range(3):
        await bus.publish(Notification(type="clock.tick", data={"n": i}))
    assert [queue.get_nowait().data["n"] for _ in range(2)] == [1, 2]
    assert bus.dropped == 1
    await bus.unsubscribe(queue)
    assert bus.subscriber_count == 0


def test_format_sse() -> None:
    text = format_sse(Notification(type="feed.status", data={"status": "ready"}))
    assert text == 'event: feed.status\ndata: {"status":"ready"}\n\n'


@pytest.mark.asyncio
async def test_topic_subscription_skips_other_topics() -> None:
    bus = EventBus()
    async with (
        bus.subscription(["weather", "feed"]) as narrow,
        bus.subscription() as everything,
    ):
        delivered = await bus.publish(Notification(type="clock.tick", data={}))
        await bus.publish(Notification(type="weather.updated", data={"conditions": []}))
        await bus.publish(Notification(type="feed.status", data={"status": "loading"}))

        assert delivered == 1
        assert [narrow.get_nowait().type for _ in range(narrow.qsize())] == [
            "weather.updated",
            "feed.status",
        ]
        assert everything.qsize() == 3
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_empty_topic_list_means_everything() -> None:
    bus = EventBus()
    async with bus.subscription([]) as queue:
        await bus.publish(Notification(type="clock.tick", data={}))
        assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_dropped_notifications_are_counted() -> None:
    bus = EventBus(queue_size=1)
    async with bus.subscription():
        for i in range(4):
            await bus.publish(Notification(type="clock.tick", data={"n": i}))
    assert bus.dropped == 3


def test_notification_topic() -> None:
    assert Notification(type="feed.updated", data={}).topic == "feed"
    assert Notification(type="heartbeat", data={}).topic == "heartbeat"
