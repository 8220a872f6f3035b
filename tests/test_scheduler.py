import asyncio
from dataclasses import replace
from datetime import UTC, datetime

import httpx
import pytest
from conftest import (
    TIME_BASE,
    FakeMonotonic,
    FakeUpstream,
    json_response,
    load_fixture,
    usgs_url,
)

from app.settings import Settings
from clock.timesync import TimeSyncCache
from ingest.aggregator import EventAggregator
from ingest.fetch import SourceFetcher
from ingest.scheduler import RefreshScheduler
from ingest.sources import usgs_source
from realtime.bus import EventBus
from store.feed_store import FeedStatus, FeedStore


SYSTEM_NOW = datetime(2030, 1, 1, tzinfo=UTC)
SYNCED_AT = datetime(2026, 10, 19, 10, 58, tzinfo=UTC)


def _scheduler(
    upstream: FakeUpstream, settings: Settings, bus: EventBus | None = None
) -> tuple[RefreshScheduler, FeedStore]:
    client = upstream.client()
    bus = bus or EventBus()
    store = FeedStore(bus)
    clock = TimeSyncCache(
        client,
        base_url=TIME_BASE,
        user_agent="test-agent",
        monotonic=FakeMonotonic(),
        system_now=lambda: SYSTEM_NOW,
    )
    scheduler = RefreshScheduler(
        aggregator=EventAggregator(SourceFetcher(client, user_agent="test-agent")),
        store=store,
        clock=clock,
        bus=bus,
        sources=[usgs_source(settings)],
        min_magnitude=settings.min_magnitude,
        cap=settings.feed_cap,
        refresh_interval_seconds=60,
    )
    return scheduler, store


@pytest.mark.asyncio
async def test_refresh_now_publishes_feed(
    upstream: FakeUpstream, settings: Settings
) -> None:
    upstream.json(usgs_url("all_day"), load_fixture("usgs.geojson"))
    upstream.json(f"{TIME_BASE}/timezone/UTC", load_fixture("worldtime_utc.json"))
    scheduler, store = _scheduler(upstream, settings)

    state = await scheduler.refresh_now()

    assert state.status == FeedStatus.READY
    assert [e.id for e in state.feed.events] == ["us7000abcd", "ci40000001"]
    assert state.last_success_at == SYNCED_AT
    assert store.state is state
    assert scheduler.consecutive_failures == 0


@pytest.mark.asyncio
async def test_failed_pass_keeps_last_feed_and_backs_off(
    upstream: FakeUpstream, settings: Settings
) -> None:
    upstream.json(usgs_url("all_day"), load_fixture("usgs.geojson"))
    scheduler, store = _scheduler(upstream, settings)
    good = await scheduler.refresh_now()
    assert scheduler.next_delay_seconds() == 60

    upstream.routes.clear()
    state = await scheduler.refresh_now()

    assert state.status == FeedStatus.ERROR
    assert state.availability == "stale"
    assert "usgs_earthquakes" in (state.error or "")
    assert store.feed is good.feed
    assert scheduler.consecutive_failures == 1
    assert scheduler.next_delay_seconds() == 120

    await scheduler.refresh_now()
    assert scheduler.next_delay_seconds() == 240

    upstream.json(usgs_url("all_day"), load_fixture("usgs.geojson"))
    await scheduler.refresh_now()
    assert scheduler.consecutive_failures == 0
    assert scheduler.next_delay_seconds() == 60


@pytest.mark.asyncio
async def test_manual_refresh_supersedes_inflight_pass(
    upstream: FakeUpstream, settings: Settings
) -> None:
    arrived = asyncio.Event()
    gate = asyncio.Event()
    calls = 0

    async def slow_then_fast(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            arrived.set()
            await gate.wait()
        return json_response(load_fixture("usgs.geojson"))

    upstream.routes[usgs_url("all_day")] = slow_then_fast
    scheduler, store = _scheduler(upstream, settings)

    first = asyncio.create_task(scheduler.refresh_now())
    await arrived.wait()
    second = await scheduler.refresh_now()
    await first

    assert calls == 2
    assert second.status == FeedStatus.READY
    assert second.sequence == 2
    assert store.state.version == 1
    assert len(store.feed) == 2


@pytest.mark.asyncio
async def test_clock_tick_uses_local_clock_only(
    upstream: FakeUpstream, settings: Settings
) -> None:
    bus = EventBus()
    scheduler, _ = _scheduler(upstream, settings, bus=bus)

    async with bus.subscription() as queue:
        task = asyncio.create_task(scheduler.run_clock_tick())
        tick = await asyncio.wait_for(queue.get(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert tick.type == "clock.tick"
    assert tick.data == {"now": "2030-01-01T00:00:00Z", "synced": False}
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_start_and_stop(upstream: FakeUpstream, settings: Settings) -> None:
    upstream.json(usgs_url("all_day"), load_fixture("usgs.geojson"))
    upstream.json(f"{TIME_BASE}/timezone/UTC", load_fixture("worldtime_utc.json"))
    scheduler, store = _scheduler(upstream, settings)

    scheduler.start()
    for _ in range(50):
        if store.state.has_loaded:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert store.state.has_loaded
    assert upstream.calls_to(f"{TIME_BASE}/timezone/UTC") >= 1


@pytest.mark.asyncio
async def test_malformed_feature_does_not_break_the_pass(
    upstream: FakeUpstream, settings: Settings
) -> None:
    doc = load_fixture("usgs.geojson")
    doc["features"].append(
        {
            "type": "Feature",
            "id": "odd",
            "properties": ["not", "a", "dict"],
            "geometry": {"type": "Point", "coordinates": [1.0, 2.0]},
        }
    )
    upstream.json(usgs_url("all_day"), doc)
    scheduler, _ = _scheduler(upstream, settings)

    state = await scheduler.refresh_now()

    assert state.status == FeedStatus.READY
    assert [e.id for e in state.feed.events] == ["us7000abcd", "ci40000001"]


@pytest.mark.asyncio
async def test_unexpected_crash_fails_the_pass(
    upstream: FakeUpstream, settings: Settings
) -> None:
    def explode(record: dict, source_name: str):
        raise RuntimeError("boom")

    upstream.json(usgs_url("all_day"), load_fixture("usgs.geojson"))
    scheduler, store = _scheduler(upstream, settings)
    scheduler.set_sources([replace(usgs_source(settings), normalize=explode)])

    state = await scheduler.refresh_now()

    assert state.status == FeedStatus.ERROR
    assert state.availability == "unavailable"
    assert state.error == "aggregation crashed: RuntimeError"
    assert scheduler.consecutive_failures == 1
    assert store.state is state
