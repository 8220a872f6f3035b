from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from clock.timesync import TimeSyncCache
from health.health import compute_backoff_seconds
from ingest.aggregator import AggregationStatus, EventAggregator
from ingest.errors import IngestError
from ingest.sources import SourceDefinition
from realtime.bus import EventBus, Notification
from store.feed_store import FeedState, FeedStore


logger = logging.getLogger(__name__)


def _iso(dt) -> str:
    return dt.isoformat().replace("+00:00", "Z")


class RefreshScheduler:
    """Drives aggregation passes and the two clock loops.

    Only one pass is in flight at a time. ``refresh_now`` cancels whatever
    pass is running and starts a fresh one; the store's pass sequence makes
    sure a superseded pass can never publish.
    """

    def __init__(
        self,
        *,
        aggregator: EventAggregator,
        store: FeedStore,
        clock: TimeSyncCache,
        bus: EventBus,
        sources: Sequence[SourceDefinition],
        min_magnitude: float | None,
        cap: int,
        refresh_interval_seconds: int = 60,
        time_resync_seconds: float = 30.0,
        clock_tick_seconds: float = 1.0,
    ) -> None:
        self._aggregator = aggregator
        self._store = store
        self._clock = clock
        self._bus = bus
        self._sources = list(sources)
        self._min_magnitude = min_magnitude
        self._cap = cap
        self._refresh_interval = refresh_interval_seconds
        self._time_resync = time_resync_seconds
        self._tick = clock_tick_seconds

        self._inflight: asyncio.Task[FeedState] | None = None
        self._consecutive_failures = 0
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def sources(self) -> list[SourceDefinition]:
        return list(self._sources)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def set_sources(self, sources: Sequence[SourceDefinition]) -> None:
        self._sources = list(sources)

    async def run_pass(self) -> FeedState:
        seq = await self._store.begin_pass()
        try:
            result = await self._aggregator.aggregate(
                self._sources, min_magnitude=self._min_magnitude, cap=self._cap
            )
        except Exception as e:
            logger.exception("pass %d crashed", seq)
            self._consecutive_failures += 1
            await self._store.fail(seq, f"aggregation crashed: {e.__class__.__name__}")
            return self._store.state
        if not self._store.is_current(seq):
            logger.info("pass %d superseded before publish", seq)
            return self._store.state

        if result.status == AggregationStatus.FAILED:
            self._consecutive_failures += 1
            failed = ", ".join(sorted(result.failures))
            await self._store.fail(seq, f"all sources failed: {failed}")
            logger.warning("pass %d failed: %s", seq, result.failures)
        else:
            self._consecutive_failures = 0
            at = await self._clock.now()
            await self._store.publish(
                seq,
                result.feed,
                at=at,
                failed_sources=tuple(sorted(result.failures)),
                conditions=result.conditions,
            )
            logger.info(
                "pass %d published %d event(s) (%s)",
                seq,
                len(result.feed),
                result.status.value,
            )
        return self._store.state

    def _start_pass(self) -> asyncio.Task[FeedState]:
        previous = self._inflight
        if previous is not None and not previous.done():
            logger.info("superseding in-flight refresh pass")
            previous.cancel()
        task = asyncio.create_task(self.run_pass())
        self._inflight = task
        return task

    async def refresh_now(self) -> FeedState:
        task = self._start_pass()
        await asyncio.wait({task})
        if task.cancelled():
            # Superseded by a newer refresh; report whatever is current.
            return self._store.state
        return task.result()

    def next_delay_seconds(self) -> int:
        return compute_backoff_seconds(
            self._refresh_interval, self._consecutive_failures
        )

    async def run(self) -> None:
        while True:
            task = self._start_pass()
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error("refresh pass crashed", exc_info=task.exception())
            await asyncio.sleep(self.next_delay_seconds())

    async def run_time_sync(self) -> None:
        while True:
            try:
                instant = await self._clock.force_resync()
            except IngestError as e:
                logger.warning("scheduled time resync failed: %s", e)
            else:
                logger.debug("scheduled time resync: %s", _iso(instant))
            await asyncio.sleep(self._time_resync)

    async def run_clock_tick(self) -> None:
        while True:
            now = self._clock.local_now()
            await self._bus.publish(
                Notification(
                    type="clock.tick",
                    data={"now": _iso(now), "synced": self._clock.is_synced},
                )
            )
            await asyncio.sleep(self._tick)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self.run()),
            asyncio.create_task(self.run_time_sync()),
            asyncio.create_task(self.run_clock_tick()),
        ]

    async def stop(self) -> None:
        tasks = self._tasks
        self._tasks = []
        if self._inflight is not None:
            tasks.append(self._inflight)  # type: ignore[arg-type]
            self._inflight = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
