from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

import httpx

from app.settings import Settings
from clock.timesync import TimeSyncCache
from geo.geocoding import LocationMatch, resolve_watch_entry, search_locations
from health.health import HealthRegistry, SourceHealth
from ingest.aggregator import EventAggregator
from ingest.fetch import FetchTimeouts, SourceFetcher
from ingest.scheduler import RefreshScheduler
from ingest.sources import SourceDefinition, build_sources
from ingest.watchlist import load_watchlist
from normalize.events import (
    AggregatedFeed,
    Category,
    CurrentConditions,
    Event,
    Location,
    Severity,
)
from realtime.bus import EventBus
from store.feed_store import FeedState, FeedStore


logger = logging.getLogger(__name__)


def timeouts_from_settings(settings: Settings) -> FetchTimeouts:
    return FetchTimeouts(
        connect=settings.connect_timeout_seconds,
        read=settings.read_timeout_seconds,
        write=settings.connect_timeout_seconds,
        pool=settings.connect_timeout_seconds,
        total=settings.request_deadline_seconds,
    )


class HazardMonitor:
    """Consumer-facing entry point: owns the clock, the store and the scheduler.

    One instance per process (or per test). Nothing here is a module-level
    singleton; pass the instance to whoever needs it.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        *,
        sources: Sequence[SourceDefinition] | None = None,
        clock: TimeSyncCache | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.bus = bus or EventBus()
        timeouts = timeouts_from_settings(settings)
        self.fetcher = SourceFetcher(
            client, user_agent=settings.user_agent, timeouts=timeouts
        )
        self.clock = clock or TimeSyncCache(
            client,
            base_url=settings.time_api_base,
            user_agent=settings.user_agent,
            timeouts=timeouts,
            ttl_seconds=settings.time_cache_ttl_seconds,
            retry_after_failure_seconds=settings.time_retry_seconds,
        )
        self.health = HealthRegistry()
        self.aggregator = EventAggregator(
            self.fetcher,
            health=self.health,
            max_concurrent_sources=settings.max_concurrent_sources,
            max_requests_per_host=settings.max_requests_per_host,
        )
        self.store = FeedStore(self.bus)
        self.scheduler = RefreshScheduler(
            aggregator=self.aggregator,
            store=self.store,
            clock=self.clock,
            bus=self.bus,
            sources=sources if sources is not None else [],
            min_magnitude=settings.min_magnitude,
            cap=settings.feed_cap,
            refresh_interval_seconds=settings.refresh_interval_seconds,
            time_resync_seconds=settings.time_resync_seconds,
            clock_tick_seconds=settings.clock_tick_seconds,
        )
        self._sources_configured = sources is not None

    async def load_sources(self) -> list[SourceDefinition]:
        """Build the source list from settings and the weather watchlist."""
        locations: list[Location] = []
        for entry in load_watchlist(self.settings.watchlist_path):
            if not entry.enabled:
                continue
            location = await resolve_watch_entry(
                self.fetcher, self.settings.geocoding_base, entry
            )
            if location is not None:
                locations.append(location)
        sources = build_sources(self.settings, locations)
        self.scheduler.set_sources(sources)
        self._sources_configured = True
        logger.info("configured %d source(s)", len(sources))
        return sources

    async def start(self) -> None:
        if not self._sources_configured:
            await self.load_sources()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    @property
    def state(self) -> FeedState:
        return self.store.state

    def get_aggregated_feed(self) -> AggregatedFeed:
        return self.store.feed

    def filter_by_categories(self, categories: Iterable[Category]) -> tuple[Event, ...]:
        return self.store.filter_by_categories(categories)

    def filter_by_min_severity(self, level: Severity) -> tuple[Event, ...]:
        return self.store.filter_by_min_severity(level)

    async def filter_by_recency(self, window: timedelta) -> tuple[Event, ...]:
        return self.store.filter_by_recency(await self.clock.now(), window)

    def group_by_category(self) -> dict[Category, tuple[Event, ...]]:
        return self.store.group_by_category()

    def critical_events(self) -> tuple[Event, ...]:
        return self.store.critical_events()

    def current_conditions(self) -> tuple[CurrentConditions, ...]:
        """Latest observed weather per watched location."""
        return self.store.current_conditions()

    async def refresh_now(self) -> FeedState:
        return await self.scheduler.refresh_now()

    async def current_time(self) -> datetime:
        return await self.clock.now()

    async def search_locations(self, query: str) -> list[LocationMatch]:
        return await search_locations(
            self.fetcher, self.settings.geocoding_base, query
        )

    def source_health(self) -> list[SourceHealth]:
        return self.health.snapshot()
