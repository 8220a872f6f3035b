"""Holds the published feed and the views derived from it.

State moves LOADING -> READY(feed) -> LOADING -> READY | ERROR. An ERROR keeps
the last good feed. Every aggregation pass gets a sequence number from
:meth:`FeedStore.begin_pass`; only the most recently started pass may publish
or fail, so a slow superseded pass can never overwrite newer data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from normalize.events import AggregatedFeed, Category, CurrentConditions, Event, Severity
from realtime.bus import EventBus, Notification
from store import views


logger = logging.getLogger(__name__)

_MAX_CACHED_VIEWS = 64


class FeedStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class FeedState:
    status: FeedStatus = FeedStatus.LOADING
    feed: AggregatedFeed = AggregatedFeed()
    version: int = 0
    error: str | None = None
    last_success_at: datetime | None = None
    has_loaded: bool = False
    sequence: int = 0
    failed_sources: tuple[str, ...] = ()

    @property
    def availability(self) -> str:
        """What a consumer should tell the user about the feed."""
        if self.status == FeedStatus.ERROR:
            return "stale" if self.has_loaded else "unavailable"
        if not self.has_loaded:
            return "loading"
        return "ok" if len(self.feed) else "empty"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "availability": self.availability,
            "version": self.version,
            "error": self.error,
            "failed_sources": list(self.failed_sources),
            "last_success_at": (
                self.last_success_at.isoformat().replace("+00:00", "Z")
                if self.last_success_at
                else None
            ),
        }


class FeedStore:
    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus
        self._state = FeedState()
        self._started_seq = 0
        self._views: dict[Hashable, Any] = {}
        self._views_version = 0
        # Newest reading per source; a failed source keeps its last one.
        self._conditions: dict[str, CurrentConditions] = {}

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def feed(self) -> AggregatedFeed:
        return self._state.feed

    def is_current(self, seq: int) -> bool:
        return seq == self._started_seq

    async def begin_pass(self) -> int:
        self._started_seq += 1
        seq = self._started_seq
        self._state = replace(
            self._state, status=FeedStatus.LOADING, error=None, sequence=seq
        )
        await self._notify("feed.status", self._state.to_dict())
        return seq

    async def publish(
        self,
        seq: int,
        feed: AggregatedFeed,
        *,
        at: datetime,
        failed_sources: tuple[str, ...] = (),
        conditions: Mapping[str, CurrentConditions] | None = None,
    ) -> bool:
        if not self.is_current(seq):
            logger.info("discarding feed from superseded pass %d", seq)
            return False
        self._state = FeedState(
            status=FeedStatus.READY,
            feed=feed,
            version=self._state.version + 1,
            error=None,
            last_success_at=at,
            has_loaded=True,
            sequence=seq,
            failed_sources=failed_sources,
        )
        await self._notify(
            "feed.updated", {**self._state.to_dict(), **feed.to_dict()}
        )
        if conditions:
            self._conditions.update(conditions)
            await self._notify(
                "weather.updated",
                {"conditions": [c.to_dict() for c in self.current_conditions()]},
            )
        return True

    def current_conditions(self) -> tuple[CurrentConditions, ...]:
        return tuple(self._conditions.values())

    async def fail(self, seq: int, message: str) -> bool:
        if not self.is_current(seq):
            logger.info("discarding failure from superseded pass %d", seq)
            return False
        self._state = replace(self._state, status=FeedStatus.ERROR, error=message)
        await self._notify("feed.status", self._state.to_dict())
        return True

    async def _notify(self, event_type: str, data: dict) -> None:
        if self._bus is not None:
            await self._bus.publish(Notification(type=event_type, data=data))

    def _derive(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        version = self._state.version
        if version != self._views_version:
            self._views = {}
            self._views_version = version
        if key not in self._views:
            if len(self._views) >= _MAX_CACHED_VIEWS:
                self._views.clear()
            self._views[key] = compute()
        return self._views[key]

    def filter_by_categories(self, categories: Iterable[Category]) -> tuple[Event, ...]:
        wanted = frozenset(categories)
        events = self._state.feed.events
        return self._derive(
            ("categories", wanted),
            lambda: views.filter_by_categories(events, wanted),
        )

    def filter_by_min_severity(self, level: Severity) -> tuple[Event, ...]:
        events = self._state.feed.events
        return self._derive(
            ("min_severity", level),
            lambda: views.filter_by_min_severity(events, level),
        )

    def filter_by_recency(
        self, now: datetime, window: timedelta
    ) -> tuple[Event, ...]:
        events = self._state.feed.events
        return self._derive(
            ("recency", now, window),
            lambda: views.filter_by_recency(events, now, window),
        )

    def group_by_category(self) -> dict[Category, tuple[Event, ...]]:
        events = self._state.feed.events
        return self._derive(("grouped",), lambda: views.group_by_category(events))

    def critical_events(self) -> tuple[Event, ...]:
        events = self._state.feed.events
        return self._derive(("critical",), lambda: views.critical_events(events))
