"""Pure derivations over a feed. None of these read the clock themselves."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from normalize.events import Category, Event, Severity


def filter_by_categories(
    events: Sequence[Event], categories: Iterable[Category]
) -> tuple[Event, ...]:
    wanted = frozenset(categories)
    return tuple(e for e in events if e.category in wanted)


def filter_by_min_severity(
    events: Sequence[Event], level: Severity
) -> tuple[Event, ...]:
    return tuple(e for e in events if e.severity >= level)


def filter_by_recency(
    events: Sequence[Event], now: datetime, window: timedelta
) -> tuple[Event, ...]:
    since = now - window
    return tuple(e for e in events if e.observed_at > since)


def critical_events(events: Sequence[Event]) -> tuple[Event, ...]:
    return tuple(e for e in events if e.severity == Severity.CRITICAL)


def group_by_category(events: Sequence[Event]) -> dict[Category, tuple[Event, ...]]:
    grouped: dict[Category, list[Event]] = {}
    for event in events:
        grouped.setdefault(event.category, []).append(event)
    return {category: tuple(items) for category, items in grouped.items()}
