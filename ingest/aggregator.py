from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import urlsplit

from health.health import HealthRegistry, record_fetch_error, record_fetch_success
from ingest.errors import AggregationFailed, ParseError
from ingest.fetch import FetchExhausted, SourceFetcher
from ingest.sources import SourceDefinition
from normalize.events import AggregatedFeed, CurrentConditions, Event


logger = logging.getLogger(__name__)

DEFAULT_CAP = 20

# What a record of an unexpected shape raises on plain dict and list access.
_RECORD_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


class AggregationStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class AggregationResult:
    feed: AggregatedFeed
    status: AggregationStatus
    failures: dict[str, str] = field(default_factory=dict)
    succeeded: tuple[str, ...] = ()
    # Current conditions by source id, for sources that report them.
    conditions: dict[str, CurrentConditions] = field(default_factory=dict)

    def raise_for_status(self) -> None:
        if self.status == AggregationStatus.FAILED:
            raise AggregationFailed(self.failures)


@dataclass(frozen=True)
class _SourceOutcome:
    source_id: str
    events: list[Event] | None
    error: str | None = None
    conditions: CurrentConditions | None = None


def passes_min_magnitude(
    source: SourceDefinition, record: dict, min_magnitude: float | None
) -> bool:
    if source.magnitude is None or min_magnitude is None:
        return True
    magnitude = source.magnitude(record)
    # Missing magnitude counts as noise for sources that report one.
    return magnitude is not None and magnitude >= min_magnitude


def newest_first(events: Iterable[Event]) -> list[Event]:
    # sorted() is stable with reverse=True, so ties keep their input order.
    return sorted(events, key=lambda e: e.observed_at, reverse=True)


def merge_events(batches: Iterable[Sequence[Event]], cap: int) -> tuple[Event, ...]:
    """Dedupe by id (later wins, at its later position), order newest first, cap."""
    by_id: dict[str, Event] = {}
    for batch in batches:
        for event in batch:
            by_id.pop(event.id, None)
            by_id[event.id] = event
    return tuple(newest_first(by_id.values())[: max(cap, 0)])


def normalize_records(
    source: SourceDefinition, records: Iterable[dict], min_magnitude: float | None
) -> list[Event]:
    events: list[Event] = []
    for record in records:
        try:
            if not passes_min_magnitude(source, record, min_magnitude):
                continue
            events.append(source.normalize(record, source.name))
        except ParseError as e:
            logger.warning("skipping record from %s: %s", source.source_id, e)
        except _RECORD_ERRORS as e:
            logger.warning("skipping malformed record from %s: %r", source.source_id, e)
    events = newest_first(events)
    if source.max_records is not None:
        events = events[: source.max_records]
    return events


def read_conditions(
    source: SourceDefinition, payload: object
) -> CurrentConditions | None:
    if source.conditions is None:
        return None
    try:
        return source.conditions(payload)
    except (ParseError, *_RECORD_ERRORS) as e:
        logger.warning("no current conditions from %s: %r", source.source_id, e)
        return None


class EventAggregator:
    def __init__(
        self,
        fetcher: SourceFetcher,
        *,
        health: HealthRegistry | None = None,
        max_concurrent_sources: int = 4,
        max_requests_per_host: int = 2,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._health = health or HealthRegistry()
        self._global_sem = asyncio.Semaphore(max_concurrent_sources)
        self._max_per_host = max_requests_per_host
        self._host_sems: dict[str, asyncio.Semaphore] = {}
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    @property
    def health(self) -> HealthRegistry:
        return self._health

    def _host_sem(self, source: SourceDefinition) -> asyncio.Semaphore:
        host = urlsplit(source.candidate_urls[0]).netloc if source.candidate_urls else ""
        return self._host_sems.setdefault(host, asyncio.Semaphore(self._max_per_host))

    async def _run_one(
        self, source: SourceDefinition, min_magnitude: float | None
    ) -> _SourceOutcome:
        self._health.ensure(source.source_id, source.name)
        async with self._global_sem, self._host_sem(source):
            outcome = await self._fetcher.fetch_first(
                source.candidate_urls, source.min_acceptable
            )

        if isinstance(outcome, FetchExhausted):
            error = str(outcome.last_error) if outcome.last_error else "no_endpoints"
            failures = record_fetch_error(
                self._health, source_id=source.source_id, name=source.name, error=error
            )
            logger.warning(
                "source %s unavailable (%d consecutive failures): %s",
                source.source_id,
                failures,
                error,
            )
            return _SourceOutcome(source_id=source.source_id, events=None, error=error)

        try:
            records = source.extract(outcome.payload)
        except _RECORD_ERRORS as e:
            error = f"extract_failed:{e.__class__.__name__}"
            record_fetch_error(
                self._health, source_id=source.source_id, name=source.name, error=error
            )
            logger.warning("could not extract records from %s: %r", source.source_id, e)
            return _SourceOutcome(source_id=source.source_id, events=None, error=error)

        events = normalize_records(source, records, min_magnitude)
        record_fetch_success(
            self._health,
            source_id=source.source_id,
            name=source.name,
            endpoint=outcome.url,
            fetch_ms=outcome.elapsed_ms,
            event_count=len(events),
        )
        logger.info(
            "source %s: %d event(s) from %s", source.source_id, len(events), outcome.url
        )
        return _SourceOutcome(
            source_id=source.source_id,
            events=events,
            conditions=read_conditions(source, outcome.payload),
        )

    async def aggregate(
        self,
        sources: Sequence[SourceDefinition],
        *,
        min_magnitude: float | None = None,
        cap: int = DEFAULT_CAP,
    ) -> AggregationResult:
        """Run one aggregation pass over ``sources``.

        Sources are fetched concurrently and joined before anything is merged,
        so the returned feed never reflects only some of them. Source failures
        are reported through ``status`` and ``failures``; this never raises for
        them.
        """
        outcomes = await asyncio.gather(
            *(self._run_one(source, min_magnitude) for source in sources)
        )

        failures = {o.source_id: o.error or "" for o in outcomes if o.events is None}
        good = [o for o in outcomes if o.events is not None]
        feed = AggregatedFeed(
            events=merge_events((o.events or [] for o in good), cap),
            generated_at=self._clock(),
        )

        if sources and not good:
            status = AggregationStatus.FAILED
        elif failures:
            status = AggregationStatus.PARTIAL
        else:
            status = AggregationStatus.OK
        return AggregationResult(
            feed=feed,
            status=status,
            failures=failures,
            succeeded=tuple(o.source_id for o in good),
            conditions={
                o.source_id: o.conditions for o in good if o.conditions is not None
            },
        )
