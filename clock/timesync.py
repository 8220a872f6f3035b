"""Remote UTC clock with local extrapolation between syncs.

``TimeSyncCache`` owns the only copy of the last authoritative reading. A
reading is an immutable :class:`ClockSnapshot`; replacing it is a single
reference assignment, so a reader either sees the previous snapshot or the
new one, never a mixture.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from ingest.errors import IngestError, ParseError
from ingest.fetch import FetchTimeouts, fetch_json


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClockSnapshot:
    reference_instant: datetime
    captured_at_monotonic: float

    def extrapolate(self, monotonic_now: float) -> datetime:
        return self.reference_instant + timedelta(
            seconds=monotonic_now - self.captured_at_monotonic
        )


def _system_utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_time_payload(payload: Any) -> datetime:
    if not isinstance(payload, dict):
        raise ParseError("time payload is not an object")
    raw = payload.get("utc_datetime") or payload.get("datetime")
    if not isinstance(raw, str) or not raw:
        raise ParseError("time payload has no datetime field")
    if raw.endswith("Z"):
        raw = raw.removesuffix("Z") + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ParseError(f"invalid datetime: {raw!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(tz=UTC)


class TimeSyncCache:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        user_agent: str,
        timeouts: FetchTimeouts | None = None,
        ttl_seconds: float = 30.0,
        retry_after_failure_seconds: float = 5.0,
        monotonic: Callable[[], float] = time.monotonic,
        system_now: Callable[[], datetime] = _system_utc_now,
    ) -> None:
        self._client = client
        self._url = f"{base_url.rstrip('/')}/timezone/UTC"
        self._user_agent = user_agent
        self._timeouts = timeouts or FetchTimeouts()
        self._ttl = ttl_seconds
        self._retry_after_failure = retry_after_failure_seconds
        self._monotonic = monotonic
        self._system_now = system_now

        self._lock = asyncio.Lock()
        # Fresh snapshot, served by now() while younger than the TTL.
        self._snapshot: ClockSnapshot | None = None
        # Newest snapshot ever obtained, kept as a degraded fallback.
        self._last_known: ClockSnapshot | None = None
        self._failed_at: float | None = None
        self._last_error: IngestError | None = None

    @property
    def is_synced(self) -> bool:
        return self._fresh_snapshot() is not None

    @property
    def last_error(self) -> IngestError | None:
        return self._last_error

    def _fresh_snapshot(self) -> ClockSnapshot | None:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        if self._monotonic() - snapshot.captured_at_monotonic >= self._ttl:
            return None
        return snapshot

    def _in_retry_window(self) -> bool:
        return (
            self._failed_at is not None
            and self._monotonic() - self._failed_at < self._retry_after_failure
        )

    async def _sync(self) -> ClockSnapshot:
        try:
            payload, _ = await fetch_json(
                self._client,
                url=self._url,
                user_agent=self._user_agent,
                timeouts=self._timeouts,
            )
            instant = parse_time_payload(payload)
        except IngestError as e:
            self._failed_at = self._monotonic()
            self._last_error = e
            raise

        snapshot = ClockSnapshot(
            reference_instant=instant, captured_at_monotonic=self._monotonic()
        )
        self._snapshot = snapshot
        self._last_known = snapshot
        self._failed_at = None
        self._last_error = None
        logger.debug("clock synced to %s", instant.isoformat())
        return snapshot

    async def now(self) -> datetime:
        """Current UTC time. Never raises and never waits on another sync.

        While a sync is already in flight the newest snapshot is extrapolated
        instead, falling back to the system clock.
        """
        snapshot = self._fresh_snapshot()
        if snapshot is not None:
            return snapshot.extrapolate(self._monotonic())
        if self._in_retry_window():
            return self._system_now()
        if self._lock.locked():
            return self.local_now()

        async with self._lock:
            try:
                snapshot = await self._sync()
            except IngestError as e:
                logger.warning("time sync failed, using system clock: %s", e)
                return self._system_now()
        return snapshot.extrapolate(self._monotonic())

    async def force_resync(self) -> datetime:
        """Sync now regardless of the TTL. Propagates sync failures.

        The current snapshot keeps serving ``now()`` until the new reading
        arrives; a failed resync invalidates it.
        """
        async with self._lock:
            self._failed_at = None
            try:
                snapshot = await self._sync()
            except IngestError:
                self._snapshot = None
                raise
        return snapshot.extrapolate(self._monotonic())

    def local_now(self) -> datetime:
        """Extrapolate the newest snapshot, stale or not, without any I/O."""
        snapshot = self._last_known
        if snapshot is None:
            return self._system_now()
        return snapshot.extrapolate(self._monotonic())

    def clear(self) -> None:
        self._snapshot = None
        self._last_known = None
        self._failed_at = None
        self._last_error = None
