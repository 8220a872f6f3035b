from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def compute_backoff_seconds(
    poll_interval_seconds: int, consecutive_failures: int
) -> int:
    if consecutive_failures <= 0:
        return poll_interval_seconds
    return min(60 * 60, poll_interval_seconds * (2**consecutive_failures))


@dataclass(frozen=True)
class SourceHealth:
    source_id: str
    name: str
    last_fetch_at: str | None = None
    last_success_at: str | None = None
    last_endpoint: str | None = None
    last_fetch_ms: int | None = None
    last_error: str | None = None
    last_error_at: str | None = None
    consecutive_failures: int = 0
    success_count: int = 0
    error_count: int = 0
    event_count: int = 0

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "name": self.name,
            "last_fetch_at": self.last_fetch_at,
            "last_success_at": self.last_success_at,
            "last_endpoint": self.last_endpoint,
            "last_fetch_ms": self.last_fetch_ms,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at,
            "consecutive_failures": self.consecutive_failures,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "event_count": self.event_count,
        }


class HealthRegistry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._sources: dict[str, SourceHealth] = {}

    def ensure(self, source_id: str, name: str) -> None:
        with self.lock:
            if source_id not in self._sources:
                self._sources[source_id] = SourceHealth(source_id=source_id, name=name)

    def get(self, source_id: str) -> SourceHealth | None:
        with self.lock:
            return self._sources.get(source_id)

    def snapshot(self) -> list[SourceHealth]:
        with self.lock:
            return sorted(self._sources.values(), key=lambda h: h.source_id)

    def _put(self, health: SourceHealth) -> None:
        self._sources[health.source_id] = health


def record_fetch_success(
    registry: HealthRegistry,
    *,
    source_id: str,
    name: str,
    endpoint: str,
    fetch_ms: int,
    event_count: int,
) -> None:
    now_iso = _utc_now_iso()
    registry.ensure(source_id, name)
    with registry.lock:
        current = registry._sources[source_id]
        registry._put(
            replace(
                current,
                last_fetch_at=now_iso,
                last_success_at=now_iso,
                last_endpoint=endpoint,
                last_fetch_ms=fetch_ms,
                last_error=None,
                last_error_at=None,
                consecutive_failures=0,
                success_count=current.success_count + 1,
                event_count=event_count,
            )
        )


def record_fetch_error(
    registry: HealthRegistry,
    *,
    source_id: str,
    name: str,
    error: str,
) -> int:
    """Record a failed fetch and return the consecutive failure count."""
    now_iso = _utc_now_iso()
    registry.ensure(source_id, name)
    with registry.lock:
        current = registry._sources[source_id]
        failures = current.consecutive_failures + 1
        registry._put(
            replace(
                current,
                last_fetch_at=now_iso,
                last_error=error,
                last_error_at=now_iso,
                consecutive_failures=failures,
                error_count=current.error_count + 1,
            )
        )
    return failures

