from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any


EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class Category(str, Enum):
    SEISMIC = "seismic"
    FLOOD = "flood"
    WIND_STORM = "wind-storm"
    CYCLONE = "cyclone"
    WILDFIRE = "wildfire"
    TSUNAMI = "tsunami"
    VOLCANIC = "volcanic"
    SEVERE_WEATHER = "severe-weather"
    EXTREME_HEAT = "extreme-heat"
    EXTREME_COLD = "extreme-cold"
    DROUGHT = "drought"
    OTHER = "other"


_SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


def _iso(dt: datetime) -> str:
    return dt.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Location:
    name: str
    lat: float
    lon: float
    region: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "lat": self.lat,
            "lon": self.lon,
            "region": self.region,
        }


@dataclass(frozen=True)
class Event:
    id: str
    category: Category
    title: str
    description: str
    severity: Severity
    location: Location
    observed_at: datetime
    source_name: str
    reference_url: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only view over a private copy so callers cannot mutate an event.
        object.__setattr__(
            self, "attributes", MappingProxyType(dict(self.attributes))
        )

    def __hash__(self) -> int:
        return hash((self.id, self.category, self.observed_at, self.source_name))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "location": self.location.to_dict(),
            "observed_at": _iso(self.observed_at),
            "source_name": self.source_name,
            "reference_url": self.reference_url,
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class AggregatedFeed:
    events: tuple[Event, ...] = ()
    generated_at: datetime = EPOCH

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):
        return iter(self.events)

    def to_dict(self) -> dict:
        return {
            "generated_at": _iso(self.generated_at),
            "count": len(self.events),
            "events": [e.to_dict() for e in self.events],
        }


@dataclass(frozen=True)
class CurrentConditions:
    """Latest observed weather at a watched location. Not a hazard event."""

    location: Location
    observed_at: datetime | None
    temperature: float | None
    apparent_temperature: float | None
    relative_humidity: float | None
    precipitation: float | None
    wind_speed: float | None
    wind_direction: float | None
    weather_code: int | None
    weather_description: str
    is_day: bool | None
    source_name: str

    def to_dict(self) -> dict:
        return {
            "location": self.location.to_dict(),
            "observed_at": _iso(self.observed_at) if self.observed_at else None,
            "temperature": self.temperature,
            "apparent_temperature": self.apparent_temperature,
            "relative_humidity": self.relative_humidity,
            "precipitation": self.precipitation,
            "wind_speed": self.wind_speed,
            "wind_direction": self.wind_direction,
            "weather_code": self.weather_code,
            "weather_description": self.weather_description,
            "is_day": self.is_day,
            "source_name": self.source_name,
        }
