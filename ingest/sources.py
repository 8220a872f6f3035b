from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from app.settings import Settings
from ingest.fetch import AcceptFn, accept_any
from ingest.parsers.forecast import (
    CURRENT_FIELDS,
    DAILY_FIELDS,
    forecast_hazard_records,
    has_forecast,
    location_key,
)
from ingest.parsers.geojson import feature_magnitude, has_features, parse_geojson
from normalize.events import CurrentConditions, Event, Location
from normalize.normalize import (
    normalize_current_conditions,
    normalize_usgs_earthquake,
    normalize_weather_hazard,
)


ExtractFn = Callable[[Any], list[dict]]
NormalizeFn = Callable[[dict, str], Event]
MagnitudeFn = Callable[[dict], float | None]
ConditionsFn = Callable[[Any], CurrentConditions]


@dataclass(frozen=True)
class SourceDefinition:
    source_id: str
    name: str
    candidate_urls: tuple[str, ...]
    extract: ExtractFn
    normalize: NormalizeFn
    min_acceptable: AcceptFn = accept_any
    # Sources without a magnitude are not subject to the minimum magnitude filter.
    magnitude: MagnitudeFn | None = None
    max_records: int | None = None
    # Reads the non-event part of the payload, such as current weather.
    conditions: ConditionsFn | None = None


def usgs_feed_urls(base_url: str, feeds: Sequence[str]) -> tuple[str, ...]:
    base = base_url.rstrip("/")
    return tuple(f"{base}/summary/{feed}.geojson" for feed in feeds)


def usgs_source(settings: Settings) -> SourceDefinition:
    return SourceDefinition(
        source_id="usgs_earthquakes",
        name="USGS",
        candidate_urls=usgs_feed_urls(settings.usgs_base, settings.usgs_feed_names),
        extract=parse_geojson,
        normalize=normalize_usgs_earthquake,
        min_acceptable=has_features,
        magnitude=feature_magnitude,
        max_records=settings.usgs_max_events,
    )


def forecast_url(base_url: str, location: Location, *, forecast_days: int) -> str:
    params = {
        "latitude": f"{location.lat:.4f}",
        "longitude": f"{location.lon:.4f}",
        "current": ",".join(CURRENT_FIELDS),
        "daily": ",".join(DAILY_FIELDS),
        "timezone": "UTC",
        "forecast_days": str(forecast_days),
    }
    return f"{base_url.rstrip('/')}/forecast?{urlencode(params)}"


def weather_source(settings: Settings, location: Location) -> SourceDefinition:
    horizon = settings.forecast_days
    return SourceDefinition(
        source_id=f"open_meteo_{location_key(location)}",
        name="Open-Meteo",
        candidate_urls=tuple(
            forecast_url(base, location, forecast_days=horizon)
            for base in settings.open_meteo_base_urls
        ),
        extract=lambda doc, location=location, horizon=horizon: forecast_hazard_records(
            doc, location=location, horizon_days=horizon
        ),
        normalize=normalize_weather_hazard,
        min_acceptable=has_forecast,
        conditions=lambda doc, location=location: normalize_current_conditions(
            doc.get("current"), location=location, source_name="Open-Meteo"
        ),
    )


def build_sources(
    settings: Settings, watch_locations: Sequence[Location]
) -> list[SourceDefinition]:
    sources = [usgs_source(settings)]
    sources.extend(weather_source(settings, loc) for loc in watch_locations)
    return sources
