from __future__ import annotations

import hashlib
import json
import math
from datetime import UTC, datetime

from ingest.errors import ParseError
from normalize.events import EPOCH, Category, CurrentConditions, Event, Location, Severity
from normalize.severity import (
    COLD_THRESHOLDS,
    HEAT_THRESHOLDS,
    RAIN_THRESHOLDS,
    WIND_THRESHOLDS,
    Thresholds,
    classify,
    seismic_severity,
    thunderstorm_severity,
)


UNKNOWN_LOCATION = "Unknown location"

_WEATHER_DESCRIPTIONS = {
    0: "clear sky",
    1: "mainly clear",
    2: "partly cloudy",
    3: "overcast",
    45: "fog",
    48: "depositing rime fog",
    51: "light drizzle",
    53: "moderate drizzle",
    55: "dense drizzle",
    61: "slight rain",
    63: "moderate rain",
    65: "heavy rain",
    71: "slight snow",
    73: "moderate snow",
    75: "heavy snow",
    95: "thunderstorm",
    96: "thunderstorm with slight hail",
    99: "thunderstorm with heavy hail",
}


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _finite_or(value: object, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def _datetime_from_epoch_ms(value: object) -> datetime:
    ms = _finite_or(value, float("nan"))
    if math.isnan(ms):
        return EPOCH
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return EPOCH


def _region_from_place(place: str) -> str | None:
    if "," not in place:
        return None
    region = place.rsplit(",", maxsplit=1)[1].strip()
    return region or None


def _format_magnitude(mag: float) -> str:
    return f"{mag:g}"


def weather_description(code: object) -> str:
    number = _finite_or(code, -1.0)
    return _WEATHER_DESCRIPTIONS.get(int(number), "unknown")


def normalize_usgs_earthquake(record: dict, source_name: str) -> Event:
    properties = record.get("properties") or {}
    geometry = record.get("geometry") or {}
    if not isinstance(properties, dict) or not isinstance(geometry, dict):
        raise ParseError(f"malformed feature: {record.get('id')!r}")
    coords = geometry.get("coordinates")
    if not isinstance(coords, list) or len(coords) < 2:
        raise ParseError(f"feature without coordinates: {record.get('id')!r}")
    try:
        lon = float(coords[0])
        lat = float(coords[1])
    except (TypeError, ValueError) as e:
        raise ParseError(f"non-numeric coordinates: {record.get('id')!r}") from e
    depth = _finite_or(coords[2] if len(coords) > 2 else None, 0.0)

    raw_mag = properties.get("mag")
    magnitude = _finite_or(raw_mag, 0.0)
    place = str(properties.get("place") or "").strip() or UNKNOWN_LOCATION
    observed_at = _datetime_from_epoch_ms(properties.get("time"))

    external_id = str(record.get("id") or "").strip()
    if not external_id:
        identity = json.dumps(
            [source_name, properties.get("time"), coords[:2], raw_mag],
            separators=(",", ":"),
            default=str,
        )
        external_id = f"usgs:{_sha256_hex(identity)[:16]}"

    title = str(properties.get("title") or "").strip()
    description = title or f"Magnitude {_format_magnitude(magnitude)} earthquake"
    if not title:
        title = f"M{_format_magnitude(magnitude)} earthquake"

    url = properties.get("url")
    return Event(
        id=external_id,
        category=Category.SEISMIC,
        title=title,
        description=description,
        severity=seismic_severity(raw_mag),
        location=Location(
            name=place,
            lat=lat,
            lon=lon,
            region=_region_from_place(place) if place != UNKNOWN_LOCATION else None,
        ),
        observed_at=observed_at,
        source_name=source_name,
        reference_url=str(url) if url else None,
        attributes={
            "magnitude": magnitude,
            "depth": depth,
            "significance": int(_finite_or(properties.get("sig"), 0.0)),
            "tsunami_warning": properties.get("tsunami") == 1,
        },
    )


_WEATHER_THRESHOLDS: dict[Category, Thresholds] = {
    Category.EXTREME_HEAT: HEAT_THRESHOLDS,
    Category.EXTREME_COLD: COLD_THRESHOLDS,
    Category.WIND_STORM: WIND_THRESHOLDS,
    Category.FLOOD: RAIN_THRESHOLDS,
}

_WEATHER_TITLES = {
    Category.EXTREME_HEAT: "Extreme heat",
    Category.EXTREME_COLD: "Extreme cold",
    Category.WIND_STORM: "Damaging winds",
    Category.FLOOD: "Heavy rainfall",
    Category.SEVERE_WEATHER: "Thunderstorms",
}


def weather_hazard_severity(category: Category, value: object) -> Severity:
    if category == Category.SEVERE_WEATHER:
        return thunderstorm_severity(value) or Severity.LOW
    if category == Category.EXTREME_COLD:
        return classify(-_finite_or(value, 0.0), COLD_THRESHOLDS)
    thresholds = _WEATHER_THRESHOLDS.get(category)
    if thresholds is None:
        return Severity.LOW
    return classify(value, thresholds)


def _parse_day(value: object) -> datetime:
    try:
        day = datetime.fromisoformat(str(value))
    except ValueError:
        return EPOCH
    if day.tzinfo is None:
        day = day.replace(tzinfo=UTC)
    return day.astimezone(tz=UTC)


def normalize_weather_hazard(record: dict, source_name: str) -> Event:
    try:
        category = Category(str(record["category"]))
        loc = record["location"]
        location = Location(
            name=str(loc.get("name") or UNKNOWN_LOCATION),
            lat=float(loc["lat"]),
            lon=float(loc["lon"]),
            region=loc.get("region"),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ParseError(f"malformed weather hazard record: {e!r}") from e

    value = record.get("value")
    date = str(record.get("date") or "")
    unit = str(record.get("unit") or "")
    code = record.get("weather_code")
    conditions = weather_description(code)

    label = _WEATHER_TITLES.get(category, "Weather hazard")
    if category == Category.SEVERE_WEATHER:
        title = f"{label} in {location.name}"
        description = f"Forecast {conditions} on {date}"
    else:
        reading = _finite_or(value, 0.0)
        title = f"{label} in {location.name}: {round(reading)} {unit}"
        description = f"Forecast {record.get('metric')} of {reading:g} {unit} on {date} ({conditions})"

    key = str(record.get("location_key") or location.name)
    return Event(
        id=f"{source_name}:{key}:{category.value}:{date}",
        category=category,
        title=title,
        description=description,
        severity=weather_hazard_severity(category, value),
        location=location,
        observed_at=_parse_day(date),
        source_name=source_name,
        reference_url=None,
        attributes={
            "metric": str(record.get("metric") or ""),
            "value": _finite_or(value, 0.0),
            "unit": unit,
            "weather_code": int(_finite_or(code, -1.0)),
            "forecast_date": date,
            "precipitation_probability": _finite_or(
                record.get("precipitation_probability"), 0.0
            ),
        },
    )


def _optional_reading(value: object) -> float | None:
    number = _finite_or(value, float("nan"))
    return None if math.isnan(number) else number


def normalize_current_conditions(
    current: object, *, location: Location, source_name: str
) -> CurrentConditions:
    """Map an Open-Meteo ``current`` block onto :class:`CurrentConditions`.

    Missing readings stay ``None``; only a block that is not a mapping is an
    error.
    """
    if not isinstance(current, dict):
        raise ParseError(f"no current conditions for {location.name!r}")

    code = _optional_reading(current.get("weather_code"))
    is_day = current.get("is_day")
    observed_at = _parse_day(current.get("time"))
    return CurrentConditions(
        location=location,
        observed_at=None if observed_at == EPOCH else observed_at,
        temperature=_optional_reading(current.get("temperature_2m")),
        apparent_temperature=_optional_reading(current.get("apparent_temperature")),
        relative_humidity=_optional_reading(current.get("relative_humidity_2m")),
        precipitation=_optional_reading(current.get("precipitation")),
        wind_speed=_optional_reading(current.get("wind_speed_10m")),
        wind_direction=_optional_reading(current.get("wind_direction_10m")),
        weather_code=int(code) if code is not None else None,
        weather_description=weather_description(code),
        is_day=bool(is_day) if is_day in (0, 1) else None,
        source_name=source_name,
    )
