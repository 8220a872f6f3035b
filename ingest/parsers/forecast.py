from __future__ import annotations

import re
from typing import Any

from normalize.events import Location
from normalize.severity import (
    COLD_THRESHOLDS,
    HEAT_THRESHOLDS,
    RAIN_THRESHOLDS,
    WIND_THRESHOLDS,
    is_notable,
    thunderstorm_severity,
)


CURRENT_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "apparent_temperature",
    "is_day",
    "precipitation",
    "weather_code",
    "wind_speed_10m",
    "wind_direction_10m",
)

DAILY_FIELDS = (
    "weather_code",
    "temperature_2m_max",
    "temperature_2m_min",
    "precipitation_sum",
    "precipitation_probability_max",
    "wind_speed_10m_max",
)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "location"


def location_key(location: Location) -> str:
    """Slug plus rounded coordinates; watched places may share a name."""
    lat = f"{abs(location.lat):.2f}{'n' if location.lat >= 0 else 's'}"
    lon = f"{abs(location.lon):.2f}{'e' if location.lon >= 0 else 'w'}"
    return f"{slugify(location.name)}-{lat}-{lon}"


def has_forecast(doc: Any) -> bool:
    if not isinstance(doc, dict):
        return False
    daily = doc.get("daily")
    return (
        isinstance(daily, dict)
        and isinstance(daily.get("time"), list)
        and len(daily["time"]) > 0
    )


def _column(daily: dict, key: str, index: int) -> Any:
    values = daily.get(key)
    if not isinstance(values, list) or index >= len(values):
        return None
    return values[index]


def _negated(value: Any) -> float | None:
    try:
        return -float(value)
    except (TypeError, ValueError):
        return None


def forecast_hazard_records(
    doc: Any, *, location: Location, horizon_days: int
) -> list[dict]:
    """Flatten an Open-Meteo forecast into one record per notable daily hazard."""
    if not has_forecast(doc):
        return []
    daily = doc["daily"]
    base = {
        "location_key": location_key(location),
        "location": location.to_dict(),
    }

    records: list[dict] = []
    for index, day in enumerate(daily["time"][: max(horizon_days, 0)]):
        weather_code = _column(daily, "weather_code", index)
        common = {
            **base,
            "date": str(day),
            "weather_code": weather_code,
            "precipitation_probability": _column(
                daily, "precipitation_probability_max", index
            ),
        }

        t_max = _column(daily, "temperature_2m_max", index)
        if is_notable(t_max, HEAT_THRESHOLDS):
            records.append(
                {
                    **common,
                    "category": "extreme-heat",
                    "metric": "temperature_2m_max",
                    "value": t_max,
                    "unit": "°C",
                }
            )

        t_min = _column(daily, "temperature_2m_min", index)
        if is_notable(_negated(t_min), COLD_THRESHOLDS):
            records.append(
                {
                    **common,
                    "category": "extreme-cold",
                    "metric": "temperature_2m_min",
                    "value": t_min,
                    "unit": "°C",
                }
            )

        wind = _column(daily, "wind_speed_10m_max", index)
        if is_notable(wind, WIND_THRESHOLDS):
            records.append(
                {
                    **common,
                    "category": "wind-storm",
                    "metric": "wind_speed_10m_max",
                    "value": wind,
                    "unit": "km/h",
                }
            )

        rain = _column(daily, "precipitation_sum", index)
        if is_notable(rain, RAIN_THRESHOLDS):
            records.append(
                {
                    **common,
                    "category": "flood",
                    "metric": "precipitation_sum",
                    "value": rain,
                    "unit": "mm",
                }
            )

        if thunderstorm_severity(weather_code) is not None:
            records.append(
                {
                    **common,
                    "category": "severe-weather",
                    "metric": "weather_code",
                    "value": weather_code,
                    "unit": "wmo",
                }
            )

    return records
