from datetime import UTC, datetime

import pytest
from conftest import load_fixture

from ingest.errors import ParseError
from ingest.parsers.forecast import forecast_hazard_records
from normalize.events import EPOCH, Category, Location, Severity
from normalize.normalize import (
    UNKNOWN_LOCATION,
    normalize_current_conditions,
    normalize_usgs_earthquake,
    normalize_weather_hazard,
    weather_description,
)


def _features() -> list[dict]:
    return load_fixture("usgs.geojson")["features"]


def test_normalize_usgs_feature() -> None:
    event = normalize_usgs_earthquake(_features()[0], "USGS")
    assert event.id == "us7000abcd"
    assert event.category == Category.SEISMIC
    assert event.severity == Severity.CRITICAL
    assert event.title == "M 7.2 - 112 km SSE of Perryville, Alaska"
    assert event.location == Location(
        name="112 km SSE of Perryville, Alaska",
        lat=54.94,
        lon=-158.61,
        region="Alaska",
    )
    assert event.observed_at == datetime(2025, 10, 19, 10, 30, tzinfo=UTC)
    assert event.source_name == "USGS"
    assert event.reference_url.endswith("us7000abcd")
    assert dict(event.attributes) == {
        "magnitude": 7.2,
        "depth": 35.0,
        "significance": 798,
        "tsunami_warning": True,
    }


def test_normalize_is_idempotent() -> None:
    feature = _features()[1]
    first = normalize_usgs_earthquake(feature, "USGS")
    second = normalize_usgs_earthquake(feature, "USGS")
    assert first == second
    assert first.severity == Severity.LOW


def test_missing_optional_fields_get_defaults() -> None:
    feature = {
        "type": "Feature",
        "id": "xx1",
        "properties": {"mag": 5.1, "time": None, "place": None, "sig": None},
        "geometry": {"type": "Point", "coordinates": [10.0, 20.0]},
    }
    event = normalize_usgs_earthquake(feature, "USGS")
    assert event.title == "M5.1 earthquake"
    assert event.description == "Magnitude 5.1 earthquake"
    assert event.location.name == UNKNOWN_LOCATION
    assert event.location.region is None
    assert event.observed_at == EPOCH
    assert event.attributes["depth"] == 0.0
    assert event.attributes["significance"] == 0
    assert event.attributes["tsunami_warning"] is False
    assert event.severity == Severity.MEDIUM


def test_missing_magnitude_is_low_not_an_error() -> None:
    feature = {
        "id": "xx2",
        "properties": {"mag": None, "time": 1760866200000},
        "geometry": {"coordinates": [1.0, 2.0, 3.0]},
    }
    event = normalize_usgs_earthquake(feature, "USGS")
    assert event.severity == Severity.LOW
    assert event.attributes["magnitude"] == 0.0


def test_missing_id_gets_stable_hash_id() -> None:
    feature = {
        "properties": {"mag": 2.0, "time": 1760866200000},
        "geometry": {"coordinates": [1.0, 2.0, 3.0]},
    }
    first = normalize_usgs_earthquake(feature, "USGS")
    second = normalize_usgs_earthquake(dict(feature), "USGS")
    assert first.id.startswith("usgs:")
    assert first.id == second.id


def test_missing_coordinates_is_parse_error() -> None:
    with pytest.raises(ParseError):
        normalize_usgs_earthquake({"id": "x", "properties": {"mag": 3}}, "USGS")
    with pytest.raises(ParseError):
        normalize_usgs_earthquake(
            {"id": "x", "properties": {}, "geometry": {"coordinates": ["a", "b"]}},
            "USGS",
        )


def test_non_mapping_properties_or_geometry_is_parse_error() -> None:
    with pytest.raises(ParseError):
        normalize_usgs_earthquake(
            {
                "id": "x",
                "properties": ["not", "a", "dict"],
                "geometry": {"coordinates": [1.0, 2.0]},
            },
            "USGS",
        )
    with pytest.raises(ParseError):
        normalize_usgs_earthquake(
            {"id": "x", "properties": {"mag": 3}, "geometry": "POINT (1 2)"}, "USGS"
        )


def test_events_are_immutable() -> None:
    event = normalize_usgs_earthquake(_features()[0], "USGS")
    with pytest.raises(AttributeError):
        event.title = "changed"  # type: ignore[misc]
    with pytest.raises(TypeError):
        event.attributes["magnitude"] = 1.0  # type: ignore[index]


def test_normalize_weather_hazards() -> None:
    location = Location(name="Phoenix", lat=33.45, lon=-112.07, region="US")
    records = forecast_hazard_records(
        load_fixture("open_meteo_forecast.json"), location=location, horizon_days=3
    )
    events = [normalize_weather_hazard(r, "Open-Meteo") for r in records]

    heat = events[0]
    assert heat.id == "Open-Meteo:phoenix-33.45n-112.07w:extreme-heat:2026-07-14"
    assert heat.category == Category.EXTREME_HEAT
    assert heat.severity == Severity.CRITICAL
    assert heat.title == "Extreme heat in Phoenix: 46 °C"
    assert heat.observed_at == datetime(2026, 7, 14, tzinfo=UTC)
    assert heat.location == location

    by_category = {e.category: e for e in events[1:]}
    assert by_category[Category.EXTREME_HEAT].severity == Severity.MEDIUM
    assert by_category[Category.WIND_STORM].severity == Severity.HIGH
    assert by_category[Category.FLOOD].severity == Severity.MEDIUM
    assert by_category[Category.SEVERE_WEATHER].severity == Severity.HIGH
    assert "thunderstorm with slight hail" in by_category[
        Category.SEVERE_WEATHER
    ].description


def test_normalize_weather_cold_severity() -> None:
    record = {
        "category": "extreme-cold",
        "location": {"name": "Yakutsk", "lat": 62.0, "lon": 129.7},
        "date": "2026-01-10",
        "metric": "temperature_2m_min",
        "value": -41.0,
        "unit": "°C",
    }
    event = normalize_weather_hazard(record, "Open-Meteo")
    assert event.severity == Severity.CRITICAL
    assert event.attributes["weather_code"] == -1


def test_normalize_weather_malformed_record() -> None:
    with pytest.raises(ParseError):
        normalize_weather_hazard({"category": "extreme-heat"}, "Open-Meteo")
    with pytest.raises(ParseError):
        normalize_weather_hazard(
            {"category": "meteor", "location": {"lat": 1, "lon": 2}}, "Open-Meteo"
        )


def test_weather_description() -> None:
    assert weather_description(0) == "clear sky"
    assert weather_description(99) == "thunderstorm with heavy hail"
    assert weather_description(12345) == "unknown"
    assert weather_description(None) == "unknown"


def test_normalize_current_conditions() -> None:
    location = Location(name="Phoenix", lat=33.45, lon=-112.07, region="US")
    current = load_fixture("open_meteo_forecast.json")["current"]

    conditions = normalize_current_conditions(
        current, location=location, source_name="Open-Meteo"
    )

    assert conditions.location == location
    assert conditions.observed_at == datetime(2026, 7, 14, 12, 0, tzinfo=UTC)
    assert conditions.temperature == 41.3
    assert conditions.apparent_temperature == 42.0
    assert conditions.relative_humidity == 12
    assert conditions.wind_speed == 14.2
    assert conditions.wind_direction == 250
    assert conditions.weather_code == 0
    assert conditions.weather_description == "clear sky"
    assert conditions.is_day is True
    assert conditions.to_dict()["observed_at"] == "2026-07-14T12:00:00Z"


def test_current_conditions_with_gaps() -> None:
    location = Location(name="Nowhere", lat=0.0, lon=0.0)
    conditions = normalize_current_conditions(
        {"temperature_2m": "n/a", "is_day": 7}, location=location, source_name="x"
    )
    assert conditions.temperature is None
    assert conditions.observed_at is None
    assert conditions.weather_code is None
    assert conditions.weather_description == "unknown"
    assert conditions.is_day is None
    with pytest.raises(ParseError):
        normalize_current_conditions(None, location=location, source_name="x")
