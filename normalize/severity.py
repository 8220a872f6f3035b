"""Severity classification.

The cut-offs below are editorial choices, not external standards. They are
module constants so deployments can swap them without touching the
normalizers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from normalize.events import Severity


@dataclass(frozen=True)
class Thresholds:
    # ``notable`` is the floor below which a weather reading is not reported
    # as a hazard at all. Seismic records are filtered by minimum magnitude
    # instead, so it is unused there.
    notable: float
    medium: float
    high: float
    critical: float


SEISMIC_THRESHOLDS = Thresholds(notable=0.0, medium=4.5, high=6.0, critical=7.0)

# Daily maximum temperature, °C.
HEAT_THRESHOLDS = Thresholds(notable=32.0, medium=35.0, high=40.0, critical=45.0)

# Degrees below 0 °C of the daily minimum.
COLD_THRESHOLDS = Thresholds(notable=5.0, medium=10.0, high=20.0, critical=30.0)

# Wind speed at 10 m, km/h.
WIND_THRESHOLDS = Thresholds(notable=50.0, medium=62.0, high=89.0, critical=118.0)

# Daily precipitation sum, mm.
RAIN_THRESHOLDS = Thresholds(notable=10.0, medium=20.0, high=50.0, critical=100.0)

# WMO weather interpretation codes for thunderstorms.
THUNDERSTORM_SEVERITY = {
    95: Severity.MEDIUM,
    96: Severity.HIGH,
    99: Severity.CRITICAL,
}


def _as_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def classify(value: object, thresholds: Thresholds) -> Severity:
    number = _as_float(value)
    if number is None:
        return Severity.LOW
    if number >= thresholds.critical:
        return Severity.CRITICAL
    if number >= thresholds.high:
        return Severity.HIGH
    if number >= thresholds.medium:
        return Severity.MEDIUM
    return Severity.LOW


def is_notable(value: object, thresholds: Thresholds) -> bool:
    number = _as_float(value)
    return number is not None and number >= thresholds.notable


def seismic_severity(magnitude: object) -> Severity:
    return classify(magnitude, SEISMIC_THRESHOLDS)


def thunderstorm_severity(weather_code: object) -> Severity | None:
    number = _as_float(weather_code)
    if number is None or math.isinf(number):
        return None
    return THUNDERSTORM_SEVERITY.get(int(number))
