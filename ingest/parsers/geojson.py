from __future__ import annotations

from typing import Any


def parse_geojson(doc: Any) -> list[dict]:
    if not isinstance(doc, dict) or doc.get("type") != "FeatureCollection":
        return []
    features = doc.get("features") or []
    return [f for f in features if isinstance(f, dict)]


def has_features(doc: Any) -> bool:
    return len(parse_geojson(doc)) > 0


def feature_magnitude(feature: dict) -> float | None:
    properties = feature.get("properties")
    if not isinstance(properties, dict):
        return None
    mag = properties.get("mag")
    if mag is None:
        return None
    try:
        return float(mag)
    except (TypeError, ValueError):
        return None
