from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True)
class WatchEntry:
    name: str
    country: str | None
    lat: float | None
    lon: float | None
    enabled: bool

    @property
    def needs_geocoding(self) -> bool:
        return self.lat is None or self.lon is None


def _optional_float(value: object, *, field: str, path: Path) -> float | None:
    if value is None:
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid {field} in: {path}") from e


def load_watchlist(path: Path) -> list[WatchEntry]:
    """Read the weather watchlist. A missing file means nothing to watch."""
    if not path.exists():
        return []
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"invalid watchlist: {path}")

    entries: list[WatchEntry] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ValueError(f"invalid watchlist entry in: {path}")
        lat = _optional_float(entry.get("lat"), field="lat", path=path)
        lon = _optional_float(entry.get("lon"), field="lon", path=path)
        entries.append(
            WatchEntry(
                name=str(entry["name"]),
                country=str(entry["country"]) if entry.get("country") else None,
                lat=lat,
                lon=lon,
                enabled=bool(entry.get("enabled", True)),
            )
        )
    return entries
