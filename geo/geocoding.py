from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from ingest.errors import NoDataAvailable
from ingest.fetch import SourceFetcher
from ingest.watchlist import WatchEntry
from normalize.events import Location


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationMatch:
    name: str
    country: str
    admin1: str
    lat: float
    lon: float

    def to_location(self) -> Location:
        return Location(
            name=self.name, lat=self.lat, lon=self.lon, region=self.country or None
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "country": self.country,
            "admin1": self.admin1,
            "lat": self.lat,
            "lon": self.lon,
        }


def search_url(base_url: str, query: str, *, count: int = 5) -> str:
    params = {"name": query, "count": str(count), "language": "en", "format": "json"}
    return f"{base_url.rstrip('/')}/search?{urlencode(params)}"


def parse_geocoding_results(doc: Any) -> list[LocationMatch]:
    if not isinstance(doc, dict):
        return []
    matches: list[LocationMatch] = []
    for item in doc.get("results") or []:
        if not isinstance(item, dict):
            continue
        try:
            lat = float(item["latitude"])
            lon = float(item["longitude"])
        except (KeyError, TypeError, ValueError):
            continue
        matches.append(
            LocationMatch(
                name=str(item.get("name") or ""),
                country=str(item.get("country_code") or item.get("country") or "Unknown"),
                admin1=str(item.get("admin1") or ""),
                lat=lat,
                lon=lon,
            )
        )
    return matches


async def search_locations(
    fetcher: SourceFetcher, base_url: str, query: str, *, count: int = 5
) -> list[LocationMatch]:
    """Look up places by name. An unknown name is an empty list, not an error."""
    query = query.strip()
    if not query:
        return []
    payload = await fetcher.fetch([search_url(base_url, query, count=count)])
    return parse_geocoding_results(payload)


async def resolve_watch_entry(
    fetcher: SourceFetcher, base_url: str, entry: WatchEntry
) -> Location | None:
    if not entry.needs_geocoding:
        return Location(
            name=entry.name,
            lat=float(entry.lat),  # type: ignore[arg-type]
            lon=float(entry.lon),  # type: ignore[arg-type]
            region=entry.country,
        )
    try:
        matches = await search_locations(fetcher, base_url, entry.name)
    except NoDataAvailable as e:
        logger.warning("geocoding failed for watchlist entry %r: %s", entry.name, e)
        return None
    if entry.country:
        wanted = entry.country.lower()
        preferred = [m for m in matches if m.country.lower() == wanted]
        matches = preferred or matches
    if not matches:
        logger.warning("no geocoding match for watchlist entry %r", entry.name)
        return None
    match = matches[0]
    return Location(name=entry.name, lat=match.lat, lon=match.lon, region=match.country)
