from __future__ import annotations

import argparse
from pathlib import Path

import httpx

from app.settings import Settings
from ingest.sources import forecast_url, usgs_feed_urls
from normalize.events import Location


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Download live upstream payloads for use as test fixtures."
    )
    parser.add_argument("--out", type=Path, default=None)
    parser.add_argument("--lat", type=float, default=35.6895)
    parser.add_argument("--lon", type=float, default=139.6917)
    args = parser.parse_args()

    settings = Settings()
    out_dir = args.out or Path(__file__).resolve().parents[1] / "tests" / "fixtures"
    out_dir.mkdir(parents=True, exist_ok=True)

    location = Location(name="capture", lat=args.lat, lon=args.lon)
    targets = {
        "usgs_live.geojson": usgs_feed_urls(settings.usgs_base, ["significant_week"])[0],
        "open_meteo_live.json": forecast_url(
            settings.open_meteo_base_urls[0],
            location,
            forecast_days=settings.forecast_days,
        ),
        "worldtime_live.json": f"{settings.time_api_base.rstrip('/')}/timezone/UTC",
    }

    with httpx.Client(timeout=30.0, follow_redirects=True) as client:
        for name, url in targets.items():
            res = client.get(url, headers={"User-Agent": settings.user_agent})
            res.raise_for_status()
            dest = out_dir / name
            dest.write_bytes(res.content)
            print(dest)


if __name__ == "__main__":
    main()
