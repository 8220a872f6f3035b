from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.logging_setup import configure_logging
from app.monitor import HazardMonitor
from app.settings import Settings, split_csv
from ingest.errors import NoDataAvailable
from normalize.events import Category, Event, Severity
from realtime.sse import router as sse_router
from store import views


_WINDOWS = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


def _parse_categories(value: str | None) -> set[Category] | None:
    names = split_csv(value)
    if not names:
        return None
    return {Category(name) for name in names}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    configure_logging(settings.log_level)
    async with httpx.AsyncClient(follow_redirects=True) as client:
        monitor = HazardMonitor(settings, client)
        app.state.monitor = monitor
        await monitor.start()
        try:
            yield
        finally:
            await monitor.stop()


app = FastAPI(lifespan=lifespan)
app.include_router(sse_router)


def _events_payload(monitor: HazardMonitor, events: tuple[Event, ...]) -> dict:
    return {
        "state": monitor.state.to_dict(),
        "count": len(events),
        "events": [e.to_dict() for e in events],
    }


@app.get("/api/feed")
async def api_feed(
    request: Request,
    categories: str | None = None,
    min_severity: str | None = None,
    window: str | None = None,
) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    try:
        wanted = _parse_categories(categories)
        level = Severity(min_severity) if min_severity else None
        if window is not None and window not in _WINDOWS:
            raise ValueError(f"unknown window: {window}")
    except ValueError as e:
        return JSONResponse({"error": "bad_request", "detail": str(e)}, status_code=400)

    events = monitor.get_aggregated_feed().events
    if window is not None:
        now = await monitor.current_time()
        events = views.filter_by_recency(events, now, _WINDOWS[window])
    if wanted is not None:
        events = views.filter_by_categories(events, wanted)
    if level is not None:
        events = views.filter_by_min_severity(events, level)
    return JSONResponse(_events_payload(monitor, events))


@app.get("/api/feed/grouped")
def api_feed_grouped(request: Request) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    grouped = monitor.group_by_category()
    return JSONResponse(
        {
            "state": monitor.state.to_dict(),
            "groups": {
                category.value: [e.to_dict() for e in events]
                for category, events in grouped.items()
            },
        }
    )


@app.post("/api/refresh")
async def api_refresh(request: Request) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    state = await monitor.refresh_now()
    return JSONResponse(_events_payload(monitor, state.feed.events))


@app.get("/api/weather")
def api_weather(request: Request) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    return JSONResponse([c.to_dict() for c in monitor.current_conditions()])


@app.get("/api/time")
async def api_time(request: Request) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    now = await monitor.current_time()
    return JSONResponse(
        {
            "utc": now.isoformat().replace("+00:00", "Z"),
            "synced": monitor.clock.is_synced,
        }
    )


@app.get("/api/sources")
def api_sources(request: Request) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    return JSONResponse([h.to_dict() for h in monitor.source_health()])


@app.get("/api/locations/search")
async def api_locations_search(request: Request, q: str) -> JSONResponse:
    monitor: HazardMonitor = request.app.state.monitor
    try:
        matches = await monitor.search_locations(q)
    except NoDataAvailable as e:
        return JSONResponse(
            {"error": "geocoding_unavailable", "detail": str(e)}, status_code=503
        )
    return JSONResponse([m.to_dict() for m in matches])
