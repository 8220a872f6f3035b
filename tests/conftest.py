from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from app.settings import Settings


FIXTURES = Path(__file__).resolve().parent / "fixtures"

USGS_BASE = "https://quake.test/feed/v1.0"
OPEN_METEO_BASE = "https://meteo.test/v1"
GEOCODING_BASE = "https://geo.test/v1"
TIME_BASE = "https://time.test/api"


def load_fixture(name: str) -> dict:
    return json.loads((FIXTURES / name).read_text(encoding="utf-8"))


def streamed_response(
    status: int, body: bytes, headers: httpx.Headers | dict | None = None
) -> httpx.Response:
    """A response httpx reads through its stream, the way it reads a real one.

    The client only sets ``response.elapsed`` once it has read and closed
    the stream, which never happens for a response built with ``content=``.
    """
    return httpx.Response(status, stream=httpx.ByteStream(body), headers=headers)


def json_response(body: object, status: int = 200) -> httpx.Response:
    return streamed_response(
        status,
        json.dumps(body).encode("utf-8"),
        {"Content-Type": "application/json"},
    )


Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Routes requests by URL (query string ignored) and records every call."""

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.calls: list[str] = []

    def json(self, url: str, body: object, status: int = 200) -> None:
        self.routes[url] = httpx.Response(status, json=body)

    def status(self, url: str, status: int) -> None:
        self.routes[url] = httpx.Response(status, text="upstream error")

    def raw(self, url: str, content: bytes) -> None:
        self.routes[url] = httpx.Response(200, content=content)

    def connect_error(self, url: str) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.routes[url] = _raise

    def timeout(self, url: str) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        self.routes[url] = _raise

    def calls_to(self, url: str) -> int:
        return sum(1 for c in self.calls if c.split("?", 1)[0] == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        route = self.routes.get(url.split("?", 1)[0])
        if route is None:
            return streamed_response(404, b"not found")
        if isinstance(route, httpx.Response):
            return streamed_response(route.status_code, route.content, route.headers)
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeMonotonic:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def advance(self, seconds: float) -> None:
        self.value += seconds

    def __call__(self) -> float:
        return self.value


def usgs_url(feed: str) -> str:
    return f"{USGS_BASE}/summary/{feed}.geojson"


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "USGS_BASE": USGS_BASE,
        "USGS_FEEDS": "all_day,2.5_day,1.0_day",
        "OPEN_METEO_BASES": OPEN_METEO_BASE,
        "GEOCODING_BASE": GEOCODING_BASE,
        "TIME_API_BASE": TIME_BASE,
        "MIN_MAGNITUDE": 0.5,
        "FEED_CAP": 20,
        "WATCHLIST_PATH": FIXTURES / "does-not-exist.yaml",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings() -> Settings:
    return make_settings()
