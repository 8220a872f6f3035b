from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from ingest.errors import (
    HttpStatusError,
    IngestError,
    NoDataAvailable,
    ParseError,
    PayloadRejected,
    TransportError,
)


logger = logging.getLogger(__name__)

AcceptFn = Callable[[Any], bool]


@dataclass(frozen=True)
class FetchTimeouts:
    connect: float = 5.0
    read: float = 15.0
    write: float = 5.0
    pool: float = 5.0
    # Upper bound for one endpoint attempt, headers and body included.
    total: float = 20.0

    def as_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect, read=self.read, write=self.write, pool=self.pool
        )


@dataclass(frozen=True)
class FetchSuccess:
    url: str
    payload: Any
    attempts: int
    elapsed_ms: int


@dataclass(frozen=True)
class FetchExhausted:
    attempts: int
    last_error: IngestError | None


FetchOutcome = FetchSuccess | FetchExhausted


def accept_any(payload: Any) -> bool:
    return payload is not None


async def fetch_json(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    timeouts: FetchTimeouts,
    params: dict[str, str] | None = None,
) -> tuple[Any, int]:
    """GET ``url`` and decode the body as JSON.

    Returns ``(payload, elapsed_ms)``. Raises :class:`TransportError` for
    connection problems, timeouts and non-2xx responses, :class:`ParseError`
    when the body is not JSON.
    """
    headers = {
        "User-Agent": user_agent,
        "Accept": "application/json, application/geo+json, */*",
    }
    try:
        response = await asyncio.wait_for(
            client.get(
                url, params=params, headers=headers, timeout=timeouts.as_httpx()
            ),
            timeout=timeouts.total,
        )
    except (httpx.TimeoutException, asyncio.TimeoutError) as e:
        raise TransportError(f"timeout: {url}") from e
    except httpx.RequestError as e:
        raise TransportError(f"request_error:{e.__class__.__name__}: {url}") from e

    if not response.is_success:
        raise HttpStatusError(url, response.status_code)

    try:
        payload = json.loads(response.content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"invalid json: {url}") from e

    elapsed_ms = int(response.elapsed.total_seconds() * 1000)
    return payload, elapsed_ms


class SourceFetcher:
    """Fetches one logical resource from an ordered list of candidate endpoints."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        user_agent: str,
        timeouts: FetchTimeouts | None = None,
    ) -> None:
        self._client = client
        self._user_agent = user_agent
        self._timeouts = timeouts or FetchTimeouts()

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def timeouts(self) -> FetchTimeouts:
        return self._timeouts

    async def fetch_first(
        self, candidates: Sequence[str], min_acceptable: AcceptFn = accept_any
    ) -> FetchOutcome:
        last_error: IngestError | None = None
        attempts = 0
        for url in candidates:
            attempts += 1
            try:
                payload, elapsed_ms = await fetch_json(
                    self._client,
                    url=url,
                    user_agent=self._user_agent,
                    timeouts=self._timeouts,
                )
            except (TransportError, ParseError) as e:
                logger.warning("fetch failed for %s: %s", url, e)
                last_error = e
                continue

            try:
                accepted = bool(min_acceptable(payload))
            except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning("acceptance check crashed for %s: %r", url, e)
                last_error = ParseError(f"unexpected payload shape: {url}")
                continue

            if not accepted:
                logger.warning("payload from %s did not pass acceptance check", url)
                last_error = PayloadRejected(url)
                continue

            return FetchSuccess(
                url=url, payload=payload, attempts=attempts, elapsed_ms=elapsed_ms
            )

        logger.warning(
            "all %d candidate endpoint(s) exhausted, last error: %s",
            attempts,
            last_error,
        )
        return FetchExhausted(attempts=attempts, last_error=last_error)

    async def fetch(
        self, candidates: Sequence[str], min_acceptable: AcceptFn = accept_any
    ) -> Any:
        outcome = await self.fetch_first(candidates, min_acceptable)
        if isinstance(outcome, FetchExhausted):
            raise NoDataAvailable(outcome.last_error, outcome.attempts)
        return outcome.payload
