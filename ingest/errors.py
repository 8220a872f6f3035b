from __future__ import annotations


class IngestError(Exception):
    """Base class for everything that can go wrong while pulling upstream data."""


class TransportError(IngestError):
    """Connection failure, timeout, or an unusable HTTP response."""


class HttpStatusError(TransportError):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"http_{status_code}: {url}")
        self.url = url
        self.status_code = status_code


class ParseError(IngestError):
    """The upstream body could not be decoded into the expected shape."""


class PayloadRejected(IngestError):
    def __init__(self, url: str) -> None:
        super().__init__(f"payload rejected: {url}")
        self.url = url


class NoDataAvailable(IngestError):
    def __init__(self, last_error: IngestError | None, attempts: int) -> None:
        message = f"no acceptable payload after {attempts} endpoint(s)"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class AggregationFailed(IngestError):
    def __init__(self, failures: dict[str, str]) -> None:
        detail = ", ".join(f"{k}={v}" for k, v in sorted(failures.items()))
        super().__init__(f"no source produced usable data ({detail})")
        self.failures = dict(failures)
