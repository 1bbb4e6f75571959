from __future__ import annotations

import httpx


class HTTPStatusFailure(RuntimeError):
    """A provider endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"HTTP {status_code} from {url}")
        self.status_code = int(status_code)
        self.url = url


def raise_for_provider_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    raise HTTPStatusFailure(response.status_code, str(response.request.url))


def is_retryable_rate_limit(exc: BaseException) -> tuple[bool, float | None, str | None]:
    """
    Syndication retry policy:
    - HTTP 429 (rate limited)
    - network/connection errors and timeouts
    Every other status is terminal. Retry-After is not consulted; the wait is
    always the linear backoff.
    """
    if isinstance(exc, HTTPStatusFailure):
        if exc.status_code == 429:
            return True, None, "rate_limited"
        return False, None, f"http_{exc.status_code}"

    if isinstance(exc, httpx.TimeoutException):
        return True, None, "timeout"

    if isinstance(exc, httpx.TransportError):
        return True, None, "network_error"

    return False, None, None
