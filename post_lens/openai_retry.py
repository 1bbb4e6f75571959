from __future__ import annotations

from typing import Any, Mapping

from openai import APIConnectionError, APIStatusError, APITimeoutError, RateLimitError


def _parse_retry_after(headers: Mapping[str, Any] | None) -> float | None:
    if not headers:
        return None

    val = headers.get("retry-after")
    if val is None:
        return None

    try:
        return float(str(val).strip())
    except ValueError:
        return None


def _extract_retry_after_seconds(exc: BaseException) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    return _parse_retry_after(headers)


def is_retryable_openai_exception(exc: BaseException) -> tuple[bool, float | None, str | None]:
    """
    OpenAI retry policy aligned with documented transient failures:
    - connection/timeout errors
    - HTTP 408, 409, 429
    - HTTP 5xx
    """
    if isinstance(exc, APITimeoutError):
        return True, None, "timeout"

    if isinstance(exc, APIConnectionError):
        return True, None, "connection_error"

    if isinstance(exc, RateLimitError):
        return True, _extract_retry_after_seconds(exc), "rate_limited"

    if isinstance(exc, APIStatusError):
        code = exc.status_code
        if code in (408, 409, 429) or code >= 500:
            return True, _extract_retry_after_seconds(exc), f"http_{code}"
        return False, None, f"http_{code}"

    return False, None, None
