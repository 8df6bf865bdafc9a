"""Shared HTTP helpers for the REST based clients.

Transient failures (connection drops, timeouts, 429 and 5xx answers) are
retried here with exponential backoff, so nothing above the adapters ever
sees them. Everything else is raised to the caller unchanged.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from descsync.core.errors import MalformedResponseError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_DELAY_SECONDS = 1.0
MAX_RETRY_DELAY_SECONDS = 30.0

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=10.0)

_TRANSIENT_EXCEPTIONS = (
    httpx.ConnectError,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.ConnectTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
)


def is_retryable_status(status_code: int) -> bool:
    """Return True for answers worth retrying (rate limiting and server errors)."""
    return status_code == 429 or status_code >= 500


def _format_error(e: Exception) -> str:
    msg = str(e)
    if not msg or msg.isspace():
        return f"{type(e).__name__}: Connection error (no details available)"
    return f"{type(e).__name__}: {msg}"


def send_with_retry(
    send: Callable[[], httpx.Response],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    sleep: Callable[[float], Any] = time.sleep,
) -> httpx.Response:
    """
    Issue a request with retry logic for transient errors.

    Args:
        send: Zero-argument callable issuing the request.
        max_retries: Maximum number of retry attempts.
        retry_delay_seconds: Base delay; doubled after every attempt and
            capped at MAX_RETRY_DELAY_SECONDS.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The first non-retryable response. Its status is not checked here.

    Raises:
        The last transport exception if all retries are exhausted.
    """
    for attempt in range(max_retries + 1):
        try:
            response = send()
        except _TRANSIENT_EXCEPTIONS as e:
            if attempt >= max_retries:
                raise
            error_msg = _format_error(e)
        else:
            if not is_retryable_status(response.status_code) or attempt >= max_retries:
                return response
            error_msg = f"HTTP {response.status_code}"

        wait_time = min(retry_delay_seconds * (2**attempt), MAX_RETRY_DELAY_SECONDS)
        logger.warning(
            "Transient error (attempt %d/%d): %s. Waiting %.1fs before retry...",
            attempt + 1,
            max_retries + 1,
            error_msg,
            wait_time,
        )
        sleep(wait_time)

    raise AssertionError("unreachable")


def decode_json(response: httpx.Response, context: str) -> Any:
    """Decode a JSON body, raising MalformedResponseError on garbage."""
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(f"Invalid JSON in response to {context}: {e}") from e
