"""HTTP helpers with retry/backoff for notification providers."""

from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable

import anyio
import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    return delay + random.uniform(0, delay / 2) if delay else 0.0


def _retry_after_seconds(response: httpx.Response, max_delay: float) -> float | None:
    """Honor a numeric Retry-After header, capped at max_delay."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return min(max_delay, max(0.0, float(value)))
    except ValueError:
        return None


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
    retry_request_errors: bool = True,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Transport errors are retried and re-raised after the last attempt, or
    raised immediately when retry_request_errors is False (non-idempotent POSTs
    where the provider may have accepted the request before the error).
    Retryable statuses return the final response once attempts run out.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        last_attempt = attempt >= max_attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if last_attempt or not retry_request_errors:
                raise
            logger.warning("HTTP request failed (attempt %s), retrying", attempt + 1, exc_info=exc)
            await anyio.sleep(_backoff_delay(attempt, base_delay, max_delay))
            continue

        if response.status_code in statuses and not last_attempt:
            delay = _retry_after_seconds(response, max_delay)
            if delay is None:
                delay = _backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "HTTP request returned %s (attempt %s), retrying", response.status_code, attempt + 1
            )
            await anyio.sleep(delay)
            continue

        return response

    raise RuntimeError("request_with_retries called with max_attempts < 1")
