"""
Shared HTTP client with timeouts and retries for the Shopify Admin API.
Reads retry on throttling (429) and gateway errors; writes are single-attempt.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds
RETRYABLE_STATUS = (429, 502, 503, 504)


def _retry_after_seconds(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


async def _sleep_backoff(attempt: int, retry_after: Optional[float] = None) -> None:
    if attempt <= 0:
        return
    delay = retry_after if retry_after is not None else RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
    await asyncio.sleep(min(delay, 10.0))


async def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
    retry_on: tuple[int, ...] = RETRYABLE_STATUS,
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform HTTP request with timeout and retries for throttling/gateway errors and connection errors.
    Honors Retry-After on 429.
    """
    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.request(method, url, **kwargs)
            if attempt < max_retries and resp.status_code in retry_on:
                logger.warning("HTTP %s %s -> %s, retrying (attempt %s)", method, url, resp.status_code, attempt + 1)
                await _sleep_backoff(attempt + 1, _retry_after_seconds(resp))
                continue
            return resp
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout) as e:
            if attempt < max_retries:
                logger.warning("HTTP %s %s attempt %s failed: %s", method, url, attempt + 1, e)
                await _sleep_backoff(attempt + 1)
            else:
                raise
    raise RuntimeError("unreachable")  # loop always returns or raises


async def get_with_retry(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
) -> httpx.Response:
    """GET with retries on 429/5xx and connection errors."""
    return await request_with_retry(
        "GET", url, params=params, headers=headers, timeout=timeout, max_retries=max_retries
    )


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Response:
    """POST with no retries (non-idempotent). Uses single attempt with timeout."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.post(url, json=json or {}, headers=headers or {})
