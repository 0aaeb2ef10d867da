# mcp_ledger/upstream/retry.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from ..core.errors import UpstreamRetryableError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
MAX_RETRY_AFTER_SECONDS = 30.0

Sleep = Callable[[float], Awaitable[None]]


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return min(float(value), MAX_RETRY_AFTER_SECONDS)
    except ValueError:
        return None


async def send_with_retries(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    description: str,
    max_retries: int,
    backoff_base: float,
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """
    Run `send` until it yields a non-retryable response.

    Timeouts, connection errors, 429 and 5xx responses are retried up to
    `max_retries` times with exponential backoff (backoff_base * 2**attempt,
    or the server's Retry-After when given). Any other response, including
    4xx, is returned to the caller untouched.

    Raises:
        UpstreamRetryableError: when every attempt failed transiently
    """
    last_problem = "no attempt made"
    for attempt in range(max_retries + 1):
        delay = backoff_base * (2 ** attempt)
        try:
            response = await send()
        except (httpx.TimeoutException, httpx.TransportError) as e:
            last_problem = f"{type(e).__name__}: {e}"
            logger.warning(f"{description}: attempt {attempt + 1} failed with {last_problem}")
        else:
            if response.status_code not in RETRYABLE_STATUS_CODES:
                return response
            last_problem = f"HTTP {response.status_code}"
            delay = _retry_after_seconds(response) or delay
            logger.warning(f"{description}: attempt {attempt + 1} returned {last_problem}")

        if attempt < max_retries:
            await sleep(delay)

    logger.error(f"{description}: giving up after {max_retries + 1} attempts ({last_problem}).")
    raise UpstreamRetryableError(
        f"Xero is temporarily unavailable ({description} failed: {last_problem})."
    )
