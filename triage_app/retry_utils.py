"""Bounded retry with exponential backoff for collaborator calls.

Only ``TransientCollaboratorError`` (and its ``RateLimitedError`` subclass)
is retried.  Permanent errors and anything else propagate on the first
failure.  When the provider sends a retry hint (``Retry-After`` or
``X-RateLimit-Reset``) it replaces the computed backoff, still capped by
``max_delay`` so a single call can never stall a tenant's queue for long.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Mapping, TypeVar

from triage_app.errors import TransientCollaboratorError

log = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_JITTER = 0.5
MAX_DELAY = 30.0


def exponential_backoff_delay(
    attempt: int,
    base: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
    max_delay: float = MAX_DELAY,
) -> float:
    """Return ``min(base * 2^attempt + uniform(0, max_jitter), max_delay)``."""
    return min(base * (2 ** attempt) + random.uniform(0, max_jitter), max_delay)


def retry_after_seconds(headers: Mapping[str, str], now: float | None = None) -> float | None:
    """Extract a retry hint from GitHub response headers.

    ``Retry-After`` is given in seconds; ``X-RateLimit-Reset`` is an epoch
    timestamp and is only meaningful when ``X-RateLimit-Remaining`` is 0.
    """
    raw = headers.get("Retry-After") or headers.get("retry-after")
    if raw:
        try:
            return max(0.0, float(raw))
        except ValueError:
            pass

    remaining = headers.get("X-RateLimit-Remaining") or headers.get("x-ratelimit-remaining")
    reset = headers.get("X-RateLimit-Reset") or headers.get("x-ratelimit-reset")
    if remaining == "0" and reset:
        try:
            current = time.time() if now is None else now
            return max(0.0, float(reset) - current)
        except ValueError:
            return None
    return None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str = "operation",
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
    max_delay: float = MAX_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    retry_on: tuple[type[TransientCollaboratorError], ...] = (TransientCollaboratorError,),
) -> T:
    """Await *operation* up to *max_retries* times.

    Only errors matching *retry_on* are retried.  The last one is re-raised
    once attempts are exhausted.
    """
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            if exc.retry_after is not None:
                delay = min(exc.retry_after, max_delay)
            else:
                delay = exponential_backoff_delay(attempt, base_delay, max_jitter, max_delay)
            log.warning(
                "Retry %d/%d for %s in %.1fs: %s",
                attempt, attempts, description, delay, exc,
            )
            await sleep(delay)
    raise AssertionError("unreachable")
