"""Exponential backoff with full jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from remediation_core.errors import RemediationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_seconds: float,
    max_seconds: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number *attempt* (0-based): uniform in [0, min(max, base * 2^n)]."""
    ceiling = min(max_seconds, base_seconds * (2**attempt))
    return ceiling * rng()


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_seconds: float,
    max_seconds: float,
    on_retry: Callable[[int, RemediationError], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *operation*, retrying retryable ``RemediationError``s.

    Non-retryable errors, and the error of the last attempt, propagate.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except RemediationError as exc:
            attempt += 1
            if not exc.retryable or attempt >= max_attempts:
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            delay = backoff_delay(attempt - 1, base_seconds, max_seconds)
            logger.info(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                max_attempts,
                exc.code,
                delay,
            )
            await sleep(delay)
