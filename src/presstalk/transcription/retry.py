"""Retry classification and backoff."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .errors import NetworkError, ServerError, TimeoutTransportError, TransportError, is_retryable_status

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_s: float = 0.4

    def should_retry(self, error: BaseException) -> bool:
        if isinstance(error, (TimeoutTransportError, NetworkError)):
            return True
        if isinstance(error, ServerError):
            return is_retryable_status(error.status)
        return False

    def next_delay(self, current_s: float) -> float:
        return current_s * 2


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    label: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await `operation()` up to `policy.max_attempts` times; the last error is raised as-is."""
    delay = policy.initial_delay_s
    attempt = 1
    while True:
        try:
            return await operation()
        except TransportError as e:
            if attempt >= policy.max_attempts or not policy.should_retry(e):
                raise
            logger.warning(f"{label} attempt {attempt}/{policy.max_attempts} failed ({e}); retrying in {delay:.2f}s")
            await sleep(delay)
            delay = policy.next_delay(delay)
            attempt += 1
