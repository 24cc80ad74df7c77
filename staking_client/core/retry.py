"""
Retry scheduler for network calls.

One policy (max attempts, backoff) shared by every RPC call site. Only
TransientNetworkError is retried; everything else propagates on first raise.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from staking_client.core.exceptions import TransientNetworkError
from staking_client.staking_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_BASE_DELAY_SEC = 0.4
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_DELAY_SEC = 5.0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_sec: float = DEFAULT_BASE_DELAY_SEC
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    max_delay_sec: float = DEFAULT_MAX_DELAY_SEC

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_sec < 0 or self.max_delay_sec < 0:
            raise ValueError("retry delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay_sec * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay_sec)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientNetworkError)


class RetryScheduler:
    """Wrap an async operation; retry transient failures with backoff."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "rpc_call") -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except TransientNetworkError as e:
                if attempt >= self.policy.max_attempts:
                    e.attempts = attempt
                    logger.error(
                        "retry_exhausted",
                        operation=label,
                        attempts=attempt,
                        error=str(e),
                        error_code=e.code,
                    )
                    raise
                backoff = self.policy.delay_for(attempt)
                logger.warning(
                    "retry_scheduled",
                    operation=label,
                    attempt=attempt,
                    error=str(e),
                    error_code=e.code,
                    backoff_sec=round(backoff, 3),
                )
                await self._sleep(backoff)
                attempt += 1
