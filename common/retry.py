import asyncio
import logging
from typing import Awaitable, Callable

from common.errors import ConflictError, TransientDependencyError


def exponential_backoff(base: float = 0.5, factor: float = 2.0, cap: float = 8.0) -> Callable[[int], float]:
    """Delay before retry number ``attempt`` (1-based): base, base*factor, ... capped."""
    def delay(attempt: int) -> float:
        return min(cap, base * factor ** (attempt - 1))
    return delay


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientDependencyError)


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ConflictError)


class RetryPolicy:
    """Bounded retry: how many attempts, how long to wait, and which errors qualify.

    Errors rejected by ``retry_on`` propagate on the first attempt. Once
    ``max_attempts`` is reached the last error propagates unchanged.
    """

    def __init__(self,
                 max_attempts: int = 3,
                 backoff: Callable[[int], float] = exponential_backoff(),
                 retry_on: Callable[[BaseException], bool] = is_transient,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep,
                 name: str = "call"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.retry_on = retry_on
        self.sleep = sleep
        self.name = name

    async def call(self, func: Callable[..., Awaitable], *args, **kwargs):
        attempt = 1
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.retry_on(e) or attempt >= self.max_attempts:
                    raise
                delay = self.backoff(attempt)
                logging.warning(f"[RETRY {self.name}] Attempt {attempt}/{self.max_attempts} failed: "
                                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s")
                await self.sleep(delay)
                attempt += 1

    def with_sleep(self, sleep: Callable[[float], Awaitable]) -> "RetryPolicy":
        return RetryPolicy(self.max_attempts, self.backoff, self.retry_on, sleep, self.name)
