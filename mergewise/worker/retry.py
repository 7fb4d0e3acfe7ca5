"""Bounded, fixed-delay retry for outbound GitHub calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from mergewise.github_client import GitHubAPIError
from mergewise.logger import describe_error, get_logger, log_with_context

logger = get_logger()

RequestT = TypeVar("RequestT")
ResultT = TypeVar("ResultT")


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def is_retryable_error(error: BaseException) -> bool:
    """Classify an outbound call failure as transient or not."""

    if isinstance(error, GitHubAPIError):
        return error.status_code == 429 or error.status_code >= 500
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return True
    if isinstance(error, (httpx.TransportError, TypeError)):
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay policy: ``max_retries`` extra attempts after the first one."""

    max_retries: int
    retry_delay: float

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def next_state(self, attempt_number: int, error: BaseException | None) -> RetryState:
        if error is None:
            return RetryState.SUCCEEDED
        if attempt_number >= self.total_attempts or not is_retryable_error(error):
            return RetryState.FAILED
        return RetryState.RETRY_SCHEDULED


@dataclass
class RetryDependencies:
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    logger: Any = field(default_factory=lambda: logger)


async def fetch_with_retry(
    request: RequestT,
    max_retries: int,
    retry_delay: float,
    transport: Callable[[RequestT], Awaitable[ResultT]],
    *,
    operation: str = "github_request",
    dependencies: RetryDependencies | None = None,
    **context: str | int | None,
) -> ResultT:
    """Call ``transport(request)`` up to ``max_retries + 1`` times.

    Transient failures (429, 5xx, timeouts, transport faults) are retried after
    ``retry_delay`` seconds. Anything else, or the last failure once attempts
    run out, propagates unchanged.
    """

    deps = dependencies or RetryDependencies()
    policy = RetryPolicy(max_retries=max_retries, retry_delay=retry_delay)
    ctx_logger = log_with_context(deps.logger, operation=operation, **context)

    attempt_number = 1
    while True:
        try:
            result = await transport(request)
        except Exception as exc:
            state = policy.next_state(attempt_number, exc)
            if state is RetryState.FAILED:
                raise
            ctx_logger.bind(attempt=f"{attempt_number}/{policy.total_attempts}").warning(
                f"Retrying {operation} attempt={attempt_number}/{policy.total_attempts} "
                f"retryable=True: {describe_error(exc)}"
            )
            await deps.sleep(policy.retry_delay)
            attempt_number += 1
            continue

        if attempt_number > 1:
            ctx_logger.info(f"{operation} succeeded on attempt {attempt_number}/{policy.total_attempts}")
        return result
