from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from mergewise.github_client import GitHubAPIError
from mergewise.worker.retry import (
    RetryDependencies,
    RetryPolicy,
    RetryState,
    fetch_with_retry,
    is_retryable_error,
)


def _api_error(status: int) -> GitHubAPIError:
    return GitHubAPIError(f"GitHub API request failed ({status}).", status)


@pytest.fixture
def deps():
    return RetryDependencies(sleep=AsyncMock(), logger=MagicMock())


@pytest.mark.parametrize(
    "error, expected",
    [
        (_api_error(429), True),
        (_api_error(500), True),
        (_api_error(503), True),
        (_api_error(404), False),
        (_api_error(401), False),
        (httpx.ReadTimeout("slow"), True),
        (httpx.ConnectError("refused"), True),
        (TypeError("fetch failed"), True),
        (ValueError("bad json"), False),
    ],
)
def test_retryable_classification(error, expected):
    assert is_retryable_error(error) is expected


def test_policy_states():
    policy = RetryPolicy(max_retries=2, retry_delay=0.25)

    assert policy.total_attempts == 3
    assert policy.next_state(1, None) is RetryState.SUCCEEDED
    assert policy.next_state(1, _api_error(503)) is RetryState.RETRY_SCHEDULED
    assert policy.next_state(3, _api_error(503)) is RetryState.FAILED
    assert policy.next_state(1, _api_error(404)) is RetryState.FAILED


@pytest.mark.asyncio
async def test_retries_transient_failure_then_succeeds(deps):
    transport = AsyncMock(side_effect=[_api_error(503), ["file"]])

    result = await fetch_with_retry("req", 2, 0.25, transport, dependencies=deps)

    assert result == ["file"]
    assert transport.await_count == 2
    deps.sleep.assert_awaited_once_with(0.25)


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately(deps):
    error = _api_error(404)
    transport = AsyncMock(side_effect=error)

    with pytest.raises(GitHubAPIError) as excinfo:
        await fetch_with_retry("req", 2, 0.25, transport, dependencies=deps)

    assert excinfo.value is error
    assert transport.await_count == 1
    deps.sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_last_error_is_raised_after_attempts_run_out(deps):
    errors = [_api_error(502), _api_error(503), _api_error(500)]
    transport = AsyncMock(side_effect=errors)

    with pytest.raises(GitHubAPIError) as excinfo:
        await fetch_with_retry("req", 2, 0.1, transport, dependencies=deps)

    assert excinfo.value is errors[-1]
    assert transport.await_count == 3
    assert deps.sleep.await_count == 2


@pytest.mark.asyncio
async def test_zero_retries_means_a_single_attempt(deps):
    transport = AsyncMock(side_effect=_api_error(503))

    with pytest.raises(GitHubAPIError):
        await fetch_with_retry("req", 0, 0.1, transport, dependencies=deps)

    assert transport.await_count == 1
    deps.sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_transport_receives_the_request(deps):
    transport = AsyncMock(return_value="ok")

    await fetch_with_retry({"pull": 3}, 1, 0.1, transport, dependencies=deps)

    transport.assert_awaited_once_with({"pull": 3})
