import asyncio
from subprocess import CalledProcessError

import pytest

import ciharness.utils.retry as chu_retry
from ciharness.utils.retry import RetryPlan, exec_retry_function


@pytest.fixture
def sleeps(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(chu_retry.asyncio, "sleep", fake_sleep)
    return delays


def test_succeeds_after_failures(sleeps):
    attempts = []

    async def operation():
        attempts.append(len(attempts))
        return 0 if len(attempts) == 3 else 7

    assert asyncio.run(exec_retry_function(operation, retry_count=3, delay=5)) == 0
    assert len(attempts) == 3
    assert sleeps == [5, 5]


def test_returns_status_of_last_attempt(sleeps):
    attempts = []

    async def operation():
        attempts.append(None)
        return len(attempts)

    assert asyncio.run(exec_retry_function(operation, retry_count=2, delay=1)) == 3
    assert len(attempts) == 3
    assert sleeps == [1, 1]


def test_called_process_error_counts_as_failure(sleeps):
    attempts = []

    async def operation():
        attempts.append(None)
        raise CalledProcessError(5, "publish")

    assert asyncio.run(exec_retry_function(operation, retry_count=0)) == 5
    assert len(attempts) == 1
    assert sleeps == []


def test_none_counts_as_success(sleeps):
    async def operation():
        return None

    assert asyncio.run(exec_retry_function(operation)) == 0
    assert sleeps == []


def test_default_plan():
    async def operation():
        return 0

    plan = RetryPlan(operation)
    assert plan.retry_count == 3
    assert plan.delay == 15


@pytest.mark.parametrize("retry_count, delay", [(-1, 0), (0, -1)])
def test_rejects_negative_values(retry_count, delay):
    async def operation():
        return 0

    with pytest.raises(ValueError):
        RetryPlan(operation, retry_count, delay)
