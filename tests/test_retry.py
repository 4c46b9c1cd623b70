# tests/test_retry.py
"""
Retry wrapper tests
"""

import pytest

from utils.retry import retry_operation


class FlakyOperation:
    """Fails a fixed number of times, then returns 'ok'"""

    def __init__(self, failures, error=ConnectionError('connection reset')):
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return 'ok'


@pytest.fixture
def recorded_sleep():
    delays = []

    async def sleep(delay):
        delays.append(delay)

    sleep.delays = delays
    return sleep


@pytest.mark.asyncio
async def test_two_failures_then_success_backs_off(recorded_sleep):
    operation = FlakyOperation(failures=2)

    result = await retry_operation(operation, 'load_requests', retries=3, base_delay=1.0, sleep=recorded_sleep)

    assert result == 'ok'
    assert operation.attempts == 3
    assert recorded_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_first_attempt_success_never_sleeps(recorded_sleep):
    operation = FlakyOperation(failures=0)

    assert await retry_operation(operation, 'load_requests', sleep=recorded_sleep) == 'ok'
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_final_failure_is_reraised_after_all_attempts(recorded_sleep):
    operation = FlakyOperation(failures=10)

    with pytest.raises(ConnectionError, match='connection reset'):
        await retry_operation(operation, 'load_requests', retries=3, base_delay=0.5, sleep=recorded_sleep)

    assert operation.attempts == 4
    assert recorded_sleep.delays == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_errors_outside_retry_on_propagate_immediately(recorded_sleep):
    operation = FlakyOperation(failures=1, error=ValueError('bad row'))

    with pytest.raises(ValueError):
        await retry_operation(operation, 'load_requests', retry_on=(ConnectionError,), sleep=recorded_sleep)

    assert operation.attempts == 1
    assert recorded_sleep.delays == []


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(recorded_sleep):
    operation = FlakyOperation(failures=1)

    with pytest.raises(ConnectionError):
        await retry_operation(operation, 'load_requests', retries=0, sleep=recorded_sleep)

    assert operation.attempts == 1
