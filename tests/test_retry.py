"""
Retry/backoff tests.

Guards against:
1. Retrying credential failures that can never succeed
2. Unbounded backoff delays
"""
import pytest

from conftest import SleepRecorder, run
from liveperf.errors import AuthError, TransientError
from liveperf.utils.retry import RetryStats, calculate_backoff, is_retryable_error, retry_transient


class Flaky:
    """Raises the scripted errors in order, then returns 'ok'"""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def test_backoff_doubles_and_caps():
    delays = [calculate_backoff(n, base_delay=1.0, max_delay=5.0, jitter=False) for n in range(1, 6)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_jitter_stays_within_quarter():
    for _ in range(20):
        assert 2.0 <= calculate_backoff(2, base_delay=1.0) <= 2.5


@pytest.mark.parametrize("error,expected", [
    (TransientError("503"), True),
    (ConnectionError("boom"), True),
    (TimeoutError(), True),
    (Exception("429 Too Many Requests"), True),
    (Exception("upstream connection reset"), True),
    (Exception("request timed out"), True),
    (ValueError("bad field"), False),
    (AuthError("invalid token"), False),
])
def test_is_retryable_error(error, expected):
    assert is_retryable_error(error) is expected


def test_transient_error_retried_until_success():
    operation = Flaky(TransientError("rate limited"))
    sleeper = SleepRecorder()
    stats = RetryStats()

    result = run(retry_transient(operation, "fetch", max_attempts=3, base_delay=0.5, stats=stats, sleep=sleeper))

    assert result == "ok"
    assert operation.calls == 2
    assert stats.success is True
    assert stats.retries == 1
    assert len(sleeper.delays) == 1
    assert 0.5 <= sleeper.delays[0] <= 0.625


def test_non_transient_error_raised_immediately():
    operation = Flaky(AuthError("revoked"))
    sleeper = SleepRecorder()
    stats = RetryStats()

    with pytest.raises(AuthError):
        run(retry_transient(operation, "fetch", stats=stats, sleep=sleeper))

    assert operation.calls == 1
    assert sleeper.delays == []
    assert stats.to_dict()["last_error"] == "AuthError: revoked"


def test_gives_up_after_max_attempts():
    operation = Flaky(TransientError("a"), TransientError("b"), TransientError("c"))
    sleeper = SleepRecorder()
    stats = RetryStats()

    with pytest.raises(TransientError, match="c"):
        run(retry_transient(operation, "fetch", max_attempts=3, stats=stats, sleep=sleeper))

    assert operation.calls == 3
    assert len(sleeper.delays) == 2
    assert stats.attempts == 3
    assert stats.success is False
    assert len(stats.errors) == 3
