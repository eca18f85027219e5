import pytest

from lattice_link.config import Settings
from lattice_link.errors import NotFoundError, OperationError, TransientProviderError
from lattice_link.reconciler.retry import RetryPolicy, call_with_retry


class Flaky:
    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or TransientProviderError("ThrottlingException")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_delays_grow_exponentially_and_cap():
    policy = RetryPolicy(base_delay=1.0, factor=2.0, max_delay=5.0)

    assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_policy_reads_settings():
    policy = RetryPolicy.from_settings(Settings(retry_base_delay=0.5, retry_max_attempts=3))

    assert policy.base_delay == 0.5
    assert policy.max_attempts == 3


def test_transient_errors_are_retried():
    sleeps = []
    fn = Flaky(2)

    assert call_with_retry(fn, RetryPolicy(), sleep=sleeps.append) == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_attempts_are_bounded():
    sleeps = []
    fn = Flaky(10)

    with pytest.raises(OperationError, match="create listener failed after 5 attempts"):
        call_with_retry(fn, RetryPolicy(), description="create listener", sleep=sleeps.append)
    assert fn.calls == 5
    assert len(sleeps) == 4


def test_permanent_errors_are_not_retried():
    fn = Flaky(1, error=NotFoundError("gone"))

    with pytest.raises(NotFoundError):
        call_with_retry(fn, RetryPolicy(), sleep=lambda _: None)
    assert fn.calls == 1


def test_max_attempts_override():
    fn = Flaky(10)

    with pytest.raises(OperationError):
        call_with_retry(fn, RetryPolicy(), sleep=lambda _: None, max_attempts=2)
    assert fn.calls == 2
