"""Tests for the retry policy."""

import pytest

from dvschema.errors import NotFoundError, RateLimitedError, RegistryError, ResolutionError
from dvschema.retry import NO_RETRY, RetryPolicy, is_retryable, retrying, with_retry


class Flaky:
    """Callable that raises the queued errors, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestPolicy:

    def test_default_delays(self):
        assert list(RetryPolicy().delays()) == [1.0, 2.0, 4.0]

    def test_custom_delays(self):
        assert list(RetryPolicy(max_retries=4, base_delay=0.5, multiplier=3).delays()) == [0.5, 1.5, 4.5, 13.5]

    def test_no_retry(self):
        assert list(NO_RETRY.delays()) == []

    def test_classification(self):
        assert is_retryable(RateLimitedError("x"))
        assert not is_retryable(NotFoundError("x"))
        assert not is_retryable(RegistryError("x"))
        assert not is_retryable(ValueError("x"))


class TestWithRetry:

    def test_success_first_time(self):
        sleeps = []
        op = Flaky()
        assert with_retry(op, sleep=sleeps.append) == "ok"
        assert op.calls == 1
        assert sleeps == []

    def test_succeeds_on_third_retry(self):
        sleeps = []
        op = Flaky(RateLimitedError("a"), RateLimitedError("b"), RateLimitedError("c"))

        assert with_retry(op, sleep=sleeps.append) == "ok"
        assert op.calls == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_exhausted_raises_last_error(self):
        sleeps = []
        errors = [RateLimitedError(str(i)) for i in range(4)]
        op = Flaky(*errors)

        with pytest.raises(RateLimitedError) as exc_info:
            with_retry(op, sleep=sleeps.append)
        assert exc_info.value is errors[-1]
        assert op.calls == 4
        assert sleeps == [1.0, 2.0, 4.0]

    @pytest.mark.parametrize("error", [RegistryError("bad request"), NotFoundError("gone"), ResolutionError("type")])
    def test_non_retryable_propagates_immediately(self, error):
        sleeps = []
        op = Flaky(error)

        with pytest.raises(type(error)) as exc_info:
            with_retry(op, sleep=sleeps.append)
        assert exc_info.value is error
        assert op.calls == 1
        assert sleeps == []

    def test_retry_after_extends_delay(self):
        sleeps = []
        op = Flaky(RateLimitedError("a", retry_after=5), RateLimitedError("b", retry_after=0.5))

        with_retry(op, sleep=sleeps.append)
        assert sleeps == [5, 2.0]


def test_retrying_decorator():
    sleeps = []
    op = Flaky(RateLimitedError("a"))

    @retrying(RetryPolicy(max_retries=1, base_delay=0.25), sleep=sleeps.append)
    def call():
        return op()

    assert call() == "ok"
    assert sleeps == [0.25]
