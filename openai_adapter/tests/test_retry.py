import pytest

from openai_adapter.domain.exceptions import (
    AuthenticationFailed,
    ModelNotAvailable,
    RateLimitExceeded,
    RequestBuildError,
    TransportError,
)
from openai_adapter.providers.retry import RetryPolicy, is_retryable, with_retry


class Flaky:
    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.calls = 0
        self.result = result

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_retries_transport_errors_with_exponential_backoff():
    sleeps = []
    fn = Flaky([TransportError("a"), TransportError("b")])
    policy = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=32.0, backoff_multiplier=2.0)
    assert with_retry(fn, policy, sleep=sleeps.append) == "ok"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_backoff_is_capped():
    policy = RetryPolicy(initial_delay=1.0, max_delay=5.0, backoff_multiplier=10.0)
    assert policy.delay_for(1) == 1.0
    assert policy.delay_for(2) == 5.0
    assert policy.delay_for(5) == 5.0


def test_rate_limit_retry_after_is_honoured():
    sleeps = []
    fn = Flaky([RateLimitExceeded(retry_after=3.0)])
    assert with_retry(fn, RetryPolicy(), sleep=sleeps.append) == "ok"
    assert sleeps == [3.0]


def test_gives_up_after_max_attempts():
    sleeps = []
    fn = Flaky([TransportError("1"), TransportError("2"), TransportError("3")])
    with pytest.raises(TransportError) as exc:
        with_retry(fn, RetryPolicy(max_attempts=3), sleep=sleeps.append)
    assert exc.value.message == "3"
    assert len(sleeps) == 2


@pytest.mark.parametrize(
    "error",
    [RequestBuildError("bad"), AuthenticationFailed(), ModelNotAvailable("gpt-x"), ValueError("x")],
)
def test_non_retryable_errors_raise_immediately(error):
    sleeps = []
    fn = Flaky([error])
    with pytest.raises(type(error)):
        with_retry(fn, RetryPolicy(), sleep=sleeps.append)
    assert fn.calls == 1
    assert sleeps == []


def test_none_policy_does_not_retry():
    fn = Flaky([TransportError("x")])
    with pytest.raises(TransportError):
        with_retry(fn, RetryPolicy.none(), sleep=lambda s: None)
    assert fn.calls == 1


def test_policy_from_settings():
    class Cfg:
        retry_max_attempts = 5
        retry_initial_delay = 0.5
        retry_max_delay = 8.0
        retry_backoff_multiplier = 3.0

    policy = RetryPolicy.from_settings(Cfg())
    assert policy == RetryPolicy(5, 0.5, 8.0, 3.0)
    assert RetryPolicy.exponential_backoff() == RetryPolicy(3, 1.0, 32.0, 2.0)


def test_is_retryable():
    assert is_retryable(TransportError("x"))
    assert is_retryable(RateLimitExceeded())
    assert not is_retryable(AuthenticationFailed())
