import httpx
import pytest

from app.payouts.errors import ProviderTerminal, ProviderTransient, ValidationError
from app.payouts.retry import RetryPolicy, is_retryable, run_with_retry, with_retry
from services.metrics import get_counter


class _Flaky:
    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.calls = 0
        self.value = value

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, cap_delay=10.0)


def test_delay_schedule():
    assert POLICY.delay_before(1) == 0.0
    assert POLICY.delay_before(2) == 2.0
    assert POLICY.delay_before(3) == 4.0
    assert RetryPolicy(max_attempts=6, base_delay=1.0, cap_delay=10.0).delay_before(6) == 10.0


def test_transient_then_success():
    sleeps = []
    op = _Flaky([ProviderTransient("timeout"), ProviderTransient("503", http_status=503)])
    outcome = run_with_retry(op, POLICY, label="t", sleep=sleeps.append)
    assert outcome.ok
    assert outcome.value == "ok"
    assert outcome.attempts == 3
    assert sleeps == [2.0, 4.0]
    assert get_counter("retry_attempts_total", {"label": "t", "result": "retryable_error"}) == 2
    assert get_counter("retry_attempts_total", {"label": "t", "result": "ok"}) == 1


def test_terminal_error_stops_immediately():
    sleeps = []
    op = _Flaky([ProviderTerminal("bad account", http_status=400)])
    outcome = run_with_retry(op, POLICY, sleep=sleeps.append)
    assert not outcome.ok
    assert outcome.attempts == 1
    assert isinstance(outcome.error, ProviderTerminal)
    assert sleeps == []


def test_exhaustion_marks_error_retryable():
    sleeps = []
    op = _Flaky([ProviderTransient("t1"), ProviderTransient("t2"), ProviderTransient("t3")])
    with pytest.raises(ProviderTransient) as exc:
        with_retry(op, POLICY, sleep=sleeps.append)
    assert str(exc.value) == "t3"
    assert exc.value.retryable is True
    assert op.calls == 3
    assert sleeps == [2.0, 4.0]


def test_raw_transport_error_is_wrapped_after_exhaustion():
    op = _Flaky([httpx.ConnectError("reset")] * 3)
    with pytest.raises(ProviderTransient) as exc:
        with_retry(op, POLICY, sleep=lambda _: None)
    assert exc.value.retryable is True
    assert isinstance(exc.value.__cause__, httpx.ConnectError)


def test_classification():
    assert is_retryable(ProviderTransient("x"))
    assert is_retryable(ProviderTerminal("rate limited", http_status=429))
    assert not is_retryable(ProviderTransient("x", http_status=401))
    assert not is_retryable(ValidationError("bad"))
    assert is_retryable(TimeoutError())
    assert not is_retryable(KeyError("x"))
