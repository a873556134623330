import pytest

from panelcast.domain.retry import RetryPolicy, RetryState, backoff_delay


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0), (5, 30.0), (9, 30.0)],
)
def test_backoff_doubles_then_caps(attempt, expected):
    assert backoff_delay(attempt, 2.0, 30.0) == expected


def test_backoff_rejects_attempt_zero():
    with pytest.raises(ValueError):
        backoff_delay(0, 2.0, 30.0)


def test_rate_limit_budget_runs_out():
    state = RetryState(RetryPolicy(2.0, 30.0, 3, 10))
    delays = [state.on_rate_limited() for _ in range(4)]
    assert delays == [2.0, 4.0, 8.0, None]


def test_new_credential_resets_rate_limit_counter():
    state = RetryState(RetryPolicy(2.0, 30.0, 5, 10))
    state.on_rate_limited()
    state.on_rate_limited()
    assert state.on_new_credential()
    assert state.rate_limit_retries == 0
    assert state.on_rate_limited() == 2.0


def test_credential_attempt_ceiling():
    state = RetryState(RetryPolicy(2.0, 30.0, 5, 2))
    assert state.on_new_credential()
    assert state.on_new_credential()
    assert not state.on_new_credential()
