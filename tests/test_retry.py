import pytest

from momo_payments.providers.retry import (
    PermanentProviderError,
    RetryPolicy,
    TransientProviderError,
    call_with_retry,
)


def test_backoff_doubles_from_base_delay():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0)
    assert [policy.next_delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]


@pytest.mark.parametrize("status_code, retried", [
    (None, True),
    (500, True),
    (503, True),
    (429, True),
    (400, False),
    (401, False),
    (404, False),
])
def test_should_retry(status_code, retried):
    assert RetryPolicy().should_retry(status_code) is retried


def test_succeeds_after_two_transient_failures(mocker):
    operation = mocker.Mock(side_effect=[
        TransientProviderError("boom", 500),
        TransientProviderError("boom", 500),
        "ok",
    ])
    delays = []

    assert call_with_retry(operation, RetryPolicy(), delays.append) == "ok"
    assert operation.call_count == 3
    assert delays == [1.0, 2.0]


def test_gives_up_after_max_attempts(mocker):
    operation = mocker.Mock(side_effect=TransientProviderError("down", 503))
    delays = []

    with pytest.raises(TransientProviderError):
        call_with_retry(operation, RetryPolicy(max_attempts=3), delays.append)

    assert operation.call_count == 3
    assert delays == [1.0, 2.0]


def test_permanent_error_is_not_retried(mocker):
    operation = mocker.Mock(side_effect=PermanentProviderError("rejected", 400))
    delays = []

    with pytest.raises(PermanentProviderError):
        call_with_retry(operation, RetryPolicy(), delays.append)

    assert operation.call_count == 1
    assert delays == []
