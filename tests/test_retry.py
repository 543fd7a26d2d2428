from keysmith.retry import (
    RATE_LIMIT_POLICY,
    TRANSPORT_POLICY,
    RetryPolicy,
    exponential_backoff,
    linear_backoff,
)


class TestBackoffCurves:
    def test_exponential(self) -> "None":
        backoff = exponential_backoff(1.0)
        assert [backoff(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_linear(self) -> "None":
        backoff = linear_backoff(5.0)
        assert [backoff(a) for a in (1, 2, 3)] == [5.0, 10.0, 15.0]


class TestRetryPolicy:
    def test_default_policies(self) -> "None":
        assert TRANSPORT_POLICY.max_attempts == 3
        assert [TRANSPORT_POLICY.delay(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]
        assert [RATE_LIMIT_POLICY.delay(a) for a in (1, 2, 3)] == [5.0, 10.0, 15.0]

    def test_stops_at_max_attempts(self) -> "None":
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1, 500) is True
        assert policy.should_retry(2, 500) is True
        assert policy.should_retry(3, 500) is False

    def test_auth_failures_are_not_retried(self) -> "None":
        assert TRANSPORT_POLICY.should_retry(1, 401) is False
        assert TRANSPORT_POLICY.should_retry(1, 403) is False

    def test_transport_failures_are_retried(self) -> "None":
        assert TRANSPORT_POLICY.should_retry(1, None) is True

    def test_custom_predicate(self) -> "None":
        policy = RetryPolicy(retriable=lambda status: status == 503)
        assert policy.should_retry(1, 503) is True
        assert policy.should_retry(1, 500) is False
