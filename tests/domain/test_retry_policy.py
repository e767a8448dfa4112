"""Tests for giving_kernel.domain.retry_policy -- classification and backoff."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from giving_kernel.domain.retry_policy import (
    FailureClass,
    FailureReason,
    RetryPolicy,
)

FAILED_AT = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class TestDefaultSchedule:
    def test_attempts_follow_one_five_thirty_minutes(self):
        policy = RetryPolicy()

        delays = [
            policy.should_retry(count, FailureReason.TIMEOUT, FAILED_AT).next_retry_at
            - FAILED_AT
            for count in range(3)
        ]

        assert delays == [
            timedelta(minutes=1),
            timedelta(minutes=5),
            timedelta(minutes=30),
        ]

    def test_attempt_number_is_one_based(self):
        decision = RetryPolicy().should_retry(0, FailureReason.NETWORK_ERROR, FAILED_AT)

        assert decision.should_retry
        assert decision.attempt_number == 1
        assert decision.failure_class == FailureClass.TRANSIENT
        assert not decision.final

    def test_no_fourth_attempt(self):
        decision = RetryPolicy().should_retry(3, FailureReason.TIMEOUT, FAILED_AT)

        assert not decision.should_retry
        assert decision.next_retry_at is None
        assert decision.final
        assert "exhausted" in decision.explanation

    def test_session_expiry_is_transient(self):
        policy = RetryPolicy()
        assert policy.classify(FailureReason.SESSION_EXPIRED) == FailureClass.TRANSIENT


class TestPermanentFailures:
    @pytest.mark.parametrize(
        "reason",
        [
            FailureReason.INSUFFICIENT_FUNDS,
            FailureReason.USER_DECLINED,
            FailureReason.INVALID_PHONE_NUMBER,
            "something_unheard_of",
            None,
        ],
    )
    def test_never_retried(self, reason):
        decision = RetryPolicy().should_retry(0, reason, FAILED_AT)

        assert not decision.should_retry
        assert decision.failure_class == FailureClass.PERMANENT
        assert decision.next_retry_at is None


class TestPolicyConstruction:
    def test_backoff_must_strictly_increase(self):
        with pytest.raises(ValueError):
            RetryPolicy(backoff=(timedelta(minutes=5), timedelta(minutes=5)))

    def test_delay_for_outside_range(self):
        policy = RetryPolicy()
        with pytest.raises(ValueError):
            policy.delay_for(0)
        with pytest.raises(ValueError):
            policy.delay_for(4)

    def test_from_minutes(self):
        policy = RetryPolicy.from_minutes([2, 4], {"timeout"})

        assert policy.max_retries == 2
        assert policy.delay_for(2) == timedelta(minutes=4)
        assert policy.classify("network_error") == FailureClass.PERMANENT

    def test_empty_backoff_disables_retries(self):
        decision = RetryPolicy(backoff=()).should_retry(0, "timeout", FAILED_AT)
        assert not decision.should_retry


increasing_minutes = st.lists(
    st.integers(min_value=1, max_value=500), min_size=1, max_size=8, unique=True
).map(sorted)


class TestBackoffProperties:
    @given(minutes=increasing_minutes)
    def test_delays_strictly_increase_with_attempt(self, minutes):
        policy = RetryPolicy.from_minutes(minutes)
        delays = [policy.delay_for(n) for n in range(1, policy.max_retries + 1)]

        assert all(a < b for a, b in zip(delays, delays[1:]))

    @given(minutes=increasing_minutes, retry_count=st.integers(0, 20))
    def test_retry_only_while_attempts_remain(self, minutes, retry_count):
        policy = RetryPolicy.from_minutes(minutes)
        decision = policy.should_retry(retry_count, "timeout", FAILED_AT)

        assert decision.should_retry == (retry_count < len(minutes))
        if decision.should_retry:
            assert decision.next_retry_at == FAILED_AT + timedelta(
                minutes=minutes[retry_count]
            )
