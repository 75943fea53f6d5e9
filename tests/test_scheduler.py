"""Tests for the retry decision."""

from datetime import timedelta

import pytest

from deskhook.models import RetryPolicy
from deskhook.webhooks.scheduler import RetryDecision, decide
from helpers import T0

POLICY = RetryPolicy(max_retries=3, retry_delay_ms=1000, backoff_multiplier=2.0)


def test_success_is_final():
    assert decide(POLICY, 1, succeeded=True, now=T0) == RetryDecision(status="success")


def test_success_on_last_allowed_attempt():
    decision = decide(POLICY, POLICY.max_attempts, succeeded=True, now=T0)
    assert decision.status == "success"
    assert decision.next_retry_at is None


@pytest.mark.parametrize(
    "attempts_made,delay_seconds",
    [(1, 1), (2, 2), (3, 4)],
)
def test_failure_schedules_backoff(attempts_made, delay_seconds):
    decision = decide(POLICY, attempts_made, succeeded=False, now=T0)
    assert decision.status == "retrying"
    assert decision.next_retry_at == T0 + timedelta(seconds=delay_seconds)


def test_failure_after_last_retry_fails():
    decision = decide(POLICY, 4, succeeded=False, now=T0)
    assert decision == RetryDecision(status="failed")


@pytest.mark.parametrize("max_retries", [0, 1, 5, 10])
def test_attempt_budget_is_max_attempts(max_retries):
    policy = RetryPolicy(max_retries=max_retries)

    if policy.max_attempts > 1:
        last_retry = decide(policy, policy.max_attempts - 1, succeeded=False, now=T0)
        assert last_retry.status == "retrying"
    exhausted = decide(policy, policy.max_attempts, succeeded=False, now=T0)
    assert exhausted.status == "failed"


def test_zero_retries_fails_immediately():
    decision = decide(RetryPolicy(max_retries=0), 1, succeeded=False, now=T0)
    assert decision.status == "failed"


def test_fractional_multiplier():
    policy = RetryPolicy(max_retries=5, retry_delay_ms=1000, backoff_multiplier=1.5)
    decision = decide(policy, 3, succeeded=False, now=T0)
    assert decision.next_retry_at == T0 + timedelta(milliseconds=2250)


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        decide(POLICY, 0, succeeded=False, now=T0)
