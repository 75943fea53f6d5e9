"""Retry decisions for failed delivery attempts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from deskhook.models import RetryPolicy


@dataclass(frozen=True)
class RetryDecision:
    """What happens to a delivery after an attempt."""

    status: Literal["success", "retrying", "failed"]
    next_retry_at: datetime | None = None


def decide(
    policy: RetryPolicy,
    attempts_made: int,
    succeeded: bool,
    now: datetime,
) -> RetryDecision:
    """Decide the next state after ``attempts_made`` attempts.

    A failure schedules another attempt while ``attempts_made`` is below
    ``policy.max_attempts``; the wait grows geometrically with the
    number of attempts already made. Otherwise the delivery fails for good.

    Example:
        With ``retry_delay_ms=1000`` and ``backoff_multiplier=2`` the
        retries are due 1s, 2s and 4s after attempts 1, 2 and 3.
    """
    if attempts_made < 1:
        raise ValueError("attempts_made must be >= 1")
    if succeeded:
        return RetryDecision(status="success")
    if attempts_made < policy.max_attempts:
        return RetryDecision(
            status="retrying",
            next_retry_at=now + policy.delay_for(attempts_made),
        )
    return RetryDecision(status="failed")
