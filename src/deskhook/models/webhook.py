"""Webhook models for helpdesk event notifications.

Provides subscription configuration, the outbound event envelope, and
delivery records with their embedded attempt log.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    computed_field,
    field_validator,
)

from deskhook.exceptions import DeliveryStateError

from .base import generate_id, utcnow


class WebhookEventType(str, Enum):
    """Domain events a subscription can listen to."""

    TICKET_CREATED = "ticket.created"
    TICKET_UPDATED = "ticket.updated"
    TICKET_DELETED = "ticket.deleted"
    TICKET_STATUS_CHANGED = "ticket.status_changed"
    TICKET_ASSIGNED = "ticket.assigned"
    TICKET_PRIORITY_CHANGED = "ticket.priority_changed"
    TICKET_RESOLVED = "ticket.resolved"
    TICKET_CLOSED = "ticket.closed"
    TICKET_REOPENED = "ticket.reopened"
    TICKET_COMMENT_ADDED = "ticket.comment_added"
    TICKET_ESCALATED = "ticket.escalated"
    TICKET_SLA_BREACHED = "ticket.sla_breached"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    TEAM_CREATED = "team.created"
    TEAM_UPDATED = "team.updated"


DeliveryStatus = Literal["pending", "success", "failed", "retrying"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed"})

# Upper bound on a subscription's per-attempt deadline
MAX_TIMEOUT_MS = 300_000

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class RetryPolicy(BaseModel):
    """Per-subscription retry policy.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying).
        retry_delay_ms: Delay before the first retry, in milliseconds.
        backoff_multiplier: Factor applied to the delay for each further retry.
    """

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=3, ge=0, le=10, description="Retries after the first attempt")
    retry_delay_ms: int = Field(default=1000, ge=100, description="Initial retry delay (ms)")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")

    @property
    def max_attempts(self) -> int:
        """Total attempts a delivery may make, the first one included."""
        return self.max_retries + 1

    def delay_for(self, attempts_made: int) -> timedelta:
        """Delay to wait after ``attempts_made`` failed attempts.

        The retry that follows attempt 1 waits ``retry_delay_ms``; every
        later one multiplies the previous delay by ``backoff_multiplier``.
        """
        if attempts_made < 1:
            raise ValueError("attempts_made must be >= 1")
        delay_ms = self.retry_delay_ms * self.backoff_multiplier ** (attempts_made - 1)
        return timedelta(milliseconds=delay_ms)


class WebhookSubscription(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier for this subscription.
        name: Human-readable label.
        created_by: Admin user who owns this subscription.
        url: Absolute http(s) endpoint receiving events.
        secret: Shared secret for HMAC-SHA256 signatures.
        events: Event types this subscription listens to.
        is_active: Whether deliveries are made.
        headers: Extra HTTP headers sent with every delivery.
        http_method: HTTP method used for deliveries.
        retry_policy: Retry and backoff configuration.
        timeout_ms: Total deadline for one delivery attempt.
        last_triggered: When a delivery attempt last completed.
        total_deliveries: Attempts made (derived from the outcome ledger).
        successful_deliveries: Attempts that got a 2xx response.
        failed_deliveries: Attempts that did not.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    name: str = Field(min_length=1, max_length=200, description="Human-readable label")
    created_by: str = Field(description="Admin user who owns this subscription")
    url: HttpUrl = Field(description="Endpoint receiving events")
    secret: str = Field(min_length=16, description="Shared secret for HMAC-SHA256 signatures")
    events: list[WebhookEventType] = Field(min_length=1, description="Subscribed event types")
    is_active: bool = Field(default=True, description="Whether deliveries are made")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    http_method: HttpMethod = Field(default="POST", description="Delivery HTTP method")
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout_ms: int = Field(
        default=30_000, ge=1_000, le=MAX_TIMEOUT_MS, description="Per-attempt deadline (ms)"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_triggered: datetime | None = Field(default=None)
    total_deliveries: int = Field(default=0, ge=0)
    successful_deliveries: int = Field(default=0, ge=0)
    failed_deliveries: int = Field(default=0, ge=0)

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, events: list[WebhookEventType]) -> list[WebhookEventType]:
        return list(dict.fromkeys(events))

    @field_validator("headers")
    @classmethod
    def _check_header_names(cls, headers: dict[str, str]) -> dict[str, str]:
        for name, value in headers.items():
            if not name.strip() or any(c in name for c in "\r\n:"):
                raise ValueError(f"Invalid header name: {name!r}")
            if "\r" in value or "\n" in value:
                raise ValueError(f"Invalid value for header {name!r}")
        return headers

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        """Fraction of attempts that succeeded (0.0 when none were made)."""
        if self.total_deliveries == 0:
            return 0.0
        return self.successful_deliveries / self.total_deliveries

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def subscribes_to(self, event: WebhookEventType | str) -> bool:
        """Check if this subscription is active and listens to the event."""
        return self.is_active and WebhookEventType(event) in self.events


class WebhookEnvelope(BaseModel):
    """Body sent to webhook endpoints."""

    model_config = ConfigDict(extra="forbid")

    event: WebhookEventType
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible dict stored on delivery records."""
        exclude = {"metadata"} if self.metadata is None else None
        return self.model_dump(mode="json", exclude=exclude)

    @classmethod
    def for_test(cls, timestamp: datetime | None = None) -> "WebhookEnvelope":
        """Synthetic envelope used to check endpoint reachability."""
        return cls(
            event=WebhookEventType.TICKET_CREATED,
            timestamp=timestamp or utcnow(),
            data={"test": True, "message": "This is a test webhook delivery"},
        )


class DeliveryAttempt(BaseModel):
    """One HTTP call made for a delivery. Immutable once created."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    attempt_number: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=utcnow)
    response_status: int | None = Field(default=None, ge=100, le=599)
    response_time_ms: int = Field(default=0, ge=0)
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.response_status is not None and 200 <= self.response_status < 300


class DeliveryRecord(BaseModel):
    """Durable lifecycle of one event delivered to one subscription.

    Status moves from ``pending`` to ``success``, ``retrying`` or
    ``failed``; ``retrying`` loops until one of the two terminal states.
    Terminal records never transition again.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    webhook_id: str
    event: WebhookEventType
    payload: dict[str, Any]
    url: str
    http_method: HttpMethod = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    status: DeliveryStatus = "pending"
    response_status: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    error_message: str | None = None
    attempts: list[DeliveryAttempt] = Field(default_factory=list)
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    claim_token: str | None = None
    claimed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> DeliveryAttempt | None:
        return self.attempts[-1] if self.attempts else None

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise DeliveryStateError(f"Delivery {self.id} is already {self.status}")

    def append_attempt(self, attempt: DeliveryAttempt) -> "DeliveryRecord":
        """Append the next attempt; numbers must be consecutive from 1."""
        self._ensure_open()
        expected = self.attempt_count + 1
        if attempt.attempt_number != expected:
            raise DeliveryStateError(
                f"Delivery {self.id} expected attempt {expected}, got {attempt.attempt_number}"
            )
        self.attempts.append(attempt)
        self.response_status = attempt.response_status
        self.updated_at = utcnow()
        return self

    def mark_success(
        self,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
        delivered_at: datetime | None = None,
    ) -> "DeliveryRecord":
        """Mark delivery as delivered. The last attempt must be 2xx."""
        self._ensure_open()
        last = self.last_attempt
        if last is None or not last.succeeded:
            raise DeliveryStateError(f"Delivery {self.id} has no successful attempt")
        self.status = "success"
        self.delivered_at = delivered_at or utcnow()
        self.response_body = response_body
        self.response_headers = response_headers
        self.error_message = None
        self.next_retry_at = None
        self._release_claim()
        return self

    def mark_retrying(
        self,
        next_retry_at: datetime,
        error: str | None,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> "DeliveryRecord":
        """Schedule another attempt at ``next_retry_at``."""
        self._ensure_open()
        self.status = "retrying"
        self.next_retry_at = next_retry_at
        self.error_message = error
        self.response_body = response_body
        self.response_headers = response_headers
        self._release_claim()
        return self

    def mark_failed(
        self,
        error: str | None,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> "DeliveryRecord":
        """Mark delivery as permanently failed (no more retries)."""
        self._ensure_open()
        self.status = "failed"
        self.error_message = error
        self.next_retry_at = None
        if response_body is not None:
            self.response_body = response_body
        if response_headers is not None:
            self.response_headers = response_headers
        self._release_claim()
        return self

    def _release_claim(self) -> None:
        self.claim_token = None
        self.claimed_at = None
        self.updated_at = utcnow()


class WebhookTestResult(BaseModel):
    """Outcome of a single test delivery."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str
    status_code: int | None = None
    response_time_ms: int = 0


class SweepResult(BaseModel):
    """Tally of one retry sweep."""

    model_config = ConfigDict(extra="forbid")

    processed: int = Field(default=0, ge=0, description="Records attempted or finalized")
    succeeded: int = Field(default=0, ge=0)
    retrying: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0, description="Records claimed by another sweep")
    errors: int = Field(default=0, ge=0, description="Records whose processing raised")


__all__ = [
    "DeliveryAttempt",
    "DeliveryRecord",
    "DeliveryStatus",
    "MAX_TIMEOUT_MS",
    "HttpMethod",
    "RetryPolicy",
    "SweepResult",
    "TERMINAL_STATUSES",
    "WebhookEnvelope",
    "WebhookEventType",
    "WebhookSubscription",
    "WebhookTestResult",
]
