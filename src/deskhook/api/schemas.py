"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from deskhook.models import (
    MAX_TIMEOUT_MS,
    DeliveryAttempt,
    DeliveryRecord,
    DeliveryStatus,
    HttpMethod,
    RetryPolicy,
    WebhookEventType,
    WebhookSubscription,
    WebhookTestResult,
)
from deskhook.storage import DeliveryStats


class HealthResponse(BaseModel):
    """Service health."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool
    sweeper_running: bool = False


class RetryPolicyUpdate(BaseModel):
    """Partial retry policy; omitted fields keep their current values."""

    model_config = ConfigDict(extra="forbid")

    max_retries: int | None = Field(default=None, ge=0, le=10)
    retry_delay_ms: int | None = Field(default=None, ge=100)
    backoff_multiplier: float | None = Field(default=None, ge=1.0)


class CreateWebhookRequest(BaseModel):
    """Request body for registering a webhook.

    Attributes:
        name: Human-readable label.
        url: Absolute http(s) endpoint.
        events: Event types to subscribe to.
        secret: Optional signing secret (generated when omitted).
        created_by: Owner, used only when authentication is disabled.
        send_test: Send a test delivery right after creation.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, description="Endpoint receiving events")
    events: list[WebhookEventType] = Field(min_length=1)
    secret: str | None = Field(default=None, min_length=16)
    headers: dict[str, str] = Field(default_factory=dict)
    http_method: HttpMethod = "POST"
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout_ms: int = Field(default=30_000, ge=1_000, le=MAX_TIMEOUT_MS)
    is_active: bool = True
    created_by: str | None = Field(default=None, description="Owner when auth is disabled")
    send_test: bool = Field(default=True, description="Send a test delivery after creation")


class UpdateWebhookRequest(BaseModel):
    """Partial update of a webhook; only provided fields change."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    url: str | None = None
    events: list[WebhookEventType] | None = Field(default=None, min_length=1)
    secret: str | None = Field(default=None, min_length=16)
    headers: dict[str, str] | None = None
    http_method: HttpMethod | None = None
    retry_policy: RetryPolicyUpdate | None = None
    timeout_ms: int | None = Field(default=None, ge=1_000, le=MAX_TIMEOUT_MS)
    is_active: bool | None = None

    def to_updates(self) -> dict[str, Any]:
        """Fields explicitly set by the caller."""
        updates = self.model_dump(exclude_unset=True, exclude={"retry_policy"})
        if self.retry_policy is not None:
            updates["retry_policy"] = self.retry_policy.model_dump(exclude_none=True)
        return updates


class WebhookResponse(BaseModel):
    """A webhook as shown to administrators. Never carries the secret."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    url: str
    events: list[WebhookEventType]
    is_active: bool
    headers: dict[str, str]
    http_method: HttpMethod
    retry_policy: RetryPolicy
    timeout_ms: int
    created_by: str
    created_at: datetime
    updated_at: datetime
    last_triggered: datetime | None
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    success_rate: float

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> WebhookResponse:
        return cls(
            id=subscription.id,
            name=subscription.name,
            url=str(subscription.url),
            events=subscription.events,
            is_active=subscription.is_active,
            headers=subscription.headers,
            http_method=subscription.http_method,
            retry_policy=subscription.retry_policy,
            timeout_ms=subscription.timeout_ms,
            created_by=subscription.created_by,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
            last_triggered=subscription.last_triggered,
            total_deliveries=subscription.total_deliveries,
            successful_deliveries=subscription.successful_deliveries,
            failed_deliveries=subscription.failed_deliveries,
            success_rate=subscription.success_rate,
        )


class WebhookCreatedResponse(BaseModel):
    """Response to webhook creation; the only response exposing the secret."""

    model_config = ConfigDict(extra="forbid")

    webhook: WebhookResponse
    secret: str
    test_result: WebhookTestResult | None = None


class WebhookListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    webhooks: list[WebhookResponse]
    count: int


class DeliveryResponse(BaseModel):
    """A delivery record with its attempt log."""

    model_config = ConfigDict(extra="forbid")

    id: str
    webhook_id: str
    event: WebhookEventType
    status: DeliveryStatus
    url: str
    http_method: HttpMethod
    payload: dict[str, Any]
    response_status: int | None
    response_body: str | None
    error_message: str | None
    attempts: list[DeliveryAttempt]
    next_retry_at: datetime | None
    delivered_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> DeliveryResponse:
        return cls(
            id=record.id,
            webhook_id=record.webhook_id,
            event=record.event,
            status=record.status,
            url=record.url,
            http_method=record.http_method,
            payload=record.payload,
            response_status=record.response_status,
            response_body=record.response_body,
            error_message=record.error_message,
            attempts=record.attempts,
            next_retry_at=record.next_retry_at,
            delivered_at=record.delivered_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class DeliveryListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    count: int


class WebhookDetailResponse(BaseModel):
    """Webhook with delivery statistics and its most recent deliveries."""

    model_config = ConfigDict(extra="forbid")

    webhook: WebhookResponse
    stats: DeliveryStats
    recent_deliveries: list[DeliveryResponse]


class RetrySweepResponse(BaseModel):
    """Result of a manually triggered retry sweep."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str
    processed: int
    succeeded: int
    retrying: int
    failed: int
    skipped: int
    errors: int


class EventRequest(BaseModel):
    """A helpdesk event to fan out to subscribers."""

    model_config = ConfigDict(extra="forbid")

    event: WebhookEventType
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None


class EventResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event: WebhookEventType
    delivery_ids: list[str]
    count: int
