"""Data models for deskhook."""

from .base import generate_id, utcnow
from .webhook import (
    MAX_TIMEOUT_MS,
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryRecord,
    DeliveryStatus,
    HttpMethod,
    RetryPolicy,
    SweepResult,
    WebhookEnvelope,
    WebhookEventType,
    WebhookSubscription,
    WebhookTestResult,
)

__all__ = [
    "DeliveryAttempt",
    "DeliveryRecord",
    "DeliveryStatus",
    "HttpMethod",
    "MAX_TIMEOUT_MS",
    "RetryPolicy",
    "SweepResult",
    "TERMINAL_STATUSES",
    "WebhookEnvelope",
    "WebhookEventType",
    "WebhookSubscription",
    "WebhookTestResult",
    "generate_id",
    "utcnow",
]
