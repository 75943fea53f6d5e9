"""deskhook: outbound webhooks for a helpdesk.

Delivers helpdesk domain events (ticket, user, and team changes) to
registered HTTP endpoints with HMAC-SHA256 signatures, durable delivery
records, and exponential backoff retries.

Quick Start:
    from deskhook.service import WebhookService

    async with WebhookService.create() as hooks:
        subscription = await hooks.create_webhook(
            name="CRM sync",
            url="https://crm.example.com/hooks/helpdesk",
            events=["ticket.created", "ticket.resolved"],
            created_by="admin_1",
        )

        # Fan an event out to every matching subscription
        await hooks.notify("ticket.created", {"ticket_id": "T-1042"})

        # Re-attempt deliveries whose backoff has elapsed
        await hooks.process_retries()
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    DeliveryClaimLostError,
    DeliveryPersistenceError,
    DeliveryStateError,
    DeskhookError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    delivery_context,
    get_logger,
)

# Models
from .models import (
    DeliveryAttempt,
    DeliveryRecord,
    RetryPolicy,
    SweepResult,
    WebhookEnvelope,
    WebhookEventType,
    WebhookSubscription,
    WebhookTestResult,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "DeskhookError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "DeliveryPersistenceError",
    "DeliveryClaimLostError",
    "DeliveryStateError",
    "ConfigurationError",
    "AuthenticationError",
    "AuthorizationError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "delivery_context",
    # Models
    "WebhookEventType",
    "RetryPolicy",
    "WebhookSubscription",
    "WebhookEnvelope",
    "DeliveryAttempt",
    "DeliveryRecord",
    "WebhookTestResult",
    "SweepResult",
]
