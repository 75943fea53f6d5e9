"""FastAPI router for deskhook API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from deskhook import __version__
from deskhook.models import DeliveryStatus, WebhookEventType, WebhookTestResult
from deskhook.service import WebhookService

from .auth import AuthenticatedAdmin, CredentialsDep, authenticate_admin, verify_internal_key
from .schemas import (
    CreateWebhookRequest,
    DeliveryListResponse,
    DeliveryResponse,
    EventRequest,
    EventResponse,
    HealthResponse,
    RetrySweepResponse,
    UpdateWebhookRequest,
    WebhookCreatedResponse,
    WebhookDetailResponse,
    WebhookListResponse,
    WebhookResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Owner recorded on webhooks created while authentication is disabled
ANONYMOUS_ADMIN = "admin"

RECENT_DELIVERIES = 10

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


async def require_admin(
    service: ServiceDep, credentials: CredentialsDep
) -> AuthenticatedAdmin | None:
    return authenticate_admin(service.settings, credentials)


async def require_internal_key(service: ServiceDep, credentials: CredentialsDep) -> None:
    verify_internal_key(service.settings, credentials)


AdminDep = Annotated[AuthenticatedAdmin | None, Depends(require_admin)]


def _owner(admin: AuthenticatedAdmin | None) -> str | None:
    return admin.user_id if admin is not None else None


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)
    return HealthResponse(
        status="healthy",
        version=__version__,
        storage_connected=True,
        sweeper_running=_service.sweeper_running,
    )


@router.post(
    "/webhooks",
    response_model=WebhookCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: CreateWebhookRequest,
    service: ServiceDep,
    admin: AdminDep,
) -> WebhookCreatedResponse:
    """Register a webhook.

    The signing secret is returned here and never again. Unless
    ``send_test`` is false, a test delivery is made right away; its
    failure does not undo the registration.
    """
    subscription = await service.create_webhook(
        name=request.name,
        url=request.url,
        events=list(request.events),
        created_by=_owner(admin) or request.created_by or ANONYMOUS_ADMIN,
        secret=request.secret,
        headers=request.headers,
        http_method=request.http_method,
        retry_policy=request.retry_policy,
        timeout_ms=request.timeout_ms,
        is_active=request.is_active,
    )

    test_result = None
    if request.send_test:
        test_result = await service.test_webhook(subscription.id)

    return WebhookCreatedResponse(
        webhook=WebhookResponse.from_subscription(subscription),
        secret=subscription.secret,
        test_result=test_result,
    )


@router.get("/webhooks", response_model=WebhookListResponse, tags=["webhooks"])
async def list_webhooks(
    service: ServiceDep,
    admin: AdminDep,
    event: WebhookEventType | None = None,
    active_only: bool = False,
) -> WebhookListResponse:
    """List the caller's webhooks, newest first."""
    subscriptions = await service.list_webhooks(
        created_by=_owner(admin), event=event, active_only=active_only
    )
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_subscription(s) for s in subscriptions],
        count=len(subscriptions),
    )


@router.post("/webhooks/retry", response_model=RetrySweepResponse, tags=["internal"])
async def retry_webhooks(
    service: ServiceDep,
    _auth: Annotated[None, Depends(require_internal_key)],
) -> RetrySweepResponse:
    """Run one retry sweep. Guarded by the internal API key."""
    result = await service.process_retries()
    logger.info("Manual retry sweep processed %d deliveries", result.processed)
    return RetrySweepResponse(
        success=True,
        message=f"Processed {result.processed} webhook retries",
        **result.model_dump(),
    )


@router.get(
    "/webhooks/{webhook_id}", response_model=WebhookDetailResponse, tags=["webhooks"]
)
async def get_webhook(
    webhook_id: str,
    service: ServiceDep,
    admin: AdminDep,
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> WebhookDetailResponse:
    """Webhook details with delivery statistics and recent deliveries."""
    subscription = await service.get_webhook(webhook_id, _owner(admin))
    stats = await service.get_delivery_stats(webhook_id, days=days)
    recent = await service.list_deliveries(webhook_id, limit=RECENT_DELIVERIES)
    return WebhookDetailResponse(
        webhook=WebhookResponse.from_subscription(subscription),
        stats=stats,
        recent_deliveries=[DeliveryResponse.from_record(r) for r in recent],
    )


@router.patch("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def update_webhook(
    webhook_id: str,
    request: UpdateWebhookRequest,
    service: ServiceDep,
    admin: AdminDep,
) -> WebhookResponse:
    """Partially update a webhook."""
    subscription = await service.update_webhook(
        webhook_id, created_by=_owner(admin), **request.to_updates()
    )
    return WebhookResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(
    webhook_id: str,
    service: ServiceDep,
    admin: AdminDep,
) -> Response:
    """Delete a webhook and its delivery history."""
    await service.delete_webhook(webhook_id, created_by=_owner(admin))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/webhooks/{webhook_id}/test", response_model=WebhookTestResult, tags=["webhooks"]
)
async def send_test_delivery(
    webhook_id: str,
    service: ServiceDep,
    admin: AdminDep,
) -> WebhookTestResult:
    """Send a synthetic event to the webhook and report the outcome."""
    return await service.test_webhook(webhook_id, created_by=_owner(admin))


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["webhooks"],
)
async def list_deliveries(
    webhook_id: str,
    service: ServiceDep,
    admin: AdminDep,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> DeliveryListResponse:
    """Delivery history of one webhook, newest first."""
    await service.get_webhook(webhook_id, _owner(admin))
    records = await service.list_deliveries(webhook_id, status=status_filter, limit=limit)
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.from_record(r) for r in records],
        count=len(records),
    )


@router.post(
    "/events",
    response_model=EventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["internal"],
)
async def publish_event(
    request: EventRequest,
    service: ServiceDep,
    _auth: Annotated[None, Depends(require_internal_key)],
) -> EventResponse:
    """Fan a helpdesk event out to every matching webhook."""
    delivery_ids = await service.notify(request.event, request.data, request.metadata)
    return EventResponse(event=request.event, delivery_ids=delivery_ids, count=len(delivery_ids))
