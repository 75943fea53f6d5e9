"""Qdrant storage client for deskhook.

This module provides the WebhookStorage class that combines subscription,
delivery record, and outcome ledger operations through mixins.

Example:
    ```python
    from deskhook.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.store_subscription(subscription)
        due = await storage.list_due_deliveries(now, lease=timedelta(minutes=10))
    ```
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deskhook.models.base import utcnow

from .base import StorageBase
from .deliveries import DeliveryMixin
from .outcomes import OutcomeMixin
from .subscriptions import SubscriptionMixin


class StatusStats(BaseModel):
    """Aggregate over delivery records sharing one status."""

    model_config = ConfigDict(extra="forbid")

    count: int = Field(default=0, ge=0, description="Number of records")
    avg_response_time_ms: float | None = Field(
        default=None, description="Mean response time of each record's last attempt"
    )


class DeliveryStats(BaseModel):
    """Delivery statistics for one subscription over a time window."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    days: int = Field(ge=1)
    total: int = Field(default=0, ge=0)
    by_status: dict[str, StatusStats] = Field(default_factory=dict)


class WebhookStorage(DeliveryMixin, SubscriptionMixin, OutcomeMixin, StorageBase):
    """Async Qdrant storage for webhook subscriptions and deliveries.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: store_subscription, get_subscription, list_subscriptions, ...
    - DeliveryMixin: save_delivery, get_delivery, list_due_deliveries, claim_delivery, ...
    - OutcomeMixin: record_outcome

    Attributes:
        client: Async Qdrant client instance.
    """

    async def __aenter__(self) -> WebhookStorage:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def get_delivery_stats(
        self,
        webhook_id: str,
        days: int = 30,
        now: datetime | None = None,
    ) -> DeliveryStats:
        """Group a subscription's recent delivery records by status.

        Args:
            webhook_id: Subscription to report on.
            days: Window length, counted back from ``now``.
            now: End of the window. Defaults to the current time.

        Returns:
            DeliveryStats with a count and mean last-attempt response time
            per status.
        """
        since = (now or utcnow()) - timedelta(days=days)
        records = await self.list_deliveries(webhook_id, since=since, limit=None)

        grouped: dict[str, list[int]] = {}
        counts: dict[str, int] = {}
        for record in records:
            counts[record.status] = counts.get(record.status, 0) + 1
            if record.last_attempt is not None:
                grouped.setdefault(record.status, []).append(record.last_attempt.response_time_ms)

        by_status = {
            status: StatusStats(
                count=count,
                avg_response_time_ms=(
                    sum(grouped[status]) / len(grouped[status]) if grouped.get(status) else None
                ),
            )
            for status, count in counts.items()
        }
        return DeliveryStats(
            webhook_id=webhook_id, days=days, total=len(records), by_status=by_status
        )
