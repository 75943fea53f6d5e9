"""Append-only ledger of delivery attempt outcomes.

Each attempt (including test deliveries) adds one point. Subscription
counters are counts over this ledger, so concurrent attempts never lose
an increment.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import uuid4

from qdrant_client import models

from .retry import storage_operation

if TYPE_CHECKING:
    from deskhook.models import DeliveryAttempt


class OutcomeMixin:
    """Mixin providing outcome ledger operations for WebhookStorage."""

    _collection_name: Any
    _upsert_payload: Any
    _count: Any
    client: Any

    @storage_operation
    async def record_outcome(
        self,
        webhook_id: str,
        attempt: DeliveryAttempt,
        delivery_id: str | None = None,
    ) -> None:
        """Append one attempt outcome.

        Args:
            webhook_id: Subscription the attempt was made for.
            attempt: The attempt that completed.
            delivery_id: Delivery record, or None for test deliveries.
        """
        await self._upsert_payload(
            "outcomes",
            str(uuid4()),
            {
                "webhook_id": webhook_id,
                "delivery_id": delivery_id,
                "attempt_number": attempt.attempt_number,
                "success": attempt.succeeded,
                "status_code": attempt.response_status,
                "response_time_ms": attempt.response_time_ms,
                "timestamp": attempt.timestamp.isoformat(),
                "timestamp_ts": attempt.timestamp.timestamp(),
            },
        )

    async def _outcome_counts(self, webhook_id: str) -> tuple[int, int]:
        by_webhook = models.FieldCondition(
            key="webhook_id", match=models.MatchValue(value=webhook_id)
        )
        total = await self._count("outcomes", models.Filter(must=[by_webhook]))
        if total == 0:
            return 0, 0
        successful = await self._count(
            "outcomes",
            models.Filter(
                must=[
                    by_webhook,
                    models.FieldCondition(key="success", match=models.MatchValue(value=True)),
                ]
            ),
        )
        return total, successful

    async def _delete_outcomes_for_webhook(self, webhook_id: str) -> None:
        await self.client.delete(
            collection_name=self._collection_name("outcomes"),
            points_selector=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.FieldCondition(
                            key="webhook_id", match=models.MatchValue(value=webhook_id)
                        )
                    ]
                )
            ),
        )
