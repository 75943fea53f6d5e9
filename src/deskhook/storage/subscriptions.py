"""Subscription storage operations.

Subscriptions are stored without their delivery counters; the counters
are derived from the outcome ledger and filled in on every read.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from .retry import storage_operation

if TYPE_CHECKING:
    from deskhook.models import WebhookEventType, WebhookSubscription

# Fields computed from the outcome ledger, never persisted on the subscription
DERIVED_FIELDS = {"total_deliveries", "successful_deliveries", "failed_deliveries", "success_rate"}


class SubscriptionMixin:
    """Mixin providing subscription operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _key_to_point_id(key) -> str
    - _upsert_payload / _retrieve_payload / _scroll_all
    - _outcome_counts(webhook_id) -> tuple[int, int] (from OutcomeMixin)
    - _delete_deliveries_for_webhook / _delete_outcomes_for_webhook
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _key_to_point_id: Any
    _upsert_payload: Any
    _retrieve_payload: Any
    _scroll_all: Any
    _outcome_counts: Any
    _delete_deliveries_for_webhook: Any
    _delete_outcomes_for_webhook: Any
    client: Any

    @staticmethod
    def _subscription_to_payload(subscription: WebhookSubscription) -> dict[str, Any]:
        payload = subscription.model_dump(mode="json", exclude=DERIVED_FIELDS)
        payload["url"] = str(subscription.url)
        return payload

    async def _hydrate(self, payload: dict[str, Any]) -> WebhookSubscription:
        from deskhook.models import WebhookSubscription

        total, successful = await self._outcome_counts(payload["id"])
        payload.update(
            total_deliveries=total,
            successful_deliveries=successful,
            failed_deliveries=total - successful,
        )
        return WebhookSubscription.model_validate(payload)

    @storage_operation
    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        """Insert or replace a subscription.

        Args:
            subscription: WebhookSubscription to store.

        Returns:
            The subscription ID.
        """
        await self._upsert_payload(
            "webhooks",
            self._key_to_point_id(subscription.id),
            self._subscription_to_payload(subscription),
        )
        return subscription.id

    @storage_operation
    async def get_subscription(self, webhook_id: str) -> WebhookSubscription | None:
        """Get a subscription by ID, with counters filled in."""
        payload = await self._retrieve_payload("webhooks", self._key_to_point_id(webhook_id))
        if payload is None:
            return None
        return await self._hydrate(payload)

    @storage_operation
    async def list_subscriptions(
        self,
        created_by: str | None = None,
        event: WebhookEventType | None = None,
        active_only: bool = False,
    ) -> list[WebhookSubscription]:
        """List subscriptions, newest first.

        Args:
            created_by: Only subscriptions owned by this admin.
            event: Only subscriptions listening to this event type.
            active_only: Only subscriptions with ``is_active`` set.

        Returns:
            List of WebhookSubscription.
        """
        conditions: list[models.Condition] = []
        if created_by is not None:
            conditions.append(
                models.FieldCondition(key="created_by", match=models.MatchValue(value=created_by))
            )
        if event is not None:
            conditions.append(
                models.FieldCondition(key="events", match=models.MatchAny(any=[event.value]))
            )
        if active_only:
            conditions.append(
                models.FieldCondition(key="is_active", match=models.MatchValue(value=True))
            )

        payloads = await self._scroll_all(
            "webhooks", models.Filter(must=conditions) if conditions else None
        )
        subscriptions = [await self._hydrate(p) for p in payloads]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    async def get_subscriptions_for_event(
        self, event: WebhookEventType
    ) -> list[WebhookSubscription]:
        """Active subscriptions listening to ``event``."""
        subscriptions = await self.list_subscriptions(event=event, active_only=True)
        return [s for s in subscriptions if s.subscribes_to(event)]

    @storage_operation
    async def touch_subscription(self, webhook_id: str, triggered_at: datetime) -> None:
        """Set ``last_triggered`` without rewriting the rest of the subscription."""
        await self.client.set_payload(
            collection_name=self._collection_name("webhooks"),
            payload={"last_triggered": triggered_at.isoformat()},
            points=[self._key_to_point_id(webhook_id)],
        )

    @storage_operation
    async def delete_subscription(self, webhook_id: str) -> bool:
        """Delete a subscription with its delivery records and outcome ledger.

        Returns:
            True if deleted, False if not found.
        """
        point_id = self._key_to_point_id(webhook_id)
        if await self._retrieve_payload("webhooks", point_id) is None:
            return False

        await self._delete_deliveries_for_webhook(webhook_id)
        await self._delete_outcomes_for_webhook(webhook_id)
        await self.client.delete(
            collection_name=self._collection_name("webhooks"),
            points_selector=models.PointIdsList(points=[point_id]),
        )
        return True
