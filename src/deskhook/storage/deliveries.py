"""Delivery record storage operations.

Besides plain CRUD this provides the claim used by the retry sweep: a
filtered ``set_payload`` stamps a fresh claim token on a record only if
it is still due and unclaimed (or its lease expired), then the token is
read back. Qdrant applies each update to a point atomically, so at most
one of several concurrent sweeps sees its own token. Writes made under a
claim are filtered on the same token, so a sweep whose lease ran out and
was taken over writes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from qdrant_client import models

from .base import to_epoch
from .retry import storage_operation

if TYPE_CHECKING:
    from deskhook.models import DeliveryRecord, DeliveryStatus

logger = logging.getLogger(__name__)

# Storage-only keys: float mirrors of datetimes for range filtering, and the
# claim token that made the last claimed write
STORAGE_ONLY_FIELDS = ("next_retry_ts", "created_ts", "claimed_ts", "saved_by_claim")


def _match(key: str, value: Any) -> models.FieldCondition:
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


class DeliveryMixin:
    """Mixin providing delivery record operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _key_to_point_id(key) -> str
    - _upsert_payload / _retrieve_payload / _scroll_all / _count
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _key_to_point_id: Any
    _upsert_payload: Any
    _retrieve_payload: Any
    _scroll_all: Any
    _count: Any
    client: Any

    @staticmethod
    def _record_to_payload(record: DeliveryRecord) -> dict[str, Any]:
        payload = record.model_dump(mode="json")
        payload["next_retry_ts"] = to_epoch(record.next_retry_at)
        payload["created_ts"] = to_epoch(record.created_at)
        payload["claimed_ts"] = to_epoch(record.claimed_at)
        return payload

    @staticmethod
    def _payload_to_record(payload: dict[str, Any]) -> DeliveryRecord:
        from deskhook.models import DeliveryRecord

        for key in STORAGE_ONLY_FIELDS:
            payload.pop(key, None)
        return DeliveryRecord.model_validate(payload)

    @staticmethod
    def _claimable(now: datetime, lease: timedelta) -> models.Filter:
        """Unclaimed records, or records whose claim lease has run out."""
        return models.Filter(
            should=[
                models.IsEmptyCondition(is_empty=models.PayloadField(key="claim_token")),
                models.IsNullCondition(is_null=models.PayloadField(key="claim_token")),
                models.FieldCondition(
                    key="claimed_ts",
                    range=models.Range(lt=(now - lease).timestamp()),
                ),
            ]
        )

    @staticmethod
    def _due(now: datetime) -> list[models.Condition]:
        return [
            _match("status", "retrying"),
            models.FieldCondition(key="next_retry_ts", range=models.Range(lte=now.timestamp())),
        ]

    @staticmethod
    def _held_by(point_id: str, claim_token: str) -> models.Filter:
        return models.Filter(
            must=[models.HasIdCondition(has_id=[point_id]), _match("claim_token", claim_token)]
        )

    @storage_operation
    async def save_delivery(self, record: DeliveryRecord) -> str:
        """Insert or replace a delivery record.

        Returns:
            The delivery ID.
        """
        await self._upsert_payload(
            "deliveries",
            self._key_to_point_id(record.id),
            self._record_to_payload(record),
        )
        return record.id

    @storage_operation
    async def get_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        """Get a delivery record by ID."""
        payload = await self._retrieve_payload("deliveries", self._key_to_point_id(delivery_id))
        if payload is None:
            return None
        return self._payload_to_record(payload)

    @storage_operation
    async def list_deliveries(
        self,
        webhook_id: str,
        status: DeliveryStatus | None = None,
        since: datetime | None = None,
        limit: int | None = 50,
    ) -> list[DeliveryRecord]:
        """Delivery records of one subscription, newest first.

        Args:
            webhook_id: Subscription the records belong to.
            status: Optional status filter.
            since: Only records created at or after this time.
            limit: Maximum records to return (None for all).

        Returns:
            List of DeliveryRecord.
        """
        conditions: list[models.Condition] = [_match("webhook_id", webhook_id)]
        if status is not None:
            conditions.append(_match("status", status))
        if since is not None:
            conditions.append(
                models.FieldCondition(key="created_ts", range=models.Range(gte=since.timestamp()))
            )

        payloads = await self._scroll_all("deliveries", models.Filter(must=conditions))
        records = [self._payload_to_record(p) for p in payloads]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records if limit is None else records[:limit]

    @storage_operation
    async def list_due_deliveries(
        self,
        now: datetime,
        lease: timedelta,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """Retrying records whose next attempt is due and that nobody holds.

        Ordered by ``next_retry_at`` so the oldest backlog goes first.
        """
        due_filter = models.Filter(must=[*self._due(now), self._claimable(now, lease)])
        payloads = await self._scroll_all("deliveries", due_filter)
        records = [self._payload_to_record(p) for p in payloads]
        records.sort(key=lambda r: r.next_retry_at or r.created_at)
        return records[:limit]

    @storage_operation
    async def claim_delivery(
        self,
        delivery_id: str,
        now: datetime,
        lease: timedelta,
    ) -> DeliveryRecord | None:
        """Claim a due record for one sweep.

        Returns:
            The claimed record, or None if it was no longer due or another
            sweep holds it.
        """
        token = uuid4().hex
        point_id = self._key_to_point_id(delivery_id)
        claim_filter = models.Filter(
            must=[
                models.HasIdCondition(has_id=[point_id]),
                *self._due(now),
                self._claimable(now, lease),
            ]
        )
        await self.client.set_payload(
            collection_name=self._collection_name("deliveries"),
            payload={
                "claim_token": token,
                "claimed_at": now.isoformat(),
                "claimed_ts": now.timestamp(),
            },
            points=claim_filter,
        )

        payload = await self._retrieve_payload("deliveries", point_id)
        if payload is None or payload.get("claim_token") != token:
            logger.debug("Delivery %s claimed elsewhere or no longer due", delivery_id)
            return None
        return self._payload_to_record(payload)

    @storage_operation
    async def save_claimed_delivery(self, record: DeliveryRecord, claim_token: str) -> bool:
        """Write a record only while ``claim_token`` still holds its claim.

        The write is a filtered ``set_payload`` on the token, stamped with
        the token so the read-back can tell whether it landed.

        Returns:
            False if another sweep took the claim over; nothing is written then.
        """
        point_id = self._key_to_point_id(record.id)
        payload = self._record_to_payload(record)
        payload["saved_by_claim"] = claim_token
        await self.client.set_payload(
            collection_name=self._collection_name("deliveries"),
            payload=payload,
            points=self._held_by(point_id, claim_token),
        )

        stored = await self._retrieve_payload("deliveries", point_id)
        if stored is None or stored.get("saved_by_claim") != claim_token:
            logger.warning("Delivery %s was claimed by another sweep; write dropped", record.id)
            return False
        return True

    @storage_operation
    async def release_delivery(self, delivery_id: str, claim_token: str) -> None:
        """Drop a claim without changing anything else.

        A claim held by another token is left alone.
        """
        await self.client.set_payload(
            collection_name=self._collection_name("deliveries"),
            payload={"claim_token": None, "claimed_at": None, "claimed_ts": None},
            points=self._held_by(self._key_to_point_id(delivery_id), claim_token),
        )

    @storage_operation
    async def purge_deliveries(self, older_than: datetime) -> int:
        """Delete records created before ``older_than``.

        Returns:
            Number of records deleted.
        """
        purge_filter = models.Filter(
            must=[
                models.FieldCondition(
                    key="created_ts", range=models.Range(lt=older_than.timestamp())
                )
            ]
        )
        count = await self._count("deliveries", purge_filter)
        if count:
            await self.client.delete(
                collection_name=self._collection_name("deliveries"),
                points_selector=models.FilterSelector(filter=purge_filter),
            )
        return count

    async def _delete_deliveries_for_webhook(self, webhook_id: str) -> None:
        await self.client.delete(
            collection_name=self._collection_name("deliveries"),
            points_selector=models.FilterSelector(
                filter=models.Filter(must=[_match("webhook_id", webhook_id)])
            ),
        )
