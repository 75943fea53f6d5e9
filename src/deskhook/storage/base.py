"""Base storage class and helpers.

Contains client lifecycle, collection management, and payload helpers
shared by the subscription, delivery, and outcome mixins.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

from qdrant_client import AsyncQdrantClient, models

from deskhook.config import settings

# Collection suffixes (full name is "{prefix}_{suffix}")
COLLECTION_NAMES = {
    "webhooks": "webhooks",
    "deliveries": "webhook_deliveries",
    "outcomes": "webhook_outcomes",
}

# Keyword payload indexes per collection
KEYWORD_INDEXES = {
    "webhooks": ("id", "created_by", "events", "is_active"),
    "deliveries": ("id", "webhook_id", "status", "event", "claim_token"),
    "outcomes": ("webhook_id", "delivery_id", "success"),
}

# Float epoch mirrors of datetime fields, used for range filters
FLOAT_INDEXES = {
    "webhooks": (),
    "deliveries": ("next_retry_ts", "created_ts", "claimed_ts"),
    "outcomes": ("timestamp_ts",),
}

# Records are looked up by payload only; every point carries this vector
PLACEHOLDER_VECTOR = [0.0]

SCROLL_PAGE_SIZE = 256


def to_epoch(value: datetime | None) -> float | None:
    """Float epoch seconds for range filters (None passes through)."""
    return value.timestamp() if value is not None else None


class StorageBase:
    """Base class for deskhook storage with initialization and helpers.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Point ID conversion
    - Paged scrolling
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            client: Pre-built client (e.g. ``AsyncQdrantClient(location=":memory:")``).
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._client: AsyncQdrantClient | None = client
        self._owns_client = client is None
        self._collections_initialized = False

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Connect (unless a client was injected) and ensure collections exist."""
        if self._client is None:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
            self._owns_client = True
        await self._ensure_collections()
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None
        self._collections_initialized = False

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        return f"{self._prefix}_{COLLECTION_NAMES[kind]}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a record ID to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers, so
        the ID is hashed into a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with their indexes."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            await self._create_indexes(kind, collection_name)

    async def _create_indexes(self, kind: str, collection_name: str) -> None:
        """Create payload indexes for efficient filtering."""
        for field_name in KEYWORD_INDEXES[kind]:
            schema = (
                models.PayloadSchemaType.BOOL
                if field_name in ("is_active", "success")
                else models.PayloadSchemaType.KEYWORD
            )
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=schema,
            )
        for field_name in FLOAT_INDEXES[kind]:
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.FLOAT,
            )

    async def _upsert_payload(self, kind: str, point_id: str, payload: dict[str, Any]) -> None:
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=point_id,
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    async def _retrieve_payload(self, kind: str, point_id: str) -> dict[str, Any] | None:
        results = await self.client.retrieve(
            collection_name=self._collection_name(kind),
            ids=[point_id],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return dict(results[0].payload)

    async def _scroll_all(
        self,
        kind: str,
        scroll_filter: models.Filter | None = None,
    ) -> list[dict[str, Any]]:
        """Scroll every matching point and return the payloads."""
        payloads: list[dict[str, Any]] = []
        offset: Any = None
        while True:
            results, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=scroll_filter,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=True,
            )
            payloads.extend(dict(r.payload) for r in results if r.payload is not None)
            if offset is None:
                return payloads

    async def _count(self, kind: str, count_filter: models.Filter | None = None) -> int:
        result = await self.client.count(
            collection_name=self._collection_name(kind),
            count_filter=count_filter,
            exact=True,
        )
        return result.count
