"""Storage backends for deskhook.

Persists webhook subscriptions, delivery records, and the attempt
outcome ledger in Qdrant.

Example:
    ```python
    from deskhook.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.store_subscription(subscription)
    ```
"""

from .base import COLLECTION_NAMES
from .client import DeliveryStats, StatusStats, WebhookStorage
from .retry import qdrant_retry, storage_operation

__all__ = [
    "COLLECTION_NAMES",
    "DeliveryStats",
    "StatusStats",
    "WebhookStorage",
    "qdrant_retry",
    "storage_operation",
]
