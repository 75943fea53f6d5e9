"""deskhook exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from DeskhookError for easy catching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deskhook.models import DeliveryAttempt


class DeskhookError(Exception):
    """Base exception for all deskhook errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "deskhook_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(DeskhookError):
    """Invalid input provided.

    Raised when a subscription or request fails validation checks.
    Such input never reaches delivery.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(DeskhookError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(DeskhookError):
    """Storage operation failed.

    Raised when a Qdrant operation fails after retries.
    """

    code: str = "storage_error"


class DeliveryPersistenceError(StorageError):
    """A delivery attempt happened but its outcome could not be persisted.

    Distinct from a failed HTTP call: the endpoint may have received the
    event. The attempt is carried so callers can log what was lost.

    Attributes:
        delivery_id: Delivery record the attempt belongs to.
        attempt: The attempt outcome that was not recorded.
    """

    code: str = "delivery_persistence_error"

    def __init__(self, delivery_id: str, attempt: DeliveryAttempt, reason: str) -> None:
        self.delivery_id = delivery_id
        self.attempt = attempt
        super().__init__(
            f"Could not persist attempt {attempt.attempt_number} of {delivery_id}: {reason}"
        )

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "delivery_id": self.delivery_id,
                "attempt_number": self.attempt.attempt_number,
                "message": self.message,
            }
        }


class DeliveryClaimLostError(DeskhookError):
    """A sweep's claim on a delivery record was taken over by another sweep.

    Nothing from the losing sweep is written to the record or the ledger.
    """

    code: str = "delivery_claim_lost"

    def __init__(self, delivery_id: str, attempt_number: int | None = None) -> None:
        self.delivery_id = delivery_id
        self.attempt_number = attempt_number
        detail = f" (attempt {attempt_number} not recorded)" if attempt_number else ""
        super().__init__(f"Claim on {delivery_id} was lost{detail}")


class DeliveryStateError(DeskhookError):
    """Illegal delivery record transition.

    Raised when a terminal record is transitioned again or an attempt
    is appended out of order.
    """

    code: str = "delivery_state_error"


class ConfigurationError(DeskhookError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"


class AuthenticationError(DeskhookError):
    """Authentication failed.

    Raised when authentication credentials are invalid or missing.
    """

    code: str = "authentication_error"


class AuthorizationError(DeskhookError):
    """Authorization failed.

    Raised when user lacks permission to perform an action.
    """

    code: str = "authorization_error"
