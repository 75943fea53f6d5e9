"""Authentication for the deskhook API.

Provides:
- Signed admin Bearer tokens (HMAC-SHA256) for the management routes
- The shared internal key guarding the retry sweep and event intake
- FastAPI dependencies for route protection
"""

from __future__ import annotations

import hashlib
import hmac
import time
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from deskhook.exceptions import AuthenticationError, AuthorizationError
from deskhook.logging import get_logger

if TYPE_CHECKING:
    from deskhook.config import Settings

logger = get_logger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


class AuthenticatedAdmin(BaseModel):
    """The caller of a management route.

    Attributes:
        user_id: Unique identifier for the user.
        role: Role encoded in the token.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(description="Unique identifier for the user")
    role: str = Field(description="Role encoded in the token")


class TokenValidator:
    """Validates Bearer tokens using HMAC-SHA256.

    Token format: user_id:role:expires_at:signature
    where signature = HMAC(secret, user_id:role:expires_at)
    """

    def __init__(self, secret_key: str) -> None:
        self.secret_key = secret_key.encode()

    def _sign(self, payload: str) -> str:
        return hmac.new(self.secret_key, payload.encode(), hashlib.sha256).hexdigest()

    def create_token(
        self,
        user_id: str,
        role: str = ADMIN_ROLE,
        expire_minutes: int = 60,
    ) -> str:
        """Create a signed token.

        Args:
            user_id: User identifier (must not contain ':').
            role: Role granted by the token.
            expire_minutes: Token validity in minutes.

        Returns:
            Signed token string.
        """
        if ":" in user_id or ":" in role:
            raise ValueError("user_id and role must not contain ':'")
        expires_at = int(time.time()) + (expire_minutes * 60)
        payload = f"{user_id}:{role}:{expires_at}"
        return f"{payload}:{self._sign(payload)}"

    def validate_token(self, token: str) -> AuthenticatedAdmin:
        """Validate a token and return its holder.

        Raises:
            AuthenticationError: If token is malformed, forged, or expired.
        """
        parts = token.split(":")
        if len(parts) != 4:
            raise AuthenticationError("Invalid token format")

        user_id, role, expires_at_str, signature = parts
        expected = self._sign(f"{user_id}:{role}:{expires_at_str}")
        if not hmac.compare_digest(signature, expected):
            raise AuthenticationError("Invalid token signature")

        try:
            expires_at = int(expires_at_str)
        except ValueError as e:
            raise AuthenticationError(f"Invalid token: {e}") from e
        if time.time() > expires_at:
            raise AuthenticationError("Token has expired")

        return AuthenticatedAdmin(user_id=user_id, role=role)


@lru_cache(maxsize=1)
def get_token_validator(secret_key: str) -> TokenValidator:
    """Get or create the token validator singleton.

    The secret_key parameter ensures a new validator is created if the key changes.
    """
    return TokenValidator(secret_key)


def reset_auth_singletons() -> None:
    """Reset auth singletons (for testing)."""
    get_token_validator.cache_clear()


def authenticate_admin(
    settings: Settings,
    credentials: HTTPAuthorizationCredentials | None,
) -> AuthenticatedAdmin | None:
    """Resolve the admin behind a request.

    Returns None when authentication is disabled; routes then act
    without an owner scope.

    Raises:
        AuthenticationError: Missing or invalid token.
        AuthorizationError: Valid token without the admin role.
    """
    if not settings.is_auth_enabled:
        return None

    if credentials is None:
        raise AuthenticationError("Missing authentication credentials")

    validator = get_token_validator(settings.effective_auth_secret_key)
    admin = validator.validate_token(credentials.credentials)
    if admin.role != ADMIN_ROLE:
        raise AuthorizationError("Admin access required")

    logger.debug("Admin authenticated", user_id=admin.user_id)
    return admin


def verify_internal_key(
    settings: Settings,
    credentials: HTTPAuthorizationCredentials | None,
) -> None:
    """Check the shared internal key. Enforced even when admin auth is off.

    Raises:
        AuthenticationError: Missing or wrong key.
    """
    if credentials is None:
        raise AuthenticationError("Missing internal API key")
    if not hmac.compare_digest(
        credentials.credentials.encode(), settings.internal_api_key.encode()
    ):
        raise AuthenticationError("Invalid internal API key")


CredentialsDep = Annotated[HTTPAuthorizationCredentials | None, Depends(security)]
