"""Configuration management for deskhook."""

import logging
import secrets
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from deskhook.exceptions import ConfigurationError
from deskhook.models import MAX_TIMEOUT_MS

logger = logging.getLogger(__name__)

# Default shared key for the retry sweep; refused in production.
DEFAULT_INTERNAL_API_KEY = "internal-webhook-retry-key"


class Settings(BaseSettings):
    """deskhook configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the DESKHOOK_ prefix. For example:
        DESKHOOK_QDRANT_URL=http://localhost:6333
        DESKHOOK_SWEEP_INTERVAL_SECONDS=15

    Security Notes:
        - In production (DESKHOOK_ENV=production), auth is enabled by default
        - A missing auth secret or the default internal API key in
          production raises an error
        - Disabling auth in production logs a warning
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    collection_prefix: str = Field(
        default="deskhook",
        description="Prefix for Qdrant collection names",
    )

    # Delivery
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum webhook HTTP calls in flight per dispatcher",
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=100_000,
        description="Response bodies stored on delivery records are truncated to this length",
    )

    # Retry sweep
    sweep_enabled: bool = Field(
        default=True,
        description="Run the periodic retry sweep inside the API process",
    )
    sweep_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between two periodic sweeps",
    )
    sweep_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum due deliveries claimed per sweep",
    )
    claim_lease_seconds: int = Field(
        default=600,
        gt=MAX_TIMEOUT_MS // 1000,
        description=(
            "Seconds after which a sweep claim on a delivery is considered abandoned. "
            "Must exceed the largest subscription timeout."
        ),
    )

    # Retention
    delivery_retention_days: int = Field(
        default=30,
        ge=1,
        le=3650,
        description="Delivery records older than this are purged",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Authentication
    auth_enabled: bool | None = Field(
        default=None,
        description=(
            "Enable Bearer token authentication on admin routes. "
            "If not set, defaults to True in production, False otherwise."
        ),
    )
    auth_secret_key: str | None = Field(
        default=None,
        description=(
            "Secret key for token validation (HMAC). "
            "REQUIRED in production. In dev/test, a random key is generated if not set."
        ),
    )
    auth_token_expire_minutes: int = Field(
        default=60,
        ge=1,
        description="Token expiration time in minutes",
    )
    internal_api_key: str = Field(
        default=DEFAULT_INTERNAL_API_KEY,
        min_length=8,
        description="Shared bearer secret for the retry sweep and event intake routes",
    )

    # CORS
    cors_enabled: bool = Field(
        default=False,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=list,
        description="Allowed origins for CORS requests",
    )

    # Filled in by the validator when no auth key is configured outside production
    _ephemeral_auth_key: str | None = None

    model_config = {
        "env_prefix": "DESKHOOK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def check_production_secrets(self) -> "Settings":
        """Resolve auth defaults and refuse unsafe production setups.

        Production needs an explicit auth key and a non-default internal
        key. Elsewhere a missing auth key is replaced by a per-process
        random one, so tokens stop working after a restart.
        """
        production = self.env == "production"
        if self.auth_enabled is None:
            object.__setattr__(self, "auth_enabled", production)

        if not production:
            if self.auth_secret_key is None:
                object.__setattr__(self, "_ephemeral_auth_key", secrets.token_hex(32))
                logger.debug("No auth key configured, using a per-process random key")
            return self

        if self.auth_secret_key is None:
            raise ValueError(
                "DESKHOOK_AUTH_SECRET_KEY is required in production "
                "(any long random string, e.g. 64 hex characters)."
            )
        if self.internal_api_key == DEFAULT_INTERNAL_API_KEY:
            raise ValueError("DESKHOOK_INTERNAL_API_KEY must be changed in production.")
        if not self.auth_enabled:
            warnings.warn(
                "Admin routes are unauthenticated in production; "
                "set DESKHOOK_AUTH_ENABLED=true.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("Admin authentication disabled in production")
        return self

    @property
    def is_auth_enabled(self) -> bool:
        """auth_enabled with the environment default applied."""
        if self.auth_enabled is None:
            return self.env == "production"
        return self.auth_enabled

    @property
    def effective_auth_secret_key(self) -> str:
        """Key used to sign and check admin tokens.

        Raises:
            ConfigurationError: If neither a configured nor a per-process
                key exists.
        """
        key = self.auth_secret_key or self._ephemeral_auth_key
        if key is None:
            raise ConfigurationError("No auth secret key available")
        return key


# Global settings instance
settings = Settings()
