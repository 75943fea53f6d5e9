"""Unit tests for deskhook configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from deskhook.config import DEFAULT_INTERNAL_API_KEY, Settings


class TestSettings:
    """Tests for Settings class."""

    def test_default_settings(self):
        settings = Settings(env="development")
        assert settings.qdrant_url == "http://localhost:6333"
        assert settings.collection_prefix == "deskhook"
        assert settings.max_concurrent_deliveries == 10
        assert settings.response_body_max_chars == 1000
        assert settings.sweep_interval_seconds == 30.0
        assert settings.claim_lease_seconds == 600
        assert settings.delivery_retention_days == 30
        assert settings.internal_api_key == DEFAULT_INTERNAL_API_KEY

    def test_env_override(self):
        env = {
            "DESKHOOK_QDRANT_URL": "http://qdrant:6333",
            "DESKHOOK_SWEEP_INTERVAL_SECONDS": "5",
            "DESKHOOK_SWEEP_ENABLED": "false",
        }
        with patch.dict(os.environ, env):
            settings = Settings()
        assert settings.qdrant_url == "http://qdrant:6333"
        assert settings.sweep_interval_seconds == 5.0
        assert settings.sweep_enabled is False

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_concurrent_deliveries", 0),
            ("sweep_interval_seconds", 0),
            ("claim_lease_seconds", 0),
            ("claim_lease_seconds", 300),
            ("internal_api_key", "short"),
        ],
    )
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            Settings(env="test", **{field: value})


class TestSecuritySettings:
    def test_auth_disabled_outside_production(self):
        settings = Settings(env="development")
        assert settings.is_auth_enabled is False

    def test_dev_secret_generated(self):
        settings = Settings(env="test")
        assert len(settings.effective_auth_secret_key) == 64
        assert Settings(env="test").effective_auth_secret_key != settings.effective_auth_secret_key

    def test_explicit_secret_used(self):
        settings = Settings(env="test", auth_secret_key="configured-secret")
        assert settings.effective_auth_secret_key == "configured-secret"

    def test_production_requires_secret(self):
        with pytest.raises(ValidationError, match="AUTH_SECRET_KEY"):
            Settings(env="production", internal_api_key="rotated-internal-key")

    def test_production_refuses_default_internal_key(self):
        with pytest.raises(ValidationError, match="INTERNAL_API_KEY"):
            Settings(env="production", auth_secret_key="configured-secret")

    def test_production_enables_auth(self):
        settings = Settings(
            env="production",
            auth_secret_key="configured-secret",
            internal_api_key="rotated-internal-key",
        )
        assert settings.is_auth_enabled is True

    def test_production_warns_when_auth_disabled(self):
        with pytest.warns(UserWarning, match="unauthenticated"):
            Settings(
                env="production",
                auth_enabled=False,
                auth_secret_key="configured-secret",
                internal_api_key="rotated-internal-key",
            )
