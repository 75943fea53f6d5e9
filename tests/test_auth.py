"""Tests for API authentication."""

import time
from unittest.mock import patch

import pytest
from fastapi.security import HTTPAuthorizationCredentials

from deskhook.api.auth import (
    AuthenticatedAdmin,
    TokenValidator,
    authenticate_admin,
    get_token_validator,
    reset_auth_singletons,
    verify_internal_key,
)
from deskhook.config import Settings
from deskhook.exceptions import AuthenticationError, AuthorizationError

SECRET = "auth-secret-for-tests-0123456789"


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestTokenValidator:
    """Tests for TokenValidator class."""

    @pytest.fixture
    def validator(self):
        return TokenValidator(SECRET)

    def test_create_token(self, validator):
        """Token should have four colon-separated parts."""
        token = validator.create_token("admin_1")
        user_id, role, expires_at, signature = token.split(":")
        assert user_id == "admin_1"
        assert role == "admin"
        assert int(expires_at) > time.time()
        assert len(signature) == 64

    def test_validate_token_success(self, validator):
        admin = validator.validate_token(validator.create_token("admin_1"))
        assert admin == AuthenticatedAdmin(user_id="admin_1", role="admin")

    def test_validate_token_invalid_format(self, validator):
        with pytest.raises(AuthenticationError, match="format"):
            validator.validate_token("not-a-token")

    def test_validate_token_invalid_signature(self, validator):
        token = validator.create_token("admin_1")
        forged = token.replace("admin_1", "admin_2", 1)
        with pytest.raises(AuthenticationError, match="signature"):
            validator.validate_token(forged)

    def test_validate_token_expired(self, validator):
        token = validator.create_token("admin_1", expire_minutes=1)
        with patch("deskhook.api.auth.time.time", return_value=time.time() + 120):
            with pytest.raises(AuthenticationError, match="expired"):
                validator.validate_token(token)

    def test_different_secrets_produce_different_tokens(self):
        token = TokenValidator(SECRET).create_token("admin_1")
        with pytest.raises(AuthenticationError):
            TokenValidator("another-secret-entirely").validate_token(token)

    def test_colon_in_user_id_rejected(self, validator):
        with pytest.raises(ValueError):
            validator.create_token("admin:1")


class TestAuthenticateAdmin:
    def setup_method(self):
        reset_auth_singletons()

    def test_disabled_auth_returns_none(self):
        settings = Settings(env="test", auth_enabled=False)
        assert authenticate_admin(settings, None) is None

    def test_missing_credentials(self):
        settings = Settings(env="test", auth_enabled=True, auth_secret_key=SECRET)
        with pytest.raises(AuthenticationError):
            authenticate_admin(settings, None)

    def test_admin_token(self):
        settings = Settings(env="test", auth_enabled=True, auth_secret_key=SECRET)
        token = TokenValidator(SECRET).create_token("admin_1")

        admin = authenticate_admin(settings, bearer(token))

        assert admin.user_id == "admin_1"

    def test_other_role_forbidden(self):
        settings = Settings(env="test", auth_enabled=True, auth_secret_key=SECRET)
        token = TokenValidator(SECRET).create_token("agent_1", role="agent")

        with pytest.raises(AuthorizationError):
            authenticate_admin(settings, bearer(token))

    def test_token_validator_singleton(self):
        assert get_token_validator("secret-key") is get_token_validator("secret-key")
        first = get_token_validator("secret-key")
        reset_auth_singletons()
        assert get_token_validator("secret-key") is not first


class TestVerifyInternalKey:
    @pytest.fixture
    def settings(self):
        return Settings(env="test", internal_api_key="internal-test-key")

    def test_valid_key(self, settings):
        verify_internal_key(settings, bearer("internal-test-key"))

    def test_missing_key(self, settings):
        with pytest.raises(AuthenticationError, match="Missing"):
            verify_internal_key(settings, None)

    def test_wrong_key(self, settings):
        with pytest.raises(AuthenticationError, match="Invalid"):
            verify_internal_key(settings, bearer("internal-test-kez"))

    def test_enforced_even_when_admin_auth_disabled(self):
        settings = Settings(env="test", auth_enabled=False)
        with pytest.raises(AuthenticationError):
            verify_internal_key(settings, None)
