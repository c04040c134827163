"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from govauth.config import (
    DEFAULT_RESOURCES,
    DEFAULT_STATEMENT,
    SUPPORTED_NETWORKS,
    Settings,
    get_settings,
    reset_settings_cache,
)


class TestDefaults:
    def test_lifetimes(self):
        """Nonces last ten minutes, sessions a day, refresh in the last hour."""
        settings = Settings()
        assert settings.nonce_ttl_seconds == 600
        assert settings.session_ttl_minutes == 24 * 60
        assert settings.refresh_threshold_minutes == 60

    def test_message_fields(self):
        settings = Settings()
        assert settings.siwe_statement == DEFAULT_STATEMENT
        assert settings.siwe_resources == DEFAULT_RESOURCES
        assert settings.supported_chain_ids == list(SUPPORTED_NETWORKS)
        assert 11155111 in settings.supported_chain_ids

    def test_secret_unset_by_default(self):
        assert Settings().jwt_secret is None


class TestFromEnv:
    """Tests for reading settings from the process environment."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SIWE_DOMAIN", "gov.example.net")
        monkeypatch.setenv("SUPPORTED_CHAIN_IDS", "1, 8453")
        monkeypatch.setenv("SIWE_RESOURCES", "https://a.example,https://b.example")
        monkeypatch.setenv("NONCE_TTL_SECONDS", "120")
        settings = Settings.from_env()

        assert settings.siwe_domain == "gov.example.net"
        assert settings.supported_chain_ids == [1, 8453]
        assert settings.siwe_resources == ["https://a.example", "https://b.example"]
        assert settings.nonce_ttl_seconds == 120

    def test_blank_secret_treated_as_missing(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "   ")
        assert Settings.from_env().jwt_secret is None

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("SIWE_DOMAIN", "first.example")
        first = get_settings()
        monkeypatch.setenv("SIWE_DOMAIN", "second.example")
        assert get_settings() is first
        reset_settings_cache()
        assert get_settings().siwe_domain == "second.example"


class TestValidation:
    @pytest.mark.parametrize("value", ["", "0", "1,-5", "abc"])
    def test_bad_chain_lists_rejected(self, value):
        with pytest.raises(ValidationError):
            Settings(supported_chain_ids=value)

    @pytest.mark.parametrize(
        "field", ["nonce_ttl_seconds", "session_ttl_minutes", "token_ttl_minutes"]
    )
    def test_non_positive_lifetimes_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_negative_refresh_threshold_rejected(self):
        with pytest.raises(ValidationError):
            Settings(refresh_threshold_minutes=-1)

    def test_zero_refresh_threshold_allowed(self):
        assert Settings(refresh_threshold_minutes=0).refresh_threshold_minutes == 0
