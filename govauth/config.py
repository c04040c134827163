from __future__ import annotations

import os
from typing import Any, List, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from govauth.logging import get_logger

logger = get_logger(__name__)


# Chain ids the governance front end can connect to.
SUPPORTED_NETWORKS: dict[int, str] = {
    1: "ethereum",
    11155111: "sepolia",
    84532: "base-sepolia",
    8453: "base",
    137: "polygon",
    42161: "arbitrum",
    2046399126: "skale-europa",
}

DEFAULT_STATEMENT = "Sign in to GNUS DAO governance platform with your Ethereum account."
DEFAULT_RESOURCES = ["https://gnus.ai", "https://docs.gnus.ai"]


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return list(value)


class Settings(BaseModel):
    """Runtime settings for the sign-in service."""

    redis_url: Optional[str] = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and the in-memory store fallback.",
    )

    # Token signing. A missing secret is reported per request as a configuration error.
    jwt_secret: Optional[str] = env_field(None, "JWT_SECRET")
    jwt_previous_secret: Optional[str] = env_field(
        None,
        "JWT_PREVIOUS_SECRET",
        description="Retired signing secret accepted for validation during rollover",
    )
    jwt_issuer: str = env_field("govauth", "JWT_ISSUER")
    jwt_audience: str = env_field("governance-clients", "JWT_AUDIENCE")

    # SIWE message fields
    siwe_domain: str = env_field("localhost:3000", "SIWE_DOMAIN")
    siwe_uri: str = env_field("http://localhost:3000", "SIWE_URI")
    siwe_statement: str = env_field(DEFAULT_STATEMENT, "SIWE_STATEMENT")
    siwe_resources: List[str] = env_field(list(DEFAULT_RESOURCES), "SIWE_RESOURCES")
    supported_chain_ids: List[int] = env_field(
        list(SUPPORTED_NETWORKS), "SUPPORTED_CHAIN_IDS"
    )

    # Lifetimes
    nonce_ttl_seconds: int = env_field(600, "NONCE_TTL_SECONDS")
    session_ttl_minutes: int = env_field(24 * 60, "SESSION_TTL_MINUTES")
    token_ttl_minutes: int = env_field(
        24 * 60,
        "TOKEN_TTL_MINUTES",
        description="Upper bound for bearer token lifetime; never outlives the session",
    )
    challenge_window_minutes: int = env_field(
        24 * 60,
        "CHALLENGE_WINDOW_MINUTES",
        description="Expiration Time written into the challenge message",
    )
    refresh_threshold_minutes: int = env_field(60, "REFRESH_THRESHOLD_MINUTES")

    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")
    log_level: str = env_field("INFO", "LOG_LEVEL")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("siwe_resources", "cors_allow_origins", mode="before")
    @classmethod
    def _parse_string_list(cls, value: Any) -> list:
        return [str(item) for item in _split_csv(value)]

    @field_validator("supported_chain_ids", mode="before")
    @classmethod
    def _parse_chain_ids(cls, value: Any) -> list:
        chain_ids = []
        for item in _split_csv(value):
            chain_id = int(item)
            if chain_id <= 0:
                raise ValueError("chain ids must be positive integers")
            chain_ids.append(chain_id)
        if not chain_ids:
            raise ValueError("at least one chain id must be supported")
        return chain_ids

    @field_validator(
        "nonce_ttl_seconds",
        "session_ttl_minutes",
        "token_ttl_minutes",
        "challenge_window_minutes",
    )
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("lifetimes must be positive")
        return value

    @field_validator("refresh_threshold_minutes")
    @classmethod
    def _non_negative_threshold(cls, value: int) -> int:
        if value < 0:
            raise ValueError("refresh threshold cannot be negative")
        return value

    @field_validator("jwt_secret", "jwt_previous_secret")
    @classmethod
    def _blank_secret_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if len(value) < 32:
            logger.warning("jwt_secret_short", length=len(value))
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
