from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse, urlunparse

from govauth.config import Settings, get_settings
from govauth.logging import get_logger
from govauth.service.auth import AuthService
from govauth.service.challenge import ChallengeService
from govauth.service.nonces import NonceStore
from govauth.service.sessions import SessionStore
from govauth.service.signature import SignatureVerifier
from govauth.service.tokens import TokenService
from govauth.storage.common import KeyValueStore
from govauth.storage.memory import MemoryKeyValueStore
from govauth.storage.redis_cache import RedisKeyValueStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask password in URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_kv(settings: Settings) -> KeyValueStore:
    """Pick the key/value backend.

    Redis is required outside TEST_MODE / ALLOW_REDIS_FALLBACK_DEV; the
    in-memory backend only holds state for a single process.
    """
    if settings.use_memory_store:
        logger.info("runtime_kv_initialized", kv_type="memory")
        return MemoryKeyValueStore()

    redis_error: Exception | None = None
    if settings.redis_url:
        try:
            kv = RedisKeyValueStore(
                settings.redis_url, socket_timeout=settings.redis_socket_timeout
            )
            kv.verify_connection()
            logger.info(
                "runtime_kv_initialized",
                kv_type="redis",
                redis_url=_mask_url_password(settings.redis_url),
            )
            return kv
        except Exception as exc:
            redis_error = exc

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for nonces and sessions; start Redis or set "
            "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error

    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        message=(
            f"Running without Redis under {fallback_mode}; nonces and sessions "
            "are held in this process only."
        ),
        mode=fallback_mode,
    )
    return MemoryKeyValueStore()


class Runtime:
    """Explicitly constructed service graph, owned by the application lifespan."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        kv: Optional[KeyValueStore] = None,
    ):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.kv = kv if kv is not None else build_kv(self.settings)

        self.nonces = NonceStore(self.kv, ttl_seconds=self.settings.nonce_ttl_seconds)
        self.challenges = ChallengeService(
            self.nonces,
            domain=self.settings.siwe_domain,
            uri=self.settings.siwe_uri,
            statement=self.settings.siwe_statement,
            resources=self.settings.siwe_resources,
            supported_chain_ids=self.settings.supported_chain_ids,
            window_minutes=self.settings.challenge_window_minutes,
        )
        self.verifier = SignatureVerifier()
        self.sessions = SessionStore(self.kv, ttl_minutes=self.settings.session_ttl_minutes)
        self.tokens = TokenService(self.settings)
        self.auth = AuthService(
            self.challenges,
            self.nonces,
            self.verifier,
            self.sessions,
            self.tokens,
            domain=self.settings.siwe_domain,
            refresh_threshold_minutes=self.settings.refresh_threshold_minutes,
        )
        if not self.settings.jwt_secret:
            # Challenges still work; verification will answer configuration_error
            logger.error("jwt_secret_not_configured")

        logger.info(
            "runtime_initialized",
            kv_type=type(self.kv).__name__,
            atomic_nonce_consume=getattr(self.kv, "atomic_take", False),
            supported_chain_ids=self.settings.supported_chain_ids,
        )

    async def close(self) -> None:
        await self.kv.close()
        logger.info("runtime_closed")
