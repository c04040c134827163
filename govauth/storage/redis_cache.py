from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

from govauth.logging import get_logger
from govauth.storage.common import ensure_ttl
from govauth.storage.errors import StoreUnavailable

logger = get_logger(__name__)


class RedisKeyValueStore:
    """Redis-backed key/value store for nonces and sessions.

    Every driver failure surfaces as ``StoreUnavailable`` so callers never see
    raw redis exceptions.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client=None,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        # Explicit timeouts so a stalled Redis cannot hang a request
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        # Flipped off when the server predates GETDEL (Redis < 6.2)
        self.atomic_take = True

    async def put(
        self, key: str, value: str, ttl_seconds: int, *, only_if_absent: bool = False
    ) -> bool:
        try:
            result = await self.client.set(
                key, value, ex=ensure_ttl(ttl_seconds), nx=only_if_absent
            )
        except RedisError as exc:
            raise StoreUnavailable("redis write failed", {"op": "set"}) from exc
        return bool(result)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise StoreUnavailable("redis read failed", {"op": "get"}) from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as exc:
            raise StoreUnavailable("redis delete failed", {"op": "delete"}) from exc

    async def take(self, key: str) -> Optional[str]:
        """Return and remove ``key``.

        Uses GETDEL when the server supports it. Older servers fall back to
        GET followed by DEL; two concurrent callers may both read the value,
        but only the one whose DEL removed the key gets it back.
        """
        if self.atomic_take:
            try:
                return await self.client.getdel(key)
            except ResponseError as exc:
                if "unknown command" not in str(exc).lower():
                    raise StoreUnavailable("redis take failed", {"op": "getdel"}) from exc
                self.atomic_take = False
                logger.warning(
                    "redis_getdel_unsupported",
                    message="falling back to non-atomic GET+DEL for single-use keys",
                )
            except RedisError as exc:
                raise StoreUnavailable("redis take failed", {"op": "getdel"}) from exc
        try:
            value = await self.client.get(key)
            if value is None:
                return None
            # Only the caller whose DEL removed the key wins
            if await self.client.delete(key) != 1:
                return None
            return value
        except RedisError as exc:
            raise StoreUnavailable("redis take failed", {"op": "get+del"}) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as exc:
            raise StoreUnavailable("redis ping failed", {"op": "ping"}) from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        from redis import Redis

        # Short-lived synchronous client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except RedisError as exc:
            logger.warning("redis_close_failed", error=str(exc))
