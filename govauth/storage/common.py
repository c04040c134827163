from __future__ import annotations

from typing import Optional, Protocol

NONCE_KEY_PREFIX = "nonce:"
SESSION_KEY_PREFIX = "session:"


def nonce_key(nonce: str) -> str:
    return f"{NONCE_KEY_PREFIX}{nonce}"


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


class KeyValueStore(Protocol):
    """Async key/value contract shared by the memory and Redis backends.

    Values are strings; every write carries a provider-side TTL. ``take``
    returns and removes a key; ``atomic_take`` reports whether the backend
    guarantees that no two callers can both observe the same value.
    """

    atomic_take: bool

    async def put(
        self, key: str, value: str, ttl_seconds: int, *, only_if_absent: bool = False
    ) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> None: ...

    async def take(self, key: str) -> Optional[str]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def ensure_ttl(ttl_seconds: int) -> int:
    """Clamp TTLs to at least one second; providers reject zero or negative expiry."""
    return max(1, int(ttl_seconds))
