from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from govauth.logging import get_logger, short_id
from govauth.storage.common import KeyValueStore, session_key
from govauth.storage.models import SiweSession

logger = get_logger(__name__)


def _is_uuid(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class SessionStore:
    """Durable, TTL-bound session records keyed by session id."""

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        ttl_minutes: int = 24 * 60,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.kv = kv
        self.ttl_minutes = ttl_minutes
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def create(self, address: str, chain_id: int) -> SiweSession:
        session = SiweSession.new(address, chain_id, self.ttl_minutes, now=self._clock())
        await self.kv.put(
            session_key(session.id), session.to_json(), self.ttl_minutes * 60
        )
        logger.info(
            "session_created",
            session_id=session.id,
            address=short_id(address),
            chain_id=chain_id,
        )
        return session

    async def get(self, session_id: str) -> Optional[SiweSession]:
        """Return the live session, or None when missing, expired, or unreadable."""
        if not _is_uuid(session_id):
            return None
        raw = await self.kv.get(session_key(session_id))
        if raw is None:
            return None
        try:
            session = SiweSession.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("session_record_corrupt", session_id=session_id)
            return None
        if session.id != session_id or session.is_expired(self._clock()):
            return None
        return session

    async def delete(self, session_id: str) -> None:
        if not _is_uuid(session_id):
            return
        await self.kv.delete(session_key(session_id))
        logger.info("session_deleted", session_id=session_id)
