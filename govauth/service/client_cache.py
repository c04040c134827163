"""Client-side session cache model.

A browser or CLI keeps the last successful login so it can skip re-signing
until the session nears expiry. The cache is a convenience only: every
authorized call still goes through the bearer token and the server-side
session lookup.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from govauth.service.challenge import addresses_match
from govauth.storage.models import SiweSession

STORAGE_KEY = "gnus-dao-siwe-session"
DEFAULT_REFRESH_THRESHOLD = timedelta(hours=1)


def format_time_until(expires_at: datetime, now: Optional[datetime] = None) -> str:
    """Render remaining lifetime as ``"Xh Ym"``, ``"Ym"`` or ``"Expired"``."""
    remaining = expires_at - (now or datetime.now(timezone.utc))
    total_seconds = int(remaining.total_seconds())
    if total_seconds <= 0:
        return "Expired"
    hours, rest = divmod(total_seconds, 3600)
    minutes = rest // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


@dataclass
class CachedSession:
    session: SiweSession
    message: str
    signature: str
    token: str

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.session.is_expired(now)

    def needs_refresh(
        self,
        threshold: timedelta = DEFAULT_REFRESH_THRESHOLD,
        now: Optional[datetime] = None,
    ) -> bool:
        return self.session.remaining(now) < threshold

    def matches_wallet(
        self, address: str, chain_id: int, now: Optional[datetime] = None
    ) -> bool:
        """A wallet or network switch invalidates the cache rather than mutating it."""
        return (
            addresses_match(self.session.address, address)
            and self.session.chain_id == chain_id
            and not self.is_expired(now)
        )

    def describe(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        if self.is_expired(now):
            return {"is_valid": False}
        return {
            "is_valid": True,
            "address": self.session.address,
            "chain_id": self.session.chain_id,
            "expires_at": self.session.expires_at,
            "time_until_expiry": format_time_until(self.session.expires_at, now),
        }

    def reconcile(self, server_session: Optional[SiweSession]) -> Optional["CachedSession"]:
        """Keep the cache only while the server still holds the same login."""
        if server_session is None:
            return None
        if (
            server_session.id != self.session.id
            or not addresses_match(server_session.address, self.session.address)
            or server_session.chain_id != self.session.chain_id
        ):
            return None
        return CachedSession(
            session=server_session,
            message=self.message,
            signature=self.signature,
            token=self.token,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "session": self.session.to_dict(),
                "message": self.message,
                "signature": self.signature,
                "token": self.token,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: Optional[str], now: Optional[datetime] = None) -> Optional["CachedSession"]:
        """Load a cached login; unreadable or expired entries load as None."""
        if not raw:
            return None
        try:
            data = json.loads(raw)
            cached = cls(
                session=SiweSession.from_dict(data["session"]),
                message=str(data["message"]),
                signature=str(data["signature"]),
                token=str(data["token"]),
            )
        except (ValueError, KeyError, TypeError):
            return None
        if cached.is_expired(now):
            return None
        return cached
