from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    """Render a UTC timestamp as ISO-8601 with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def truncate_ms(value: datetime) -> datetime:
    """Drop sub-millisecond precision so stored records read back unchanged."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def parse_timestamp(raw: Any) -> datetime:
    """Parse an ISO-8601 timestamp (with Z or offset) into an aware UTC datetime."""
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp value: {raw!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class NonceRecord:
    value: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def new(cls, value: str, ttl_seconds: int, *, now: Optional[datetime] = None) -> "NonceRecord":
        created = truncate_ms(now or utcnow())
        return cls(
            value=value,
            created_at=created,
            expires_at=created + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_json(self) -> str:
        return json.dumps(
            {
                "createdAt": isoformat_z(self.created_at),
                "expiresAt": isoformat_z(self.expires_at),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, value: str, raw: str) -> "NonceRecord":
        data = json.loads(raw)
        return cls(
            value=value,
            created_at=parse_timestamp(data["createdAt"]),
            expires_at=parse_timestamp(data["expiresAt"]),
        )


@dataclass
class SiweSession:
    id: str
    address: str
    chain_id: int
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def new(
        cls,
        address: str,
        chain_id: int,
        ttl_minutes: int = 60 * 24,
        *,
        now: Optional[datetime] = None,
    ) -> "SiweSession":
        issued = truncate_ms(now or utcnow())
        return cls(
            id=str(uuid.uuid4()),
            address=address,
            chain_id=chain_id,
            issued_at=issued,
            expires_at=issued + timedelta(minutes=ttl_minutes),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        return self.expires_at - (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "chain_id": self.chain_id,
            "issued_at": isoformat_z(self.issued_at),
            "expires_at": isoformat_z(self.expires_at),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiweSession":
        return cls(
            id=str(data["id"]),
            address=str(data["address"]),
            chain_id=int(data["chain_id"]),
            issued_at=parse_timestamp(data["issued_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
        )

    @classmethod
    def from_json(cls, raw: str) -> "SiweSession":
        return cls.from_dict(json.loads(raw))
