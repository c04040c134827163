from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional

from govauth.logging import get_logger, short_id
from govauth.storage.common import KeyValueStore, nonce_key
from govauth.storage.errors import StoreUnavailable
from govauth.storage.models import NonceRecord

logger = get_logger(__name__)

NONCE_BYTES = 16
_NONCE_PATTERN = re.compile(r"^[0-9a-f]{%d}$" % (NONCE_BYTES * 2))


def generate_nonce() -> str:
    """128 bits from the OS CSPRNG, hex-encoded."""
    return secrets.token_hex(NONCE_BYTES)


def is_well_formed_nonce(value: object) -> bool:
    return isinstance(value, str) and bool(_NONCE_PATTERN.match(value))


class NonceStore:
    """Single-use, TTL-bound challenge tokens.

    Consumption goes through the backend's ``take``. With Redis >= 6.2 or the
    memory backend that is atomic; on older Redis, or a replicated store that
    serves reads from lagging replicas, two racing submissions can both see
    the nonce. That window is accepted: the signature check still binds each
    submission to the wallet that signed it.
    """

    ALLOCATE_ATTEMPTS = 3

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        ttl_seconds: int = 600,
        generator: Callable[[], str] = generate_nonce,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.kv = kv
        self.ttl_seconds = ttl_seconds
        self._generate = generator
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def allocate(self) -> NonceRecord:
        for attempt in range(1, self.ALLOCATE_ATTEMPTS + 1):
            record = NonceRecord.new(self._generate(), self.ttl_seconds, now=self._clock())
            stored = await self.kv.put(
                nonce_key(record.value),
                record.to_json(),
                self.ttl_seconds,
                only_if_absent=True,
            )
            if stored:
                logger.info(
                    "nonce_allocated",
                    nonce=short_id(record.value),
                    expires_at=record.expires_at.isoformat(),
                )
                return record
            # Never overwrite a live nonce; a collision means draw again.
            logger.warning("nonce_collision", attempt=attempt)
        raise StoreUnavailable("could not allocate a unique nonce")

    async def consume(self, nonce: str) -> bool:
        """Remove ``nonce`` and report whether it was live."""
        if not is_well_formed_nonce(nonce):
            logger.info("nonce_rejected_malformed")
            return False
        raw = await self.kv.take(nonce_key(nonce))
        if raw is None:
            logger.info("nonce_not_found", nonce=short_id(nonce))
            return False
        try:
            record = NonceRecord.from_json(nonce, raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("nonce_record_corrupt", nonce=short_id(nonce))
            return False
        if record.is_expired(self._clock()):
            # Provider TTL is advisory; the stored timestamp is authoritative.
            logger.info("nonce_expired", nonce=short_id(nonce))
            return False
        logger.info(
            "nonce_consumed",
            nonce=short_id(nonce),
            atomic=getattr(self.kv, "atomic_take", False),
        )
        return True
