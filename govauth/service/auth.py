from __future__ import annotations

import contextlib
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from eth_utils import to_checksum_address

from govauth.logging import get_logger, short_id
from govauth.service.challenge import (
    Challenge,
    ChallengeService,
    SiweMessage,
    addresses_match,
    parse_message,
)
from govauth.service.errors import (
    BadRequestError,
    ConfigurationError,
    InvalidNonceError,
    InvalidTokenError,
    NonceMismatchError,
    ServiceError,
    SessionNotFoundError,
    VerificationFailedError,
)
from govauth.service.nonces import NonceStore
from govauth.service.sessions import SessionStore
from govauth.service.signature import SignatureVerifier
from govauth.service.tokens import TokenPayload, TokenService
from govauth.storage.errors import StoreUnavailable
from govauth.storage.models import SiweSession

logger = get_logger(__name__)


class AuthState(str, Enum):
    """Client-visible login states; the server itself keeps no per-client state."""

    UNAUTHENTICATED = "unauthenticated"
    CHALLENGE_ISSUED = "challenge_issued"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    REVOKED = "revoked"


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    lower = header.lower()
    if not lower.startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise BadRequestError("missing required fields", detail={"field": name})
    return value


class AuthService:
    """Orchestrates challenge, verification, session issuance and revocation.

    Every store failure is reported as ``ConfigurationError``; no driver
    exception escapes this boundary. A nonce consumed before a later step
    fails stays consumed, leaving the client unauthenticated.
    """

    def __init__(
        self,
        challenges: ChallengeService,
        nonces: NonceStore,
        verifier: SignatureVerifier,
        sessions: SessionStore,
        tokens: TokenService,
        *,
        domain: str,
        refresh_threshold_minutes: int = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.challenges = challenges
        self.nonces = nonces
        self.verifier = verifier
        self.sessions = sessions
        self.tokens = tokens
        self.domain = domain
        self.refresh_threshold = timedelta(minutes=refresh_threshold_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    @contextlib.contextmanager
    def _store_guard(self, operation: str):
        try:
            yield
        except StoreUnavailable as exc:
            logger.error(
                "auth_store_unavailable",
                operation=operation,
                error=exc.message,
                detail=exc.detail,
            )
            raise ConfigurationError("session store unavailable") from exc
        except ServiceError:
            raise
        except Exception as exc:
            logger.error(
                "auth_store_failed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ConfigurationError("session store unavailable") from exc

    def _transition(self, source: AuthState, target: AuthState, **context: Any) -> None:
        logger.info(
            "auth_state_transition",
            source=source.value,
            target=target.value,
            **context,
        )

    async def create_challenge(self, address: str, chain_id: int) -> Challenge:
        with self._store_guard("create_challenge"):
            challenge = await self.challenges.create_challenge(address, chain_id)
        self._transition(
            AuthState.UNAUTHENTICATED,
            AuthState.CHALLENGE_ISSUED,
            address=short_id(challenge.address),
        )
        return challenge

    def _check_message_claims(
        self, message: str, nonce: str, address: str, chain_id: int
    ) -> SiweMessage:
        try:
            parsed = parse_message(message)
        except ValueError as exc:
            logger.info("siwe_message_unparseable", error=str(exc))
            raise VerificationFailedError("signature verification failed") from None
        mismatches = []
        if not addresses_match(parsed.address, address):
            mismatches.append("address")
        if parsed.chain_id != chain_id:
            mismatches.append("chain_id")
        if parsed.nonce != nonce:
            mismatches.append("nonce")
        if parsed.domain != self.domain:
            mismatches.append("domain")
        if parsed.expiration_time is not None and parsed.expiration_time <= self._now():
            mismatches.append("expiration_time")
        if mismatches:
            logger.info("siwe_message_claims_mismatch", fields=mismatches)
            raise VerificationFailedError(
                "signature verification failed", detail={"fields": mismatches}
            )
        return parsed

    async def submit_signed_challenge(
        self,
        message: str,
        signature: str,
        nonce: str,
        address: str,
        chain_id: int,
    ) -> Tuple[SiweSession, str]:
        message = _require_text("message", message)
        signature = _require_text("signature", signature)
        nonce = _require_text("nonce", nonce)
        address = _require_text("address", address)
        if isinstance(chain_id, bool) or not isinstance(chain_id, int):
            raise BadRequestError("missing required fields", detail={"field": "chain_id"})
        # Fail before burning the nonce when no token could be minted anyway
        self.tokens.ensure_configured()

        with self._store_guard("consume_nonce"):
            consumed = await self.nonces.consume(nonce)
        if not consumed:
            raise InvalidNonceError("invalid or expired nonce")
        self._transition(
            AuthState.CHALLENGE_ISSUED, AuthState.VERIFYING, nonce=short_id(nonce)
        )

        if nonce not in message:
            raise NonceMismatchError("nonce mismatch")

        if not self.verifier.verify(message, signature, address):
            raise VerificationFailedError("signature verification failed")
        parsed = self._check_message_claims(message, nonce, address, chain_id)

        with self._store_guard("create_session"):
            session = await self.sessions.create(
                to_checksum_address(parsed.address), chain_id
            )
        token = self.tokens.issue(session)
        self._transition(
            AuthState.VERIFYING,
            AuthState.AUTHENTICATED,
            session_id=session.id,
            address=short_id(session.address),
        )
        return session, token

    def _validate(self, token: Optional[str], *, allow_expired: bool = False) -> TokenPayload:
        if not token:
            raise InvalidTokenError("missing bearer token")
        return self.tokens.validate(token, allow_expired=allow_expired)

    async def fetch_session(self, token: Optional[str]) -> SiweSession:
        payload = self._validate(token)
        with self._store_guard("get_session"):
            session = await self.sessions.get(payload.sid)
        if session is None:
            raise SessionNotFoundError("session not found or expired")
        # Address and chain are immutable; a record that disagrees with the token is not this login
        if not addresses_match(session.address, payload.sub) or session.chain_id != payload.chain_id:
            logger.warning("session_claims_mismatch", session_id=session.id)
            raise SessionNotFoundError("session not found or expired")
        return session

    async def revoke_session(self, token: Optional[str]) -> None:
        """Delete the session named by ``token``.

        An authentic token may revoke even after it expires, and revoking an
        already-deleted session succeeds.
        """
        payload = self._validate(token, allow_expired=True)
        with self._store_guard("delete_session"):
            await self.sessions.delete(payload.sid)
        self._transition(
            AuthState.AUTHENTICATED, AuthState.REVOKED, session_id=payload.sid
        )

    def needs_refresh(self, session: SiweSession, now: Optional[datetime] = None) -> bool:
        """True once the remaining lifetime drops below the refresh threshold.

        Refreshing is full re-authentication: a new challenge, signature and
        session. Sessions are never extended in place.
        """
        return session.remaining(now or self._now()) < self.refresh_threshold

    def state_of(self, session: Optional[SiweSession], now: Optional[datetime] = None) -> AuthState:
        current = now or self._now()
        if session is None or session.is_expired(current):
            return AuthState.UNAUTHENTICATED
        if self.needs_refresh(session, current):
            return AuthState.REFRESHING
        return AuthState.AUTHENTICATED
