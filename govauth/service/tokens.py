from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from govauth.config import Settings
from govauth.logging import get_logger
from govauth.service.errors import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)
from govauth.storage.models import SiweSession

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass
class TokenPayload:
    sub: str
    sid: str
    chain_id: int
    iat: int
    exp: int
    iss: str
    aud: str

    def to_claims(self) -> dict[str, Any]:
        return {
            "iss": self.iss,
            "aud": self.aud,
            "sub": self.sub,
            "sid": self.sid,
            "chain_id": self.chain_id,
            "iat": self.iat,
            "exp": self.exp,
        }


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenService:
    """HS256 bearer tokens referencing a session.

    Validation is stateless: it checks structure, signature and expiry only.
    Revocation is enforced by the session store lookup that follows.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._clock = clock

    def _signing_secret(self) -> bytes:
        if not self.settings.jwt_secret:
            logger.error("jwt_secret_missing")
            raise ConfigurationError("server configuration error")
        return self.settings.jwt_secret.encode()

    def ensure_configured(self) -> None:
        self._signing_secret()

    def _verification_secrets(self) -> list[bytes]:
        secrets = [self._signing_secret()]
        if self.settings.jwt_previous_secret:
            secrets.append(self.settings.jwt_previous_secret.encode())
        return secrets

    @staticmethod
    def _sign(secret: bytes, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(self, session: SiweSession) -> str:
        secret = self._signing_secret()
        now = int(self._clock())
        ttl_exp = now + self.settings.token_ttl_minutes * 60
        # The token never outlives the session it references
        exp = min(ttl_exp, int(session.expires_at.timestamp()))
        payload = TokenPayload(
            sub=session.address,
            sid=session.id,
            chain_id=session.chain_id,
            iat=now,
            exp=exp,
            iss=self.settings.jwt_issuer,
            aud=self.settings.jwt_audience,
        )
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(
            json.dumps(payload.to_claims(), separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(secret, signing_input)}"

    def validate(self, token: str, *, allow_expired: bool = False) -> TokenPayload:
        """Return the token's claims or raise.

        Raises ``InvalidTokenError`` for anything structurally wrong or signed
        with an unknown secret, and ``TokenExpiredError`` when an authentic
        token is past ``exp`` (unless ``allow_expired``).
        """
        secrets = self._verification_secrets()
        if not isinstance(token, str):
            raise InvalidTokenError("invalid token")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidTokenError("invalid token format") from None

        # Pin the algorithm to prevent alg confusion
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError("invalid token header") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidTokenError("invalid token header")

        signing_input = f"{header_b64}.{payload_b64}"
        supplied = sig_b64.encode("utf-8")
        matched = False
        for secret in secrets:
            # Check every candidate so timing does not reveal which secret matched
            if hmac.compare_digest(self._sign(secret, signing_input).encode(), supplied):
                matched = True
        if not matched:
            raise InvalidTokenError("invalid token signature")

        try:
            claims = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError("invalid token payload") from None
        if not isinstance(claims, dict):
            raise InvalidTokenError("invalid token payload")
        if claims.get("iss") != self.settings.jwt_issuer:
            raise InvalidTokenError("invalid token issuer")
        aud = claims.get("aud")
        if isinstance(aud, list):
            valid_aud = self.settings.jwt_audience in aud
        else:
            valid_aud = aud == self.settings.jwt_audience
        if not valid_aud:
            raise InvalidTokenError("invalid token audience")

        try:
            payload = TokenPayload(
                sub=str(claims["sub"]),
                sid=str(claims["sid"]),
                chain_id=int(claims["chain_id"]),
                iat=int(claims["iat"]),
                exp=int(claims["exp"]),
                iss=claims["iss"],
                aud=self.settings.jwt_audience,
            )
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError("invalid token claims") from None

        if payload.exp <= self._clock() and not allow_expired:
            raise TokenExpiredError("token expired")
        return payload
