"""Unit tests for bearer token issuance and validation."""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import TEST_SECRET, ManualClock
from govauth.config import Settings
from govauth.service.errors import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
)
from govauth.service.tokens import TokenService
from govauth.storage.models import SiweSession

ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def _session(clock: ManualClock, minutes: int = 24 * 60) -> SiweSession:
    return SiweSession.new(
        ADDRESS,
        11155111,
        minutes,
        now=datetime.fromtimestamp(clock(), tz=timezone.utc),
    )


def _decode(segment: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def tokens(settings, clock):
    return TokenService(settings, clock=clock)


class TestIssue:
    """Tests for token structure."""

    def test_three_unpadded_segments(self, tokens, clock):
        """Tokens are header.payload.signature without base64 padding."""
        token = tokens.issue(_session(clock))
        parts = token.split(".")
        assert len(parts) == 3
        assert all("=" not in part for part in parts)
        assert _decode(parts[0]) == {"alg": "HS256", "typ": "JWT"}

    def test_payload_claims(self, tokens, clock, settings):
        """Payload names the wallet, session and chain."""
        session = _session(clock)
        claims = _decode(tokens.issue(session).split(".")[1])
        assert claims["sub"] == ADDRESS
        assert claims["sid"] == session.id
        assert claims["chain_id"] == 11155111
        assert claims["iss"] == settings.jwt_issuer
        assert claims["aud"] == settings.jwt_audience
        assert claims["iat"] == int(clock())

    def test_expiry_capped_by_session(self, clock):
        """A token never outlives its session even with a longer token TTL."""
        settings = Settings(jwt_secret=TEST_SECRET, token_ttl_minutes=48 * 60)
        service = TokenService(settings, clock=clock)
        session = _session(clock, minutes=30)
        claims = _decode(service.issue(session).split(".")[1])
        assert claims["exp"] <= session.expires_at.timestamp()
        assert claims["exp"] == int(session.expires_at.timestamp())

    def test_missing_secret_is_configuration_error(self, clock):
        """Issuing without a signing secret fails as a server configuration problem."""
        service = TokenService(Settings(jwt_secret=None), clock=clock)
        with pytest.raises(ConfigurationError):
            service.issue(_session(clock))


class TestValidate:
    """Tests for signature and expiry checks."""

    def test_round_trip(self, tokens, clock):
        """A freshly issued token validates back to the same session claims."""
        session = _session(clock)
        payload = tokens.validate(tokens.issue(session))
        assert payload.sub == session.address
        assert payload.sid == session.id
        assert payload.chain_id == session.chain_id

    def test_tampered_payload_rejected(self, tokens, clock):
        """Changing a claim invalidates the signature."""
        header, payload, signature = tokens.issue(_session(clock)).split(".")
        claims = _decode(payload)
        claims["sub"] = "0x" + "00" * 20
        forged = base64.urlsafe_b64encode(
            json.dumps(claims, separators=(",", ":")).encode()
        ).decode().rstrip("=")
        with pytest.raises(InvalidTokenError):
            tokens.validate(f"{header}.{forged}.{signature}")

    def test_wrong_secret_rejected(self, clock):
        """Tokens signed with another secret are invalid."""
        issuer = TokenService(Settings(jwt_secret="a" * 40), clock=clock)
        validator = TokenService(Settings(jwt_secret="b" * 40), clock=clock)
        with pytest.raises(InvalidTokenError):
            validator.validate(issuer.issue(_session(clock)))

    def test_previous_secret_accepted_for_validation(self, clock):
        """Outstanding tokens survive a secret rollover."""
        old = TokenService(Settings(jwt_secret="a" * 40), clock=clock)
        rotated = TokenService(
            Settings(jwt_secret="b" * 40, jwt_previous_secret="a" * 40), clock=clock
        )
        token = old.issue(_session(clock))
        assert rotated.validate(token).sub == ADDRESS
        # New tokens are signed with the current secret only
        with pytest.raises(InvalidTokenError):
            old.validate(rotated.issue(_session(clock)))

    def test_alg_none_rejected(self, tokens, clock):
        """Headers naming another algorithm are refused."""
        _, payload, signature = tokens.issue(_session(clock)).split(".")
        header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').decode().rstrip("=")
        with pytest.raises(InvalidTokenError):
            tokens.validate(f"{header}.{payload}.{signature}")

    @pytest.mark.parametrize(
        "token", ["", "abc", "a.b", "a.b.c.d", "!!!.@@@.###", "é.é.é"]
    )
    def test_malformed_tokens_rejected(self, tokens, token):
        """Structural garbage is InvalidToken, never an unexpected exception."""
        with pytest.raises(InvalidTokenError):
            tokens.validate(token)

    def test_expired_token_distinct_error(self, tokens, clock):
        """An authentic token past exp raises TokenExpired, not InvalidToken."""
        session = _session(clock, minutes=10)
        token = tokens.issue(session)
        clock.advance(10 * 60)
        with pytest.raises(TokenExpiredError):
            tokens.validate(token)

    def test_one_second_before_expiry_still_valid(self, tokens, clock):
        """Validity holds right up to the exp second."""
        token = tokens.issue(_session(clock, minutes=10))
        clock.advance(10 * 60 - 1)
        assert tokens.validate(token).chain_id == 11155111

    def test_allow_expired_returns_claims(self, tokens, clock):
        """Expired but authentic tokens can be read when explicitly allowed."""
        session = _session(clock, minutes=1)
        token = tokens.issue(session)
        clock.advance(3600)
        assert tokens.validate(token, allow_expired=True).sid == session.id

    def test_wrong_audience_rejected(self, clock):
        """Tokens minted for another audience are invalid."""
        issuer = TokenService(
            Settings(jwt_secret=TEST_SECRET, jwt_audience="someone-else"), clock=clock
        )
        validator = TokenService(Settings(jwt_secret=TEST_SECRET), clock=clock)
        with pytest.raises(InvalidTokenError):
            validator.validate(issuer.issue(_session(clock)))

    def test_session_window_respected_over_time(self, tokens, clock):
        """A token issued late in a session expires with the session."""
        session = _session(clock, minutes=60)
        clock.advance(50 * 60)
        token = tokens.issue(session)
        clock.advance(10 * 60)
        with pytest.raises(TokenExpiredError):
            tokens.validate(token)
        assert session.expires_at - timedelta(minutes=60) == session.issued_at
