"""Tests for log processors."""

from govauth.logging import _redact_secrets, short_id


class TestRedaction:
    def test_credentials_masked(self):
        """Tokens, signatures and secrets never reach the sink in full."""
        event = {
            "event": "x",
            "token": "aaaa.bbbb.cccc",
            "signature": "0x" + "ab" * 65,
            "jwt_secret": "super-secret-value",
        }
        redacted = _redact_secrets(None, "info", dict(event))
        assert redacted["token"] == "aa***cc"
        assert redacted["signature"].startswith("0x***")
        assert "super" not in redacted["jwt_secret"]

    def test_identifiers_untouched(self):
        """Abbreviated addresses and session ids stay readable."""
        event = {"event": "x", "session_id": "abc-123", "address": "0x5aAeb60..."}
        assert _redact_secrets(None, "info", dict(event)) == event


def test_short_id():
    assert short_id("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed") == "0x5aAeb605..."
    assert short_id("abc") == "abc"
    assert short_id(None) is None
