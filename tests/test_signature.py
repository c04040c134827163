"""Unit tests for EIP-191 signature verification."""

import pytest

from conftest import sign_text
from govauth.service.signature import SignatureVerifier

MESSAGE = "dao.example.org wants you to sign in with your Ethereum account:\nNonce: abc"


@pytest.fixture
def verifier():
    return SignatureVerifier()


class TestSignatureVerifier:
    """Tests for address recovery and comparison."""

    def test_valid_signature_verifies(self, verifier, wallet):
        """A signature by the claimed wallet over the exact text verifies."""
        signature = sign_text(wallet.key, MESSAGE)
        assert verifier.verify(MESSAGE, signature, wallet.address) is True

    def test_address_comparison_ignores_case(self, verifier, wallet):
        """Lowercase claimed addresses match their checksummed recovery."""
        signature = sign_text(wallet.key, MESSAGE)
        assert verifier.verify(MESSAGE, signature, wallet.address.lower()) is True

    def test_signature_without_prefix_accepted(self, verifier, wallet):
        """The 0x prefix on the signature is optional."""
        signature = sign_text(wallet.key, MESSAGE)[2:]
        assert verifier.verify(MESSAGE, signature, wallet.address) is True

    def test_other_wallet_rejected(self, verifier, wallet, other_wallet):
        """A signature by a different wallet does not verify."""
        signature = sign_text(other_wallet.key, MESSAGE)
        assert verifier.verify(MESSAGE, signature, wallet.address) is False

    @pytest.mark.parametrize(
        "altered",
        [
            MESSAGE + " ",
            MESSAGE.replace("\n", "\r\n"),
            "Nonce: abc\n" + MESSAGE.split("\n")[0],
        ],
    )
    def test_any_byte_change_breaks_binding(self, verifier, wallet, altered):
        """Whitespace or field-order changes invalidate the signature."""
        signature = sign_text(wallet.key, MESSAGE)
        assert verifier.verify(altered, signature, wallet.address) is False

    @pytest.mark.parametrize(
        "signature",
        ["", "0x", "0x1234", "0x" + "zz" * 65, "0x" + "00" * 64, "0x" + "00" * 66, None],
    )
    def test_malformed_signatures_return_false(self, verifier, wallet, signature):
        """Malformed input never raises."""
        assert verifier.verify(MESSAGE, signature, wallet.address) is False

    def test_unrecoverable_signature_returns_false(self, verifier, wallet):
        """Well-formed bytes with an invalid v/r/s never raise."""
        assert verifier.verify(MESSAGE, "0x" + "ff" * 65, wallet.address) is False

    def test_empty_claimed_address(self, verifier, wallet):
        """A missing claimed address fails closed."""
        signature = sign_text(wallet.key, MESSAGE)
        assert verifier.verify(MESSAGE, signature, "") is False
