"""EIP-191 personal_sign verification."""

from __future__ import annotations

from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from govauth.logging import get_logger, short_id

logger = get_logger(__name__)

SIGNATURE_BYTES = 65


def _signature_bytes(signature: object) -> Optional[bytes]:
    if not isinstance(signature, str):
        return None
    hex_part = signature[2:] if signature[:2] in ("0x", "0X") else signature
    if len(hex_part) != SIGNATURE_BYTES * 2:
        return None
    try:
        return bytes.fromhex(hex_part)
    except ValueError:
        return None


class SignatureVerifier:
    """Checks that a signature over the literal message text came from a wallet.

    Recovery runs over the exact string the client signed; the message is
    never re-serialized from parsed fields first.
    """

    def recover(self, message_text: str, signature: str) -> Optional[str]:
        raw = _signature_bytes(signature)
        if raw is None or not isinstance(message_text, str) or not message_text:
            return None
        try:
            return Account.recover_message(
                encode_defunct(text=message_text), signature=raw
            )
        except Exception as exc:
            # eth-keys raises several unrelated types for bad v/r/s values
            logger.info("signature_recovery_failed", error_type=type(exc).__name__)
            return None

    def verify(self, message_text: str, signature: str, claimed_address: str) -> bool:
        if not isinstance(claimed_address, str) or not claimed_address:
            return False
        recovered = self.recover(message_text, signature)
        if recovered is None:
            return False
        matched = recovered.lower() == claimed_address.lower()
        if not matched:
            logger.info(
                "signature_address_mismatch",
                claimed=short_id(claimed_address),
                recovered=short_id(recovered),
            )
        return matched
