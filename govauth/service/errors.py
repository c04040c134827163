from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that clients can branch on:
    - bad_request, invalid_address, invalid_chain (400)
    - invalid_nonce, nonce_mismatch, verification_failed,
      invalid_token, token_expired (401)
    - session_not_found (404)
    - configuration_error (500); unhandled exceptions render as server_error
    """

    status_code: int = 400
    error_code: str = "bad_request"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is malformed or missing required fields (400)."""
    status_code = 400
    error_code = "bad_request"


class InvalidAddressError(BadRequestError):
    """Address is not a valid (checksummed when mixed-case) Ethereum address."""
    error_code = "invalid_address"


class InvalidChainError(BadRequestError):
    """Chain id is not in the supported set."""
    error_code = "invalid_chain"


class AuthenticationError(ServiceError):
    """Authentication failed (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidNonceError(AuthenticationError):
    """Nonce is unknown, expired, or already consumed."""
    error_code = "invalid_nonce"


class NonceMismatchError(AuthenticationError):
    """Submitted nonce does not appear in the signed message."""
    error_code = "nonce_mismatch"


class VerificationFailedError(AuthenticationError):
    """Signature or message fields do not match the claimed wallet."""
    error_code = "verification_failed"


class InvalidTokenError(AuthenticationError):
    """Bearer token is missing, malformed, or carries a bad signature."""
    error_code = "invalid_token"


class TokenExpiredError(AuthenticationError):
    """Bearer token signature is valid but its lifetime has passed."""
    error_code = "token_expired"


class SessionNotFoundError(ServiceError):
    """Session is missing, expired, or revoked (404)."""
    status_code = 404
    error_code = "session_not_found"


class ConfigurationError(ServiceError):
    """Server is misconfigured or a backing store is unavailable (500)."""
    status_code = 500
    error_code = "configuration_error"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "InvalidAddressError",
    "InvalidChainError",
    "AuthenticationError",
    "InvalidNonceError",
    "NonceMismatchError",
    "VerificationFailedError",
    "InvalidTokenError",
    "TokenExpiredError",
    "SessionNotFoundError",
    "ConfigurationError",
]
