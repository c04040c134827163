from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from govauth.logging import get_correlation_id
from govauth.storage.models import SiweSession

MAX_MESSAGE_LENGTH = 4096

_VALID_ERROR_CODES = frozenset({
    "bad_request",
    "invalid_address",
    "invalid_chain",
    "invalid_nonce",
    "nonce_mismatch",
    "verification_failed",
    "invalid_token",
    "token_expired",
    "unauthorized",
    "session_not_found",
    "not_found",
    "configuration_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable machine-readable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format shared by every response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    # Echo the request correlation id so responses line up with logs
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


class ChallengeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(..., max_length=64)
    # Strict so JSON booleans are not read as chain 1
    chain_id: StrictInt = Field(..., alias="chainId")


class ChallengeResponse(BaseModel):
    nonce: str
    message: str
    address: str
    chain_id: int
    issued_at: datetime
    expires_at: datetime
    expiration_time: datetime


class VerifyRequest(BaseModel):
    """Signed challenge submission.

    Fields are optional at the schema level so that a missing one is reported
    as ``bad_request`` by the service rather than a framework validation error.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_LENGTH)
    signature: Optional[str] = Field(default=None, max_length=256)
    nonce: Optional[str] = Field(default=None, max_length=128)
    address: Optional[str] = Field(default=None, max_length=64)
    chain_id: Optional[StrictInt] = Field(default=None, alias="chainId")


class SessionResponse(BaseModel):
    id: str
    address: str
    chain_id: int
    issued_at: datetime
    expires_at: datetime
    refresh_recommended: bool = False

    @classmethod
    def from_session(cls, session: SiweSession, *, refresh_recommended: bool = False) -> "SessionResponse":
        return cls(
            id=session.id,
            address=session.address,
            chain_id=session.chain_id,
            issued_at=session.issued_at,
            expires_at=session.expires_at,
            refresh_recommended=refresh_recommended,
        )


class AuthResponse(BaseModel):
    session: SessionResponse
    token: str
    token_type: str = "bearer"


class NetworkInfo(BaseModel):
    chain_id: int
    name: str


class NetworkListResponse(BaseModel):
    items: List[NetworkInfo]
