from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from govauth.api.schemas import (
    AuthResponse,
    ChallengeRequest,
    ChallengeResponse,
    Envelope,
    NetworkInfo,
    NetworkListResponse,
    SessionResponse,
    VerifyRequest,
)
from govauth.config import SUPPORTED_NETWORKS
from govauth.logging import get_logger
from govauth.service.auth import extract_bearer
from govauth.service.challenge import Challenge
from govauth.service.errors import ConfigurationError
from govauth.service.runtime import Runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ConfigurationError("service not initialized")
    return runtime


def _no_store(response: Response) -> None:
    # Nonces, tokens and session state must never be cached by proxies
    response.headers["Cache-Control"] = "no-store"


def _challenge_envelope(challenge: Challenge) -> Envelope:
    return Envelope(
        status="ok",
        data=ChallengeResponse(
            nonce=challenge.nonce,
            message=challenge.message,
            address=challenge.address,
            chain_id=challenge.chain_id,
            issued_at=challenge.issued_at,
            expires_at=challenge.expires_at,
            expiration_time=challenge.expiration_time,
        ),
    )


@router.post("/auth/challenge", response_model=Envelope, tags=["auth"])
async def create_challenge(
    body: ChallengeRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Issue a single-use nonce and the canonical SIWE message to sign.

    Raises:
        400: invalid_address or invalid_chain
    """
    _no_store(response)
    challenge = await runtime.auth.create_challenge(body.address, body.chain_id)
    return _challenge_envelope(challenge)


@router.get("/auth/nonce", response_model=Envelope, tags=["auth"])
async def get_nonce(
    response: Response,
    address: str = Query(..., max_length=64),
    chain_id: int = Query(..., alias="chainId"),
    runtime: Runtime = Depends(get_runtime),
):
    """Query-string variant of the challenge endpoint for GET-only clients."""
    _no_store(response)
    challenge = await runtime.auth.create_challenge(address, chain_id)
    return _challenge_envelope(challenge)


@router.post("/auth/verify", response_model=Envelope, tags=["auth"])
async def verify(
    body: VerifyRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Verify a signed challenge and open a session.

    Raises:
        400: bad_request if a field is missing
        401: invalid_nonce, nonce_mismatch or verification_failed
        500: configuration_error if signing or storage is unavailable
    """
    _no_store(response)
    session, token = await runtime.auth.submit_signed_challenge(
        message=body.message,
        signature=body.signature,
        nonce=body.nonce,
        address=body.address,
        chain_id=body.chain_id,
    )
    return Envelope(
        status="ok",
        data=AuthResponse(
            session=SessionResponse.from_session(
                session, refresh_recommended=runtime.auth.needs_refresh(session)
            ),
            token=token,
        ),
    )


@router.get("/auth/session", response_model=Envelope, tags=["auth"])
async def get_session(
    response: Response,
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
):
    """Return the live session referenced by the bearer token.

    Raises:
        401: invalid_token or token_expired
        404: session_not_found
    """
    _no_store(response)
    session = await runtime.auth.fetch_session(extract_bearer(authorization))
    return Envelope(
        status="ok",
        data={
            "session": SessionResponse.from_session(
                session, refresh_recommended=runtime.auth.needs_refresh(session)
            )
        },
    )


@router.delete("/auth/session", response_model=Envelope, tags=["auth"])
async def delete_session(
    response: Response,
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
):
    """Revoke the session referenced by the bearer token. Safe to repeat."""
    _no_store(response)
    await runtime.auth.revoke_session(extract_bearer(authorization))
    return Envelope(status="ok", data={"message": "session revoked"})


@router.get("/networks", response_model=Envelope, tags=["meta"])
async def list_networks(runtime: Runtime = Depends(get_runtime)):
    """Chains a challenge may be requested for."""
    items = [
        NetworkInfo(chain_id=chain_id, name=SUPPORTED_NETWORKS.get(chain_id, "custom"))
        for chain_id in runtime.settings.supported_chain_ids
    ]
    return Envelope(status="ok", data=NetworkListResponse(items=items))
