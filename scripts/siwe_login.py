#!/usr/bin/env python3
"""Sign in with a local private key, for smoke testing and initial setup.

Usage:
    # In-process against a memory store:
    SIWE_PRIVATE_KEY=0x... python scripts/siwe_login.py --chain-id 11155111

    # Against a running server:
    python scripts/siwe_login.py --private-key 0x... --base-url http://localhost:8000

    # Reuse a stored login until it nears expiry:
    python scripts/siwe_login.py --base-url http://localhost:8000 --cache-file ~/.govauth-session.json

    # Throwaway key:
    python scripts/siwe_login.py --generate

Environment Variables:
    SIWE_PRIVATE_KEY: Hex private key of the signing wallet
    REDIS_URL: Redis connection string (in-process mode falls back to memory)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional, Tuple

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def sign_text(private_key: str, text: str) -> str:
    signed = Account.sign_message(encode_defunct(text=text), private_key=private_key)
    return "0x" + signed.signature.hex().removeprefix("0x")


async def sign_in_local(private_key: str, chain_id: int, runtime=None) -> dict:
    """Run challenge, sign and verify against an in-process runtime."""
    # Import here to avoid loading config before env vars are set
    from govauth.service.runtime import Runtime

    runtime = runtime or Runtime()
    address = Account.from_key(private_key).address
    challenge = await runtime.auth.create_challenge(address, chain_id)
    session, token = await runtime.auth.submit_signed_challenge(
        message=challenge.message,
        signature=sign_text(private_key, challenge.message),
        nonce=challenge.nonce,
        address=address,
        chain_id=chain_id,
    )
    return {"session": session.to_dict(), "token": token}


async def _sign_in_over_http(
    client: httpx.AsyncClient, private_key: str, chain_id: int
) -> Tuple[dict, str, str]:
    address = Account.from_key(private_key).address
    resp = await client.post(
        "/v1/auth/challenge", json={"address": address, "chain_id": chain_id}
    )
    resp.raise_for_status()
    challenge = resp.json()["data"]
    message = challenge["message"]
    signature = sign_text(private_key, message)
    resp = await client.post(
        "/v1/auth/verify",
        json={
            "message": message,
            "signature": signature,
            "nonce": challenge["nonce"],
            "address": address,
            "chain_id": chain_id,
        },
    )
    resp.raise_for_status()
    return resp.json()["data"], message, signature


async def sign_in_remote(
    private_key: str,
    chain_id: int,
    base_url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    cache_file: Optional[Path] = None,
) -> dict:
    """Run challenge, sign and verify against a running server.

    With ``cache_file``, a stored login for the same wallet and chain is
    reused while the server still holds it and it is outside the refresh
    window; otherwise the wallet signs a fresh challenge and the cache is
    rewritten.
    """
    from govauth.service.client_cache import CachedSession
    from govauth.storage.models import SiweSession

    address = Account.from_key(private_key).address
    owns_client = client is None
    client = client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
    try:
        cached = None
        if cache_file is not None and cache_file.exists():
            cached = CachedSession.from_json(cache_file.read_text())
        if cached is not None and cached.matches_wallet(address, chain_id) and not cached.needs_refresh():
            resp = await client.get(
                "/v1/auth/session", headers={"Authorization": f"Bearer {cached.token}"}
            )
            if resp.status_code == 200:
                server_session = SiweSession.from_dict(resp.json()["data"]["session"])
                kept = cached.reconcile(server_session)
                if kept is not None:
                    return {
                        "session": kept.session.to_dict(),
                        "token": kept.token,
                        "cached": True,
                    }

        data, message, signature = await _sign_in_over_http(client, private_key, chain_id)
        if cache_file is not None:
            fresh = CachedSession(
                session=SiweSession.from_dict(data["session"]),
                message=message,
                signature=signature,
                token=data["token"],
            )
            cache_file.write_text(fresh.to_json())
        return {**data, "cached": False}
    finally:
        if owns_client:
            await client.aclose()


def main():
    parser = argparse.ArgumentParser(
        description="Sign in to the governance auth service with a local key",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--private-key",
        default=os.environ.get("SIWE_PRIVATE_KEY"),
        help="Wallet private key (or set SIWE_PRIVATE_KEY env var)",
    )
    parser.add_argument(
        "--generate",
        action="store_true",
        help="Use a freshly generated throwaway key",
    )
    parser.add_argument("--chain-id", type=int, default=1, help="Chain id to sign for")
    parser.add_argument(
        "--base-url",
        default=None,
        help="Server base URL; omit to run in-process",
    )
    parser.add_argument(
        "--cache-file",
        type=Path,
        default=None,
        help="Reuse and store the login here (remote mode only)",
    )

    args = parser.parse_args()

    private_key = args.private_key
    if args.generate:
        private_key = Account.create().key.hex()
    if not private_key:
        print("Error: --private-key, SIWE_PRIVATE_KEY or --generate required")
        sys.exit(1)

    if not args.base_url:
        if not os.environ.get("JWT_SECRET"):
            import secrets
            os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)
        os.environ.setdefault("TEST_MODE", "true")
        os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        if args.base_url:
            result = asyncio.run(
                sign_in_remote(
                    private_key,
                    args.chain_id,
                    args.base_url,
                    cache_file=args.cache_file.expanduser() if args.cache_file else None,
                )
            )
        else:
            result = asyncio.run(sign_in_local(private_key, args.chain_id))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    session = result["session"]
    if result.get("cached"):
        print("\nReusing cached session")
    else:
        print("\nSigned in successfully!")
    print(f"  Address: {session['address']}")
    print(f"  Chain ID: {session['chain_id']}")
    print(f"  Session ID: {session['id']}")
    print(f"  Expires At: {session['expires_at']}")
    print(f"  Token: {result['token'][:50]}...")


if __name__ == "__main__":
    main()
