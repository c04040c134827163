from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from eth_utils import is_address, is_checksum_address, to_checksum_address

from govauth.logging import get_logger, short_id
from govauth.service.errors import InvalidAddressError, InvalidChainError
from govauth.service.nonces import NonceStore
from govauth.storage.models import isoformat_z, parse_timestamp, truncate_ms

logger = get_logger(__name__)

SIWE_VERSION = "1"
_HEADER_SUFFIX = " wants you to sign in with your Ethereum account:"
_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: object) -> str:
    """Return the EIP-55 form of ``address`` or raise ``InvalidAddressError``.

    All-lowercase and all-uppercase hex are accepted; mixed case must carry a
    valid checksum.
    """
    if not isinstance(address, str) or not _ADDRESS_PATTERN.match(address.strip()):
        raise InvalidAddressError("invalid Ethereum address")
    candidate = address.strip()
    hex_part = candidate[2:]
    mixed_case = hex_part != hex_part.lower() and hex_part != hex_part.upper()
    if not is_address(candidate) or (mixed_case and not is_checksum_address(candidate)):
        raise InvalidAddressError("address checksum mismatch")
    return to_checksum_address(candidate)


def addresses_match(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.lower() == right.lower()


@dataclass
class SiweMessage:
    """EIP-4361 message fields with a fixed canonical text form."""

    domain: str
    address: str
    uri: str
    chain_id: int
    nonce: str
    issued_at: datetime
    statement: Optional[str] = None
    version: str = SIWE_VERSION
    expiration_time: Optional[datetime] = None
    resources: List[str] = field(default_factory=list)

    def prepare_message(self) -> str:
        lines = [f"{self.domain}{_HEADER_SUFFIX}", self.address, ""]
        if self.statement:
            lines.extend([self.statement, ""])
        lines.extend(
            [
                f"URI: {self.uri}",
                f"Version: {self.version}",
                f"Chain ID: {self.chain_id}",
                f"Nonce: {self.nonce}",
                f"Issued At: {isoformat_z(self.issued_at)}",
            ]
        )
        if self.expiration_time is not None:
            lines.append(f"Expiration Time: {isoformat_z(self.expiration_time)}")
        if self.resources:
            lines.append("Resources:")
            lines.extend(f"- {resource}" for resource in self.resources)
        return "\n".join(lines)


def _expect_field(lines: List[str], index: int, label: str) -> str:
    if index >= len(lines):
        raise ValueError(f"missing '{label}' line")
    prefix = f"{label}: "
    line = lines[index]
    if not line.startswith(prefix):
        raise ValueError(f"expected '{label}' at line {index + 1}")
    value = line[len(prefix):]
    if not value:
        raise ValueError(f"empty '{label}' value")
    return value


def parse_message(text: str) -> SiweMessage:
    """Parse canonical SIWE text back into fields.

    Strict inverse of ``SiweMessage.prepare_message``; any deviation raises
    ``ValueError``. The result is only used to cross-check claims, never to
    rebuild the bytes that were signed.
    """
    if not isinstance(text, str) or not text:
        raise ValueError("message must be a non-empty string")
    lines = text.split("\n")
    if len(lines) < 8:
        raise ValueError("message too short")

    header = lines[0]
    if not header.endswith(_HEADER_SUFFIX):
        raise ValueError("missing SIWE header")
    domain = header[: -len(_HEADER_SUFFIX)]
    if not domain or " " in domain:
        raise ValueError("invalid domain")

    address = lines[1]
    if not _ADDRESS_PATTERN.match(address):
        raise ValueError("invalid address line")
    if lines[2] != "":
        raise ValueError("expected blank line after address")

    index = 3
    statement: Optional[str] = None
    if not lines[index].startswith("URI: "):
        statement = lines[index]
        if index + 1 >= len(lines) or lines[index + 1] != "":
            raise ValueError("expected blank line after statement")
        index += 2

    uri = _expect_field(lines, index, "URI")
    version = _expect_field(lines, index + 1, "Version")
    if version != SIWE_VERSION:
        raise ValueError(f"unsupported version {version!r}")
    chain_raw = _expect_field(lines, index + 2, "Chain ID")
    if not chain_raw.isdigit():
        raise ValueError("chain id must be numeric")
    nonce = _expect_field(lines, index + 3, "Nonce")
    issued_at = parse_timestamp(_expect_field(lines, index + 4, "Issued At"))
    index += 5

    expiration_time: Optional[datetime] = None
    if index < len(lines) and lines[index].startswith("Expiration Time: "):
        expiration_time = parse_timestamp(_expect_field(lines, index, "Expiration Time"))
        index += 1

    resources: List[str] = []
    if index < len(lines):
        if lines[index] != "Resources:":
            raise ValueError(f"unexpected line {index + 1}")
        for line in lines[index + 1:]:
            if not line.startswith("- ") or len(line) < 3:
                raise ValueError("malformed resource entry")
            resources.append(line[2:])

    return SiweMessage(
        domain=domain,
        address=address,
        statement=statement,
        uri=uri,
        version=version,
        chain_id=int(chain_raw),
        nonce=nonce,
        issued_at=issued_at,
        expiration_time=expiration_time,
        resources=resources,
    )


@dataclass
class Challenge:
    nonce: str
    message: str
    address: str
    chain_id: int
    issued_at: datetime
    # Submit deadline: the nonce record's expiry
    expires_at: datetime
    # Session window written into the message
    expiration_time: datetime


class ChallengeService:
    """Issues canonical SIWE challenges bound to freshly allocated nonces."""

    def __init__(
        self,
        nonces: NonceStore,
        *,
        domain: str,
        uri: str,
        statement: Optional[str],
        resources: Iterable[str] = (),
        supported_chain_ids: Iterable[int] = (1,),
        window_minutes: int = 24 * 60,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.nonces = nonces
        self.domain = domain
        self.uri = uri
        self.statement = statement
        self.resources = list(resources)
        self.supported_chain_ids = frozenset(supported_chain_ids)
        self.window = timedelta(minutes=window_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate_chain(self, chain_id: object) -> int:
        if isinstance(chain_id, bool) or not isinstance(chain_id, int):
            raise InvalidChainError("chain id must be an integer")
        if chain_id not in self.supported_chain_ids:
            raise InvalidChainError(
                "unsupported chain",
                detail={"supported": sorted(self.supported_chain_ids)},
            )
        return chain_id

    async def create_challenge(self, address: str, chain_id: int) -> Challenge:
        checksummed = normalize_address(address)
        chain = self.validate_chain(chain_id)
        record = await self.nonces.allocate()
        issued_at = truncate_ms(self._clock())
        message = SiweMessage(
            domain=self.domain,
            address=checksummed,
            statement=self.statement,
            uri=self.uri,
            chain_id=chain,
            nonce=record.value,
            issued_at=issued_at,
            expiration_time=issued_at + self.window,
            resources=self.resources,
        )
        logger.info(
            "challenge_issued",
            address=short_id(checksummed),
            chain_id=chain,
            nonce=short_id(record.value),
        )
        return Challenge(
            nonce=record.value,
            message=message.prepare_message(),
            address=checksummed,
            chain_id=chain,
            issued_at=issued_at,
            expires_at=record.expires_at,
            expiration_time=message.expiration_time,
        )
