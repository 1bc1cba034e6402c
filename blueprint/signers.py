"""Off-chain claim signers.

A signer is a pure function of its key and a 32-byte digest; it keeps no
state and may be shared across concurrent requests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Protocol, Tuple

from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from eth_account import Account
from eth_keys import keys
from eth_utils import to_checksum_address

from .models import ClaimRequest
from .protocols import ClaimProtocol
from .typed_data import EIP712Domain, digest, typed_data_payload
from .verifier import SECP256K1_HALF_N, SECP256K1_N


class Signer(Protocol):
    """Protocol for objects capable of signing claim digests."""

    @property
    def address(self) -> str:  # pragma: no cover - protocol
        ...

    async def sign_digest(self, digest: bytes) -> bytes:  # pragma: no cover - protocol
        """Return a 65-byte ``r || s || v`` signature over ``digest``."""


class KmsClient(Protocol):  # pragma: no cover - protocol
    """Subset of methods required from an external KMS/HSM client."""

    async def sign_digest(self, *, key_id: str, digest: bytes) -> bytes:
        """Sign ``digest`` with ``key_id`` and return the DER signature."""


class LocalKeySigner:
    """Signer holding a raw private key in process (development, tests, CLI)."""

    def __init__(self, private_key: str | bytes) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_digest(self, digest: bytes) -> bytes:
        signed = self._account.unsafe_sign_hash(digest)
        # mimic async interface
        await asyncio.sleep(0)
        return bytes(signed.signature)


def decode_der_signature(der: bytes) -> Tuple[int, int]:
    """Return ``(r, s)`` from a DER ``SEQUENCE { INTEGER r, INTEGER s }``.

    Raises :class:`ValueError` on anything that is not strict DER.
    """

    return decode_dss_signature(bytes(der))


class KMSSigner:
    """KMS-backed signer for a secp256k1 key whose address is known up front."""

    def __init__(self, client: KmsClient, *, key_id: str, address: str) -> None:
        self._client = client
        self._key_id = key_id
        self._address = to_checksum_address(address)

    @property
    def address(self) -> str:
        return self._address

    async def sign_digest(self, digest: bytes) -> bytes:
        """Request the remote HSM signature and turn it into an Ethereum one."""

        der = await self._client.sign_digest(key_id=self._key_id, digest=digest)
        r, s = decode_der_signature(der)
        if s > SECP256K1_HALF_N:
            s = SECP256K1_N - s
        for recovery_id in (0, 1):
            candidate = keys.Signature(vrs=(recovery_id, r, s))
            public_key = candidate.recover_public_key_from_msg_hash(digest)
            if public_key.to_checksum_address() == self._address:
                return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([27 + recovery_id])
        raise ValueError(f"KMS key {self._key_id} does not belong to {self._address}")


@dataclass(frozen=True)
class SignedClaim:
    protocol: str
    claim: ClaimRequest
    signer: str
    digest: str
    signature: str
    typed_data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol,
            "signer": self.signer,
            "digest": self.digest,
            "signature": self.signature,
            "typedData": self.typed_data,
        }


async def sign_claim(signer: Signer, protocol: ClaimProtocol, domain: EIP712Domain, claim: ClaimRequest) -> SignedClaim:
    """Sign ``claim`` under ``domain``; the verifier must use the same domain."""

    message = protocol.to_message(claim)
    claim_digest = digest(domain, protocol.schema, message)
    signature = await signer.sign_digest(claim_digest)
    return SignedClaim(
        protocol=protocol.name,
        claim=claim,
        signer=signer.address,
        digest="0x" + claim_digest.hex(),
        signature="0x" + signature.hex(),
        typed_data=typed_data_payload(domain, protocol.schema, message),
    )


__all__ = [
    "KMSSigner",
    "KmsClient",
    "LocalKeySigner",
    "SignedClaim",
    "Signer",
    "decode_der_signature",
    "sign_claim",
]
