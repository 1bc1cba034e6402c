"""Signature verification and replay guarding for signed claims.

Gates run in a fixed order and each one is terminal:

1. recompute the digest from the claim with the verifier's own domain;
2. recover the signer and require the signer capability;
3. require the subject (quest or item) to be registered and active;
4. check the replay guard (one-shot nonce or per-claimant cooldown);
5. consume the guard in the same ledger transaction as the settlement.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar, Union

from eth_account import Account
from eth_keys.exceptions import BadSignature
from eth_utils import keccak, to_bytes

from .access import AccessControl, Action, has_capability
from .errors import AuthorizationError, ClaimError
from .ledger import InMemoryLedger
from .models import ClaimRequest
from .protocols import ClaimProtocol
from .registry import QuestEscrowRegistry
from .replay import CLAIM_INTERVAL, ReplayGuard
from .typed_data import EIP712Domain, digest, signable_message

logger = logging.getLogger(__name__)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

SignatureLike = Union[bytes, bytearray, str]
T = TypeVar("T")


@dataclass(frozen=True)
class VerifiedClaim:
    protocol: str
    claim: ClaimRequest
    signer: str
    digest: bytes
    struct_hash: bytes
    verified_at: float


def normalize_signature(signature: SignatureLike) -> bytes:
    """Return a canonical 65-byte ``r || s || v`` signature with ``v`` in {27, 28}.

    Rejects wrong lengths and high-``s`` values the same way OpenZeppelin's
    ``ECDSA.recover`` does, so a signature cannot be malleated into a second
    valid one.
    """

    try:
        raw = to_bytes(hexstr=signature) if isinstance(signature, str) else bytes(signature)
    except (TypeError, ValueError) as exc:
        raise AuthorizationError("signature is not valid hex", reason="invalid_signature") from exc
    if len(raw) != 65:
        raise AuthorizationError(
            f"signature must be 65 bytes, got {len(raw)}", reason="invalid_signature_length"
        )
    s = int.from_bytes(raw[32:64], "big")
    if s > SECP256K1_HALF_N:
        raise AuthorizationError("signature s value is in the upper half order", reason="invalid_signature_s")
    v = raw[64]
    if v in (0, 1):
        v += 27
    if v not in (27, 28):
        raise AuthorizationError(f"signature recovery id {v} is invalid", reason="invalid_signature")
    return raw[:64] + bytes([v])


def recover_signer(
    protocol: ClaimProtocol, domain: EIP712Domain, claim: ClaimRequest, signature: SignatureLike
) -> str:
    """Recover the address that signed ``claim`` under ``domain``."""

    canonical = normalize_signature(signature)
    signable = signable_message(domain, protocol.schema, protocol.to_message(claim))
    try:
        return Account.recover_message(signable, signature=canonical)
    except (BadSignature, ValueError) as exc:
        raise AuthorizationError("signature could not be recovered", reason="invalid_signature") from exc


class ClaimVerifier:
    """Verifies signed claims of one protocol against one fixed domain."""

    def __init__(
        self,
        protocol: ClaimProtocol,
        domain: EIP712Domain,
        access: AccessControl,
        registry: QuestEscrowRegistry,
        ledger: InMemoryLedger,
        *,
        clock: Callable[[], float] = time.time,
        claim_interval: int = CLAIM_INTERVAL,
    ) -> None:
        self.protocol = protocol
        self.domain = domain
        self._access = access
        self._registry = registry
        self._ledger = ledger
        self._clock = clock
        self.guard: ReplayGuard = protocol.replay_guard(claim_interval=claim_interval)

    def message(self, claim: ClaimRequest) -> Dict[str, Any]:
        return self.protocol.to_message(claim)

    def digest(self, claim: ClaimRequest) -> bytes:
        return digest(self.domain, self.protocol.schema, self.message(claim))

    def recover_signer(self, claim: ClaimRequest, signature: SignatureLike) -> str:
        return recover_signer(self.protocol, self.domain, claim, signature)

    def verify(self, claim: ClaimRequest, signature: SignatureLike) -> VerifiedClaim:
        """Run the read-only gates (digest, signer, activity, replay)."""

        now = self._clock()
        signer = self.recover_signer(claim, signature)
        if not has_capability(self._access, signer, Action.SIGN_CLAIMS):
            raise AuthorizationError(
                f"{signer} does not hold the signer role",
                reason="not_signer",
                context={"signer": signer, "protocol": self.protocol.name},
            )
        self._registry.require_active(
            self.protocol.subject_kind, claim.subject_id, now, protocol=self.protocol.name
        )
        self.guard.check(self._ledger, claim, now)
        signable = signable_message(self.domain, self.protocol.schema, self.message(claim))
        return VerifiedClaim(
            protocol=self.protocol.name,
            claim=claim,
            signer=signer,
            digest=keccak(b"\x19" + signable.version + signable.header + signable.body),
            struct_hash=signable.body,
            verified_at=now,
        )

    def verify_and_consume(
        self,
        claim: ClaimRequest,
        signature: SignatureLike,
        settle: Optional[Callable[[VerifiedClaim], T]] = None,
    ) -> Union[VerifiedClaim, T]:
        """Verify, consume the replay guard and run ``settle`` atomically.

        Everything happens inside one ledger transaction: if settlement raises,
        the nonce or cooldown record is rolled back with the transfers.
        """

        try:
            with self._ledger.transaction():
                verified = self.verify(claim, signature)
                self.guard.consume(self._ledger, claim, verified.verified_at)
                result = settle(verified) if settle is not None else verified
        except ClaimError as exc:
            logger.warning(
                "Claim rejected",
                extra={
                    "context": {
                        "protocol": self.protocol.name,
                        "reason": exc.reason,
                        "subject_id": claim.subject_id,
                        "nonce": claim.nonce,
                    }
                },
            )
            raise
        logger.info(
            "Claim consumed",
            extra={
                "context": {
                    "protocol": self.protocol.name,
                    "subject_id": claim.subject_id,
                    "nonce": claim.nonce,
                    "signer": verified.signer,
                }
            },
        )
        return result


__all__ = [
    "ClaimVerifier",
    "SECP256K1_HALF_N",
    "SECP256K1_N",
    "VerifiedClaim",
    "normalize_signature",
    "recover_signer",
]
