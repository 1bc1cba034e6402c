"""One entry point per protocol: verify, consume and settle in a single step."""

from __future__ import annotations

import time
from typing import Callable, Optional

from .access import AccessControl
from .events import ClaimSettled
from .fees import FeeConfigStore
from .ledger import InMemoryLedger
from .models import ClaimRequest
from .protocols import ClaimProtocol
from .registry import QuestEscrowRegistry
from .replay import CLAIM_INTERVAL
from .settlement import SettlementEngine, SettlementPlan, SettlementResult
from .typed_data import EIP712Domain
from .verifier import ClaimVerifier, SignatureLike, VerifiedClaim


class ClaimProcessor:
    def __init__(self, verifier: ClaimVerifier, engine: SettlementEngine, ledger: InMemoryLedger) -> None:
        self.verifier = verifier
        self.engine = engine
        self._ledger = ledger

    @classmethod
    def create(
        cls,
        protocol: ClaimProtocol,
        domain: EIP712Domain,
        *,
        access: AccessControl,
        registry: QuestEscrowRegistry,
        fees: FeeConfigStore,
        ledger: InMemoryLedger,
        clock: Callable[[], float] = time.time,
        claim_interval: int = CLAIM_INTERVAL,
        payment_token: Optional[str] = None,
    ) -> "ClaimProcessor":
        verifier = ClaimVerifier(
            protocol, domain, access, registry, ledger, clock=clock, claim_interval=claim_interval
        )
        engine = SettlementEngine(
            registry, fees, ledger, item_collection=domain.verifying_contract, payment_token=payment_token
        )
        return cls(verifier, engine, ledger)

    @property
    def protocol(self) -> ClaimProtocol:
        return self.verifier.protocol

    def preview(self, claim: ClaimRequest) -> SettlementPlan:
        """Transfers ``claim`` would make if it were submitted now."""

        return self.engine.plan(claim, self.protocol)

    def submit(self, claim: ClaimRequest, signature: SignatureLike) -> SettlementResult:
        """Verify and settle ``claim``; either everything commits or nothing does."""

        def settle(verified: VerifiedClaim) -> SettlementResult:
            result = self.engine.settle(verified.claim, self.protocol)
            self._ledger.emit(
                ClaimSettled(
                    protocol=self.protocol.name,
                    subject_id=claim.subject_id,
                    nonce=claim.nonce,
                    recipient=claim.recipient,
                    signer=verified.signer,
                )
            )
            return result

        return self.verifier.verify_and_consume(claim, signature, settle)


__all__ = ["ClaimProcessor"]
