"""Shared builders for the in-process claims world."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from blueprint.access import SIGNER_ROLE, RoleRegistry
from blueprint.fees import FeeConfig, FeeConfigStore
from blueprint.ledger import InMemoryLedger
from blueprint.models import (
    NATIVE_TOKEN,
    ClaimRequest,
    FeeRecipient,
    PriceSpec,
    RewardSpec,
    TokenKind,
    TransactionAttestation,
)
from blueprint.processor import ClaimProcessor
from blueprint.protocols import ClaimProtocol
from blueprint.registry import EscrowRecord, QuestEscrowRegistry
from blueprint.signers import LocalKeySigner, sign_claim
from blueprint.typed_data import EIP712Domain

CHAIN_ID = 84532

# Hardhat development accounts #1 and #2.
SIGNER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OTHER_KEY = "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a"

ADMIN = "0x000000000000000000000000000000000000ad01"
TREASURY = "0x0000000000000000000000000000000000007e57"
ESCROW_TREASURY = "0x000000000000000000000000000000000000fee0"
CLAIMANT = "0x000000000000000000000000000000000000c1a1"
FEE_A = "0x00000000000000000000000000000000000000aa"
FEE_B = "0x00000000000000000000000000000000000000bb"
TOKEN = "0x000000000000000000000000000000000000701e"

CONTRACTS = {
    "incentive": "0x0000000000000000000000000000000000001ce7",
    "cube": "0x000000000000000000000000000000000000cbe1",
    "storefront": "0x0000000000000000000000000000000000005707",
}

QUEST_ID = 1
ESCROW_FUNDS = 1_000_000


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class World:
    ledger: InMemoryLedger
    access: RoleRegistry
    registry: QuestEscrowRegistry
    fees: FeeConfigStore
    clock: FakeClock
    signer: LocalKeySigner
    escrow: EscrowRecord

    def domain(self, protocol: ClaimProtocol, *, version: Optional[str] = None) -> EIP712Domain:
        domain = protocol.domain(CHAIN_ID, CONTRACTS[protocol.name])
        if version is not None:
            domain = EIP712Domain(domain.name, version, domain.chain_id, domain.verifying_contract)
        return domain

    def processor(
        self, protocol: ClaimProtocol, *, claim_interval: int = 86_400, payment_token: Optional[str] = None
    ) -> ClaimProcessor:
        return ClaimProcessor.create(
            protocol,
            self.domain(protocol),
            access=self.access,
            registry=self.registry,
            fees=self.fees,
            ledger=self.ledger,
            clock=self.clock,
            claim_interval=claim_interval,
            payment_token=payment_token,
        )

    def sign(
        self,
        protocol: ClaimProtocol,
        claim: ClaimRequest,
        *,
        signer: Optional[LocalKeySigner] = None,
        domain: Optional[EIP712Domain] = None,
    ) -> str:
        signed = asyncio.run(
            sign_claim(signer or self.signer, protocol, domain or self.domain(protocol), claim)
        )
        return signed.signature

    def add_item(self, item_id: int = 7, *, price: int = 50, supply: int = 3, payment_token: str = NATIVE_TOKEN) -> None:
        self.registry.set_item(ADMIN, item_id, price, supply, payment_token=payment_token)


def native_reward(amount: int, *, rake_bps: int = 0) -> RewardSpec:
    return RewardSpec(
        token_address=NATIVE_TOKEN,
        chain_id=CHAIN_ID,
        amount=amount,
        token_kind=TokenKind.NATIVE,
        rake_bps=rake_bps,
    )


def cube_claim(
    *,
    nonce: int = 42,
    amount: int = 100,
    fees: Sequence[Tuple[str, int]] = ((FEE_A, 1000), (FEE_B, 500)),
    price: int = 0,
    recipient: str = CLAIMANT,
    subject_id: int = QUEST_ID,
) -> ClaimRequest:
    return ClaimRequest(
        subject_id=subject_id,
        nonce=nonce,
        recipient=recipient,
        payload={
            "wallet_provider": "metamask",
            "token_uri": "ipfs://cube",
            "embed_origin": "",
            "transactions": (TransactionAttestation("0xabc", "8453"),),
        },
        reward=native_reward(amount) if amount else None,
        price=PriceSpec(amount=price) if price else None,
        fee_recipients=tuple(FeeRecipient(address, bps) for address, bps in fees),
    )


def incentive_claim(
    *,
    nonce: int = 1,
    reward: Optional[RewardSpec] = None,
    recipient: str = CLAIMANT,
    subject_id: int = QUEST_ID,
) -> ClaimRequest:
    return ClaimRequest(
        subject_id=subject_id,
        nonce=nonce,
        recipient=recipient,
        payload={"wallet_provider": "coinbase", "embed_origin": "blueprint.xyz"},
        reward=reward or native_reward(1_000, rake_bps=250),
    )


def purchase_claim(*, item_id: int = 7, nonce: int = 9, quantity: int = 1, buyer: str = CLAIMANT) -> ClaimRequest:
    return ClaimRequest(
        subject_id=item_id,
        nonce=nonce,
        recipient=buyer,
        payload={"quantity": quantity, "payment_method": "native", "metadata": ""},
    )


def build_world(*, funds: int = ESCROW_FUNDS, whitelist: Iterable[str] = (TOKEN,)) -> World:
    ledger = InMemoryLedger()
    access = RoleRegistry([ADMIN])
    signer = LocalKeySigner(SIGNER_KEY)
    access.grant_role(ADMIN, SIGNER_ROLE, signer.address)
    registry = QuestEscrowRegistry(ledger, access)
    fees = FeeConfigStore(ledger, FeeConfig(treasury=TREASURY), access)
    escrow_id = registry.create_escrow(ADMIN, ADMIN, list(whitelist), ESCROW_TREASURY)
    registry.register_quest(ADMIN, QUEST_ID, escrow_id)
    escrow = registry.get_escrow(escrow_id)
    ledger.credit(escrow.escrow_address, NATIVE_TOKEN, funds)
    ledger.credit(escrow.escrow_address, TOKEN, funds)
    return World(
        ledger=ledger,
        access=access,
        registry=registry,
        fees=fees,
        clock=FakeClock(),
        signer=signer,
        escrow=escrow,
    )

