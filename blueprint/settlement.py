"""Settlement of verified claims: reward payout, price collection, fee fan-out.

A claim settles in up to two legs, each split by :func:`blueprint.fees.split_amount`:

* **reward**: paid from the quest escrow to the claimant; the rake goes to the
  escrow treasury and, for claims without a price, the signed fee recipients
  take their share.
* **price**: paid by the claimant (cube price or storefront item price times
  quantity); split by the signed fee recipients if any, otherwise by the
  subject's effective :class:`~blueprint.fees.FeeConfig`, with the net going
  to the treasury.

Storefront purchases additionally take item supply and deliver the item as
an ERC1155 balance whose id is the item id. Every step runs inside one ledger
transaction, so a failing transfer leaves no trace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from eth_utils import keccak, to_checksum_address

from .errors import ConfigError, FundsError
from .events import SettlementEvent
from .fees import FeeConfigStore, FeeLine, FeeRole, FeeSplit, custom_lines, split_amount
from .ledger import InMemoryLedger
from .models import NATIVE_TOKEN, ZERO_ADDRESS, ClaimRequest, PriceSpec, SubjectKind, TokenKind, Transfer
from .protocols import ClaimProtocol
from .registry import QuestEscrowRegistry

logger = logging.getLogger(__name__)

DEFAULT_ITEM_COLLECTION = to_checksum_address(keccak(text="blueprint.storefront.items")[-20:])
ITEM_ROLE = "item"


@dataclass(frozen=True)
class SettlementLeg:
    name: str
    source: str
    token: str
    kind: TokenKind
    token_id: int
    split: FeeSplit


@dataclass(frozen=True)
class SettlementPlan:
    protocol: str
    claim: ClaimRequest
    legs: Tuple[SettlementLeg, ...]
    transfers: Tuple[Transfer, ...]
    quantity: int = 0


@dataclass(frozen=True)
class SettlementResult:
    protocol: str
    claim: ClaimRequest
    legs: Tuple[SettlementLeg, ...]
    transfers: Tuple[Transfer, ...]
    events: Tuple[SettlementEvent, ...]

    @property
    def total(self) -> int:
        return sum(leg.split.total for leg in self.legs)

    @property
    def net(self) -> int:
        return sum(leg.split.net for leg in self.legs)

    @property
    def fee_total(self) -> int:
        return sum(leg.split.fee_total for leg in self.legs)

    def paid_to(self, recipient: str, token: Optional[str] = None) -> int:
        recipient = to_checksum_address(recipient)
        return sum(
            transfer.amount
            for transfer in self.transfers
            if transfer.recipient == recipient
            and transfer.role != ITEM_ROLE
            and (token is None or transfer.token == to_checksum_address(token))
        )

    def summary(self) -> dict:
        return {
            "protocol": self.protocol,
            "subject_id": self.claim.subject_id,
            "nonce": self.claim.nonce,
            "total": self.total,
            "net": self.net,
            "fees": self.fee_total,
            "transfers": len(self.transfers),
        }


def _leg_transfers(leg: SettlementLeg) -> List[Transfer]:
    return [
        Transfer(
            source=leg.source,
            recipient=share.recipient,
            token=leg.token,
            amount=share.amount,
            kind=leg.kind,
            role=f"{leg.name}.{share.role.label}",
            token_id=leg.token_id,
        )
        for share in leg.split.shares
        if share.amount > 0
    ]


class SettlementEngine:
    """Turns a verified claim into transfers against the ledger."""

    def __init__(
        self,
        registry: QuestEscrowRegistry,
        fees: FeeConfigStore,
        ledger: InMemoryLedger,
        *,
        item_collection: str = DEFAULT_ITEM_COLLECTION,
        payment_token: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._fees = fees
        self._ledger = ledger
        self.item_collection = to_checksum_address(item_collection)
        self.payment_token = to_checksum_address(payment_token) if payment_token else None

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    def _reward_leg(self, claim: ClaimRequest) -> Optional[SettlementLeg]:
        reward = claim.reward
        if reward is None or reward.amount == 0:
            return None
        escrow = self._registry.escrow_for_quest(claim.subject_id)
        if reward.token_kind is not TokenKind.NATIVE and not escrow.accepts(reward.token_address):
            raise FundsError(
                f"token {reward.token_address} is not whitelisted on escrow {escrow.escrow_id}",
                reason="token_not_whitelisted",
                context={"escrow_id": escrow.escrow_id, "token": reward.token_address},
            )

        lines: List[FeeLine] = []
        if reward.rake_bps:
            lines.append(FeeLine(FeeRole.PLATFORM, escrow.treasury, reward.rake_bps))
        if claim.price is None or claim.price.total == 0:
            lines.extend(custom_lines(claim.fee_recipients))
        if reward.token_kind is TokenKind.ERC721 and lines:
            raise ConfigError("ERC721 rewards cannot be split", reason="invalid_fee")

        return SettlementLeg(
            name="reward",
            source=escrow.escrow_address,
            token=NATIVE_TOKEN if reward.token_kind is TokenKind.NATIVE else reward.token_address,
            kind=reward.token_kind,
            token_id=reward.token_id,
            split=split_amount(reward.amount, lines, claim.recipient),
        )

    def _price_leg(
        self, claim: ClaimRequest, subject_kind: SubjectKind, total: int, token: str, kind: TokenKind
    ) -> Optional[SettlementLeg]:
        if total == 0:
            return None
        config = self._fees.effective(claim.subject_id, kind=subject_kind)
        lines = custom_lines(claim.fee_recipients) if claim.fee_recipients else config.lines()
        return SettlementLeg(
            name="price",
            source=claim.recipient,
            token=token,
            kind=kind,
            token_id=0,
            split=split_amount(total, lines, config.treasury, net_role=FeeRole.TREASURY),
        )

    def _price_token(self, price: PriceSpec) -> str:
        # Only isNative is signed; the ERC20 is fixed by the deployment.
        if price.is_native:
            return NATIVE_TOKEN
        if self.payment_token is None:
            raise ConfigError("no payment token configured for ERC20 prices", reason="invalid_token")
        if price.token_address != self.payment_token:
            raise ConfigError(
                f"price token {price.token_address} is not the payment token {self.payment_token}",
                reason="invalid_token",
                context={"token": price.token_address, "payment_token": self.payment_token},
            )
        return self.payment_token

    def plan(self, claim: ClaimRequest, protocol: ClaimProtocol) -> SettlementPlan:
        """Compute every transfer a claim would make, without touching balances."""

        legs: List[SettlementLeg] = []
        quantity = 0
        if protocol.subject_kind is SubjectKind.ITEM:
            item = self._registry.get_item(claim.subject_id)
            quantity = int(claim.payload.get("quantity", 1))
            if quantity <= 0:
                raise ConfigError("quantity must be positive", reason="invalid_amount")
            price_leg = self._price_leg(
                claim, SubjectKind.ITEM, item.price * quantity, item.payment_token, item.payment_kind
            )
        else:
            reward_leg = self._reward_leg(claim)
            if reward_leg is not None:
                legs.append(reward_leg)
            price = claim.price
            price_leg = None
            if price is not None:
                price_leg = self._price_leg(
                    claim, protocol.subject_kind, price.total, self._price_token(price), price.token_kind
                )

        # The claimant pays before being paid.
        if price_leg is not None:
            legs.insert(0, price_leg)

        transfers: List[Transfer] = []
        for leg in legs:
            transfers.extend(_leg_transfers(leg))
        if quantity:
            transfers.append(
                Transfer(
                    source=ZERO_ADDRESS,
                    recipient=claim.recipient,
                    token=self.item_collection,
                    amount=quantity,
                    kind=TokenKind.ERC1155,
                    role=ITEM_ROLE,
                    token_id=claim.subject_id,
                )
            )
        return SettlementPlan(
            protocol=protocol.name,
            claim=claim,
            legs=tuple(legs),
            transfers=tuple(transfers),
            quantity=quantity,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def settle(self, claim: ClaimRequest, protocol: ClaimProtocol) -> SettlementResult:
        """Execute the plan for ``claim``; all transfers commit or none do."""

        events: List[SettlementEvent] = []
        with self._ledger.transaction():
            if protocol.subject_kind is SubjectKind.ITEM:
                self._registry.consume_supply(claim.subject_id, int(claim.payload.get("quantity", 1)))
            plan = self.plan(claim, protocol)
            for transfer in plan.transfers:
                if transfer.role == ITEM_ROLE:
                    self._ledger.credit(
                        transfer.recipient, transfer.token, transfer.amount, token_id=transfer.token_id
                    )
                else:
                    self._ledger.transfer(
                        transfer.source,
                        transfer.recipient,
                        transfer.token,
                        transfer.amount,
                        kind=transfer.kind,
                        token_id=transfer.token_id,
                    )
                event = SettlementEvent(
                    recipient=transfer.recipient,
                    token=transfer.token,
                    amount=transfer.amount,
                    kind=transfer.kind,
                    subject_id=claim.subject_id,
                    role=transfer.role,
                    protocol=protocol.name,
                    nonce=claim.nonce,
                    token_id=transfer.token_id,
                )
                self._ledger.emit(event)
                events.append(event)

        result = SettlementResult(
            protocol=protocol.name,
            claim=claim,
            legs=plan.legs,
            transfers=plan.transfers,
            events=tuple(events),
        )
        logger.info("Claim settled", extra={"context": result.summary()})
        return result


__all__ = [
    "DEFAULT_ITEM_COLLECTION",
    "SettlementEngine",
    "SettlementLeg",
    "SettlementPlan",
    "SettlementResult",
]
