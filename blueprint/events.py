"""Audit-trail events recorded by the ledger."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Tuple, Type, TypeVar

from .models import TokenKind


@dataclass(frozen=True)
class LedgerEvent:
    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["event"] = type(self).__name__
        return payload


@dataclass(frozen=True)
class SettlementEvent(LedgerEvent):
    """One transfer executed by a settlement."""

    recipient: str
    token: str
    amount: int
    kind: TokenKind
    subject_id: int
    role: str = "net"
    protocol: str = ""
    nonce: int = 0
    token_id: int = 0


@dataclass(frozen=True)
class ClaimSettled(LedgerEvent):
    protocol: str
    subject_id: int
    nonce: int
    recipient: str
    signer: str


@dataclass(frozen=True)
class EscrowRegistered(LedgerEvent):
    registrar: str
    escrow_id: int
    escrow: str
    creator: str


@dataclass(frozen=True)
class QuestRegistered(LedgerEvent):
    quest_id: int
    escrow_id: int


@dataclass(frozen=True)
class EscrowToggled(LedgerEvent):
    escrow_id: int
    active: bool


@dataclass(frozen=True)
class EscrowWithdrawal(LedgerEvent):
    caller: str
    receiver: str
    token: str
    token_id: int
    amount: int
    kind: TokenKind
    quest_id: int


@dataclass(frozen=True)
class QuestMetadata(LedgerEvent):
    quest_id: int
    quest_type: int
    difficulty: int
    title: str
    tags: Tuple[str, ...] = ()
    communities: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QuestDisabled(LedgerEvent):
    quest_id: int


@dataclass(frozen=True)
class ClaimingSwitched(LedgerEvent):
    protocol: str
    active: bool


@dataclass(frozen=True)
class ItemUpdated(LedgerEvent):
    item_id: int
    price: int
    total_supply: int
    active: bool


@dataclass(frozen=True)
class FeeConfigUpdated(LedgerEvent):
    subject_id: int | None
    subject_kind: str | None = None
    removed: bool = False
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TreasuryMovement(LedgerEvent):
    direction: str
    account: str
    token: str
    amount: int


E = TypeVar("E", bound=LedgerEvent)


def events_of(events: Iterable[LedgerEvent], event_type: Type[E]) -> List[E]:
    return [event for event in events if isinstance(event, event_type)]


__all__ = [
    "ClaimSettled",
    "ClaimingSwitched",
    "EscrowRegistered",
    "EscrowToggled",
    "EscrowWithdrawal",
    "FeeConfigUpdated",
    "ItemUpdated",
    "LedgerEvent",
    "QuestDisabled",
    "QuestMetadata",
    "QuestRegistered",
    "SettlementEvent",
    "TreasuryMovement",
    "events_of",
]
