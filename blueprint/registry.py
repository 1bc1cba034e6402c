"""Quest/escrow registry, quest activation and storefront items.

State machine per quest: ``Unregistered -> Active <-> Disabled``. A quest id
is bound to an escrow exactly once; disabling an escrow or unpublishing a
quest blocks new claims but never the authorized withdrawal of funds.

All state lives in ledger tables so it is journaled together with balances
and consumption records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from eth_utils import keccak, to_checksum_address

from .access import AccessControl, Action, require_capability
from .errors import ConfigError, InsufficientSupplyError, StateError
from .events import (
    ClaimingSwitched,
    EscrowRegistered,
    EscrowToggled,
    EscrowWithdrawal,
    ItemUpdated,
    QuestDisabled,
    QuestMetadata,
    QuestRegistered,
)
from .ledger import InMemoryLedger
from .models import NATIVE_TOKEN, Difficulty, QuestType, SubjectKind, TokenKind, normalize_address

logger = logging.getLogger(__name__)

_ESCROWS = "escrows"
_QUESTS = "quests"
_ITEMS = "items"
_CLAIMING = "claiming"
_META = "registry"


@dataclass(frozen=True)
class EscrowRecord:
    escrow_id: int
    escrow_address: str
    creator: str
    treasury: str
    whitelisted_tokens: FrozenSet[str] = frozenset()
    active: bool = True

    def accepts(self, token: str) -> bool:
        token = normalize_address(token, field_name="token")
        return token == NATIVE_TOKEN or token in self.whitelisted_tokens


@dataclass(frozen=True)
class QuestRecord:
    quest_id: int
    escrow_id: Optional[int] = None
    active: bool = True
    title: str = ""
    difficulty: Difficulty = Difficulty.BEGINNER
    quest_type: QuestType = QuestType.QUEST
    communities: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StoreItem:
    """A storefront listing; ``start_time``/``end_time`` bound a timed drop."""

    item_id: int
    price: int
    total_supply: int
    product_type: int = 0
    active: bool = True
    payment_token: str = NATIVE_TOKEN
    sold: int = 0
    start_time: Optional[int] = None
    end_time: Optional[int] = None

    @property
    def remaining(self) -> int:
        return self.total_supply - self.sold

    @property
    def payment_kind(self) -> TokenKind:
        return TokenKind.NATIVE if self.payment_token == NATIVE_TOKEN else TokenKind.ERC20


def escrow_address_for(escrow_id: int) -> str:
    """Deterministic stand-in address for an escrow created in process."""

    return to_checksum_address(keccak(text=f"blueprint.escrow:{escrow_id}")[-20:])


def _check_window(start_time: Optional[int], end_time: Optional[int]) -> None:
    if start_time is not None and end_time is not None and start_time > end_time:
        raise ConfigError("start time is after end time", reason="start_after_end")


class QuestEscrowRegistry:
    """Owns the quest → escrow mapping and every activation flag."""

    def __init__(self, ledger: InMemoryLedger, access: AccessControl) -> None:
        self._ledger = ledger
        self._access = access

    # ------------------------------------------------------------------
    # Escrows
    # ------------------------------------------------------------------
    def create_escrow(self, caller: str, creator: str, whitelisted_tokens: Iterable[str], treasury: str) -> int:
        require_capability(self._access, caller, Action.CREATE_ESCROW)
        creator = normalize_address(creator, field_name="creator", allow_zero=False)
        treasury = normalize_address(treasury, field_name="treasury", allow_zero=False)
        tokens = frozenset(normalize_address(token, field_name="whitelisted token") for token in whitelisted_tokens)
        with self._ledger.transaction():
            escrow_id = self._ledger.get(_META, "next_escrow_id", 0)
            record = EscrowRecord(
                escrow_id=escrow_id,
                escrow_address=escrow_address_for(escrow_id),
                creator=creator,
                treasury=treasury,
                whitelisted_tokens=tokens,
            )
            self._ledger.put(_ESCROWS, escrow_id, record)
            self._ledger.put(_META, "next_escrow_id", escrow_id + 1)
            self._ledger.emit(
                EscrowRegistered(registrar=caller, escrow_id=escrow_id, escrow=record.escrow_address, creator=creator)
            )
        logger.info(
            "Escrow created",
            extra={"context": {"escrow_id": escrow_id, "escrow": record.escrow_address, "creator": creator}},
        )
        return escrow_id

    def get_escrow(self, escrow_id: int) -> EscrowRecord:
        record = self._ledger.get(_ESCROWS, escrow_id)
        if record is None:
            raise StateError(f"escrow {escrow_id} does not exist", reason="no_escrow")
        return record

    def _set_escrow_active(self, caller: str, escrow_id: int, active: bool) -> None:
        require_capability(self._access, caller, Action.TOGGLE_ESCROW)
        with self._ledger.transaction():
            record = self.get_escrow(escrow_id)
            self._ledger.put(_ESCROWS, escrow_id, replace(record, active=active))
            self._ledger.emit(EscrowToggled(escrow_id=escrow_id, active=active))
        logger.info("Escrow toggled", extra={"context": {"escrow_id": escrow_id, "active": active}})

    def enable_escrow(self, caller: str, escrow_id: int) -> None:
        self._set_escrow_active(caller, escrow_id, True)

    def disable_escrow(self, caller: str, escrow_id: int) -> None:
        self._set_escrow_active(caller, escrow_id, False)

    def add_token_to_whitelist(self, caller: str, escrow_id: int, token: str) -> None:
        require_capability(self._access, caller, Action.MANAGE_WHITELIST)
        token = normalize_address(token, field_name="token", allow_zero=False)
        with self._ledger.transaction():
            record = self.get_escrow(escrow_id)
            self._ledger.put(_ESCROWS, escrow_id, replace(record, whitelisted_tokens=record.whitelisted_tokens | {token}))

    def remove_token_from_whitelist(self, caller: str, escrow_id: int, token: str) -> None:
        require_capability(self._access, caller, Action.MANAGE_WHITELIST)
        token = normalize_address(token, field_name="token")
        with self._ledger.transaction():
            record = self.get_escrow(escrow_id)
            self._ledger.put(_ESCROWS, escrow_id, replace(record, whitelisted_tokens=record.whitelisted_tokens - {token}))

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------
    def register_quest(self, caller: str, quest_id: int, escrow_id: int) -> None:
        require_capability(self._access, caller, Action.REGISTER_QUEST)
        with self._ledger.transaction():
            self.get_escrow(escrow_id)
            existing: Optional[QuestRecord] = self._ledger.get(_QUESTS, quest_id)
            if existing is not None and existing.escrow_id is not None:
                raise StateError(
                    f"quest {quest_id} is already registered to escrow {existing.escrow_id}",
                    reason="quest_already_registered",
                    context={"quest_id": quest_id, "escrow_id": existing.escrow_id},
                )
            record = replace(existing, escrow_id=escrow_id) if existing else QuestRecord(quest_id, escrow_id=escrow_id)
            self._ledger.put(_QUESTS, quest_id, record)
            self._ledger.emit(QuestRegistered(quest_id=quest_id, escrow_id=escrow_id))
        logger.info("Quest registered", extra={"context": {"quest_id": quest_id, "escrow_id": escrow_id}})

    def escrow_for_quest(self, quest_id: int) -> EscrowRecord:
        quest = self.get_quest(quest_id)
        if quest.escrow_id is None:
            raise StateError(f"quest {quest_id} has no escrow", reason="no_escrow")
        return self.get_escrow(quest.escrow_id)

    def get_quest(self, quest_id: int) -> QuestRecord:
        record = self._ledger.get(_QUESTS, quest_id)
        if record is None:
            raise StateError(f"quest {quest_id} is not registered", reason="quest_not_registered")
        return record

    def initialize_quest(
        self,
        caller: str,
        quest_id: int,
        communities: Sequence[str],
        title: str,
        difficulty: Difficulty,
        quest_type: QuestType,
        tags: Sequence[str] = (),
    ) -> QuestRecord:
        """Publish quest metadata and (re)activate the quest."""

        require_capability(self._access, caller, Action.MANAGE_QUESTS)
        with self._ledger.transaction():
            existing = self._ledger.get(_QUESTS, quest_id) or QuestRecord(quest_id)
            record = replace(
                existing,
                active=True,
                title=title,
                difficulty=Difficulty(difficulty),
                quest_type=QuestType(quest_type),
                communities=tuple(communities),
                tags=tuple(tags),
            )
            self._ledger.put(_QUESTS, quest_id, record)
            self._ledger.emit(
                QuestMetadata(
                    quest_id=quest_id,
                    quest_type=int(record.quest_type),
                    difficulty=int(record.difficulty),
                    title=title,
                    tags=record.tags,
                    communities=record.communities,
                )
            )
        return record

    def unpublish_quest(self, caller: str, quest_id: int) -> None:
        require_capability(self._access, caller, Action.MANAGE_QUESTS)
        with self._ledger.transaction():
            record = self.get_quest(quest_id)
            self._ledger.put(_QUESTS, quest_id, replace(record, active=False))
            self._ledger.emit(QuestDisabled(quest_id=quest_id))
        logger.info("Quest unpublished", extra={"context": {"quest_id": quest_id}})

    def is_quest_active(self, quest_id: int) -> bool:
        record: Optional[QuestRecord] = self._ledger.get(_QUESTS, quest_id)
        if record is None or not record.active:
            return False
        if record.escrow_id is None:
            return True
        escrow = self._ledger.get(_ESCROWS, record.escrow_id)
        return escrow is not None and escrow.active

    # ------------------------------------------------------------------
    # Claiming switch
    # ------------------------------------------------------------------
    def set_claiming_active(self, caller: str, protocol: str, active: bool) -> None:
        require_capability(self._access, caller, Action.TOGGLE_CLAIMING)
        with self._ledger.transaction():
            self._ledger.put(_CLAIMING, protocol, bool(active))
            self._ledger.emit(ClaimingSwitched(protocol=protocol, active=bool(active)))

    def is_claiming_active(self, protocol: str) -> bool:
        return self._ledger.get(_CLAIMING, protocol, True)

    # ------------------------------------------------------------------
    # Storefront items
    # ------------------------------------------------------------------
    def set_item(
        self,
        caller: str,
        item_id: int,
        price: int,
        total_supply: int,
        product_type: int = 0,
        active: bool = True,
        *,
        payment_token: str = NATIVE_TOKEN,
    ) -> StoreItem:
        require_capability(self._access, caller, Action.MANAGE_ITEMS)
        if price < 0 or total_supply < 0:
            raise ConfigError("price and supply must be non-negative", reason="invalid_amount")
        payment_token = normalize_address(payment_token, field_name="payment token")
        with self._ledger.transaction():
            existing: Optional[StoreItem] = self._ledger.get(_ITEMS, item_id)
            if existing is not None and total_supply < existing.sold:
                raise ConfigError("total supply is below the amount already sold", reason="invalid_amount")
            item = StoreItem(
                item_id=item_id,
                price=price,
                total_supply=total_supply,
                product_type=product_type,
                active=active,
                payment_token=payment_token,
                sold=existing.sold if existing else 0,
                start_time=existing.start_time if existing else None,
                end_time=existing.end_time if existing else None,
            )
            self._ledger.put(_ITEMS, item_id, item)
            self._ledger.emit(ItemUpdated(item_id=item_id, price=price, total_supply=total_supply, active=active))
        return item

    def update_items(
        self,
        caller: str,
        item_ids: Sequence[int],
        prices: Sequence[int],
        total_supplies: Sequence[int],
        actives: Sequence[bool],
    ) -> List[StoreItem]:
        require_capability(self._access, caller, Action.MANAGE_ITEMS)
        if not len(item_ids) == len(prices) == len(total_supplies) == len(actives):
            raise ConfigError("item update arrays differ in length", reason="length_mismatch")
        with self._ledger.transaction():
            updated = []
            for item_id, price, supply, active in zip(item_ids, prices, total_supplies, actives):
                current = self.get_item(item_id)
                updated.append(
                    self.set_item(
                        caller,
                        item_id,
                        price,
                        supply,
                        current.product_type,
                        active,
                        payment_token=current.payment_token,
                    )
                )
        return updated

    def set_item_window(self, caller: str, item_id: int, start_time: Optional[int], end_time: Optional[int]) -> StoreItem:
        require_capability(self._access, caller, Action.MANAGE_ITEMS)
        _check_window(start_time, end_time)
        with self._ledger.transaction():
            item = replace(self.get_item(item_id), start_time=start_time, end_time=end_time)
            self._ledger.put(_ITEMS, item_id, item)
        return item

    def get_item(self, item_id: int) -> StoreItem:
        item = self._ledger.get(_ITEMS, item_id)
        if item is None:
            raise StateError(f"item {item_id} does not exist", reason="item_not_found")
        return item

    def consume_supply(self, item_id: int, quantity: int) -> StoreItem:
        """Take ``quantity`` units of an item; must run inside a ledger transaction."""

        with self._ledger.transaction():
            item = self.get_item(item_id)
            if quantity <= 0:
                raise ConfigError("quantity must be positive", reason="invalid_amount")
            if item.remaining < quantity:
                raise InsufficientSupplyError(
                    f"item {item_id} has {item.remaining} left, {quantity} requested",
                    reason="insufficient_supply",
                    context={"item_id": item_id, "remaining": item.remaining, "quantity": quantity},
                )
            item = replace(item, sold=item.sold + quantity)
            self._ledger.put(_ITEMS, item_id, item)
        return item

    # ------------------------------------------------------------------
    # Gating and wind-down
    # ------------------------------------------------------------------
    def require_active(
        self,
        subject_kind: SubjectKind,
        subject_id: int,
        now: float,
        *,
        protocol: Optional[str] = None,
    ) -> None:
        """Raise :class:`StateError` unless the subject accepts claims right now."""

        if protocol is not None and not self.is_claiming_active(protocol):
            raise StateError(f"{protocol} claiming is switched off", reason="claiming_inactive")

        if subject_kind is SubjectKind.ITEM:
            item = self.get_item(subject_id)
            if not item.active:
                raise StateError(f"item {subject_id} is not active", reason="item_inactive")
            if item.start_time is not None and now < item.start_time:
                raise StateError(f"item {subject_id} drop has not started", reason="drop_not_started")
            if item.end_time is not None and now > item.end_time:
                raise StateError(f"item {subject_id} drop has ended", reason="drop_ended")
            return

        quest = self.get_quest(subject_id)
        if not quest.active:
            raise StateError(f"quest {subject_id} is not active", reason="quest_inactive")
        if quest.escrow_id is not None and not self.get_escrow(quest.escrow_id).active:
            raise StateError(f"escrow {quest.escrow_id} is disabled", reason="escrow_disabled")

    def withdraw_funds(
        self,
        caller: str,
        quest_id: int,
        to: str,
        token: str,
        token_id: int = 0,
        kind: TokenKind = TokenKind.ERC20,
        amount: Optional[int] = None,
    ) -> int:
        """Drain (or partially withdraw) an escrow balance, whatever its active state."""

        require_capability(self._access, caller, Action.WITHDRAW_FUNDS)
        to = normalize_address(to, field_name="receiver", allow_zero=False)
        token = normalize_address(token, field_name="token")
        with self._ledger.transaction():
            escrow = self.escrow_for_quest(quest_id)
            if amount is None:
                amount = self._ledger.balance_of(escrow.escrow_address, token, token_id)
            self._ledger.transfer(escrow.escrow_address, to, token, amount, kind=kind, token_id=token_id)
            self._ledger.emit(
                EscrowWithdrawal(
                    caller=caller,
                    receiver=to,
                    token=token,
                    token_id=token_id,
                    amount=amount,
                    kind=TokenKind(kind),
                    quest_id=quest_id,
                )
            )
        logger.info(
            "Escrow withdrawal",
            extra={"context": {"quest_id": quest_id, "to": to, "token": token, "amount": amount}},
        )
        return amount


__all__ = [
    "EscrowRecord",
    "QuestEscrowRegistry",
    "QuestRecord",
    "StoreItem",
    "escrow_address_for",
]
