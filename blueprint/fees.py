"""Fee configuration and basis-point splitting.

Every leg of a settlement is split the same way: each fee line receives
``floor(total * bps / 10000)`` and the net recipient receives whatever is
left, so the floor-division dust always lands on the net recipient and the
parts sum exactly to the total.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .access import AccessControl, Action, require_capability
from .errors import ConfigError
from .events import FeeConfigUpdated
from .ledger import InMemoryLedger
from .models import MAX_BPS, ZERO_ADDRESS, FeeRecipient, SubjectKind, is_zero_address, normalize_address

logger = logging.getLogger(__name__)

_TABLE = "fee_overrides"
_DEFAULT_KEY = "default"


class FeeRole(IntEnum):
    """Transfer order within one settlement leg."""

    PLATFORM = 0
    CREATOR = 1
    REWARD_POOL = 2
    CUSTOM = 3
    TREASURY = 4
    NET = 5

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class FeeLine:
    role: FeeRole
    recipient: str
    bps: int

    def __post_init__(self) -> None:
        recipient = normalize_address(
            self.recipient, field_name=f"{self.role.label} recipient", allow_zero=self.bps == 0
        )
        object.__setattr__(self, "recipient", recipient)


@dataclass(frozen=True)
class FeeShare:
    role: FeeRole
    recipient: str
    amount: int


@dataclass(frozen=True)
class FeeSplit:
    total: int
    shares: Tuple[FeeShare, ...]
    remainder: int

    @property
    def fees(self) -> Tuple[FeeShare, ...]:
        return tuple(share for share in self.shares if share.role is not FeeRole.NET)

    @property
    def fee_total(self) -> int:
        return sum(share.amount for share in self.fees)

    @property
    def net(self) -> int:
        return sum(share.amount for share in self.shares if share.role is FeeRole.NET)

    def amount_for(self, recipient: str) -> int:
        recipient = normalize_address(recipient)
        return sum(share.amount for share in self.shares if share.recipient == recipient)


def split_amount(total: int, lines: Iterable[FeeLine], net_recipient: str, *, net_role: FeeRole = FeeRole.NET) -> FeeSplit:
    """Split ``total`` across ``lines`` in role order, remainder to ``net_recipient``."""

    if total < 0:
        raise ConfigError("cannot split a negative amount", reason="invalid_amount")
    ordered = sorted(lines, key=lambda line: line.role)
    if sum(line.bps for line in ordered) > MAX_BPS:
        raise ConfigError("fee lines exceed 100%", reason="bps_exceeds_max")

    shares: List[FeeShare] = []
    for line in ordered:
        if line.bps == 0:
            continue
        shares.append(FeeShare(role=line.role, recipient=line.recipient, amount=total * line.bps // MAX_BPS))
    fee_total = sum(share.amount for share in shares)
    net = total - fee_total
    exact_net = total * (MAX_BPS - sum(line.bps for line in ordered)) // MAX_BPS
    shares.append(FeeShare(role=net_role, recipient=normalize_address(net_recipient), amount=net))
    return FeeSplit(total=total, shares=tuple(shares), remainder=net - exact_net)


def custom_lines(recipients: Iterable[FeeRecipient]) -> List[FeeLine]:
    return [FeeLine(role=FeeRole.CUSTOM, recipient=item.recipient, bps=item.bps) for item in recipients]


_FIELD_ALIASES = {
    "blueprint_recipient": ("blueprintRecipient",),
    "blueprint_bps": ("blueprintFeeBasisPoints", "blueprintBps"),
    "creator_recipient": ("creatorRecipient",),
    "creator_bps": ("creatorBasisPoints", "creatorBps"),
    "reward_pool_recipient": ("rewardPoolRecipient",),
    "reward_pool_bps": ("rewardPoolBasisPoints", "rewardPoolBps"),
    "treasury": (),
}


@dataclass(frozen=True)
class FeeConfig:
    """Collection-wide (or per-token) split of a purchase price."""

    treasury: str
    blueprint_recipient: str = ZERO_ADDRESS
    blueprint_bps: int = 0
    creator_recipient: str = ZERO_ADDRESS
    creator_bps: int = 0
    reward_pool_recipient: str = ZERO_ADDRESS
    reward_pool_bps: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "treasury", normalize_address(self.treasury, field_name="treasury", allow_zero=False))
        for role in ("blueprint", "creator", "reward_pool"):
            recipient = normalize_address(getattr(self, f"{role}_recipient"), field_name=f"{role} recipient")
            bps = getattr(self, f"{role}_bps")
            if isinstance(bps, bool) or not isinstance(bps, int) or bps < 0:
                raise ConfigError(f"{role} bps must be a non-negative integer", reason="invalid_amount")
            if bps and is_zero_address(recipient):
                raise ConfigError(f"{role} recipient must be set when {role} bps > 0", reason="zero_address")
            object.__setattr__(self, f"{role}_recipient", recipient)
        if self.total_bps > MAX_BPS:
            raise ConfigError("fee config exceeds 100%", reason="bps_exceeds_max")

    @property
    def total_bps(self) -> int:
        return self.blueprint_bps + self.creator_bps + self.reward_pool_bps

    def lines(self) -> List[FeeLine]:
        return [
            FeeLine(FeeRole.PLATFORM, self.blueprint_recipient, self.blueprint_bps),
            FeeLine(FeeRole.CREATOR, self.creator_recipient, self.creator_bps),
            FeeLine(FeeRole.REWARD_POOL, self.reward_pool_recipient, self.reward_pool_bps),
        ]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FeeConfig":
        values: Dict[str, Any] = {}
        for name, aliases in _FIELD_ALIASES.items():
            for key in (name, *aliases):
                if key in data:
                    values[name] = data[key]
                    break
        if "treasury" not in values:
            raise ConfigError("fee config requires a treasury", reason="treasury_not_set")
        for name in ("blueprint_bps", "creator_bps", "reward_pool_bps"):
            if name in values:
                values[name] = int(values[name])
        return cls(**values)


class FeeConfigStore:
    """Default fee config plus per-subject overrides kept in the ledger.

    Overrides are keyed by ``(kind, subject_id)`` because quest ids and item
    ids are separate number spaces.
    """

    def __init__(self, ledger: InMemoryLedger, default: FeeConfig, access: AccessControl) -> None:
        self._ledger = ledger
        self._access = access
        ledger.put(_TABLE, _DEFAULT_KEY, default)

    @property
    def default(self) -> FeeConfig:
        return self._ledger.get(_TABLE, _DEFAULT_KEY)

    def set_default(self, caller: str, config: FeeConfig) -> None:
        require_capability(self._access, caller, Action.MANAGE_FEES)
        with self._ledger.transaction():
            self._ledger.put(_TABLE, _DEFAULT_KEY, config)
            self._ledger.emit(FeeConfigUpdated(subject_id=None, config=config.to_dict()))
        logger.info("Default fee config updated", extra={"context": {"total_bps": config.total_bps}})

    def set_override(
        self, caller: str, subject_id: int, config: FeeConfig, *, kind: SubjectKind = SubjectKind.ITEM
    ) -> None:
        require_capability(self._access, caller, Action.MANAGE_FEES)
        with self._ledger.transaction():
            self._ledger.put(_TABLE, (kind, subject_id), config)
            self._ledger.emit(
                FeeConfigUpdated(subject_id=subject_id, subject_kind=kind.value, config=config.to_dict())
            )
        logger.info(
            "Fee override set",
            extra={"context": {"subject_id": subject_id, "kind": kind.value, "total_bps": config.total_bps}},
        )

    def remove_override(self, caller: str, subject_id: int, *, kind: SubjectKind = SubjectKind.ITEM) -> None:
        require_capability(self._access, caller, Action.MANAGE_FEES)
        with self._ledger.transaction():
            self._ledger.delete(_TABLE, (kind, subject_id))
            self._ledger.emit(FeeConfigUpdated(subject_id=subject_id, subject_kind=kind.value, removed=True))

    def has_override(self, subject_id: int, *, kind: SubjectKind = SubjectKind.ITEM) -> bool:
        return self._ledger.get(_TABLE, (kind, subject_id)) is not None

    def effective(self, subject_id: Optional[int], *, kind: SubjectKind = SubjectKind.ITEM) -> FeeConfig:
        if subject_id is not None:
            override = self._ledger.get(_TABLE, (kind, subject_id))
            if override is not None:
                return override
        return self.default


__all__ = [
    "FeeConfig",
    "FeeConfigStore",
    "FeeLine",
    "FeeRole",
    "FeeShare",
    "FeeSplit",
    "custom_lines",
    "split_amount",
]
