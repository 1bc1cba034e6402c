"""Value types describing claims, rewards, prices and transfers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from .errors import ConfigError

MAX_BPS = 10_000
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_TOKEN = ZERO_ADDRESS


class TokenKind(IntEnum):
    """Token standards understood by the escrow contracts (on-chain ``uint8``)."""

    ERC20 = 0
    ERC721 = 1
    ERC1155 = 2
    NATIVE = 3

    @property
    def fungible(self) -> bool:
        return self is not TokenKind.ERC721


class QuestType(IntEnum):
    QUEST = 0
    STREAK = 1


class Difficulty(IntEnum):
    BEGINNER = 0
    INTERMEDIATE = 1
    ADVANCED = 2


class SubjectKind(str, Enum):
    """What a claim's ``subject_id`` refers to."""

    QUEST = "quest"
    ITEM = "item"


def normalize_address(value: Any, *, field_name: str = "address", allow_zero: bool = True) -> str:
    """Return the checksum form of ``value`` or raise :class:`ConfigError`."""

    if isinstance(value, bytes) and len(value) == 20:
        value = "0x" + value.hex()
    if not isinstance(value, str) or not is_address(value):
        raise ConfigError(f"{field_name} must be a 0x-prefixed 20-byte address", reason="invalid_address")
    checksum = to_checksum_address(value)
    if not allow_zero and checksum == ZERO_ADDRESS:
        raise ConfigError(f"{field_name} must not be the zero address", reason="zero_address")
    return checksum


def is_zero_address(value: Optional[str]) -> bool:
    return not value or int(value, 16) == 0


def _require_uint(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{field_name} must be a non-negative integer", reason="invalid_amount")
    return value


def _require_bps(value: Any, field_name: str) -> int:
    _require_uint(value, field_name)
    if value > MAX_BPS:
        raise ConfigError(f"{field_name} exceeds {MAX_BPS} basis points", reason="bps_exceeds_max")
    return value


@dataclass(frozen=True)
class FeeRecipient:
    recipient: str
    bps: int

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "recipient", normalize_address(self.recipient, field_name="fee recipient", allow_zero=False)
        )
        _require_bps(self.bps, "fee recipient bps")


@dataclass(frozen=True)
class TransactionAttestation:
    """A transaction the claimant performed to qualify for the reward."""

    tx_hash: str
    network_chain_id: str


@dataclass(frozen=True)
class RewardSpec:
    """Reward paid out of a quest escrow."""

    token_address: str
    chain_id: int
    amount: int
    token_kind: TokenKind = TokenKind.ERC20
    token_id: int = 0
    rake_bps: int = 0
    factory_address: str = ZERO_ADDRESS

    def __post_init__(self) -> None:
        object.__setattr__(self, "token_kind", TokenKind(self.token_kind))
        object.__setattr__(self, "token_address", normalize_address(self.token_address, field_name="reward token"))
        object.__setattr__(self, "factory_address", normalize_address(self.factory_address, field_name="factory"))
        _require_uint(self.chain_id, "reward chain_id")
        _require_uint(self.amount, "reward amount")
        _require_uint(self.token_id, "reward token_id")
        _require_bps(self.rake_bps, "rake_bps")
        if self.token_kind is TokenKind.NATIVE and not is_zero_address(self.token_address):
            raise ConfigError("native rewards must use the zero token address", reason="invalid_token")
        if self.token_kind is TokenKind.ERC721:
            if self.amount not in (0, 1):
                raise ConfigError("ERC721 rewards transfer exactly one token", reason="invalid_amount")
            if self.rake_bps:
                raise ConfigError("ERC721 rewards cannot carry a rake", reason="bps_exceeds_max")


@dataclass(frozen=True)
class PriceSpec:
    """Payment owed by the claimant (cube price, storefront unit price)."""

    amount: int
    token_address: str = NATIVE_TOKEN
    token_kind: TokenKind = TokenKind.NATIVE
    quantity: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "token_kind", TokenKind(self.token_kind))
        object.__setattr__(self, "token_address", normalize_address(self.token_address, field_name="price token"))
        _require_uint(self.amount, "price amount")
        _require_uint(self.quantity, "quantity")
        if self.token_kind not in (TokenKind.NATIVE, TokenKind.ERC20):
            raise ConfigError("prices are paid in native currency or ERC20", reason="invalid_token")
        if self.is_native and not is_zero_address(self.token_address):
            raise ConfigError("native prices must use the zero token address", reason="invalid_token")

    @property
    def is_native(self) -> bool:
        return self.token_kind is TokenKind.NATIVE

    @property
    def total(self) -> int:
        return self.amount * self.quantity


@dataclass(frozen=True)
class ClaimRequest:
    """Protocol-independent form of an incentive claim, cube mint or purchase.

    ``payload`` holds the protocol specific fields (attestations, wallet
    provider, origin, token URI, purchase quantity...). They are opaque to the
    settlement logic but always part of the signed digest.
    """

    subject_id: int
    nonce: int
    recipient: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    reward: Optional[RewardSpec] = None
    price: Optional[PriceSpec] = None
    fee_recipients: Tuple[FeeRecipient, ...] = ()

    def __post_init__(self) -> None:
        _require_uint(self.subject_id, "subject_id")
        _require_uint(self.nonce, "nonce")
        object.__setattr__(self, "recipient", normalize_address(self.recipient, field_name="recipient", allow_zero=False))
        object.__setattr__(self, "payload", dict(self.payload))
        recipients = tuple(self.fee_recipients)
        object.__setattr__(self, "fee_recipients", recipients)
        if sum(item.bps for item in recipients) > MAX_BPS:
            raise ConfigError("fee recipients exceed 100%", reason="bps_exceeds_max")

    @property
    def fee_bps(self) -> int:
        return sum(item.bps for item in self.fee_recipients)

    def summary(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "nonce": self.nonce,
            "recipient": self.recipient,
            "reward": self.reward.amount if self.reward else 0,
            "price": self.price.total if self.price else 0,
        }


@dataclass(frozen=True)
class Transfer:
    """One movement of value executed by a settlement."""

    source: str
    recipient: str
    token: str
    amount: int
    kind: TokenKind
    role: str
    token_id: int = 0


def fee_recipients_from(items: Iterable[Mapping[str, Any]]) -> Tuple[FeeRecipient, ...]:
    """Build fee recipients from ``{"recipient", "BPS"|"bps"}`` mappings."""

    result = []
    for item in items:
        bps = item.get("bps", item.get("BPS"))
        result.append(FeeRecipient(recipient=item["recipient"], bps=int(bps)))
    return tuple(result)


__all__ = [
    "ClaimRequest",
    "Difficulty",
    "FeeRecipient",
    "MAX_BPS",
    "NATIVE_TOKEN",
    "PriceSpec",
    "QuestType",
    "RewardSpec",
    "SubjectKind",
    "TokenKind",
    "Transfer",
    "TransactionAttestation",
    "ZERO_ADDRESS",
    "fee_recipients_from",
    "is_zero_address",
    "normalize_address",
]
