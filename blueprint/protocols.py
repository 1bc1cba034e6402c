"""Schema table for the signed-claim protocols.

Each protocol is the same generic claim with a different EIP-712 struct:

* ``incentive``: quest reward claims (``IncentiveData``), per-claimant cooldown
  plus a per-quest nonce.
* ``cube``: cube mints (``CubeData``), one-shot global nonce.
* ``storefront``: item purchases (``BPStorefrontPurchase``), one-shot global nonce.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ConfigError
from .models import (
    ZERO_ADDRESS,
    ClaimRequest,
    PriceSpec,
    RewardSpec,
    SubjectKind,
    TokenKind,
    TransactionAttestation,
    fee_recipients_from,
)
from .replay import CLAIM_INTERVAL, CooldownGuard, NonceGuard, NonceScope, ReplayGuard, ReplayPolicy
from .typed_data import EIP712Domain, TypedSchema

_TRANSACTION_DATA = [("txHash", "string"), ("networkChainId", "string")]
_FEE_RECIPIENT = [("recipient", "address"), ("BPS", "uint16")]
_REWARD_DATA = [
    ("tokenAddress", "address"),
    ("chainId", "uint256"),
    ("amount", "uint256"),
    ("tokenId", "uint256"),
    ("tokenType", "uint8"),
    ("rakeBps", "uint256"),
    ("factoryAddress", "address"),
]

INCENTIVE_SCHEMA = TypedSchema(
    "IncentiveData",
    {
        "IncentiveData": [
            ("questId", "uint256"),
            ("nonce", "uint256"),
            ("toAddress", "address"),
            ("walletProvider", "string"),
            ("embedOrigin", "string"),
            ("transactions", "TransactionData[]"),
            ("reward", "RewardData"),
        ],
        "TransactionData": _TRANSACTION_DATA,
        "RewardData": _REWARD_DATA,
    },
)

CUBE_SCHEMA = TypedSchema(
    "CubeData",
    {
        "CubeData": [
            ("questId", "uint256"),
            ("nonce", "uint256"),
            ("price", "uint256"),
            ("isNative", "bool"),
            ("toAddress", "address"),
            ("walletProvider", "string"),
            ("tokenURI", "string"),
            ("embedOrigin", "string"),
            ("transactions", "TransactionData[]"),
            ("recipients", "FeeRecipient[]"),
            ("reward", "RewardData"),
        ],
        "TransactionData": _TRANSACTION_DATA,
        "FeeRecipient": _FEE_RECIPIENT,
        "RewardData": _REWARD_DATA,
    },
)

STOREFRONT_SCHEMA = TypedSchema(
    "BPStorefrontPurchase",
    {
        "BPStorefrontPurchase": [
            ("itemId", "uint256"),
            ("nonce", "uint256"),
            ("buyer", "address"),
            ("quantity", "uint256"),
            ("paymentMethod", "string"),
            ("metadata", "string"),
        ]
    },
)


def _transactions_message(claim: ClaimRequest) -> list:
    result = []
    for item in claim.payload.get("transactions", ()):
        if isinstance(item, TransactionAttestation):
            result.append({"txHash": item.tx_hash, "networkChainId": item.network_chain_id})
        else:
            result.append({"txHash": item["txHash"], "networkChainId": item["networkChainId"]})
    return result


def _transactions_payload(message: Mapping[str, Any]) -> tuple:
    return tuple(
        TransactionAttestation(tx_hash=item["txHash"], network_chain_id=item["networkChainId"])
        for item in message.get("transactions", ())
    )


def _reward_message(reward: Optional[RewardSpec]) -> Dict[str, Any]:
    if reward is None:
        return {
            "tokenAddress": ZERO_ADDRESS,
            "chainId": 0,
            "amount": 0,
            "tokenId": 0,
            "tokenType": int(TokenKind.ERC20),
            "rakeBps": 0,
            "factoryAddress": ZERO_ADDRESS,
        }
    return {
        "tokenAddress": reward.token_address,
        "chainId": reward.chain_id,
        "amount": reward.amount,
        "tokenId": reward.token_id,
        "tokenType": int(reward.token_kind),
        "rakeBps": reward.rake_bps,
        "factoryAddress": reward.factory_address,
    }


def _reward_spec(message: Mapping[str, Any]) -> RewardSpec:
    return RewardSpec(
        token_address=message["tokenAddress"],
        chain_id=int(message["chainId"]),
        amount=int(message["amount"]),
        token_id=int(message["tokenId"]),
        token_kind=TokenKind(int(message["tokenType"])),
        rake_bps=int(message["rakeBps"]),
        factory_address=message["factoryAddress"],
    )


def _reject_unsigned(claim: ClaimRequest, primary_type: str, *, price: bool = False, reward: bool = False, fees: bool = False) -> None:
    unsigned = []
    if claim.price is not None and not price:
        unsigned.append("price")
    if claim.reward is not None and not reward:
        unsigned.append("reward")
    if claim.fee_recipients and not fees:
        unsigned.append("fee_recipients")
    if unsigned:
        raise ConfigError(
            f"{primary_type} does not sign {', '.join(unsigned)}", reason="unsigned_field"
        )


def _incentive_message(claim: ClaimRequest) -> Dict[str, Any]:
    _reject_unsigned(claim, "IncentiveData", reward=True)
    return {
        "questId": claim.subject_id,
        "nonce": claim.nonce,
        "toAddress": claim.recipient,
        "walletProvider": claim.payload.get("wallet_provider", ""),
        "embedOrigin": claim.payload.get("embed_origin", ""),
        "transactions": _transactions_message(claim),
        "reward": _reward_message(claim.reward),
    }


def _incentive_claim(message: Mapping[str, Any], payment_token: Optional[str]) -> ClaimRequest:
    return ClaimRequest(
        subject_id=int(message["questId"]),
        nonce=int(message["nonce"]),
        recipient=message["toAddress"],
        payload={
            "wallet_provider": message.get("walletProvider", ""),
            "embed_origin": message.get("embedOrigin", ""),
            "transactions": _transactions_payload(message),
        },
        reward=_reward_spec(message["reward"]),
    )


def _cube_message(claim: ClaimRequest) -> Dict[str, Any]:
    price = claim.price
    if price is not None and price.quantity != 1:
        raise ConfigError("CubeData does not sign a price quantity", reason="unsigned_field")
    return {
        "questId": claim.subject_id,
        "nonce": claim.nonce,
        "price": price.amount if price else 0,
        "isNative": price.is_native if price else True,
        "toAddress": claim.recipient,
        "walletProvider": claim.payload.get("wallet_provider", ""),
        "tokenURI": claim.payload.get("token_uri", ""),
        "embedOrigin": claim.payload.get("embed_origin", ""),
        "transactions": _transactions_message(claim),
        "recipients": [{"recipient": item.recipient, "BPS": item.bps} for item in claim.fee_recipients],
        "reward": _reward_message(claim.reward),
    }


def _cube_claim(message: Mapping[str, Any], payment_token: Optional[str]) -> ClaimRequest:
    is_native = bool(message["isNative"])
    if not is_native and payment_token is None:
        raise ConfigError("non-native cube prices need the payment token address", reason="invalid_token")
    amount = int(message["price"])
    price: Optional[PriceSpec] = None
    # A free native mint is encoded the same as no price at all.
    if amount or not is_native:
        price = PriceSpec(
            amount=amount,
            token_address=ZERO_ADDRESS if is_native else payment_token,
            token_kind=TokenKind.NATIVE if is_native else TokenKind.ERC20,
        )
    return ClaimRequest(
        subject_id=int(message["questId"]),
        nonce=int(message["nonce"]),
        recipient=message["toAddress"],
        payload={
            "wallet_provider": message.get("walletProvider", ""),
            "token_uri": message.get("tokenURI", ""),
            "embed_origin": message.get("embedOrigin", ""),
            "transactions": _transactions_payload(message),
        },
        reward=_reward_spec(message["reward"]),
        price=price,
        fee_recipients=fee_recipients_from(message.get("recipients", ())),
    )


def _storefront_message(claim: ClaimRequest) -> Dict[str, Any]:
    _reject_unsigned(claim, "BPStorefrontPurchase")
    return {
        "itemId": claim.subject_id,
        "nonce": claim.nonce,
        "buyer": claim.recipient,
        "quantity": int(claim.payload.get("quantity", 1)),
        "paymentMethod": claim.payload.get("payment_method", ""),
        "metadata": claim.payload.get("metadata", ""),
    }


def _storefront_claim(message: Mapping[str, Any], payment_token: Optional[str]) -> ClaimRequest:
    return ClaimRequest(
        subject_id=int(message["itemId"]),
        nonce=int(message["nonce"]),
        recipient=message["buyer"],
        payload={
            "quantity": int(message["quantity"]),
            "payment_method": message.get("paymentMethod", ""),
            "metadata": message.get("metadata", ""),
        },
    )


@dataclass(frozen=True)
class ClaimProtocol:
    """One row of the protocol table."""

    name: str
    domain_name: str
    domain_version: str
    schema: TypedSchema
    subject_kind: SubjectKind
    replay: ReplayPolicy
    nonce_scope: NonceScope
    _to_message: Callable[[ClaimRequest], Dict[str, Any]]
    _from_message: Callable[[Mapping[str, Any], Optional[str]], ClaimRequest]

    @property
    def primary_type(self) -> str:
        return self.schema.primary_type

    def domain(self, chain_id: int, verifying_contract: str) -> EIP712Domain:
        return EIP712Domain(
            name=self.domain_name,
            version=self.domain_version,
            chain_id=chain_id,
            verifying_contract=verifying_contract,
        )

    def to_message(self, claim: ClaimRequest) -> Dict[str, Any]:
        return self._to_message(claim)

    def from_message(self, message: Mapping[str, Any], *, payment_token: Optional[str] = None) -> ClaimRequest:
        missing = [name for name in self.schema.field_names() if name not in message]
        if missing:
            raise ConfigError(f"{self.primary_type} is missing {', '.join(missing)}", reason="invalid_value")
        return self._from_message(message, payment_token)

    def replay_guard(self, *, claim_interval: int = CLAIM_INTERVAL) -> ReplayGuard:
        if self.replay is ReplayPolicy.COOLDOWN:
            return CooldownGuard(self.name, interval=claim_interval, nonce_scope=self.nonce_scope)
        return NonceGuard(self.name, scope=self.nonce_scope)


INCENTIVE = ClaimProtocol(
    name="incentive",
    domain_name="BLUEPRINT",
    domain_version="1",
    schema=INCENTIVE_SCHEMA,
    subject_kind=SubjectKind.QUEST,
    replay=ReplayPolicy.COOLDOWN,
    nonce_scope=NonceScope.SUBJECT,
    _to_message=_incentive_message,
    _from_message=_incentive_claim,
)

CUBE = ClaimProtocol(
    name="cube",
    domain_name="BLUEPRINT",
    domain_version="1",
    schema=CUBE_SCHEMA,
    subject_kind=SubjectKind.QUEST,
    replay=ReplayPolicy.NONCE,
    nonce_scope=NonceScope.GLOBAL,
    _to_message=_cube_message,
    _from_message=_cube_claim,
)

STOREFRONT = ClaimProtocol(
    name="storefront",
    domain_name="BLUEPRINT_STORE",
    domain_version="1",
    schema=STOREFRONT_SCHEMA,
    subject_kind=SubjectKind.ITEM,
    replay=ReplayPolicy.NONCE,
    nonce_scope=NonceScope.GLOBAL,
    _to_message=_storefront_message,
    _from_message=_storefront_claim,
)

PROTOCOLS: Dict[str, ClaimProtocol] = {item.name: item for item in (INCENTIVE, CUBE, STOREFRONT)}


def get_protocol(name: str) -> ClaimProtocol:
    try:
        return PROTOCOLS[name]
    except KeyError:
        raise ConfigError(f"unknown claim protocol {name!r}", reason="unknown_protocol") from None


__all__ = [
    "CUBE",
    "CUBE_SCHEMA",
    "ClaimProtocol",
    "INCENTIVE",
    "INCENTIVE_SCHEMA",
    "PROTOCOLS",
    "STOREFRONT",
    "STOREFRONT_SCHEMA",
    "get_protocol",
]
