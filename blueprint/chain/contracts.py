"""Contract facades for the deployed factory, incentive, cube, storefront and treasury."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from ..access import SIGNER_ROLE
from ..models import ClaimRequest, Difficulty, QuestType, TokenKind, normalize_address
from ..protocols import CUBE, INCENTIVE, STOREFRONT, ClaimProtocol
from ..signers import SignedClaim, Signer, sign_claim
from ..typed_data import EIP712Domain, abi_values
from .abi import CUBE_ABI, ESCROW_ABI, FACTORY_ABI, INCENTIVE_ABI, STOREFRONT_ABI, TREASURY_ABI
from .client import ChainClient

logger = logging.getLogger(__name__)

Receipt = Dict[str, Any]


@dataclass(frozen=True)
class EscrowInfo:
    escrow_id: int
    escrow: str
    creator: str
    active: bool


class _ContractFacade:
    abi: Sequence[Dict[str, Any]] = ()

    def __init__(self, client: ChainClient, address: str) -> None:
        self._client = client
        self.address = normalize_address(address, field_name="contract", allow_zero=False)
        self.contract = client.contract(self.address, self.abi)

    def _read(self, function_name: str, *args: Any) -> Any:
        return self._client.read(self.contract, function_name, *args)

    def _submit(self, function_name: str, *args: Any, value: int = 0, gas: Optional[int] = None) -> Receipt:
        return self._client.submit(self.contract, function_name, *args, value=value, gas=gas)

    def has_role(self, role: bytes, account: str) -> bool:
        return bool(self._read("hasRole", role, normalize_address(account)))

    def grant_role(self, role: bytes, account: str) -> Receipt:
        return self._submit("grantRole", role, normalize_address(account))

    def revoke_role(self, role: bytes, account: str) -> Receipt:
        return self._submit("revokeRole", role, normalize_address(account))


class _SignedClaimFacade(_ContractFacade):
    """Facade for a contract that verifies one claim protocol."""

    protocol: ClaimProtocol

    def domain(self) -> EIP712Domain:
        return self.protocol.domain(self._client.settings.chain_id, self.address)

    async def generate_signature(self, signer: Signer, claim: ClaimRequest) -> SignedClaim:
        return await sign_claim(signer, self.protocol, self.domain(), claim)

    def _claim_tuple(self, claim: ClaimRequest) -> tuple:
        return abi_values(self.protocol.schema, self.protocol.primary_type, self.protocol.to_message(claim))

    def ensure_signer_role(self, account: Optional[str] = None) -> bool:
        """Grant ``SIGNER_ROLE`` if missing; returns True when a grant was mined."""

        account = normalize_address(account or self._client.address)
        if self.has_role(SIGNER_ROLE, account):
            return False
        self.grant_role(SIGNER_ROLE, account)
        return True


class FactoryContract(_ContractFacade):
    abi = FACTORY_ABI

    def create_escrow(self, creator: str, whitelisted_tokens: Sequence[str], treasury: str) -> int:
        """Create an escrow and return its id (simulated first, then mined)."""

        args = (
            normalize_address(creator, field_name="creator", allow_zero=False),
            [normalize_address(token) for token in whitelisted_tokens],
            normalize_address(treasury, field_name="treasury", allow_zero=False),
        )
        escrow_id = int(self._client.read(self.contract, "createEscrow", *args, sender=self._client.address))
        self._submit("createEscrow", *args)
        return escrow_id

    def register_quest(self, quest_id: int, escrow_id: int) -> Receipt:
        return self._submit("registerQuest", quest_id, escrow_id)

    def create_quest_escrow(self, quest_id: int, whitelisted_tokens: Sequence[str], treasury: str) -> int:
        """Create an escrow owned by the caller and bind ``quest_id`` to it."""

        escrow_id = self.create_escrow(self._client.address, whitelisted_tokens, treasury)
        self.register_quest(quest_id, escrow_id)
        return escrow_id

    def enable_escrow(self, escrow_id: int) -> Receipt:
        return self._submit("enableEscrow", escrow_id)

    def disable_escrow(self, escrow_id: int) -> Receipt:
        return self._submit("disableEscrow", escrow_id)

    def add_token_to_whitelist(self, quest_id: int, token: str) -> Receipt:
        return self._submit("addTokenToWhitelist", quest_id, normalize_address(token))

    def remove_token_from_whitelist(self, quest_id: int, token: str) -> Receipt:
        return self._submit("removeTokenFromWhitelist", quest_id, normalize_address(token))

    def escrow_info(self, escrow_id: int) -> EscrowInfo:
        escrow_id_, escrow, creator, active = self._read("s_escrows", escrow_id)
        return EscrowInfo(escrow_id=int(escrow_id_), escrow=escrow, creator=creator, active=bool(active))

    def escrow_for_quest(self, quest_id: int) -> EscrowInfo:
        return self.escrow_info(int(self._read("s_questToEscrow", quest_id)))

    def get_escrow_address(self, quest_id: int) -> str:
        return self.escrow_for_quest(quest_id).escrow

    def escrow_native_balance(self, quest_id: int) -> int:
        escrow = self._client.contract(self.get_escrow_address(quest_id), ESCROW_ABI)
        return int(self._client.read(escrow, "escrowNativeBalance"))

    def distribute_rewards(
        self,
        quest_id: int,
        token: str,
        to: str,
        amount: int,
        reward_token_id: int,
        token_kind: TokenKind,
        rake_bps: int,
    ) -> Receipt:
        return self._submit(
            "distributeRewards",
            quest_id,
            normalize_address(token),
            normalize_address(to, allow_zero=False),
            amount,
            reward_token_id,
            int(token_kind),
            rake_bps,
        )

    def withdraw_funds(self, quest_id: int, to: str, token: str, token_id: int, token_kind: TokenKind) -> Receipt:
        return self._submit(
            "withdrawFunds",
            quest_id,
            normalize_address(to, allow_zero=False),
            normalize_address(token),
            token_id,
            int(token_kind),
        )


class IncentiveContract(_SignedClaimFacade):
    abi = INCENTIVE_ABI
    protocol = INCENTIVE

    def initialize_quest(
        self,
        quest_id: int,
        communities: Sequence[str],
        title: str,
        difficulty: Difficulty,
        quest_type: QuestType,
        tags: Sequence[str] = (),
    ) -> Receipt:
        # The grant receipt is confirmed before the quest call is built.
        self.ensure_signer_role()
        return self._submit(
            "initializeQuest",
            quest_id,
            list(communities),
            title,
            int(difficulty),
            int(quest_type),
            list(tags),
        )

    def claim_reward(self, claim: ClaimRequest, signature: bytes) -> Receipt:
        return self._submit("claimReward", self._claim_tuple(claim), signature)

    def is_quest_active(self, quest_id: int) -> bool:
        return bool(self._read("isQuestActive", quest_id))

    def unpublish_quest(self, quest_id: int) -> Receipt:
        return self._submit("unpublishQuest", quest_id)

    def set_claiming_active(self, active: bool) -> Receipt:
        return self._submit("setIsClaimingActive", bool(active))

    def claim_cooldown(self, quest_id: int, claimant: str) -> int:
        return int(self._read("getClaimCooldown", quest_id, normalize_address(claimant)))


class CubeContract(_SignedClaimFacade):
    abi = CUBE_ABI
    protocol = CUBE

    def mint_cube(self, claim: ClaimRequest, signature: bytes, *, gas: int = 5_000_000) -> Receipt:
        value = claim.price.total if claim.price is not None and claim.price.is_native else 0
        return self._submit("mintCube", self._claim_tuple(claim), signature, value=value, gas=gas)

    def is_quest_active(self, quest_id: int) -> bool:
        return bool(self._read("isQuestActive", quest_id))

    def unpublish_quest(self, quest_id: int) -> Receipt:
        return self._submit("unpublishQuest", quest_id)


@dataclass(frozen=True)
class ItemDetails:
    price: int
    total_supply: int
    sold: int
    product_type: int
    active: bool


class StorefrontContract(_SignedClaimFacade):
    abi = STOREFRONT_ABI
    protocol = STOREFRONT

    def set_item(self, item_id: int, price: int, total_supply: int, product_type: int, active: bool) -> Receipt:
        return self._submit("setItem", item_id, price, total_supply, product_type, bool(active))

    def update_item(self, item_id: int, price: int, total_supply: int, active: bool) -> Receipt:
        return self._submit("updateItems", [item_id], [price], [total_supply], [bool(active)])

    def get_item_details(self, item_id: int) -> ItemDetails:
        price, total_supply, sold, product_type, active = self._read("items", item_id)
        return ItemDetails(int(price), int(total_supply), int(sold), int(product_type), bool(active))

    def purchase_item(self, claim: ClaimRequest, signature: bytes, *, value: int = 0) -> Receipt:
        return self._submit("purchaseItem", claim.subject_id, claim.nonce, signature, value=value)

    def emergency_withdraw(self, token: str, amount: int) -> Receipt:
        return self._submit("emergencyWithdraw", normalize_address(token), amount)


class TreasuryContract(_ContractFacade):
    abi = TREASURY_ABI

    def donate(self, destination: str, token: str, amount: int, *, value: int = 0) -> Receipt:
        return self._submit("donate", normalize_address(destination), normalize_address(token), amount, value=value)

    def withdraw_native(self, to: str, amount: int) -> Receipt:
        return self._submit("withdrawETH", normalize_address(to, allow_zero=False), amount)

    def withdraw_token(self, token: str, to: str, amount: int) -> Receipt:
        return self._submit("withdrawToken", normalize_address(token), normalize_address(to, allow_zero=False), amount)


__all__ = [
    "CubeContract",
    "EscrowInfo",
    "FactoryContract",
    "IncentiveContract",
    "ItemDetails",
    "StorefrontContract",
    "TreasuryContract",
]
