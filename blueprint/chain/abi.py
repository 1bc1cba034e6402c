"""Minimal ABI fragments for the contract functions the SDK calls.

Struct arguments (``IncentiveData``, ``CubeData``) are derived from the
EIP-712 schemas so the calldata and the signed digest can never drift apart.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from ..protocols import CUBE_SCHEMA, INCENTIVE_SCHEMA
from ..typed_data import TypedSchema, abi_components

Param = Tuple[str, str]


def _params(items: Sequence[Param]) -> List[Dict[str, Any]]:
    return [{"name": name, "type": kind, "internalType": kind} for name, kind in items]


def _fn(
    name: str,
    inputs: Sequence[Param] = (),
    outputs: Sequence[Param] = (),
    *,
    mutability: str = "nonpayable",
) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": _params(inputs),
        "outputs": _params(outputs),
        "stateMutability": mutability,
    }


def _signed_struct_fn(name: str, schema: TypedSchema, *, mutability: str = "nonpayable") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [
            {
                "name": "data",
                "type": "tuple",
                "internalType": f"struct {schema.primary_type}",
                "components": abi_components(schema),
            },
            {"name": "signature", "type": "bytes", "internalType": "bytes"},
        ],
        "outputs": [],
        "stateMutability": mutability,
    }


ACCESS_CONTROL_ABI: List[Dict[str, Any]] = [
    _fn("SIGNER_ROLE", outputs=[("", "bytes32")], mutability="view"),
    _fn("DEFAULT_ADMIN_ROLE", outputs=[("", "bytes32")], mutability="view"),
    _fn("hasRole", [("role", "bytes32"), ("account", "address")], [("", "bool")], mutability="view"),
    _fn("grantRole", [("role", "bytes32"), ("account", "address")]),
    _fn("revokeRole", [("role", "bytes32"), ("account", "address")]),
]

FACTORY_ABI: List[Dict[str, Any]] = ACCESS_CONTROL_ABI + [
    _fn(
        "createEscrow",
        [("creator", "address"), ("whitelistedTokens", "address[]"), ("treasury", "address")],
        [("", "uint256")],
    ),
    _fn("registerQuest", [("questId", "uint256"), ("escrowId", "uint256")]),
    _fn("enableEscrow", [("escrowId", "uint256")]),
    _fn("disableEscrow", [("escrowId", "uint256")]),
    _fn("addTokenToWhitelist", [("questId", "uint256"), ("token", "address")]),
    _fn("removeTokenFromWhitelist", [("questId", "uint256"), ("token", "address")]),
    _fn("s_questToEscrow", [("", "uint256")], [("", "uint256")], mutability="view"),
    _fn(
        "s_escrows",
        [("", "uint256")],
        [("escrowId", "uint256"), ("escrow", "address"), ("creator", "address"), ("active", "bool")],
        mutability="view",
    ),
    _fn(
        "distributeRewards",
        [
            ("questId", "uint256"),
            ("token", "address"),
            ("to", "address"),
            ("amount", "uint256"),
            ("rewardTokenId", "uint256"),
            ("tokenType", "uint8"),
            ("rakeBps", "uint256"),
        ],
    ),
    _fn(
        "withdrawFunds",
        [("questId", "uint256"), ("to", "address"), ("token", "address"), ("tokenId", "uint256"), ("tokenType", "uint8")],
    ),
]

ESCROW_ABI: List[Dict[str, Any]] = [
    _fn("escrowNativeBalance", outputs=[("", "uint256")], mutability="view"),
]

INCENTIVE_ABI: List[Dict[str, Any]] = ACCESS_CONTROL_ABI + [
    _fn(
        "initializeQuest",
        [
            ("questId", "uint256"),
            ("communities", "string[]"),
            ("title", "string"),
            ("difficulty", "uint8"),
            ("questType", "uint8"),
            ("tags", "string[]"),
        ],
    ),
    _signed_struct_fn("claimReward", INCENTIVE_SCHEMA),
    _fn("isQuestActive", [("questId", "uint256")], [("", "bool")], mutability="view"),
    _fn("unpublishQuest", [("questId", "uint256")]),
    _fn("setIsClaimingActive", [("_isActive", "bool")]),
    _fn("getClaimCooldown", [("questId", "uint256"), ("claimant", "address")], [("", "uint256")], mutability="view"),
    _fn("CLAIM_INTERVAL", outputs=[("", "uint256")], mutability="view"),
]

CUBE_ABI: List[Dict[str, Any]] = ACCESS_CONTROL_ABI + [
    _signed_struct_fn("mintCube", CUBE_SCHEMA, mutability="payable"),
    _fn("isQuestActive", [("questId", "uint256")], [("", "bool")], mutability="view"),
    _fn("unpublishQuest", [("questId", "uint256")]),
]

STOREFRONT_ABI: List[Dict[str, Any]] = ACCESS_CONTROL_ABI + [
    _fn(
        "setItem",
        [
            ("itemId", "uint256"),
            ("price", "uint256"),
            ("totalSupply", "uint256"),
            ("productType", "uint8"),
            ("active", "bool"),
        ],
    ),
    _fn(
        "updateItems",
        [("itemIds", "uint256[]"), ("prices", "uint256[]"), ("totalSupplies", "uint256[]"), ("actives", "bool[]")],
    ),
    _fn(
        "items",
        [("", "uint256")],
        [("price", "uint256"), ("totalSupply", "uint256"), ("sold", "uint256"), ("productType", "uint8"), ("active", "bool")],
        mutability="view",
    ),
    _fn("purchaseItem", [("itemId", "uint256"), ("nonce", "uint256"), ("signature", "bytes")], mutability="payable"),
    _fn("emergencyWithdraw", [("token", "address"), ("amount", "uint256")]),
]

TREASURY_ABI: List[Dict[str, Any]] = ACCESS_CONTROL_ABI + [
    _fn("donate", [("destination", "address"), ("token", "address"), ("amount", "uint256")], mutability="payable"),
    _fn("withdrawETH", [("to", "address"), ("amount", "uint256")]),
    _fn("withdrawToken", [("token", "address"), ("to", "address"), ("amount", "uint256")]),
]


__all__ = [
    "ACCESS_CONTROL_ABI",
    "CUBE_ABI",
    "ESCROW_ABI",
    "FACTORY_ABI",
    "INCENTIVE_ABI",
    "STOREFRONT_ABI",
    "TREASURY_ABI",
]
