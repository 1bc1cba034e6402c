"""Web3 bindings: the ledger submission boundary on a deployed chain."""

from .client import ChainClient, ChainError, ReceiptOptions, ReceiptTimeoutError, TransactionFailedError
from .contracts import (
    CubeContract,
    FactoryContract,
    IncentiveContract,
    StorefrontContract,
    TreasuryContract,
)

__all__ = [
    "ChainClient",
    "ChainError",
    "CubeContract",
    "FactoryContract",
    "IncentiveContract",
    "ReceiptOptions",
    "ReceiptTimeoutError",
    "StorefrontContract",
    "TransactionFailedError",
    "TreasuryContract",
]
