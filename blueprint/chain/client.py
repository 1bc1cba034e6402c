"""Ledger submission boundary on a real chain (web3.py).

``submit`` signs a transaction once and re-broadcasts the same raw bytes on
transient RPC failures. Because the account nonce is fixed inside the signed
payload the transaction can be mined at most once, however often it is sent.
Success is only reported once a receipt with the configured number of
confirmations is observed; there are no fixed propagation sleeps.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from eth_account import Account
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import Web3
from web3.contract.contract import Contract
from web3.exceptions import TransactionNotFound, Web3Exception

from ..config import ChainSettings

logger = logging.getLogger(__name__)

_ALREADY_SUBMITTED = ("already known", "nonce too low", "known transaction")


class ChainError(RuntimeError):
    """Raised when the RPC endpoint or a transaction misbehaves."""


class TransactionFailedError(ChainError):
    def __init__(self, message: str, *, tx_hash: str, receipt: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.receipt = receipt


class ReceiptTimeoutError(ChainError):
    def __init__(self, message: str, *, tx_hash: str) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


@dataclass
class ReceiptOptions:
    """Polling configuration when waiting for receipts."""

    confirmations: int = 1
    poll_interval: float = 1.0
    timeout: float = 120.0


class ChainClient:
    """A thin wrapper around Web3 with submit/read helpers."""

    def __init__(
        self,
        settings: ChainSettings,
        *,
        web3: Optional[Web3] = None,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.web3 = web3 or Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": 30}))
        self.account = Account.from_key(settings.private_key) if settings.private_key else None
        self.receipt_options = ReceiptOptions(
            confirmations=settings.confirmations,
            poll_interval=settings.poll_interval,
            timeout=settings.receipt_timeout,
        )
        self._max_attempts = max(1, max_attempts)
        self._sleep = sleep
        logger.debug("Chain client initialized for %s", settings.rpc_url)

    @property
    def address(self) -> str:
        if self.account is None:
            raise ChainError("no transaction key configured (PRIVATE_KEY)")
        return self.account.address

    def ensure_connection(self) -> None:
        if not self.web3.is_connected():
            raise ChainError(f"Unable to connect to RPC endpoint {self.settings.rpc_url}")
        remote = self.web3.eth.chain_id
        if remote != self.settings.chain_id:
            raise ChainError(f"RPC endpoint serves chain {remote}, expected {self.settings.chain_id}")

    def contract(self, address: str, abi: Sequence[Dict[str, Any]]) -> Contract:
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=list(abi))

    def read(self, contract: Contract, function_name: str, *args: Any, sender: Optional[str] = None) -> Any:
        """Run an ``eth_call``; ``sender`` simulates a write as that account."""

        function = getattr(contract.functions, function_name)
        if sender is not None:
            return function(*args).call({"from": sender})
        return function(*args).call()

    def submit(
        self,
        contract: Contract,
        function_name: str,
        *args: Any,
        value: int = 0,
        gas: Optional[int] = None,
        options: Optional[ReceiptOptions] = None,
    ) -> Dict[str, Any]:
        """Sign, broadcast and wait for a confirmed successful receipt."""

        function = getattr(contract.functions, function_name)
        tx_options: Dict[str, Any] = {
            "from": self.address,
            "nonce": self.web3.eth.get_transaction_count(self.address, "pending"),
            "chainId": self.settings.chain_id,
            "value": value,
        }
        if gas is not None:
            tx_options["gas"] = gas
        tx = function(*args).build_transaction(tx_options)
        signed = self.account.sign_transaction(tx)
        tx_hash = self._broadcast(signed.raw_transaction, "0x" + bytes(signed.hash).hex())
        logger.info(
            "Transaction broadcast",
            extra={"tx_hash": tx_hash, "context": {"function": function_name, "to": contract.address}},
        )
        receipt = self.wait_for_receipt(tx_hash, options=options)
        if int(receipt.get("status", 0)) != 1:
            raise TransactionFailedError(f"{function_name} reverted", tx_hash=tx_hash, receipt=receipt)
        return receipt

    def _broadcast(self, raw_transaction: bytes, tx_hash: str) -> str:
        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "Transient broadcast failure",
                extra={
                    "tx_hash": tx_hash,
                    "context": {"attempt": state.attempt_number, "error": str(state.outcome.exception())},
                },
            )

        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(OSError),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(self._send_raw, raw_transaction, tx_hash)
        except OSError as exc:
            raise ChainError(f"broadcast failed after {self._max_attempts} attempts") from exc

    def _send_raw(self, raw_transaction: bytes, tx_hash: str) -> str:
        try:
            self.web3.eth.send_raw_transaction(raw_transaction)
        except (ValueError, Web3Exception) as exc:
            if any(marker in str(exc).lower() for marker in _ALREADY_SUBMITTED):
                # An earlier attempt reached the mempool.
                return tx_hash
            raise ChainError(f"transaction rejected: {exc}") from exc
        return tx_hash

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt is not None else None

    def wait_for_receipt(self, tx_hash: str, *, options: Optional[ReceiptOptions] = None) -> Dict[str, Any]:
        """Poll until the receipt has ``confirmations`` blocks on top, or time out."""

        opts = options or self.receipt_options
        deadline = time.monotonic() + opts.timeout
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                depth = self.web3.eth.block_number - int(receipt["blockNumber"]) + 1
                if depth >= opts.confirmations:
                    return receipt
            if time.monotonic() >= deadline:
                raise ReceiptTimeoutError(f"no confirmed receipt for {tx_hash}", tx_hash=tx_hash)
            self._sleep(opts.poll_interval)


__all__ = [
    "ChainClient",
    "ChainError",
    "ReceiptOptions",
    "ReceiptTimeoutError",
    "TransactionFailedError",
]
