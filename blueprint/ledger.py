"""In-process serializing ledger.

Mirrors what the chain gives the contracts: every mutation runs one at a time
under a single lock, and a :meth:`InMemoryLedger.transaction` either commits
all of its writes (balances, consumption records, registry state, events) or
none of them.
"""

from __future__ import annotations

import contextlib
import copy
import logging
import threading
from typing import Any, Dict, Hashable, Iterator, List, Optional, Set, Tuple

from .errors import ConfigError, FundsError
from .events import LedgerEvent
from .models import NATIVE_TOKEN, TokenKind, normalize_address

logger = logging.getLogger(__name__)

BalanceKey = Tuple[str, str, int]


class InMemoryLedger:
    """Authoritative state for off-chain settlement and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[Dict[str, Any]] = None
        self._balances: Dict[BalanceKey, int] = {}
        self._nonces: Dict[Hashable, Set[int]] = {}
        self._claims: Dict[Hashable, float] = {}
        self._tables: Dict[str, Dict[Hashable, Any]] = {}
        self._rejecting: Set[str] = set()
        self._events: List[LedgerEvent] = []

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def transaction(self) -> Iterator["InMemoryLedger"]:
        """Serialize and journal a unit of work; nested calls join the outer one."""

        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._snapshot = self._capture()
            self._depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    self._restore(self._snapshot)
                    logger.debug("Ledger transaction rolled back")
                raise
            finally:
                self._depth -= 1
                if outermost:
                    self._snapshot = None

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _capture(self) -> Dict[str, Any]:
        return {
            "balances": dict(self._balances),
            "nonces": {scope: set(values) for scope, values in self._nonces.items()},
            "claims": dict(self._claims),
            "tables": copy.deepcopy(self._tables),
            "events": len(self._events),
        }

    def _restore(self, snapshot: Optional[Dict[str, Any]]) -> None:
        if snapshot is None:
            return
        self._balances = snapshot["balances"]
        self._nonces = snapshot["nonces"]
        self._claims = snapshot["claims"]
        self._tables = snapshot["tables"]
        del self._events[snapshot["events"]:]

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------
    @staticmethod
    def _key(holder: str, token: str, token_id: int) -> BalanceKey:
        return (normalize_address(holder, field_name="holder"), normalize_address(token, field_name="token"), token_id)

    def balance_of(self, holder: str, token: str = NATIVE_TOKEN, token_id: int = 0) -> int:
        with self._lock:
            return self._balances.get(self._key(holder, token, token_id), 0)

    def credit(self, holder: str, token: str, amount: int, *, token_id: int = 0) -> None:
        if amount < 0:
            raise ConfigError("credit amount must be non-negative", reason="invalid_amount")
        with self._lock:
            key = self._key(holder, token, token_id)
            self._balances[key] = self._balances.get(key, 0) + amount

    def debit(self, holder: str, token: str, amount: int, *, token_id: int = 0) -> None:
        if amount < 0:
            raise ConfigError("debit amount must be non-negative", reason="invalid_amount")
        with self._lock:
            key = self._key(holder, token, token_id)
            available = self._balances.get(key, 0)
            if available < amount:
                raise FundsError(
                    f"insufficient balance: {available} < {amount}",
                    reason="insufficient_balance",
                    context={"holder": key[0], "token": key[1], "token_id": token_id},
                )
            self._balances[key] = available - amount

    def transfer(
        self,
        source: str,
        recipient: str,
        token: str,
        amount: int,
        *,
        kind: TokenKind = TokenKind.ERC20,
        token_id: int = 0,
    ) -> None:
        """Move ``amount`` of ``token`` and fail the way a reverting token call would."""

        with self._lock:
            recipient = normalize_address(recipient, field_name="recipient", allow_zero=False)
            if recipient in self._rejecting:
                raise FundsError(
                    f"receiver {recipient} rejected {kind.name} transfer",
                    reason="receiver_rejected",
                    context={"recipient": recipient, "token": token},
                )
            if kind is TokenKind.ERC721 and amount != 1:
                raise FundsError("ERC721 transfers move exactly one token", reason="invalid_amount")
            self.debit(source, token, amount, token_id=token_id)
            self.credit(recipient, token, amount, token_id=token_id)

    def reject_receipts_for(self, address: str, rejecting: bool = True) -> None:
        """Make ``address`` behave like a contract whose receive hook reverts."""

        address = normalize_address(address)
        with self._lock:
            if rejecting:
                self._rejecting.add(address)
            else:
                self._rejecting.discard(address)

    # ------------------------------------------------------------------
    # Consumption records
    # ------------------------------------------------------------------
    def is_nonce_used(self, scope: Hashable, nonce: int) -> bool:
        with self._lock:
            return nonce in self._nonces.get(scope, ())

    def mark_nonce_used(self, scope: Hashable, nonce: int) -> None:
        with self._lock:
            self._nonces.setdefault(scope, set()).add(nonce)

    def last_claimed_at(self, key: Hashable) -> Optional[float]:
        with self._lock:
            return self._claims.get(key)

    def record_claim(self, key: Hashable, timestamp: float) -> None:
        with self._lock:
            self._claims[key] = timestamp

    # ------------------------------------------------------------------
    # Keyed tables (registry and fee state)
    # ------------------------------------------------------------------
    def get(self, table: str, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._tables.get(table, {}).get(key, default)

    def put(self, table: str, key: Hashable, value: Any) -> None:
        with self._lock:
            self._tables.setdefault(table, {})[key] = value

    def delete(self, table: str, key: Hashable) -> None:
        with self._lock:
            self._tables.get(table, {}).pop(key, None)

    def rows(self, table: str) -> Dict[Hashable, Any]:
        with self._lock:
            return dict(self._tables.get(table, {}))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def emit(self, event: LedgerEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> Tuple[LedgerEvent, ...]:
        with self._lock:
            return tuple(self._events)


__all__ = ["InMemoryLedger"]
