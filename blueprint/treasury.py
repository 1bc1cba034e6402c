"""Protocol treasury: open donations, admin-only withdrawals."""

from __future__ import annotations

import logging

from .access import AccessControl, Action, require_capability
from .events import TreasuryMovement
from .ledger import InMemoryLedger
from .models import NATIVE_TOKEN, TokenKind, normalize_address

logger = logging.getLogger(__name__)


class Treasury:
    def __init__(self, address: str, ledger: InMemoryLedger, access: AccessControl) -> None:
        self.address = normalize_address(address, field_name="treasury", allow_zero=False)
        self._ledger = ledger
        self._access = access

    def balance(self, token: str = NATIVE_TOKEN) -> int:
        return self._ledger.balance_of(self.address, token)

    def donate(self, source: str, token: str, amount: int) -> None:
        """Anyone may fund the treasury with native currency or an ERC20."""

        kind = TokenKind.NATIVE if normalize_address(token) == NATIVE_TOKEN else TokenKind.ERC20
        with self._ledger.transaction():
            self._ledger.transfer(source, self.address, token, amount, kind=kind)
            self._ledger.emit(TreasuryMovement(direction="in", account=normalize_address(source), token=token, amount=amount))
        logger.info("Treasury donation", extra={"context": {"source": source, "token": token, "amount": amount}})

    def _withdraw(self, caller: str, token: str, to: str, amount: int, kind: TokenKind) -> None:
        require_capability(self._access, caller, Action.MANAGE_TREASURY)
        to = normalize_address(to, field_name="receiver", allow_zero=False)
        with self._ledger.transaction():
            self._ledger.transfer(self.address, to, token, amount, kind=kind)
            self._ledger.emit(TreasuryMovement(direction="out", account=to, token=token, amount=amount))
        logger.info(
            "Treasury withdrawal",
            extra={"context": {"caller": caller, "to": to, "token": token, "amount": amount}},
        )

    def withdraw_native(self, caller: str, to: str, amount: int) -> None:
        self._withdraw(caller, NATIVE_TOKEN, to, amount, TokenKind.NATIVE)

    def withdraw_token(self, caller: str, token: str, to: str, amount: int) -> None:
        self._withdraw(caller, normalize_address(token, field_name="token", allow_zero=False), to, amount, TokenKind.ERC20)

    def grant_role(self, caller: str, role: bytes, account: str) -> None:
        self._access.grant_role(caller, role, account)

    def revoke_role(self, caller: str, role: bytes, account: str) -> None:
        self._access.revoke_role(caller, role, account)


__all__ = ["Treasury"]
