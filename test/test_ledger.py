from __future__ import annotations

import threading

import pytest

from blueprint.access import DEFAULT_ADMIN_ROLE, SIGNER_ROLE, Action, RoleRegistry, has_capability
from blueprint.errors import AuthorizationError, FundsError
from blueprint.events import TreasuryMovement, events_of
from blueprint.ledger import InMemoryLedger
from blueprint.models import NATIVE_TOKEN, TokenKind
from blueprint.treasury import Treasury

from support import ADMIN, CLAIMANT, FEE_A, TOKEN, TREASURY


def test_transaction_rolls_back_every_table() -> None:
    ledger = InMemoryLedger()
    ledger.credit(CLAIMANT, NATIVE_TOKEN, 10)

    with pytest.raises(FundsError):
        with ledger.transaction():
            ledger.transfer(CLAIMANT, FEE_A, NATIVE_TOKEN, 4)
            ledger.mark_nonce_used(("cube", "*"), 1)
            ledger.put("items", 1, "listed")
            ledger.transfer(CLAIMANT, FEE_A, NATIVE_TOKEN, 100)

    assert ledger.balance_of(CLAIMANT) == 10
    assert ledger.balance_of(FEE_A) == 0
    assert not ledger.is_nonce_used(("cube", "*"), 1)
    assert ledger.get("items", 1) is None
    assert not ledger.in_transaction


def test_nested_transactions_join_the_outer_one() -> None:
    ledger = InMemoryLedger()

    with pytest.raises(RuntimeError):
        with ledger.transaction():
            with ledger.transaction():
                ledger.credit(CLAIMANT, NATIVE_TOKEN, 5)
            assert ledger.balance_of(CLAIMANT) == 5
            raise RuntimeError("outer failure")

    assert ledger.balance_of(CLAIMANT) == 0


def test_erc721_transfer_moves_exactly_one() -> None:
    ledger = InMemoryLedger()
    ledger.credit(CLAIMANT, TOKEN, 1, token_id=3)

    with pytest.raises(FundsError) as excinfo:
        ledger.transfer(CLAIMANT, FEE_A, TOKEN, 2, kind=TokenKind.ERC721, token_id=3)
    assert excinfo.value.reason == "invalid_amount"


def test_concurrent_consumers_serialize() -> None:
    ledger = InMemoryLedger()
    ledger.credit(CLAIMANT, NATIVE_TOKEN, 100)
    failures = []

    def spend() -> None:
        try:
            ledger.transfer(CLAIMANT, FEE_A, NATIVE_TOKEN, 1)
        except FundsError as exc:
            failures.append(exc)

    threads = [threading.Thread(target=spend) for _ in range(150)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ledger.balance_of(FEE_A) == 100
    assert len(failures) == 50


def test_role_registry_admin_semantics() -> None:
    roles = RoleRegistry([ADMIN])

    assert roles.has_role(DEFAULT_ADMIN_ROLE, ADMIN)
    assert not has_capability(roles, CLAIMANT, Action.SIGN_CLAIMS)
    with pytest.raises(AuthorizationError):
        roles.grant_role(CLAIMANT, SIGNER_ROLE, CLAIMANT)

    roles.grant_role(ADMIN, SIGNER_ROLE, CLAIMANT)
    assert has_capability(roles, CLAIMANT, Action.SIGN_CLAIMS)
    roles.renounce_role(SIGNER_ROLE, CLAIMANT)
    assert not roles.has_role(SIGNER_ROLE, CLAIMANT)
    assert not roles.has_role(SIGNER_ROLE, "garbage")


def test_treasury_donations_and_withdrawals() -> None:
    ledger = InMemoryLedger()
    roles = RoleRegistry([ADMIN])
    treasury = Treasury(TREASURY, ledger, roles)
    ledger.credit(CLAIMANT, NATIVE_TOKEN, 50)
    ledger.credit(CLAIMANT, TOKEN, 70)

    treasury.donate(CLAIMANT, NATIVE_TOKEN, 50)
    treasury.donate(CLAIMANT, TOKEN, 70)
    assert treasury.balance() == 50
    assert treasury.balance(TOKEN) == 70

    with pytest.raises(AuthorizationError):
        treasury.withdraw_native(CLAIMANT, CLAIMANT, 1)

    treasury.withdraw_native(ADMIN, FEE_A, 20)
    treasury.withdraw_token(ADMIN, TOKEN, FEE_A, 70)
    assert ledger.balance_of(FEE_A) == 20
    assert ledger.balance_of(FEE_A, TOKEN) == 70

    with pytest.raises(FundsError):
        treasury.withdraw_native(ADMIN, FEE_A, 31)

    movements = events_of(ledger.events, TreasuryMovement)
    assert [movement.direction for movement in movements] == ["in", "in", "out", "out"]


def test_treasury_role_management_goes_through_access_control() -> None:
    roles = RoleRegistry([ADMIN])
    treasury = Treasury(TREASURY, InMemoryLedger(), roles)

    treasury.grant_role(ADMIN, DEFAULT_ADMIN_ROLE, CLAIMANT)
    treasury.withdraw_native(CLAIMANT, FEE_A, 0)
    treasury.revoke_role(ADMIN, DEFAULT_ADMIN_ROLE, CLAIMANT)

    with pytest.raises(AuthorizationError):
        treasury.withdraw_native(CLAIMANT, FEE_A, 0)
