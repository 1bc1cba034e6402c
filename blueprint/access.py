"""Role-based capability checks backed by an access-control collaborator."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, Iterable, Protocol, Set, Tuple

from eth_utils import keccak

from .errors import AuthorizationError
from .models import normalize_address

logger = logging.getLogger(__name__)


def role_id(name: str) -> bytes:
    """``keccak256(name)``, the way the contracts derive role identifiers."""

    return keccak(text=name)


DEFAULT_ADMIN_ROLE = b"\x00" * 32
SIGNER_ROLE = role_id("SIGNER_ROLE")
CREATOR_ROLE = role_id("CREATOR_ROLE")
FACTORY_ROLE = role_id("FACTORY_ROLE")
UPGRADER_ROLE = role_id("UPGRADER_ROLE")

ROLE_NAMES: Dict[bytes, str] = {
    DEFAULT_ADMIN_ROLE: "DEFAULT_ADMIN_ROLE",
    SIGNER_ROLE: "SIGNER_ROLE",
    CREATOR_ROLE: "CREATOR_ROLE",
    FACTORY_ROLE: "FACTORY_ROLE",
    UPGRADER_ROLE: "UPGRADER_ROLE",
}


class Action(str, Enum):
    SIGN_CLAIMS = "sign_claims"
    CREATE_ESCROW = "create_escrow"
    REGISTER_QUEST = "register_quest"
    TOGGLE_ESCROW = "toggle_escrow"
    MANAGE_WHITELIST = "manage_whitelist"
    WITHDRAW_FUNDS = "withdraw_funds"
    MANAGE_QUESTS = "manage_quests"
    TOGGLE_CLAIMING = "toggle_claiming"
    MANAGE_FEES = "manage_fees"
    MANAGE_ITEMS = "manage_items"
    MANAGE_TREASURY = "manage_treasury"
    MANAGE_ROLES = "manage_roles"


# Any one of the listed roles grants the action.
CAPABILITIES: Dict[Action, Tuple[bytes, ...]] = {
    Action.SIGN_CLAIMS: (SIGNER_ROLE,),
    Action.CREATE_ESCROW: (DEFAULT_ADMIN_ROLE, FACTORY_ROLE),
    Action.REGISTER_QUEST: (DEFAULT_ADMIN_ROLE, FACTORY_ROLE),
    Action.TOGGLE_ESCROW: (DEFAULT_ADMIN_ROLE,),
    Action.MANAGE_WHITELIST: (DEFAULT_ADMIN_ROLE,),
    Action.WITHDRAW_FUNDS: (DEFAULT_ADMIN_ROLE,),
    Action.MANAGE_QUESTS: (SIGNER_ROLE, DEFAULT_ADMIN_ROLE),
    Action.TOGGLE_CLAIMING: (DEFAULT_ADMIN_ROLE,),
    Action.MANAGE_FEES: (DEFAULT_ADMIN_ROLE,),
    Action.MANAGE_ITEMS: (DEFAULT_ADMIN_ROLE, CREATOR_ROLE),
    Action.MANAGE_TREASURY: (DEFAULT_ADMIN_ROLE,),
    Action.MANAGE_ROLES: (DEFAULT_ADMIN_ROLE,),
}


class AccessControl(Protocol):  # pragma: no cover - protocol
    """The access-control collaborator (on-chain ``AccessControl`` or a stand-in)."""

    def has_role(self, role: bytes, account: str) -> bool:
        ...

    def grant_role(self, caller: str, role: bytes, account: str) -> None:
        ...

    def revoke_role(self, caller: str, role: bytes, account: str) -> None:
        ...


class RoleRegistry:
    """In-memory role table with OpenZeppelin semantics (admin of every role is
    ``DEFAULT_ADMIN_ROLE``)."""

    def __init__(self, admins: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._members: Dict[bytes, Set[str]] = {}
        for admin in admins:
            self._members.setdefault(DEFAULT_ADMIN_ROLE, set()).add(normalize_address(admin))

    def has_role(self, role: bytes, account: str) -> bool:
        try:
            account = normalize_address(account)
        except ValueError:
            return False
        with self._lock:
            return account in self._members.get(role, set())

    def members(self, role: bytes) -> Set[str]:
        with self._lock:
            return set(self._members.get(role, set()))

    def grant_role(self, caller: str, role: bytes, account: str) -> None:
        self._require_admin(caller, role)
        account = normalize_address(account, field_name="account", allow_zero=False)
        with self._lock:
            self._members.setdefault(role, set()).add(account)
        logger.info(
            "Role granted",
            extra={"context": {"role": ROLE_NAMES.get(role, role.hex()), "account": account, "sender": caller}},
        )

    def revoke_role(self, caller: str, role: bytes, account: str) -> None:
        self._require_admin(caller, role)
        account = normalize_address(account, field_name="account")
        with self._lock:
            self._members.get(role, set()).discard(account)
        logger.info(
            "Role revoked",
            extra={"context": {"role": ROLE_NAMES.get(role, role.hex()), "account": account, "sender": caller}},
        )

    def renounce_role(self, role: bytes, account: str) -> None:
        account = normalize_address(account, field_name="account")
        with self._lock:
            self._members.get(role, set()).discard(account)

    def _require_admin(self, caller: str, role: bytes) -> None:
        if not self.has_role(DEFAULT_ADMIN_ROLE, caller):
            raise AuthorizationError(
                f"{caller} is missing role DEFAULT_ADMIN_ROLE",
                reason="unauthorized",
                context={"role": ROLE_NAMES.get(role, role.hex())},
            )


def has_capability(access: AccessControl, account: str, action: Action) -> bool:
    return any(access.has_role(role, account) for role in CAPABILITIES[action])


def require_capability(access: AccessControl, account: str, action: Action) -> None:
    if not has_capability(access, account, action):
        raise AuthorizationError(
            f"{account} may not {action.value.replace('_', ' ')}",
            reason="not_signer" if action is Action.SIGN_CLAIMS else "unauthorized",
            context={"account": account, "action": action.value},
        )


__all__ = [
    "AccessControl",
    "Action",
    "CAPABILITIES",
    "CREATOR_ROLE",
    "DEFAULT_ADMIN_ROLE",
    "FACTORY_ROLE",
    "ROLE_NAMES",
    "RoleRegistry",
    "SIGNER_ROLE",
    "UPGRADER_ROLE",
    "has_capability",
    "require_capability",
    "role_id",
]
