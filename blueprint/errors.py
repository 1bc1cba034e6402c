"""Exception taxonomy shared by the claim verifier, settlement engine and registry."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ClaimError(Exception):
    """Base class for every terminal claim failure.

    ``reason`` is a stable snake_case code that clients can branch on without
    parsing the message.
    """

    default_reason = "claim_error"

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason or self.default_reason
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "reason": self.reason,
            "message": str(self),
        }


class AuthorizationError(ClaimError):
    """Bad signature, signer without the signer role, or missing admin role."""

    default_reason = "unauthorized"


class ReplayError(ClaimError):
    """Nonce already consumed or claim cooldown still running."""

    default_reason = "nonce_already_used"


class StateError(ClaimError):
    """Subject inactive, unregistered or already registered."""

    default_reason = "invalid_state"


class FundsError(ClaimError):
    """Insufficient balance, rejected transfer or failed token call."""

    default_reason = "insufficient_balance"


class InsufficientSupplyError(FundsError):
    """Raised when a purchase asks for more units than remain."""

    default_reason = "insufficient_supply"


class ConfigError(ClaimError, ValueError):
    """Invalid parameters: zero addresses, inverted windows, bps over 100%."""

    default_reason = "invalid_config"


__all__ = [
    "AuthorizationError",
    "ClaimError",
    "ConfigError",
    "FundsError",
    "InsufficientSupplyError",
    "ReplayError",
    "StateError",
]
