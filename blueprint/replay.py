"""Replay prevention: one-shot nonces and per-claimant cooldown windows."""

from __future__ import annotations

from enum import Enum
from typing import Protocol, Tuple, Union

from .errors import ReplayError
from .models import ClaimRequest

# Repeatable (streak) quests may be claimed once per day.
CLAIM_INTERVAL = 86_400


class ReplayPolicy(str, Enum):
    NONCE = "nonce"
    COOLDOWN = "cooldown"


class NonceScope(str, Enum):
    GLOBAL = "global"
    SUBJECT = "subject"


class ConsumptionStore(Protocol):  # pragma: no cover - protocol
    """Subset of the ledger the guards read and write."""

    def is_nonce_used(self, scope: Tuple[str, Union[int, str]], nonce: int) -> bool:
        ...

    def mark_nonce_used(self, scope: Tuple[str, Union[int, str]], nonce: int) -> None:
        ...

    def last_claimed_at(self, key: Tuple[str, int, str]) -> float | None:
        ...

    def record_claim(self, key: Tuple[str, int, str], timestamp: float) -> None:
        ...


class NonceGuard:
    """Rejects a nonce that was already consumed within its scope."""

    policy = ReplayPolicy.NONCE

    def __init__(self, namespace: str, *, scope: NonceScope = NonceScope.GLOBAL) -> None:
        self._namespace = namespace
        self._scope = scope

    def _scope_key(self, claim: ClaimRequest) -> Tuple[str, Union[int, str]]:
        if self._scope is NonceScope.SUBJECT:
            return (self._namespace, claim.subject_id)
        return (self._namespace, "*")

    def check(self, store: ConsumptionStore, claim: ClaimRequest, now: float) -> None:
        if store.is_nonce_used(self._scope_key(claim), claim.nonce):
            raise ReplayError(
                f"nonce {claim.nonce} already used",
                reason="nonce_already_used",
                context={"nonce": claim.nonce, "subject_id": claim.subject_id},
            )

    def consume(self, store: ConsumptionStore, claim: ClaimRequest, now: float) -> None:
        self.check(store, claim, now)
        store.mark_nonce_used(self._scope_key(claim), claim.nonce)


class CooldownGuard:
    """Allows one claim per ``(subject, claimant)`` every ``interval`` seconds.

    The signed nonce is consumed as well, so an identical signed claim cannot
    be paid again once the window has passed.
    """

    policy = ReplayPolicy.COOLDOWN

    def __init__(
        self,
        namespace: str,
        *,
        interval: int = CLAIM_INTERVAL,
        nonce_scope: NonceScope = NonceScope.SUBJECT,
    ) -> None:
        if interval <= 0:
            raise ValueError("claim interval must be positive")
        self._namespace = namespace
        self.interval = interval
        self._nonces = NonceGuard(namespace, scope=nonce_scope)

    def _key(self, claim: ClaimRequest) -> Tuple[str, int, str]:
        return (self._namespace, claim.subject_id, claim.recipient)

    def time_left(self, store: ConsumptionStore, claim: ClaimRequest, now: float) -> float:
        last = store.last_claimed_at(self._key(claim))
        if last is None:
            return 0.0
        return max(0.0, last + self.interval - now)

    def check(self, store: ConsumptionStore, claim: ClaimRequest, now: float) -> None:
        remaining = self.time_left(store, claim, now)
        if remaining > 0:
            raise ReplayError(
                f"claim cooldown not expired ({int(remaining)}s left)",
                reason="claim_cooldown_not_expired",
                context={"time_left": remaining, "subject_id": claim.subject_id},
            )
        self._nonces.check(store, claim, now)

    def consume(self, store: ConsumptionStore, claim: ClaimRequest, now: float) -> None:
        self.check(store, claim, now)
        self._nonces.consume(store, claim, now)
        store.record_claim(self._key(claim), now)


ReplayGuard = Union[NonceGuard, CooldownGuard]


__all__ = [
    "CLAIM_INTERVAL",
    "ConsumptionStore",
    "CooldownGuard",
    "NonceGuard",
    "NonceScope",
    "ReplayGuard",
    "ReplayPolicy",
]
