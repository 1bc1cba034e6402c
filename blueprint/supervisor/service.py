"""Core claim-signing supervisor logic."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

from ..config import ClaimsConfig, ProtocolPolicy, load_config
from ..errors import ClaimError, ConfigError, StateError
from ..models import ClaimRequest
from ..protocols import ClaimProtocol, get_protocol
from ..signers import SignedClaim, Signer, sign_claim
from ..typed_data import digest, typed_data_payload

logger = logging.getLogger(__name__)


class SubjectReader(Protocol):
    """Answers whether a quest or item currently accepts claims."""

    async def __call__(self, protocol: ClaimProtocol, subject_id: int) -> bool:  # pragma: no cover - protocol helper
        ...


class ClaimSigningSupervisor:
    """Coordinates signing policy, config reloads, and metrics."""

    def __init__(
        self,
        *,
        config_path: Path,
        signer: Signer,
        subject_reader: Optional[SubjectReader] = None,
    ) -> None:
        self._config_path = Path(config_path)
        self._signer = signer
        self._subject_reader = subject_reader
        self._config = load_config(self._config_path)
        self._config_mtime = self._config_path.stat().st_mtime
        self._config_lock = asyncio.Lock()
        self._metrics_registry = CollectorRegistry()
        self._signed_claims = Counter(
            "signed_claims_total",
            "Count of claims signed",
            labelnames=("protocol",),
            registry=self._metrics_registry,
        )
        self._rejections = Counter(
            "claim_rejections_total",
            "Count of claim signing rejections",
            labelnames=("reason",),
            registry=self._metrics_registry,
        )
        self._reload_task: Optional[asyncio.Task[None]] = None

    @property
    def config(self) -> ClaimsConfig:
        return self._config

    @property
    def signer_address(self) -> str:
        return self._signer.address

    async def start(self) -> None:
        """Start background tasks such as config reloaders."""

        if self._reload_task and not self._reload_task.done():
            return
        self._reload_task = asyncio.create_task(self._reload_loop())

    async def close(self) -> None:
        if self._reload_task:
            self._reload_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reload_task

    async def _resolve(self, protocol_name: str) -> tuple[ClaimsConfig, ClaimProtocol, ProtocolPolicy]:
        async with self._config_lock:
            config = self._config
        protocol = get_protocol(protocol_name)
        policy = config.policy(protocol_name)
        return config, protocol, policy

    async def digest(self, protocol_name: str, message: Mapping[str, Any]) -> Dict[str, Any]:
        """Return the digest and typed-data document without signing."""

        try:
            config, protocol, policy = await self._resolve(protocol_name)
            claim = protocol.from_message(message, payment_token=policy.payment_token)
            canonical = protocol.to_message(claim)
        except ClaimError as exc:
            self._rejections.labels(exc.reason).inc()
            raise
        domain = config.domain(protocol_name)
        return {
            "protocol": protocol.name,
            "digest": "0x" + digest(domain, protocol.schema, canonical).hex(),
            "typedData": typed_data_payload(domain, protocol.schema, canonical),
        }

    async def sign(self, protocol_name: str, message: Mapping[str, Any]) -> SignedClaim:
        """Validate a claim against policy and, when eligible, sign it."""

        try:
            config, protocol, policy = await self._resolve(protocol_name)
            claim = protocol.from_message(message, payment_token=policy.payment_token)
            self._enforce_policy(protocol, policy, claim)
            if self._subject_reader is not None and not await self._subject_reader(protocol, claim.subject_id):
                raise StateError(
                    f"{protocol.subject_kind.value} {claim.subject_id} is not active",
                    reason="quest_inactive" if protocol.subject_kind.value == "quest" else "item_inactive",
                )
        except ClaimError as exc:
            self._rejections.labels(exc.reason).inc()
            logger.warning(
                "Claim signing rejected",
                extra={"context": {"protocol": protocol_name, "reason": exc.reason}},
            )
            raise

        signed = await sign_claim(self._signer, protocol, config.domain(protocol_name), claim)
        self._signed_claims.labels(protocol.name).inc()
        logger.info(
            "Claim signed",
            extra={"context": {"protocol": protocol.name, "digest": signed.digest, **claim.summary()}},
        )
        return signed

    def _enforce_policy(self, protocol: ClaimProtocol, policy: ProtocolPolicy, claim: ClaimRequest) -> None:
        if not policy.enabled:
            raise StateError(f"{protocol.name} signing is disabled", reason="claiming_inactive")
        reward = claim.reward
        if reward is not None and reward.amount:
            if policy.max_reward_amount is not None and reward.amount > policy.max_reward_amount:
                raise ConfigError("reward exceeds the configured maximum", reason="reward_too_large")
            if policy.allowed_reward_tokens and reward.token_address not in policy.allowed_reward_tokens:
                raise ConfigError("reward token is not allowed", reason="token_not_whitelisted")
            if reward.rake_bps > policy.max_rake_bps:
                raise ConfigError("rake exceeds the configured maximum", reason="bps_exceeds_max")
        price = claim.price
        if price is not None and policy.max_price_amount is not None and price.total > policy.max_price_amount:
            raise ConfigError("price exceeds the configured maximum", reason="price_too_large")

    def metrics(self) -> bytes:
        return generate_latest(self._metrics_registry)

    @property
    def metrics_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    async def health(self) -> Dict[str, Any]:
        config = self._config
        return {
            "status": "ok" if any(policy.enabled for policy in config.protocols.values()) else "degraded",
            "chainId": config.chain_id,
            "signer": self._signer.address,
            "protocols": {
                name: {"enabled": policy.enabled, "verifyingContract": policy.verifying_contract}
                for name, policy in config.protocols.items()
            },
        }

    async def _reload_loop(self) -> None:
        while True:
            await asyncio.sleep(max(1, self._config.reload_interval_seconds))
            try:
                stat = self._config_path.stat()
            except FileNotFoundError:
                continue
            if stat.st_mtime <= self._config_mtime:
                continue
            try:
                await self._reload()
            except ConfigError as exc:
                logger.error("Rejected config reload", extra={"context": {"reason": exc.reason, "error": str(exc)}})
                self._config_mtime = stat.st_mtime

    async def _reload(self) -> None:
        new_config = load_config(self._config_path)
        async with self._config_lock:
            self._config = new_config
            self._config_mtime = self._config_path.stat().st_mtime
        logger.info("Claims config reloaded", extra={"context": {"path": str(self._config_path)}})
