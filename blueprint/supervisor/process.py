"""FastAPI application exposing the claim-signing supervisor."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ..errors import AuthorizationError, ClaimError, ConfigError, FundsError, ReplayError, StateError
from ..kms import GoogleKMSClient
from ..protocols import ClaimProtocol
from ..registry import QuestEscrowRegistry
from ..signers import KMSSigner, LocalKeySigner, Signer
from .service import ClaimSigningSupervisor, SubjectReader

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (AuthorizationError, 403),
    (ReplayError, 409),
    (StateError, 409),
    (FundsError, 402),
    (ConfigError, 422),
)


class ClaimBody(BaseModel):
    """Request body for the digest and sign endpoints."""

    message: Dict[str, Any] = Field(..., description="EIP-712 message fields for the protocol's struct")


class StaticSubjectReader:
    """Reports every subject as active; useful for demos and testing."""

    def __init__(self, *, active: bool = True) -> None:
        self._active = active

    async def __call__(self, _protocol: ClaimProtocol, _subject_id: int) -> bool:
        return self._active

    def set_active(self, active: bool) -> None:
        self._active = active


class RegistrySubjectReader:
    """Reads subject activity from an in-process registry."""

    def __init__(self, registry: QuestEscrowRegistry, *, clock: Callable[[], float] = time.time) -> None:
        self._registry = registry
        self._clock = clock

    async def __call__(self, protocol: ClaimProtocol, subject_id: int) -> bool:
        try:
            self._registry.require_active(protocol.subject_kind, subject_id, self._clock(), protocol=protocol.name)
        except StateError:
            return False
        return True


def status_for(exc: ClaimError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


def create_app(
    *,
    config_path: str | Path = Path("config/claims.yaml"),
    signer: Optional[Signer] = None,
    subject_reader: Optional[SubjectReader] = None,
) -> FastAPI:
    """Instantiate the FastAPI application with a live supervisor."""

    supervisor = ClaimSigningSupervisor(
        config_path=Path(config_path),
        signer=signer or _select_signer(),
        subject_reader=subject_reader or StaticSubjectReader(),
    )
    app = FastAPI(title="Claim Signing Supervisor", version="0.1.0")

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - exercised in integration tests
        await supervisor.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - exercised in integration tests
        await supervisor.close()

    @app.exception_handler(ClaimError)
    async def _claim_error(_request: Request, exc: ClaimError) -> JSONResponse:
        return JSONResponse(status_code=status_for(exc), content={"detail": exc.to_dict()})

    async def get_supervisor() -> ClaimSigningSupervisor:
        return supervisor

    @app.get("/healthz")
    async def health(supervisor: ClaimSigningSupervisor = Depends(get_supervisor)) -> Dict[str, Any]:
        return await supervisor.health()

    @app.get("/readyz")
    async def ready(supervisor: ClaimSigningSupervisor = Depends(get_supervisor)) -> Dict[str, Any]:
        return await supervisor.health()

    @app.get("/metrics")
    async def metrics(supervisor: ClaimSigningSupervisor = Depends(get_supervisor)) -> Response:
        return Response(supervisor.metrics(), media_type=supervisor.metrics_content_type)

    @app.post("/v1/claims/{protocol}/digest")
    async def digest(
        protocol: str,
        body: ClaimBody,
        supervisor: ClaimSigningSupervisor = Depends(get_supervisor),
    ) -> Dict[str, Any]:
        return await supervisor.digest(protocol, body.message)

    @app.post("/v1/claims/{protocol}/sign")
    async def sign(
        protocol: str,
        body: ClaimBody,
        supervisor: ClaimSigningSupervisor = Depends(get_supervisor),
    ) -> Dict[str, Any]:
        signed = await supervisor.sign(protocol, body.message)
        return signed.to_dict()

    app.state.supervisor = supervisor
    return app


def _select_signer() -> Signer:
    """Return the signer implementation based on environment variables."""

    private_key = os.getenv("CLAIM_SIGNER_PRIVATE_KEY")
    if private_key:
        logger.info("Using local key signer from CLAIM_SIGNER_PRIVATE_KEY")
        return LocalKeySigner(private_key)

    kms_key = os.getenv("CLAIM_SIGNER_KMS_KEY_URI")
    if kms_key:
        address = os.getenv("CLAIM_SIGNER_ADDRESS")
        if not address:
            raise RuntimeError("CLAIM_SIGNER_KMS_KEY_URI requires CLAIM_SIGNER_ADDRESS")
        endpoint = os.getenv("CLAIM_SIGNER_KMS_ENDPOINT")
        region = os.getenv("CLAIM_SIGNER_KMS_REGION")
        if not endpoint and region:
            normalized_region = region.lower()
            endpoint = (
                "cloudkms.googleapis.com"
                if normalized_region == "global"
                else f"{region}-kms.googleapis.com"
            )
        try:
            client = GoogleKMSClient(endpoint=endpoint or None)
        except RuntimeError as exc:  # pragma: no cover - depends on optional dependency
            raise RuntimeError(
                "CLAIM_SIGNER_KMS_KEY_URI is set but google-cloud-kms is not installed"
            ) from exc
        logger.info("Using Google Cloud KMS signer", extra={"context": {"endpoint": endpoint, "address": address}})
        return KMSSigner(client, key_id=kms_key, address=address)

    account = Account.create()
    logger.warning(
        "No CLAIM_SIGNER_PRIVATE_KEY or CLAIM_SIGNER_KMS_KEY_URI provided; using an ephemeral key",
        extra={"context": {"address": account.address}},
    )
    return LocalKeySigner(account.key)
