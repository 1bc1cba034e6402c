"""Google Cloud KMS adapter for secp256k1 claim-signing keys."""

from __future__ import annotations

from typing import Optional

try:  # pragma: no cover - optional dependency
    from google.api_core.client_options import ClientOptions
    from google.cloud import kms_v1
except Exception:  # pragma: no cover - allow library-free installs
    ClientOptions = None  # type: ignore[assignment]
    kms_v1 = None  # type: ignore[assignment]

DIGEST_SIZE = 32


class GoogleKMSClient:
    """Signs claim digests with an ``EC_SIGN_SECP256K1_SHA256`` key version.

    KMS signs the 32 bytes it receives without hashing them again, so the
    keccak claim digest travels in the ``sha256`` slot of the request. The
    response is a DER signature; :class:`blueprint.signers.KMSSigner` turns it
    into the 65-byte Ethereum form.

    ``endpoint`` overrides the regional API host, e.g.
    ``us-east1-kms.googleapis.com``.
    """

    def __init__(self, *, endpoint: Optional[str] = None) -> None:
        if kms_v1 is None:  # pragma: no cover - depends on optional dependency
            raise RuntimeError("google-cloud-kms must be installed to sign claims with Cloud KMS")

        options = ClientOptions(api_endpoint=endpoint) if endpoint else None
        self._client = kms_v1.KeyManagementServiceAsyncClient(client_options=options)

    async def sign_digest(self, *, key_id: str, digest: bytes) -> bytes:
        if len(digest) != DIGEST_SIZE:
            raise ValueError(f"claim digests are {DIGEST_SIZE} bytes, got {len(digest)}")
        request = kms_v1.AsymmetricSignRequest(name=key_id, digest=kms_v1.Digest(sha256=digest))
        response = await self._client.asymmetric_sign(request=request)
        return bytes(response.signature)


__all__ = ["DIGEST_SIZE", "GoogleKMSClient"]
