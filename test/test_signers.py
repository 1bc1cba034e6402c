from __future__ import annotations

import asyncio

import pytest
from eth_account import Account
from eth_keys import keys
from eth_utils import keccak, to_bytes

from blueprint.protocols import CUBE
from blueprint.signers import KMSSigner, LocalKeySigner, decode_der_signature, sign_claim
from blueprint.typed_data import signable_message
from blueprint.verifier import SECP256K1_HALF_N, SECP256K1_N

from support import CHAIN_ID, CONTRACTS, SIGNER_KEY, cube_claim


def _der_integer(value: int) -> bytes:
    raw = value.to_bytes((value.bit_length() + 7) // 8 or 1, "big")
    if raw[0] & 0x80:
        raw = b"\x00" + raw
    return b"\x02" + bytes([len(raw)]) + raw


def _der(r: int, s: int) -> bytes:
    body = _der_integer(r) + _der_integer(s)
    return b"\x30" + bytes([len(body)]) + body


class FakeKMS:
    """Signs like Cloud KMS: DER output, no low-s normalization."""

    def __init__(self, private_key: str, *, high_s: bool = False) -> None:
        self._key = keys.PrivateKey(to_bytes(hexstr=private_key))
        self._high_s = high_s
        self.calls = []

    async def sign_digest(self, *, key_id: str, digest: bytes) -> bytes:
        self.calls.append((key_id, digest))
        await asyncio.sleep(0)
        signature = self._key.sign_msg_hash(digest)
        s = SECP256K1_N - signature.s if self._high_s else signature.s
        return _der(signature.r, s)


def test_local_signer_matches_eth_account() -> None:
    signer = LocalKeySigner(SIGNER_KEY)
    digest = keccak(text="claim")

    signature = asyncio.run(signer.sign_digest(digest))

    assert len(signature) == 65
    assert signature[64] in (27, 28)
    assert signer.address == Account.from_key(SIGNER_KEY).address


def test_decode_der_signature() -> None:
    assert decode_der_signature(_der(1, 2**255)) == (1, 2**255)

    with pytest.raises(ValueError):
        decode_der_signature(b"\x31\x00")
    with pytest.raises(ValueError):
        decode_der_signature(b"\x30\x06\x02\x01")
    with pytest.raises(ValueError):
        decode_der_signature(bytes([0x30, 0x44, 0x02, 0x01, 0x05, 0x02, 0x40, 0x07]))


@pytest.mark.parametrize("high_s", [False, True])
def test_kms_signer_produces_canonical_ethereum_signature(high_s: bool) -> None:
    address = Account.from_key(SIGNER_KEY).address
    client = FakeKMS(SIGNER_KEY, high_s=high_s)
    kms = KMSSigner(client, key_id="projects/p/locations/global/keyRings/r/cryptoKeys/k/cryptoKeyVersions/1", address=address)
    digest = keccak(text="cube")

    signature = asyncio.run(kms.sign_digest(digest))
    expected = asyncio.run(LocalKeySigner(SIGNER_KEY).sign_digest(digest))

    assert signature == expected
    assert int.from_bytes(signature[32:64], "big") <= SECP256K1_HALF_N
    assert client.calls[0][1] == digest


def test_kms_signer_rejects_foreign_key() -> None:
    other = Account.create().address
    kms = KMSSigner(FakeKMS(SIGNER_KEY), key_id="key", address=other)

    with pytest.raises(ValueError):
        asyncio.run(kms.sign_digest(keccak(text="x")))


def test_sign_claim_recovers_to_signer() -> None:
    signer = LocalKeySigner(SIGNER_KEY)
    domain = CUBE.domain(CHAIN_ID, CONTRACTS["cube"])
    claim = cube_claim()

    signed = asyncio.run(sign_claim(signer, CUBE, domain, claim))

    recovered = Account.recover_message(
        signable_message(domain, CUBE.schema, CUBE.to_message(claim)), signature=signed.signature
    )
    assert recovered == signer.address
    assert signed.to_dict()["typedData"]["primaryType"] == "CubeData"
    assert signed.digest.startswith("0x")
