import asyncio
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml
from fastapi.testclient import TestClient

from blueprint.errors import ConfigError, StateError
from blueprint.protocols import CUBE
from blueprint.signers import LocalKeySigner
from blueprint.supervisor import ClaimSigningSupervisor, RegistrySubjectReader, StaticSubjectReader, create_app

from support import CONTRACTS, QUEST_ID, SIGNER_KEY, TOKEN, build_world, cube_claim


def _write_config(path: Path, overrides: Dict[str, Any] | None = None) -> None:
    base: Dict[str, Any] = {
        "chain_id": 84532,
        "reload_interval_seconds": 1,
        "protocols": {
            "cube": {
                "verifying_contract": CONTRACTS["cube"],
                "max_reward_amount": 1_000,
                "max_rake_bps": 500,
            },
            "storefront": {"verifyingContract": CONTRACTS["storefront"]},
        },
    }
    if overrides:
        base.update(overrides)
    path.write_text(yaml.safe_dump(base))


def _cube_message(**kwargs: Any) -> Dict[str, Any]:
    return CUBE.to_message(cube_claim(**kwargs))


def _supervisor(config_path: Path, **kwargs: Any) -> ClaimSigningSupervisor:
    return ClaimSigningSupervisor(config_path=config_path, signer=LocalKeySigner(SIGNER_KEY), **kwargs)


def test_signed_claim_verifies_in_process(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path)
    supervisor = _supervisor(config_path)
    world = build_world()

    signed = asyncio.run(supervisor.sign("cube", _cube_message()))
    claim = CUBE.from_message(signed.typed_data["message"])
    world.processor(CUBE).submit(claim, signed.signature)

    assert world.ledger.is_nonce_used(("cube", "*"), 42)


def test_policy_limits_are_enforced(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path)
    supervisor = _supervisor(config_path)

    with pytest.raises(ConfigError) as excinfo:
        asyncio.run(supervisor.sign("cube", _cube_message(amount=5_000)))
    assert excinfo.value.reason == "reward_too_large"

    with pytest.raises(ConfigError) as excinfo:
        asyncio.run(supervisor.sign("incentive", _cube_message()))
    assert excinfo.value.reason == "unknown_protocol"

    assert b'claim_rejections_total{reason="reward_too_large"} 1.0' in supervisor.metrics()


def test_hot_reload_changes_policy(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path)
    supervisor = _supervisor(config_path)

    asyncio.run(supervisor.sign("cube", _cube_message()))

    protocols = {
        "cube": {"verifying_contract": CONTRACTS["cube"], "enabled": False},
    }
    _write_config(config_path, {"protocols": protocols})
    asyncio.run(supervisor._reload())  # trigger reload manually in tests

    with pytest.raises(StateError) as excinfo:
        asyncio.run(supervisor.sign("cube", _cube_message()))
    assert excinfo.value.reason == "claiming_inactive"


def test_invalid_config_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path, {"protocols": {"raffle": {"verifying_contract": CONTRACTS["cube"]}}})

    with pytest.raises(ConfigError):
        _supervisor(config_path)


def test_subject_reader_gates_signing(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path)
    reader = StaticSubjectReader(active=False)
    supervisor = _supervisor(config_path, subject_reader=reader)

    with pytest.raises(StateError):
        asyncio.run(supervisor.sign("cube", _cube_message()))

    reader.set_active(True)
    asyncio.run(supervisor.sign("cube", _cube_message()))


def test_registry_subject_reader(tmp_path: Path) -> None:
    world = build_world()
    reader = RegistrySubjectReader(world.registry, clock=world.clock)

    assert asyncio.run(reader(CUBE, QUEST_ID))
    assert not asyncio.run(reader(CUBE, 404))


def test_allowed_reward_tokens(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(
        config_path,
        {"protocols": {"cube": {"verifying_contract": CONTRACTS["cube"], "allowed_reward_tokens": [TOKEN]}}},
    )
    supervisor = _supervisor(config_path)

    with pytest.raises(ConfigError) as excinfo:
        asyncio.run(supervisor.sign("cube", _cube_message()))
    assert excinfo.value.reason == "token_not_whitelisted"


def test_http_endpoints(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path)
    app = create_app(config_path=config_path, signer=LocalKeySigner(SIGNER_KEY))

    with TestClient(app) as client:
        health = client.get("/healthz").json()
        assert health["status"] == "ok"
        assert health["chainId"] == 84532

        digest = client.post("/v1/claims/cube/digest", json={"message": _cube_message()})
        assert digest.status_code == 200

        signed = client.post("/v1/claims/cube/sign", json={"message": _cube_message()})
        assert signed.status_code == 200
        assert signed.json()["digest"] == digest.json()["digest"]

        rejected = client.post("/v1/claims/cube/sign", json={"message": _cube_message(amount=5_000)})
        assert rejected.status_code == 422
        assert rejected.json()["detail"]["reason"] == "reward_too_large"

        missing = client.post("/v1/claims/cube/sign", json={"message": {"questId": 1}})
        assert missing.status_code == 422

        metrics = client.get("/metrics")
        assert b'signed_claims_total{protocol="cube"} 1.0' in metrics.content


def test_inactive_subject_maps_to_conflict(tmp_path: Path) -> None:
    config_path = tmp_path / "claims.yaml"
    _write_config(config_path)
    app = create_app(
        config_path=config_path,
        signer=LocalKeySigner(SIGNER_KEY),
        subject_reader=StaticSubjectReader(active=False),
    )

    with TestClient(app) as client:
        response = client.post("/v1/claims/cube/sign", json={"message": _cube_message()})

    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "quest_inactive"
