from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from eth_utils import to_checksum_address

from blueprint.config import ChainSettings, ClaimsConfig, ProtocolPolicy, load_config
from blueprint.errors import ConfigError
from blueprint.logging_utils import JsonFormatter

from support import CONTRACTS, TOKEN, TREASURY


def test_claims_config_accepts_both_key_styles() -> None:
    config = ClaimsConfig.from_mapping(
        {
            "chainId": 8453,
            "claimIntervalSeconds": 3600,
            "protocols": {
                "incentive": {"verifyingContract": CONTRACTS["incentive"], "allowedRewardTokens": [TOKEN]},
                "storefront": {"verifying_contract": CONTRACTS["storefront"], "max_price_amount": "500"},
            },
            "fees": {"treasury": TREASURY},
        }
    )

    assert config.claim_interval_seconds == 3600
    assert config.policy("incentive").allowed_reward_tokens == [to_checksum_address(TOKEN)]
    assert config.policy("storefront").max_price_amount == 500
    assert config.fees is not None and config.fees.total_bps == 0

    domain = config.domain("storefront")
    assert domain.name == "BLUEPRINT_STORE"
    assert domain.chain_id == 8453


def test_policy_lookup_errors() -> None:
    config = ClaimsConfig.from_mapping({"chain_id": 1, "protocols": {"cube": {"verifying_contract": CONTRACTS["cube"]}}})

    with pytest.raises(ConfigError) as excinfo:
        config.policy("incentive")
    assert excinfo.value.reason == "unknown_protocol"

    with pytest.raises(ConfigError) as excinfo:
        config.policy("raffle")
    assert excinfo.value.reason == "unknown_protocol"


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"chain_id": 0},
        {"chain_id": 1, "reload_interval_seconds": 0},
        {"chain_id": 1, "claim_interval_seconds": -5},
        {"chain_id": 1, "protocols": {"cube": {}}},
    ],
)
def test_invalid_claims_config(data) -> None:
    with pytest.raises(ConfigError):
        ClaimsConfig.from_mapping(data)


def test_protocol_policy_validation() -> None:
    with pytest.raises(ConfigError):
        ProtocolPolicy(verifying_contract="0x0000000000000000000000000000000000000000")
    with pytest.raises(ConfigError) as excinfo:
        ProtocolPolicy(verifying_contract=CONTRACTS["cube"], max_rake_bps=10_001)
    assert excinfo.value.reason == "bps_exceeds_max"
    with pytest.raises(ConfigError) as excinfo:
        ProtocolPolicy(verifying_contract=CONTRACTS["cube"], max_reward_amount=-1)
    assert excinfo.value.reason == "invalid_amount"


def test_load_config_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "claims.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError):
        load_config(path)


def test_chain_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.setenv("PRIVATE_KEY", "0x" + "11" * 32)
    monkeypatch.setenv("CHAIN_ID", "0x2105")
    monkeypatch.setenv("CUBE_ADDRESS", CONTRACTS["cube"])
    monkeypatch.delenv("INCENTIVE_PROXY_ADDRESS", raising=False)

    settings = ChainSettings.from_env()

    assert settings.chain_id == 8453
    assert settings.contract("cube") == to_checksum_address(CONTRACTS["cube"])
    with pytest.raises(ConfigError):
        settings.contract("incentive")


def test_chain_settings_require_key(monkeypatch) -> None:
    monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.delenv("PRIVATE_KEY", raising=False)

    with pytest.raises(ConfigError):
        ChainSettings.from_env()
    assert ChainSettings.from_env(require_key=False).private_key is None


def test_invalid_chain_id_env_falls_back_to_default(monkeypatch) -> None:
    monkeypatch.setenv("RPC_URL", "http://127.0.0.1:8545")
    monkeypatch.setenv("CHAIN_ID", "base")

    assert ChainSettings.from_env(require_key=False).chain_id == 84532


def test_json_formatter_keeps_context() -> None:
    record = logging.LogRecord("blueprint.test", logging.INFO, __file__, 1, "Claim signed", None, None)
    record.context = {"protocol": "cube", "nonce": 42}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Claim signed"
    assert payload["level"] == "INFO"
    assert payload["context"] == {"protocol": "cube", "nonce": 42}
