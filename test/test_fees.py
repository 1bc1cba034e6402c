from __future__ import annotations

import pytest

from blueprint.errors import AuthorizationError, ConfigError
from blueprint.events import FeeConfigUpdated, events_of
from blueprint.fees import FeeConfig, FeeLine, FeeRole, split_amount

from support import ADMIN, CLAIMANT, FEE_A, FEE_B, TREASURY


def test_split_orders_lines_by_role_and_floors_each_share() -> None:
    lines = [
        FeeLine(FeeRole.CUSTOM, FEE_B, 1),
        FeeLine(FeeRole.PLATFORM, FEE_A, 250),
        FeeLine(FeeRole.CREATOR, TREASURY, 0),
    ]

    split = split_amount(101, lines, CLAIMANT)

    assert [share.role for share in split.shares] == [FeeRole.PLATFORM, FeeRole.CUSTOM, FeeRole.NET]
    assert [share.amount for share in split.shares] == [2, 0, 99]
    assert split.fee_total + split.net == 101
    assert split.amount_for(CLAIMANT) == 99


def test_split_of_zero_is_all_zero() -> None:
    split = split_amount(0, [FeeLine(FeeRole.PLATFORM, FEE_A, 5000)], CLAIMANT)

    assert split.fee_total == 0
    assert split.net == 0
    assert split.remainder == 0


def test_split_rejects_more_than_full_amount() -> None:
    with pytest.raises(ConfigError) as excinfo:
        split_amount(100, [FeeLine(FeeRole.PLATFORM, FEE_A, 6000), FeeLine(FeeRole.CUSTOM, FEE_B, 4001)], CLAIMANT)
    assert excinfo.value.reason == "bps_exceeds_max"


def test_full_fee_leaves_nothing_for_net_recipient() -> None:
    split = split_amount(77, [FeeLine(FeeRole.CUSTOM, FEE_A, 10_000)], CLAIMANT)

    assert split.amount_for(FEE_A) == 77
    assert split.net == 0


def test_fee_config_validation() -> None:
    with pytest.raises(ConfigError) as excinfo:
        FeeConfig(treasury="0x0000000000000000000000000000000000000000")
    assert excinfo.value.reason == "zero_address"

    with pytest.raises(ConfigError) as excinfo:
        FeeConfig(treasury=TREASURY, creator_bps=100)
    assert excinfo.value.reason == "zero_address"

    with pytest.raises(ConfigError) as excinfo:
        FeeConfig(treasury=TREASURY, blueprint_recipient=FEE_A, blueprint_bps=6000, creator_recipient=FEE_B, creator_bps=5000)
    assert excinfo.value.reason == "bps_exceeds_max"


def test_fee_config_from_mapping_accepts_contract_names() -> None:
    config = FeeConfig.from_mapping(
        {
            "treasury": TREASURY,
            "blueprintRecipient": FEE_A,
            "blueprintFeeBasisPoints": "250",
            "rewardPoolRecipient": FEE_B,
            "rewardPoolBasisPoints": 100,
        }
    )

    assert config.blueprint_bps == 250
    assert config.reward_pool_bps == 100
    assert config.total_bps == 350

    with pytest.raises(ConfigError) as excinfo:
        FeeConfig.from_mapping({"creatorBasisPoints": 1})
    assert excinfo.value.reason == "treasury_not_set"


def test_fee_store_requires_admin(world) -> None:
    with pytest.raises(AuthorizationError):
        world.fees.set_default(CLAIMANT, FeeConfig(treasury=TREASURY))


def test_fee_store_overrides_and_removal(world) -> None:
    override = FeeConfig(treasury=FEE_A)
    world.fees.set_override(ADMIN, 3, override)

    assert world.fees.has_override(3)
    assert world.fees.effective(3) == override
    assert world.fees.effective(4) == world.fees.default
    assert world.fees.effective(None) == world.fees.default

    world.fees.remove_override(ADMIN, 3)
    assert not world.fees.has_override(3)
    updates = events_of(world.ledger.events, FeeConfigUpdated)
    assert [(event.subject_id, event.removed) for event in updates] == [(3, False), (3, True)]


def test_fee_override_rolls_back_with_ledger(world) -> None:
    with pytest.raises(RuntimeError):
        with world.ledger.transaction():
            world.fees.set_override(ADMIN, 5, FeeConfig(treasury=FEE_A))
            raise RuntimeError("abort")

    assert not world.fees.has_override(5)
