from __future__ import annotations

import pytest

from blueprint.errors import ConfigError
from blueprint.models import ClaimRequest, FeeRecipient, PriceSpec, TokenKind
from blueprint.protocols import CUBE, INCENTIVE, PROTOCOLS, STOREFRONT, get_protocol
from blueprint.replay import CooldownGuard, NonceGuard, NonceScope

from support import CLAIMANT, FEE_A, TOKEN, cube_claim, incentive_claim, purchase_claim


def test_protocol_table_is_complete() -> None:
    assert set(PROTOCOLS) == {"incentive", "cube", "storefront"}
    assert INCENTIVE.primary_type == "IncentiveData"
    assert CUBE.primary_type == "CubeData"
    assert STOREFRONT.primary_type == "BPStorefrontPurchase"
    assert STOREFRONT.domain_name == "BLUEPRINT_STORE"


def test_unknown_protocol() -> None:
    with pytest.raises(ConfigError) as excinfo:
        get_protocol("raffle")
    assert excinfo.value.reason == "unknown_protocol"


def test_replay_guards_per_protocol() -> None:
    assert isinstance(INCENTIVE.replay_guard(), CooldownGuard)
    assert INCENTIVE.nonce_scope is NonceScope.SUBJECT
    assert INCENTIVE.replay_guard(claim_interval=60).interval == 60
    assert isinstance(CUBE.replay_guard(), NonceGuard)
    assert isinstance(STOREFRONT.replay_guard(), NonceGuard)


@pytest.mark.parametrize(
    "protocol, claim",
    [(CUBE, cube_claim()), (INCENTIVE, incentive_claim()), (STOREFRONT, purchase_claim(quantity=2))],
)
def test_message_round_trip_preserves_signed_fields(protocol, claim) -> None:
    message = protocol.to_message(claim)
    parsed = protocol.from_message(message)

    assert protocol.to_message(parsed) == message
    assert parsed.subject_id == claim.subject_id
    assert parsed.nonce == claim.nonce
    assert parsed.recipient == claim.recipient


def test_from_message_requires_every_field() -> None:
    message = INCENTIVE.to_message(incentive_claim())
    del message["embedOrigin"]

    with pytest.raises(ConfigError) as excinfo:
        INCENTIVE.from_message(message)
    assert "embedOrigin" in str(excinfo.value)


def test_erc20_cube_price_needs_payment_token() -> None:
    message = CUBE.to_message(cube_claim(price=10))
    message["isNative"] = False

    with pytest.raises(ConfigError) as excinfo:
        CUBE.from_message(message)
    assert excinfo.value.reason == "invalid_token"

    parsed = CUBE.from_message(message, payment_token=TOKEN)
    assert parsed.price.token_kind is TokenKind.ERC20
    assert parsed.price.total == 10


def test_incentive_refuses_fields_it_does_not_sign() -> None:
    claim = ClaimRequest(
        subject_id=1,
        nonce=1,
        recipient=CLAIMANT,
        fee_recipients=(FeeRecipient(FEE_A, 100),),
    )

    with pytest.raises(ConfigError) as excinfo:
        INCENTIVE.to_message(claim)
    assert excinfo.value.reason == "unsigned_field"


def test_storefront_refuses_client_supplied_price() -> None:
    claim = ClaimRequest(subject_id=7, nonce=1, recipient=CLAIMANT, price=PriceSpec(amount=1))

    with pytest.raises(ConfigError) as excinfo:
        STOREFRONT.to_message(claim)
    assert excinfo.value.reason == "unsigned_field"


def test_fee_recipients_over_100_percent_are_rejected() -> None:
    with pytest.raises(ConfigError) as excinfo:
        cube_claim(fees=((FEE_A, 6000), (CLAIMANT, 5000)))
    assert excinfo.value.reason == "bps_exceeds_max"


def test_free_native_cube_decodes_without_price() -> None:
    parsed = CUBE.from_message(CUBE.to_message(cube_claim(price=0)))

    assert parsed.price is None
    assert CUBE.from_message(CUBE.to_message(cube_claim(price=5))).price == PriceSpec(amount=5)


def test_cube_refuses_price_quantity_and_native_token_mismatch() -> None:
    claim = ClaimRequest(subject_id=1, nonce=1, recipient=CLAIMANT, price=PriceSpec(amount=10, quantity=2))

    with pytest.raises(ConfigError) as excinfo:
        CUBE.to_message(claim)
    assert excinfo.value.reason == "unsigned_field"

    with pytest.raises(ConfigError) as excinfo:
        PriceSpec(amount=10, token_address=TOKEN)
    assert excinfo.value.reason == "invalid_token"
