import random

import pytest

from pos_core.enums import Tier
from pos_core.errors import ValidationError
from pos_core.models import Client, Product, ProductVariant
from pos_core.services.pricing_service import PriceSheet, resolve_unit_price, tier_for_client, tier_chain

from conftest import TEST_SEED


def sheet(base=0, **tiers):
    return PriceSheet(
        tier_prices={Tier.parse(k): v for k, v in tiers.items()},
        base_price_cents=base,
    )


def test_requested_tier_price_wins():
    prices = sheet(base=900, A=700, E=1000)
    assert resolve_unit_price(prices, Tier.A) == 700
    assert resolve_unit_price(prices, Tier.E) == 1000


def test_zero_tier_falls_back_to_e_then_a_through_d():
    assert resolve_unit_price(sheet(A=0, E=1000, B=800), Tier.A) == 1000
    assert resolve_unit_price(sheet(A=700, C=600), Tier.B) == 700
    assert resolve_unit_price(sheet(D=450), Tier.B) == 450


def test_all_tiers_zero_uses_base_price():
    assert resolve_unit_price(sheet(base=1250), Tier.C) == 1250


def test_everything_zero_uses_non_zero_default():
    assert resolve_unit_price(sheet(), Tier.A, default_price_cents=1000) == 1000
    assert resolve_unit_price(sheet(), None, default_price_cents=350) == 350


def test_no_client_prices_on_tier_e():
    prices = sheet(A=700, E=1000)
    assert resolve_unit_price(prices, None) == 1000


def test_negative_tier_price_is_treated_as_missing():
    assert resolve_unit_price(sheet(A=-5, E=1000), Tier.A) == 1000


def test_tier_chain_does_not_repeat_requested_tier():
    assert tier_chain(Tier.C) == (Tier.C, Tier.E, Tier.A, Tier.B, Tier.D)
    assert tier_chain(Tier.E) == (Tier.E, Tier.A, Tier.B, Tier.C, Tier.D)


def test_variant_prices_on_its_own_columns_and_falls_back_to_product_base():
    product = Product(name="Water", price_cents=600, price_e_cents=600)
    carton = ProductVariant(unit_type="carton", quantity_contained=12, price_e_cents=6800)
    bare = ProductVariant(unit_type="paquet", quantity_contained=6)

    assert resolve_unit_price(PriceSheet.for_item(product, carton), Tier.E) == 6800
    assert resolve_unit_price(PriceSheet.for_item(product, bare), Tier.A) == 600


def test_resolver_accepts_model_instances():
    product = Product(name="Rice", price_cents=1800, price_b_cents=1600)
    assert resolve_unit_price(product, Tier.B) == 1600
    assert resolve_unit_price(product, Tier.A) == 1600


@pytest.mark.parametrize("seed", [TEST_SEED + i for i in range(20)])
def test_resolution_is_deterministic_and_never_zero(seed):
    rng = random.Random(seed)
    for _ in range(50):
        tiers = {t: rng.choice([0, 0, rng.randint(1, 50000)]) for t in "ABCDE"}
        base = rng.choice([0, rng.randint(1, 50000)])
        prices = sheet(base=base, **tiers)
        tier = rng.choice(list(Tier) + [None])

        first = resolve_unit_price(prices, tier, default_price_cents=1000)
        assert first == resolve_unit_price(prices, tier, default_price_cents=1000)
        assert first > 0
        if any(tiers.values()):
            assert first in tiers.values()
        elif base:
            assert first == base
        else:
            assert first == 1000


def test_tier_for_client():
    assert tier_for_client(None) == Tier.E
    assert tier_for_client(Client(name="a", subscription_tier="c")) == Tier.C
    assert tier_for_client(Client(name="b", subscription_tier="basic")) == Tier.A
    assert tier_for_client(Client(name="c", subscription_tier=None)) == Tier.E
    assert tier_for_client(Client(name="d", subscription_tier=" "), default_tier="B") == Tier.B


def test_unknown_tier_label_is_rejected():
    with pytest.raises(ValidationError):
        tier_for_client(Client(name="x", subscription_tier="gold"))
    with pytest.raises(ValidationError):
        resolve_unit_price(sheet(E=100), "Z")
