from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from pos_core.enums import PromotionType, PromotionScope, UnitType
from pos_core.errors import ValidationError, NotFoundError
from pos_core.services.cart import CartLine
from pos_core.services.promotion_service import (
    PromotionRule,
    apply_promotions,
    eligible_quantity,
    create_promotion,
    list_promotions,
    get_active_promotions,
    deactivate_promotion,
)


NOW = datetime(2026, 10, 17, 12, 0, 0)


def line(line_id, product_id, qty, price, unit=UnitType.UNIT, **kwargs):
    item = CartLine(
        id=line_id,
        product_id=product_id,
        unit_type=unit,
        quantity=Decimal(qty),
        unit_price_cents=price,
        **kwargs,
    )
    item.recompute()
    return item


def discount_rule(rule_id=1, min_quantity=5, percent=10, **kwargs):
    return PromotionRule(
        id=rule_id,
        title="Volume discount",
        promo_type=PromotionType.DISCOUNT,
        min_quantity=Decimal(min_quantity),
        discount_percent=Decimal(percent),
        **kwargs,
    )


def gift_rule(rule_id=2, min_quantity=5, gift_product_id=99, **kwargs):
    return PromotionRule(
        id=rule_id,
        title="Free bottle",
        promo_type=PromotionType.GIFT,
        min_quantity=Decimal(min_quantity),
        gift_product_id=gift_product_id,
        gift_product_name="Water",
        **kwargs,
    )


def test_threshold_four_does_not_apply_five_does():
    four = [line(1, 10, 2, 1000), line(2, 11, 2, 1000)]
    five = four + [line(3, 12, 1, 1000)]

    assert apply_promotions(four, [discount_rule(), gift_rule()], NOW).applied_ids == ()

    outcome = apply_promotions(five, [discount_rule(), gift_rule()], NOW)
    assert outcome.applied_ids == (1, 2)
    assert outcome.discount_cents == 500
    assert len(outcome.gift_lines) == 1


def test_global_discount_on_quantity_six_subtotal_120():
    lines = [line(1, 10, 4, 1500), line(2, 11, 2, 3000)]
    outcome = apply_promotions(lines, [discount_rule()], NOW)
    assert outcome.discount_cents == 1200


def test_deleted_and_gift_lines_do_not_count():
    lines = [
        line(1, 10, 4, 1000),
        line(2, 11, 3, 1000, deleted=True),
        line(3, 12, 3, 1000, is_gift=True),
    ]
    assert eligible_quantity(lines, discount_rule()) == Decimal(4)
    assert apply_promotions(lines, [discount_rule()], NOW).discount_cents == 0


def test_product_scope_uses_matching_product_quantity_and_amount():
    rule = discount_rule(min_quantity=3, percent=20, scope=PromotionScope.PRODUCT, product_id=10)
    lines = [line(1, 10, 3, 1000), line(2, 11, 10, 500)]
    outcome = apply_promotions(lines, [rule], NOW)
    assert outcome.discount_cents == 600  # 20% of 30.00

    lines = [line(1, 10, 2, 1000), line(2, 11, 10, 500)]
    assert apply_promotions(lines, [rule], NOW).discount_cents == 0


def test_product_scope_base_includes_manual_line_discount():
    rule = discount_rule(min_quantity=1, percent=10, scope=PromotionScope.PRODUCT, product_id=10)
    lines = [line(1, 10, 2, 1000, discount_percent=Decimal(50))]
    assert apply_promotions(lines, [rule], NOW).discount_cents == 100


def test_discounts_are_additive_not_compounded():
    lines = [line(1, 10, 10, 1000)]
    outcome = apply_promotions(lines, [discount_rule(1, percent=10), discount_rule(3, percent=5)], NOW)
    assert outcome.discount_cents == 1500


def test_unit_type_restricts_counted_lines():
    rule = discount_rule(min_quantity=2, unit_type=UnitType.CARTON)
    units = [line(1, 10, 10, 600)]
    cartons = [line(1, 10, 10, 600), line(2, 10, 2, 6800, unit=UnitType.CARTON)]
    assert apply_promotions(units, [rule], NOW).applied_ids == ()
    assert apply_promotions(cartons, [rule], NOW).applied_ids == (1,)


def test_gift_line_shape():
    outcome = apply_promotions([line(1, 10, 5, 1000)], [gift_rule(gift_quantity=Decimal(2))], NOW)
    gift = outcome.gift_lines[0]
    assert gift.promotion_id == 2
    assert gift.product_id == 99
    assert gift.quantity == Decimal(2)


def test_window_and_active_flag():
    lines = [line(1, 10, 5, 1000)]
    future = discount_rule(starts_at=NOW + timedelta(days=1))
    expired = discount_rule(ends_at=NOW - timedelta(seconds=1))
    open_ended = discount_rule(starts_at=NOW - timedelta(days=30))
    inactive = discount_rule(is_active=False)

    assert apply_promotions(lines, [future], NOW).discount_cents == 0
    assert apply_promotions(lines, [expired], NOW).discount_cents == 0
    assert apply_promotions(lines, [inactive], NOW).discount_cents == 0
    assert apply_promotions(lines, [open_ended], NOW).discount_cents == 500


# =============================================================================
# PERSISTENCE
# =============================================================================

def test_create_and_list_promotions(db_session, product_x, water):
    created = create_promotion({
        "title": "Free water from 6",
        "promo_type": "gift",
        "scope": "product",
        "product_id": product_x.id,
        "min_quantity": 6,
        "gift_product_id": water.id,
    })
    assert created["is_active"] is True
    assert created["gift_quantity"] == "1.000"

    promos = list_promotions(active_only=True)
    assert [p["id"] for p in promos] == [created["id"]]


@pytest.mark.parametrize("data", [
    {"title": "", "promo_type": "discount", "discount_percent": 10},
    {"title": "No product", "promo_type": "discount", "scope": "product", "discount_percent": 10},
    {"title": "Zero", "promo_type": "discount", "discount_percent": 0},
    {"title": "Too much", "promo_type": "discount", "discount_percent": 150},
    {"title": "No gift", "promo_type": "gift"},
    {"title": "Bad type", "promo_type": "bogo"},
    {"title": "Bad unit", "promo_type": "discount", "discount_percent": 5, "unit_type": "crate"},
    {"title": "Backwards", "promo_type": "discount", "discount_percent": 5,
     "starts_at": "2026-10-10T00:00", "ends_at": "2026-10-01T00:00"},
])
def test_create_promotion_validation(db_session, data):
    with pytest.raises(ValidationError):
        create_promotion(data)


def test_create_promotion_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        create_promotion({"title": "Ghost", "promo_type": "gift", "gift_product_id": 424242})


def test_active_promotions_respect_window_and_deactivation(db_session, water):
    live = create_promotion({"title": "Live", "promo_type": "discount", "discount_percent": 5})
    create_promotion({
        "title": "Later",
        "promo_type": "discount",
        "discount_percent": 5,
        "starts_at": "2099-01-01T00:00:00Z",
    })
    gift = create_promotion({"title": "Gift", "promo_type": "gift", "gift_product_id": water.id})

    rules = get_active_promotions()
    assert [r.id for r in rules] == [live["id"], gift["id"]]
    assert rules[1].gift_product_name == "Water"

    deactivate_promotion(live["id"])
    assert [r.id for r in get_active_promotions()] == [gift["id"]]

    with pytest.raises(NotFoundError):
        deactivate_promotion(999999)
