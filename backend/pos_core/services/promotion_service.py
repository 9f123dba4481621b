"""
Promotion engine.

WHY: Quantity-threshold deals ("10% off from 5 items", "buy 6 get one
free") must follow the cart exactly. The engine is a pure function of the
cart lines, the rules and the clock; the cart calls it after every edit and
replaces its previous outcome, so a deal disappears as soon as the quantity
drops back under the threshold.

STACKING:
- Discount promotions are additive over their base amount, never compounded
- Global promotions stack with manual line discounts and the invoice discount
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Promotion, Product
from ..enums import PromotionType, PromotionScope, UnitType
from ..errors import ValidationError, NotFoundError
from ..money import ZERO, HUNDRED, to_decimal, to_quantity, percent_of
from ..time_utils import utcnow, to_utc_naive, parse_iso_datetime


@dataclass(frozen=True)
class PromotionRule:
    """Session-independent copy of a Promotion row, as evaluated by the engine."""
    id: int
    title: str
    promo_type: PromotionType
    scope: PromotionScope = PromotionScope.GLOBAL
    product_id: int | None = None
    min_quantity: Decimal = Decimal("1")
    unit_type: UnitType | None = None
    discount_percent: Decimal | None = None
    gift_product_id: int | None = None
    gift_product_name: str | None = None
    gift_unit_type: UnitType = UnitType.UNIT
    gift_quantity: Decimal = Decimal("1")
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_active: bool = True

    @classmethod
    def from_model(cls, promo: Promotion) -> "PromotionRule":
        gift = promo.gift_product
        return cls(
            id=promo.id,
            title=promo.title,
            promo_type=PromotionType.parse(promo.promo_type),
            scope=PromotionScope.parse(promo.scope or "global"),
            product_id=promo.product_id,
            min_quantity=to_decimal(promo.min_quantity if promo.min_quantity is not None else 1),
            unit_type=UnitType.parse(promo.unit_type) if promo.unit_type else None,
            discount_percent=to_decimal(promo.discount_percent) if promo.discount_percent is not None else None,
            gift_product_id=promo.gift_product_id,
            gift_product_name=gift.name if gift is not None else None,
            gift_unit_type=UnitType.parse(gift.unit_type) if gift is not None else UnitType.UNIT,
            gift_quantity=to_decimal(promo.gift_quantity) if promo.gift_quantity else Decimal("1"),
            starts_at=to_utc_naive(promo.starts_at),
            ends_at=to_utc_naive(promo.ends_at),
            is_active=bool(promo.is_active),
        )

    def is_live(self, now: datetime) -> bool:
        """Active flag set and ``now`` inside the window (open bounds allowed)."""
        if not self.is_active:
            return False
        if self.starts_at is not None and now < self.starts_at:
            return False
        if self.ends_at is not None and now > self.ends_at:
            return False
        return True


@dataclass(frozen=True)
class GiftLine:
    promotion_id: int
    product_id: int
    product_name: str | None
    unit_type: UnitType
    quantity: Decimal


@dataclass(frozen=True)
class PromotionOutcome:
    discount_cents: int = 0
    gift_lines: tuple = ()
    applied_ids: tuple = ()


def _counted_lines(lines, rule: PromotionRule):
    for line in lines:
        if line.deleted or line.is_gift:
            continue
        if rule.scope == PromotionScope.PRODUCT and line.product_id != rule.product_id:
            continue
        if rule.unit_type is not None and line.unit_type != rule.unit_type:
            continue
        yield line


def eligible_quantity(lines, rule: PromotionRule) -> Decimal:
    """Quantity counted toward ``rule.min_quantity``."""
    return sum((line.quantity for line in _counted_lines(lines, rule)), ZERO)


def apply_promotions(lines, promotions, now: datetime | None = None) -> PromotionOutcome:
    """
    Evaluate ``promotions`` against ``lines`` from scratch.

    ``lines`` are cart lines (product_id, unit_type, quantity, deleted,
    is_gift, line_total_cents). ``promotions`` are PromotionRule or Promotion
    rows. Rules are processed in id order so gift lines come out stable.
    """
    now = to_utc_naive(now) if now is not None else utcnow()
    rules = [p if isinstance(p, PromotionRule) else PromotionRule.from_model(p) for p in promotions]
    rules.sort(key=lambda r: (r.id is None, r.id))

    subtotal = sum(line.line_total_cents for line in lines if not line.deleted and not line.is_gift)

    discount = 0
    gifts = []
    applied = []
    for rule in rules:
        if not rule.is_live(now):
            continue
        if eligible_quantity(lines, rule) < rule.min_quantity:
            continue

        if rule.promo_type == PromotionType.DISCOUNT:
            if not rule.discount_percent:
                continue
            if rule.scope == PromotionScope.GLOBAL:
                base = subtotal
            else:
                base = sum(line.line_total_cents for line in _counted_lines(lines, rule))
            discount += percent_of(base, rule.discount_percent)
            applied.append(rule.id)
        elif rule.promo_type == PromotionType.GIFT:
            if rule.gift_product_id is None:
                continue
            gifts.append(GiftLine(
                promotion_id=rule.id,
                product_id=rule.gift_product_id,
                product_name=rule.gift_product_name,
                unit_type=rule.gift_unit_type,
                quantity=rule.gift_quantity,
            ))
            applied.append(rule.id)

    return PromotionOutcome(discount_cents=discount, gift_lines=tuple(gifts), applied_ids=tuple(applied))


# =============================================================================
# PERSISTENCE
# =============================================================================

def _optional_datetime(value):
    if value is None or isinstance(value, datetime):
        return to_utc_naive(value)
    return parse_iso_datetime(value)


def validate_promotion_data(data: dict) -> dict:
    """
    Normalize promotion input.

    RULES:
    - title is required
    - product scope needs a product
    - discount needs 0 < discount_percent <= 100
    - gift needs a gift product and gift_quantity > 0
    - the window, when both ends are set, must not end before it starts
    """
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Promotion title is required", details={"field": "title"})

    promo_type = PromotionType.parse(data.get("promo_type"))
    scope = PromotionScope.parse(data.get("scope") or "global")

    product_id = data.get("product_id")
    if scope == PromotionScope.PRODUCT and not product_id:
        raise ValidationError("Product-scoped promotion needs a product", details={"field": "product_id"})
    if scope == PromotionScope.GLOBAL:
        product_id = None

    min_quantity = to_quantity(data.get("min_quantity") or 1, "min_quantity")
    if min_quantity <= ZERO:
        raise ValidationError("min_quantity must be positive", details={"field": "min_quantity"})

    unit_type = UnitType.parse(data["unit_type"]).value if data.get("unit_type") else None

    discount_percent = None
    gift_product_id = None
    gift_quantity = None
    if promo_type == PromotionType.DISCOUNT:
        raw = data.get("discount_percent")
        discount_percent = to_decimal(raw, "discount_percent") if raw is not None else ZERO
        if discount_percent <= ZERO or discount_percent > HUNDRED:
            raise ValidationError(
                "discount_percent must be between 0 and 100",
                details={"field": "discount_percent"},
            )
    else:
        gift_product_id = data.get("gift_product_id")
        if not gift_product_id:
            raise ValidationError("Gift promotion needs a gift product", details={"field": "gift_product_id"})
        gift_quantity = to_quantity(data.get("gift_quantity") or 1, "gift_quantity")
        if gift_quantity <= ZERO:
            raise ValidationError("gift_quantity must be positive", details={"field": "gift_quantity"})

    starts_at = _optional_datetime(data.get("starts_at"))
    ends_at = _optional_datetime(data.get("ends_at"))
    if starts_at and ends_at and ends_at < starts_at:
        raise ValidationError("Promotion ends before it starts", details={"field": "ends_at"})

    return {
        "title": title,
        "promo_type": promo_type.value,
        "scope": scope.value,
        "product_id": product_id,
        "min_quantity": min_quantity,
        "unit_type": unit_type,
        "discount_percent": discount_percent,
        "gift_product_id": gift_product_id,
        "gift_quantity": gift_quantity,
        "starts_at": starts_at,
        "ends_at": ends_at,
        "is_active": bool(data.get("is_active", True)),
    }


def create_promotion(data: dict) -> dict:
    values = validate_promotion_data(data)
    for key in ("product_id", "gift_product_id"):
        if values[key] is not None and db.session.get(Product, values[key]) is None:
            raise NotFoundError(f"Product {values[key]} not found", details={"field": key})
    promo = Promotion(**values)
    db.session.add(promo)
    db.session.commit()
    return promo.to_dict()


def list_promotions(active_only: bool = False) -> list[dict]:
    q = db.session.query(Promotion)
    if active_only:
        q = q.filter_by(is_active=True)
    return [p.to_dict() for p in q.order_by(Promotion.created_at.desc(), Promotion.id.desc()).all()]


def get_active_promotions(now: datetime | None = None) -> list[PromotionRule]:
    """Rules whose active flag is set and whose window contains ``now``."""
    now = to_utc_naive(now) if now is not None else utcnow()
    rows = db.session.query(Promotion).filter_by(is_active=True).order_by(Promotion.id).all()
    rules = [PromotionRule.from_model(p) for p in rows]
    return [r for r in rules if r.is_live(now)]


def deactivate_promotion(promo_id: int) -> dict:
    promo = db.session.get(Promotion, promo_id)
    if promo is None:
        raise NotFoundError(f"Promotion {promo_id} not found", details={"promotion_id": promo_id})
    promo.is_active = False
    db.session.commit()
    return promo.to_dict()
