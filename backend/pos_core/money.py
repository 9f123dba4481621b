from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

# Amounts are integer cents; quantities and percents are Decimal.
ZERO = Decimal("0")
HUNDRED = Decimal("100")
QUANTITY_PLACES = Decimal("0.001")


def to_decimal(value, field: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        # str() first so floats like 0.1 do not drag binary noise along
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number", details={"field": field, "value": value})


def round_cents(value: Decimal) -> int:
    """Nearest-cent rounding (half-up)."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(value, field: str = "amount") -> int:
    """
    Convert a decimal currency amount ("72.00", 72, Decimal("72")) to cents.
    """
    return round_cents(to_decimal(value, field) * HUNDRED)


def format_cents(cents: int | None) -> str:
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def to_quantity(value, field: str = "quantity") -> Decimal:
    return to_decimal(value, field).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def clamp_percent(value, field: str = "discount_percent") -> Decimal:
    pct = to_decimal(value, field)
    if pct < ZERO:
        return ZERO
    if pct > HUNDRED:
        return HUNDRED
    return pct


def percent_of(cents: int, percent: Decimal) -> int:
    """``percent`` % of an amount in cents, rounded half-up."""
    if not percent:
        return 0
    return round_cents(Decimal(cents) * percent / HUNDRED)


def line_amount(unit_price_cents: int, quantity: Decimal, discount_percent: Decimal) -> int:
    """unit_price * quantity * (1 - discount/100), rounded to the cent."""
    gross = Decimal(unit_price_cents) * quantity
    return round_cents(gross * (HUNDRED - discount_percent) / HUNDRED)
