"""
Closed vocabularies used across pricing, carts, settlement and cash sessions.

Every value coming from a client, a promotion row or an operator goes through
``parse`` so that an unrecognized string fails loudly with a ValidationError
instead of silently falling through to a default.
"""

from __future__ import annotations

import enum

from .errors import ValidationError


class _ClosedEnum(str, enum.Enum):
    """String enum whose ``parse`` rejects unknown values."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value.lower() == key:
                    return member
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(
            f"Invalid {cls.__name__}: {value!r}. Must be one of {allowed}",
            details={"field": cls.__name__, "value": value},
        )

    def __str__(self) -> str:
        return self.value


class Tier(_ClosedEnum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"

    @classmethod
    def parse(cls, value):
        # "basic" is the legacy label for the A price list
        if isinstance(value, str) and value.strip().lower() == "basic":
            return cls.A
        return super().parse(value)


# Tiers tried, in order, after the requested one
TIER_FALLBACK_ORDER = (Tier.E, Tier.A, Tier.B, Tier.C, Tier.D)


class UnitType(_ClosedEnum):
    UNIT = "unit"
    KILO = "kilo"
    LITRE = "litre"
    CARTON = "carton"
    PAQUET = "paquet"
    SAC = "sac"

    @property
    def is_container(self) -> bool:
        return self in CONTAINER_UNITS


CONTAINER_UNITS = frozenset({UnitType.CARTON, UnitType.PAQUET, UnitType.SAC})


class InvoiceStatus(_ClosedEnum):
    DRAFT = "draft"
    ON_HOLD = "on_hold"
    SETTLING = "settling"
    PAID = "paid"
    PARTIAL = "partial"
    CREDIT = "credit"


class PaymentMethod(_ClosedEnum):
    CASH = "cash"
    CHECK = "check"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"


class PaymentStatus(_ClosedEnum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PromotionType(_ClosedEnum):
    GIFT = "gift"
    DISCOUNT = "discount"


class PromotionScope(_ClosedEnum):
    GLOBAL = "global"
    PRODUCT = "product"


class OversellPolicy(_ClosedEnum):
    ALLOW = "allow"
    WARN = "warn"
    REJECT = "reject"


class MovementStatus(_ClosedEnum):
    APPLIED = "applied"
    PENDING = "pending"


VAT_RATES = (7, 10, 20)
