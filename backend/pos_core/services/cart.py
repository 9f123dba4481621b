"""
In-progress sale (the working invoice held by one terminal).

WHY: The cart is the only mutable aggregate at the till. Every edit goes
through a named operation and ends with a full recompute of the total
chain, so the invariants hold after any sequence of edits:

    line_total      = 0 if deleted or gift else unit_price * qty * (1 - d/100)
    subtotal        = sum(line_total)
    discount_amount = subtotal * invoice_discount / 100
    total           = max(0, subtotal - discount_amount - promotion_discount)
    remaining       = total - paid                (negative: change due)

LIFECYCLE: draft <-> on_hold, draft -> settling -> paid | partial | credit.
Only a draft cart can be edited; settled carts are frozen.

PAID AMOUNT: follows the total until the operator enters one, so a fresh
cart reads as fully paid. set_paid_amount(None) goes back to following.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..enums import InvoiceStatus, Tier, UnitType
from ..errors import ValidationError, InvalidStateError, NotFoundError
from ..money import ZERO, to_quantity, clamp_percent, percent_of, line_amount
from ..time_utils import utcnow, to_utc_z
from .pricing_service import PriceSheet, resolve_unit_price, tier_for_client
from .promotion_service import PromotionOutcome, apply_promotions


@dataclass
class CartLine:
    id: int
    product_id: int
    unit_type: UnitType
    quantity: Decimal
    unit_price_cents: int
    variant_id: int | None = None
    product_name: str | None = None
    price_sheet: PriceSheet | None = None
    discount_percent: Decimal = ZERO
    is_gift: bool = False
    deleted: bool = False
    promotion_id: int | None = None  # set on gift lines owned by the promotion engine
    custom_price: bool = False
    line_total_cents: int = 0

    @property
    def is_promotion_line(self) -> bool:
        return self.promotion_id is not None

    def recompute(self) -> None:
        if self.deleted or self.is_gift:
            self.line_total_cents = 0
        else:
            self.line_total_cents = line_amount(self.unit_price_cents, self.quantity, self.discount_percent)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "unit_type": self.unit_type.value,
            "quantity": str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": str(self.discount_percent),
            "is_gift": self.is_gift,
            "deleted": self.deleted,
            "promotion_id": self.promotion_id,
            "custom_price": self.custom_price,
            "line_total_cents": self.line_total_cents,
        }


class Cart:
    def __init__(
        self,
        *,
        cart_id: str | None = None,
        client=None,
        tier: Tier = Tier.E,
        promotions=(),
        default_price_cents: int = 1000,
        clock=utcnow,
    ):
        self.id = cart_id or uuid.uuid4().hex[:12]
        self.status = InvoiceStatus.DRAFT
        self.client = client
        self.client_id = getattr(client, "id", None)
        self.tier = Tier.parse(tier)
        self.promotions = tuple(promotions)
        self.default_price_cents = default_price_cents
        self.clock = clock
        self.created_at: datetime = clock()

        self.lines: list[CartLine] = []
        self._next_line_id = 1
        self._promo_line_ids: dict = {}

        self.discount_percent = ZERO
        self._paid_override: int | None = None
        self.promotion_outcome = PromotionOutcome()

        self.subtotal_cents = 0
        self.discount_amount_cents = 0
        self.promotion_discount_cents = 0
        self.total_amount_cents = 0
        self.paid_amount_cents = 0
        self.remaining_amount_cents = 0

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def active_lines(self) -> list[CartLine]:
        return [line for line in self.lines if not line.deleted]

    @property
    def is_empty(self) -> bool:
        return not self.active_lines

    @property
    def paid_follows_total(self) -> bool:
        return self._paid_override is None

    @property
    def payment_status(self) -> InvoiceStatus:
        """
        paid == 0 -> credit, 0 < paid < total -> partial, paid >= total -> paid.

        Nothing paid is credit even on a zero total, matching the payment
        method checkout stores for it.
        """
        paid = self.paid_amount_cents
        total = self.total_amount_cents
        if paid <= 0:
            return InvoiceStatus.CREDIT
        if paid >= total:
            return InvoiceStatus.PAID
        return InvoiceStatus.PARTIAL

    @property
    def change_due_cents(self) -> int:
        return max(0, -self.remaining_amount_cents)

    def get_line(self, line_id: int) -> CartLine:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise NotFoundError(f"Line {line_id} not found", details={"line_id": line_id})

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recompute(self) -> None:
        """Rebuild every derived figure from the lines. Never patched incrementally."""
        manual = [line for line in self.lines if not line.is_promotion_line]
        for line in manual:
            line.recompute()

        outcome = apply_promotions(manual, self.promotions, self.clock())
        gift_lines = []
        for gift in outcome.gift_lines:
            line_id = self._promo_line_ids.get(gift.promotion_id)
            if line_id is None:
                line_id = self._take_line_id()
                self._promo_line_ids[gift.promotion_id] = line_id
            line = CartLine(
                id=line_id,
                product_id=gift.product_id,
                product_name=gift.product_name,
                unit_type=gift.unit_type,
                quantity=gift.quantity,
                unit_price_cents=0,
                is_gift=True,
                promotion_id=gift.promotion_id,
            )
            line.recompute()
            gift_lines.append(line)
        self.lines = manual + gift_lines
        self.promotion_outcome = outcome

        self.subtotal_cents = sum(line.line_total_cents for line in self.lines)
        self.discount_amount_cents = percent_of(self.subtotal_cents, self.discount_percent)
        self.promotion_discount_cents = outcome.discount_cents
        self.total_amount_cents = max(
            0, self.subtotal_cents - self.discount_amount_cents - self.promotion_discount_cents
        )
        if self._paid_override is None:
            self.paid_amount_cents = self.total_amount_cents
        else:
            self.paid_amount_cents = self._paid_override
        self.remaining_amount_cents = self.total_amount_cents - self.paid_amount_cents

    def _take_line_id(self) -> int:
        line_id = self._next_line_id
        self._next_line_id += 1
        return line_id

    def _require_editable(self) -> None:
        if self.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(
                f"Invoice is {self.status.value} and cannot be edited",
                details={"cart_id": self.id, "status": self.status.value},
            )

    def _editable_line(self, line_id: int) -> CartLine:
        self._require_editable()
        line = self.get_line(line_id)
        if line.is_promotion_line:
            raise InvalidStateError(
                "Promotion gift lines are managed automatically",
                details={"line_id": line_id, "promotion_id": line.promotion_id},
            )
        return line

    def _price(self, sheet: PriceSheet) -> int:
        return resolve_unit_price(sheet, self.tier, default_price_cents=self.default_price_cents)

    # ------------------------------------------------------------------
    # Line operations
    # ------------------------------------------------------------------

    def add_line(self, product, quantity=1, unit_type=None, variant=None) -> CartLine:
        """
        Add ``quantity`` of ``product`` (optionally one of its variants).

        A product already in the cart in the same unit is merged into its
        existing line; a soft-deleted line is brought back with the new
        quantity.
        """
        self._require_editable()
        qty = to_quantity(quantity)
        if qty <= ZERO:
            raise ValidationError("Quantity must be positive", details={"quantity": str(quantity)})

        if unit_type is None:
            unit_type = variant.unit_type if variant is not None else (product.unit_type or UnitType.UNIT)
        unit = UnitType.parse(unit_type)
        variant_id = variant.id if variant is not None else None

        for line in self.lines:
            if (line.product_id == product.id and line.variant_id == variant_id
                    and line.unit_type == unit and not line.is_gift and not line.is_promotion_line):
                if line.deleted:
                    line.deleted = False
                    line.quantity = qty
                else:
                    line.quantity += qty
                self.recompute()
                return line

        sheet = PriceSheet.for_item(product, variant)
        name = product.name
        if variant is not None and variant.variant_name:
            name = f"{product.name} ({variant.variant_name})"
        line = CartLine(
            id=self._take_line_id(),
            product_id=product.id,
            variant_id=variant_id,
            product_name=name,
            unit_type=unit,
            quantity=qty,
            unit_price_cents=self._price(sheet),
            price_sheet=sheet,
        )
        self.lines.append(line)
        self.recompute()
        return line

    def set_line_quantity(self, line_id: int, quantity) -> CartLine:
        line = self._editable_line(line_id)
        qty = to_quantity(quantity)
        if qty <= ZERO:
            return self.remove_line(line_id)
        line.quantity = qty
        line.deleted = False
        self.recompute()
        return line

    def remove_line(self, line_id: int) -> CartLine:
        """Soft delete: the line stays for restore and audit with quantity 0."""
        line = self._editable_line(line_id)
        line.deleted = True
        line.quantity = ZERO
        self.recompute()
        return line

    def restore_line(self, line_id: int) -> CartLine:
        line = self._editable_line(line_id)
        if not line.deleted:
            return line
        line.deleted = False
        line.quantity = Decimal("1")
        self.recompute()
        return line

    def toggle_gift(self, line_id: int) -> CartLine:
        line = self._editable_line(line_id)
        line.is_gift = not line.is_gift
        self.recompute()
        return line

    def set_line_discount(self, line_id: int, percent) -> CartLine:
        line = self._editable_line(line_id)
        line.discount_percent = clamp_percent(percent)
        self.recompute()
        return line

    def set_line_price(self, line_id: int, unit_price_cents: int) -> CartLine:
        """Operator price override; kept when the client (and tier) changes."""
        line = self._editable_line(line_id)
        line.unit_price_cents = max(0, int(unit_price_cents))
        line.custom_price = True
        self.recompute()
        return line

    # ------------------------------------------------------------------
    # Invoice operations
    # ------------------------------------------------------------------

    def set_invoice_discount(self, percent) -> None:
        self._require_editable()
        self.discount_percent = clamp_percent(percent)
        self.recompute()

    def set_paid_amount(self, amount_cents) -> None:
        self._require_editable()
        if amount_cents is None:
            self._paid_override = None
        else:
            if isinstance(amount_cents, bool) or int(amount_cents) < 0:
                raise ValidationError("Paid amount cannot be negative", details={"paid_amount_cents": amount_cents})
            self._paid_override = int(amount_cents)
        self.recompute()

    def set_client(self, client, tier: Tier | None = None) -> None:
        """Switch client and reprice every line not priced by hand."""
        self._require_editable()
        self.client = client
        self.client_id = getattr(client, "id", None)
        self.tier = Tier.parse(tier) if tier is not None else tier_for_client(client)
        for line in self.lines:
            if line.custom_price or line.is_promotion_line or line.price_sheet is None:
                continue
            line.unit_price_cents = self._price(line.price_sheet)
        self.recompute()

    def set_promotions(self, promotions) -> None:
        self.promotions = tuple(promotions)
        if self.status == InvoiceStatus.DRAFT:
            self.recompute()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def hold(self) -> None:
        self._require_editable()
        if self.is_empty:
            raise ValidationError("Cannot hold an empty invoice", details={"cart_id": self.id})
        self.status = InvoiceStatus.ON_HOLD

    def resume(self) -> None:
        if self.status != InvoiceStatus.ON_HOLD:
            raise InvalidStateError("Only held invoices can be resumed", details={"status": self.status.value})
        self.status = InvoiceStatus.DRAFT
        self.recompute()

    def begin_settlement(self) -> None:
        self._require_editable()
        self.status = InvoiceStatus.SETTLING

    def abort_settlement(self) -> None:
        if self.status == InvoiceStatus.SETTLING:
            self.status = InvoiceStatus.DRAFT

    def mark_settled(self) -> InvoiceStatus:
        if self.status != InvoiceStatus.SETTLING:
            raise InvalidStateError("Invoice is not being settled", details={"status": self.status.value})
        self.status = self.payment_status
        return self.status

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "client_id": self.client_id,
            "tier": self.tier.value,
            "lines": [line.to_dict() for line in self.lines],
            "discount_percent": str(self.discount_percent),
            "subtotal_cents": self.subtotal_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "promotion_discount_cents": self.promotion_discount_cents,
            "applied_promotion_ids": list(self.promotion_outcome.applied_ids),
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "created_at": to_utc_z(self.created_at),
        }
