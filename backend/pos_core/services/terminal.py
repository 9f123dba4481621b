"""
Settlement API for one register.

A PosTerminal belongs to one employee at one warehouse. It owns the cash
session in use, the cart being rung up and the carts parked on hold, and
routes every operator action to the pricing, cart, checkout and cash
session services. Held carts live on the terminal only; they are not
persisted.
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from ..enums import Tier, UnitType
from ..errors import ValidationError, InvalidStateError, NotFoundError, PaymentNotRecorded
from ..time_utils import utcnow
from . import cash_session_service, checkout_service
from .cart import Cart
from .catalog_store import CatalogStore
from .ledger_store import LedgerStore
from .pricing_service import tier_for_client
from .promotion_service import get_active_promotions


class PosTerminal:
    def __init__(
        self,
        employee_id: int,
        warehouse_id: int,
        *,
        catalog=None,
        ledger=None,
        settings: dict | None = None,
        promotion_loader=get_active_promotions,
        clock=utcnow,
    ):
        self.employee_id = employee_id
        self.warehouse_id = warehouse_id
        self.catalog = catalog or CatalogStore()
        self.ledger = ledger or LedgerStore()
        self.settings = settings if settings is not None else current_app.config
        self.promotion_loader = promotion_loader
        self.clock = clock

        self.session = None
        self.cart: Cart | None = None
        self.client = None
        self._held: "OrderedDict[str, Cart]" = OrderedDict()
        self.unrecorded_payments: dict = {}

    # =========================================================================
    # CASH SESSION
    # =========================================================================

    def open_cash_session(self, opening_cash_cents: int):
        self.session = cash_session_service.open_cash_session(
            self.employee_id, self.warehouse_id, opening_cash_cents, ledger=self.ledger,
        )
        return self.session

    def resume_cash_session(self, session_id: int | None = None):
        """Attach to an already open session (after a ConflictError on open, or a restart)."""
        if session_id is None:
            session = self.ledger.find_open_session(self.employee_id, self.warehouse_id)
            if session is None:
                raise NotFoundError(
                    "No open cash session for this employee and warehouse",
                    details={"employee_id": self.employee_id, "warehouse_id": self.warehouse_id},
                )
        else:
            session = self.ledger.get_cash_session(session_id)
            if (session.employee_id, session.warehouse_id) != (self.employee_id, self.warehouse_id):
                raise ValidationError("Cash session belongs to another register", details={"session_id": session_id})
        if not session.is_open:
            raise InvalidStateError("Cash session is closed", details={"session_id": session.id})
        self.session = session
        return session

    def session_summary(self):
        return cash_session_service.get_session_summary(self._require_session().id, ledger=self.ledger)

    def close_cash_session(self, declared_cash_cents: int, note: str | None = None):
        session = self._require_session()
        pending = sorted(
            number for number, invoice in self.unrecorded_payments.items()
            if invoice.cash_session_id == session.id
        )
        if pending:
            raise InvalidStateError(
                "Record the outstanding payments before closing the cash session",
                details={"session_id": session.id, "invoice_numbers": pending},
            )
        if self._held or (self.cart is not None and not self.cart.is_empty):
            current_app.logger.warning(
                "Closing cash session %s with %d unsettled invoice(s) on the terminal",
                session.id, len(self._held) + (0 if self.cart is None or self.cart.is_empty else 1),
            )
        report = cash_session_service.close_cash_session(
            session.id, declared_cash_cents, note, ledger=self.ledger,
        )
        self.session = None
        return report

    def _require_session(self):
        if self.session is None:
            raise InvalidStateError("No cash session is open on this terminal")
        return self.session

    # =========================================================================
    # CART
    # =========================================================================

    @property
    def tier(self) -> Tier:
        return tier_for_client(self.client, self.settings.get("POS_DEFAULT_TIER", "E"))

    def _new_cart(self) -> Cart:
        return Cart(
            client=self.client,
            tier=self.tier,
            promotions=self.promotion_loader(self.clock()),
            default_price_cents=self.settings.get("POS_DEFAULT_UNIT_PRICE_CENTS", 1000),
            clock=self.clock,
        )

    def _current(self) -> Cart:
        if self.cart is None:
            self.cart = self._new_cart()
        return self.cart

    def _require_cart(self) -> Cart:
        if self.cart is None:
            raise InvalidStateError("No invoice in progress")
        return self.cart

    def select_client(self, client_id: int | None):
        """Choose the client (None for walk-in); lines are repriced for the new tier."""
        self.client = self.catalog.get_client(client_id) if client_id is not None else None
        if self.cart is not None:
            self.cart.set_client(self.client, self.tier)
        return self.client

    def _pick_variant(self, product, unit_type, variant_id):
        if variant_id is not None:
            variant = self.catalog.get_variant(variant_id)
            if variant.product_id != product.id:
                raise ValidationError(
                    "Variant does not belong to product",
                    details={"product_id": product.id, "variant_id": variant_id},
                )
            return variant
        variants = self.catalog.get_variants(product.id)
        if not variants:
            return None
        if unit_type is None:
            # Base unit unless the product is normally sold by a pack
            return next((v for v in variants if v.is_default), None)
        unit = UnitType.parse(unit_type)
        matching = [v for v in variants if UnitType.parse(v.unit_type) == unit]
        if not matching:
            return None
        return next((v for v in matching if v.is_default), matching[0])

    def add_line(self, product_id: int, quantity=1, unit_type=None, *, variant_id: int | None = None):
        product = self.catalog.get_product(product_id)
        if not product.is_active:
            raise ValidationError("Product is inactive", details={"product_id": product_id})
        variant = self._pick_variant(product, unit_type, variant_id)
        return self._current().add_line(product, quantity, unit_type, variant=variant)

    def set_line_quantity(self, line_id: int, quantity):
        return self._require_cart().set_line_quantity(line_id, quantity)

    def remove_line(self, line_id: int):
        return self._require_cart().remove_line(line_id)

    def restore_line(self, line_id: int):
        return self._require_cart().restore_line(line_id)

    def toggle_gift(self, line_id: int):
        return self._require_cart().toggle_gift(line_id)

    def set_line_discount(self, line_id: int, percent):
        return self._require_cart().set_line_discount(line_id, percent)

    def set_line_price(self, line_id: int, unit_price_cents: int):
        return self._require_cart().set_line_price(line_id, unit_price_cents)

    def set_invoice_discount(self, percent):
        self._require_cart().set_invoice_discount(percent)

    def set_paid_amount(self, amount_cents):
        self._require_cart().set_paid_amount(amount_cents)

    # =========================================================================
    # HOLD / RESUME
    # =========================================================================

    def hold(self) -> str:
        """Park the current invoice and start fresh. Returns the parked cart id."""
        cart = self._require_cart()
        cart.hold()
        self._held[cart.id] = cart
        self.cart = None
        return cart.id

    def resume(self, cart_id: str) -> Cart:
        if self.cart is not None and not self.cart.is_empty:
            raise InvalidStateError(
                "Hold or discard the current invoice before resuming another",
                details={"cart_id": self.cart.id},
            )
        cart = self._held.pop(cart_id, None)
        if cart is None:
            raise NotFoundError(f"No held invoice {cart_id}", details={"cart_id": cart_id})
        cart.resume()
        cart.set_promotions(self.promotion_loader(self.clock()))
        self.cart = cart
        self.client = cart.client
        return cart

    def held_invoices(self) -> list[dict]:
        return [cart.snapshot() for cart in self._held.values()]

    def discard(self) -> None:
        self.cart = None

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    def checkout(self, payment_method, paid_amount_cents=None, apply_vat: bool = False):
        """
        Settle the current invoice.

        ``paid_amount_cents`` overrides the paid amount (default: whatever the
        cart holds, which follows the total until set). On success the
        terminal starts a fresh invoice for the same client.
        """
        cart = self._require_cart()
        if paid_amount_cents is not None:
            cart.set_paid_amount(paid_amount_cents)
        if self.session is not None:
            self.session = self.ledger.get_cash_session(self.session.id)

        try:
            finalized = checkout_service.settle(
                cart,
                session=self.session,
                catalog=self.catalog,
                ledger=self.ledger,
                payment_method=payment_method,
                oversell_policy=self.settings.get("POS_OVERSELL_POLICY", "warn"),
                general_client_name=self.settings.get("POS_GENERAL_CLIENT_NAME", "General Client"),
                apply_vat=apply_vat,
                vat_rate=self.settings.get("POS_VAT_RATE", 20),
            )
        except PaymentNotRecorded as exc:
            self.cart = None
            self.unrecorded_payments[exc.invoice.invoice_number] = exc.invoice
            raise
        self.cart = None
        return finalized

    def record_payment(self, invoice_number: str):
        """Retry the payment row of a sale that raised PaymentNotRecorded."""
        invoice = self.unrecorded_payments.get(invoice_number)
        if invoice is None:
            raise NotFoundError(
                f"No unrecorded payment for invoice {invoice_number}",
                details={"invoice_number": invoice_number},
            )
        recorded = checkout_service.record_payment(invoice, ledger=self.ledger)
        del self.unrecorded_payments[invoice_number]
        return recorded
