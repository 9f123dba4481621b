"""
Checkout: turning a draft cart into a settled invoice.

WHY: Settlement touches two stores that share no transaction. It runs as
ordered steps whose failure handling differs:

1. Persist the invoice (lines and totals). A numbering collision is
   retried once with a fresh number; anything else is fatal and the cart
   goes back to draft untouched.
2. Record the payment when something was paid. A payment number collision
   is retried once with a fresh number. Any other failure leaves the sale
   standing: the remaining steps run and PaymentNotRecorded carries the
   finalized invoice so the payment can be re-recorded.
3. Deduct stock. Best-effort: failures are queued as pending movements
   and never surface as a checkout failure.
4. Freeze the cart and return an immutable FinalizedInvoice.

Every precondition is checked before the first write.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType

from flask import current_app

from ..enums import PaymentMethod, PaymentStatus, OversellPolicy, InvoiceStatus, VAT_RATES
from ..errors import PosError, ValidationError, ConflictError, PaymentNotRecorded, InvalidStateError
from ..money import percent_of
from ..time_utils import utcnow, to_utc_z
from .inventory_service import plan_stock_deductions, check_availability, deduct_invoice_stock
from .numbering import generate_invoice_number, regenerate_invoice_number, generate_payment_number


@dataclass(frozen=True)
class FinalizedInvoice:
    """Receipt-ready snapshot of a settled invoice."""
    invoice_id: int
    invoice_number: str
    status: InvoiceStatus
    client_id: int
    client_name: str | None
    cash_session_id: int
    employee_id: int
    warehouse_id: int
    lines: tuple
    discount_percent: Decimal
    subtotal_cents: int
    discount_amount_cents: int
    promotion_discount_cents: int
    applied_promotion_ids: tuple
    total_amount_cents: int
    paid_amount_cents: int
    remaining_amount_cents: int
    change_due_cents: int
    payment_method: PaymentMethod
    settled_at: object
    payment_number: str | None = None
    vat_enabled: bool = False
    vat_rate: int = 0
    vat_amount_cents: int = 0
    total_with_vat_cents: int = 0
    stock_pending: tuple = field(default_factory=tuple)
    stock_oversold: tuple = field(default_factory=tuple)

    @property
    def payment_recorded(self) -> bool:
        return self.payment_number is not None or self.paid_amount_cents == 0

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "status": self.status.value,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "cash_session_id": self.cash_session_id,
            "employee_id": self.employee_id,
            "warehouse_id": self.warehouse_id,
            "lines": [dict(line) for line in self.lines],
            "discount_percent": str(self.discount_percent),
            "subtotal_cents": self.subtotal_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "promotion_discount_cents": self.promotion_discount_cents,
            "applied_promotion_ids": list(self.applied_promotion_ids),
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "change_due_cents": self.change_due_cents,
            "payment_method": self.payment_method.value,
            "payment_number": self.payment_number,
            "settled_at": to_utc_z(self.settled_at),
            "vat_enabled": self.vat_enabled,
            "vat_rate": self.vat_rate,
            "vat_amount_cents": self.vat_amount_cents,
            "total_with_vat_cents": self.total_with_vat_cents,
        }


def normalize_payment_method(method, paid_amount_cents: int) -> PaymentMethod:
    """Nothing paid is always a credit sale, whatever tender was selected."""
    parsed = PaymentMethod.parse(method)
    if paid_amount_cents <= 0:
        return PaymentMethod.CREDIT
    return parsed


def _invoice_row(cart, *, number, client_id, session, method, settled_at) -> dict:
    lines = []
    for line in cart.lines:
        lines.append({
            "product_id": line.product_id,
            "variant_id": line.variant_id,
            "product_name": line.product_name,
            "unit_type": line.unit_type.value,
            "quantity": line.quantity,
            "unit_price_cents": line.unit_price_cents,
            "discount_percent": line.discount_percent,
            "line_total_cents": line.line_total_cents,
            "is_gift": line.is_gift,
            "deleted": line.deleted,
            "promotion_id": line.promotion_id,
        })
    return {
        "invoice_number": number,
        "status": cart.payment_status.value,
        "client_id": client_id,
        "cash_session_id": session.id,
        "employee_id": session.employee_id,
        "warehouse_id": session.warehouse_id,
        "subtotal_cents": cart.subtotal_cents,
        "discount_percent": cart.discount_percent,
        "discount_amount_cents": cart.discount_amount_cents,
        "promotion_discount_cents": cart.promotion_discount_cents,
        "total_amount_cents": cart.total_amount_cents,
        "paid_amount_cents": cart.paid_amount_cents,
        "remaining_amount_cents": cart.remaining_amount_cents,
        "payment_method": method.value,
        "created_at": cart.created_at,
        "settled_at": settled_at,
        "lines": lines,
    }


def _payment_row(*, invoice_id, client_id, session, paid_cents, total_cents, method, recorded_at) -> dict:
    return {
        "payment_number": generate_payment_number(recorded_at),
        "invoice_id": invoice_id,
        "client_id": client_id,
        "amount_cents": min(paid_cents, total_cents),
        "change_cents": max(0, paid_cents - total_cents),
        "method": method.value,
        "status": PaymentStatus.COMPLETED.value,
        "cash_session_id": session.id,
        "collected_by": session.employee_id,
        "recorded_at": recorded_at,
    }


def _create_payment(ledger, payment: dict, *, recorded_at) -> str:
    """Insert ``payment``; a taken payment number is replaced once. Returns the number used."""
    try:
        ledger.create_payment(payment)
    except ConflictError:
        current_app.logger.warning("Payment number %s already taken, retrying with a new number", payment["payment_number"])
        payment["payment_number"] = generate_payment_number(recorded_at)
        ledger.create_payment(payment)
    return payment["payment_number"]


def validate_checkout(cart, session, *, catalog, payment_method, oversell_policy, apply_vat, vat_rate):
    """Preconditions; raises before anything is written."""
    if session is None or not session.is_open:
        raise ValidationError("An open cash session is required to settle a sale")
    if cart.status != InvoiceStatus.DRAFT:
        raise InvalidStateError(
            f"Invoice is {cart.status.value} and cannot be settled",
            details={"cart_id": cart.id, "status": cart.status.value},
        )
    if cart.is_empty:
        raise ValidationError("Cannot settle an empty invoice", details={"cart_id": cart.id})
    if cart.paid_amount_cents < 0:
        raise ValidationError("Paid amount cannot be negative")
    PaymentMethod.parse(payment_method)
    if apply_vat and vat_rate not in VAT_RATES:
        raise ValidationError(
            f"VAT rate must be one of {', '.join(str(r) for r in VAT_RATES)}",
            details={"vat_rate": vat_rate},
        )

    if OversellPolicy.parse(oversell_policy) == OversellPolicy.REJECT:
        shortages = check_availability(plan_stock_deductions(cart.lines, catalog), catalog, session.warehouse_id)
        if shortages:
            raise ValidationError("Insufficient stock", details={"shortages": shortages})


def settle(
    cart,
    *,
    session,
    catalog,
    ledger,
    payment_method,
    oversell_policy=OversellPolicy.WARN,
    general_client_name: str = "General Client",
    apply_vat: bool = False,
    vat_rate: int = 20,
) -> FinalizedInvoice:
    logger = current_app.logger
    validate_checkout(
        cart, session,
        catalog=catalog,
        payment_method=payment_method,
        oversell_policy=oversell_policy,
        apply_vat=apply_vat,
        vat_rate=vat_rate,
    )

    client = cart.client or catalog.ensure_general_client(general_client_name)
    method = normalize_payment_method(payment_method, cart.paid_amount_cents)
    settled_at = utcnow()

    # Step 1: invoice (fatal on failure, cart stays a draft)
    cart.begin_settlement()
    row = _invoice_row(cart, number=generate_invoice_number(settled_at), client_id=client.id,
                       session=session, method=method, settled_at=settled_at)
    try:
        try:
            invoice_id = ledger.create_invoice(row)
        except ConflictError:
            logger.warning("Invoice number %s already taken, retrying with a new number", row["invoice_number"])
            row["invoice_number"] = regenerate_invoice_number(settled_at)
            invoice_id = ledger.create_invoice(row)
    except Exception:
        cart.abort_settlement()
        logger.exception("Failed to persist invoice for cart %s", cart.id)
        raise
    status = cart.mark_settled()
    number = row["invoice_number"]

    # Step 2: payment
    payment_number = None
    payment_error = None
    if cart.paid_amount_cents > 0:
        payment = _payment_row(
            invoice_id=invoice_id,
            client_id=client.id,
            session=session,
            paid_cents=cart.paid_amount_cents,
            total_cents=cart.total_amount_cents,
            method=method,
            recorded_at=settled_at,
        )
        try:
            payment_number = _create_payment(ledger, payment, recorded_at=settled_at)
        except PosError as exc:
            logger.exception("Failed to record payment for invoice %s", number)
            payment_error = exc

    # Step 3: stock (best-effort)
    deduction = deduct_invoice_stock(
        cart.lines,
        catalog=catalog,
        warehouse_id=session.warehouse_id,
        reference=number,
        oversell_policy=oversell_policy,
    )
    if deduction.pending:
        logger.warning("Invoice %s: %d stock movement(s) queued for retry", number, len(deduction.pending))

    vat_amount = percent_of(cart.total_amount_cents, Decimal(vat_rate)) if apply_vat else 0
    finalized = FinalizedInvoice(
        invoice_id=invoice_id,
        invoice_number=number,
        status=status,
        client_id=client.id,
        client_name=getattr(client, "name", None),
        cash_session_id=session.id,
        employee_id=session.employee_id,
        warehouse_id=session.warehouse_id,
        lines=tuple(MappingProxyType(line.to_dict()) for line in cart.lines),
        discount_percent=cart.discount_percent,
        subtotal_cents=cart.subtotal_cents,
        discount_amount_cents=cart.discount_amount_cents,
        promotion_discount_cents=cart.promotion_discount_cents,
        applied_promotion_ids=tuple(cart.promotion_outcome.applied_ids),
        total_amount_cents=cart.total_amount_cents,
        paid_amount_cents=cart.paid_amount_cents,
        remaining_amount_cents=cart.remaining_amount_cents,
        change_due_cents=cart.change_due_cents,
        payment_method=method,
        settled_at=settled_at,
        payment_number=payment_number,
        vat_enabled=bool(apply_vat),
        vat_rate=vat_rate if apply_vat else 0,
        vat_amount_cents=vat_amount,
        total_with_vat_cents=cart.total_amount_cents + vat_amount,
        stock_pending=tuple(deduction.pending),
        stock_oversold=tuple(m.idempotency_key for m in deduction.oversold),
    )
    logger.info(
        "Settled invoice %s (%s) total=%s paid=%s method=%s",
        number, status.value, finalized.total_amount_cents, finalized.paid_amount_cents, method.value,
    )

    if payment_error is not None:
        raise PaymentNotRecorded(
            f"Invoice {number} was saved but its payment was not recorded",
            finalized,
            details={"invoice_number": number, "error": payment_error.message},
        ) from payment_error
    return finalized


def record_payment(invoice: FinalizedInvoice, *, ledger, session=None) -> FinalizedInvoice:
    """
    Re-record the payment of a settled invoice whose step 2 failed.

    Returns the invoice with its payment number filled in. StoreUnavailable
    propagates so the operator can try again. A closed session is never
    touched: its reconciliation report is final.
    """
    if invoice.payment_recorded:
        return invoice
    if session is None:
        session = ledger.get_cash_session(invoice.cash_session_id)
    if not session.is_open:
        raise InvalidStateError(
            f"Cash session {session.id} is closed; the payment for invoice {invoice.invoice_number} cannot be added to it",
            details={"session_id": session.id, "invoice_number": invoice.invoice_number},
        )
    recorded_at = utcnow()
    payment = _payment_row(
        invoice_id=invoice.invoice_id,
        client_id=invoice.client_id,
        session=session,
        paid_cents=invoice.paid_amount_cents,
        total_cents=invoice.total_amount_cents,
        method=invoice.payment_method,
        recorded_at=recorded_at,
    )
    number = _create_payment(ledger, payment, recorded_at=recorded_at)
    current_app.logger.info("Recorded payment %s for invoice %s", number, invoice.invoice_number)
    return replace(invoice, payment_number=number)
