from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Settled sale, as written by checkout step 1.

    WHY: The cart is edited in memory; only a settled sale reaches the
    ledger. All totals are stored exactly as the cart computed them so the
    receipt and the cash-session summary read the same numbers.

    STATUS: paid, partial or credit (derived from paid vs total at settlement).
    A settled invoice is never mutated by the core afterwards.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.Index("ix_invoices_session_created", "cash_session_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False)
    employee_id = db.Column(db.Integer, nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    promotion_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    client = db.relationship("Client")
    cash_session = db.relationship("CashSession", backref=db.backref("invoices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "client_id": self.client_id,
            "cash_session_id": self.cash_session_id,
            "employee_id": self.employee_id,
            "warehouse_id": self.warehouse_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_percent": str(self.discount_percent),
            "discount_amount_cents": self.discount_amount_cents,
            "promotion_discount_cents": self.promotion_discount_cents,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "payment_method": self.payment_method,
            "created_at": to_utc_z(self.created_at),
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "lines": [line.to_dict() for line in self.lines],
        }


class InvoiceLine(db.Model):
    """
    Line of a settled invoice. Soft-deleted lines are kept for audit.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=True)
    unit_type = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    is_gift = db.Column(db.Boolean, nullable=False, default=False)
    deleted = db.Column(db.Boolean, nullable=False, default=False)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=True)

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("lines", lazy=True, order_by="InvoiceLine.position"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "unit_type": self.unit_type,
            "quantity": str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": str(self.discount_percent),
            "line_total_cents": self.line_total_cents,
            "is_gift": self.is_gift,
            "deleted": self.deleted,
            "promotion_id": self.promotion_id,
        }


class Payment(db.Model):
    """
    Payment taken against an invoice during a cash session.

    TENDER TYPES: cash, check, card, bank_transfer, credit

    DESIGN: amount_cents is what was applied to the invoice; any cash
    over-tender is kept in change_cents so session takings stay exact.
    An invoice may accumulate several payments over time.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_number", name="uq_payments_number"),
        db.Index("ix_payments_session_method", "cash_session_id", "method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(64), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)  # completed, refunded

    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False)
    collected_by = db.Column(db.Integer, nullable=True)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "invoice_id": self.invoice_id,
            "client_id": self.client_id,
            "amount_cents": self.amount_cents,
            "change_cents": self.change_cents,
            "method": self.method,
            "status": self.status,
            "cash_session_id": self.cash_session_id,
            "collected_by": self.collected_by,
            "recorded_at": to_utc_z(self.recorded_at),
        }
