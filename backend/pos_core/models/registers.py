from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


class CashSession(db.Model):
    """
    Cash session (register shift) for one employee at one warehouse.

    WHY: Cashier accountability. The session holds the opening float; takings
    are derived from the payments that reference it, and closing records the
    declared cash and the explanation for any variance.

    LIFECYCLE:
    - OPEN: closed_at is NULL, sales may be settled against it
    - CLOSED: closed_at set, declared cash recorded

    UNIQUENESS: open_guard is "<employee_id>:<warehouse_id>" while the session
    is open and NULL once closed. The unique constraint on it is what stops
    two terminals from opening the same pair concurrently.

    IMMUTABLE: Once closed, session cannot be reopened or modified.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.UniqueConstraint("open_guard", name="uq_cash_sessions_open_guard"),
        db.Index("ix_cash_sessions_employee_warehouse", "employee_id", "warehouse_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    open_guard = db.Column(db.String(64), nullable=True)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_declared_cents = db.Column(db.Integer, nullable=True)
    closing_note = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("Warehouse")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "warehouse_id": self.warehouse_id,
            "status": "OPEN" if self.is_open else "CLOSED",
            "opening_cash_cents": self.opening_cash_cents,
            "closing_cash_declared_cents": self.closing_cash_declared_cents,
            "closing_note": self.closing_note,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CashSessionReport(db.Model):
    """
    Reconciliation snapshot written when a session closes.

    IMMUTABLE: One row per closed session, never updated.
    """
    __tablename__ = "cash_session_reports"
    __table_args__ = (
        db.UniqueConstraint("session_id", name="uq_cash_session_reports_session"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    total_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_check_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transfer_cents = db.Column(db.Integer, nullable=False, default=0)
    total_credit_payments_cents = db.Column(db.Integer, nullable=False, default=0)
    total_credit_cents = db.Column(db.Integer, nullable=False, default=0)  # unpaid balance of session invoices

    expected_cash_cents = db.Column(db.Integer, nullable=False)
    declared_cash_cents = db.Column(db.Integer, nullable=False)
    difference_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashSession", backref=db.backref("report", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "total_sales_cents": self.total_sales_cents,
            "total_cash_cents": self.total_cash_cents,
            "total_card_cents": self.total_card_cents,
            "total_check_cents": self.total_check_cents,
            "total_transfer_cents": self.total_transfer_cents,
            "total_credit_payments_cents": self.total_credit_payments_cents,
            "total_credit_cents": self.total_credit_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "declared_cash_cents": self.declared_cash_cents,
            "difference_cents": self.difference_cents,
            "created_at": to_utc_z(self.created_at),
        }
