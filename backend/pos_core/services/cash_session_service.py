"""
Cash session ledger.

WHY: Cashier accountability. A session holds the opening float for one
employee at one warehouse; takings are never stored on it, they are
derived from the payments that reference it.

DESIGN PRINCIPLES:
- One open session per (employee, warehouse), enforced by the store
- Summary is computed, not accumulated
- Closing with a variance requires an explanation
- Sessions are immutable once closed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..enums import PaymentMethod, PaymentStatus
from ..errors import ValidationError, InvalidStateError
from ..money import format_cents
from ..time_utils import to_utc_z


@dataclass(frozen=True)
class SessionSummary:
    session_id: int
    employee_id: int
    warehouse_id: int
    opening_cash_cents: int
    total_by_method: dict = field(default_factory=dict)
    total_sales_cents: int = 0
    total_paid_cents: int = 0
    total_credit_cents: int = 0
    expected_cash_cents: int = 0
    invoice_count: int = 0
    payment_count: int = 0

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "employee_id": self.employee_id,
            "warehouse_id": self.warehouse_id,
            "opening_cash_cents": self.opening_cash_cents,
            "total_by_method": dict(self.total_by_method),
            "total_sales_cents": self.total_sales_cents,
            "total_paid_cents": self.total_paid_cents,
            "total_credit_cents": self.total_credit_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "invoice_count": self.invoice_count,
            "payment_count": self.payment_count,
        }


@dataclass(frozen=True)
class ReconciliationReport:
    summary: SessionSummary
    declared_cash_cents: int
    variance_cents: int
    note: str | None
    closed_at: datetime

    @property
    def balanced(self) -> bool:
        return self.variance_cents == 0

    def to_dict(self) -> dict:
        data = self.summary.to_dict()
        data.update({
            "declared_cash_cents": self.declared_cash_cents,
            "variance_cents": self.variance_cents,
            "note": self.note,
            "closed_at": to_utc_z(self.closed_at),
        })
        return data


def _non_negative_cents(value, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an amount in cents", details={"field": field_name})
    if value < 0:
        raise ValidationError(f"{field_name} cannot be negative", details={"field": field_name, "value": value})
    return value


def open_cash_session(employee_id: int, warehouse_id: int, opening_cash_cents: int, *, ledger):
    """
    Open a session for ``employee_id`` at ``warehouse_id``.

    Raises:
        ValidationError: negative opening cash
        ConflictError: a session is already open for the pair; its id is in
            ``details["session_id"]`` so the caller can resume it
    """
    opening = _non_negative_cents(opening_cash_cents, "opening_cash_cents")
    session = ledger.create_cash_session(employee_id, warehouse_id, opening)
    current_app.logger.info(
        "Cash session %s opened for employee %s at warehouse %s (float %s)",
        session.id, employee_id, warehouse_id, format_cents(opening),
    )
    return session


def find_open_session(employee_id: int, warehouse_id: int, *, ledger):
    return ledger.find_open_session(employee_id, warehouse_id)


def list_sessions(*, ledger, employee_id=None, warehouse_id=None, status=None, limit: int = 20):
    return ledger.list_sessions(employee_id=employee_id, warehouse_id=warehouse_id, status=status, limit=limit)


def get_session_summary(session_id: int, *, ledger) -> SessionSummary:
    """
    Derive takings from the session's payments and invoices.

    total_by_method: completed payments per tender
    total_credit:    unpaid balance of the session's invoices
    expected_cash:   opening float + cash takings
    """
    session = ledger.get_cash_session(session_id)
    payments = ledger.list_payments(session_id)
    invoices = ledger.list_invoices(session_id)

    by_method = {method.value: 0 for method in PaymentMethod}
    completed = 0
    for payment in payments:
        if payment.status != PaymentStatus.COMPLETED.value:
            continue
        method = PaymentMethod.parse(payment.method).value
        by_method[method] += payment.amount_cents
        completed += 1

    total_sales = sum(inv.total_amount_cents for inv in invoices)
    total_credit = sum(max(0, inv.total_amount_cents - inv.paid_amount_cents) for inv in invoices)

    return SessionSummary(
        session_id=session.id,
        employee_id=session.employee_id,
        warehouse_id=session.warehouse_id,
        opening_cash_cents=session.opening_cash_cents,
        total_by_method=by_method,
        total_sales_cents=total_sales,
        total_paid_cents=sum(by_method.values()),
        total_credit_cents=total_credit,
        expected_cash_cents=session.opening_cash_cents + by_method[PaymentMethod.CASH.value],
        invoice_count=len(invoices),
        payment_count=completed,
    )


def close_cash_session(session_id: int, declared_cash_cents: int, note: str | None = None, *, ledger) -> ReconciliationReport:
    """
    Close a session against the declared drawer count.

    A non-empty note is required whenever declared != expected. The
    reconciliation snapshot is stored with the closing fields.
    """
    declared = _non_negative_cents(declared_cash_cents, "declared_cash_cents")
    session = ledger.get_cash_session(session_id)
    if not session.is_open:
        raise InvalidStateError("Cash session is already closed", details={"session_id": session_id})

    summary = get_session_summary(session_id, ledger=ledger)
    variance = declared - summary.expected_cash_cents
    note = (note or "").strip() or None
    if variance != 0 and note is None:
        raise ValidationError(
            "A note is required when the declared cash differs from the expected cash",
            details={
                "expected_cash_cents": summary.expected_cash_cents,
                "declared_cash_cents": declared,
                "variance_cents": variance,
            },
        )

    by_method = summary.total_by_method
    closed = ledger.close_cash_session(
        session_id,
        declared,
        note,
        report={
            "total_sales_cents": summary.total_sales_cents,
            "total_cash_cents": by_method[PaymentMethod.CASH.value],
            "total_card_cents": by_method[PaymentMethod.CARD.value],
            "total_check_cents": by_method[PaymentMethod.CHECK.value],
            "total_transfer_cents": by_method[PaymentMethod.BANK_TRANSFER.value],
            "total_credit_payments_cents": by_method[PaymentMethod.CREDIT.value],
            "total_credit_cents": summary.total_credit_cents,
            "expected_cash_cents": summary.expected_cash_cents,
            "declared_cash_cents": declared,
            "difference_cents": variance,
        },
    )

    log = current_app.logger.warning if variance else current_app.logger.info
    log(
        "Cash session %s closed: expected %s, declared %s, variance %s",
        session_id, format_cents(summary.expected_cash_cents), format_cents(declared), format_cents(variance),
    )
    return ReconciliationReport(
        summary=summary,
        declared_cash_cents=declared,
        variance_cents=variance,
        note=note,
        closed_at=closed.closed_at,
    )
