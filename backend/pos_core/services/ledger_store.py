"""
Ledger store: invoices, payments and cash sessions.

WHY: Settlement writes are plain inserts guarded by database uniqueness.
A duplicate invoice number or a second open cash session comes back as
ConflictError; a database that cannot be reached comes back as
StoreUnavailable once the retries are spent.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, InvoiceLine, Payment, CashSession, CashSessionReport
from ..enums import PaymentStatus
from ..errors import ConflictError, NotFoundError, InvalidStateError
from ..time_utils import utcnow
from .concurrency import run_with_retry


def open_guard_key(employee_id: int, warehouse_id: int) -> str:
    return f"{employee_id}:{warehouse_id}"


class LedgerStore:
    def __init__(self, *, attempts: int = 3, backoff_base: float = 0.1):
        self.attempts = attempts
        self.backoff_base = backoff_base

    def _run(self, func):
        return run_with_retry(func, attempts=self.attempts, backoff_base=self.backoff_base)

    # =========================================================================
    # INVOICES
    # =========================================================================

    def create_invoice(self, invoice: dict) -> int:
        """
        Insert a settled invoice and its lines in one transaction.

        ``invoice`` holds the Invoice columns plus ``lines`` (a list of
        InvoiceLine column dicts). Raises ConflictError when the invoice
        number is taken.
        """
        fields = dict(invoice)
        lines = fields.pop("lines", [])

        def _op():
            row = Invoice(**fields)
            db.session.add(row)
            db.session.flush()
            for position, line in enumerate(lines, start=1):
                db.session.add(InvoiceLine(invoice_id=row.id, position=position, **line))
            db.session.commit()
            return row.id

        try:
            return self._run(_op)
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(
                f"Invoice number {fields.get('invoice_number')} already exists",
                details={"invoice_number": fields.get("invoice_number"), "error": str(exc.orig)},
            ) from exc

    def get_invoice(self, invoice_id: int) -> Invoice:
        row = self._run(lambda: db.session.get(Invoice, invoice_id))
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
        return row

    def list_invoices(self, session_id: int) -> list[Invoice]:
        return self._run(lambda: db.session.query(Invoice).filter_by(
            cash_session_id=session_id,
        ).order_by(Invoice.id).all())

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def create_payment(self, payment: dict) -> Payment:
        def _op():
            row = Payment(**payment)
            db.session.add(row)
            db.session.commit()
            return row

        try:
            return self._run(_op)
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(
                f"Payment number {payment.get('payment_number')} already exists",
                details={"payment_number": payment.get("payment_number"), "error": str(exc.orig)},
            ) from exc

    def list_payments(self, session_id: int, *, completed_only: bool = False) -> list[Payment]:
        def _op():
            q = db.session.query(Payment).filter_by(cash_session_id=session_id)
            if completed_only:
                q = q.filter_by(status=PaymentStatus.COMPLETED.value)
            return q.order_by(Payment.id).all()
        return self._run(_op)

    # =========================================================================
    # CASH SESSIONS
    # =========================================================================

    def create_cash_session(self, employee_id: int, warehouse_id: int, opening_cash_cents: int) -> CashSession:
        """
        Open a session. The unique open_guard makes a concurrent second open
        for the same (employee, warehouse) fail at the database.
        """
        def _op():
            row = CashSession(
                employee_id=employee_id,
                warehouse_id=warehouse_id,
                open_guard=open_guard_key(employee_id, warehouse_id),
                opening_cash_cents=opening_cash_cents,
                opened_at=utcnow(),
            )
            db.session.add(row)
            db.session.commit()
            return row

        try:
            return self._run(_op)
        except IntegrityError as exc:
            db.session.rollback()
            existing = self.find_open_session(employee_id, warehouse_id)
            raise ConflictError(
                "A cash session is already open for this employee and warehouse",
                details={
                    "employee_id": employee_id,
                    "warehouse_id": warehouse_id,
                    "session_id": existing.id if existing else None,
                },
            ) from exc

    def get_cash_session(self, session_id: int) -> CashSession:
        row = self._run(lambda: db.session.get(CashSession, session_id))
        if row is None:
            raise NotFoundError(f"Cash session {session_id} not found", details={"session_id": session_id})
        return row

    def find_open_session(self, employee_id: int, warehouse_id: int) -> CashSession | None:
        return self._run(lambda: db.session.query(CashSession).filter_by(
            open_guard=open_guard_key(employee_id, warehouse_id),
        ).first())

    def list_sessions(self, *, employee_id=None, warehouse_id=None, status=None, limit: int = 20) -> list[CashSession]:
        def _op():
            q = db.session.query(CashSession)
            if employee_id is not None:
                q = q.filter_by(employee_id=employee_id)
            if warehouse_id is not None:
                q = q.filter_by(warehouse_id=warehouse_id)
            if status == "OPEN":
                q = q.filter(CashSession.closed_at.is_(None))
            elif status == "CLOSED":
                q = q.filter(CashSession.closed_at.isnot(None))
            return q.order_by(CashSession.opened_at.desc(), CashSession.id.desc()).limit(limit).all()
        return self._run(_op)

    def close_cash_session(
        self,
        session_id: int,
        declared_cash_cents: int,
        note: str | None,
        *,
        report: dict | None = None,
    ) -> CashSession:
        """
        Record the closing count and release the open guard.

        ``report`` (CashSessionReport columns) is written in the same
        transaction so a closed session always has its snapshot.
        """
        def _op():
            row = db.session.get(CashSession, session_id)
            if row is None:
                raise NotFoundError(f"Cash session {session_id} not found", details={"session_id": session_id})
            if not row.is_open:
                raise InvalidStateError("Cash session is already closed", details={"session_id": session_id})
            row.closing_cash_declared_cents = declared_cash_cents
            row.closing_note = note
            row.closed_at = utcnow()
            row.open_guard = None
            if report is not None:
                db.session.add(CashSessionReport(session_id=session_id, **report))
            db.session.commit()
            return row
        return self._run(_op)

    def get_session_report(self, session_id: int) -> CashSessionReport | None:
        return self._run(lambda: db.session.query(CashSessionReport).filter_by(session_id=session_id).first())
