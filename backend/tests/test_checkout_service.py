from decimal import Decimal

import pytest
from sqlalchemy.exc import DataError

from pos_core.enums import InvoiceStatus, PaymentMethod
from pos_core.errors import ValidationError, ConflictError, StoreUnavailable, PaymentNotRecorded, InvalidStateError
from pos_core.models import Client, Invoice, Payment
from pos_core.services import cash_session_service
from pos_core.services.cart import Cart
from pos_core.services.catalog_store import CatalogStore
from pos_core.services.checkout_service import settle, record_payment, normalize_payment_method
from pos_core.services.ledger_store import LedgerStore


class ConflictingLedger(LedgerStore):
    """Ledger whose first ``conflicts`` invoice inserts hit a taken number."""

    def __init__(self, conflicts):
        super().__init__(backoff_base=0)
        self.conflicts = conflicts
        self.numbers = []

    def create_invoice(self, invoice):
        self.numbers.append(invoice["invoice_number"])
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("Invoice number already exists")
        return super().create_invoice(invoice)


class OfflineInvoiceLedger(LedgerStore):
    def create_invoice(self, invoice):
        raise StoreUnavailable("ledger offline")


class OfflinePaymentLedger(LedgerStore):
    def __init__(self):
        super().__init__(backoff_base=0)
        self.healthy = False

    def create_payment(self, payment):
        if not self.healthy:
            raise StoreUnavailable("ledger offline")
        return super().create_payment(payment)


class TakenPaymentNumberLedger(LedgerStore):
    """Ledger whose first ``conflicts`` payment inserts hit a taken number."""

    def __init__(self, conflicts):
        super().__init__(backoff_base=0)
        self.conflicts = conflicts
        self.numbers = []

    def create_payment(self, payment):
        self.numbers.append(payment["payment_number"])
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("Payment number already exists")
        return super().create_payment(payment)


class BrokenInvoiceLedger(LedgerStore):
    def create_invoice(self, invoice):
        raise DataError("INSERT INTO invoices", {}, Exception("value too long"))


class OfflineStockCatalog(CatalogStore):
    def apply_stock_delta(self, *args, **kwargs):
        raise StoreUnavailable("stock offline")


def cart_with(*items, paid=None, discount=None, client=None):
    cart = Cart(client=client)
    for product, qty in items:
        cart.add_line(product, qty)
    if discount is not None:
        cart.set_invoice_discount(discount)
    if paid is not None:
        cart.set_paid_amount(paid)
    return cart


def test_cash_sale_persists_invoice_payment_and_stock(
    db_session, catalog, ledger, stocked, product_x, product_y, open_session,
):
    cart = cart_with((product_x, 3), (product_y, 2), discount=10)
    invoice = settle(cart, session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.subtotal_cents == 8000
    assert invoice.discount_amount_cents == 800
    assert invoice.total_amount_cents == 7200
    assert invoice.remaining_amount_cents == 0
    assert invoice.payment_method == PaymentMethod.CASH
    assert invoice.payment_number.startswith("PAY-")
    assert invoice.invoice_number.startswith("INV-")
    assert invoice.payment_recorded
    assert invoice.client_name == "General Client"
    assert cart.status == InvoiceStatus.PAID

    row = db_session.get(Invoice, invoice.invoice_id)
    assert row.total_amount_cents == 7200
    assert [line.quantity for line in row.lines] == [Decimal(3), Decimal(2)]

    payments = db_session.query(Payment).all()
    assert len(payments) == 1
    assert payments[0].amount_cents == 7200
    assert payments[0].cash_session_id == open_session.id

    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(97)
    assert catalog.get_stock(product_y.id, stocked.id) == Decimal(98)


def test_general_client_is_created_lazily_and_reused(db_session, catalog, ledger, stocked, product_x, open_session):
    assert db_session.query(Client).filter_by(is_general=True).count() == 0
    first = settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")
    second = settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")
    assert first.client_id == second.client_id
    assert db_session.query(Client).filter_by(is_general=True).count() == 1


def test_named_client_is_kept(catalog, ledger, stocked, product_x, client_a, open_session):
    invoice = settle(
        cart_with((product_x, 1), client=client_a),
        session=open_session, catalog=catalog, ledger=ledger, payment_method="card",
    )
    assert invoice.client_id == client_a.id


def test_credit_sale_records_no_payment(db_session, catalog, ledger, stocked, product_x, open_session):
    invoice = settle(
        cart_with((product_x, 2), paid=0),
        session=open_session, catalog=catalog, ledger=ledger, payment_method="cash",
    )
    assert invoice.status == InvoiceStatus.CREDIT
    assert invoice.payment_method == PaymentMethod.CREDIT
    assert invoice.payment_number is None
    assert invoice.payment_recorded
    assert invoice.remaining_amount_cents == 2000
    assert db_session.query(Payment).count() == 0


def test_partial_and_overpaid_sales(db_session, catalog, ledger, stocked, product_x, open_session):
    partial = settle(
        cart_with((product_x, 4), paid=1500),
        session=open_session, catalog=catalog, ledger=ledger, payment_method="cash",
    )
    assert partial.status == InvoiceStatus.PARTIAL
    assert partial.remaining_amount_cents == 2500

    change = settle(
        cart_with((product_x, 1), paid=5000),
        session=open_session, catalog=catalog, ledger=ledger, payment_method="cash",
    )
    assert change.status == InvoiceStatus.PAID
    assert change.change_due_cents == 4000
    payment = db_session.query(Payment).filter_by(invoice_id=change.invoice_id).one()
    assert payment.amount_cents == 1000
    assert payment.change_cents == 4000


def test_invoice_number_conflict_is_retried_once(catalog, stocked, product_x, open_session):
    ledger = ConflictingLedger(conflicts=1)
    invoice = settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger,
                     payment_method="cash")
    assert len(ledger.numbers) == 2
    assert ledger.numbers[0] != ledger.numbers[1]
    assert invoice.invoice_number == ledger.numbers[1]


def test_second_conflict_is_fatal_and_cart_stays_draft(db_session, catalog, stocked, product_x, open_session):
    ledger = ConflictingLedger(conflicts=2)
    cart = cart_with((product_x, 1))
    with pytest.raises(ConflictError):
        settle(cart, session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")

    assert cart.status == InvoiceStatus.DRAFT
    assert cart.total_amount_cents == 1000
    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(100)
    assert db_session.query(Payment).count() == 0


def test_invoice_store_down_is_fatal(db_session, catalog, stocked, product_x, open_session):
    cart = cart_with((product_x, 1))
    with pytest.raises(StoreUnavailable):
        settle(cart, session=open_session, catalog=catalog, ledger=OfflineInvoiceLedger(),
               payment_method="cash")
    assert cart.status == InvoiceStatus.DRAFT
    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(100)


def test_payment_failure_keeps_sale_and_can_be_recorded_later(
    db_session, catalog, stocked, product_x, open_session,
):
    ledger = OfflinePaymentLedger()
    cart = cart_with((product_x, 2))

    with pytest.raises(PaymentNotRecorded) as exc_info:
        settle(cart, session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")

    invoice = exc_info.value.invoice
    assert invoice.status == InvoiceStatus.PAID
    assert not invoice.payment_recorded
    assert cart.status == InvoiceStatus.PAID
    assert db_session.get(Invoice, invoice.invoice_id) is not None
    assert db_session.query(Payment).count() == 0
    # Stock still deducted
    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(98)

    with pytest.raises(StoreUnavailable):
        record_payment(invoice, ledger=ledger)

    ledger.healthy = True
    recorded = record_payment(invoice, ledger=ledger)
    assert recorded.payment_recorded
    assert recorded.invoice_number == invoice.invoice_number
    payment = db_session.query(Payment).one()
    assert payment.invoice_id == invoice.invoice_id
    assert payment.amount_cents == 2000

    # Recording twice does not duplicate
    assert record_payment(recorded, ledger=ledger) is recorded
    assert db_session.query(Payment).count() == 1


def test_unexpected_invoice_error_returns_cart_to_draft(db_session, catalog, stocked, product_x, open_session):
    cart = cart_with((product_x, 1))
    with pytest.raises(DataError):
        settle(cart, session=open_session, catalog=catalog, ledger=BrokenInvoiceLedger(backoff_base=0),
               payment_method="cash")

    assert cart.status == InvoiceStatus.DRAFT
    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(100)
    assert db_session.query(Payment).count() == 0


def test_payment_number_conflict_is_retried_once(db_session, catalog, stocked, product_x, open_session):
    ledger = TakenPaymentNumberLedger(conflicts=1)
    invoice = settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger,
                     payment_method="cash")

    assert len(ledger.numbers) == 2
    assert ledger.numbers[0] != ledger.numbers[1]
    assert invoice.payment_number == ledger.numbers[1]
    assert db_session.query(Payment).one().payment_number == ledger.numbers[1]


def test_repeated_payment_conflict_keeps_the_sale(db_session, catalog, stocked, product_x, open_session):
    ledger = TakenPaymentNumberLedger(conflicts=5)
    cart = cart_with((product_x, 2))

    with pytest.raises(PaymentNotRecorded) as exc_info:
        settle(cart, session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")

    assert len(ledger.numbers) == 2
    invoice = exc_info.value.invoice
    assert not invoice.payment_recorded
    assert cart.status == InvoiceStatus.PAID
    assert db_session.get(Invoice, invoice.invoice_id) is not None
    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(98)


def test_payment_is_not_added_to_a_closed_session(db_session, catalog, stocked, product_x, open_session):
    ledger = OfflinePaymentLedger()
    with pytest.raises(PaymentNotRecorded) as exc_info:
        settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger,
               payment_method="cash")
    invoice = exc_info.value.invoice

    report = cash_session_service.close_cash_session(open_session.id, 20000, ledger=ledger)
    assert report.balanced
    assert report.summary.expected_cash_cents == 20000

    ledger.healthy = True
    with pytest.raises(InvalidStateError):
        record_payment(invoice, ledger=ledger)

    assert db_session.query(Payment).count() == 0
    summary = cash_session_service.get_session_summary(open_session.id, ledger=ledger)
    assert summary.expected_cash_cents == 20000


def test_receipt_lines_are_read_only(catalog, ledger, stocked, product_x, open_session):
    invoice = settle(cart_with((product_x, 2)), session=open_session, catalog=catalog, ledger=ledger,
                     payment_method="cash")

    with pytest.raises(TypeError):
        invoice.lines[0]["quantity"] = "9"
    lines = invoice.to_dict()["lines"]
    assert type(lines[0]) is dict
    lines[0]["quantity"] = "9"
    assert invoice.lines[0]["quantity"] != "9"


def test_stock_failure_does_not_fail_checkout(db_session, ledger, stocked, product_x, open_session):
    catalog = OfflineStockCatalog(backoff_base=0)
    invoice = settle(cart_with((product_x, 3)), session=open_session, catalog=catalog, ledger=ledger,
                     payment_method="cash")

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.stock_pending == (f"{invoice.invoice_number}:{product_x.id}:0",)
    assert [m.reference for m in catalog.list_movements(pending_only=True)] == [invoice.invoice_number]
    assert catalog.get_stock(product_x.id, stocked.id) == Decimal(100)


def test_oversell_warns_by_default(catalog, ledger, warehouse, product_x, open_session):
    catalog.set_stock(product_x.id, warehouse.id, 1)
    invoice = settle(cart_with((product_x, 3)), session=open_session, catalog=catalog, ledger=ledger,
                     payment_method="cash")
    assert invoice.stock_oversold == (f"{invoice.invoice_number}:{product_x.id}:0",)
    assert catalog.get_stock(product_x.id, warehouse.id) == 0


def test_reject_policy_refuses_before_writing(db_session, catalog, ledger, warehouse, product_x, open_session):
    catalog.set_stock(product_x.id, warehouse.id, 1)
    cart = cart_with((product_x, 3))
    with pytest.raises(ValidationError) as exc_info:
        settle(cart, session=open_session, catalog=catalog, ledger=ledger,
               payment_method="cash", oversell_policy="reject")
    assert exc_info.value.details["shortages"][0]["product_id"] == product_x.id
    assert cart.status == InvoiceStatus.DRAFT
    assert db_session.query(Invoice).count() == 0


def test_preconditions(catalog, ledger, stocked, product_x, open_session):
    with pytest.raises(ValidationError):
        settle(Cart(), session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")
    with pytest.raises(ValidationError):
        settle(cart_with((product_x, 1)), session=None, catalog=catalog, ledger=ledger, payment_method="cash")
    with pytest.raises(ValidationError):
        settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger,
               payment_method="bitcoin")
    with pytest.raises(ValidationError):
        settle(cart_with((product_x, 1)), session=open_session, catalog=catalog, ledger=ledger,
               payment_method="cash", apply_vat=True, vat_rate=15)

    held = cart_with((product_x, 1))
    held.hold()
    with pytest.raises(InvalidStateError):
        settle(held, session=open_session, catalog=catalog, ledger=ledger, payment_method="cash")


def test_vat_is_reported_on_receipt_only(catalog, ledger, stocked, product_x, open_session):
    invoice = settle(cart_with((product_x, 5)), session=open_session, catalog=catalog, ledger=ledger,
                     payment_method="cash", apply_vat=True, vat_rate=20)
    assert invoice.total_amount_cents == 5000
    assert invoice.vat_amount_cents == 1000
    assert invoice.total_with_vat_cents == 6000
    assert invoice.to_dict()["vat_rate"] == 20


def test_normalize_payment_method():
    assert normalize_payment_method("card", 0) == PaymentMethod.CREDIT
    assert normalize_payment_method("card", 100) == PaymentMethod.CARD
    with pytest.raises(ValidationError):
        normalize_payment_method("barter", 100)
