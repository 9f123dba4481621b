from pos_core.models import Product, ProductVariant, Client, Promotion, CashSession, StockMovement, Warehouse


def invoke(app, *args):
    runner = app.test_cli_runner()
    result = runner.invoke(args=list(args))
    assert result.exception is None, result.output
    return result.output


def test_seed_demo_is_idempotent(app, db_session):
    output = invoke(app, "catalog", "seed-demo")
    assert "PASS Demo data ready." in output
    assert "Created product: DEMO-WATER" in output

    again = invoke(app, "catalog", "seed-demo")
    assert "Created product" not in again
    assert db_session.query(Product).count() == 4
    assert db_session.query(ProductVariant).count() == 1
    assert db_session.query(Client).count() == 2


def test_stock_listing(app, db_session):
    invoke(app, "catalog", "seed-demo")
    warehouse = db_session.query(Warehouse).filter_by(name="Main").one()
    output = invoke(app, "catalog", "stock", "--warehouse-id", str(warehouse.id))
    assert "Mineral water 1.5L" in output
    assert "240.000" in output


def test_cash_open_summary_close(app, db_session, warehouse):
    output = invoke(app, "cash", "open", "--employee-id", "3", "--warehouse-id", str(warehouse.id), "--opening", "150.00")
    assert "PASS Opened cash session" in output
    session = db_session.query(CashSession).one()
    assert session.opening_cash_cents == 15000

    output = invoke(app, "cash", "open", "--employee-id", "3", "--warehouse-id", str(warehouse.id))
    assert "FAIL Error:" in output
    assert f"Open session: {session.id}" in output

    output = invoke(app, "cash", "summary", "--session-id", str(session.id))
    assert "Expected cash:  150.00" in output

    output = invoke(app, "cash", "close", "--session-id", str(session.id), "--declared", "140.00")
    assert "FAIL Error: A note is required" in output

    output = invoke(app, "cash", "close", "--session-id", str(session.id), "--declared", "140.00",
                    "--note", "Paid the delivery driver")
    assert f"PASS Closed cash session {session.id}" in output
    assert "Variance: -10.00" in output

    output = invoke(app, "cash", "sessions", "--status", "CLOSED")
    assert "Paid the delivery driver" in output


def test_promotion_commands(app, db_session, product_x):
    output = invoke(app, "promotions", "create", "--title", "Ten off from five", "--type", "discount",
                    "--min-quantity", "5", "--discount-percent", "10")
    assert "PASS Created promotion" in output
    promo = db_session.query(Promotion).one()

    output = invoke(app, "promotions", "create", "--title", "Broken", "--type", "discount")
    assert "FAIL Error:" in output

    output = invoke(app, "promotions", "list", "--active")
    assert "Ten off from five" in output

    output = invoke(app, "promotions", "deactivate", str(promo.id))
    assert f"PASS Deactivated promotion {promo.id}" in output
    assert "No promotions found." in invoke(app, "promotions", "list", "--active")

    assert "FAIL Error:" in invoke(app, "promotions", "deactivate", "9999")


def test_stock_reconciliation_commands(app, db_session, catalog, stocked, product_x):
    assert "No stock movements found." in invoke(app, "stock", "movements")

    catalog.record_pending_movement(product_x.id, None, stocked.id, -2, idempotency_key="INV-X:1:0",
                                    reference="INV-X", error="offline")
    assert "INV-X" in invoke(app, "stock", "movements", "--pending")

    output = invoke(app, "stock", "retry-pending")
    assert "PASS Applied 1 movement(s), 0 still pending, 0 oversold." in output

    db_session.expire_all()
    movement = db_session.query(StockMovement).one()
    assert movement.status == "applied"
    assert catalog.get_stock(product_x.id, stocked.id) == 98
