# Overview: Flask CLI command groups for seeding, cash sessions, promotions and stock reconciliation.

# backend/pos_core/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to pos_core (PowerShell: $env:FLASK_APP="pos_core").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed-demo
#   Idempotent demo data: warehouse, tiered products, a carton variant, clients, stock.
# - python -m flask catalog stock --warehouse-id 1
#   Show stock rows for a warehouse.
#
# Cash sessions:
# - python -m flask cash open --employee-id 1 --warehouse-id 1 --opening 200.00
# - python -m flask cash summary --session-id 1
# - python -m flask cash close --session-id 1 --declared 530.00 [--note "..."]
# - python -m flask cash sessions [--status OPEN] [--limit 20]
#
# Promotions:
# - python -m flask promotions list [--active]
# - python -m flask promotions create --title "10% from 5" --type discount --min-quantity 5 --discount-percent 10
# - python -m flask promotions deactivate 3
#
# Stock reconciliation:
# - python -m flask stock movements [--pending | --oversold] [--limit 50]
# - python -m flask stock retry-pending

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PosError
from .money import to_cents, format_cents


@click.group('system')
def system_group():
    """System maintenance commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' to load demo data.")


# =============================================================================
# CATALOG
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog and stock inspection commands."""


DEMO_PRODUCTS = [
    # sku, name, base, (A, B, C, D, E), unit, stock
    ("DEMO-WATER", "Mineral water 1.5L", 600, (500, 520, 540, 560, 600), "unit", 240),
    ("DEMO-RICE", "Rice", 1800, (0, 0, 0, 0, 1800), "kilo", 150),
    ("DEMO-OIL", "Sunflower oil 1L", 2500, (2200, 2300, 0, 0, 2500), "litre", 80),
    ("DEMO-SOAP", "Soap bar", 0, (0, 0, 0, 0, 0), "unit", 40),
]


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Load demo data. Safe to run twice: existing rows are reused.

    Creates a warehouse, four products (one with no prices, priced by the
    default), a carton-of-12 variant for water, two tiered clients and stock.
    """
    from .models import Warehouse, Product, ProductVariant, Client
    from .services.catalog_store import CatalogStore

    catalog = CatalogStore()

    warehouse = db.session.query(Warehouse).filter_by(name="Main").first()
    if not warehouse:
        warehouse = Warehouse(name="Main")
        db.session.add(warehouse)
        db.session.commit()
        click.echo(f"PASS Created warehouse: {warehouse.name} (ID: {warehouse.id})")

    for sku, name, base, tiers, unit, stock in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product:
            continue
        product = Product(sku=sku, name=name, price_cents=base, unit_type=unit)
        product.price_a_cents, product.price_b_cents, product.price_c_cents, product.price_d_cents, product.price_e_cents = tiers
        db.session.add(product)
        db.session.commit()
        catalog.set_stock(product.id, warehouse.id, stock)
        click.echo(f"PASS Created product: {sku} - {name}")

        if sku == "DEMO-WATER":
            carton = ProductVariant(
                product_id=product.id,
                variant_name="Carton x12",
                unit_type="carton",
                quantity_contained=12,
                price_a_cents=5600,
                price_e_cents=6800,
            )
            db.session.add(carton)
            db.session.commit()
            catalog.set_stock(product.id, warehouse.id, stock // 12, variant_id=carton.id)
            click.echo(f"PASS Created variant: {carton.variant_name}")

    for name, tier in (("Grocery Lina", "A"), ("Cafe Sahel", "basic")):
        if not db.session.query(Client).filter_by(name=name).first():
            db.session.add(Client(name=name, subscription_tier=tier))
            click.echo(f"PASS Created client: {name} (tier {tier})")
    db.session.commit()

    click.echo("PASS Demo data ready.")


@catalog_group.command('stock')
@click.option('--warehouse-id', type=int, required=True, help='Warehouse ID')
@with_appcontext
def show_stock(warehouse_id):
    """List stock rows for a warehouse (variant '-' is the base-unit row)."""
    from .services.catalog_store import CatalogStore

    levels = CatalogStore().list_stock(warehouse_id)
    if not levels:
        click.echo("No stock found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Product':<10} {'Variant':<10} {'Name':<35} {'Quantity':>12}")
    click.echo("="*80)
    for level in levels:
        variant = str(level.variant_id) if level.variant_id else "-"
        name = level.product.name if level.product else "Unknown"
        click.echo(f"{level.product_id:<10} {variant:<10} {name[:35]:<35} {str(level.quantity):>12}")
    click.echo("="*80 + "\n")


# =============================================================================
# CASH SESSIONS
# =============================================================================

@click.group('cash')
def cash_group():
    """Cash session commands."""


@cash_group.command('open')
@click.option('--employee-id', type=int, required=True)
@click.option('--warehouse-id', type=int, required=True)
@click.option('--opening', default="0", help='Opening float (e.g. 200.00)')
@with_appcontext
def open_session_cli(employee_id, warehouse_id, opening):
    """Open a cash session."""
    from .services import cash_session_service
    from .services.ledger_store import LedgerStore

    try:
        session = cash_session_service.open_cash_session(
            employee_id, warehouse_id, to_cents(opening, "opening"), ledger=LedgerStore(),
        )
    except PosError as e:
        click.echo(f"FAIL Error: {e.message}")
        if e.details.get("session_id"):
            click.echo(f"   Open session: {e.details['session_id']}")
        return

    click.echo(f"PASS Opened cash session {session.id}")
    click.echo(f"   Opening float: {format_cents(session.opening_cash_cents)}")


@cash_group.command('summary')
@click.option('--session-id', type=int, required=True)
@with_appcontext
def session_summary_cli(session_id):
    """Show derived takings for a session."""
    from .services import cash_session_service
    from .services.ledger_store import LedgerStore

    try:
        summary = cash_session_service.get_session_summary(session_id, ledger=LedgerStore())
    except PosError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    click.echo(f"Session {summary.session_id} (employee {summary.employee_id}, warehouse {summary.warehouse_id})")
    click.echo(f"   Opening float:  {format_cents(summary.opening_cash_cents)}")
    for method, cents in summary.total_by_method.items():
        click.echo(f"   {method:<14}  {format_cents(cents)}")
    click.echo(f"   Total sales:    {format_cents(summary.total_sales_cents)} ({summary.invoice_count} invoices)")
    click.echo(f"   Total credit:   {format_cents(summary.total_credit_cents)}")
    click.echo(f"   Expected cash:  {format_cents(summary.expected_cash_cents)}")


@cash_group.command('close')
@click.option('--session-id', type=int, required=True)
@click.option('--declared', required=True, help='Counted cash in drawer (e.g. 530.00)')
@click.option('--note', default=None, help='Required when declared cash differs from expected')
@with_appcontext
def close_session_cli(session_id, declared, note):
    """Close a session against the counted drawer."""
    from .services import cash_session_service
    from .services.ledger_store import LedgerStore

    try:
        report = cash_session_service.close_cash_session(
            session_id, to_cents(declared, "declared"), note, ledger=LedgerStore(),
        )
    except PosError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    click.echo(f"PASS Closed cash session {session_id}")
    click.echo(f"   Expected: {format_cents(report.summary.expected_cash_cents)}")
    click.echo(f"   Declared: {format_cents(report.declared_cash_cents)}")
    click.echo(f"   Variance: {format_cents(report.variance_cents)}")


@cash_group.command('sessions')
@click.option('--employee-id', type=int, help='Filter by employee ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(employee_id, status, limit):
    """
    List cash sessions.

    Example:
        flask cash sessions
        flask cash sessions --status OPEN
    """
    from .services import cash_session_service
    from .services.ledger_store import LedgerStore

    sessions = cash_session_service.list_sessions(
        ledger=LedgerStore(), employee_id=employee_id, status=status, limit=limit,
    )
    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Employee':<10} {'Warehouse':<10} {'Status':<8} {'Opened':<20} {'Declared':<12} {'Note'}")
    click.echo("="*100)
    for session in sessions:
        status_str = "OPEN" if session.is_open else "CLOSED"
        note = session.closing_note[:30] if session.closing_note else "-"
        click.echo(f"{session.id:<5} {session.employee_id:<10} {session.warehouse_id:<10} {status_str:<8} "
                   f"{str(session.opened_at)[:19]:<20} {format_cents(session.closing_cash_declared_cents):<12} {note}")
    click.echo("="*100 + "\n")


# =============================================================================
# PROMOTIONS
# =============================================================================

@click.group('promotions')
def promotions_group():
    """Promotion management commands."""


@promotions_group.command('list')
@click.option('--active', 'active_only', is_flag=True, help='Only active promotions')
@with_appcontext
def list_promotions_cli(active_only):
    from .services import promotion_service

    promos = promotion_service.list_promotions(active_only=active_only)
    if not promos:
        click.echo("No promotions found.")
        return
    for p in promos:
        state = "active" if p["is_active"] else "inactive"
        reward = f"{p['discount_percent']}%" if p["promo_type"] == "discount" else f"gift product {p['gift_product_id']} x{p['gift_quantity']}"
        target = f"product {p['product_id']}" if p["scope"] == "product" else "cart"
        click.echo(f"{p['id']:<5} {p['title'][:30]:<30} {target:<14} min {p['min_quantity']:<8} {reward:<28} {state}")


@promotions_group.command('create')
@click.option('--title', required=True)
@click.option('--type', 'promo_type', type=click.Choice(['discount', 'gift']), required=True)
@click.option('--scope', type=click.Choice(['global', 'product']), default='global', show_default=True)
@click.option('--product-id', type=int, help='Product for product-scoped promotions')
@click.option('--min-quantity', default="1", show_default=True)
@click.option('--unit-type', type=click.Choice(['unit', 'kilo', 'litre', 'carton', 'paquet', 'sac']))
@click.option('--discount-percent', help='Percent off for discount promotions')
@click.option('--gift-product-id', type=int, help='Free product for gift promotions')
@click.option('--gift-quantity', default="1", show_default=True)
@click.option('--starts-at', help='ISO-8601 start (open if omitted)')
@click.option('--ends-at', help='ISO-8601 end (open if omitted)')
@with_appcontext
def create_promotion_cli(title, promo_type, scope, product_id, min_quantity, unit_type,
                         discount_percent, gift_product_id, gift_quantity, starts_at, ends_at):
    """Create a quantity-threshold promotion."""
    from .services import promotion_service

    try:
        promo = promotion_service.create_promotion({
            "title": title,
            "promo_type": promo_type,
            "scope": scope,
            "product_id": product_id,
            "min_quantity": min_quantity,
            "unit_type": unit_type,
            "discount_percent": discount_percent,
            "gift_product_id": gift_product_id,
            "gift_quantity": gift_quantity,
            "starts_at": starts_at,
            "ends_at": ends_at,
        })
    except PosError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(f"PASS Created promotion {promo['id']}: {promo['title']}")


@promotions_group.command('deactivate')
@click.argument('promo_id', type=int)
@with_appcontext
def deactivate_promotion_cli(promo_id):
    from .services import promotion_service

    try:
        promotion_service.deactivate_promotion(promo_id)
    except PosError as e:
        click.echo(f"FAIL Error: {e.message}")
        return
    click.echo(f"PASS Deactivated promotion {promo_id}")


# =============================================================================
# STOCK RECONCILIATION
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock movement reconciliation commands."""


@stock_group.command('movements')
@click.option('--pending', 'pending_only', is_flag=True, help='Only movements waiting for retry')
@click.option('--oversold', 'oversold_only', is_flag=True, help='Only movements clamped at zero')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_movements_cli(pending_only, oversold_only, limit):
    from .services.catalog_store import CatalogStore

    movements = CatalogStore().list_movements(pending_only=pending_only, oversold_only=oversold_only, limit=limit)
    if not movements:
        click.echo("No stock movements found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'Reference':<28} {'Product':<8} {'Variant':<8} {'Requested':>10} {'Applied':>10} {'Short':>8} {'Status'}")
    click.echo("="*110)
    for m in movements:
        applied = str(m.applied_delta) if m.applied_delta is not None else "-"
        click.echo(f"{m.id:<6} {(m.reference or '-')[:28]:<28} {m.product_id:<8} {str(m.variant_id or '-'):<8} "
                   f"{str(m.requested_delta):>10} {applied:>10} {str(m.shortfall):>8} {m.status}")
    click.echo("="*110 + "\n")


@stock_group.command('retry-pending')
@click.option('--limit', type=int, default=None)
@with_appcontext
def retry_pending_cli(limit):
    """Re-issue stock movements left pending by failed deductions."""
    from .services.catalog_store import CatalogStore
    from .services.inventory_service import retry_pending_stock_movements

    summary = retry_pending_stock_movements(CatalogStore(), limit=limit)
    click.echo(f"PASS Applied {summary['applied']} movement(s), {summary['failed']} still pending, "
               f"{summary['oversold']} oversold.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(cash_group)
    app.cli.add_command(promotions_group)
    app.cli.add_command(stock_group)
