# Overview: Flask CLI command groups for bootstrap, catalog seeding, and bill inspection.

# backend/tillbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "tillbook:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add --code 8901234567890 --name "Notebook" --price-cents 1000 --quantity 25
#   Create a catalog entry.
# - python -m flask catalog list [--in-stock]
#   List products with stock counts.
#
# Bills:
# - python -m flask bills list [--limit 20] [--type sale|return]
#   Show bill history, newest first.
# - python -m flask bills reconcile BILL-1718000000000
#   Apply the stock adjustments a bill is missing after a partial commit.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import catalog_service
from .services.errors import BillingError
from .services.ledger_service import BillLedger
from .services.wiring import checkout_orchestrator, stock_reconciler


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


# =============================================================================
# CATALOG
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog entry and inspection."""


@catalog_group.command('add')
@click.option('--code', required=True, help='Scan-matchable product code')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', required=True, type=int, help='Selling price in cents')
@click.option('--quantity', default=0, type=int, help='Opening stock')
@click.option('--cost-cents', default=None, type=int, help='Cost price in cents')
@click.option('--mrp-cents', default=None, type=int, help='MRP in cents')
@click.option('--category', default=None, help='Category name')
@click.option('--dealer', default=None, help='Dealer name')
@with_appcontext
def catalog_add(code, name, price_cents, quantity, cost_cents, mrp_cents, category, dealer):
    """Create a product."""
    try:
        product = catalog_service.create_product({
            "product_code": code,
            "name": name,
            "selling_price_cents": price_cents,
            "cost_price_cents": cost_cents,
            "mrp_cents": mrp_cents,
            "quantity": quantity,
            "category_name": category,
            "dealer_name": dealer,
        })
    except BillingError as e:
        raise click.ClickException(f"FAIL {e.message}")

    click.echo(f"PASS Created product {product.product_code} ({product.name}) qty={product.quantity}")


@catalog_group.command('list')
@click.option('--in-stock', is_flag=True, help='Hide products with zero quantity')
@with_appcontext
def catalog_list(in_stock):
    """List products."""
    q = db.session.query(Product)
    if in_stock:
        q = q.filter(Product.quantity > 0)
    products = q.order_by(Product.name.asc()).all()

    if not products:
        click.echo("No products found.")
        return

    click.echo(f"{'CODE':<20} {'NAME':<30} {'PRICE':>10} {'QTY':>6}")
    click.echo("-" * 70)
    for p in products:
        click.echo(f"{p.product_code:<20} {p.name[:30]:<30} {p.selling_price_cents / 100:>10.2f} {p.quantity:>6}")


# =============================================================================
# BILLS
# =============================================================================

@click.group('bills')
def bills_group():
    """Bill history and stock reconciliation."""


@bills_group.command('list')
@click.option('--limit', default=20, type=int, help='Max bills to show')
@click.option('--type', 'bill_type', type=click.Choice(['sale', 'return']), default=None)
@with_appcontext
def bills_list(limit, bill_type):
    """Show bills, newest first."""
    is_return = None if bill_type is None else bill_type == 'return'
    bills = BillLedger().list_all(limit=limit, is_return=is_return)

    if not bills:
        click.echo("No bills found.")
        return

    reconciler = stock_reconciler()
    for b in bills:
        moved = len(reconciler.movements_for(b.bill_id))
        flag = "" if moved == len({i.product_code for i in b.items}) else "  WARN stock pending"
        click.echo(
            f"{b.bill_id:<28} {b.date:%Y-%m-%d %H:%M} {b.payment_method:<5} "
            f"{b.total_cents / 100:>10.2f}{' RETURN of ' + b.original_bill_id if b.is_return else ''}{flag}"
        )


@bills_group.command('reconcile')
@click.argument('bill_id')
@with_appcontext
def bills_reconcile(bill_id):
    """Apply missing stock adjustments for BILL_ID."""
    try:
        report = checkout_orchestrator().resume(bill_id)
    except BillingError as e:
        raise click.ClickException(f"FAIL {e.message} {e.details}")

    click.echo(
        f"PASS Reconciled {bill_id}: applied={len(report.applied)} "
        f"already_applied={len(report.skipped)}"
    )
    for code in report.applied:
        click.echo(f"  adjusted {code}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(bills_group)
