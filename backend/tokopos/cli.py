# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tokopos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--unit pcs]
#   Idempotent bootstrap: creates tables and the default base unit.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection:
# - python -m flask stock verify [--product-id 1]
#   Compare every product's stock counter with the sum of its ledger rows.
# - python -m flask stock low
#   List active products at or below their minimum stock.
#
# Debt inspection:
# - python -m flask debts list [--customer-id 3] [--active]
#   List debts with remaining amounts.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Unit
from .services import debt_service, inventory_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--unit', 'unit_name', default='pcs', help='Default base unit name')
@with_appcontext
def init_system(unit_name):
    """
    Initialize the store database.

    Creates:
    - All tables (no-op for tables that already exist)
    - A default base unit for new products
    """
    click.echo("START Initializing store database...")
    db.create_all()
    click.echo("PASS Tables ready")

    unit = db.session.query(Unit).filter_by(name=unit_name).first()
    if unit:
        click.echo(f"PASS Using existing unit: {unit.name} (ID: {unit.id})")
    else:
        unit = Unit(name=unit_name)
        db.session.add(unit)
        db.session.commit()
        click.echo(f"PASS Created default unit: {unit.name} (ID: {unit.id})")

    click.echo("DONE Store database initialized")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Only check one product')
@with_appcontext
def verify_stock(product_id):
    """Exit code 1 when any product's stock differs from its ledger sum."""
    rows = inventory_service.verify_stock_conservation(product_id)
    failures = 0
    for row in rows:
        if row["ok"]:
            click.echo(f"PASS {row['sku']}: stock={row['stock']}")
        else:
            failures += 1
            click.echo(f"FAIL {row['sku']}: stock={row['stock']} ledger={row['ledger_sum']}")

    click.echo(f"\n{len(rows)} product(s) checked, {failures} mismatch(es)")
    if failures:
        raise SystemExit(1)


@stock_group.command('low')
@with_appcontext
def low_stock():
    products = inventory_service.list_low_stock()
    if not products:
        click.echo("PASS No products below minimum stock")
        return
    for product in products:
        click.echo(f"WARN {product.sku} {product.name}: stock={product.stock} min={product.min_stock}")


@click.group('debts')
def debts_group():
    """Debt ledger inspection."""


@debts_group.command('list')
@click.option('--customer-id', type=int, default=None, help='Filter by customer')
@click.option('--active', 'active_only', is_flag=True, help='Only active debts')
@with_appcontext
def list_debts(customer_id, active_only):
    debts = debt_service.list_debts(customer_id=customer_id, active_only=active_only)
    if not debts:
        click.echo("No debts found")
        return

    click.echo(f"{'ID':<6} {'Invoice':<16} {'Customer':<10} {'Status':<10} {'Original':>14} {'Remaining':>14}")
    click.echo("-" * 75)
    for debt in debts:
        invoice = debt.sale.invoice_number if debt.sale else "-"
        click.echo(
            f"{debt.id:<6} {invoice:<16} {debt.customer_id:<10} {debt.status:<10} "
            f"{debt.original_amount:>14} {debt.remaining_amount:>14}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(debts_group)
