# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo catalog: a few drinks, their materials and recipes.
#
# Inventory:
# - python -m flask inventory sweep-alerts
#   Raise missing low-stock alerts for every active material.
# - python -m flask inventory low-stock
#   List active materials at or below their alert threshold.
# - python -m flask inventory reconcile [--material-id 3]
#   Compare cached balances with the stock record ledger.
#
# Orders:
# - python -m flask orders stats [--date 2026-10-19]
#   Order counts and revenue for a business day (default today).
# - python -m flask orders next-sequence [--date 2026-10-19]
#   Show the last issued daily sequence and the next order number (read-only).

from datetime import date

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Material, Product
from .services import material_service, order_service, recipe_service, stock_service
from .services.sequence_service import format_order_number, peek_daily_sequence
from .time_utils import get_clock


def _parse_day(value: str | None) -> date:
    if not value:
        return get_clock().today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="--date")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the current models."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_MATERIALS = [
    # name, unit, opening stock, alert threshold
    ("Black tea", "g", "2000", "300"),
    ("Milk", "ml", "10000", "2000"),
    ("Tapioca pearls", "g", "1000", "200"),
    ("Cane syrup", "ml", "3000", "500"),
]

DEMO_PRODUCTS = [
    # name, category, price_cents, recipe {material name: per-unit quantity}
    ("Black Tea", "tea", 3000, {"Black tea": "10", "Cane syrup": "20"}),
    ("Milk Tea", "milk-tea", 5000, {"Black tea": "10", "Milk": "150", "Cane syrup": "20"}),
    ("Pearl Milk Tea", "milk-tea", 6000, {"Black tea": "10", "Milk": "150", "Tapioca pearls": "60", "Cane syrup": "20"}),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create a small demo catalog. Existing rows (matched by name) are left alone."""
    materials = {}
    for name, unit, opening, threshold in DEMO_MATERIALS:
        material = db.session.query(Material).filter_by(name=name).first()
        if material:
            click.echo(f"WARN  Material '{name}' already exists, skipping...")
        else:
            material = material_service.create_material(
                name=name, unit=unit, current_stock=opening, alert_threshold=threshold,
            )
            click.echo(f"PASS Created material: {name} ({opening} {unit})")
        materials[name] = material

    for name, category, price_cents, recipe in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(name=name).first()
        if product:
            click.echo(f"WARN  Product '{name}' already exists, skipping...")
            continue

        product = Product(name=name, category=category, price_cents=price_cents, is_active=True)
        db.session.add(product)
        db.session.commit()

        recipe_service.update_recipes(product.id, [
            {"material_id": materials[material_name].id, "quantity": qty}
            for material_name, qty in recipe.items()
        ])
        click.echo(f"PASS Created product: {name} with {len(recipe)} recipe rows")

    click.echo("DONE Demo data ready.")


@click.group('inventory')
def inventory_group():
    """Raw-material stock inspection and maintenance."""


@inventory_group.command('sweep-alerts')
@with_appcontext
def sweep_alerts():
    """Raise missing low-stock alerts for every active material."""
    created = stock_service.sweep_alerts()
    click.echo(f"PASS {created} new alert(s) raised.")


@inventory_group.command('low-stock')
@with_appcontext
def low_stock():
    """List active materials at or below their alert threshold."""
    materials = stock_service.list_low_stock_materials()
    if not materials:
        click.echo("PASS No materials below threshold.")
        return

    click.echo(f"{'ID':<6} {'Name':<24} {'Stock':>14} {'Threshold':>14} Unit")
    click.echo("-" * 70)
    for m in materials:
        click.echo(f"{m.id:<6} {m.name:<24} {str(m.current_stock):>14} {str(m.alert_threshold):>14} {m.unit}")


@inventory_group.command('reconcile')
@click.option('--material-id', type=int, default=None, help='Only this material')
@with_appcontext
def reconcile(material_id):
    """Compare each cached balance with the balance implied by its stock records."""
    query = db.session.query(Material).order_by(Material.id)
    if material_id is not None:
        query = query.filter(Material.id == material_id)

    mismatches = 0
    for material in query.all():
        ledger = stock_service.reconcile_material(material.id)
        if ledger != material.current_stock:
            mismatches += 1
            click.echo(f"FAIL {material.name} (ID {material.id}): cached {material.current_stock}, ledger {ledger}")

    if mismatches:
        raise SystemExit(1)
    click.echo("PASS All balances match the stock records.")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('stats')
@click.option('--date', 'day', default=None, help='Business day (YYYY-MM-DD), default today')
@with_appcontext
def order_stats(day):
    """Order counts and completed revenue for one business day."""
    stats = order_service.get_stats(_parse_day(day))
    click.echo(f"Business date:    {stats.business_date.isoformat()}")
    click.echo(f"Total orders:     {stats.total_orders}")
    click.echo(f"Completed:        {stats.completed_orders}")
    click.echo(f"Cancelled:        {stats.cancelled_orders}")
    click.echo(f"Revenue (cents):  {stats.total_revenue_cents}")


@orders_group.command('next-sequence')
@click.option('--date', 'day', default=None, help='Business day (YYYY-MM-DD), default today')
@with_appcontext
def next_sequence(day):
    """Show the last issued sequence and the next order number. Allocates nothing."""
    business_date = _parse_day(day)
    last = peek_daily_sequence(business_date)
    click.echo(f"Business date:  {business_date.isoformat()}")
    click.echo(f"Last sequence:  {last}")
    click.echo(f"Next order:     {format_order_number(last + 1)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
