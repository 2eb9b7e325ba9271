# Overview: Flask CLI command groups for bootstrap, order inspection, and maintenance.

# orderdesk/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app orderdesk <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app orderdesk system init
#   Idempotent bootstrap: creates tables and seeds the default catalogue product.
# - flask --app orderdesk system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Orders:
# - flask --app orderdesk orders show BSP-20250222-4821
#   Print an order with items and status history.
# - flask --app orderdesk orders transition BSP-20250222-4821 shipped --note "Tracking BR123"
#   Move an order through its lifecycle (add --force for operator corrections).
# - flask --app orderdesk orders stats
#   Dashboard numbers: customers, today's orders, revenue, low stock.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import OrderDeskError
from .extensions import db
from .services.checkout_service import update_order_status
from .services.inventory_service import InventoryLedger
from .services.order_service import get_order_details
from .services.reporting_service import dashboard_stats

DEFAULT_PRODUCT = {
    "name": "BlueShield Pro",
    "description": "Blue-light blocking glasses for high-performance professionals",
    "unit_price_cents": 29900,
    "stock_quantity": 1000,
    "specifications": {
        "weight": "22g",
        "frame_material": "TR90",
        "lens_material": "Polycarbonate",
        "protection": "UV400",
        "width": "143mm",
        "lens_height": "47mm",
        "bridge": "48mm",
    },
}


def _cents(value: int) -> str:
    return f"{value / 100:.2f}"


def _fail(exc: OrderDeskError) -> click.ClickException:
    payload = exc.to_dict(expose_internal=current_app.config["EXPOSE_INTERNAL_ERRORS"])["error"]
    return click.ClickException(f"{payload['code']}: {payload['message']}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create the schema and seed the default product (safe to rerun)."""
    click.echo("START Initializing orderdesk...")
    db.create_all()
    click.echo("PASS Schema ready")

    sku = current_app.config["DEFAULT_PRODUCT_SKU"]
    product, created = InventoryLedger(db.session).seed_product(sku=sku, **DEFAULT_PRODUCT)
    db.session.commit()
    if created:
        click.echo(f"PASS Seeded product {product.sku} ({product.name}), stock {product.stock_quantity}")
    else:
        click.echo(f"PASS Using existing product {product.sku}, stock {product.stock_quantity}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including audit and status history!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Recreating schema...")
    db.create_all()
    click.echo("PASS Database reset. Run: flask --app orderdesk system init")


@click.group('orders')
def orders_group():
    """Order inspection and lifecycle commands."""


@orders_group.command('show')
@click.argument('order_number')
@with_appcontext
def show_order(order_number):
    """Print an order with its items and status history."""
    try:
        order = get_order_details(db.session, order_number=order_number)
    except OrderDeskError as exc:
        raise _fail(exc)

    click.echo(f"\nOrder {order['order_number']}  status={order['status']}  payment={order['payment_status']}")
    click.echo(f"Customer: {order['customer']['name']} <{order['customer']['email']}>")
    click.echo("-" * 60)
    for item in order["items"]:
        click.echo(f"  {item['sku']:<22} x{item['quantity']:<4} {_cents(item['subtotal_cents']):>12}")
    click.echo("-" * 60)
    click.echo(f"  {'Subtotal':<28}{_cents(order['subtotal_cents']):>12}")
    click.echo(f"  {'Shipping':<28}{_cents(order['shipping_cents']):>12}")
    click.echo(f"  {'Discount':<28}{_cents(order['discount_cents']):>12}")
    click.echo(f"  {'Total':<28}{_cents(order['total_cents']):>12}")
    click.echo("\nHistory:")
    for event in order["history"]:
        who = f"actor {event['actor_id']}" if event["actor_id"] is not None else "system"
        click.echo(
            f"  {event['created_at']}  {event['previous_status'] or '-'} -> {event['new_status']}  ({who})"
            + (f"  {event['note']}" if event["note"] else "")
        )
    click.echo("")


@orders_group.command('transition')
@click.argument('order_number')
@click.argument('status')
@click.option('--note', default=None, help='Free-text note stored in the history')
@click.option('--actor-id', type=int, default=None, help='Responsible operator id')
@click.option('--force', is_flag=True, help='Bypass the lifecycle rules (operator correction)')
@with_appcontext
def transition_order(order_number, status, note, actor_id, force):
    """Move an order to a new status and record it in the history."""
    try:
        result = update_order_status(
            db.session, order_number, status, note=note, actor_id=actor_id, force=force,
        )
    except OrderDeskError as exc:
        raise _fail(exc)
    click.echo(f"PASS Order {result.order_number}: {result.previous_status} -> {result.status}")


@orders_group.command('stats')
@with_appcontext
def order_stats():
    """Print dashboard statistics as JSON."""
    stats = dashboard_stats(
        db.session,
        low_stock_threshold=current_app.config["LOW_STOCK_THRESHOLD"],
    )
    click.echo(json.dumps(stats, indent=2))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
