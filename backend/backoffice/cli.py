# Overview: Flask CLI command groups for bootstrap, inspection, and batch jobs.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default users (admin, manager, cashier).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory check-stock
#   Create stock_out / stock_critical / stock_low notifications (batch job).
# - python -m flask inventory movements --product-id 1 --limit 20
#   Print the latest stock movements.
#
# Cash register:
# - python -m flask cash current
#   Show the open cash session, if any.
#
# Promo codes:
# - python -m flask promos list [--all]
#   List promo codes with their usage.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import cash_session_service, notification_service, promo_service, stock_ledger_service


DEFAULT_USERS = [
    ("admin", "Administrateur", "admin"),
    ("manager", "Gérant", "manager"),
    ("cashier", "Caissier", "cashier"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables and default users. Safe to run repeatedly."""
    click.echo("START Initializing back office...")
    db.create_all()

    for username, full_name, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        db.session.add(User(username=username, full_name=full_name, role=role))
        click.echo(f"PASS Created user: {username} with role '{role}'")
    db.session.commit()

    click.echo("DONE Back office initialized")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('inventory')
def inventory_group():
    """Stock inspection and batch jobs."""


@inventory_group.command('check-stock')
@with_appcontext
def check_stock():
    """Scan active products and create stock level notifications."""
    created = notification_service.check_stock_levels()
    for notification in created:
        click.echo(f"ALERT {notification.title} - {notification.message}")
    if not created:
        click.echo("PASS All products have sufficient stock (or are already flagged)")
    else:
        click.echo(f"DONE {len(created)} notification(s) created")


@inventory_group.command('movements')
@click.option('--product-id', type=int, default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_movements(product_id, limit):
    """Print the latest stock movements."""
    movements = stock_ledger_service.list_movements(product_id=product_id, limit=limit)
    if not movements:
        click.echo("No movements")
        return
    for m in movements:
        click.echo(
            f"{m.occurred_at:%Y-%m-%d %H:%M} product={m.product_id} "
            f"{m.quantity_delta:+d} ({m.previous_stock} -> {m.new_stock}) "
            f"reason={m.reason} ref={m.source_ref or '-'}"
        )


@click.group('cash')
def cash_group():
    """Cash register session inspection."""


@cash_group.command('current')
@with_appcontext
def current_session():
    """Show the open cash session."""
    session = cash_session_service.current_session()
    if session is None:
        click.echo("No open cash session")
        return
    click.echo(
        f"Session #{session.id} opened {session.opened_at:%Y-%m-%d %H:%M}: "
        f"opening={session.opening_cents} sales={session.accumulated_sales_cents} "
        f"({session.sales_count} sales) expected={session.expected_cents}"
    )


@click.group('promos')
def promos_group():
    """Promo code inspection."""


@promos_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive and expired codes')
@with_appcontext
def list_promos(include_inactive):
    codes = promo_service.list_promo_codes(include_inactive=include_inactive)
    if not codes:
        click.echo("No promo codes")
        return
    for code in codes:
        cap = code.max_uses if code.max_uses is not None else "unlimited"
        state = "active" if code.is_active else "inactive"
        click.echo(f"{code.code}: {code.promo_type} {code.value} used {code.used_count}/{cap} ({state})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(cash_group)
    app.cli.add_command(promos_group)
