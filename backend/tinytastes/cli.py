# Overview: Flask CLI command groups for bootstrap, inventory, payments, and maintenance.

# backend/tinytastes/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (dev only; use `flask db upgrade` elsewhere).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Load a small demo catalog with stock and one customer. Idempotent.
#
# Inventory:
# - python -m flask inventory provision --product-id 1 --portion-size-id 1 --initial-stock 20 --weekly-limit 50
#   Create the stock entry for a product/portion pair.
# - python -m flask inventory restock --product-id 1 --portion-size-id 1 --amount 10
#   Restock one entry (weekly limit applies).
# - python -m flask inventory set-limit --product-id 1 --portion-size-id 1 --weekly-limit 40
#   Change the weekly restock cap (0 = no cap).
# - python -m flask inventory stats [--low-stock] [--weekly-restock]
#   Print dashboard totals and optional lists.
#
# Payments:
# - python -m flask payments sweep
#   Expire unpaid orders past their due date and release their stock.
# - python -m flask payments approaching --hours 2
#   List unpaid orders due within the window (reminder candidates).
#   Add --remind to send each one a payment reminder.
#
# Maintenance:
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

import json
from datetime import timedelta

import click
from flask.cli import with_appcontext

from .errors import AlreadyProcessedError, InventoryError
from .extensions import db
from .models import AgeGroup, Texture, Product, PortionSize, ProductPrice, Customer, Address
from .services import maintenance_service
from .services.notification_service import PAYMENT_REMINDER
from .services.registry import get_services
from .time_utils import utcnow, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
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

    get_services().cache.invalidate("")
    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


SEED_AGE_GROUPS = [("4-6 months", 4, 6), ("6-9 months", 6, 9), ("9-12 months", 9, 12), ("12+ months", 12, None)]
SEED_TEXTURES = ["Smooth puree", "Mashed", "Soft chunks"]
SEED_PORTION_SIZES = [("Small", "120ml"), ("Large", "200ml")]
SEED_PRODUCTS = [
    # slug, name, age group, texture, small price, large price
    ("sweet-potato-puree", "Sweet Potato Puree", "4-6 months", "Smooth puree", 349, 499),
    ("apple-pear-mash", "Apple & Pear Mash", "6-9 months", "Mashed", 329, 479),
    ("lentil-veggie-stew", "Lentil Veggie Stew", "9-12 months", "Soft chunks", 399, 579),
]


@system_group.command('seed')
@click.option('--initial-stock', type=int, default=20, show_default=True)
@click.option('--weekly-limit', type=int, default=50, show_default=True)
@with_appcontext
def seed(initial_stock, weekly_limit):
    """Load demo catalog, prices, stock entries and a demo customer."""
    age_groups = {}
    for name, min_months, max_months in SEED_AGE_GROUPS:
        group = db.session.query(AgeGroup).filter_by(name=name).first()
        if not group:
            group = AgeGroup(name=name, min_months=min_months, max_months=max_months)
            db.session.add(group)
        age_groups[name] = group

    textures = {}
    for name in SEED_TEXTURES:
        texture = db.session.query(Texture).filter_by(name=name).first()
        if not texture:
            texture = Texture(name=name)
            db.session.add(texture)
        textures[name] = texture

    portions = []
    for name, measurement in SEED_PORTION_SIZES:
        portion = db.session.query(PortionSize).filter_by(name=name).first()
        if not portion:
            portion = PortionSize(name=name, measurement=measurement)
            db.session.add(portion)
        portions.append(portion)
    db.session.commit()

    created_products = 0
    for slug, name, group_name, texture_name, small_cents, large_cents in SEED_PRODUCTS:
        if db.session.query(Product).filter_by(slug=slug).first():
            continue
        product = Product(
            slug=slug,
            name=name,
            age_group_id=age_groups[group_name].id,
            texture_id=textures[texture_name].id,
            is_active=True,
        )
        db.session.add(product)
        db.session.flush()
        for portion, price_cents in zip(portions, (small_cents, large_cents)):
            db.session.add(ProductPrice(product_id=product.id, portion_size_id=portion.id, price_cents=price_cents))
        created_products += 1
    db.session.commit()

    ledger = get_services().ledger
    created_entries = 0
    for product in db.session.query(Product).all():
        for portion in portions:
            if ledger.find_entry(product.id, portion.id) is not None:
                continue
            ledger.provision(product.id, portion.id, initial_stock=initial_stock, weekly_limit=weekly_limit)
            created_entries += 1

    customer = db.session.query(Customer).filter_by(email="parent@tinytastes.local").first()
    if not customer:
        customer = Customer(name="Demo Parent", email="parent@tinytastes.local")
        db.session.add(customer)
        db.session.flush()
        db.session.add(Address(customer_id=customer.id, line1="1 Nursery Lane", city="Springfield", postal_code="12345"))
        db.session.commit()

    click.echo(f"PASS Seeded {created_products} product(s), {created_entries} stock entr(ies).")
    click.echo(f"PASS Demo customer: {customer.email} (ID: {customer.id})")


@click.group('inventory')
def inventory_group():
    """Stock ledger commands."""


@inventory_group.command('provision')
@click.option('--product-id', type=int, required=True)
@click.option('--portion-size-id', type=int, required=True)
@click.option('--initial-stock', type=int, default=0, show_default=True)
@click.option('--weekly-limit', type=int, default=0, show_default=True, help='0 = no weekly cap')
@with_appcontext
def provision_cli(product_id, portion_size_id, initial_stock, weekly_limit):
    """Create a stock entry for a product/portion pair."""
    try:
        entry = get_services().ledger.provision(
            product_id,
            portion_size_id,
            initial_stock=initial_stock,
            weekly_limit=weekly_limit,
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Stock entry {entry.id}: current={entry.current_stock} weekly_limit={entry.weekly_limit}")


@inventory_group.command('restock')
@click.option('--product-id', type=int, required=True)
@click.option('--portion-size-id', type=int, required=True)
@click.option('--amount', type=int, required=True)
@click.option('--weekly-limit', type=int, default=None, help='Replace the weekly limit in the same operation')
@with_appcontext
def restock_cli(product_id, portion_size_id, amount, weekly_limit):
    """Restock one entry."""
    try:
        entry = get_services().ledger.restock(product_id, portion_size_id, amount, weekly_limit=weekly_limit)
    except InventoryError as e:
        raise click.ClickException(f"{e} {json.dumps(e.details)}")
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS current={entry['current_stock']} reserved={entry['reserved_stock']} "
        f"restocked_in_period={entry['restocked_in_period']}/{entry['weekly_limit']}"
    )


@inventory_group.command('set-limit')
@click.option('--product-id', type=int, required=True)
@click.option('--portion-size-id', type=int, required=True)
@click.option('--weekly-limit', type=int, required=True, help='0 = no weekly cap')
@with_appcontext
def set_limit_cli(product_id, portion_size_id, weekly_limit):
    """Change the weekly restock limit without restocking."""
    try:
        entry = get_services().ledger.set_weekly_limit(product_id, portion_size_id, weekly_limit)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS weekly_limit={entry['weekly_limit']} restocked_in_period={entry['restocked_in_period']}")


@inventory_group.command('stats')
@click.option('--low-stock', is_flag=True, help='Also list low stock entries')
@click.option('--weekly-restock', is_flag=True, help='Also list entries that need their weekly restock')
@with_appcontext
def stats_cli(low_stock, weekly_restock):
    """Print inventory dashboard totals."""
    ledger = get_services().ledger
    stats = ledger.statistics(use_cache=False)
    for key, value in stats.items():
        click.echo(f"{key}: {value}")

    if low_stock:
        click.echo("\nLow stock:")
        for item in ledger.low_stock_alerts():
            click.echo(f"  product={item['product_id']} portion={item['portion_size_id']} current={item['current_stock']}")

    if weekly_restock:
        click.echo("\nWeekly restock:")
        for item in ledger.weekly_restock_items():
            click.echo(
                f"  product={item['product_id']} portion={item['portion_size_id']} "
                f"current={item['current_stock']} suggested={item['suggested_restock']}"
            )


@click.group('payments')
def payments_group():
    """Payment deadline commands."""


@payments_group.command('sweep')
@with_appcontext
def sweep_cli():
    """Expire unpaid orders past their due date (safe to run from cron)."""
    try:
        result = get_services().sweeper.sweep()
    except AlreadyProcessedError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"PASS processed={result.processed} released={result.released} "
        f"failed={result.failed} skipped={result.skipped}"
    )
    for entry in result.results:
        if entry.error:
            click.echo(f"  FAIL order {entry.order_number}: {entry.error}")


@payments_group.command('approaching')
@click.option('--hours', type=float, default=None, help='Window in hours (default: PAYMENT_REMINDER_WINDOW_HOURS)')
@click.option('--remind', is_flag=True, help='Send a payment reminder for each order listed')
@with_appcontext
def approaching_cli(hours, remind):
    """List unpaid orders whose deadline is within the window."""
    services = get_services()
    window = timedelta(hours=hours) if hours is not None else None
    orders = services.sweeper.find_approaching_deadline(utcnow(), window)
    if not orders:
        click.echo("No orders approaching their payment deadline.")
        return
    for order in orders:
        click.echo(f"{order.order_number}  due={to_utc_z(order.payment_due_date)}  total_cents={order.total_cents}")
        if remind:
            sent = services.notifier.dispatch(PAYMENT_REMINDER, order, payment_due_date=to_utc_z(order.payment_due_date))
            click.echo(f"  {'PASS' if sent else 'FAIL'} reminder")


@click.group('maintenance')
def maintenance_group():
    """Maintenance and housekeeping commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(maintenance_group)
