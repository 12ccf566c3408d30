# Overview: Flask CLI command group for batch ledger work and inspection.

# backend/stocksense/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app stocksense ledger <command> [options]
#
# Bootstrap:
# - flask --app stocksense ledger init-db
#   Create all tables (idempotent).
# - flask --app stocksense ledger seed-demo
#   Create a demo company with a branch, two warehouses and a few products.
#
# Stock operations (locations are keys: company, branch:1, warehouse:2, branch:1/warehouse:2):
# - flask --app stocksense ledger receive --company-id 1 --product-id 3 --quantity 10 --location warehouse:1
# - flask --app stocksense ledger sell --company-id 1 --product-id 3 --quantity 4 --location warehouse:1
# - flask --app stocksense ledger adjust --company-id 1 --product-id 3 --target 20 --location warehouse:2 --reason "count"
# - flask --app stocksense ledger transfer --company-id 1 --product-id 3 --quantity 6 --from warehouse:1 --to warehouse:2
#
# Inspection:
# - flask --app stocksense ledger history --company-id 1 --product-id 3 [--limit 20]
# - flask --app stocksense ledger valuation --company-id 1 --product-id 3
# - flask --app stocksense ledger report --company-id 1 [--location warehouse:1]
# - flask --app stocksense ledger reconcile --company-id 1
# - flask --app stocksense ledger sales-summary --company-id 1 [--start 2026-01-01T00:00Z] [--end ...] [--top 5]
# - flask --app stocksense ledger export --company-id 1 [--output snapshot.json] [--save]

import json
from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .locations import Location, LocationError, coerce_location
from .models import Company
from .money import format_cents
from .services.catalog_service import (
    create_branch,
    create_company,
    create_product,
    create_supplier,
    create_user,
    create_warehouse,
)
from .services.inventory_service import LineItem, record_adjustment, record_purchase_receipt, record_sale
from .services.transfer_service import record_transfer
from .services.reporting_service import (
    compute_valuation,
    inventory_report,
    movement_history,
    sales_summary,
    top_selling_products,
)
from .services.stock_service import LedgerError, reconcile_ledger
from .services.storage_service import export_company_data
from .services.tenant_service import TenantAccessError, build_context
from .time_utils import parse_iso_datetime

DEMO_COMPANY_CODE = "DEMO"


def _context(company_id, user_id=None):
    try:
        return build_context(company_id, user_id)
    except TenantAccessError as e:
        raise click.ClickException(str(e))


def _location(value) -> Location:
    try:
        return coerce_location(value)
    except LocationError as e:
        raise click.BadParameter(str(e))


def _report_result(result, success_message: str) -> None:
    if not result.ok:
        click.echo(f"FAIL [{result.error_code}] {result.message}")
        raise SystemExit(1)
    click.echo(f"PASS {success_message}")
    for movement in result.movements:
        click.echo(
            f"  movement #{movement.id}: {movement.type} {movement.quantity} "
            f"from={movement.from_location_key or '-'} to={movement.to_location_key or '-'}"
        )


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


company_option = click.option('--company-id', type=int, required=True, help='Company (tenant) ID')
user_option = click.option('--user-id', type=int, default=None, help='Acting user ID')
product_option = click.option('--product-id', type=int, required=True, help='Product ID')


@click.group('ledger')
def ledger_group():
    """Stock ledger commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables. Existing tables are left alone."""
    db.create_all()
    click.echo("PASS Database tables created")


@ledger_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create a demo company.

    Creates:
    - Company "Demo Company" (code DEMO)
    - Branch "Main Branch", warehouses "W1" and "W2"
    - A manager user, a supplier and three products
    - An opening receipt of 10 of each product into W1
    """
    existing = db.session.query(Company).filter_by(code=DEMO_COMPANY_CODE).first()
    if existing:
        click.echo(f"PASS Demo company already exists (ID: {existing.id})")
        return

    company = create_company("Demo Company", code=DEMO_COMPANY_CODE)
    ctx = build_context(company.id)
    branch = create_branch(ctx, "Main Branch")
    w1 = create_warehouse(ctx, "W1")
    w2 = create_warehouse(ctx, "W2")
    user = create_user(ctx, name="Demo Manager", email="manager@demo.local", role="manager", branch_id=branch.id)
    supplier = create_supplier(ctx, "Demo Supplier")
    click.echo(f"PASS Created company {company.name} (ID: {company.id})")
    click.echo(f"PASS Branch {branch.id}, warehouses {w1.id} and {w2.id}, user {user.id}")

    products = [
        create_product(ctx, {
            "sku": sku,
            "name": name,
            "buy_price_cents": buy,
            "sell_price_cents": sell,
            "min_quantity": 5,
            "supplier_id": supplier.id,
        })
        for sku, name, buy, sell in (
            ("DEMO-001", "Arabic Coffee 500g", 1500, 2500),
            ("DEMO-002", "Dates Box 1kg", 3000, 4500),
            ("DEMO-003", "Mineral Water 330ml", 50, 100),
        )
    ]
    result = record_purchase_receipt(
        build_context(company.id, user.id),
        [LineItem(p.id, Decimal("10")) for p in products],
        Location.warehouse(w1.id),
        reason="Opening stock",
    )
    _report_result(result, f"Received opening stock for {len(products)} products into W1")


@ledger_group.command('receive')
@company_option
@user_option
@product_option
@click.option('--quantity', type=str, required=True)
@click.option('--location', default='company', help='Destination location key')
@click.option('--reason', default='purchase receipt')
@with_appcontext
def receive(company_id, user_id, product_id, quantity, location, reason):
    """Receive stock into a location."""
    ctx = _context(company_id, user_id)
    result = record_purchase_receipt(ctx, [{"product_id": product_id, "quantity": quantity}], _location(location), reason)
    _report_result(result, f"Received {quantity} of product {product_id} into {location}")


@ledger_group.command('sell')
@company_option
@user_option
@product_option
@click.option('--quantity', type=str, required=True)
@click.option('--location', default='company', help='Sale location key')
@click.option('--reason', default='sale')
@with_appcontext
def sell(company_id, user_id, product_id, quantity, location, reason):
    """Take stock out of a location as a sale."""
    ctx = _context(company_id, user_id)
    result = record_sale(ctx, [{"product_id": product_id, "quantity": quantity}], _location(location), reason)
    _report_result(result, f"Sold {quantity} of product {product_id} from {location}")


@ledger_group.command('adjust')
@company_option
@user_option
@product_option
@click.option('--target', type=str, required=True, help='Absolute quantity after the adjustment')
@click.option('--location', default='company', help='Location key')
@click.option('--reason', required=True)
@with_appcontext
def adjust(company_id, user_id, product_id, target, location, reason):
    """Set a product's quantity at a location."""
    ctx = _context(company_id, user_id)
    result = record_adjustment(ctx, product_id, target, _location(location), reason)
    if result.ok and not result.movements:
        click.echo(f"PASS Quantity already {target} at {location}; no movement recorded")
        return
    _report_result(result, f"Adjusted product {product_id} at {location} to {target}")


@ledger_group.command('transfer')
@company_option
@user_option
@product_option
@click.option('--quantity', type=str, required=True)
@click.option('--from', 'from_location', required=True, help='Source location key')
@click.option('--to', 'to_location', required=True, help='Destination location key')
@click.option('--reason', default='transfer')
@with_appcontext
def transfer(company_id, user_id, product_id, quantity, from_location, to_location, reason):
    """Move stock between two locations atomically."""
    ctx = _context(company_id, user_id)
    result = record_transfer(
        ctx,
        product_id,
        quantity,
        _location(from_location),
        _location(to_location),
        reason,
    )
    _report_result(result, f"Transferred {quantity} of product {product_id} from {from_location} to {to_location}")


@ledger_group.command('history')
@company_option
@product_option
@click.option('--limit', type=int, default=None)
@with_appcontext
def history(company_id, product_id, limit):
    """Movement history of a product, newest first."""
    ctx = _context(company_id)
    try:
        rows = movement_history(ctx, product_id, limit=limit)
    except (TenantAccessError, LedgerError) as e:
        raise click.ClickException(str(e))

    if not rows:
        click.echo("No movements found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<6} {'Type':<9} {'Quantity':>12}  {'From':<24} {'To':<24} {'At'}")
    click.echo("=" * 100)
    for row in rows:
        click.echo(
            f"{row['id']:<6} {row['type']:<9} {row['quantity']:>12}  "
            f"{row['from_location_key'] or '-':<24} {row['to_location_key'] or '-':<24} {row['created_at']}"
        )
    click.echo("=" * 100 + "\n")


@ledger_group.command('valuation')
@company_option
@product_option
@with_appcontext
def valuation(company_id, product_id):
    """Quantity, value and status of one product."""
    ctx = _context(company_id)
    try:
        row = compute_valuation(ctx, product_id)
    except (TenantAccessError, LedgerError) as e:
        raise click.ClickException(str(e))

    click.echo(f"Product:           {row['name']} ({row['sku']})")
    click.echo(f"Total quantity:    {row['total_quantity']} {row['unit']}")
    click.echo(f"Stock value:       {format_cents(row['stock_value_cents'])}")
    click.echo(f"Potential revenue: {format_cents(row['potential_revenue_cents'])}")
    click.echo(f"Status:            {row['status']}")


@ledger_group.command('report')
@company_option
@click.option('--location', default=None, help='Restrict quantities to one location key')
@with_appcontext
def report(company_id, location):
    """Inventory report for all active products."""
    ctx = _context(company_id)
    loc = _location(location) if location else None
    try:
        data = inventory_report(ctx, loc)
    except (TenantAccessError, LedgerError) as e:
        raise click.ClickException(str(e))

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<6} {'SKU':<14} {'Name':<28} {'Quantity':>12} {'Value':>14}  {'Status'}")
    click.echo("=" * 90)
    for row in data["rows"]:
        click.echo(
            f"{row['product_id']:<6} {row['sku']:<14} {row['name'][:28]:<28} "
            f"{str(row['total_quantity']):>12} {format_cents(row['stock_value_cents']):>14}  {row['status']}"
        )
    click.echo("=" * 90)
    click.echo(f"Total stock value:       {format_cents(data['total_stock_value_cents'])}")
    click.echo(f"Total potential revenue: {format_cents(data['total_potential_revenue_cents'])}")
    click.echo(f"Low / out of stock:      {data['low_stock_count']} / {data['out_of_stock_count']}\n")


@ledger_group.command('reconcile')
@company_option
@click.option('--product-id', type=int, default=None)
@with_appcontext
def reconcile(company_id, product_id):
    """Compare stored quantities against a replay of the movement log."""
    ctx = _context(company_id)
    mismatches = reconcile_ledger(ctx, product_id)
    if not mismatches:
        click.echo("PASS Stock records match the movement log")
        return

    click.echo(f"FAIL {len(mismatches)} stock record(s) disagree with the movement log")
    for row in mismatches:
        click.echo(
            f"  product {row['product_id']} at {row['location_key']}: "
            f"stored={row['stored_quantity']} replayed={row['replayed_quantity']}"
        )
    raise SystemExit(1)


@ledger_group.command('sales-summary')
@company_option
@click.option('--start', default=None, help='ISO-8601 start (inclusive)')
@click.option('--end', default=None, help='ISO-8601 end (inclusive)')
@click.option('--top', type=int, default=None, help='Number of top-selling products to list')
@with_appcontext
def sales_summary_cmd(company_id, start, end, top):
    """Completed-sale totals and best sellers over a period."""
    ctx = _context(company_id)
    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError as e:
        raise click.BadParameter(str(e))

    summary = sales_summary(ctx, start_dt, end_dt)
    click.echo(f"Transactions:  {summary['transaction_count']}")
    click.echo(f"Subtotal:      {format_cents(summary['subtotal_cents'])}")
    click.echo(f"Discounts:     {format_cents(summary['discount_cents'])}")
    click.echo(f"Tax:           {format_cents(summary['tax_cents'])}")
    click.echo(f"Total sales:   {format_cents(summary['total_sales_cents'])}")
    click.echo(f"Average sale:  {format_cents(summary['average_sale_cents'])}")

    ranked = top_selling_products(ctx, top, start=start_dt, end=end_dt)
    if ranked:
        click.echo("\nTop sellers:")
        for i, row in enumerate(ranked, start=1):
            click.echo(
                f"  {i}. {row['name']} ({row['sku']}): "
                f"{row['quantity_sold']} sold, {format_cents(row['revenue_cents'])}"
            )


@ledger_group.command('export')
@company_option
@click.option('--output', type=click.Path(dir_okay=False, writable=True), default=None)
@click.option('--save', is_flag=True, help='Also keep the snapshot in the key/value store')
@with_appcontext
def export(company_id, output, save):
    """Dump a company snapshot as JSON."""
    ctx = _context(company_id)
    snapshot = export_company_data(ctx, save=save)
    payload = json.dumps(snapshot, indent=2, default=_json_default, ensure_ascii=False)
    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(payload)
        click.echo(f"PASS Exported company {company_id} to {output}")
    else:
        click.echo(payload)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
