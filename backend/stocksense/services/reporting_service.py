# Overview: Read-only valuation and aggregation views over the ledger and documents.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..locations import Location
from ..models import Product, Purchase, Sale, SaleLine, Supplier
from ..models.documents import PURCHASE_STATUS_COMPLETED, SALE_STATUS_COMPLETED
from ..money import extend_cents, to_cents
from ..time_utils import day_bounds, to_utc_z, utcnow
from .ledger_service import get_movement_history
from .stock_service import (
    QUANTITY_PLACES,
    ZERO,
    LedgerValidationError,
    ensure_product_in_company,
    get_quantity,
    get_total_quantities,
    get_total_quantity,
    round_quantity,
    to_quantity,
)
from .expense_service import expenses_total
from .tenant_service import TenantContext, require_location_in_company

STATUS_OUT = "out"
STATUS_LOW = "low"
STATUS_NORMAL = "normal"


def stock_value(ctx: TenantContext, product: Product, total_quantity: Decimal | None = None) -> int:
    """total quantity x buy price, in cents."""
    if total_quantity is None:
        total_quantity = get_total_quantity(ctx, product.id)
    return extend_cents(product.buy_price_cents, total_quantity)


def potential_revenue(ctx: TenantContext, product: Product, total_quantity: Decimal | None = None) -> int:
    """total quantity x sell price, in cents."""
    if total_quantity is None:
        total_quantity = get_total_quantity(ctx, product.id)
    return extend_cents(product.sell_price_cents, total_quantity)


def stock_status(ctx: TenantContext, product: Product, total_quantity: Decimal | None = None) -> str:
    """
    "out" at zero, "low" at or under min_quantity, else "normal".
    """
    if total_quantity is None:
        total_quantity = get_total_quantity(ctx, product.id)
    if total_quantity <= ZERO:
        return STATUS_OUT
    if total_quantity <= to_quantity(product.min_quantity or 0):
        return STATUS_LOW
    return STATUS_NORMAL


def compute_valuation(ctx: TenantContext, product_id: int) -> dict:
    product = ensure_product_in_company(ctx, product_id)
    total = get_total_quantity(ctx, product.id)
    return _valuation_row(ctx, product, total)


def _valuation_row(ctx: TenantContext, product: Product, total: Decimal) -> dict:
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "unit": product.unit,
        "total_quantity": total,
        "min_quantity": to_quantity(product.min_quantity or 0),
        "stock_value_cents": stock_value(ctx, product, total),
        "potential_revenue_cents": potential_revenue(ctx, product, total),
        "status": stock_status(ctx, product, total),
    }


def inventory_report(ctx: TenantContext, location: Location | None = None) -> dict:
    """
    One valuation row per active product plus totals.

    Without a location, quantities are company totals; with one, the
    quantity held at exactly that location.
    """
    if location is not None:
        require_location_in_company(location, ctx.company_id)

    products = db.session.query(Product).filter(
        Product.company_id == ctx.company_id,
        Product.is_active.is_(True),
    ).order_by(Product.name.asc(), Product.id.asc()).all()

    totals = get_total_quantities(ctx) if location is None else None

    rows = []
    for product in products:
        if location is None:
            qty = totals.get(product.id, ZERO.quantize(QUANTITY_PLACES))
        else:
            qty = get_quantity(ctx, product.id, location)
        rows.append(_valuation_row(ctx, product, qty))

    return {
        "company_id": ctx.company_id,
        "location_key": location.key if location is not None else None,
        "generated_at": to_utc_z(utcnow()),
        "rows": rows,
        "product_count": len(rows),
        "total_stock_value_cents": sum(r["stock_value_cents"] for r in rows),
        "total_potential_revenue_cents": sum(r["potential_revenue_cents"] for r in rows),
        "low_stock_count": sum(1 for r in rows if r["status"] == STATUS_LOW),
        "out_of_stock_count": sum(1 for r in rows if r["status"] == STATUS_OUT),
    }


def low_stock_products(ctx: TenantContext) -> list[dict]:
    """Active products whose total is at or below min_quantity, lowest first."""
    rows = [r for r in inventory_report(ctx)["rows"] if r["status"] != STATUS_NORMAL]
    rows.sort(key=lambda r: (r["total_quantity"], r["product_id"]))
    return rows


def top_selling_products(
    ctx: TenantContext,
    n: int | None = None,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict]:
    """
    Products ranked by revenue over completed sales.

    Ties on revenue are broken by quantity sold, then by product id.
    """
    if n is None:
        n = current_app.config.get("STOCKSENSE_TOP_PRODUCTS_LIMIT", 5)
    if n < 0:
        raise LedgerValidationError("n cannot be negative")

    query = db.session.query(
        SaleLine.product_id,
        func.sum(SaleLine.quantity).label("quantity_sold"),
        func.sum(SaleLine.line_total_cents).label("revenue_cents"),
    ).join(Sale, Sale.id == SaleLine.sale_id).filter(
        Sale.company_id == ctx.company_id,
        Sale.status == SALE_STATUS_COMPLETED,
    )
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    aggregated = [
        {
            "product_id": row.product_id,
            "quantity_sold": round_quantity(row.quantity_sold),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in query.group_by(SaleLine.product_id).all()
    ]
    aggregated.sort(key=lambda r: (-r["revenue_cents"], -r["quantity_sold"], r["product_id"]))
    ranked = aggregated[:n]

    names = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_([r["product_id"] for r in ranked])).all()
    } if ranked else {}
    for row in ranked:
        product = names.get(row["product_id"])
        row["sku"] = product.sku if product else None
        row["name"] = product.name if product else None
    return ranked


def sales_summary(
    ctx: TenantContext,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Totals over completed sales in [start, end]."""
    query = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.subtotal_cents), 0),
        func.coalesce(func.sum(Sale.discount_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
        func.coalesce(func.sum(Sale.final_amount_cents), 0),
    ).filter(
        Sale.company_id == ctx.company_id,
        Sale.status == SALE_STATUS_COMPLETED,
    )
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    count, subtotal, discount, tax, total = query.one()
    count = int(count or 0)
    total = int(total or 0)
    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "transaction_count": count,
        "subtotal_cents": int(subtotal or 0),
        "discount_cents": int(discount or 0),
        "tax_cents": int(tax or 0),
        "total_sales_cents": total,
        "average_sale_cents": to_cents(Decimal(total) / count) if count else 0,
    }


def purchases_total(
    ctx: TenantContext,
    start: datetime | None = None,
    end: datetime | None = None,
) -> int:
    """Sum of completed purchase totals in [start, end], in cents."""
    query = db.session.query(func.coalesce(func.sum(Purchase.total_amount_cents), 0)).filter(
        Purchase.company_id == ctx.company_id,
        Purchase.status == PURCHASE_STATUS_COMPLETED,
    )
    if start is not None:
        query = query.filter(Purchase.created_at >= start)
    if end is not None:
        query = query.filter(Purchase.created_at <= end)
    return int(query.scalar() or 0)


def dashboard_stats(ctx: TenantContext, day: date | None = None) -> dict:
    """Figures for one calendar day (UTC) plus current catalog counts."""
    day = day or utcnow().date()
    start, end = day_bounds(day)

    summary = sales_summary(ctx, start, end)
    purchases = purchases_total(ctx, start, end)
    expenses = expenses_total(ctx, start, end)
    report = inventory_report(ctx)
    supplier_count = db.session.query(func.count(Supplier.id)).filter(
        Supplier.company_id == ctx.company_id,
        Supplier.is_active.is_(True),
    ).scalar()

    return {
        "day": day.isoformat(),
        "total_sales_cents": summary["total_sales_cents"],
        "transaction_count": summary["transaction_count"],
        "total_purchases_cents": purchases,
        "gross_profit_cents": summary["total_sales_cents"] - purchases,
        "total_expenses_cents": expenses,
        "net_profit_cents": summary["total_sales_cents"] - purchases - expenses,
        "total_products": report["product_count"],
        "low_stock_products": report["low_stock_count"] + report["out_of_stock_count"],
        "total_suppliers": int(supplier_count or 0),
        "total_stock_value_cents": report["total_stock_value_cents"],
    }


def movement_history(ctx: TenantContext, product_id: int, limit: int | None = None) -> list[dict]:
    """Serialized movement history of a product, newest first."""
    ensure_product_in_company(ctx, product_id)
    return [m.to_dict() for m in get_movement_history(ctx, product_id, limit=limit)]
