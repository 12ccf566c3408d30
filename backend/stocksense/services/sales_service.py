"""
Sales Service: point-of-sale documents on top of the sale processor.

A Sale is written in the same transaction as the stock it takes, so a sale
row exists only if every line's stock was available. Refunds put the stock
back with "in" movements that reference the sale.

LINE MATH (all in cents, half-up):
    subtotal  = unit_price x quantity
    discount  = subtotal x discount_percent / 100
    tax       = (subtotal - discount) x tax_percent / 100
    total     = subtotal - discount + tax

A cart-level discount (amount, or percent of the subtotal) is added to the
line discounts. final_amount = subtotal - discount + tax.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..locations import coerce_location
from ..models import Product, Sale, SaleLine
from ..models.documents import PAYMENT_METHODS, SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED
from ..money import extend_cents, percent_of
from ..time_utils import utcnow
from .concurrency import lock_for_update
from .document_service import SALE_PREFIX, next_document_number
from .inventory_service import LedgerResult, LineItem, receive_stock, run_processor, sell_stock
from .stock_service import LedgerError, ensure_product_in_company, to_positive_quantity
from .tenant_service import TenantContext, TenantAccessError, require_location_in_company

REFERENCE_SALE = "sale"


class SaleError(LedgerError):
    """Raised for sale operation errors."""
    code = "sale_error"


@dataclass
class SaleLineInput:
    product_id: int
    quantity: Decimal
    unit_price_cents: int | None = None
    discount_percent: Decimal = Decimal("0")
    tax_percent: Decimal | None = None


def _to_percent(value, field_name: str) -> Decimal:
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise SaleError(f"{field_name} must be a number")
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise SaleError(f"{field_name} must be between 0 and 100")
    return pct


def _normalize_line(item) -> SaleLineInput:
    if isinstance(item, SaleLineInput):
        return item
    if isinstance(item, LineItem):
        return SaleLineInput(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )
    if isinstance(item, dict):
        if "product_id" not in item or "quantity" not in item:
            raise SaleError("each line needs product_id and quantity")
        return SaleLineInput(
            product_id=item["product_id"],
            quantity=item["quantity"],
            unit_price_cents=item.get("unit_price_cents"),
            discount_percent=item.get("discount_percent", Decimal("0")),
            tax_percent=item.get("tax_percent"),
        )
    raise SaleError(f"unsupported sale line: {item!r}")


def compute_line_amounts(unit_price_cents: int, quantity, discount_percent, tax_percent) -> dict:
    """Amounts of one sale line, in cents."""
    subtotal = extend_cents(unit_price_cents, quantity)
    discount = percent_of(subtotal, discount_percent)
    tax = percent_of(subtotal - discount, tax_percent)
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "tax_cents": tax,
        "line_total_cents": subtotal - discount + tax,
    }


def _price_lines(ctx: TenantContext, items) -> list[dict]:
    if not items:
        raise SaleError("Cannot create a sale with no lines")

    priced = []
    for raw in items:
        line = _normalize_line(raw)
        quantity = to_positive_quantity(line.quantity)
        product: Product = ensure_product_in_company(ctx, line.product_id, require_active=True)

        unit_price = line.unit_price_cents
        if unit_price is None:
            unit_price = product.sell_price_cents
        if unit_price < 0:
            raise SaleError("unit price cannot be negative", details={"product_id": product.id})

        discount_pct = _to_percent(line.discount_percent or 0, "discount_percent")
        if line.tax_percent is not None:
            tax_pct = _to_percent(line.tax_percent, "tax_percent")
        else:
            tax_pct = _to_percent(product.tax_rate_percent or 0, "tax_percent")

        amounts = compute_line_amounts(unit_price, quantity, discount_pct, tax_pct)
        priced.append({
            "product_id": product.id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "discount_percent": discount_pct,
            "tax_percent": tax_pct,
            **amounts,
        })
    return priced


def compute_sale_totals(
    priced_lines: list[dict],
    *,
    cart_discount_cents: int | None = None,
    cart_discount_percent=None,
) -> dict:
    """
    Sum priced lines and apply a cart discount.

    The cart discount is taken from the subtotal and capped so the final
    amount never goes below zero.
    """
    if cart_discount_cents is not None and cart_discount_percent is not None:
        raise SaleError("Give either cart_discount_cents or cart_discount_percent, not both")

    subtotal = sum(line["subtotal_cents"] for line in priced_lines)
    line_discount = sum(line["discount_cents"] for line in priced_lines)
    tax = sum(line["tax_cents"] for line in priced_lines)

    if cart_discount_cents is not None:
        if cart_discount_cents < 0:
            raise SaleError("cart discount cannot be negative")
        cart_discount = cart_discount_cents
    elif cart_discount_percent is not None:
        cart_discount = percent_of(subtotal, _to_percent(cart_discount_percent, "cart_discount_percent"))
    else:
        cart_discount = 0

    discount = min(line_discount + cart_discount, subtotal + tax)
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "tax_cents": tax,
        "final_amount_cents": subtotal - discount + tax,
    }


def create_sale(
    ctx: TenantContext,
    items,
    location=None,
    *,
    payment_method: str = "cash",
    customer_name: str | None = None,
    customer_phone: str | None = None,
    cart_discount_cents: int | None = None,
    cart_discount_percent=None,
    amount_received_cents: int | None = None,
) -> LedgerResult:
    """
    Price the lines, take the stock and persist the Sale in one transaction.

    result.document is the Sale on success. Cash sales with
    amount_received_cents must cover the final amount.
    """
    def _op():
        if payment_method not in PAYMENT_METHODS:
            raise SaleError(f"Invalid payment method: {payment_method}")

        loc = require_location_in_company(coerce_location(location), ctx.company_id)
        priced = _price_lines(ctx, items)
        totals = compute_sale_totals(
            priced,
            cart_discount_cents=cart_discount_cents,
            cart_discount_percent=cart_discount_percent,
        )

        if payment_method == "cash" and amount_received_cents is not None:
            if amount_received_cents < totals["final_amount_cents"]:
                raise SaleError(
                    "Amount received is less than the amount due",
                    details={
                        "amount_received_cents": amount_received_cents,
                        "final_amount_cents": totals["final_amount_cents"],
                    },
                )

        sale = Sale(
            company_id=ctx.company_id,
            invoice_number=next_document_number(
                company_id=ctx.company_id,
                document_type="SALE",
                prefix=SALE_PREFIX,
            ),
            branch_id=loc.branch_id,
            warehouse_id=loc.warehouse_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            payment_method=payment_method,
            status=SALE_STATUS_COMPLETED,
            user_id=ctx.user_id,
            created_at=utcnow(),
            **totals,
        )
        db.session.add(sale)
        db.session.flush()

        movements = sell_stock(
            ctx,
            items=[LineItem(line["product_id"], line["quantity"], line["unit_price_cents"]) for line in priced],
            location=loc,
            reason=f"Sale {sale.invoice_number}",
            reference_type=REFERENCE_SALE,
            reference_id=sale.id,
        )

        for line, movement in zip(priced, movements):
            db.session.add(SaleLine(
                sale_id=sale.id,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                discount_percent=line["discount_percent"],
                discount_cents=line["discount_cents"],
                tax_percent=line["tax_percent"],
                tax_cents=line["tax_cents"],
                line_total_cents=line["line_total_cents"],
                movement_id=movement.id,
            ))
        db.session.flush()
        return movements, sale

    return run_processor("sale", ctx, _op)


def get_sale(ctx: TenantContext, sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleError("Sale not found", details={"sale_id": sale_id})
    if sale.company_id != ctx.company_id:
        raise TenantAccessError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    ctx: TenantContext,
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[Sale]:
    query = db.session.query(Sale).filter_by(company_id=ctx.company_id)
    if status:
        query = query.filter(Sale.status == status)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def refund_sale(ctx: TenantContext, sale_id: int, reason: str | None = None) -> LedgerResult:
    """
    Refund a completed sale: return every line to the sale location.

    A sale can be refunded once.
    """
    def _op():
        sale = lock_for_update(
            db.session.query(Sale).filter_by(id=sale_id)
        ).first()
        if sale is None:
            raise SaleError("Sale not found", details={"sale_id": sale_id})
        if sale.company_id != ctx.company_id:
            raise TenantAccessError("Sale not found", details={"sale_id": sale_id})
        if sale.status != SALE_STATUS_COMPLETED:
            raise SaleError(
                f"Cannot refund sale with status {sale.status}",
                details={"sale_id": sale.id, "status": sale.status},
            )
        if not sale.lines:
            raise SaleError("Cannot refund sale with no lines", details={"sale_id": sale.id})

        note = f"Refund {sale.invoice_number}"
        if reason:
            note = f"{note}: {reason}"
        movements = receive_stock(
            ctx,
            items=[LineItem(line.product_id, line.quantity) for line in sale.lines],
            location=sale.location,
            reason=note,
            reference_type=REFERENCE_SALE,
            reference_id=sale.id,
            require_active=False,
        )

        sale.status = SALE_STATUS_REFUNDED
        sale.refunded_at = utcnow()
        db.session.flush()
        return movements, sale

    return run_processor("sale refund", ctx, _op)
