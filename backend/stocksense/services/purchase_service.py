# Overview: Purchase documents: payment status gates stock receipt.

"""
Purchase Service

LIFECYCLE:
1. pending: created with paid < total. No stock has moved.
2. completed: fully paid, or explicitly completed. Stock is received into
   the destination exactly once and received_at is stamped.
3. cancelled: only from pending. No stock ever moved.

Supplier balance tracks what is still owed: it grows by the unpaid part on
creation and shrinks with each payment or cancellation.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..locations import coerce_location
from ..models import Purchase, PurchaseLine, Supplier
from ..models.documents import (
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_COMPLETED,
    PURCHASE_STATUS_PENDING,
)
from ..money import extend_cents
from ..time_utils import utcnow
from .concurrency import lock_for_update
from .document_service import PURCHASE_PREFIX, next_document_number
from .inventory_service import LedgerResult, LineItem, normalize_items, receive_stock, run_processor
from .stock_service import LedgerError, ensure_product_in_company
from .tenant_service import TenantContext, TenantAccessError, require_location_in_company

REFERENCE_PURCHASE = "purchase"


class PurchaseError(LedgerError):
    """Raised for purchase document errors."""
    code = "purchase_error"


def _require_supplier(ctx: TenantContext, supplier_id: int | None) -> Supplier | None:
    if supplier_id is None:
        return None
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None or supplier.company_id != ctx.company_id:
        raise TenantAccessError("Supplier not found", details={"supplier_id": supplier_id})
    if not supplier.is_active:
        raise PurchaseError("Supplier is inactive", details={"supplier_id": supplier_id})
    return supplier


def _lock_purchase(ctx: TenantContext, purchase_id: int) -> Purchase:
    purchase = lock_for_update(
        db.session.query(Purchase).filter_by(id=purchase_id)
    ).first()
    if purchase is None:
        raise PurchaseError("Purchase not found", details={"purchase_id": purchase_id})
    if purchase.company_id != ctx.company_id:
        raise TenantAccessError("Purchase not found", details={"purchase_id": purchase_id})
    return purchase


def _receive_purchase(ctx: TenantContext, purchase: Purchase) -> list:
    """Move the purchase's lines into its destination. Runs once per purchase."""
    if purchase.received_at is not None:
        raise PurchaseError("Purchase stock was already received", details={"purchase_id": purchase.id})

    movements = receive_stock(
        ctx,
        items=[LineItem(line.product_id, line.quantity) for line in purchase.lines],
        location=purchase.location,
        reason=f"Purchase {purchase.invoice_number}",
        reference_type=REFERENCE_PURCHASE,
        reference_id=purchase.id,
    )
    for line, movement in zip(purchase.lines, movements):
        line.movement_id = movement.id

    purchase.status = PURCHASE_STATUS_COMPLETED
    purchase.received_at = utcnow()
    db.session.flush()
    return movements


def create_purchase(
    ctx: TenantContext,
    items,
    location=None,
    *,
    supplier_id: int | None = None,
    paid_amount_cents: int = 0,
) -> LedgerResult:
    """
    Record a purchase invoice.

    Each item needs product_id, quantity and unit_price_cents (defaults to the
    product's buy price). The purchase is completed, and its stock received,
    when paid_amount_cents covers the total; otherwise it stays pending.
    """
    def _op():
        if paid_amount_cents < 0:
            raise PurchaseError("paid amount cannot be negative")

        loc = require_location_in_company(coerce_location(location), ctx.company_id)
        supplier = _require_supplier(ctx, supplier_id)

        lines = []
        for item in normalize_items(items):
            product = ensure_product_in_company(ctx, item.product_id, require_active=True)
            unit_cost = item.unit_price_cents
            if unit_cost is None:
                unit_cost = product.buy_price_cents
            lines.append(PurchaseLine(
                product_id=product.id,
                quantity=item.quantity,
                unit_cost_cents=unit_cost,
                line_total_cents=extend_cents(unit_cost, item.quantity),
            ))

        total = sum(line.line_total_cents for line in lines)
        if paid_amount_cents > total:
            raise PurchaseError(
                "paid amount exceeds the purchase total",
                details={"paid_amount_cents": paid_amount_cents, "total_amount_cents": total},
            )

        purchase = Purchase(
            company_id=ctx.company_id,
            supplier_id=supplier.id if supplier else None,
            invoice_number=next_document_number(
                company_id=ctx.company_id,
                document_type="PURCHASE",
                prefix=PURCHASE_PREFIX,
            ),
            branch_id=loc.branch_id,
            warehouse_id=loc.warehouse_id,
            total_amount_cents=total,
            paid_amount_cents=paid_amount_cents,
            status=PURCHASE_STATUS_PENDING,
            user_id=ctx.user_id,
            created_at=utcnow(),
            lines=lines,
        )
        db.session.add(purchase)
        db.session.flush()

        if supplier is not None:
            supplier.balance_cents += purchase.remaining_amount_cents

        movements = []
        if paid_amount_cents >= total:
            movements = _receive_purchase(ctx, purchase)
        return movements, purchase

    return run_processor("purchase", ctx, _op)


def complete_purchase(ctx: TenantContext, purchase_id: int) -> LedgerResult:
    """
    Transition pending -> completed and receive the stock.

    Completing an already completed purchase fails instead of receiving twice.
    """
    def _op():
        purchase = _lock_purchase(ctx, purchase_id)
        if purchase.status != PURCHASE_STATUS_PENDING:
            raise PurchaseError(
                f"Cannot complete purchase with status {purchase.status}",
                details={"purchase_id": purchase.id, "status": purchase.status},
            )
        return _receive_purchase(ctx, purchase), purchase

    return run_processor("purchase completion", ctx, _op)


def record_purchase_payment(ctx: TenantContext, purchase_id: int, amount_cents: int) -> LedgerResult:
    """
    Add a payment to a purchase. A payment that settles a pending purchase
    completes it and receives its stock.
    """
    def _op():
        if amount_cents <= 0:
            raise PurchaseError("payment amount must be positive")

        purchase = _lock_purchase(ctx, purchase_id)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise PurchaseError("Cannot pay a cancelled purchase", details={"purchase_id": purchase.id})
        if amount_cents > purchase.remaining_amount_cents:
            raise PurchaseError(
                "payment exceeds the remaining amount",
                details={
                    "purchase_id": purchase.id,
                    "remaining_amount_cents": purchase.remaining_amount_cents,
                    "amount_cents": amount_cents,
                },
            )

        purchase.paid_amount_cents += amount_cents
        if purchase.supplier is not None:
            purchase.supplier.balance_cents -= amount_cents

        movements = []
        if purchase.status == PURCHASE_STATUS_PENDING and purchase.remaining_amount_cents == 0:
            movements = _receive_purchase(ctx, purchase)
        db.session.flush()
        return movements, purchase

    return run_processor("purchase payment", ctx, _op)


def cancel_purchase(ctx: TenantContext, purchase_id: int) -> LedgerResult:
    """Cancel a pending purchase. Completed purchases have moved stock and cannot be cancelled."""
    def _op():
        purchase = _lock_purchase(ctx, purchase_id)
        if purchase.status != PURCHASE_STATUS_PENDING:
            raise PurchaseError(
                f"Cannot cancel purchase with status {purchase.status}",
                details={"purchase_id": purchase.id, "status": purchase.status},
            )
        if purchase.supplier is not None:
            purchase.supplier.balance_cents -= purchase.remaining_amount_cents
        purchase.status = PURCHASE_STATUS_CANCELLED
        purchase.cancelled_at = utcnow()
        db.session.flush()
        return [], purchase

    return run_processor("purchase cancellation", ctx, _op)


def get_purchase(ctx: TenantContext, purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise PurchaseError("Purchase not found", details={"purchase_id": purchase_id})
    if purchase.company_id != ctx.company_id:
        raise TenantAccessError("Purchase not found", details={"purchase_id": purchase_id})
    return purchase


def list_purchases(
    ctx: TenantContext,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[Purchase]:
    query = db.session.query(Purchase).filter_by(company_id=ctx.company_id)
    if status:
        query = query.filter(Purchase.status == status)
    if supplier_id is not None:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if start is not None:
        query = query.filter(Purchase.created_at >= start)
    if end is not None:
        query = query.filter(Purchase.created_at <= end)
    return query.order_by(Purchase.created_at.desc(), Purchase.id.desc()).limit(limit).all()
