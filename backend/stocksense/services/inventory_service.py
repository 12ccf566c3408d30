# Overview: Transaction processors for sales, purchase receipts and adjustments.

"""
Stock Processor Semantics (authoritative)

Each processor is one database transaction:
    validate -> lock affected StockRecords -> check preconditions
    -> write quantities -> append one movement per line -> commit

- Sale: every product's requested total must be available at the sale
  location, otherwise InsufficientStockError and nothing changes.
- Purchase receipt: always allowed; increments the destination.
- Adjustment: sets an absolute target; the movement carries |target - current|
  with type in/out. A zero delta records the adjustment but writes no movement.

Two layers:
- receive_stock / sell_stock / adjust_stock raise LedgerError and never
  commit, so documents (sales, purchases) can compose them in their own
  transaction.
- record_* wrap them in run_processor(), which commits and returns a
  LedgerResult instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..locations import Location, LocationError, coerce_location
from ..models import InventoryMovement, StockAdjustment
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from .concurrency import run_in_transaction
from .ledger_service import append_movement
from .stock_service import (
    LedgerError,
    LedgerValidationError,
    InsufficientStockError,
    ensure_product_in_company,
    ensure_stock_record,
    to_positive_quantity,
    to_quantity,
    write_quantity,
)
from .tenant_service import TenantContext, TenantAccessError, require_location_in_company

REFERENCE_ADJUSTMENT = "adjustment"


@dataclass
class LineItem:
    product_id: int
    quantity: Decimal
    unit_price_cents: int | None = None


@dataclass
class LedgerResult:
    """
    Outcome of a processor call.

    ok=False means nothing was written; error_code and message say why and
    details carries e.g. the available quantity for insufficient_stock.
    """
    ok: bool
    movements: list = field(default_factory=list)
    document: object | None = None
    error_code: str | None = None
    message: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, movements=None, document=None) -> "LedgerResult":
        return cls(ok=True, movements=list(movements or []), document=document)

    @classmethod
    def failure(cls, exc: Exception) -> "LedgerResult":
        return cls(
            ok=False,
            error_code=getattr(exc, "code", "ledger_error"),
            message=str(exc),
            details=dict(getattr(exc, "details", {}) or {}),
        )

    @property
    def available(self) -> Decimal | None:
        raw = self.details.get("available")
        return Decimal(raw) if raw is not None else None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "movements": [m.to_dict() for m in self.movements],
            "document": self.document.to_dict() if self.document is not None else None,
        }


def normalize_items(items) -> list[LineItem]:
    """
    Accept LineItem objects or mappings with product_id / quantity
    (and optionally unit_price_cents).
    """
    if not items:
        raise LedgerValidationError("at least one item is required")

    normalized = []
    for item in items:
        if isinstance(item, LineItem):
            product_id, quantity, unit_price = item.product_id, item.quantity, item.unit_price_cents
        elif isinstance(item, dict):
            try:
                product_id = item["product_id"]
                quantity = item["quantity"]
            except KeyError as e:
                raise LedgerValidationError(f"item is missing {e}")
            unit_price = item.get("unit_price_cents")
        else:
            raise LedgerValidationError(f"unsupported item: {item!r}")

        if unit_price is not None and unit_price < 0:
            raise LedgerValidationError("unit price cannot be negative")
        normalized.append(LineItem(
            product_id=product_id,
            quantity=to_positive_quantity(quantity),
            unit_price_cents=unit_price,
        ))
    return normalized


def _requested_totals(items: list[LineItem]) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, Decimal("0")) + item.quantity
    return totals


def receive_stock(
    ctx: TenantContext,
    *,
    items,
    location: Location,
    reason: str = "purchase receipt",
    reference_type: str | None = None,
    reference_id: int | None = None,
    require_active: bool = True,
) -> list[InventoryMovement]:
    """
    Increment the destination for each item. No precondition on quantity.

    require_active=False lets a refund return stock of a since-deactivated
    product.
    """
    lines = normalize_items(items)
    require_location_in_company(location, ctx.company_id)

    movements = []
    for line in lines:
        ensure_product_in_company(ctx, line.product_id, require_active=require_active)
        record = ensure_stock_record(ctx, line.product_id, location)
        write_quantity(record, to_quantity(record.quantity) + line.quantity)
        movements.append(append_movement(
            ctx,
            product_id=line.product_id,
            movement_type=MOVEMENT_IN,
            quantity=line.quantity,
            reason=reason,
            to_location=location,
            reference_type=reference_type,
            reference_id=reference_id,
        ))
    return movements


def sell_stock(
    ctx: TenantContext,
    *,
    items,
    location: Location,
    reason: str = "sale",
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> list[InventoryMovement]:
    """
    Decrement the sale location for each item.

    All products are checked before the first write, so a shortfall on any
    line leaves every record untouched.
    """
    lines = normalize_items(items)
    require_location_in_company(location, ctx.company_id)

    records = {}
    for product_id, requested in _requested_totals(lines).items():
        ensure_product_in_company(ctx, product_id, require_active=True)
        record = ensure_stock_record(ctx, product_id, location)
        available = to_quantity(record.quantity)
        if available < requested:
            raise InsufficientStockError(product_id, available, requested, location)
        records[product_id] = record

    movements = []
    for line in lines:
        record = records[line.product_id]
        write_quantity(record, to_quantity(record.quantity) - line.quantity)
        movements.append(append_movement(
            ctx,
            product_id=line.product_id,
            movement_type=MOVEMENT_OUT,
            quantity=line.quantity,
            reason=reason,
            from_location=location,
            reference_type=reference_type,
            reference_id=reference_id,
        ))
    return movements


def adjust_stock(
    ctx: TenantContext,
    *,
    product_id: int,
    target_quantity,
    location: Location,
    reason: str,
) -> tuple[StockAdjustment, InventoryMovement | None]:
    """
    Set a (product, location) to an absolute quantity.

    The stock record is materialized even when the delta is zero, so an
    adjustment to 0 is distinguishable from "never stocked here".
    """
    target = to_quantity(target_quantity)
    if target < 0:
        raise LedgerValidationError("target quantity cannot be negative")
    reason = (reason or "").strip()
    if not reason:
        raise LedgerValidationError("reason is required")

    require_location_in_company(location, ctx.company_id)
    ensure_product_in_company(ctx, product_id)

    record = ensure_stock_record(ctx, product_id, location)
    previous = to_quantity(record.quantity)
    delta = target - previous

    adjustment = StockAdjustment(
        company_id=ctx.company_id,
        product_id=product_id,
        location_key=location.key,
        previous_quantity=previous,
        target_quantity=target,
        delta=delta,
        reason=reason[:255],
        user_id=ctx.user_id,
    )
    db.session.add(adjustment)
    db.session.flush()

    write_quantity(record, target)

    if delta == 0:
        return adjustment, None

    movement = append_movement(
        ctx,
        product_id=product_id,
        movement_type=MOVEMENT_IN if delta > 0 else MOVEMENT_OUT,
        quantity=abs(delta),
        reason=f"Stock adjustment: {reason}",
        to_location=location if delta > 0 else None,
        from_location=location if delta < 0 else None,
        reference_type=REFERENCE_ADJUSTMENT,
        reference_id=adjustment.id,
    )
    return adjustment, movement


def run_processor(operation: str, ctx: TenantContext, func) -> LedgerResult:
    """
    Run func(ctx) -> (movements, document) in one committed transaction.

    LedgerError, LocationError and TenantAccessError become a failed LedgerResult after
    rollback; anything else propagates.
    """
    try:
        movements, document = run_in_transaction(func, retry_integrity=True)
    except (LedgerError, LocationError, TenantAccessError) as exc:
        current_app.logger.warning(
            "%s rejected (company_id=%s, user_id=%s): %s",
            operation, ctx.company_id, ctx.user_id, exc,
        )
        return LedgerResult.failure(exc)
    except Exception:
        current_app.logger.exception("%s failed (company_id=%s)", operation, ctx.company_id)
        raise

    current_app.logger.info(
        "%s committed (company_id=%s, user_id=%s, movements=%s)",
        operation, ctx.company_id, ctx.user_id, [m.id for m in movements],
    )
    return LedgerResult.success(movements, document)


def record_sale(ctx: TenantContext, items, location=None, reason: str = "sale") -> LedgerResult:
    """Take stock for a batch of sale lines from one location."""
    def _op():
        return sell_stock(ctx, items=items, location=coerce_location(location), reason=reason), None
    return run_processor("sale", ctx, _op)


def record_purchase_receipt(
    ctx: TenantContext,
    items,
    location=None,
    reason: str = "purchase receipt",
) -> LedgerResult:
    """Receive a batch of lines into one location."""
    def _op():
        return receive_stock(ctx, items=items, location=coerce_location(location), reason=reason), None
    return run_processor("purchase receipt", ctx, _op)


def record_adjustment(
    ctx: TenantContext,
    product_id: int,
    target_quantity,
    location=None,
    reason: str = "manual count",
) -> LedgerResult:
    """Set an absolute quantity; result.document is the StockAdjustment."""
    def _op():
        adjustment, movement = adjust_stock(
            ctx,
            product_id=product_id,
            target_quantity=target_quantity,
            location=coerce_location(location),
            reason=reason,
        )
        return ([movement] if movement is not None else []), adjustment
    return run_processor("adjustment", ctx, _op)
