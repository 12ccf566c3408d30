# Overview: Stock ledger primitives: quantity lookups, per-key writes, replay and reconciliation.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import func

from ..extensions import db
from ..locations import Location
from ..models import Product, StockRecord, InventoryMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_TRANSFER
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .tenant_service import TenantContext, TenantAccessError, require_location_in_company
"""
Stock Ledger Invariants (authoritative)

- One StockRecord per (company_id, product_id, location_key); the unique
  constraint makes a duplicate impossible.
- No record means quantity 0. get_stock_record() returns None in that case
  so callers can tell "never stocked here" from "explicitly zero".
- Records are created lazily on first write and never deleted here.
- Writes touch a single record (row lock + version_id), never the whole
  collection.
- set_quantity() is a raw primitive: it does not check bounds and writes no
  movement. The processors in inventory_service/transfer_service are the
  checked paths and always pair a write with exactly one movement.
- replay_quantity() folds the movement log for a key; reconcile_ledger()
  reports keys where the stored quantity and the replay disagree.
"""

QUANTITY_PLACES = Decimal("0.001")
ZERO = Decimal("0")
MAX_QUANTITY = Decimal("1e11")


class LedgerError(Exception):
    """Base class for ledger failures that leave the ledger unchanged."""
    code = "ledger_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class LedgerValidationError(LedgerError):
    """Raised for malformed input: bad quantity, unknown product, same-location transfer."""
    code = "validation_error"


class InsufficientStockError(LedgerError):
    """Raised when a location holds less than the requested quantity."""
    code = "insufficient_stock"

    def __init__(self, product_id: int, available: Decimal, requested: Decimal, location: Location | None = None):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available quantity: {format_quantity(available)}, requested: {format_quantity(requested)}",
            details={
                "product_id": product_id,
                "available": str(available),
                "requested": str(requested),
                "location_key": location.key if location is not None else None,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


def format_quantity(qty: Decimal) -> str:
    """Display form without trailing zeros: 6.000 -> "6", 2.500 -> "2.5"."""
    return format(Decimal(qty).normalize(), "f")


def to_quantity(value) -> Decimal:
    """
    Normalize a quantity to a Decimal with 3 places (half-up).

    Accepts int, Decimal, str and float. Rejects bool, NaN and infinities.
    """
    if isinstance(value, bool) or value is None:
        raise LedgerValidationError(f"invalid quantity: {value!r}")
    try:
        qty = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise LedgerValidationError(f"invalid quantity: {value!r}")
    if not qty.is_finite():
        raise LedgerValidationError(f"invalid quantity: {value!r}")
    if abs(qty) >= MAX_QUANTITY:
        raise LedgerValidationError("quantity out of range", details={"quantity": str(value)})
    return qty.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def round_quantity(total) -> Decimal:
    """Round an aggregate (sum over records or movements) without the range check."""
    value = Decimal(str(total)) if isinstance(total, float) else Decimal(total or 0)
    return value.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def to_positive_quantity(value) -> Decimal:
    qty = to_quantity(value)
    if qty <= 0:
        raise LedgerValidationError("quantity must be positive")
    return qty


def ensure_product_in_company(
    ctx: TenantContext,
    product_id: int,
    *,
    require_active: bool = False,
) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise LedgerValidationError("product not found", details={"product_id": product_id})
    if product.company_id != ctx.company_id:
        raise TenantAccessError("Product not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise LedgerValidationError("product is inactive", details={"product_id": product_id})
    return product


def _record_query(ctx: TenantContext, product_id: int, location: Location):
    return db.session.query(StockRecord).filter_by(
        company_id=ctx.company_id,
        product_id=product_id,
        location_key=location.key,
    )


def get_stock_record(
    ctx: TenantContext,
    product_id: int,
    location: Location,
    *,
    lock: bool = False,
) -> StockRecord | None:
    query = _record_query(ctx, product_id, location)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_quantity(ctx: TenantContext, product_id: int, location: Location | None = None) -> Decimal:
    """Quantity at exactly this location; absence means zero."""
    record = get_stock_record(ctx, product_id, location or Location.company_wide())
    if record is None:
        return ZERO.quantize(QUANTITY_PLACES)
    return to_quantity(record.quantity)


def get_total_quantity(ctx: TenantContext, product_id: int) -> Decimal:
    """Sum over every location record of a product."""
    total = db.session.query(
        func.coalesce(func.sum(StockRecord.quantity), 0)
    ).filter(
        StockRecord.company_id == ctx.company_id,
        StockRecord.product_id == product_id,
    ).scalar()
    return round_quantity(total)


def get_total_quantities(ctx: TenantContext) -> dict[int, Decimal]:
    """Total per product for the whole company, in one query."""
    rows = db.session.query(
        StockRecord.product_id,
        func.coalesce(func.sum(StockRecord.quantity), 0),
    ).filter(
        StockRecord.company_id == ctx.company_id,
    ).group_by(StockRecord.product_id).all()
    return {product_id: round_quantity(total) for product_id, total in rows}


def list_stock_records(
    ctx: TenantContext,
    product_id: int | None = None,
    *,
    location: Location | None = None,
) -> list[StockRecord]:
    query = db.session.query(StockRecord).filter_by(company_id=ctx.company_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    if location is not None:
        query = query.filter_by(location_key=location.key)
    return query.order_by(StockRecord.product_id.asc(), StockRecord.location_key.asc()).all()


def ensure_stock_record(ctx: TenantContext, product_id: int, location: Location) -> StockRecord:
    """
    Return the locked record for a key, inserting a zero record if missing.

    Does not commit. A concurrent insert of the same key fails the unique
    constraint with IntegrityError; run_in_transaction(retry_integrity=True)
    rolls back and re-runs the operation, which then finds the winner's row.
    """
    record = get_stock_record(ctx, product_id, location, lock=True)
    if record is not None:
        return record

    record = StockRecord(
        company_id=ctx.company_id,
        product_id=product_id,
        branch_id=location.branch_id,
        warehouse_id=location.warehouse_id,
        location_key=location.key,
        quantity=ZERO,
        last_updated=utcnow(),
    )
    db.session.add(record)
    db.session.flush()
    return record


def write_quantity(record: StockRecord, new_qty: Decimal) -> StockRecord:
    """Overwrite a record's quantity in the current transaction."""
    if abs(new_qty) >= MAX_QUANTITY:
        raise LedgerValidationError(
            "quantity out of range",
            details={"product_id": record.product_id, "location": record.location_key},
        )
    record.quantity = new_qty
    record.last_updated = utcnow()
    db.session.flush()
    return record


def set_quantity(
    ctx: TenantContext,
    product_id: int,
    new_qty,
    location: Location | None = None,
    *,
    commit: bool = True,
) -> StockRecord:
    """
    Overwrite (or create) the record at an exact location key.

    No bounds check and no movement: callers that need an audited change
    use record_adjustment() instead.
    """
    location = location or Location.company_wide()
    qty = to_quantity(new_qty)

    def _op():
        ensure_product_in_company(ctx, product_id)
        require_location_in_company(location, ctx.company_id)
        record = ensure_stock_record(ctx, product_id, location)
        return write_quantity(record, qty)

    if commit:
        return run_in_transaction(_op, retry_integrity=True)
    return _op()


def _movement_delta(movement: InventoryMovement, location_key: str) -> Decimal:
    qty = to_quantity(movement.quantity)
    if movement.type == MOVEMENT_IN:
        return qty if movement.to_location_key == location_key else ZERO
    if movement.type == MOVEMENT_OUT:
        return -qty if movement.from_location_key == location_key else ZERO
    if movement.type == MOVEMENT_TRANSFER:
        delta = ZERO
        if movement.from_location_key == location_key:
            delta -= qty
        if movement.to_location_key == location_key:
            delta += qty
        return delta
    return ZERO


def replay_quantity(ctx: TenantContext, product_id: int, location: Location) -> Decimal:
    """Quantity at a location derived purely from the movement log."""
    key = location.key
    movements = db.session.query(InventoryMovement).filter(
        InventoryMovement.company_id == ctx.company_id,
        InventoryMovement.product_id == product_id,
        (InventoryMovement.from_location_key == key) | (InventoryMovement.to_location_key == key),
    ).all()
    total = sum((_movement_delta(m, key) for m in movements), ZERO)
    return round_quantity(total)


def reconcile_ledger(ctx: TenantContext, product_id: int | None = None) -> list[dict]:
    """
    Compare stored quantities with the movement-log replay.

    Returns one row per (product, location) where they differ, covering keys
    that have a record, movements, or both.
    """
    keys: set[tuple[int, str]] = set()

    records = list_stock_records(ctx, product_id)
    stored = {(r.product_id, r.location_key): to_quantity(r.quantity) for r in records}
    keys.update(stored)

    movement_query = db.session.query(
        InventoryMovement.product_id,
        InventoryMovement.from_location_key,
        InventoryMovement.to_location_key,
    ).filter(InventoryMovement.company_id == ctx.company_id)
    if product_id is not None:
        movement_query = movement_query.filter(InventoryMovement.product_id == product_id)
    for pid, from_key, to_key in movement_query.distinct().all():
        for key in (from_key, to_key):
            if key is not None:
                keys.add((pid, key))

    mismatches = []
    for pid, key in sorted(keys):
        expected = replay_quantity(ctx, pid, Location.from_key(key))
        actual = stored.get((pid, key), ZERO.quantize(QUANTITY_PLACES))
        if expected != actual:
            mismatches.append({
                "product_id": pid,
                "location_key": key,
                "stored_quantity": str(actual),
                "replayed_quantity": str(expected),
                "difference": str(actual - expected),
            })
    return mismatches
