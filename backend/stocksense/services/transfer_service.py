# backend/stocksense/services/transfer_service.py
"""
Location-to-location transfer service.

A transfer moves quantity of one product between two locations of the same
company. Debit and credit are written in the same database transaction and
committed once, so a failure on either side leaves both records as they were.

One InventoryMovement of type "transfer" carries both ends.
"""
from __future__ import annotations

from ..locations import Location, coerce_location
from ..models import InventoryMovement
from ..models.inventory import MOVEMENT_TRANSFER
from .inventory_service import LedgerResult, run_processor
from .ledger_service import append_movement
from .stock_service import (
    LedgerValidationError,
    InsufficientStockError,
    ensure_product_in_company,
    ensure_stock_record,
    to_positive_quantity,
    to_quantity,
    write_quantity,
)
from .tenant_service import TenantContext, require_location_in_company


def transfer_stock(
    ctx: TenantContext,
    *,
    product_id: int,
    quantity,
    from_location: Location,
    to_location: Location,
    reason: str = "transfer",
) -> InventoryMovement:
    """
    Debit from_location and credit to_location. Does not commit.

    Raises:
        LedgerValidationError: same location or bad quantity
        InsufficientStockError: source holds less than quantity
        TenantAccessError: a location or the product is outside the company
    """
    qty = to_positive_quantity(quantity)
    if from_location.key == to_location.key:
        raise LedgerValidationError(
            "Cannot transfer to the same location",
            details={"location_key": from_location.key},
        )

    require_location_in_company(from_location, ctx.company_id)
    require_location_in_company(to_location, ctx.company_id)
    ensure_product_in_company(ctx, product_id, require_active=True)

    # Lock both rows in key order so two opposite transfers cannot deadlock
    ordered = sorted((from_location, to_location), key=lambda loc: loc.key)
    records = {loc.key: ensure_stock_record(ctx, product_id, loc) for loc in ordered}
    source = records[from_location.key]
    destination = records[to_location.key]

    available = to_quantity(source.quantity)
    if available < qty:
        raise InsufficientStockError(product_id, available, qty, from_location)

    write_quantity(source, available - qty)
    write_quantity(destination, to_quantity(destination.quantity) + qty)

    return append_movement(
        ctx,
        product_id=product_id,
        movement_type=MOVEMENT_TRANSFER,
        quantity=qty,
        reason=reason,
        from_location=from_location,
        to_location=to_location,
    )


def record_transfer(
    ctx: TenantContext,
    product_id: int,
    quantity,
    from_location,
    to_location,
    reason: str = "transfer",
) -> LedgerResult:
    """Atomic transfer; returns a LedgerResult instead of raising."""
    def _op():
        movement = transfer_stock(
            ctx,
            product_id=product_id,
            quantity=quantity,
            from_location=coerce_location(from_location),
            to_location=coerce_location(to_location),
            reason=reason,
        )
        return [movement], None

    return run_processor("transfer", ctx, _op)
