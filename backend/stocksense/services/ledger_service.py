# Overview: Append-only movement log and its read views.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..locations import Location
from ..models import InventoryMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_TRANSFER, MOVEMENT_TYPES
from ..time_utils import utcnow
from .stock_service import LedgerValidationError, to_positive_quantity
from .tenant_service import TenantContext
"""
Movement Log Invariants (authoritative)

- Append-only: rows are inserted here and nowhere else; never updated or deleted.
- quantity is always > 0; the type carries the direction.
- in: to_location only. out: from_location only. transfer: both, and different.
- Movements are written inside the same DB transaction as the stock write
  they explain, so a rolled-back operation leaves no movement behind.
"""


def append_movement(
    ctx: TenantContext,
    *,
    product_id: int,
    movement_type: str,
    quantity,
    reason: str,
    from_location: Location | None = None,
    to_location: Location | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    created_at: datetime | None = None,
) -> InventoryMovement:
    """
    Append one movement. Flushes, never commits.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise LedgerValidationError(f"unknown movement type: {movement_type!r}")

    qty = to_positive_quantity(quantity)

    if movement_type == MOVEMENT_IN and (to_location is None or from_location is not None):
        raise LedgerValidationError("an 'in' movement needs a destination and no source")
    if movement_type == MOVEMENT_OUT and (from_location is None or to_location is not None):
        raise LedgerValidationError("an 'out' movement needs a source and no destination")
    if movement_type == MOVEMENT_TRANSFER:
        if from_location is None or to_location is None:
            raise LedgerValidationError("a transfer movement needs a source and a destination")
        if from_location.key == to_location.key:
            raise LedgerValidationError("cannot transfer to the same location")

    reason = (reason or "").strip()
    if not reason:
        raise LedgerValidationError("reason is required")

    movement = InventoryMovement(
        company_id=ctx.company_id,
        product_id=product_id,
        type=movement_type,
        quantity=qty,
        reason=reason[:255],
        from_branch_id=from_location.branch_id if from_location else None,
        from_warehouse_id=from_location.warehouse_id if from_location else None,
        from_location_key=from_location.key if from_location else None,
        to_branch_id=to_location.branch_id if to_location else None,
        to_warehouse_id=to_location.warehouse_id if to_location else None,
        to_location_key=to_location.key if to_location else None,
        reference_type=reference_type,
        reference_id=reference_id,
        user_id=ctx.user_id,
        created_at=created_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def get_movement_history(
    ctx: TenantContext,
    product_id: int,
    *,
    limit: int | None = None,
) -> list[InventoryMovement]:
    """Movements of one product, newest first."""
    query = db.session.query(InventoryMovement).filter_by(
        company_id=ctx.company_id,
        product_id=product_id,
    ).order_by(
        InventoryMovement.created_at.desc(),
        InventoryMovement.id.desc(),
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def list_movements(
    ctx: TenantContext,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    location: Location | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    """
    Filtered movement listing, newest first. start/end are inclusive.
    """
    query = db.session.query(InventoryMovement).filter_by(company_id=ctx.company_id)
    if product_id is not None:
        query = query.filter(InventoryMovement.product_id == product_id)
    if movement_type is not None:
        query = query.filter(InventoryMovement.type == movement_type)
    if location is not None:
        key = location.key
        query = query.filter(
            (InventoryMovement.from_location_key == key) | (InventoryMovement.to_location_key == key)
        )
    if reference_type is not None:
        query = query.filter(InventoryMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(InventoryMovement.reference_id == reference_id)
    if start is not None:
        query = query.filter(InventoryMovement.created_at >= start)
    if end is not None:
        query = query.filter(InventoryMovement.created_at <= end)

    return query.order_by(
        InventoryMovement.created_at.desc(),
        InventoryMovement.id.desc(),
    ).limit(limit).all()


def count_movements(ctx: TenantContext, product_id: int | None = None) -> int:
    query = db.session.query(InventoryMovement).filter_by(company_id=ctx.company_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    return query.count()
