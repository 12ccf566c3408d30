from __future__ import annotations

from ..extensions import db
from ..locations import Location
from ..time_utils import to_utc_z, utcnow

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_TRANSFER = "transfer"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_TRANSFER)


def _quantity_str(value) -> str | None:
    return str(value) if value is not None else None


class StockRecord(db.Model):
    """
    Materialized quantity on hand for one (product, location) key.

    Created lazily on the first write to a key and updated in place after
    that. Never deleted by ledger operations, even at zero.

    version_id enables optimistic locking: two writers that read the same
    version cannot both commit.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("company_id", "product_id", "location_key", name="uq_stock_company_product_location"),
        db.Index("ix_stock_company_product", "company_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    location_key = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("stock_records", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def location(self) -> Location:
        return Location(branch_id=self.branch_id, warehouse_id=self.warehouse_id)

    def __repr__(self) -> str:
        return f"<StockRecord product_id={self.product_id} location={self.location_key!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "warehouse_id": self.warehouse_id,
            "location_key": self.location_key,
            "quantity": _quantity_str(self.quantity),
            "last_updated": to_utc_z(self.last_updated),
            "version_id": self.version_id,
        }


class InventoryMovement(db.Model):
    """
    Append-only audit trail of stock changes.

    - in: quantity arrived at the to_* location
    - out: quantity left the from_* location
    - transfer: quantity moved from_* -> to_*

    quantity is always positive; the type carries the sign.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_movements_company_product_created", "company_id", "product_id", "created_at"),
        db.Index("ix_movements_reference", "reference_type", "reference_id"),
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    from_branch_id = db.Column(db.Integer, nullable=True)
    from_warehouse_id = db.Column(db.Integer, nullable=True)
    from_location_key = db.Column(db.String(64), nullable=True)
    to_branch_id = db.Column(db.Integer, nullable=True)
    to_warehouse_id = db.Column(db.Integer, nullable=True)
    to_location_key = db.Column(db.String(64), nullable=True)

    # e.g. ("sale", 12), ("purchase", 4), ("adjustment", 9)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def from_location(self) -> Location | None:
        if self.from_location_key is None:
            return None
        return Location.from_key(self.from_location_key)

    @property
    def to_location(self) -> Location | None:
        if self.to_location_key is None:
            return None
        return Location.from_key(self.to_location_key)

    def __repr__(self) -> str:
        return f"<InventoryMovement id={self.id} type={self.type} qty={self.quantity} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": _quantity_str(self.quantity),
            "reason": self.reason,
            "from_branch_id": self.from_branch_id,
            "from_warehouse_id": self.from_warehouse_id,
            "from_location_key": self.from_location_key,
            "to_branch_id": self.to_branch_id,
            "to_warehouse_id": self.to_warehouse_id,
            "to_location_key": self.to_location_key,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockAdjustment(db.Model):
    """
    Record of a set-to-target correction.

    Kept even when the target equals the current quantity (delta 0), in
    which case no movement is written.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_key = db.Column(db.String(64), nullable=False)

    previous_quantity = db.Column(db.Numeric(14, 3), nullable=False)
    target_quantity = db.Column(db.Numeric(14, 3), nullable=False)
    delta = db.Column(db.Numeric(14, 3), nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "location_key": self.location_key,
            "previous_quantity": _quantity_str(self.previous_quantity),
            "target_quantity": _quantity_str(self.target_quantity),
            "delta": _quantity_str(self.delta),
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
