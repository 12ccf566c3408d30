from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog entry.

    MULTI-TENANT: Products are scoped to companies via company_id.
    SKUs are unique within a company; barcodes are optional.

    Prices are authoritative in cents. tax_rate_percent is applied on top of
    sell_price_cents at the point of sale.

    Soft delete: is_active=False and deleted_at set. Hard delete is only
    permitted once a product is soft-deleted.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
        db.Index("ix_products_company_name", "company_id", "name"),
        db.Index("ix_products_company_active", "company_id", "is_active"),
        db.CheckConstraint("buy_price_cents >= 0", name="ck_products_buy_price"),
        db.CheckConstraint("sell_price_cents >= 0", name="ck_products_sell_price"),
        db.CheckConstraint("min_quantity >= 0", name="ck_products_min_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")

    buy_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sell_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_percent = db.Column(db.Numeric(5, 2), nullable=True)

    # Reorder threshold
    min_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "supplier_id": self.supplier_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "unit": self.unit,
            "buy_price_cents": self.buy_price_cents,
            "sell_price_cents": self.sell_price_cents,
            "tax_rate_percent": str(self.tax_rate_percent) if self.tax_rate_percent is not None else None,
            "min_quantity": str(self.min_quantity),
            "is_active": self.is_active,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_suppliers_company_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    # Amount still owed to the supplier across pending purchases
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "balance_cents": self.balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
