from __future__ import annotations

from ..extensions import db
from ..locations import Location
from ..time_utils import to_utc_z, utcnow

SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_REFUNDED = "refunded"

PURCHASE_STATUS_PENDING = "pending"
PURCHASE_STATUS_COMPLETED = "completed"
PURCHASE_STATUS_CANCELLED = "cancelled"

PAYMENT_METHODS = ("cash", "card", "transfer")


class Sale(db.Model):
    """
    Point-of-sale document.

    A sale is only persisted once its stock has been taken, so there is no
    draft state: completed -> refunded is the whole lifecycle.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_sales_company_invoice"),
        db.Index("ix_sales_company_created", "company_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )

    @property
    def location(self) -> Location:
        return Location(branch_id=self.branch_id, warehouse_id=self.warehouse_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "invoice_number": self.invoice_number,
            "branch_id": self.branch_id,
            "warehouse_id": self.warehouse_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "final_amount_cents": self.final_amount_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleLine(db.Model):
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    # subtotal - discount + tax
    line_total_cents = db.Column(db.Integer, nullable=False)

    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": str(self.discount_percent),
            "discount_cents": self.discount_cents,
            "tax_percent": str(self.tax_percent),
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "movement_id": self.movement_id,
        }


class Purchase(db.Model):
    """
    Purchase order from a supplier into a destination location.

    Stock is only received when the purchase is completed (fully paid or
    explicitly completed). received_at marks that the receipt happened, so
    it can never happen twice.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("company_id", "invoice_number", name="uq_purchases_company_invoice"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_PENDING, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    lines = db.relationship(
        "PurchaseLine",
        backref="purchase",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseLine.id",
    )

    @property
    def location(self) -> Location:
        return Location(branch_id=self.branch_id, warehouse_id=self.warehouse_id)

    @property
    def remaining_amount_cents(self) -> int:
        return max(self.total_amount_cents - self.paid_amount_cents, 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "supplier_id": self.supplier_id,
            "invoice_number": self.invoice_number,
            "branch_id": self.branch_id,
            "warehouse_id": self.warehouse_id,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "status": self.status,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class PurchaseLine(db.Model):
    __tablename__ = "purchase_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "quantity": str(self.quantity),
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "movement_id": self.movement_id,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-company document sequences.

    One row per (company, document type); allocation happens under a row update.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("company_id", "document_type", name="uq_doc_sequences_company_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
