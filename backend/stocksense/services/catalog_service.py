# backend/stocksense/services/catalog_service.py
"""
Catalog Service: products, branches, warehouses, suppliers, users.

MULTI-TENANT: every function takes a TenantContext (or a company id for
companies themselves) and only ever sees rows of that company.

Products are soft-deleted (is_active=False, deleted_at set). Hard delete is
only possible from the soft-deleted state and is refused while the product
has movements, stock or document lines, so nothing points at a missing product.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Branch,
    Company,
    InventoryMovement,
    Product,
    PurchaseLine,
    SaleLine,
    StockAdjustment,
    StockRecord,
    Supplier,
    User,
    Warehouse,
)
from ..models.tenancy import USER_ROLES
from ..time_utils import utcnow
from .concurrency import run_in_transaction
from .stock_service import to_quantity, LedgerValidationError
from .tenant_service import TenantContext, TenantAccessError, require_branch_in_company

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "barcode",
    "name",
    "category",
    "description",
    "unit",
    "buy_price_cents",
    "sell_price_cents",
    "tax_rate_percent",
    "min_quantity",
    "supplier_id",
}

MAX_PRICE_CENTS = 999_999_999


class CatalogError(ValueError):
    """Invalid catalog input."""
    code = "catalog_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CatalogConflictError(CatalogError):
    """Business rule conflict (e.g., duplicate SKU)."""
    code = "catalog_conflict"


def _require_text(value, field_name: str, max_len: int = 255) -> str:
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise CatalogError(f"{field_name} is required")
    if len(text) > max_len:
        raise CatalogError(f"{field_name} must be at most {max_len} characters")
    return text


def _coerce_price(value, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise CatalogError(f"{field_name} must be an integer number of cents")
    if value < 0 or value > MAX_PRICE_CENTS:
        raise CatalogError(f"{field_name} must be between 0 and {MAX_PRICE_CENTS}")
    return value


def _coerce_tax_rate(value) -> Decimal | None:
    if value is None:
        return None
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise CatalogError("tax_rate_percent must be a number")
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise CatalogError("tax_rate_percent must be between 0 and 100")
    return rate


def _apply_product_patch(ctx: TenantContext, product: Product, patch: dict) -> None:
    for key, value in patch.items():
        if key not in PRODUCT_MUTABLE_FIELDS:
            continue
        if key in ("sku", "name"):
            value = _require_text(value, key, 64 if key == "sku" else 255)
        elif key in ("buy_price_cents", "sell_price_cents"):
            value = _coerce_price(value, key)
        elif key == "tax_rate_percent":
            value = _coerce_tax_rate(value)
        elif key == "min_quantity":
            try:
                value = to_quantity(value)
            except LedgerValidationError as e:
                raise CatalogError(str(e))
            if value < 0:
                raise CatalogError("min_quantity cannot be negative")
        elif key == "unit":
            value = (value or "").strip() or current_app.config.get("STOCKSENSE_DEFAULT_UNIT", "piece")
        elif key == "supplier_id" and value is not None:
            require_supplier_in_company(ctx, value)
        elif key == "barcode":
            value = (value or "").strip() or None
        setattr(product, key, value)


def _ensure_unique_sku(ctx: TenantContext, sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(
        Product.company_id == ctx.company_id,
        Product.sku == sku,
    )
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise CatalogConflictError("SKU already exists for this company.", details={"sku": sku})


# =============================================================================
# Companies and users
# =============================================================================

def create_company(
    name: str,
    *,
    code: str | None = None,
    currency: str = "SAR",
    business_type: str | None = None,
) -> Company:
    def _op():
        if code is not None and db.session.query(Company).filter_by(code=code).first():
            raise CatalogConflictError("Company code already exists.", details={"code": code})
        company = Company(
            name=_require_text(name, "name"),
            code=code,
            currency=currency,
            business_type=business_type,
        )
        db.session.add(company)
        db.session.flush()
        return company

    company = run_in_transaction(_op)
    current_app.logger.info("Company created (company_id=%s, name=%s)", company.id, company.name)
    return company


def create_user(
    ctx: TenantContext,
    *,
    name: str,
    email: str,
    role: str = "cashier",
    branch_id: int | None = None,
) -> User:
    """Register an actor. Actors are identified, never authenticated."""
    def _op():
        if role not in USER_ROLES:
            raise CatalogError(f"role must be one of {', '.join(USER_ROLES)}")
        normalized_email = _require_text(email, "email").lower()
        if db.session.query(User).filter_by(company_id=ctx.company_id, email=normalized_email).first():
            raise CatalogConflictError("Email already exists for this company.", details={"email": normalized_email})
        if branch_id is not None:
            require_branch_in_company(branch_id, ctx.company_id)
        user = User(
            company_id=ctx.company_id,
            name=_require_text(name, "name", 120),
            email=normalized_email,
            role=role,
            branch_id=branch_id,
        )
        db.session.add(user)
        db.session.flush()
        return user

    return run_in_transaction(_op)


# =============================================================================
# Branches and warehouses
# =============================================================================

def create_branch(ctx: TenantContext, name: str, *, address: str | None = None, phone: str | None = None) -> Branch:
    def _op():
        branch_name = _require_text(name, "name", 120)
        if db.session.query(Branch).filter_by(company_id=ctx.company_id, name=branch_name).first():
            raise CatalogConflictError("Branch name already exists.", details={"name": branch_name})
        branch = Branch(company_id=ctx.company_id, name=branch_name, address=address, phone=phone)
        db.session.add(branch)
        db.session.flush()
        return branch

    return run_in_transaction(_op)


def create_warehouse(ctx: TenantContext, name: str, *, address: str | None = None) -> Warehouse:
    def _op():
        warehouse_name = _require_text(name, "name", 120)
        if db.session.query(Warehouse).filter_by(company_id=ctx.company_id, name=warehouse_name).first():
            raise CatalogConflictError("Warehouse name already exists.", details={"name": warehouse_name})
        warehouse = Warehouse(company_id=ctx.company_id, name=warehouse_name, address=address)
        db.session.add(warehouse)
        db.session.flush()
        return warehouse

    return run_in_transaction(_op)


def list_branches(ctx: TenantContext, include_inactive: bool = False) -> list[Branch]:
    query = db.session.query(Branch).filter_by(company_id=ctx.company_id)
    if not include_inactive:
        query = query.filter(Branch.is_active.is_(True))
    return query.order_by(Branch.name.asc(), Branch.id.asc()).all()


def list_warehouses(ctx: TenantContext, include_inactive: bool = False) -> list[Warehouse]:
    query = db.session.query(Warehouse).filter_by(company_id=ctx.company_id)
    if not include_inactive:
        query = query.filter(Warehouse.is_active.is_(True))
    return query.order_by(Warehouse.name.asc(), Warehouse.id.asc()).all()


# =============================================================================
# Suppliers
# =============================================================================

def require_supplier_in_company(ctx: TenantContext, supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None or supplier.company_id != ctx.company_id:
        raise TenantAccessError("Supplier not found", details={"supplier_id": supplier_id})
    return supplier


def create_supplier(
    ctx: TenantContext,
    name: str,
    *,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> Supplier:
    def _op():
        supplier_name = _require_text(name, "name")
        if db.session.query(Supplier).filter_by(company_id=ctx.company_id, name=supplier_name).first():
            raise CatalogConflictError("Supplier already exists.", details={"name": supplier_name})
        supplier = Supplier(
            company_id=ctx.company_id,
            name=supplier_name,
            phone=phone,
            email=email,
            address=address,
        )
        db.session.add(supplier)
        db.session.flush()
        return supplier

    return run_in_transaction(_op)


def list_suppliers(ctx: TenantContext) -> list[Supplier]:
    return (
        db.session.query(Supplier)
        .filter_by(company_id=ctx.company_id)
        .order_by(Supplier.name.asc(), Supplier.id.asc())
        .all()
    )


# =============================================================================
# Products
# =============================================================================

def get_product(ctx: TenantContext, product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise CatalogError("Product not found", details={"product_id": product_id})
    if product.company_id != ctx.company_id:
        # Don't reveal that it exists in another company
        raise TenantAccessError("Product not found", details={"product_id": product_id})
    return product


def find_product(ctx: TenantContext, *, sku: str | None = None, barcode: str | None = None) -> Product | None:
    """Exact lookup by SKU or barcode within the company."""
    if sku is None and barcode is None:
        raise CatalogError("sku or barcode is required")
    query = db.session.query(Product).filter(Product.company_id == ctx.company_id)
    if sku is not None:
        query = query.filter(Product.sku == sku)
    if barcode is not None:
        query = query.filter(Product.barcode == barcode)
    return query.first()


def list_products(
    ctx: TenantContext,
    *,
    include_inactive: bool = False,
    category: str | None = None,
    search: str | None = None,
) -> list[Product]:
    query = db.session.query(Product).filter(Product.company_id == ctx.company_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.barcode.ilike(like),
        ))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(ctx: TenantContext, patch: dict) -> Product:
    """
    Create a product from a patch dict. sku and name are required; unknown
    keys are ignored.
    """
    def _op():
        sku = _require_text(patch.get("sku"), "sku", 64)
        _require_text(patch.get("name"), "name")
        _ensure_unique_sku(ctx, sku)

        product = Product(
            company_id=ctx.company_id,
            unit=current_app.config.get("STOCKSENSE_DEFAULT_UNIT", "piece"),
            buy_price_cents=0,
            sell_price_cents=0,
            min_quantity=Decimal("0"),
            is_active=True,
        )
        _apply_product_patch(ctx, product, patch)
        db.session.add(product)
        db.session.flush()
        return product

    product = run_in_transaction(_op)
    current_app.logger.info(
        "Product created (company_id=%s, product_id=%s, sku=%s)",
        ctx.company_id, product.id, product.sku,
    )
    return product


def update_product(ctx: TenantContext, product_id: int, patch: dict) -> Product:
    def _op():
        product = get_product(ctx, product_id)
        if "sku" in patch and patch["sku"] != product.sku:
            _ensure_unique_sku(ctx, _require_text(patch["sku"], "sku", 64), exclude_id=product.id)
        _apply_product_patch(ctx, product, patch)
        product.updated_at = utcnow()
        db.session.flush()
        return product

    return run_in_transaction(_op)


def soft_delete_product(ctx: TenantContext, product_id: int) -> Product:
    """Deactivate a product. Its stock and history are kept."""
    def _op():
        product = get_product(ctx, product_id)
        if product.is_active:
            product.is_active = False
            product.deleted_at = utcnow()
            db.session.flush()
        return product

    product = run_in_transaction(_op)
    current_app.logger.info("Product deactivated (company_id=%s, product_id=%s)", ctx.company_id, product.id)
    return product


def restore_product(ctx: TenantContext, product_id: int) -> Product:
    def _op():
        product = get_product(ctx, product_id)
        product.is_active = True
        product.deleted_at = None
        db.session.flush()
        return product

    return run_in_transaction(_op)


def hard_delete_product(ctx: TenantContext, product_id: int) -> None:
    """
    Permanently remove a soft-deleted product that never moved.

    Raises:
        CatalogConflictError: product is still active, has stock history, or
            appears on a sale or purchase line
    """
    def _op():
        product = get_product(ctx, product_id)
        if product.is_active:
            raise CatalogConflictError(
                "Only deactivated products can be deleted permanently.",
                details={"product_id": product.id},
            )
        has_movements = db.session.query(InventoryMovement.id).filter_by(
            company_id=ctx.company_id,
            product_id=product.id,
        ).first() is not None
        has_adjustments = db.session.query(StockAdjustment.id).filter_by(
            company_id=ctx.company_id,
            product_id=product.id,
        ).first() is not None
        if has_movements or has_adjustments:
            raise CatalogConflictError(
                "Product has stock movements and cannot be deleted permanently.",
                details={"product_id": product.id},
            )
        has_document_lines = (
            db.session.query(PurchaseLine.id).filter_by(product_id=product.id).first() is not None
            or db.session.query(SaleLine.id).filter_by(product_id=product.id).first() is not None
        )
        if has_document_lines:
            raise CatalogConflictError(
                "Product is referenced by sales or purchases and cannot be deleted permanently.",
                details={"product_id": product.id},
            )
        records = db.session.query(StockRecord).filter_by(
            company_id=ctx.company_id,
            product_id=product.id,
        ).all()
        if any(record.quantity != 0 for record in records):
            raise CatalogConflictError(
                "Product still has stock and cannot be deleted permanently.",
                details={"product_id": product.id},
            )
        for record in records:
            db.session.delete(record)
        db.session.delete(product)
        db.session.flush()

    run_in_transaction(_op)
    current_app.logger.info("Product deleted (company_id=%s, product_id=%s)", ctx.company_id, product_id)
