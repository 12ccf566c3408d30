# Overview: Pytest coverage for product catalog management and tenant structure.

import pytest

from stocksense.models import Product, StockRecord
from stocksense.services.catalog_service import (
    CatalogConflictError,
    CatalogError,
    create_branch,
    create_company,
    create_product,
    create_supplier,
    create_user,
    create_warehouse,
    find_product,
    get_product,
    hard_delete_product,
    list_branches,
    list_products,
    list_suppliers,
    list_warehouses,
    restore_product,
    soft_delete_product,
    update_product,
)
from stocksense.services.inventory_service import record_adjustment, record_purchase_receipt
from stocksense.services.purchase_service import create_purchase
from stocksense.services.stock_service import set_quantity
from stocksense.services.tenant_service import TenantAccessError


class TestProducts:
    def test_create_with_defaults(self, db_session, ctx):
        product = create_product(ctx, {"sku": " C-100 ", "name": "Cardamom 250g"})

        assert product.id is not None
        assert product.sku == "C-100"
        assert product.unit == "piece"
        assert product.buy_price_cents == 0
        assert product.is_active is True

    def test_unknown_fields_are_ignored(self, db_session, ctx):
        product = create_product(ctx, {"sku": "C-101", "name": "Saffron", "company_id": 999})
        assert product.company_id == ctx.company_id

    def test_duplicate_sku_in_company(self, db_session, ctx, product):
        with pytest.raises(CatalogConflictError):
            create_product(ctx, {"sku": product.sku, "name": "Copy"})

    def test_same_sku_in_other_company(self, db_session, ctx, other_ctx, product):
        copy = create_product(other_ctx, {"sku": product.sku, "name": "Copy"})
        assert copy.company_id != product.company_id

    @pytest.mark.parametrize("patch", [
        {"sku": "", "name": "No SKU"},
        {"sku": "X", "name": "  "},
        {"sku": "X", "name": "Bad", "sell_price_cents": -1},
        {"sku": "X", "name": "Bad", "sell_price_cents": 12.5},
        {"sku": "X", "name": "Bad", "tax_rate_percent": "150"},
        {"sku": "X", "name": "Bad", "min_quantity": "-2"},
    ])
    def test_invalid_input(self, db_session, ctx, patch):
        with pytest.raises(CatalogError):
            create_product(ctx, patch)
        assert db_session.query(Product).count() == 0

    def test_update_fields(self, db_session, ctx, product):
        updated = update_product(ctx, product.id, {"sell_price_cents": 1750, "min_quantity": "2.5", "barcode": " 629 "})

        assert updated.sell_price_cents == 1750
        assert updated.min_quantity == 2.5
        assert updated.barcode == "629"

    def test_update_sku_conflict(self, db_session, ctx, product, second_product):
        with pytest.raises(CatalogConflictError):
            update_product(ctx, second_product.id, {"sku": product.sku})

    def test_supplier_must_belong_to_company(self, db_session, ctx, other_ctx, product):
        foreign = create_supplier(other_ctx, "Far Away Trading")
        with pytest.raises(TenantAccessError):
            update_product(ctx, product.id, {"supplier_id": foreign.id})

    def test_lookup_and_search(self, db_session, ctx, product, second_product):
        update_product(ctx, product.id, {"barcode": "6281000000011", "category": "coffee"})

        assert find_product(ctx, sku="P-002").id == second_product.id
        assert find_product(ctx, barcode="6281000000011").id == product.id
        assert find_product(ctx, sku="missing") is None
        assert [p.id for p in list_products(ctx, category="coffee")] == [product.id]
        assert [p.id for p in list_products(ctx, search="product q")] == [second_product.id]

    def test_get_product_other_company(self, db_session, other_ctx, product):
        with pytest.raises(TenantAccessError):
            get_product(other_ctx, product.id)


class TestProductLifecycle:
    def test_soft_delete_and_restore(self, db_session, ctx, product):
        soft_delete_product(ctx, product.id)

        assert product.is_active is False
        assert product.deleted_at is not None
        assert list_products(ctx) == []
        assert [p.id for p in list_products(ctx, include_inactive=True)] == [product.id]

        restore_product(ctx, product.id)
        assert product.is_active is True
        assert product.deleted_at is None

    def test_hard_delete_requires_soft_delete_first(self, db_session, ctx, product):
        with pytest.raises(CatalogConflictError):
            hard_delete_product(ctx, product.id)

    def test_hard_delete_refused_with_movements(self, db_session, ctx, product, w1):
        record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": 1}], w1)
        soft_delete_product(ctx, product.id)

        with pytest.raises(CatalogConflictError):
            hard_delete_product(ctx, product.id)
        assert db_session.get(Product, product.id) is not None

    def test_hard_delete_refused_with_adjustment_history(self, db_session, ctx, product, w1):
        record_adjustment(ctx, product.id, 0, w1, reason="initial count")
        soft_delete_product(ctx, product.id)

        with pytest.raises(CatalogConflictError):
            hard_delete_product(ctx, product.id)

    def test_hard_delete_refused_while_on_pending_purchase(self, db_session, ctx, product, w1):
        purchase = create_purchase(ctx, [{"product_id": product.id, "quantity": 3}], w1).document
        assert purchase.status == "pending"
        soft_delete_product(ctx, product.id)

        with pytest.raises(CatalogConflictError):
            hard_delete_product(ctx, product.id)

        assert db_session.get(Product, product.id) is not None
        assert [line.product_id for line in purchase.lines] == [product.id]

    def test_hard_delete_removes_zero_records(self, db_session, ctx, product, w1):
        set_quantity(ctx, product.id, 0, w1)
        soft_delete_product(ctx, product.id)
        product_id = product.id

        hard_delete_product(ctx, product_id)

        assert db_session.get(Product, product_id) is None
        assert db_session.query(StockRecord).filter_by(product_id=product_id).count() == 0


class TestStructure:
    def test_company_code_unique(self, db_session, company):
        with pytest.raises(CatalogConflictError):
            create_company("Another Acme", code=company.code)

    def test_branches_and_warehouses(self, db_session, ctx):
        create_branch(ctx, "North")
        create_warehouse(ctx, "Cold Store")

        assert [b.name for b in list_branches(ctx)] == ["North"]
        assert [w.name for w in list_warehouses(ctx)] == ["Cold Store"]
        with pytest.raises(CatalogConflictError):
            create_branch(ctx, "North")

    def test_user_email_normalized_and_unique(self, db_session, ctx, branch):
        created = create_user(ctx, name="Stock Clerk", email="Clerk@Acme.Test", role="manager", branch_id=branch.id)

        assert created.email == "clerk@acme.test"
        with pytest.raises(CatalogConflictError):
            create_user(ctx, name="Dup", email="clerk@acme.test")

    def test_user_role_validated(self, db_session, ctx):
        with pytest.raises(CatalogError):
            create_user(ctx, name="Root", email="root@acme.test", role="superuser")

    def test_user_branch_must_be_in_company(self, db_session, ctx, other_ctx):
        foreign_branch = create_branch(other_ctx, "Elsewhere")
        with pytest.raises(TenantAccessError):
            create_user(ctx, name="Clerk", email="x@acme.test", branch_id=foreign_branch.id)

    def test_suppliers_are_scoped(self, db_session, ctx, other_ctx, supplier):
        create_supplier(other_ctx, "Other Supplier")
        assert [s.name for s in list_suppliers(ctx)] == [supplier.name]
