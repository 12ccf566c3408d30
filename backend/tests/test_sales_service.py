# Overview: Pytest coverage for POS sale documents, totals and refunds.

from decimal import Decimal

import pytest

from stocksense.models import InventoryMovement, Sale, SaleLine
from stocksense.services.inventory_service import record_purchase_receipt
from stocksense.services.sales_service import (
    SaleError,
    compute_line_amounts,
    compute_sale_totals,
    create_sale,
    get_sale,
    list_sales,
    refund_sale,
)
from stocksense.services.stock_service import get_quantity
from stocksense.services.tenant_service import TenantAccessError


def _stock(ctx, location, *pairs):
    result = record_purchase_receipt(
        ctx,
        [{"product_id": p.id, "quantity": qty} for p, qty in pairs],
        location,
    )
    assert result.ok, result.message


class TestLineMath:
    def test_plain_line(self):
        assert compute_line_amounts(1500, Decimal("2"), 0, 0) == {
            "subtotal_cents": 3000,
            "discount_cents": 0,
            "tax_cents": 0,
            "line_total_cents": 3000,
        }

    def test_discount_then_tax_on_taxable_amount(self):
        # 100.00 x 2 = 200.00; 10% off = 20.00; 15% tax on 180.00 = 27.00
        amounts = compute_line_amounts(10000, Decimal("2"), Decimal("10"), Decimal("15"))
        assert amounts == {
            "subtotal_cents": 20000,
            "discount_cents": 2000,
            "tax_cents": 2700,
            "line_total_cents": 20700,
        }

    def test_rounds_half_up_to_cent(self):
        # 0.99 x 1.5 = 1.485 -> 1.49
        assert compute_line_amounts(99, Decimal("1.5"), 0, 0)["subtotal_cents"] == 149

    def test_cart_percent_discount_is_taken_from_subtotal(self):
        lines = [
            compute_line_amounts(1000, 1, 0, 0),
            compute_line_amounts(3000, 1, 0, 0),
        ]
        totals = compute_sale_totals(lines, cart_discount_percent=10)
        assert totals == {
            "subtotal_cents": 4000,
            "discount_cents": 400,
            "tax_cents": 0,
            "final_amount_cents": 3600,
        }

    def test_cart_discount_never_drives_total_negative(self):
        totals = compute_sale_totals([compute_line_amounts(500, 1, 0, 0)], cart_discount_cents=900)
        assert totals["final_amount_cents"] == 0

    def test_cart_discount_amount_and_percent_are_exclusive(self):
        with pytest.raises(SaleError):
            compute_sale_totals([], cart_discount_cents=1, cart_discount_percent=1)


class TestCreateSale:
    def test_persists_document_lines_and_movements(self, db_session, ctx, product, second_product, w1):
        _stock(ctx, w1, (product, 10), (second_product, 10))

        result = create_sale(
            ctx,
            [
                {"product_id": product.id, "quantity": 2},
                {"product_id": second_product.id, "quantity": 3, "discount_percent": 10},
            ],
            w1,
            payment_method="card",
            customer_name="Walk-in",
        )

        assert result.ok, result.message
        sale = db_session.get(Sale, result.document.id)
        assert sale.status == "completed"
        assert sale.payment_method == "card"
        assert sale.warehouse_id == w1.warehouse_id
        # 2 x 15.00 + (3 x 5.00 - 10%)
        assert sale.subtotal_cents == 4500
        assert sale.discount_cents == 150
        assert sale.final_amount_cents == 4350
        assert len(sale.lines) == 2

        movement_ids = {line.movement_id for line in sale.lines}
        movements = db_session.query(InventoryMovement).filter(InventoryMovement.id.in_(movement_ids)).all()
        assert {(m.type, m.reference_type, m.reference_id) for m in movements} == {("out", "sale", sale.id)}
        assert get_quantity(ctx, product.id, w1) == 8
        assert get_quantity(ctx, second_product.id, w1) == 7

    def test_uses_product_price_and_tax_by_default(self, db_session, ctx, taxed_product, w1):
        _stock(ctx, w1, (taxed_product, 1))

        result = create_sale(ctx, [{"product_id": taxed_product.id, "quantity": 1}], w1)

        assert result.ok
        sale = result.document
        assert sale.subtotal_cents == 10000
        assert sale.tax_cents == 1500
        assert sale.final_amount_cents == 11500
        line = sale.lines[0]
        assert line.unit_price_cents == 10000
        assert line.tax_percent == 15

    def test_invoice_numbers_are_sequential_per_company(self, db_session, ctx, company, product, w1):
        _stock(ctx, w1, (product, 5))

        first = create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)
        second = create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)

        assert first.document.invoice_number == f"INV-{company.id:03d}-0001"
        assert second.document.invoice_number == f"INV-{company.id:03d}-0002"

    def test_insufficient_stock_leaves_no_sale(self, db_session, ctx, product, w1):
        _stock(ctx, w1, (product, 1))

        result = create_sale(ctx, [{"product_id": product.id, "quantity": 2}], w1)

        assert not result.ok
        assert result.error_code == "insufficient_stock"
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0

    def test_cash_must_cover_total(self, db_session, ctx, product, w1):
        _stock(ctx, w1, (product, 1))

        result = create_sale(
            ctx,
            [{"product_id": product.id, "quantity": 1}],
            w1,
            payment_method="cash",
            amount_received_cents=1000,
        )

        assert not result.ok
        assert result.error_code == "sale_error"
        assert result.details["final_amount_cents"] == 1500
        assert get_quantity(ctx, product.id, w1) == 1

    def test_unknown_payment_method(self, db_session, ctx, product, w1):
        result = create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1, payment_method="barter")
        assert not result.ok
        assert result.error_code == "sale_error"

    def test_empty_sale_rejected(self, db_session, ctx, w1):
        result = create_sale(ctx, [], w1)
        assert not result.ok
        assert "no lines" in result.message

    @pytest.mark.parametrize("pct", [-1, 101, "abc"])
    def test_discount_percent_bounds(self, db_session, ctx, product, w1, pct):
        _stock(ctx, w1, (product, 1))
        result = create_sale(ctx, [{"product_id": product.id, "quantity": 1, "discount_percent": pct}], w1)
        assert not result.ok
        assert result.error_code == "sale_error"


class TestRefund:
    def test_refund_returns_stock(self, db_session, ctx, product, w1):
        _stock(ctx, w1, (product, 5))
        sale = create_sale(ctx, [{"product_id": product.id, "quantity": 3}], w1).document

        result = refund_sale(ctx, sale.id, reason="damaged box")

        assert result.ok
        assert result.document.status == "refunded"
        assert result.document.refunded_at is not None
        assert get_quantity(ctx, product.id, w1) == 5
        movement = result.movements[0]
        assert movement.type == "in"
        assert movement.quantity == 3
        assert movement.reference_type == "sale"
        assert movement.reference_id == sale.id
        assert "damaged box" in movement.reason

    def test_refund_only_once(self, db_session, ctx, product, w1):
        _stock(ctx, w1, (product, 5))
        sale = create_sale(ctx, [{"product_id": product.id, "quantity": 3}], w1).document
        assert refund_sale(ctx, sale.id).ok

        again = refund_sale(ctx, sale.id)

        assert not again.ok
        assert again.error_code == "sale_error"
        assert get_quantity(ctx, product.id, w1) == 5

    def test_refund_of_deactivated_product(self, db_session, ctx, product, w1):
        _stock(ctx, w1, (product, 2))
        sale = create_sale(ctx, [{"product_id": product.id, "quantity": 2}], w1).document
        product.is_active = False
        db_session.commit()

        assert refund_sale(ctx, sale.id).ok
        assert get_quantity(ctx, product.id, w1) == 2


class TestLookup:
    def test_get_sale_other_company(self, db_session, ctx, other_ctx, product, w1):
        _stock(ctx, w1, (product, 1))
        sale = create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1).document

        with pytest.raises(TenantAccessError):
            get_sale(other_ctx, sale.id)

    def test_get_sale_missing(self, db_session, ctx):
        with pytest.raises(SaleError):
            get_sale(ctx, 999)

    def test_list_sales_by_status(self, db_session, ctx, product, w1):
        _stock(ctx, w1, (product, 5))
        first = create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1).document
        create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)
        refund_sale(ctx, first.id)

        assert len(list_sales(ctx)) == 2
        assert [s.id for s in list_sales(ctx, status="refunded")] == [first.id]
