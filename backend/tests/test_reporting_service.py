# Overview: Pytest coverage for valuation, stock status and sales aggregates.

from datetime import timedelta
from decimal import Decimal

import pytest

from stocksense.services.expense_service import create_expense_category, delete_expense, record_expense
from stocksense.services.inventory_service import record_purchase_receipt
from stocksense.services.purchase_service import create_purchase
from stocksense.services.reporting_service import (
    STATUS_LOW,
    STATUS_NORMAL,
    STATUS_OUT,
    compute_valuation,
    dashboard_stats,
    inventory_report,
    low_stock_products,
    movement_history,
    sales_summary,
    stock_status,
    top_selling_products,
)
from stocksense.services.sales_service import create_sale, refund_sale
from stocksense.time_utils import utcnow


def _receive(ctx, location, product, qty):
    assert record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": qty}], location).ok


class TestValuation:
    def test_values_use_total_over_locations(self, db_session, ctx, product, w1, w2):
        _receive(ctx, w1, product, 4)
        _receive(ctx, w2, product, "2.5")

        row = compute_valuation(ctx, product.id)

        assert row["total_quantity"] == Decimal("6.5")
        assert row["stock_value_cents"] == 6500
        assert row["potential_revenue_cents"] == 9750
        assert row["status"] == STATUS_NORMAL

    @pytest.mark.parametrize("qty,expected", [
        (None, STATUS_OUT),
        ("3", STATUS_LOW),
        ("5", STATUS_LOW),
        ("5.001", STATUS_NORMAL),
    ])
    def test_stock_status_thresholds(self, db_session, ctx, product, w1, qty, expected):
        if qty is not None:
            _receive(ctx, w1, product, qty)
        assert stock_status(ctx, product) == expected

    def test_inventory_report_totals(self, db_session, ctx, product, second_product, make_product, w1):
        _receive(ctx, w1, product, 10)
        _receive(ctx, w1, second_product, 1)
        make_product(min_qty="1")

        report = inventory_report(ctx)

        assert report["product_count"] == 3
        assert report["total_stock_value_cents"] == 10 * 1000 + 200
        assert report["total_potential_revenue_cents"] == 10 * 1500 + 500
        assert report["out_of_stock_count"] == 1
        assert report["low_stock_count"] == 0
        assert report["location_key"] is None

    def test_inventory_report_at_location(self, db_session, ctx, product, w1, w2):
        _receive(ctx, w1, product, 10)
        _receive(ctx, w2, product, 2)

        report = inventory_report(ctx, w2)

        row = next(r for r in report["rows"] if r["product_id"] == product.id)
        assert row["total_quantity"] == 2
        assert report["location_key"] == w2.key

    def test_inactive_products_are_not_reported(self, db_session, ctx, product, second_product):
        second_product.is_active = False
        db_session.commit()

        ids = [r["product_id"] for r in inventory_report(ctx)["rows"]]
        assert ids == [product.id]

    def test_low_stock_products_lowest_first(self, db_session, ctx, product, make_product, w1):
        _receive(ctx, w1, product, 3)
        empty = make_product(min_qty="2")
        plenty = make_product(min_qty="2")
        _receive(ctx, w1, plenty, 50)

        rows = low_stock_products(ctx)

        assert [r["product_id"] for r in rows] == [empty.id, product.id]


class TestSalesAggregates:
    def test_top_selling_ranked_by_revenue_then_quantity(self, db_session, ctx, product, second_product, make_product, w1):
        cheap = make_product(sell=500)
        for p in (product, second_product, cheap):
            _receive(ctx, w1, p, 20)

        create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)          # 15.00, qty 1
        create_sale(ctx, [{"product_id": second_product.id, "quantity": 3}], w1)   # 15.00, qty 3
        create_sale(ctx, [{"product_id": cheap.id, "quantity": 2}], w1)            # 10.00, qty 2

        ranked = top_selling_products(ctx, 3)

        assert [r["product_id"] for r in ranked] == [second_product.id, product.id, cheap.id]
        assert ranked[0]["revenue_cents"] == 1500
        assert ranked[0]["quantity_sold"] == 3
        assert ranked[0]["sku"] == "P-002"

    def test_top_selling_limit_and_refunds(self, db_session, ctx, product, second_product, w1):
        _receive(ctx, w1, product, 5)
        _receive(ctx, w1, second_product, 5)
        refunded = create_sale(ctx, [{"product_id": product.id, "quantity": 5}], w1).document
        create_sale(ctx, [{"product_id": second_product.id, "quantity": 1}], w1)
        refund_sale(ctx, refunded.id)

        ranked = top_selling_products(ctx, 1)

        assert [r["product_id"] for r in ranked] == [second_product.id]

    def test_top_selling_defaults_to_configured_limit(self, db_session, ctx, make_product, w1):
        for _ in range(7):
            p = make_product()
            _receive(ctx, w1, p, 1)
            create_sale(ctx, [{"product_id": p.id, "quantity": 1}], w1)

        assert len(top_selling_products(ctx)) == 5

    def test_sales_summary(self, db_session, ctx, product, w1):
        _receive(ctx, w1, product, 10)
        create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)
        create_sale(ctx, [{"product_id": product.id, "quantity": 2}], w1, cart_discount_cents=500)

        summary = sales_summary(ctx)

        assert summary["transaction_count"] == 2
        assert summary["subtotal_cents"] == 4500
        assert summary["discount_cents"] == 500
        assert summary["total_sales_cents"] == 4000
        assert summary["average_sale_cents"] == 2000

    def test_sales_summary_window(self, db_session, ctx, product, w1):
        _receive(ctx, w1, product, 1)
        create_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)

        later = utcnow() + timedelta(hours=1)
        assert sales_summary(ctx, start=later)["transaction_count"] == 0

    def test_dashboard_stats_for_today(self, db_session, ctx, product, supplier, w1):
        create_purchase(
            ctx,
            [{"product_id": product.id, "quantity": 10, "unit_price_cents": 1000}],
            w1,
            supplier_id=supplier.id,
            paid_amount_cents=10000,
        )
        create_sale(ctx, [{"product_id": product.id, "quantity": 2}], w1)

        stats = dashboard_stats(ctx)

        assert stats["total_sales_cents"] == 3000
        assert stats["transaction_count"] == 1
        assert stats["total_purchases_cents"] == 10000
        assert stats["gross_profit_cents"] == -7000
        assert stats["total_expenses_cents"] == 0
        assert stats["net_profit_cents"] == -7000
        assert stats["total_products"] == 1
        assert stats["total_suppliers"] == 1
        assert stats["total_stock_value_cents"] == 8000

    def test_dashboard_net_profit_subtracts_expenses(self, db_session, ctx, product, w1):
        _receive(ctx, w1, product, 4)
        create_sale(ctx, [{"product_id": product.id, "quantity": 4}], w1)
        rent = create_expense_category(ctx, "Rent")
        record_expense(ctx, rent.id, 1500, "Shop rent")
        old = record_expense(ctx, rent.id, 700, "Deposit")
        delete_expense(ctx, old.id)
        record_expense(ctx, rent.id, 900, "Last month", expense_date=utcnow() - timedelta(days=40))

        stats = dashboard_stats(ctx)

        assert stats["total_sales_cents"] == 6000
        assert stats["total_expenses_cents"] == 1500
        assert stats["gross_profit_cents"] == 6000
        assert stats["net_profit_cents"] == 4500

    def test_movement_history_is_serialized(self, db_session, ctx, product, w1):
        _receive(ctx, w1, product, 2)

        history = movement_history(ctx, product.id)

        assert history[0]["type"] == "in"
        assert history[0]["product_id"] == product.id
