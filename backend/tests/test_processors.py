# Overview: Pytest coverage for the sale, purchase-receipt and adjustment processors.

from decimal import Decimal

import pytest

from stocksense.locations import Location
from stocksense.models import InventoryMovement, StockAdjustment
from stocksense.services.inventory_service import (
    LedgerResult,
    LineItem,
    record_adjustment,
    record_purchase_receipt,
    record_sale,
)
from stocksense.services.ledger_service import count_movements, get_movement_history
from stocksense.services.stock_service import get_quantity, get_stock_record


def _receive(ctx, product, qty, location):
    result = record_purchase_receipt(ctx, [LineItem(product.id, Decimal(qty))], location)
    assert result.ok, result.message
    return result


class TestPurchaseReceipt:
    def test_increments_and_logs_in_movement(self, db_session, ctx, product, w1):
        result = _receive(ctx, product, "10", w1)

        assert isinstance(result, LedgerResult)
        assert get_quantity(ctx, product.id, w1) == 10
        assert len(result.movements) == 1
        movement = result.movements[0]
        assert movement.type == "in"
        assert movement.quantity == 10
        assert movement.to_location_key == w1.key
        assert movement.from_location_key is None
        assert movement.user_id == ctx.user_id

    def test_one_movement_per_line(self, db_session, ctx, product, second_product, w1):
        result = record_purchase_receipt(ctx, [
            {"product_id": product.id, "quantity": 2},
            {"product_id": second_product.id, "quantity": 3},
        ], w1)

        assert result.ok
        assert [m.product_id for m in result.movements] == [product.id, second_product.id]
        assert count_movements(ctx) == 2

    def test_rejects_non_positive_quantity(self, db_session, ctx, product, w1):
        result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": 0}], w1)

        assert not result.ok
        assert result.error_code == "validation_error"
        assert get_stock_record(ctx, product.id, w1) is None
        assert count_movements(ctx) == 0

    def test_rejects_quantity_beyond_column_range(self, db_session, ctx, product, w1):
        result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": "1e20"}], w1)

        assert not result.ok
        assert result.error_code == "validation_error"
        assert count_movements(ctx) == 0

    def test_rejects_receipt_that_would_overflow_record(self, db_session, ctx, product, w1):
        assert record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": "90000000000"}], w1).ok

        result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": "20000000000"}], w1)

        assert not result.ok
        assert result.error_code == "validation_error"
        assert get_quantity(ctx, product.id, w1) == Decimal("90000000000")
        assert count_movements(ctx) == 1

    def test_rejects_empty_batch(self, db_session, ctx, w1):
        result = record_purchase_receipt(ctx, [], w1)
        assert not result.ok
        assert result.error_code == "validation_error"

    def test_rejects_unknown_product(self, db_session, ctx, w1):
        result = record_purchase_receipt(ctx, [{"product_id": 424242, "quantity": 1}], w1)
        assert not result.ok
        assert result.error_code == "validation_error"

    def test_rejects_inactive_product(self, db_session, ctx, product, w1):
        product.is_active = False
        db_session.commit()

        result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": 1}], w1)
        assert not result.ok
        assert "inactive" in result.message

    def test_accepts_location_key_string(self, db_session, ctx, product, w1):
        result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": 1}], w1.key)
        assert result.ok
        assert get_quantity(ctx, product.id, w1) == 1

    def test_malformed_location_key_is_a_failed_result(self, db_session, ctx, product):
        result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": 1}], "shelf:3")
        assert not result.ok
        assert result.error_code == "validation_error"


class TestSale:
    def test_decrements_and_logs_out_movement(self, db_session, ctx, product, w1):
        _receive(ctx, product, "10", w1)

        result = record_sale(ctx, [LineItem(product.id, Decimal("4"))], w1)

        assert result.ok
        assert get_quantity(ctx, product.id, w1) == 6
        movement = result.movements[0]
        assert movement.type == "out"
        assert movement.quantity == 4
        assert movement.from_location_key == w1.key
        assert movement.to_location_key is None

    def test_insufficient_stock_changes_nothing(self, db_session, ctx, product, w1):
        _receive(ctx, product, "6", w1)

        result = record_sale(ctx, [LineItem(product.id, Decimal("10"))], w1)

        assert not result.ok
        assert result.error_code == "insufficient_stock"
        assert result.available == 6
        assert result.message == (
            f"Insufficient stock for product {product.id}: available quantity: 6, requested: 10"
        )
        assert get_quantity(ctx, product.id, w1) == 6
        assert count_movements(ctx) == 1

    def test_sale_from_empty_location_fails(self, db_session, ctx, product, w1, w2):
        _receive(ctx, product, "5", w1)

        result = record_sale(ctx, [{"product_id": product.id, "quantity": 1}], w2)

        assert not result.ok
        assert result.available == 0
        assert get_stock_record(ctx, product.id, w2) is None

    def test_batch_is_all_or_nothing(self, db_session, ctx, product, second_product, w1):
        _receive(ctx, product, "5", w1)
        _receive(ctx, second_product, "1", w1)

        result = record_sale(ctx, [
            {"product_id": product.id, "quantity": 2},
            {"product_id": second_product.id, "quantity": 3},
        ], w1)

        assert not result.ok
        assert result.details["product_id"] == second_product.id
        assert get_quantity(ctx, product.id, w1) == 5
        assert get_quantity(ctx, second_product.id, w1) == 1
        assert count_movements(ctx) == 2

    def test_repeated_product_lines_are_checked_together(self, db_session, ctx, product, w1):
        _receive(ctx, product, "5", w1)

        result = record_sale(ctx, [
            {"product_id": product.id, "quantity": 3},
            {"product_id": product.id, "quantity": 3},
        ], w1)

        assert not result.ok
        assert result.details["requested"] == "6.000"
        assert get_quantity(ctx, product.id, w1) == 5

    def test_selling_everything_leaves_zero_record(self, db_session, ctx, product, w1):
        _receive(ctx, product, "3", w1)

        result = record_sale(ctx, [{"product_id": product.id, "quantity": 3}], w1)

        assert result.ok
        record = get_stock_record(ctx, product.id, w1)
        assert record is not None
        assert record.quantity == 0

    def test_fractional_quantities(self, db_session, ctx, product, w1):
        _receive(ctx, product, "2.5", w1)
        result = record_sale(ctx, [{"product_id": product.id, "quantity": "0.75"}], w1)

        assert result.ok
        assert get_quantity(ctx, product.id, w1) == Decimal("1.75")

    def test_non_negative_after_checked_sequence(self, db_session, ctx, product, w1):
        _receive(ctx, product, "5", w1)
        for qty in (2, 2, 2, 1, 3):
            record_sale(ctx, [{"product_id": product.id, "quantity": qty}], w1)
            assert get_quantity(ctx, product.id, w1) >= 0
        assert get_quantity(ctx, product.id, w1) == 0


class TestAdjustment:
    def test_increase_logs_in_movement_with_delta(self, db_session, ctx, product, w1):
        _receive(ctx, product, "6", w1)

        result = record_adjustment(ctx, product.id, 20, w1, reason="stock count")

        assert result.ok
        assert get_quantity(ctx, product.id, w1) == 20
        movement = result.movements[0]
        assert movement.type == "in"
        assert movement.quantity == 14
        assert movement.to_location_key == w1.key
        assert movement.reference_type == "adjustment"
        assert movement.reference_id == result.document.id

    def test_decrease_logs_out_movement(self, db_session, ctx, product, w1):
        _receive(ctx, product, "10", w1)

        result = record_adjustment(ctx, product.id, "7.5", w1, reason="damaged")

        assert result.ok
        movement = result.movements[0]
        assert movement.type == "out"
        assert movement.quantity == Decimal("2.5")
        assert movement.from_location_key == w1.key

    def test_adjustment_document_records_before_and_after(self, db_session, ctx, product, w1):
        _receive(ctx, product, "4", w1)

        result = record_adjustment(ctx, product.id, 1, w1, reason="shrinkage")

        adjustment = db_session.get(StockAdjustment, result.document.id)
        assert adjustment.previous_quantity == 4
        assert adjustment.target_quantity == 1
        assert adjustment.delta == -3
        assert adjustment.reason == "shrinkage"

    def test_second_identical_adjustment_is_elided(self, db_session, ctx, product, w1):
        record_adjustment(ctx, product.id, 12, w1, reason="count")
        before = count_movements(ctx)

        result = record_adjustment(ctx, product.id, 12, w1, reason="count")

        assert result.ok
        assert result.movements == []
        assert count_movements(ctx) == before
        assert get_quantity(ctx, product.id, w1) == 12
        assert db_session.query(StockAdjustment).count() == 2

    def test_adjust_to_zero_materializes_record(self, db_session, ctx, product, w1):
        result = record_adjustment(ctx, product.id, 0, w1, reason="initial count")

        assert result.ok
        assert result.movements == []
        record = get_stock_record(ctx, product.id, w1)
        assert record is not None
        assert record.quantity == 0

    def test_negative_target_rejected(self, db_session, ctx, product, w1):
        result = record_adjustment(ctx, product.id, -1, w1, reason="oops")
        assert not result.ok
        assert result.error_code == "validation_error"
        assert get_stock_record(ctx, product.id, w1) is None

    def test_reason_required(self, db_session, ctx, product, w1):
        result = record_adjustment(ctx, product.id, 3, w1, reason="  ")
        assert not result.ok
        assert db_session.query(StockAdjustment).count() == 0


class TestMovementHistory:
    def test_newest_first(self, db_session, ctx, product, w1):
        _receive(ctx, product, "10", w1)
        record_sale(ctx, [{"product_id": product.id, "quantity": 1}], w1)
        record_adjustment(ctx, product.id, 5, w1, reason="count")

        history = get_movement_history(ctx, product.id)

        assert [m.type for m in history] == ["out", "out", "in"]
        assert history[0].id > history[1].id > history[2].id

    def test_limit(self, db_session, ctx, product, w1):
        for _ in range(3):
            _receive(ctx, product, "1", w1)
        assert len(get_movement_history(ctx, product.id, limit=2)) == 2

    @pytest.mark.parametrize("location_factory", [
        lambda b, w: Location.branch(b.id),
        lambda b, w: Location.branch_and_warehouse(b.id, w[0].id),
    ])
    def test_movement_quantity_matches_delta(self, db_session, ctx, product, branch, warehouses, location_factory):
        loc = location_factory(branch, warehouses)
        _receive(ctx, product, "8", loc)
        before = get_quantity(ctx, product.id, loc)

        result = record_sale(ctx, [{"product_id": product.id, "quantity": 3}], loc)

        after = get_quantity(ctx, product.id, loc)
        assert result.movements[0].quantity == before - after
        assert db_session.query(InventoryMovement).filter_by(product_id=product.id).count() == 2
