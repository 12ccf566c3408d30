# Overview: Pytest coverage for atomic location-to-location transfers.

from decimal import Decimal
from unittest import mock

import pytest

from stocksense.locations import Location
from stocksense.services import transfer_service
from stocksense.services.inventory_service import record_purchase_receipt
from stocksense.services.ledger_service import count_movements
from stocksense.services.stock_service import get_quantity, get_stock_record, get_total_quantity
from stocksense.services.transfer_service import record_transfer


@pytest.fixture
def stocked(db_session, ctx, product, w1):
    result = record_purchase_receipt(ctx, [{"product_id": product.id, "quantity": 10}], w1)
    assert result.ok
    return product


class TestTransfer:
    def test_moves_quantity_with_single_movement(self, db_session, ctx, stocked, w1, w2):
        result = record_transfer(ctx, stocked.id, 6, w1, w2, reason="rebalance")

        assert result.ok
        assert get_quantity(ctx, stocked.id, w1) == 4
        assert get_quantity(ctx, stocked.id, w2) == 6
        assert len(result.movements) == 1
        movement = result.movements[0]
        assert movement.type == "transfer"
        assert movement.quantity == 6
        assert movement.from_location_key == w1.key
        assert movement.to_location_key == w2.key
        assert movement.reason == "rebalance"

    @pytest.mark.parametrize("qty", ["0.5", "3", "10"])
    def test_conserves_quantity(self, db_session, ctx, stocked, w1, w2, qty):
        before = get_quantity(ctx, stocked.id, w1) + get_quantity(ctx, stocked.id, w2)

        result = record_transfer(ctx, stocked.id, qty, w1, w2)

        assert result.ok
        after = get_quantity(ctx, stocked.id, w1) + get_quantity(ctx, stocked.id, w2)
        assert after == before
        assert get_total_quantity(ctx, stocked.id) == 10

    def test_insufficient_source_changes_nothing(self, db_session, ctx, stocked, w1, w2):
        result = record_transfer(ctx, stocked.id, "10.001", w1, w2)

        assert not result.ok
        assert result.error_code == "insufficient_stock"
        assert result.available == 10
        assert result.details["location_key"] == w1.key
        assert get_quantity(ctx, stocked.id, w1) == 10
        assert get_stock_record(ctx, stocked.id, w2) is None
        assert count_movements(ctx) == 1

    def test_same_location_rejected(self, db_session, ctx, stocked, w1):
        result = record_transfer(ctx, stocked.id, 1, w1, Location.warehouse(w1.warehouse_id))

        assert not result.ok
        assert result.error_code == "validation_error"
        assert get_quantity(ctx, stocked.id, w1) == 10

    def test_non_positive_quantity_rejected(self, db_session, ctx, stocked, w1, w2):
        result = record_transfer(ctx, stocked.id, 0, w1, w2)
        assert not result.ok
        assert result.error_code == "validation_error"

    def test_between_location_kinds(self, db_session, ctx, stocked, branch, w1):
        shop_floor = Location.branch(branch.id)

        result = record_transfer(ctx, stocked.id, 4, w1, shop_floor)

        assert result.ok
        assert get_quantity(ctx, stocked.id, shop_floor) == 4
        assert get_quantity(ctx, stocked.id, w1) == 6

    def test_failure_after_debit_rolls_back_both_sides(self, db_session, ctx, stocked, w1, w2):
        with mock.patch.object(
            transfer_service,
            "append_movement",
            side_effect=RuntimeError("log unavailable"),
        ):
            with pytest.raises(RuntimeError):
                record_transfer(ctx, stocked.id, 5, w1, w2)

        assert get_quantity(ctx, stocked.id, w1) == 10
        assert get_stock_record(ctx, stocked.id, w2) is None
        assert count_movements(ctx) == 1

    def test_sequence_of_transfers_conserves_total(self, db_session, ctx, stocked, w1, w2, branch):
        shop = Location.branch(branch.id)
        moves = [(w1, w2, "4"), (w2, shop, "1.5"), (shop, w1, "0.5"), (w1, shop, "6.5")]

        for source, target, qty in moves:
            assert record_transfer(ctx, stocked.id, qty, source, target).ok

        assert get_total_quantity(ctx, stocked.id) == 10
        assert get_quantity(ctx, stocked.id, w1) == 0
        assert get_quantity(ctx, stocked.id, w2) == Decimal("2.5")
        assert get_quantity(ctx, stocked.id, shop) == Decimal("7.5")
