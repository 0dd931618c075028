"""Tests for order placement and the order lifecycle."""

from datetime import datetime
from decimal import Decimal

import pytest

from farmmarket import config, crud, models, orders
from farmmarket.errors import InsufficientStock, InvalidTransition, ProductNotFound, ValidationError


def _order_count(db):
    return db.query(models.Order).count()


class TestPlaceOrder:
    def test_amounts_are_computed_from_catalog_prices(self, db, make_product, make_order_request):
        tomatoes = make_product(name="Tomatoes", price=2.5, stock=10)
        onions = make_product(name="Onions", price=1.2, stock=10, unit="lb")
        request = make_order_request(
            [{"productId": tomatoes.id, "quantity": 2}, {"productId": onions.id, "quantity": 5}],
            discount=1.0,
            deliveryFee=3.0,
        )

        order = orders.place_order(db, request)

        assert [item.subtotal for item in order.items] == [5.0, 6.0]
        assert order.total_amount == 11.0
        assert order.final_amount == 13.0
        assert order.final_amount == order.total_amount - order.discount + order.delivery_fee
        assert order.items[1].unit == "lb"
        assert order.status == "Pending"
        assert [event.notes for event in order.status_history] == ["Order created"]

    def test_price_is_captured_at_placement(self, db, make_product, make_order_request):
        product = make_product(price=2.0, stock=10)
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 3}]))

        product.price = 9.99
        db.commit()
        db.refresh(order)

        assert order.items[0].price == 2.0
        assert order.items[0].subtotal == 6.0
        assert order.total_amount == 6.0

    def test_amounts_are_exact_for_fractional_prices(self, db, make_product, make_order_request):
        product = make_product(name="Herbs", price=0.1, stock=10)
        request = make_order_request([{"productId": product.id, "quantity": 3}], discount=0.1)

        order = orders.place_order(db, request)

        assert order.total_amount == Decimal("0.30")
        assert order.final_amount == Decimal("0.20")
        assert order.final_amount == order.total_amount - order.discount + order.delivery_fee

    def test_accepts_alternate_product_keys_and_merges_duplicates(self, db, make_product, make_order_request):
        product = make_product(stock=10)
        request = make_order_request([
            {"_id": product.id, "quantity": 1},
            {"product_id": product.id, "quantity": 2},
        ])

        order = orders.place_order(db, request)

        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert crud.get_product(db, product.id, refresh=True).stock == 7

    def test_plain_string_address(self, db, make_product, make_order_request):
        product = make_product()
        request = make_order_request([{"productId": product.id, "quantity": 1}], deliveryAddress="5 Mill Road")

        order = orders.place_order(db, request)

        assert order.delivery_address["full_address"] == "5 Mill Road"

    def test_empty_cart_is_rejected(self, db, make_order_request):
        with pytest.raises(ValidationError) as exc_info:
            orders.place_order(db, make_order_request([]))

        assert "Order must contain at least one item" in exc_info.value.errors
        assert _order_count(db) == 0

    def test_missing_customer_fields_are_all_reported(self, db, make_product, make_order_request):
        product = make_product()
        request = make_order_request(
            [{"productId": product.id, "quantity": 1}],
            customerName="  ",
            customerPhone="",
        )

        with pytest.raises(ValidationError) as exc_info:
            orders.place_order(db, request)

        assert exc_info.value.errors == ["Customer name is required", "Customer phone is required"]

    def test_oversized_quantity_is_reported(self, db, make_product, make_order_request):
        product = make_product(stock=20000)
        request = make_order_request([{"productId": product.id, "quantity": 10001}])

        with pytest.raises(ValidationError) as exc_info:
            orders.place_order(db, request)

        assert exc_info.value.errors == ["Item 1: quantity exceeds maximum (10000)"]
        assert crud.get_product(db, product.id, refresh=True).stock == 20000

    def test_unknown_product(self, db, make_order_request):
        with pytest.raises(ProductNotFound):
            orders.place_order(db, make_order_request([{"productId": 404, "quantity": 1}]))

    def test_discount_larger_than_total_is_rejected(self, db, make_product, make_order_request):
        product = make_product(price=2.0)

        with pytest.raises(ValidationError):
            orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 1}], discount=50))


class TestAllOrNothing:
    def test_insufficient_sibling_blocks_whole_order(self, db, make_product, make_order_request):
        plenty = make_product(name="Potatoes", stock=20)
        scarce = make_product(name="Mangoes", stock=3)
        request = make_order_request([
            {"productId": plenty.id, "quantity": 2},
            {"productId": scarce.id, "quantity": 5},
        ])

        with pytest.raises(InsufficientStock):
            orders.place_order(db, request)

        assert crud.get_product(db, plenty.id, refresh=True).stock == 20
        assert crud.get_product(db, scarce.id, refresh=True).stock == 3
        assert _order_count(db) == 0

    def test_failed_reservation_rolls_back_order_and_earlier_decrements(
        self, db, make_product, make_order_request, monkeypatch
    ):
        first = make_product(name="Potatoes", stock=20)
        second = make_product(name="Mangoes", stock=5)
        original = crud.decrease_stock

        def lose_race(session, product_id, quantity, commit=True):
            # Simulates another order taking the last units between check and write
            if product_id == second.id:
                raise InsufficientStock(second.id, second.name, 0, quantity)
            return original(session, product_id, quantity, commit=commit)

        monkeypatch.setattr(crud, "decrease_stock", lose_race)

        with pytest.raises(InsufficientStock):
            orders.place_order(db, make_order_request([
                {"productId": first.id, "quantity": 2},
                {"productId": second.id, "quantity": 1},
            ]))

        assert crud.get_product(db, first.id, refresh=True).stock == 20
        assert crud.get_product(db, second.id, refresh=True).stock == 5
        assert _order_count(db) == 0


class TestOrderNumbers:
    def test_daily_sequence(self, db, make_product, make_order_request):
        product = make_product(stock=10)
        now = datetime(2025, 5, 23, 9, 30)
        request = make_order_request([{"productId": product.id, "quantity": 1}])

        first = orders.place_order(db, request, now=now)
        second = orders.place_order(db, request, now=now.replace(hour=18))

        assert first.order_number == "ORD2505230001"
        assert second.order_number == "ORD2505230002"
        assert int(second.order_number[-4:]) == int(first.order_number[-4:]) + 1

    def test_sequence_restarts_each_day(self, db, make_product, make_order_request):
        product = make_product(stock=10)
        request = make_order_request([{"productId": product.id, "quantity": 1}])

        orders.place_order(db, request, now=datetime(2025, 5, 23, 23, 59))
        next_day = orders.place_order(db, request, now=datetime(2025, 5, 24, 0, 1))

        assert next_day.order_number == "ORD2505240001"

    def test_taken_number_is_retried_with_the_next_one(self, db, make_product, make_order_request, monkeypatch):
        product = make_product(stock=10)
        now = datetime(2025, 5, 23, 9, 30)
        first = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 1}]), now=now)
        taken = first.order_number
        original = crud.next_order_number
        calls = []

        def stale_number(session, when=None):
            # The first read races with an order that already took this number
            calls.append(when)
            if len(calls) == 1:
                return taken
            return original(session, when)

        monkeypatch.setattr(crud, "next_order_number", stale_number)

        second = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 2}]), now=now)

        assert len(calls) == 2
        assert second.order_number == "ORD2505230002"
        assert _order_count(db) == 2
        assert crud.get_product(db, product.id, refresh=True).stock == 7

    def test_gives_up_after_configured_attempts(self, db, make_product, make_order_request, monkeypatch):
        product = make_product(stock=10)
        now = datetime(2025, 5, 23, 9, 30)
        taken = orders.place_order(
            db, make_order_request([{"productId": product.id, "quantity": 1}]), now=now
        ).order_number
        calls = []

        def always_taken(session, when=None):
            calls.append(when)
            return taken

        monkeypatch.setattr(config, "ORDER_NUMBER_RETRIES", 3)
        monkeypatch.setattr(crud, "next_order_number", always_taken)

        with pytest.raises(RuntimeError):
            orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 2}]), now=now)

        assert len(calls) == 3
        assert _order_count(db) == 1
        assert crud.get_product(db, product.id, refresh=True).stock == 9


class TestCancelOrder:
    def test_scenario_place_then_cancel_restores_stock(self, db, make_product, make_order_request):
        product = make_product(name="A", price=2.0, stock=10)

        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 4}]))
        assert order.final_amount == 8.0
        assert crud.get_product(db, product.id, refresh=True).stock == 6
        history_length = len(order.status_history)

        order, warnings = orders.cancel_order(db, order, "Customer changed their mind", "admin@farm.example.com")

        assert warnings == []
        assert crud.get_product(db, product.id, refresh=True).stock == 10
        assert order.status == "Cancelled"
        assert order.cancellation_reason == "Customer changed their mind"
        assert len(order.status_history) == history_length + 1
        assert order.status_history[-1].updated_by == "admin@farm.example.com"

    def test_second_cancel_is_rejected_without_restoring_again(self, db, make_product, make_order_request):
        product = make_product(stock=10)
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 4}]))
        orders.cancel_order(db, order)

        with pytest.raises(InvalidTransition):
            orders.cancel_order(db, order)

        assert crud.get_product(db, product.id, refresh=True).stock == 10

    def test_cancel_restores_availability(self, db, make_product, make_order_request):
        product = make_product(stock=2)
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 2}]))
        assert crud.get_product(db, product.id, refresh=True).is_available is False

        orders.cancel_order(db, order)

        restored = crud.get_product(db, product.id, refresh=True)
        assert restored.stock == 2
        assert restored.is_available is True

    def test_scenario_delivered_order_cannot_be_cancelled(self, db, make_product, make_order_request):
        product = make_product(stock=10)
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 1}]))
        orders.update_status(db, order, "Delivered", "admin@farm.example.com")

        with pytest.raises(InvalidTransition) as exc_info:
            orders.cancel_order(db, order)

        assert str(exc_info.value) == "Cannot cancel delivered order"
        assert crud.get_product(db, product.id, refresh=True).stock == 9

    def test_deleted_product_is_skipped_with_warning(self, db, make_product, make_order_request):
        kept = make_product(name="Kept", stock=10)
        gone = make_product(name="Gone", stock=10)
        order = orders.place_order(db, make_order_request([
            {"productId": kept.id, "quantity": 1},
            {"productId": gone.id, "quantity": 1},
        ]))
        crud.delete_product(db, gone.id)

        order, warnings = orders.cancel_order(db, order)

        assert order.status == "Cancelled"
        assert len(warnings) == 1
        assert "Gone" in warnings[0]
        assert crud.get_product(db, kept.id, refresh=True).stock == 10


class TestUpdateStatus:
    def test_appends_history(self, db, make_product, make_order_request):
        product = make_product()
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 1}]))

        order, _ = orders.update_status(db, order, "Confirmed", "admin@farm.example.com", "Called customer")

        assert order.status == "Confirmed"
        assert [event.status for event in order.status_history] == ["Pending", "Confirmed"]
        assert order.status_history[-1].notes == "Called customer"

    def test_cancelled_status_restores_stock(self, db, make_product, make_order_request):
        product = make_product(stock=5)
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 5}]))

        order, _ = orders.update_status(db, order, "Cancelled", "admin@farm.example.com", "Out of delivery range")

        assert order.status == "Cancelled"
        assert order.cancellation_reason == "Out of delivery range"
        assert crud.get_product(db, product.id, refresh=True).stock == 5

    def test_reactivating_cancelled_order_reserves_stock(self, db, make_product, make_order_request):
        product = make_product(stock=5)
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 3}]))
        orders.cancel_order(db, order)

        order, _ = orders.update_status(db, order, "Pending", "admin@farm.example.com")

        assert order.status == "Pending"
        assert crud.get_product(db, product.id, refresh=True).stock == 2

    def test_reactivation_skips_deleted_product_with_warning(self, db, make_product, make_order_request):
        kept = make_product(name="Kept", stock=10)
        gone = make_product(name="Gone", stock=10)
        order = orders.place_order(db, make_order_request([
            {"productId": kept.id, "quantity": 2},
            {"productId": gone.id, "quantity": 1},
        ]))
        orders.cancel_order(db, order)
        crud.delete_product(db, gone.id)

        order, warnings = orders.update_status(db, order, "Pending", "admin@farm.example.com")

        assert order.status == "Pending"
        assert len(warnings) == 1
        assert "Gone" in warnings[0]
        assert crud.get_product(db, kept.id, refresh=True).stock == 8

    def test_strict_mode_rejects_skipping_ahead(self, db, make_product, make_order_request, monkeypatch):
        monkeypatch.setattr(config, "STRICT_STATUS_TRANSITIONS", True)
        product = make_product()
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 1}]))

        with pytest.raises(InvalidTransition):
            orders.update_status(db, order, "Delivered")

        order, _ = orders.update_status(db, order, "Confirmed")
        assert order.status == "Confirmed"

    def test_permissive_by_default(self, db, make_product, make_order_request):
        product = make_product()
        order = orders.place_order(db, make_order_request([{"productId": product.id, "quantity": 1}]))

        order, _ = orders.update_status(db, order, "Shipped")

        assert order.status == "Shipped"
