"""Tests for catalog storage and atomic stock updates."""

import pytest

from farmmarket import crud, schemas
from farmmarket.errors import InsufficientStock, ProductNotFound


class TestDecreaseStock:
    def test_decrements_stock(self, db, make_product):
        product = make_product(stock=10)

        updated = crud.decrease_stock(db, product.id, 4)

        assert updated.stock == 6
        assert updated.is_available is True

    def test_reaching_zero_marks_unavailable(self, db, make_product):
        product = make_product(stock=3)

        updated = crud.decrease_stock(db, product.id, 3)

        assert updated.stock == 0
        assert updated.is_available is False
        assert updated.in_stock is False

    def test_insufficient_stock_leaves_product_untouched(self, db, make_product):
        product = make_product(name="Mangoes", stock=3)

        with pytest.raises(InsufficientStock) as exc_info:
            crud.decrease_stock(db, product.id, 5)

        assert exc_info.value.available == 3
        assert exc_info.value.requested == 5
        assert str(exc_info.value) == "Insufficient stock for Mangoes. Available: 3, Requested: 5"
        assert crud.get_product(db, product.id, refresh=True).stock == 3

    def test_unknown_product(self, db):
        with pytest.raises(ProductNotFound):
            crud.decrease_stock(db, 999, 1)

    def test_rejects_non_positive_quantity(self, db, make_product):
        product = make_product()

        with pytest.raises(ValueError):
            crud.decrease_stock(db, product.id, 0)


class TestIncreaseStock:
    def test_restock_from_zero_makes_available(self, db, make_product):
        product = make_product(stock=0)
        assert product.is_available is False

        updated = crud.increase_stock(db, product.id, 5)

        assert updated.stock == 5
        assert updated.is_available is True

    def test_unknown_product(self, db):
        with pytest.raises(ProductNotFound):
            crud.increase_stock(db, 999, 1)


class TestProductCrud:
    def test_create_with_zero_stock_is_unavailable(self, make_product):
        product = make_product(stock=0, is_available=True)

        assert product.is_available is False

    def test_final_price_applies_discount(self, make_product):
        product = make_product(price=50.0, discount=10)

        assert product.final_price == 45.0

    def test_update_does_not_touch_stock(self, db, make_product):
        product = make_product(stock=7)

        updated = crud.update_product(db, product.id, schemas.ProductUpdate(price=3.5, name="Roma Tomatoes"))

        assert updated.price == 3.5
        assert updated.name == "Roma Tomatoes"
        assert updated.stock == 7

    def test_update_missing_product(self, db):
        assert crud.update_product(db, 42, schemas.ProductUpdate(price=1.0)) is None

    def test_delete(self, db, make_product):
        product = make_product()

        assert crud.delete_product(db, product.id) is True
        assert crud.get_product(db, product.id) is None
        assert crud.delete_product(db, product.id) is False


class TestProductListing:
    def test_filters_and_pagination(self, db, make_product):
        make_product(name="Carrots", price=1.0, category="vegetables")
        make_product(name="Apples", price=4.0, category="fruits", description="Crisp red apples")
        make_product(name="Bananas", price=2.5, category="fruits")
        make_product(name="Sold Out Pears", price=3.0, category="fruits", stock=0)

        fruits, pagination = crud.get_products(db, category="fruits", sort="price_asc")
        assert [p.name for p in fruits] == ["Bananas", "Apples"]
        assert pagination.total == 2

        matches, _ = crud.get_products(db, search="crisp")
        assert [p.name for p in matches] == ["Apples"]

        cheap, _ = crud.get_products(db, max_price=2.5, sort="name")
        assert [p.name for p in cheap] == ["Bananas", "Carrots"]

        page, pagination = crud.get_products(db, sort="name", page=2, limit=2)
        assert [p.name for p in page] == ["Carrots"]
        assert pagination.pages == 2

    def test_low_stock_excludes_out_of_stock(self, db, make_product):
        make_product(name="Low", stock=2)
        make_product(name="Plenty", stock=50)
        make_product(name="Empty", stock=0)

        low = crud.get_low_stock_products(db, threshold=10)

        assert [p.name for p in low] == ["Low"]

    def test_categories(self, db, make_product):
        make_product(name="Milk", category="dairy")
        make_product(name="Rice", category="grains")
        make_product(name="Yogurt", category="dairy")

        assert crud.get_categories(db) == ["dairy", "grains"]
