"""Tests for data models and pagination helpers."""

import random
from datetime import datetime

import pytest

from storefront.database import Page, page_bounds, parse_object_id, parse_sort
from storefront.errors import ValidationError
from storefront.models import (
    ORDER_TRANSITIONS,
    Category,
    OrderItem,
    OrderStatus,
    Pricing,
    Product,
    Role,
    User,
    format_datetime,
    generate_order_number,
)


def _product(price=10.0, images=None):
    return Product(
        id="65a000000000000000000001",
        name="Clear Case",
        description="Transparent shell",
        category=Category.PHONE_CASE,
        price=price,
        stock=3,
        images=images if images is not None else ["a.jpg", "b.jpg"],
    )


class TestOrderNumber:
    def test_format(self):
        number = generate_order_number(datetime(2024, 3, 9), random.Random(1))
        assert number.startswith("ORD2403")
        assert len(number) == 11
        assert number[7:].isdigit()

    def test_zero_padded(self):
        class Fixed:
            def randint(self, a, b):
                return 7

        assert generate_order_number(datetime(2025, 11, 1), Fixed()) == "ORD25110007"


class TestOrderItem:
    def test_snapshot_from_product(self):
        item = OrderItem.from_product(_product(price=12.5), 3)
        assert item.snapshot.name == "Clear Case"
        assert item.snapshot.image == "a.jpg"
        assert item.price == 12.5
        assert item.subtotal == 37.5

    def test_snapshot_without_images(self):
        item = OrderItem.from_product(_product(images=[]), 1)
        assert item.snapshot.image == ""

    def test_subtotal_rounded(self):
        item = OrderItem.from_product(_product(price=0.1), 3)
        assert item.subtotal == 0.3


class TestPricing:
    def _items(self, price, qty=1):
        return [OrderItem.from_product(_product(price=price), qty)]

    def test_flat_shipping_below_threshold(self):
        pricing = Pricing.for_items(self._items(10.0, 2))
        assert pricing.subtotal == 20.0
        assert pricing.shipping == 5.0
        assert pricing.total == 25.0

    def test_threshold_itself_is_not_free(self):
        pricing = Pricing.for_items(self._items(100.0))
        assert pricing.shipping == 5.0
        assert pricing.total == 105.0

    def test_free_shipping_above_threshold(self):
        pricing = Pricing.for_items(self._items(100.01))
        assert pricing.shipping == 0.0
        assert pricing.total == 100.01

    def test_discount_clamped_to_subtotal(self):
        pricing = Pricing.for_items(self._items(10.0), discount=50.0)
        assert pricing.discount == 10.0
        assert pricing.total == 5.0

    def test_negative_discount_ignored(self):
        pricing = Pricing.for_items(self._items(10.0), discount=-3.0)
        assert pricing.discount == 0.0


class TestTransitions:
    def test_terminal_states(self):
        assert ORDER_TRANSITIONS[OrderStatus.DELIVERED] == frozenset()
        assert ORDER_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()

    def test_shipped_cannot_be_cancelled(self):
        assert OrderStatus.CANCELLED not in ORDER_TRANSITIONS[OrderStatus.SHIPPED]


class TestUser:
    def test_to_dict_hides_password_hash(self):
        user = User.create(name="Ann", email="ann@example.com", password_hash="x")
        data = user.to_dict()
        assert "password_hash" not in data
        assert data["role"] == "user"

    def test_document_roundtrip_keeps_role(self):
        user = User.create(name="Root", email="root@example.com", password_hash="x", role=Role.ADMIN)
        restored = User.from_document(user.to_document())
        assert restored.is_admin
        assert restored.id == user.id


def test_format_datetime():
    assert format_datetime(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"
    assert format_datetime(None) is None


class TestPaging:
    def test_meta(self):
        page = Page(items=[1, 2], total=12, page=2, limit=5)
        assert page.meta() == {"count": 2, "total": 12, "pages": 3, "currentPage": 2}

    def test_bounds(self):
        assert page_bounds(3, 10) == (20, 10)

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
    def test_bounds_rejects(self, page, limit):
        with pytest.raises(ValidationError):
            page_bounds(page, limit)

    def test_parse_sort(self):
        spec = parse_sort("-price,name", {"price": "price", "name": "name"})
        assert spec == [("price", -1), ("name", 1)]

    def test_parse_sort_unknown_key(self):
        with pytest.raises(ValidationError, match="Cannot sort by 'password'"):
            parse_sort("password", {"name": "name"})

    def test_parse_object_id_invalid(self):
        with pytest.raises(ValidationError, match="Invalid order id"):
            parse_object_id("not-an-id", "order")
