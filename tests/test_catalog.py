"""Tests for the product catalog."""

import pytest

from storefront.catalog import ProductCatalog, validate_product_fields
from storefront.errors import InvalidArgument, NotFound, ValidationError


@pytest.fixture
def catalog(db):
    return ProductCatalog(db)


class TestValidateProductFields:
    def test_normalizes(self):
        clean = validate_product_fields(
            {"name": " Case ", "description": "Long enough text", "category": "phone-case", "price": 5}
        )
        assert clean["name"] == "Case"
        assert clean["price"] == 5.0

    def test_missing_required(self):
        with pytest.raises(ValidationError, match="Missing required fields: price"):
            validate_product_fields(
                {"name": "Case", "description": "Long enough text", "category": "phone-case"}
            )

    def test_unknown_field(self):
        with pytest.raises(ValidationError, match="sold_count"):
            validate_product_fields({"sold_count": 3}, partial=True)

    def test_bad_category(self):
        with pytest.raises(ValidationError, match="Invalid category"):
            validate_product_fields({"category": "shoe"}, partial=True)

    def test_negative_price(self):
        with pytest.raises(ValidationError):
            validate_product_fields({"price": -1}, partial=True)


class TestCreateAndGet:
    def test_create_defaults(self, make_product):
        product = make_product(stock=0)
        assert product.rating.count == 0
        assert product.sold_count == 0
        assert product.is_active

    def test_get_missing(self, catalog):
        with pytest.raises(NotFound):
            catalog.get_product("65a000000000000000000000")

    def test_get_invalid_id(self, catalog):
        with pytest.raises(ValidationError):
            catalog.get_product("bogus")


class TestListProducts:
    def test_filters(self, catalog, make_product):
        make_product(name="Cheap Phone Case", price=5.0)
        make_product(name="Pricey Phone Case", price=50.0)
        make_product(name="Laptop Sleeve", category="laptop-case", price=30.0)

        page = catalog.list_products(category="phone-case", min_price=10)
        assert [p.name for p in page.items] == ["Pricey Phone Case"]

        page = catalog.list_products(max_price=30, sort="price")
        assert [p.price for p in page.items] == [5.0, 30.0]

    def test_search_is_case_insensitive(self, catalog, make_product):
        make_product(name="Leather Wallet Case")
        make_product(name="Glitter Case", description="Sparkly LEATHER-free shell")
        make_product(name="Plain Case")
        page = catalog.list_products(search="leather")
        assert page.total == 2

    def test_search_escapes_regex(self, catalog, make_product):
        make_product(name="Case (Pro)")
        page = catalog.list_products(search="(Pro")
        assert page.total == 1

    def test_hides_inactive(self, catalog, make_product):
        make_product(name="Visible Case")
        make_product(name="Hidden Case", is_active=False)
        assert catalog.list_products().total == 1
        assert catalog.list_products(include_inactive=True).total == 2

    def test_pagination(self, catalog, make_product):
        for _ in range(5):
            make_product()
        page = catalog.list_products(page=2, limit=2, sort="name")
        assert page.meta() == {"count": 2, "total": 5, "pages": 3, "currentPage": 2}

    def test_bad_sort(self, catalog):
        with pytest.raises(ValidationError):
            catalog.list_products(sort="-password")


class TestUpdate:
    def test_partial_update(self, catalog, make_product):
        product = make_product()
        updated = catalog.update_product(product.id, {"price": 12.5, "color": "red"})
        assert updated.price == 12.5
        assert updated.color == "red"
        assert updated.name == product.name

    def test_empty_update(self, catalog, make_product):
        with pytest.raises(ValidationError, match="No fields to update"):
            catalog.update_product(make_product().id, {})

    def test_update_missing(self, catalog):
        with pytest.raises(NotFound):
            catalog.update_product("65a000000000000000000000", {"price": 1})


class TestStock:
    def test_adjust(self, catalog, make_product):
        product = make_product(stock=5)
        assert catalog.adjust_stock(product.id, 3).stock == 8
        assert catalog.adjust_stock(product.id, -8).stock == 0

    def test_zero_delta(self, catalog, make_product):
        with pytest.raises(InvalidArgument, match="cannot be zero"):
            catalog.adjust_stock(make_product().id, 0)

    def test_cannot_go_negative(self, catalog, make_product):
        product = make_product(stock=2)
        with pytest.raises(InvalidArgument, match="only 2 in stock"):
            catalog.adjust_stock(product.id, -3)
        assert catalog.get_product(product.id).stock == 2

    def test_adjust_missing(self, catalog):
        with pytest.raises(NotFound):
            catalog.adjust_stock("65a000000000000000000000", 1)

    def test_reserve_and_release(self, catalog, make_product):
        product = make_product(stock=2)
        assert catalog.reserve(product.id, 2)
        assert not catalog.reserve(product.id, 1)
        catalog.release(product.id, 1)
        current = catalog.get_product(product.id)
        assert current.stock == 1
        assert current.sold_count == 1


class TestTags:
    def test_add_allows_duplicates(self, catalog, make_product):
        product = make_product(tags=["slim"])
        assert catalog.add_tag(product.id, "slim").tags == ["slim", "slim"]

    def test_remove_pulls_all(self, catalog, make_product):
        product = make_product(tags=["slim", "red", "slim"])
        assert catalog.remove_tag(product.id, "slim").tags == ["red"]

    def test_empty_tag(self, catalog, make_product):
        with pytest.raises(ValidationError):
            catalog.add_tag(make_product().id, "")


class TestDelete:
    def test_delete(self, catalog, make_product):
        product = make_product()
        catalog.delete_product(product.id)
        with pytest.raises(NotFound):
            catalog.get_product(product.id)

    def test_delete_missing(self, catalog):
        with pytest.raises(NotFound):
            catalog.delete_product("65a000000000000000000000")
