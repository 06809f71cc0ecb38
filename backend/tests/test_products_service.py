# Overview: Pytest coverage for the product catalog and stock adjustments.

import pytest

from agrisupply.models import Product
from agrisupply.services import products_service
from agrisupply.validation import NotFoundError, ValidationError


class TestAdjustStock:
    @pytest.mark.parametrize("before", [0, 3, 250])
    def test_set_is_absolute(self, db_session, owner, make_product, before):
        product = make_product(owner, stock_quantity=before)
        result = products_service.adjust_stock(owner_id=owner.id, product_id=product.id, operation="set", quantity=5)
        assert result["stock_quantity"] == 5

    def test_subtract_floors_at_zero(self, db_session, owner, make_product):
        product = make_product(owner, stock_quantity=4)
        result = products_service.adjust_stock(
            owner_id=owner.id, product_id=product.id, operation="subtract", quantity=10, reason="Damaged bags",
        )
        assert result["stock_quantity"] == 0

    def test_add_stamps_restock_date(self, db_session, owner, make_product):
        product = make_product(owner, stock_quantity=4)
        products_service.adjust_stock(owner_id=owner.id, product_id=product.id, operation="add", quantity=6)

        product = db_session.get(Product, product.id)
        assert product.stock_quantity == 10
        assert product.last_restock_date is not None

    def test_rejects_bad_input(self, db_session, owner, make_product):
        product = make_product(owner)
        with pytest.raises(ValidationError):
            products_service.adjust_stock(owner_id=owner.id, product_id=product.id, operation="double", quantity=1)
        with pytest.raises(ValidationError):
            products_service.adjust_stock(owner_id=owner.id, product_id=product.id, operation="add", quantity=-1)

    def test_foreign_product_not_found(self, db_session, owner, other_owner, make_product):
        product = make_product(other_owner)
        with pytest.raises(NotFoundError):
            products_service.adjust_stock(owner_id=owner.id, product_id=product.id, operation="set", quantity=1)


class TestCatalogReads:
    def test_list_filters_and_tenancy(self, db_session, owner, other_owner, make_product):
        make_product(owner, name="BT Cotton Seed", crop_types=["Cotton"], stock_quantity=5)
        make_product(owner, name="Drip Kit", category="Irrigation", brand="Jain", crop_types=["All Crops"])
        make_product(other_owner, name="BT Cotton Seed")

        assert products_service.list_products(owner.id)["total"] == 2
        assert products_service.list_products(owner.id, category="Irrigation")["products"][0]["name"] == "Drip Kit"
        assert products_service.list_products(owner.id, search="cotton")["total"] == 1
        assert products_service.list_products(owner.id, brand="jain")["total"] == 1
        assert products_service.list_products(owner.id, crop_type="Cotton")["total"] == 1
        assert products_service.list_products(owner.id, low_stock=True)["total"] == 1

    def test_deactivated_products_hidden(self, db_session, owner, make_product):
        product = make_product(owner)
        products_service.deactivate_product(owner_id=owner.id, product_id=product.id)
        assert products_service.list_products(owner.id)["total"] == 0
        # Still readable directly for order history
        assert products_service.get_product(owner.id, product.id)["is_active"] is False

    def test_categories_and_stats(self, db_session, owner, make_product):
        make_product(owner, price_cents=1000, stock_quantity=10, crop_types=["Rice"])
        make_product(owner, price_cents=2000, stock_quantity=0, category="Pesticides", brand="Bayer")

        categories = products_service.list_categories(owner.id)
        assert categories["categories"] == ["Pesticides", "Seeds"]
        assert categories["brands"] == ["Bayer", "Mahyco"]
        assert categories["crop_types"] == ["Rice"]

        stats = products_service.get_product_stats(owner.id)
        assert stats["total_products"] == 2
        assert stats["low_stock_products"] == 2
        assert stats["out_of_stock_products"] == 1
        seeds = next(c for c in stats["category_stats"] if c["category"] == "Seeds")
        assert seeds["total_value_cents"] == 10000

    def test_update_product(self, db_session, owner, make_product):
        product = make_product(owner)
        result = products_service.update_product(
            owner_id=owner.id, product_id=product.id, patch={"price_cents": 5500, "subcategory": "Paddy"},
        )
        assert result["price_cents"] == 5500
        assert result["subcategory"] == "Paddy"
