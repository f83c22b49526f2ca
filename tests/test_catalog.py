"""Unit tests for products, categories and subcategories."""

from __future__ import annotations

from datetime import datetime

import pytest
from bson import ObjectId

import catalog
from errors import NotFoundError, SlugExistsError, ValidationError


class TestCreateProduct:
    """Tests for product creation."""

    def test_derives_stock_status_from_stock(self, db) -> None:
        """Test stock status is derived when not supplied."""
        product = catalog.create_product(db, {"name": "Dome camera", "price": 45000, "stock": 5})

        assert product["stock_status"] == "limited"
        assert product["sales_count"] == 0
        assert db["product"].count_documents({}) == 1

    def test_keeps_explicit_stock_status(self, db) -> None:
        """Test an explicit stock status wins over the derived one."""
        product = catalog.create_product(
            db, {"name": "NVR", "price": 90000, "stock": 0, "stock_status": "limited"}
        )
        assert product["stock_status"] == "limited"

    def test_unlimited_product_has_no_stock(self, db) -> None:
        """Test unlimited products do not store a stock value."""
        product = catalog.create_product(db, {"name": "Install", "price": 5000, "stock": 3, "unlimited": True})

        assert "stock" not in product
        assert product["stock_status"] == "in-stock"

    def test_precomputes_discounted_price(self, db) -> None:
        """Test the discounted price is filled in from the percentage."""
        product = catalog.create_product(
            db, {"name": "Bullet", "price": 10000, "has_discount": True, "discount_percentage": 25}
        )
        assert product["discounted_price"] == 7500

    def test_ignores_sales_count_input(self, db) -> None:
        """Test a new product always starts with zero sales."""
        product = catalog.create_product(db, {"name": "Cable", "price": 100, "sales_count": 50})
        assert product["sales_count"] == 0

    @pytest.mark.parametrize(
        ("fields", "message"),
        [
            ({"name": "", "price": 100}, "Product name is required"),
            ({"name": "x" * 101, "price": 100}, "less than 100 characters"),
            ({"name": "Cam", "price": 0}, "Price must be greater than 0"),
            ({"name": "Cam", "price": 100, "stock": -1}, "Stock cannot be negative"),
            ({"name": "Cam", "price": 100, "description": "d" * 1001}, "Description"),
            ({"name": "Cam", "price": 100, "discount_percentage": 120}, "between 0 and 100"),
        ],
    )
    def test_validation_errors(self, db, fields, message) -> None:
        """Test invalid input is rejected before anything is written."""
        with pytest.raises(ValidationError, match=message):
            catalog.create_product(db, fields)
        assert db["product"].count_documents({}) == 0


class TestUpdateProduct:
    """Tests for product updates."""

    def test_rederives_stock_status(self, db, make_product) -> None:
        """Test changing stock updates the stock status."""
        product_id = ObjectId(make_product(stock=50, stock_status="in-stock"))

        updated = catalog.update_product(db, product_id, {"stock": 0})

        assert updated["stock"] == 0
        assert updated["stock_status"] == "out-of-stock"

    def test_explicit_status_overrides(self, db, make_product) -> None:
        """Test a status sent with the stock is kept."""
        product_id = ObjectId(make_product())
        updated = catalog.update_product(db, product_id, {"stock": 0, "stock_status": "limited"})
        assert updated["stock_status"] == "limited"

    def test_recomputes_discounted_price_on_price_change(self, db, make_product) -> None:
        """Test the discounted price follows a price change."""
        product_id = ObjectId(make_product(price=10000, has_discount=True, discount_percentage=10, discounted_price=9000))
        updated = catalog.update_product(db, product_id, {"price": 20000})
        assert updated["discounted_price"] == 18000

    def test_switching_to_unlimited_drops_stock(self, db, make_product) -> None:
        """Test an unlimited product loses its stock field."""
        product_id = ObjectId(make_product(stock=4))
        updated = catalog.update_product(db, product_id, {"unlimited": True})
        assert "stock" not in updated

    def test_null_stock_rejected_for_tracked_product(self, db, make_product) -> None:
        """Test clearing stock on a tracked product is refused and leaves stock in place."""
        product_id = ObjectId(make_product(stock=4))

        with pytest.raises(ValidationError, match="Stock is required"):
            catalog.update_product(db, product_id, {"stock": None})
        assert db["product"].find_one({"_id": product_id})["stock"] == 4

    def test_null_stock_allowed_when_unlimited(self, db, make_product) -> None:
        """Test an unlimited product may send a null stock."""
        product_id = ObjectId(make_product(unlimited=True))
        db["product"].update_one({"_id": product_id}, {"$unset": {"stock": ""}})

        updated = catalog.update_product(db, product_id, {"stock": None, "name": "Install"})

        assert "stock" not in updated
        assert updated["name"] == "Install"

    def test_rejects_sales_count_edit(self, db, make_product) -> None:
        """Test sales count cannot be edited directly."""
        product_id = ObjectId(make_product())
        with pytest.raises(ValidationError):
            catalog.update_product(db, product_id, {"sales_count": 99})

    def test_missing_product(self, db) -> None:
        """Test updating an unknown product raises NotFoundError."""
        with pytest.raises(NotFoundError):
            catalog.update_product(db, ObjectId(), {"name": "Ghost"})


class TestListProducts:
    """Tests for product listing, sorting and search."""

    def test_sorts_by_price(self, db, make_product) -> None:
        """Test ascending and descending price sorts."""
        make_product(name="Mid", price=500)
        make_product(name="Low", price=100)
        make_product(name="High", price=900)

        asc = catalog.list_products(db, sort="asc")
        desc = catalog.list_products(db, sort="desc")

        assert [p["name"] for p in asc["items"]] == ["Low", "Mid", "High"]
        assert [p["name"] for p in desc["items"]] == ["High", "Mid", "Low"]

    def test_newest_first_by_default(self, db, make_product) -> None:
        """Test the default order is newest first."""
        make_product(name="First")
        make_product(name="Second")

        result = catalog.list_products(db)

        assert [p["name"] for p in result["items"]] == ["Second", "First"]
        assert result["total"] == 2

    def test_filters_by_category(self, db, make_product) -> None:
        """Test category filtering and the 'all' shortcut."""
        make_product(name="Cam", category="cameras")
        make_product(name="Lock", category="locks")

        assert [p["name"] for p in catalog.list_products(db, category="locks")["items"]] == ["Lock"]
        assert catalog.list_products(db, category="all")["total"] == 2

    def test_search_is_case_insensitive(self, db, make_product) -> None:
        """Test search matches name and brand regardless of case."""
        make_product(name="PTZ Camera", brand="Hikvision")
        make_product(name="Door lock", brand="Yale")

        assert catalog.list_products(db, q="ptz")["total"] == 1
        assert catalog.list_products(db, q="YALE")["total"] == 1

    def test_unknown_sort(self, db) -> None:
        """Test an unknown sort key is rejected."""
        with pytest.raises(ValidationError):
            catalog.list_products(db, sort="random")

    def test_popular_orders_by_sales(self, db, make_product) -> None:
        """Test popular products come back by sales count."""
        make_product(name="Rare", sales_count=1)
        make_product(name="Hit", sales_count=40)

        assert [p["name"] for p in catalog.popular_products(db)] == ["Hit", "Rare"]

    def test_discounted_products_skip_expired(self, db, make_product) -> None:
        """Test expired discounts are left out of the sales list."""
        make_product(name="On sale", has_discount=True, discount_percentage=10, discounted_price=900)
        make_product(
            name="Expired",
            has_discount=True,
            discount_percentage=10,
            discounted_price=900,
            discount_end_date=datetime(2000, 1, 1),
        )

        assert [p["name"] for p in catalog.discounted_products(db)] == ["On sale"]


class TestProductReference:
    """Tests for lookups by human reference."""

    def test_matches_number_and_string(self, db, make_product) -> None:
        """Test a numeric reference is found from its string form and back."""
        make_product(name="Numeric", reference=1042)
        make_product(name="Text", reference="CAM-7")

        assert catalog.get_product_by_reference(db, "1042")["name"] == "Numeric"
        assert catalog.get_product_by_reference(db, "CAM-7")["name"] == "Text"
        assert catalog.get_product_by_reference(db, "nope") is None


class TestSlugs:
    """Tests for slug generation."""

    @pytest.mark.parametrize(
        ("name", "slug"),
        [
            ("Security Cameras", "security-cameras"),
            ("  Alarms & Sensors!! ", "alarms-sensors"),
            ("a--b", "a-b"),
            ("", ""),
        ],
    )
    def test_generate_slug(self, name, slug) -> None:
        """Test names become URL-safe slugs."""
        assert catalog.generate_slug(name) == slug

    def test_slug_is_capped(self) -> None:
        """Test slugs never exceed 50 characters."""
        assert len(catalog.generate_slug("word " * 30)) <= 50


class TestCategories:
    """Tests for category and subcategory rules."""

    def test_duplicate_slug_rejected(self, db) -> None:
        """Test a second category producing the same slug fails."""
        catalog.create_category(db, "Smart Home")

        with pytest.raises(SlugExistsError, match="slug already exists"):
            catalog.create_category(db, "smart   home")
        assert db["category"].count_documents({}) == 1

    def test_rename_rechecks_uniqueness(self, db) -> None:
        """Test renaming onto an existing slug fails but renaming to itself works."""
        catalog.create_category(db, "Cameras")
        locks = catalog.create_category(db, "Locks")
        locks_id = ObjectId(locks["id"])

        with pytest.raises(SlugExistsError):
            catalog.update_category(db, locks_id, {"name": "cameras"})
        renamed = catalog.update_category(db, locks_id, {"name": "Locks"})
        assert renamed["slug"] == "locks"

    def test_rename_updates_subcategory_back_reference(self, db) -> None:
        """Test subcategories follow their parent's new slug."""
        parent = catalog.create_category(db, "Alarms")
        catalog.create_subcategory(db, "Sirens", parent["id"])

        catalog.update_category(db, ObjectId(parent["id"]), {"name": "Alarm Systems"})

        assert db["subcategory"].find_one({})["category_slug"] == "alarm-systems"

    def test_subcategory_slug_unique_within_parent_only(self, db) -> None:
        """Test the same subcategory name works under two parents but not twice in one."""
        indoor = catalog.create_category(db, "Indoor")
        outdoor = catalog.create_category(db, "Outdoor")

        first = catalog.create_subcategory(db, "Wireless", indoor["id"])
        second = catalog.create_subcategory(db, "Wireless", outdoor["id"])
        assert first["slug"] == second["slug"] == "wireless"
        assert second["category_slug"] == "outdoor"

        with pytest.raises(SlugExistsError):
            catalog.create_subcategory(db, "wireless", indoor["id"])

    def test_subcategory_needs_existing_parent(self, db) -> None:
        """Test a subcategory cannot point at a missing category."""
        with pytest.raises(NotFoundError):
            catalog.create_subcategory(db, "Orphan", str(ObjectId()))

    def test_delete_cascades_to_subcategories(self, db) -> None:
        """Test deleting a category removes all of its subcategories."""
        parent = catalog.create_category(db, "Networking")
        other = catalog.create_category(db, "Storage")
        for name in ("Switches", "Routers", "Access points"):
            catalog.create_subcategory(db, name, parent["id"])
        catalog.create_subcategory(db, "Disks", other["id"])

        result = catalog.delete_category(db, ObjectId(parent["id"]))

        assert result == {"deleted_subcategories": 3}
        assert db["subcategory"].count_documents({"category_id": parent["id"]}) == 0
        assert db["subcategory"].count_documents({"category_id": other["id"]}) == 1
        assert db["category"].find_one({"_id": ObjectId(parent["id"])}) is None

    def test_category_name_too_long(self, db) -> None:
        """Test category names are limited to 50 characters."""
        with pytest.raises(ValidationError):
            catalog.create_category(db, "n" * 51)
