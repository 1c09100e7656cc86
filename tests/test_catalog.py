from unittest.mock import MagicMock

import pytest
from bson import ObjectId

import catalog
from errors import NotFound, ValidationFailed
from schemas import Photo

from conftest import make_category, make_product


@pytest.mark.parametrize("page,expected", [
    (1, 1), (3, 3), ("2", 2), (0, 1), (-1, 1), ("-5", 1), ("abc", 1), (None, 1), ("", 1),
])
def test_normalize_page(page, expected):
    assert catalog.normalize_page(page) == expected


class TestBuildFilterQuery:
    def test_no_filters_means_everything(self):
        assert catalog.build_filter_query() == {}
        assert catalog.build_filter_query([], []) == {}
        assert catalog.build_filter_query(None, None) == {}

    def test_category_only(self):
        cid = ObjectId()
        assert catalog.build_filter_query([str(cid)], None) == {"category": {"$in": [cid]}}

    def test_price_range_is_inclusive(self):
        assert catalog.build_filter_query(None, [40, 59]) == {"price": {"$gte": 40, "$lte": 59}}

    def test_open_upper_bound(self):
        assert catalog.build_filter_query(None, [100, None]) == {"price": {"$gte": 100}}
        assert catalog.build_filter_query(None, [100]) == {"price": {"$gte": 100}}

    def test_both_predicates_combine(self):
        cid = ObjectId()
        query = catalog.build_filter_query([str(cid)], [0, 19])
        assert query == {"category": {"$in": [cid]}, "price": {"$gte": 0, "$lte": 19}}

    def test_bad_category_id(self):
        with pytest.raises(ValidationFailed):
            catalog.build_filter_query(["not-an-id"], None)


class TestListing:
    def test_list_products_newest_first_without_photo(self, db, books):
        make_product(db, "Old", 10, books, minutes=1, photo=b"img")
        make_product(db, "New", 20, books, minutes=2, photo=b"img")

        products, count = catalog.list_products(db)

        assert [p["name"] for p in products] == ["New", "Old"]
        assert count == 2
        assert all("photo" not in p for p in products)
        assert products[0]["category"]["name"] == "Book"

    def test_list_products_is_capped(self, db, books):
        for i in range(15):
            make_product(db, f"P{i}", i, books, minutes=i)
        products, count = catalog.list_products(db)
        assert count == catalog.LIST_LIMIT
        assert products[0]["name"] == "P14"

    def test_pages_are_slices_of_newest_first(self, db, books):
        for i in range(14):
            make_product(db, f"P{i:02d}", i, books, minutes=i)
        names = [f"P{i:02d}" for i in reversed(range(14))]

        assert [p["name"] for p in catalog.list_products_page(db, 1)] == names[0:6]
        assert [p["name"] for p in catalog.list_products_page(db, 2)] == names[6:12]
        assert [p["name"] for p in catalog.list_products_page(db, 3)] == names[12:14]
        assert catalog.list_products_page(db, 4) == []

    def test_page_past_int64_skip_is_empty(self):
        db = MagicMock()
        assert catalog.list_products_page(db, str(2 ** 63)) == []
        db.__getitem__.assert_not_called()

    @pytest.mark.parametrize("page", [0, -3, "abc", None])
    def test_invalid_pages_behave_like_first(self, db, books, page):
        for i in range(8):
            make_product(db, f"P{i}", i, books, minutes=i)
        first = [p["_id"] for p in catalog.list_products_page(db, 1)]
        assert [p["_id"] for p in catalog.list_products_page(db, page)] == first

    def test_count_products(self, db, books):
        make_product(db, "A", 1, books)
        make_product(db, "B", 2, books)
        assert catalog.count_products(db) == 2


class TestSingleProduct:
    def test_by_slug(self, db, books):
        make_product(db, "Cool Book", 10, books, photo=b"img")
        product = catalog.get_product_by_slug(db, "cool-book")
        assert product["name"] == "Cool Book"
        assert product["category"]["slug"] == "book"
        assert "photo" not in product

    def test_missing_slug(self, db):
        with pytest.raises(NotFound) as exc:
            catalog.get_product_by_slug(db, "nope")
        assert exc.value.message == "Product not found"

    def test_photo(self, db, books):
        product = make_product(db, "Pic", 10, books, photo=b"\x89PNG")
        data, content_type = catalog.get_product_photo(db, str(product["_id"]))
        assert data == b"\x89PNG"
        assert content_type == "image/jpeg"

    def test_photo_missing_product(self, db):
        with pytest.raises(NotFound) as exc:
            catalog.get_product_photo(db, str(ObjectId()))
        assert exc.value.message == "Product not found"

    def test_photo_missing_photo(self, db, books):
        product = make_product(db, "NoPic", 10, books)
        with pytest.raises(NotFound) as exc:
            catalog.get_product_photo(db, str(product["_id"]))
        assert exc.value.message == "Photo not found"

    def test_dangling_category_populates_to_none(self, db, books):
        make_product(db, "Orphan", 10, books)
        catalog.delete_category(db, str(books["_id"]))
        assert catalog.get_product_by_slug(db, "orphan")["category"] is None


class TestFilter:
    def test_scenario_category_and_price(self, db, books, food):
        p = make_product(db, "P", 50, books)
        make_product(db, "Other", 50, food)

        found = catalog.filter_products(db, [str(books["_id"])], [40, 59])
        assert [x["_id"] for x in found] == [p["_id"]]
        assert catalog.filter_products(db, None, [60, 79]) == []

    def test_price_bounds_inclusive(self, db, books):
        make_product(db, "Low", 10, books)
        make_product(db, "High", 20, books)
        make_product(db, "Out", 21, books)
        names = {p["name"] for p in catalog.filter_products(db, None, [10, 20])}
        assert names == {"Low", "High"}

    def test_open_ended_range(self, db, books):
        make_product(db, "Cheap", 5, books)
        make_product(db, "Pricey", 500, books)
        names = {p["name"] for p in catalog.filter_products(db, None, [100, None])}
        assert names == {"Pricey"}

    def test_empty_filters_return_all(self, db, books, food):
        make_product(db, "A", 1, books)
        make_product(db, "B", 2, food)
        assert len(catalog.filter_products(db, [], [])) == 2
        assert len(catalog.filter_products(db, None, None)) == 2

    def test_several_categories(self, db, books, food):
        toys = make_category(db, "Toys")
        make_product(db, "A", 1, books)
        make_product(db, "B", 2, food)
        make_product(db, "C", 3, toys)
        names = {p["name"] for p in catalog.filter_products(db, [str(books["_id"]), str(food["_id"])], None)}
        assert names == {"A", "B"}


class TestSearch:
    def test_matches_name_or_description_ignoring_case(self, db, books, food):
        make_product(db, "Cool book", 10, books, description="Pages")
        make_product(db, "Potato", 2, food, description="Not a BOOK at all")
        make_product(db, "Tomato", 3, food, description="Red")

        names = {p["name"] for p in catalog.search_products(db, "BOOK")}
        assert names == {"Cool book", "Potato"}

    def test_unique_substring(self, db, food):
        make_product(db, "Potato", 2, food)
        make_product(db, "Tomato", 3, food)
        assert [p["name"] for p in catalog.search_products(db, "pot")] == ["Potato"]

    def test_no_match(self, db, food):
        make_product(db, "Potato", 2, food)
        assert catalog.search_products(db, "laptop") == []

    def test_keyword_is_literal(self, db, food):
        make_product(db, "Potato", 2, food)
        assert catalog.search_products(db, ".*") == []


class TestCategoryListing:
    def test_products_of_category(self, db, books, food):
        make_product(db, "A", 1, books)
        make_product(db, "B", 2, food)
        category, products = catalog.products_in_category(db, "book")
        assert category["_id"] == books["_id"]
        assert [p["name"] for p in products] == ["A"]

    def test_unknown_slug(self, db):
        assert catalog.products_in_category(db, "ghost") == (None, [])

    def test_category_without_products(self, db, books):
        category, products = catalog.products_in_category(db, "book")
        assert category["name"] == "Book"
        assert products == []


class TestRelated:
    def test_excludes_self_and_caps(self, db, books, food):
        target = make_product(db, "Target", 1, books)
        for i in range(5):
            make_product(db, f"Sibling {i}", i, books)
        make_product(db, "Stranger", 1, food)

        related = catalog.related_products(db, str(target["_id"]), str(books["_id"]))

        assert len(related) == 3
        assert target["_id"] not in [p["_id"] for p in related]
        assert all(p["category"]["_id"] == books["_id"] for p in related)

    def test_no_siblings(self, db, books):
        target = make_product(db, "Alone", 1, books)
        assert catalog.related_products(db, str(target["_id"]), str(books["_id"])) == []

    @pytest.mark.parametrize("pid,cid,message", [
        (None, str(ObjectId()), "pid is missing"),
        (str(ObjectId()), None, "cid is missing"),
        ("", "", "pid is missing"),
    ])
    def test_requires_both_ids(self, db, pid, cid, message):
        with pytest.raises(ValidationFailed) as exc:
            catalog.related_products(db, pid, cid)
        assert exc.value.message == message


class TestProductWrites:
    def fields(self, cat, **overrides):
        fields = {
            "name": "Cool product",
            "description": "This is a cool product",
            "price": 10.5,
            "category": str(cat["_id"]),
            "quantity": 3,
            "shipping": False,
        }
        fields.update(overrides)
        return fields

    def test_create(self, db, books):
        product = catalog.create_product(db, self.fields(books), Photo(data=b"img", content_type="image/png"))
        assert product["slug"] == "cool-product"
        assert product["category"] == books["_id"]
        assert "photo" not in product
        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["photo"]["data"] == b"img"

    @pytest.mark.parametrize("field,message", [
        ("name", "Name is Required"),
        ("description", "Description is Required"),
        ("price", "Price is Required"),
        ("category", "Category is Required"),
        ("quantity", "Quantity is Required"),
    ])
    def test_required_fields(self, db, books, field, message):
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_product(db, self.fields(books, **{field: None}), Photo(data=b"img"))
        assert exc.value.message == message
        assert db["product"].count_documents({}) == 0

    def test_shipping_is_optional(self, db, books):
        product = catalog.create_product(db, self.fields(books, shipping=None), Photo(data=b"img"))
        assert "shipping" not in product

    def test_photo_required_on_create(self, db, books):
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_product(db, self.fields(books), None)
        assert exc.value.message == "Photo is Required"

    def test_photo_size_limit(self, db, books):
        catalog.create_product(db, self.fields(books, name="Edge"), Photo(data=b"x" * 1_000_000))
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_product(db, self.fields(books), Photo(data=b"x" * 1_000_001))
        assert exc.value.message == "Photo should be less then 1mb"

    def test_negative_numbers(self, db, books):
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_product(db, self.fields(books, price=-1), Photo(data=b"img"))
        assert exc.value.message == "Price cannot be negative"
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_product(db, self.fields(books, quantity=-1), Photo(data=b"img"))
        assert exc.value.message == "Quantity cannot be negative"

    @pytest.mark.parametrize("price", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_price(self, db, books, price):
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_product(db, self.fields(books, price=price), Photo(data=b"img"))
        assert exc.value.message == "Price is invalid"
        assert db["product"].count_documents({}) == 0

    def test_update_recomputes_slug_and_keeps_photo(self, db, books, food):
        product = catalog.create_product(db, self.fields(books), Photo(data=b"img"))
        updated = catalog.update_product(
            db, str(product["_id"]), self.fields(food, name="Renamed thing", price=99, shipping=None)
        )
        assert updated["slug"] == "renamed-thing"
        assert updated["price"] == 99
        assert updated["category"] == food["_id"]
        assert "shipping" not in updated
        assert db["product"].find_one({"_id": product["_id"]})["photo"]["data"] == b"img"

    def test_update_missing_product(self, db, books):
        with pytest.raises(NotFound):
            catalog.update_product(db, str(ObjectId()), self.fields(books))

    def test_delete(self, db, books):
        product = make_product(db, "Gone", 1, books)
        catalog.delete_product(db, str(product["_id"]))
        assert db["product"].count_documents({}) == 0


class TestCategories:
    def test_create_and_duplicate(self, db):
        category, created = catalog.create_category(db, "Garden Tools")
        assert created is True
        assert category["slug"] == "garden-tools"
        again, created = catalog.create_category(db, "Garden Tools")
        assert created is False
        assert again["_id"] == category["_id"]

    def test_name_required(self, db):
        with pytest.raises(ValidationFailed) as exc:
            catalog.create_category(db, "  ")
        assert exc.value.message == "Name is required"

    def test_update(self, db, books):
        updated = catalog.update_category(db, str(books["_id"]), "Comic Books")
        assert updated["slug"] == "comic-books"

    def test_delete_does_not_cascade(self, db, books):
        make_product(db, "Kept", 1, books)
        catalog.delete_category(db, str(books["_id"]))
        assert db["category"].count_documents({}) == 0
        assert db["product"].count_documents({}) == 1
