"""
Catalog queries and admin writes over the product and category collections.

Every function takes the request-scoped database handle. Reads never return
photo bytes; the photo is only served by get_product_photo.
"""
import re
import math
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING
from pymongo.database import Database
from slugify import slugify

from database import create_document, get_documents, now, populate, to_object_id
from errors import NotFound, ValidationFailed
from schemas import MAX_PHOTO_BYTES, Category, Photo, Product

logger = logging.getLogger(__name__)

PER_PAGE = 6
LIST_LIMIT = 12
RELATED_LIMIT = 3
# skip is sent as a BSON int64
MAX_SKIP = 2 ** 63 - 1

NO_PHOTO = {"photo": 0}
NEWEST_FIRST = [("created_at", DESCENDING)]


def normalize_page(page: Any) -> int:
    """Anything that is not a positive integer means the first page"""
    try:
        number = int(page)
    except (TypeError, ValueError):
        return 1
    return number if number > 0 else 1


def _with_categories(db: Database, products: List[dict]) -> List[dict]:
    return populate(db, products, "category", "category")


# Reads

def list_products(db: Database, limit: int = LIST_LIMIT) -> Tuple[List[dict], int]:
    products = get_documents(db, "product", {}, NO_PHOTO, sort=NEWEST_FIRST, limit=limit)
    _with_categories(db, products)
    return products, len(products)


def list_products_page(db: Database, page: Any, per_page: int = PER_PAGE) -> List[dict]:
    skip = (normalize_page(page) - 1) * per_page
    if skip > MAX_SKIP:
        return []
    return get_documents(db, "product", {}, NO_PHOTO, sort=NEWEST_FIRST, skip=skip, limit=per_page)


def get_product_by_slug(db: Database, slug: str) -> dict:
    product = db["product"].find_one({"slug": slug}, NO_PHOTO)
    if not product:
        raise NotFound("Product not found")
    _with_categories(db, [product])
    return product


def get_product_photo(db: Database, product_id: str) -> Tuple[bytes, str]:
    product = db["product"].find_one({"_id": to_object_id(product_id, "product id")}, {"photo": 1})
    if not product:
        raise NotFound("Product not found")
    photo = product.get("photo") or {}
    if not photo.get("data"):
        raise NotFound("Photo not found")
    return bytes(photo["data"]), photo.get("content_type") or "application/octet-stream"


def build_filter_query(checked: Optional[List[str]] = None, radio: Optional[List[Optional[float]]] = None) -> Dict[str, Any]:
    """
    Compose the product filter from two independent predicates.

    checked: category ids; empty or missing means any category.
    radio: [min, max] price bounds, both inclusive; a missing or null max
    leaves the range open upwards, an empty list means any price.
    """
    query: Dict[str, Any] = {}
    if checked:
        query["category"] = {"$in": [to_object_id(c, "category id") for c in checked]}
    if radio:
        low = radio[0]
        high = radio[1] if len(radio) > 1 else None
        price: Dict[str, Any] = {}
        if low is not None:
            price["$gte"] = low
        if high is not None:
            price["$lte"] = high
        if price:
            query["price"] = price
    return query


def filter_products(db: Database, checked: Optional[List[str]] = None, radio: Optional[List[Optional[float]]] = None) -> List[dict]:
    return get_documents(db, "product", build_filter_query(checked, radio), NO_PHOTO)


def search_products(db: Database, keyword: str) -> List[dict]:
    pattern = re.escape(keyword or "")
    query = {
        "$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    }
    return get_documents(db, "product", query, NO_PHOTO)


def count_products(db: Database) -> int:
    return db["product"].estimated_document_count()


def products_in_category(db: Database, slug: str) -> Tuple[Optional[dict], List[dict]]:
    category = db["category"].find_one({"slug": slug})
    if not category:
        return None, []
    products = get_documents(db, "product", {"category": category["_id"]}, NO_PHOTO)
    _with_categories(db, products)
    return category, products


def related_products(db: Database, pid: Optional[str], cid: Optional[str], limit: int = RELATED_LIMIT) -> List[dict]:
    if not pid:
        raise ValidationFailed("pid is missing")
    if not cid:
        raise ValidationFailed("cid is missing")
    query = {
        "category": to_object_id(cid, "cid"),
        "_id": {"$ne": to_object_id(pid, "pid")},
    }
    products = get_documents(db, "product", query, NO_PHOTO, limit=limit)
    return _with_categories(db, products)


# Product writes

def validate_product_fields(fields: Dict[str, Any], photo: Optional[Photo], photo_required: bool) -> None:
    for key, label in (
        ("name", "Name"),
        ("description", "Description"),
        ("price", "Price"),
        ("category", "Category"),
        ("quantity", "Quantity"),
    ):
        value = fields.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationFailed(f"{label} is Required")
    if photo_required and photo is None:
        raise ValidationFailed("Photo is Required")
    if photo is not None and len(photo.data) > MAX_PHOTO_BYTES:
        raise ValidationFailed("Photo should be less then 1mb")
    if not math.isfinite(fields["price"]):
        raise ValidationFailed("Price is invalid")
    if fields["price"] < 0:
        raise ValidationFailed("Price cannot be negative")
    if fields["quantity"] < 0:
        raise ValidationFailed("Quantity cannot be negative")


def _product_document(fields: Dict[str, Any], photo: Optional[Photo]) -> dict:
    product = Product(
        name=fields["name"],
        slug=slugify(fields["name"]),
        description=fields["description"],
        price=fields["price"],
        category=to_object_id(fields["category"], "category"),
        quantity=fields["quantity"],
        shipping=fields.get("shipping"),
        photo=photo,
    )
    return product.model_dump(exclude_none=True)


def create_product(db: Database, fields: Dict[str, Any], photo: Optional[Photo]) -> dict:
    validate_product_fields(fields, photo, photo_required=True)
    doc = _product_document(fields, photo)
    product_id = create_document(db, "product", doc)
    logger.info("created product %s (%s)", product_id, doc["slug"])
    return db["product"].find_one({"_id": product_id}, NO_PHOTO)


def update_product(db: Database, product_id: str, fields: Dict[str, Any], photo: Optional[Photo] = None) -> dict:
    validate_product_fields(fields, photo, photo_required=False)
    oid = to_object_id(product_id, "product id")
    doc = _product_document(fields, photo)
    doc["updated_at"] = now()
    unset = {} if "shipping" in doc else {"shipping": ""}
    update: Dict[str, Any] = {"$set": doc}
    if unset:
        update["$unset"] = unset
    result = db["product"].update_one({"_id": oid}, update)
    if result.matched_count == 0:
        raise NotFound("Product not found")
    return db["product"].find_one({"_id": oid}, NO_PHOTO)


def delete_product(db: Database, product_id: str) -> None:
    # Orders keep their references; they populate to None afterwards
    db["product"].delete_one({"_id": to_object_id(product_id, "product id")})


# Categories

def list_categories(db: Database) -> List[dict]:
    return get_documents(db, "category", {})


def get_category(db: Database, slug: str) -> Optional[dict]:
    return db["category"].find_one({"slug": slug})


def create_category(db: Database, name: Optional[str]) -> Tuple[dict, bool]:
    """Return (category, created); an existing category of that name is returned as-is"""
    if not name or not name.strip():
        raise ValidationFailed("Name is required")
    existing = db["category"].find_one({"name": name})
    if existing:
        return existing, False
    category_id = create_document(db, "category", Category(name=name, slug=slugify(name)))
    return db["category"].find_one({"_id": category_id}), True


def update_category(db: Database, category_id: str, name: Optional[str]) -> dict:
    if not name or not name.strip():
        raise ValidationFailed("Name is required")
    oid = to_object_id(category_id, "category id")
    result = db["category"].update_one(
        {"_id": oid},
        {"$set": {"name": name, "slug": slugify(name), "updated_at": now()}},
    )
    if result.matched_count == 0:
        raise NotFound("Category not found")
    return db["category"].find_one({"_id": oid})


def delete_category(db: Database, category_id: str) -> None:
    # No cascade: products of this category keep a dangling reference
    db["category"].delete_one({"_id": to_object_id(category_id, "category id")})

