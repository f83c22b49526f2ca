import re
from typing import Any, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from pymongo.database import Database

from database import create_document, get_documents, serialize_doc, utcnow
from errors import NotFoundError, SlugExistsError, ValidationError
from pricing import IN_STOCK, compute_discounted_price, derive_stock_status, is_discount_valid
from schemas import Category, Product, Subcategory

logger = structlog.get_logger(__name__)

SLUG_MAX_LENGTH = 50

PRODUCT_SORTS = {
    "newest": ("created_at", -1),
    "oldest": ("created_at", 1),
    "asc": ("price", 1),
    "desc": ("price", -1),
}


# Products

def _validate_product_fields(fields: Dict[str, Any], partial: bool = False) -> None:
    if not partial or "name" in fields:
        name = fields.get("name")
        if not name or not str(name).strip():
            raise ValidationError("Product name is required")
        if len(name) > 100:
            raise ValidationError("Product name must be less than 100 characters")
    description = fields.get("description")
    if description and len(description) > 1000:
        raise ValidationError("Description must be less than 1000 characters")
    if not partial or "price" in fields:
        price = fields.get("price")
        if price is None or price <= 0:
            raise ValidationError("Price must be greater than 0")
    stock = fields.get("stock")
    if stock is not None and stock < 0:
        raise ValidationError("Stock cannot be negative")
    percentage = fields.get("discount_percentage")
    if percentage is not None and not 0 <= percentage <= 100:
        raise ValidationError("Discount percentage must be between 0 and 100")
    discounted = fields.get("discounted_price")
    if discounted is not None and discounted < 0:
        raise ValidationError("Discounted price cannot be negative")


def _fill_discounted_price(fields: Dict[str, Any], base: Optional[Dict[str, Any]] = None) -> None:
    merged = {**(base or {}), **fields}
    if merged.get("has_discount") and (merged.get("discount_percentage") or 0) > 0 and merged.get("price"):
        fields["discounted_price"] = compute_discounted_price(merged["price"], merged["discount_percentage"])


def create_product(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(data)
    fields.pop("sales_count", None)
    _validate_product_fields(fields)
    fields["name"] = fields["name"].strip()

    if fields.get("unlimited"):
        fields["stock"] = None
        fields["stock_status"] = fields.get("stock_status") or IN_STOCK
    elif not fields.get("stock_status"):
        fields["stock_status"] = derive_stock_status(fields.get("stock"))
    if fields.get("discounted_price") is None:
        _fill_discounted_price(fields)

    doc = Product(**fields).model_dump()
    doc["sales_count"] = 0
    if doc.get("stock") is None:
        doc.pop("stock")
    product_id = create_document(db, "product", doc)
    logger.info("product_created", product_id=product_id, name=doc["name"])
    return serialize_doc(db["product"].find_one({"_id": ObjectId(product_id)}))


def update_product(db: Database, product_id: ObjectId, updates: Dict[str, Any]) -> Dict[str, Any]:
    if "sales_count" in updates:
        raise ValidationError("Sales count can only change through orders")
    if not updates:
        raise ValidationError("No fields to update")
    _validate_product_fields(updates, partial=True)

    existing = db["product"].find_one({"_id": product_id})
    if not existing:
        raise NotFoundError("Product not found")

    updates = dict(updates)
    unlimited = updates.get("unlimited", existing.get("unlimited", False))
    if "stock" in updates and updates["stock"] is None:
        # Clearing stock would silently turn off stock tracking
        if not unlimited:
            raise ValidationError("Stock is required unless the product is unlimited")
        updates.pop("stock")

    unset: Dict[str, str] = {}
    if updates.get("unlimited"):
        updates.pop("stock", None)
        unset["stock"] = ""
    elif updates.get("stock") is not None and not updates.get("stock_status"):
        updates["stock_status"] = derive_stock_status(updates["stock"])

    if "discounted_price" not in updates and updates.keys() & {"price", "discount_percentage", "has_discount"}:
        _fill_discounted_price(updates, existing)

    updates["updated_at"] = utcnow()
    operations: Dict[str, Any] = {"$set": updates}
    if unset:
        operations["$unset"] = unset
    db["product"].update_one({"_id": product_id}, operations)
    logger.info("product_updated", product_id=str(product_id), fields=sorted(updates))
    return serialize_doc(db["product"].find_one({"_id": product_id}))


def delete_product(db: Database, product_id: ObjectId) -> None:
    res = db["product"].delete_one({"_id": product_id})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    logger.info("product_deleted", product_id=str(product_id))


def get_product(db: Database, product_id: ObjectId) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": product_id})
    if not product:
        raise NotFoundError("Product not found")
    return serialize_doc(product)


def get_product_by_reference(db: Database, reference: Union[str, int]) -> Optional[Dict[str, Any]]:
    # References were entered both as numbers and as strings
    candidates: List[Any] = [reference, str(reference)]
    if isinstance(reference, str) and reference.isdigit():
        candidates.append(int(reference))
    return db["product"].find_one({"reference": {"$in": candidates}})


def list_products(
    db: Database,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    brand: Optional[str] = None,
    q: Optional[str] = None,
    sort: Optional[str] = None,
    limit: int = 20,
    page: int = 1,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if category and category != "all":
        query["category"] = category
    if subcategory:
        query["subcategory"] = subcategory
    if brand:
        query["brand"] = brand
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}}
            for field in ("name", "description", "brand", "category")
        ]
    if sort and sort not in PRODUCT_SORTS:
        raise ValidationError(f"Unknown sort: {sort}")

    collection = db["product"]
    total = collection.count_documents(query)
    skip = max(page - 1, 0) * limit
    cursor = collection.find(query).sort([PRODUCT_SORTS[sort or "newest"]]).skip(skip).limit(limit)
    items = [serialize_doc(d) for d in cursor]
    return {"items": items, "total": total, "page": page, "limit": limit}


def popular_products(db: Database, limit: int = 8) -> List[Dict[str, Any]]:
    cursor = db["product"].find({}).sort([("sales_count", -1)]).limit(limit)
    return [serialize_doc(d) for d in cursor]


def discounted_products(db: Database, limit: int = 8) -> List[Dict[str, Any]]:
    cursor = db["product"].find({"has_discount": True, "discount_percentage": {"$gt": 0}})
    products = [d for d in cursor if is_discount_valid(d)]
    return [serialize_doc(d) for d in products[:limit]]


# Categories

def generate_slug(name: Optional[str]) -> str:
    if not name:
        return ""
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    return slug[:SLUG_MAX_LENGTH]


def is_slug_unique(db: Database, slug: str, exclude_id: Optional[ObjectId] = None) -> bool:
    query: Dict[str, Any] = {"slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["category"].count_documents(query) == 0


def _validate_category_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("Name and slug are required")
    if len(name) > 50:
        raise ValidationError("Category name must be less than 50 characters")
    return name.strip()


def create_category(
    db: Database, name: str, slug: Optional[str] = None, description: Optional[str] = None
) -> Dict[str, Any]:
    name = _validate_category_name(name)
    slug = generate_slug(slug or name)
    if not slug:
        raise ValidationError("Name and slug are required")
    if not is_slug_unique(db, slug):
        raise SlugExistsError("A category with this slug already exists")

    category = Category(name=name, slug=slug, description=description)
    category_id = create_document(db, "category", category)
    logger.info("category_created", category_id=category_id, slug=slug)
    return serialize_doc(db["category"].find_one({"_id": ObjectId(category_id)}))


def update_category(db: Database, category_id: ObjectId, updates: Dict[str, Any]) -> Dict[str, Any]:
    existing = db["category"].find_one({"_id": category_id})
    if not existing:
        raise NotFoundError("Category not found")
    if not updates:
        raise ValidationError("No fields to update")

    updates = dict(updates)
    if "name" in updates:
        updates["name"] = _validate_category_name(updates["name"])
        slug = generate_slug(updates["name"])
        if not slug:
            raise ValidationError("Name and slug are required")
        if not is_slug_unique(db, slug, exclude_id=category_id):
            raise SlugExistsError("A category with this slug already exists")
        updates["slug"] = slug

    updates["updated_at"] = utcnow()
    db["category"].update_one({"_id": category_id}, {"$set": updates})
    if updates.get("slug") and updates["slug"] != existing.get("slug"):
        db["subcategory"].update_many(
            {"category_id": str(category_id)}, {"$set": {"category_slug": updates["slug"]}}
        )
    return serialize_doc(db["category"].find_one({"_id": category_id}))


def delete_category(db: Database, category_id: ObjectId) -> Dict[str, int]:
    """Delete a category after deleting all of its subcategories.

    The two deletes are not atomic: a failure between them leaves the
    category in place with no children, never orphaned subcategories.
    """
    if not db["category"].find_one({"_id": category_id}):
        raise NotFoundError("Category not found")
    removed = db["subcategory"].delete_many({"category_id": str(category_id)}).deleted_count
    db["category"].delete_one({"_id": category_id})
    logger.info("category_deleted", category_id=str(category_id), subcategories_deleted=removed)
    return {"deleted_subcategories": removed}


def list_categories(db: Database) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in get_documents(db, "category", sort=[("created_at", -1)])]


def get_category_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFoundError("Category not found")
    return serialize_doc(category)


# Subcategories

def is_subcategory_slug_unique(db: Database, slug: str, category_id: str) -> bool:
    return db["subcategory"].count_documents({"slug": slug, "category_id": category_id}) == 0


def create_subcategory(
    db: Database, name: str, category_id: str, description: Optional[str] = None
) -> Dict[str, Any]:
    if not ObjectId.is_valid(category_id):
        raise NotFoundError("Parent category not found")
    parent = db["category"].find_one({"_id": ObjectId(category_id)})
    if not parent:
        raise NotFoundError("Parent category not found")

    name = _validate_category_name(name)
    slug = generate_slug(name)
    if not slug:
        raise ValidationError("Name and slug are required")
    if not is_subcategory_slug_unique(db, slug, category_id):
        raise SlugExistsError("A subcategory with this name already exists in this category")

    subcategory = Subcategory(
        name=name,
        slug=slug,
        category_id=category_id,
        category_slug=parent["slug"],
        description=description,
    )
    subcategory_id = create_document(db, "subcategory", subcategory)
    logger.info("subcategory_created", subcategory_id=subcategory_id, category_id=category_id, slug=slug)
    return serialize_doc(db["subcategory"].find_one({"_id": ObjectId(subcategory_id)}))


def list_subcategories(db: Database, category_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = {"category_id": category_id} if category_id else {}
    return [serialize_doc(d) for d in db["subcategory"].find(query).sort([("name", 1)])]


def delete_subcategory(db: Database, subcategory_id: ObjectId) -> None:
    res = db["subcategory"].delete_one({"_id": subcategory_id})
    if res.deleted_count == 0:
        raise NotFoundError("Subcategory not found")
