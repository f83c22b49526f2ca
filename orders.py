"""Order placement and order administration.

Checkout runs as a sequence of single-document operations against MongoDB:

1. stock check (read only)
2. stock reservation, one atomic ``$inc`` per product guarded by ``stock >= qty``
3. order number reservation on the ``counter`` collection
4. order insert, then the customer's profile counters

Steps 2-4 form a saga. When a later step fails, every stock reservation
already applied is released and an inserted order is removed, so a failed
checkout leaves inventory as it found it. Reserved order numbers are never
handed back, which means numbering can have gaps.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
from bson import ObjectId
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import get_product_by_reference
from database import create_document, get_documents, serialize_doc, utcnow
from errors import InsufficientStockError, NotFoundError, ValidationError
from pricing import compute_total, derive_stock_status, get_current_price
from schemas import ORDER_STATUSES, Order, OrderItem

logger = structlog.get_logger(__name__)

ORDER_COUNTER_ID = "orders"
# Orders in these states do not count towards revenue
VOID_STATUSES = ("cancelled", "refunded")


class StockIssue(BaseModel):
    product_id: str
    name: str
    requested: int
    available: int


class StockCheckResult(BaseModel):
    ok: bool
    issues: List[StockIssue] = []


class StockMutation(BaseModel):
    product_id: str
    quantity: int
    stock_tracked: bool


def _object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _find_product(db: Database, product_id: str) -> Optional[Dict[str, Any]]:
    oid = _object_id(product_id)
    if oid is None:
        return None
    return db["product"].find_one({"_id": oid})


def _merge_quantities(items: Iterable[Any]) -> "OrderedDict[str, int]":
    merged: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        if hasattr(item, "model_dump"):
            item = item.model_dump()
        quantity = int(item.get("quantity", 1))
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product_id = str(item["product_id"])
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def _tracks_stock(product: Dict[str, Any]) -> bool:
    return not product.get("unlimited") and product.get("stock") is not None


# Stock checker

def check_stock(db: Database, items: Iterable[Any]) -> StockCheckResult:
    issues: List[StockIssue] = []
    for product_id, requested in _merge_quantities(items).items():
        product = _find_product(db, product_id)
        if product is None:
            issues.append(StockIssue(product_id=product_id, name="Unknown product", requested=requested, available=0))
            continue
        if not _tracks_stock(product) or product["stock"] >= requested:
            continue
        issues.append(
            StockIssue(
                product_id=product_id,
                name=product.get("name", ""),
                requested=requested,
                available=max(int(product["stock"]), 0),
            )
        )
    return StockCheckResult(ok=not issues, issues=issues)


# Product mutator

def _refresh_stock_status(db: Database, product: Dict[str, Any]) -> None:
    if not _tracks_stock(product):
        return
    status = derive_stock_status(product["stock"])
    if status != product.get("stock_status"):
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"stock_status": status}})


def reserve_stock(db: Database, product_id: str, quantity: int) -> StockMutation:
    product = _find_product(db, product_id)
    if product is None:
        raise InsufficientStockError(
            "A product in your cart is no longer available",
            issues=[{"product_id": product_id, "name": "Unknown product", "requested": quantity, "available": 0}],
        )

    products = db["product"]
    if not _tracks_stock(product):
        res = products.update_one({"_id": product["_id"]}, {"$inc": {"sales_count": quantity}})
        if res.matched_count == 0:
            raise NotFoundError(f"Product {product.get('name', product_id)} no longer exists")
        return StockMutation(product_id=product_id, quantity=quantity, stock_tracked=False)

    updated = products.find_one_and_update(
        {"_id": product["_id"], "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "sales_count": quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = products.find_one({"_id": product["_id"]}) or {}
        available = int(current.get("stock") or 0)
        logger.info("stock_reservation_refused", product_id=product_id, requested=quantity, available=available)
        raise InsufficientStockError(
            f"Insufficient stock for {product.get('name', product_id)}",
            issues=[{
                "product_id": product_id,
                "name": product.get("name", ""),
                "requested": quantity,
                "available": available,
            }],
        )
    _refresh_stock_status(db, updated)
    return StockMutation(product_id=product_id, quantity=quantity, stock_tracked=True)


def release_stock(db: Database, mutation: StockMutation) -> None:
    inc = {"sales_count": -mutation.quantity}
    if mutation.stock_tracked:
        inc["stock"] = mutation.quantity
    updated = db["product"].find_one_and_update(
        {"_id": ObjectId(mutation.product_id)},
        {"$inc": inc},
        return_document=ReturnDocument.AFTER,
    )
    if updated is not None:
        _refresh_stock_status(db, updated)
    logger.info("stock_released", product_id=mutation.product_id, quantity=mutation.quantity)


def release_stock_mutations(db: Database, mutations: List[StockMutation]) -> None:
    for mutation in reversed(mutations):
        try:
            release_stock(db, mutation)
        except Exception:
            # Keep releasing the others; this one needs a manual fix
            logger.exception("stock_release_failed", product_id=mutation.product_id, quantity=mutation.quantity)


def apply_stock_mutations(db: Database, items: Iterable[Any]) -> List[StockMutation]:
    """Reserve stock for every line item, all or nothing."""
    applied: List[StockMutation] = []
    try:
        for product_id, quantity in _merge_quantities(items).items():
            applied.append(reserve_stock(db, product_id, quantity))
    except Exception:
        release_stock_mutations(db, applied)
        raise
    return applied


# Order counter

def init_order_counter(db: Database) -> None:
    db["counter"].update_one(
        {"_id": ORDER_COUNTER_ID},
        {"$setOnInsert": {"current": 0, "created_at": utcnow()}},
        upsert=True,
    )


def next_order_number(db: Database) -> int:
    counter = db["counter"].find_one_and_update(
        {"_id": ORDER_COUNTER_ID},
        {"$inc": {"current": 1}, "$set": {"updated_at": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["current"])


# Order writer

def _image_list(images: Any) -> List[str]:
    if not images:
        return []
    if isinstance(images, dict):
        return [str(v) for v in images.values()]
    return [str(v) for v in images]


def write_order(
    db: Database,
    lines: List[Dict[str, Any]],
    shipping_info: Dict[str, Any],
    order_number: int,
    user_id: Optional[str] = None,
    user_email: Optional[str] = None,
    status: str = "pending",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Insert an order built from product snapshots.

    Each line is a product document with the ordered ``quantity`` added. The
    unit price stored on the order is the price in effect right now.
    """
    now = now or utcnow()
    items = [
        OrderItem(
            id=str(line.get("id") or line["_id"]),
            name=line.get("name", ""),
            price=get_current_price(line, now),
            quantity=int(line["quantity"]),
            images=_image_list(line.get("images")),
        )
        for line in lines
    ]
    order = Order(
        order_number=order_number,
        user_id=user_id,
        user_email=user_email,
        items=items,
        shipping_info=shipping_info,
        total=compute_total(lines, now),
        status=status,
    )
    order_id = create_document(db, "order", order)
    return {"id": order_id, "order_number": order_number, "total": order.total}


def record_user_order(db: Database, user_id: str) -> None:
    db["user"].update_one(
        {"_id": ObjectId(user_id)},
        {"$inc": {"order_history": 1, "orders": 1}, "$set": {"last_order_date": utcnow()}},
    )


def _order_lines(db: Database, quantities: "OrderedDict[str, int]") -> List[Dict[str, Any]]:
    lines = []
    for product_id, quantity in quantities.items():
        product = _find_product(db, product_id)
        if product is None:
            raise NotFoundError("A product in your cart is no longer available")
        lines.append({**product, "quantity": quantity})
    return lines


def _discard_order(db: Database, order_id: str) -> None:
    try:
        db["order"].delete_one({"_id": ObjectId(order_id)})
    except Exception:
        logger.exception("order_discard_failed", order_id=order_id)


def place_order(
    db: Database,
    user: Dict[str, Any],
    items: Iterable[Any],
    shipping_info: Dict[str, Any],
) -> Dict[str, Any]:
    quantities = _merge_quantities(items)
    if not quantities:
        raise ValidationError("Your cart is empty")
    log = logger.bind(user_id=user.get("id"), products=len(quantities))

    result = check_stock(db, [{"product_id": k, "quantity": v} for k, v in quantities.items()])
    if not result.ok:
        log.info("checkout_blocked_by_stock", issues=len(result.issues))
        raise InsufficientStockError(
            "Some items are not available in the requested quantity",
            issues=[issue.model_dump() for issue in result.issues],
        )

    applied = apply_stock_mutations(db, [{"product_id": k, "quantity": v} for k, v in quantities.items()])
    order: Optional[Dict[str, Any]] = None
    try:
        lines = _order_lines(db, quantities)
        order_number = next_order_number(db)
        order = write_order(
            db,
            lines,
            shipping_info,
            order_number,
            user_id=user.get("id"),
            user_email=user.get("email"),
        )
        record_user_order(db, user["id"])
    except Exception:
        log.exception("checkout_rolled_back", order_id=order["id"] if order else None)
        if order is not None:
            _discard_order(db, order["id"])
        release_stock_mutations(db, applied)
        raise

    log.info("order_placed", order_id=order["id"], order_number=order["order_number"], total=order["total"])
    return order


def create_manual_order(
    db: Database,
    items: Iterable[Dict[str, Any]],
    user_email: str,
    status: str = "pending",
) -> Dict[str, Any]:
    """Back-office order entry by product reference. Stock is left untouched."""
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {status}")
    lines = []
    for item in items:
        reference = item["product_reference"]
        product = get_product_by_reference(db, reference)
        if product is None:
            raise NotFoundError(f"No product found with reference {reference}")
        lines.append({**product, "quantity": int(item.get("quantity", 1))})
    if not lines:
        raise ValidationError("An order needs at least one item")

    order_number = next_order_number(db)
    order = write_order(db, lines, {"email": user_email}, order_number, user_email=user_email, status=status)
    logger.info("manual_order_created", order_id=order["id"], order_number=order_number)
    return order


# Administration and history

def list_orders(db: Database, status: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    query = {"status": status} if status else {}
    docs = get_documents(db, "order", query, limit=limit, sort=[("created_at", -1)])
    return [serialize_doc(d) for d in docs]


def get_order(db: Database, order_id: Union[str, ObjectId]) -> Dict[str, Any]:
    oid = _object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order not found")
    return serialize_doc(order)


def update_order_status(db: Database, order_id: ObjectId, status: str) -> Dict[str, Any]:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {status}")
    res = db["order"].update_one({"_id": order_id}, {"$set": {"status": status, "updated_at": utcnow()}})
    if res.matched_count == 0:
        raise NotFoundError("Order not found")
    logger.info("order_status_updated", order_id=str(order_id), status=status)
    return serialize_doc(db["order"].find_one({"_id": order_id}))


def list_user_orders(db: Database, user_id: str) -> List[Dict[str, Any]]:
    docs = get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", -1)])
    return [serialize_doc(d) for d in docs]


def order_stats(db: Database) -> Dict[str, Any]:
    by_status = {status: 0 for status in ORDER_STATUSES}
    revenue = 0
    count = 0
    for order in db["order"].find({}, {"status": 1, "total": 1}):
        count += 1
        status = order.get("status", "pending")
        by_status[status] = by_status.get(status, 0) + 1
        if status not in VOID_STATUSES:
            revenue += int(order.get("total") or 0)
    return {"orders": count, "revenue": revenue, "by_status": by_status}
