"""Per-user cart and the checkout steps that run on top of it.

Checkout moves CART(1) -> SHIPPING(2) -> CONFIRM(3) and ends with the order
being placed. The current step lives on the cart document and every
transition is checked here, so a client cannot skip a step. Editing the cart
sends the checkout back to step 1. While an order is being placed the cart
sits at PLACING(4) and refuses edits and a second confirm.
"""

from enum import IntEnum
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import utcnow
from errors import CheckoutStateError, NotFoundError, ValidationError
from orders import place_order
from pricing import compute_total, get_current_price
from users import saved_shipping_info

logger = structlog.get_logger(__name__)


class CheckoutStep(IntEnum):
    CART = 1
    SHIPPING = 2
    CONFIRM = 3
    # Order placement in progress; the cart is locked until it finishes
    PLACING = 4


def get_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        cart = {"user_id": user_id, "items": [], "checkout_step": int(CheckoutStep.CART), "shipping_info": None}
        db["cart"].insert_one(cart)
        cart = db["cart"].find_one({"user_id": user_id})
    return cart


def _save(db: Database, cart: Dict[str, Any], **fields: Any) -> None:
    fields["updated_at"] = utcnow()
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": fields})


def _step(cart: Dict[str, Any]) -> CheckoutStep:
    return CheckoutStep(cart.get("checkout_step") or CheckoutStep.CART)


def _ensure_not_placing(cart: Dict[str, Any]) -> None:
    if _step(cart) == CheckoutStep.PLACING:
        raise CheckoutStateError("Your order is being placed")


def add_item(db: Database, user_id: str, product_id: str, quantity: int = 1) -> None:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    if not ObjectId.is_valid(product_id) or not db["product"].find_one({"_id": ObjectId(product_id)}):
        raise NotFoundError("Product not found")
    cart = get_cart(db, user_id)
    _ensure_not_placing(cart)
    items = cart.get("items", [])
    # merge if same product
    for it in items:
        if it["product_id"] == product_id:
            it["quantity"] = int(it.get("quantity", 1)) + int(quantity)
            break
    else:
        items.append({"product_id": product_id, "quantity": int(quantity)})
    _save(db, cart, items=items, checkout_step=int(CheckoutStep.CART))


def update_item(
    db: Database, user_id: str, product_id: str, quantity: Optional[int] = None, remove: bool = False
) -> None:
    cart = get_cart(db, user_id)
    _ensure_not_placing(cart)
    new_items = []
    for it in cart.get("items", []):
        if it["product_id"] == product_id:
            if remove or (quantity is not None and quantity <= 0):
                continue
            if quantity is not None:
                it["quantity"] = int(quantity)
        new_items.append(it)
    _save(db, cart, items=new_items, checkout_step=int(CheckoutStep.CART))


def clear_cart(db: Database, user_id: str) -> None:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {
            "items": [],
            "checkout_step": int(CheckoutStep.CART),
            "shipping_info": None,
            "updated_at": utcnow(),
        }},
        upsert=True,
    )


def cart_summary(db: Database, user_id: str) -> Dict[str, Any]:
    cart = get_cart(db, user_id)
    items: List[Dict[str, Any]] = []
    lines: List[Dict[str, Any]] = []
    for it in cart.get("items", []):
        product_id = it["product_id"]
        product = db["product"].find_one({"_id": ObjectId(product_id)}) if ObjectId.is_valid(product_id) else None
        entry: Dict[str, Any] = {"product_id": product_id, "quantity": it["quantity"], "product": None, "unit_price": None}
        if product:
            entry["product"] = {k: v for k, v in product.items() if k != "_id"}
            entry["product"]["id"] = product_id
            entry["unit_price"] = get_current_price(product)
            lines.append({**product, "quantity": it["quantity"]})
        items.append(entry)
    return {
        "id": str(cart["_id"]),
        "user_id": user_id,
        "items": items,
        "total": compute_total(lines),
        "checkout_step": int(_step(cart)),
        "shipping_info": cart.get("shipping_info"),
    }


# Checkout steps

def start_checkout(db: Database, user_id: str) -> CheckoutStep:
    cart = get_cart(db, user_id)
    _ensure_not_placing(cart)
    if not cart.get("items"):
        raise CheckoutStateError("Your cart is empty. Add items to continue.")
    step = _step(cart)
    if step == CheckoutStep.CART:
        _save(db, cart, checkout_step=int(CheckoutStep.SHIPPING))
        return CheckoutStep.SHIPPING
    return step


def submit_shipping(db: Database, user_id: str, shipping_info: Optional[Dict[str, Any]] = None) -> CheckoutStep:
    """Store the shipping address and move to the confirm step.

    With no address given, the one saved on the customer's profile is used.
    """
    cart = get_cart(db, user_id)
    _ensure_not_placing(cart)
    if _step(cart) == CheckoutStep.CART:
        raise CheckoutStateError("Start the checkout before entering a shipping address")
    if shipping_info is None:
        shipping_info = saved_shipping_info(db, user_id)
        if not shipping_info:
            raise ValidationError("Enter a shipping address to continue")
    _save(db, cart, shipping_info=shipping_info, checkout_step=int(CheckoutStep.CONFIRM))
    return CheckoutStep.CONFIRM


def step_back(db: Database, user_id: str) -> CheckoutStep:
    cart = get_cart(db, user_id)
    _ensure_not_placing(cart)
    step = _step(cart)
    if step == CheckoutStep.CART:
        raise CheckoutStateError("Already at the first checkout step")
    previous = CheckoutStep(step - 1)
    _save(db, cart, checkout_step=int(previous))
    return previous


def confirm_checkout(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    # Claiming the cart is a single findAndModify, so only one confirm per cart gets past here
    cart = db["cart"].find_one_and_update(
        {"user_id": user["id"], "checkout_step": int(CheckoutStep.CONFIRM), "shipping_info": {"$ne": None}},
        {"$set": {"checkout_step": int(CheckoutStep.PLACING), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if cart is None:
        raise CheckoutStateError("Review your shipping details before confirming the order")

    try:
        order = place_order(db, user, cart.get("items", []), cart["shipping_info"])
    except Exception:
        # The cart goes back to the confirm step untouched
        db["cart"].update_one(
            {"_id": cart["_id"], "checkout_step": int(CheckoutStep.PLACING)},
            {"$set": {"checkout_step": int(CheckoutStep.CONFIRM), "updated_at": utcnow()}},
        )
        raise
    clear_cart(db, user["id"])
    logger.info("checkout_completed", user_id=user["id"], order_id=order["id"])
    return order
