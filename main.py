from datetime import date
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from pymongo.database import Database
from pymongo.errors import PyMongoError

import cart as cart_service
import catalog
import database
import orders as order_service
import todos as todo_service
import users as user_service
from database import get_db, parse_object_id
from errors import BackendError, NotFoundError, ShopError
from schemas import (
    AccountDeletion,
    CartItem,
    CategoryIn,
    CategoryUpdate,
    ManualOrderIn,
    OrderStatusUpdate,
    ProductIn,
    ProfileUpdate,
    ProductUpdate,
    RoleUpdate,
    ShippingInfo,
    SubcategoryIn,
    TodoIn,
    TodoUpdate,
    UpdateCartItem,
    User as UserSchema,
)
from security import (
    create_access_token,
    get_current_user,
    hash_password,
    public_user,
    require_admin,
    verify_password,
)
from settings import ADMIN_EMAILS, CORS_ORIGINS, PORT, configure_logging

logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    configure_logging()
    if database.db is not None:
        order_service.init_order_counter(database.db)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PyMongoError)
async def backend_error_handler(request: Request, exc: PyMongoError):
    error = BackendError(
        "Service temporarily unavailable, please try again",
        internal_details=f"{request.url.path}: {exc}",
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Auth models
class RegisterInput(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/register", response_model=TokenResponse)
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    if len(payload.password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
    user_model = UserSchema(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        role="admin" if email in ADMIN_EMAILS else "customer",
    )
    user_id = database.create_document(db, "user", user_model)
    token = create_access_token({"sub": user_id})
    user = db["user"].find_one({"_id": parse_object_id(user_id)})
    logger.info("user_registered", user_id=user_id, role=user_model.role)
    return TokenResponse(access_token=token, user=public_user(user))


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_access_token({"sub": str(user["_id"])})
    return TokenResponse(access_token=token, user=public_user(user))


@app.get("/auth/me")
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@app.patch("/auth/me")
def update_me(
    data: ProfileUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)
):
    shipping_info = data.shipping_info.model_dump() if data.shipping_info else None
    return user_service.update_profile(db, current_user["id"], name=data.name, shipping_info=shipping_info)


@app.delete("/auth/me")
def delete_me(
    data: AccountDeletion, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)
):
    user_service.request_account_deletion(db, current_user["id"], data.password)
    return {"ok": True}


@app.get("/auth/me/orders")
def my_orders(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return order_service.list_user_orders(db, current_user["id"])


# Products
@app.get("/products")
def list_products(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    brand: Optional[str] = None,
    q: Optional[str] = None,
    sort: Optional[str] = None,
    limit: int = 20,
    page: int = 1,
    db: Database = Depends(get_db),
):
    return catalog.list_products(db, category, subcategory, brand, q, sort, limit, page)


@app.get("/products/popular")
def popular_products(limit: int = 8, db: Database = Depends(get_db)):
    return catalog.popular_products(db, limit)


@app.get("/products/sales")
def products_on_sale(limit: int = 8, db: Database = Depends(get_db)):
    return catalog.discounted_products(db, limit)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, parse_object_id(product_id, "product id"))


@app.post("/products", status_code=201)
def create_product(data: ProductIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return catalog.create_product(db, data.model_dump())


@app.put("/products/{product_id}")
def update_product(
    product_id: str, data: ProductUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    oid = parse_object_id(product_id, "product id")
    return catalog.update_product(db, oid, data.model_dump(exclude_unset=True))


@app.delete("/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, parse_object_id(product_id, "product id"))
    return {"ok": True}


# Categories
@app.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/categories/{slug}")
def get_category(slug: str, db: Database = Depends(get_db)):
    category = catalog.get_category_by_slug(db, slug)
    category["subcategories"] = catalog.list_subcategories(db, category["id"])
    return category


@app.post("/categories", status_code=201)
def create_category(data: CategoryIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return catalog.create_category(db, data.name, data.slug, data.description)


@app.put("/categories/{category_id}")
def update_category(
    category_id: str, data: CategoryUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    oid = parse_object_id(category_id, "category id")
    return catalog.update_category(db, oid, data.model_dump(exclude_unset=True))


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    result = catalog.delete_category(db, parse_object_id(category_id, "category id"))
    return {"ok": True, **result}


@app.get("/subcategories")
def list_subcategories(category_id: Optional[str] = None, db: Database = Depends(get_db)):
    return catalog.list_subcategories(db, category_id)


@app.post("/subcategories", status_code=201)
def create_subcategory(data: SubcategoryIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return catalog.create_subcategory(db, data.name, data.category_id, data.description)


@app.delete("/subcategories/{subcategory_id}")
def delete_subcategory(subcategory_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_subcategory(db, parse_object_id(subcategory_id, "subcategory id"))
    return {"ok": True}


# Cart
@app.get("/cart")
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_service.cart_summary(db, current_user["id"])


@app.post("/cart")
def add_to_cart(item: CartItem, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    parse_object_id(item.product_id, "product id")
    cart_service.add_item(db, current_user["id"], item.product_id, item.quantity)
    return {"ok": True}


@app.patch("/cart")
def update_cart(
    item: UpdateCartItem, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)
):
    cart_service.update_item(db, current_user["id"], item.product_id, item.quantity, bool(item.remove))
    return {"ok": True}


@app.delete("/cart")
def clear_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart_service.clear_cart(db, current_user["id"])
    return {"ok": True}


# Checkout
@app.get("/checkout")
def checkout_state(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_service.cart_summary(db, current_user["id"])


@app.post("/checkout/stock")
def checkout_stock(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = cart_service.get_cart(db, current_user["id"])
    return order_service.check_stock(db, cart.get("items", [])).model_dump()


@app.post("/checkout/start")
def checkout_start(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"checkout_step": int(cart_service.start_checkout(db, current_user["id"]))}


@app.post("/checkout/shipping")
def checkout_shipping(
    info: Optional[ShippingInfo] = None,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    # Without a body the address saved on the profile is used
    step = cart_service.submit_shipping(db, current_user["id"], info.model_dump() if info else None)
    return {"checkout_step": int(step)}


@app.post("/checkout/back")
def checkout_back(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"checkout_step": int(cart_service.step_back(db, current_user["id"]))}


@app.post("/checkout/confirm", status_code=201)
def checkout_confirm(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_service.confirm_checkout(db, current_user)


# Orders
@app.get("/orders")
def list_orders(
    status: Optional[str] = None,
    limit: Optional[int] = None,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return order_service.list_orders(db, status, limit)


@app.get("/orders/stats")
def order_stats(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return order_service.order_stats(db)


@app.post("/orders/manual", status_code=201)
def create_manual_order(data: ManualOrderIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    items = [item.model_dump() for item in data.items]
    return order_service.create_manual_order(db, items, str(data.user_email), data.status)


@app.get("/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = order_service.get_order(db, parse_object_id(order_id, "order id"))
    if current_user.get("role") != "admin" and order.get("user_id") != current_user["id"]:
        # Other customers' orders are reported as missing
        raise NotFoundError("Order not found")
    return order


@app.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: str, data: OrderStatusUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    return order_service.update_order_status(db, parse_object_id(order_id, "order id"), data.status)


# Users
@app.get("/users")
def list_users(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return user_service.list_users(db)


@app.patch("/users/{user_id}/role")
def update_user_role(
    user_id: str, data: RoleUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    parse_object_id(user_id, "user id")
    return user_service.set_role(db, user_id, data.role, changed_by=admin["id"])


# Todos
@app.get("/todos")
def list_todos(date_key: Optional[str] = None, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    if date_key == "all":
        return todo_service.all_todos(db)
    return todo_service.todos_for_date(db, date_key or todo_service.to_date_key(date.today()))


@app.post("/todos", status_code=201)
def add_todo(data: TodoIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return todo_service.add_todo(db, data.text, data.date_key)


@app.patch("/todos/{todo_id}")
def update_todo(
    todo_id: str, data: TodoUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)
):
    todo_service.set_todo_completed(db, parse_object_id(todo_id, "todo id"), data.completed)
    return {"ok": True}


@app.delete("/todos/{todo_id}")
def delete_todo(todo_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    todo_service.delete_todo(db, parse_object_id(todo_id, "todo id"))
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
