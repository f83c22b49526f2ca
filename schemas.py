"""
Database Schemas

MongoDB collection schemas and request bodies, defined as Pydantic models.
Each collection model's lowercased name is its collection name:
- User -> "user"
- Product -> "product"
- Category -> "category", Subcategory -> "subcategory"
- Order -> "order"
- Todo -> "todo"
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field

StockStatus = Literal["in-stock", "limited", "out-of-stock"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "completed", "cancelled", "refunded"]
Role = Literal["customer", "admin"]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "completed", "cancelled", "refunded")


class ShippingInfo(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{7,10}$", description="7 to 10 digits")
    address: str = Field(..., min_length=1)
    apartment: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., pattern=r"^\d{4,10}$")
    country: str = Field(..., min_length=1)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("customer", description="Role: customer | admin")
    status: Literal["active", "inactive"] = "active"
    address: Optional[str] = None
    order_history: int = Field(0, ge=0, description="Number of orders placed")
    orders: int = Field(0, ge=0)
    last_order_date: Optional[datetime] = None
    shipping_info: Optional[ShippingInfo] = Field(None, description="Saved shipping address, prefilled at checkout")
    deletion_requested_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: int = Field(..., gt=0, description="Price in the smallest currency subunit")
    reference: Optional[Union[str, int]] = Field(None, description="Human reference used by the back office")
    brand: Optional[str] = None
    category: Optional[str] = Field(None, description="Category name (free text)")
    subcategory: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)
    unlimited: bool = Field(False, description="Disables stock tracking")
    stock: Optional[int] = Field(None, ge=0)
    stock_status: Optional[StockStatus] = None
    has_discount: bool = False
    discount_percentage: float = Field(0, ge=0, le=100)
    discounted_price: Optional[int] = Field(None, ge=0)
    discount_end_date: Optional[datetime] = None
    sales_count: int = Field(0, ge=0, description="Only changed by order placement")


class Category(BaseModel):
    name: str = Field(..., max_length=50)
    slug: str = Field(..., max_length=50, description="URL-friendly, globally unique")
    description: Optional[str] = None


class Subcategory(BaseModel):
    name: str = Field(..., max_length=50)
    slug: str = Field(..., max_length=50, description="Unique within its parent category")
    category_id: str
    category_slug: str
    description: Optional[str] = None


class OrderItem(BaseModel):
    id: str = Field(..., description="Product id at time of order")
    name: str
    price: int = Field(..., ge=0, description="Unit price charged")
    quantity: int = Field(..., ge=1)
    images: List[str] = Field(default_factory=list)


class Order(BaseModel):
    order_number: int = Field(..., ge=1)
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    items: List[OrderItem]
    shipping_info: Dict[str, Any] = Field(default_factory=dict)
    total: int = Field(..., ge=0)
    status: OrderStatus = "pending"


class Todo(BaseModel):
    text: str = Field(..., min_length=1)
    completed: bool = False
    date_key: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")


# Request bodies

class ProductIn(BaseModel):
    name: str = ""
    description: Optional[str] = None
    price: int = 0
    reference: Optional[Union[str, int]] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    images: List[str] = []
    specs: Dict[str, Any] = {}
    unlimited: bool = False
    stock: Optional[int] = None
    stock_status: Optional[StockStatus] = None
    has_discount: bool = False
    discount_percentage: float = 0
    discounted_price: Optional[int] = None
    discount_end_date: Optional[datetime] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = None
    reference: Optional[Union[str, int]] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    images: Optional[List[str]] = None
    specs: Optional[Dict[str, Any]] = None
    unlimited: Optional[bool] = None
    stock: Optional[int] = None
    stock_status: Optional[StockStatus] = None
    has_discount: Optional[bool] = None
    discount_percentage: Optional[float] = None
    discounted_price: Optional[int] = None
    discount_end_date: Optional[datetime] = None


class CategoryIn(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class SubcategoryIn(BaseModel):
    name: str
    category_id: str
    description: Optional[str] = None


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItem(BaseModel):
    product_id: str
    quantity: Optional[int] = None
    remove: Optional[bool] = False


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class ManualOrderItem(BaseModel):
    product_reference: Union[str, int]
    quantity: int = Field(1, ge=1)


class ManualOrderIn(BaseModel):
    items: List[ManualOrderItem] = Field(..., min_length=1)
    user_email: EmailStr
    status: OrderStatus = "pending"


class RoleUpdate(BaseModel):
    role: Role


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    shipping_info: Optional[ShippingInfo] = None


class AccountDeletion(BaseModel):
    password: str


class TodoIn(BaseModel):
    text: str
    date_key: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")


class TodoUpdate(BaseModel):
    completed: bool
