"""
Database Schemas for the Shop Admin API

Each stored Pydantic model maps to a MongoDB collection named after the
lowercased class name (e.g., Category -> "category"). Request and response
models live next to the collection they belong to.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, get_args
from datetime import datetime

QuantityType = Literal["limited", "unlimited"]
QUANTITY_TYPES = get_args(QuantityType)
DetailFieldType = Literal["text", "select", "checkbox"]
ResultCode = Literal["validation", "conflict", "not_found", "error"]

ORDER_STATUSES = ["checking order", "confirmed", "shipped", "completed", "cancelled"]
MAX_PRODUCT_IMAGES = 5


class ActionResult(BaseModel):
    success: bool
    error: Optional[str] = None
    code: Optional[ResultCode] = None
    id: Optional[str] = None
    warnings: List[str] = []

    @classmethod
    def ok(cls, id: Optional[str] = None, warnings: Optional[List[str]] = None) -> "ActionResult":
        return cls(success=True, id=id, warnings=warnings or [])

    @classmethod
    def fail(cls, error: str, code: ResultCode = "error") -> "ActionResult":
        return cls(success=False, error=error, code=code)


# ------------ Users ------------
class User(BaseModel):
    id: str = Field(..., description="External auth id (phone / provider id)")
    number: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserOut(User):
    order_count: int = 0


class UserList(BaseModel):
    ok: bool = True
    users: List[UserOut] = []
    error: Optional[str] = None


class UserPage(UserList):
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1


class UserOption(BaseModel):
    id: str
    number: Optional[str] = None


# ------------ Categories ------------
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class CategoryUpdate(CategoryCreate):
    pass


class Category(BaseModel):
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CategoryOut(Category):
    id: str
    product_count: int = 0


class CategoryList(BaseModel):
    ok: bool = True
    categories: List[CategoryOut] = []
    error: Optional[str] = None


class CategoryOption(BaseModel):
    id: str
    name: str
    description: Optional[str] = None


# ------------ Products ------------
class DetailField(BaseModel):
    type: DetailFieldType
    label: str
    required: bool = False
    options: Optional[List[str]] = None


class ProductForm(BaseModel):
    """Form fields of a product create/update; details and existing_images are JSON text."""
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    quantity: int = 0
    quantity_type: Optional[QuantityType] = None
    category_id: Optional[str] = None
    info: Optional[str] = None
    details: Optional[str] = None
    existing_images: Optional[str] = None


class Upload(BaseModel):
    filename: str
    content: bytes = b""

    @property
    def size(self) -> int:
        return len(self.content)


class Product(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    price: str = Field(..., description="Decimal string, precision 10 scale 2")
    quantity: int = 0
    quantity_type: QuantityType = "limited"
    category_id: Optional[str] = None
    images: List[str] = Field([], max_length=MAX_PRODUCT_IMAGES)
    info: str = ""
    details: List[DetailField] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: str
    quantity: int = 0
    quantity_type: QuantityType = "limited"
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    images: List[str] = []
    info: str = ""
    details: List[Dict[str, Any]] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductPage(BaseModel):
    ok: bool = True
    products: List[ProductOut] = []
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1
    error: Optional[str] = None


class ProductOption(BaseModel):
    id: str
    name: str
    price: str


# ------------ Orders ------------
class OrderCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: str
    status: Optional[str] = None
    selected_details: Optional[Dict[str, Any]] = None


class OrderUpdate(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)
    price: Optional[str] = None
    status: Optional[str] = None
    selected_details: Optional[Dict[str, Any]] = None


class Order(BaseModel):
    user_id: str
    product_id: str
    quantity: int
    price: str
    status: str = "checking order"
    selected_details: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderUser(BaseModel):
    id: str = ""
    number: Optional[str] = None
    address: Optional[str] = None


class OrderCategory(BaseModel):
    id: str
    name: str


class OrderProduct(BaseModel):
    id: str = ""
    name: str = "Unknown Product"
    price: str = "0"
    category: Optional[OrderCategory] = None


class OrderRow(Order):
    id: str


class OrderOut(OrderRow):
    user: OrderUser = OrderUser()
    product: OrderProduct = OrderProduct()


class OrderPage(BaseModel):
    ok: bool = True
    orders: List[OrderOut] = []
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1
    error: Optional[str] = None


class OrderResult(ActionResult):
    order: Optional[OrderRow] = None


# ------------ Cart (modelled, not used by the admin surface) ------------
class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_details: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ------------ Admin auth ------------
class AdminLogin(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AdminUser(BaseModel):
    username: str
