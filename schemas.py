"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. Ids of other documents are stored as strings.
"""
from typing import List, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
Category = Literal["electronics", "fashion", "dairy", "technology", "home appliances"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
CartAction = Literal["add", "increase", "decrease", "remove"]

ROLES = get_args(Role)
CATEGORIES = get_args(Category)
ORDER_STATUSES = get_args(OrderStatus)
CART_ACTIONS = get_args(CartAction)


class CamelModel(BaseModel):
    """Request bodies: snake_case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(BaseModel):
    name: str = Field(..., min_length=1)
    age: int = Field(..., ge=0)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Role = "user"
    address: str
    contact: Union[int, str]


class Product(BaseModel):
    seller_id: str
    name: str = Field(..., min_length=1)
    description: str
    cost_price: float = Field(..., ge=0)
    sale_price: float = Field(..., ge=0)
    category: Category
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)


class CartLine(BaseModel):
    product_id: str
    price: float = Field(..., ge=0, description="Unit price captured when the line was created")
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartLine] = Field(default_factory=list)
    total_amount: float = 0
    version: int = 0


class Order(BaseModel):
    user_id: str
    items: List[CartLine]
    total_amount: float
    shipping_address: str
    status: OrderStatus = "pending"
