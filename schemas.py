"""
Database Schemas for FleurEase

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase of the class name.
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

ORDER_STATUSES = ("Processing", "Shipped", "Delivered", "Cancelled")


class Avatar(BaseModel):
    public_id: str
    url: str


# Users collection
class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., min_length=10)
    role: Literal["admin", "user"] = "user"
    avatar: Optional[Avatar] = None

    is_verified: bool = False
    verification_token: Optional[str] = None
    verification_token_expire: Optional[datetime] = None
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None

    is_suspended: bool = False
    suspension_reason: str = ""

    wishlist: List[str] = Field(default_factory=list)

    google_id: Optional[str] = None
    facebook_id: Optional[str] = None

    address: str = ""
    city: str = ""
    postal_code: str = ""
    phone_no: str = ""
    created_at: Optional[datetime] = None


# Products collection
class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    stock: int = Field(default=0, ge=0)
    category: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


# Orders collection
class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class Order(BaseModel):
    user_id: str
    order_items: List[OrderItem]
    total_price: float = Field(..., ge=0)
    order_status: Literal["Processing", "Shipped", "Delivered", "Cancelled"] = "Processing"
    created_at: Optional[datetime] = None
