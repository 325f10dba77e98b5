"""
Database Schemas for the Quick-commerce Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name, except ServiceArea which
lives in "pincode".
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

ProductStatus = Literal["active", "out_of_stock", "deleted"]
VendorStatus = Literal["pending", "active", "blocked"]
OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "out_for_delivery", "delivered", "cancelled"]
Role = Literal["customer", "admin", "delivery"]

PINCODE_PATTERN = r"^\d{6}$"


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: Role = "customer"


class ProductImage(BaseModel):
    url: str
    public_id: Optional[str] = None


class Product(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0, description="List price shown struck through")
    category: str = Field(..., min_length=1, description="Category slug")
    unit: str = Field(..., description="Unit of sale, e.g. '500 g'")
    stock: int = Field(0, ge=0)
    vendor_id: str
    pincodes: List[str] = Field(default_factory=list, description="Delivery areas")
    status: ProductStatus = "active"
    image: Optional[str] = None
    image_public_id: Optional[str] = None
    additional_images: List[ProductImage] = Field(default_factory=list)
    version: int = 1


class Vendor(BaseModel):
    id: Optional[str] = None
    name: str
    email: EmailStr
    phone: str
    address: str
    pincodes: List[str] = Field(default_factory=list)
    status: VendorStatus = "pending"
    is_open: bool = True
    password_hash: Optional[str] = None
    version: int = 1


class ServiceArea(BaseModel):
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    label: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    vendor_id: Optional[str] = None
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class DeliveryAddress(BaseModel):
    name: str
    phone: str
    address: str
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    city: str


class Order(BaseModel):
    id: Optional[str] = None
    user_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    address: DeliveryAddress
    delivery_option: Literal["standard", "express"] = "standard"
    payment_method: Literal["cod", "online"] = "cod"
    payment_status: Literal["pending", "paid", "failed"] = "pending"
    order_status: OrderStatus = "pending"
    delivery_person_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
