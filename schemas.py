"""
Database Schemas for the corporate gifting app

Each Pydantic model typically maps to a MongoDB collection named after the
lowercased class name (e.g., Product -> "product"). Some embedded models are
used for nested fields (e.g., order items, branding, shipping address).
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal
from datetime import datetime

TenantStatus = Literal["pending", "approved", "rejected"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered"]
Role = Literal["admin", "corporate", "employee"]

MAX_POINTS = 10_000_000

# ------------ Auth & User ------------
class UserLogin(BaseModel):
    email: EmailStr
    password: str

class User(BaseModel):
    email: EmailStr
    password_hash: str
    salt: str
    role: Role
    tenant_id: Optional[str] = None
    employee_id: Optional[str] = None

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role

# ------------ Products ------------
class ProductCreate(BaseModel):
    name: str
    description: Optional[str] = None
    point_cost: int = Field(..., ge=0)
    stock: Optional[int] = Field(None, ge=0, description="Units in stock; null means unlimited")
    category: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    point_cost: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    active: Optional[bool] = None

class Product(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    point_cost: int = Field(..., ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True

    @property
    def in_stock(self) -> bool:
        return self.stock is None or self.stock > 0

# ------------ Tenant ------------
class Branding(BaseModel):
    logo_url: Optional[str] = None
    primary_color: str = "#2563eb"
    secondary_color: str = "#f59e0b"
    greeting: Optional[str] = None

class TenantCreate(BaseModel):
    name: str
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$", description="URL-safe unique identifier for the sub-page")
    email: EmailStr
    password: str = Field(..., min_length=6)

class TenantUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    branding: Optional[Branding] = None

class ProductSelection(BaseModel):
    product_ids: List[str]

class Tenant(BaseModel):
    id: str
    name: str
    slug: str
    status: TenantStatus = "pending"
    contact_email: Optional[EmailStr] = None
    selected_product_ids: List[str] = []
    branding: Branding = Field(default_factory=Branding)

# ------------ Employees ------------
class EmployeeCreate(BaseModel):
    email: EmailStr
    name: str
    department: Optional[str] = None
    points: int = Field(100, ge=0, le=MAX_POINTS)

class EmployeeImport(BaseModel):
    csv: str = Field(..., description="One employee per line: email,name[,points]")

class PointsGrant(BaseModel):
    amount: int = Field(..., gt=0, le=MAX_POINTS)

class Employee(BaseModel):
    id: str
    tenant_id: str
    email: EmailStr
    name: str
    department: Optional[str] = None
    points: int = Field(..., ge=0)

# ------------ Shipping ------------
class ShippingAddress(BaseModel):
    full_name: str = ""
    phone: Optional[str] = None
    country_code: Optional[str] = None
    address_line1: str = ""
    address_line2: Optional[str] = None
    city: str = ""
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

# ------------ Orders ------------
class OrderItem(BaseModel):
    product_id: str
    name: str
    point_cost: int = Field(..., ge=0)
    quantity: int = Field(..., ge=1)

class StatusChange(BaseModel):
    status: OrderStatus
    at: datetime

class CartLineIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)

class CheckoutPayload(BaseModel):
    items: List[CartLineIn]
    shipping_address: Optional[ShippingAddress] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class Order(BaseModel):
    id: Optional[str] = None
    employee_id: str
    tenant_id: str
    request_id: str
    items: List[OrderItem]
    total_points: int = Field(..., ge=0)
    shipping_address: ShippingAddress
    status: OrderStatus = "pending"
    status_history: List[StatusChange] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
