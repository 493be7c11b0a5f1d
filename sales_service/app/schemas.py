"""
Request and response models for the sales API.

Order lines are deliberately loose (plain ints and decimals) so that the
order service applies its own validation, in its own order, and reports
ValidationError consistently for HTTP and direct callers.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import Category, Channel, PaymentMethod, Size


class VariantIn(BaseModel):
    size: Size
    sku: str
    stock: int = Field(0, ge=0, description="Initial stock")


class ProductCreate(BaseModel):
    name: str
    base_price: Decimal = Field(..., ge=0)
    description: Optional[str] = None
    category: Category
    product_type: str
    variants: List[VariantIn]


class VariantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    size: Size
    sku: str
    stock: int


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    base_price: Decimal
    description: Optional[str] = None
    category: Category
    product_type: str
    variants: List[VariantOut]


class RestockRequest(BaseModel):
    quantity: int


class OrderLineIn(BaseModel):
    variant_id: int
    quantity: int
    unit_price: Decimal
    discount_rate: Decimal = Decimal("0")


class ShippingAddress(BaseModel):
    full_name: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str = "MX"


class OrderCreate(BaseModel):
    """Defines the data model for an incoming order request."""
    customer_id: Optional[int] = None
    channel: Channel = Channel.IN_PERSON
    payment_method: PaymentMethod = PaymentMethod.CASH
    lines: List[OrderLineIn]
    # Accepted for compatibility with older clients, never used.
    total: Optional[Decimal] = None
    shipping_address: Optional[ShippingAddress] = None
    idempotency_key: Optional[str] = None


class OrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    variant_id: int
    quantity: int
    unit_price: Decimal
    discount_rate: Decimal
    line_total: Decimal


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    customer_id: Optional[int] = None
    cashier_id: int
    channel: Channel
    payment_method: PaymentMethod
    total: Decimal
    created_at: datetime
    tracking_number: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    lines: List[OrderLineOut]


class ReturnItemIn(BaseModel):
    variant_id: int
    quantity: int


class ReturnCreate(BaseModel):
    items: List[ReturnItemIn]


class ReturnLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    variant_id: int
    quantity: int
    unit_price: Decimal
    discount_rate: Decimal
    line_total: Decimal


class ReturnOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    return_id: str
    order_id: str
    cashier_id: int
    refund_total: Decimal
    created_at: datetime
    lines: List[ReturnLineOut]


class RoleCreate(BaseModel):
    name: str
    permission_ring: int
    description: str = ""


class RoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    permission_ring: int
    description: Optional[str] = ""


class UserCreate(BaseModel):
    username: str
    role: str
    email: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    role_id: Optional[int] = None
