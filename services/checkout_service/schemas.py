from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import CHECKOUT_PAYMENT_METHODS

PaymentMethod = Literal[CHECKOUT_PAYMENT_METHODS]


class CartItemIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class OrderCreateIn(BaseModel):
    items: List[CartItemIn] = Field(min_length=1)
    customer_email: EmailStr
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    payment_method: PaymentMethod
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class CatalogProduct(BaseModel):
    """Authoritative product data as served by the catalog service."""

    id: int
    name: str
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    image_url: Optional[str] = None
    stock: int = Field(ge=0)
    is_active: bool = True

    model_config = ConfigDict(extra="ignore")


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_description: Optional[str] = None
    product_price: Decimal
    product_image_url: Optional[str] = None
    quantity: int
    subtotal: Decimal
    product_attributes: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionOut(BaseModel):
    id: int
    transaction_id: str
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    payment_gateway: Optional[str] = None
    payment_gateway_response: Optional[Dict[str, Any]] = None
    card_last_four: Optional[str] = None
    card_brand: Optional[str] = None
    processed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: Optional[int] = None
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    status: str
    payment_status: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut] = []
    transactions: List[TransactionOut] = []

    model_config = ConfigDict(from_attributes=True)


class OrderStatsOut(BaseModel):
    total_orders: int
    pending_orders: int
    processing_orders: int
    confirmed_orders: int
    shipped_orders: int
    delivered_orders: int
    cancelled_orders: int
    refunded_orders: int
    total_revenue: Decimal
    pending_payments: Decimal
