from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrderItemLine(BaseModel):
    product_name: str = Field(min_length=1)
    quantity: int
    price: Decimal


class OrderConfirmationIn(BaseModel):
    order_id: int
    order_number: str = Field(min_length=1)
    customer_email: EmailStr
    customer_name: str = Field(min_length=1)
    order_total: Decimal
    order_items: List[OrderItemLine] = Field(min_length=1)
    shipping_address: Optional[str] = None


class EmailOut(BaseModel):
    id: int
    recipient_email: str
    recipient_name: Optional[str] = None
    subject: str
    type: str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    status: str
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int
    next_retry_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_")

    model_config = ConfigDict(from_attributes=True)
