import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy import String, Text, Numeric, ForeignKey, Integer, DateTime, JSON, Enum, select, func
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates
from .db import Base
from shared.clock import utcnow

ORDER_NUMBER_PREFIX = "ORD-"
TRANSACTION_ID_PREFIX = "TXN-"

ORDER_STATUSES = ("pending", "processing", "confirmed", "shipped", "delivered", "cancelled", "refunded")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
TRANSACTION_STATUSES = ("pending", "processing", "completed", "failed", "cancelled", "refunded")
# Accepted at checkout; stored orders may also carry "other"
CHECKOUT_PAYMENT_METHODS = (
    "credit_card",
    "debit_card",
    "paypal",
    "stripe",
    "bank_transfer",
    "cash_on_delivery",
)
PAYMENT_METHODS = CHECKOUT_PAYMENT_METHODS + ("other",)

# Orders can no longer be cancelled once they have left the warehouse
UNCANCELLABLE_STATUSES = ("shipped", "delivered")


def _random_suffix() -> str:
    return secrets.token_hex(4).upper()


def _generate_unique(db: Session, column, make: Callable[[], str]) -> str:
    while True:
        candidate = make()
        taken = db.scalar(select(func.count()).where(column == candidate))
        if not taken:
            return candidate


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    user_id: Mapped[int | None] = mapped_column(index=True, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    status: Mapped[str] = mapped_column(
        Enum(*ORDER_STATUSES, name="order_status", native_enum=False), default="pending", index=True
    )
    payment_status: Mapped[str] = mapped_column(
        Enum(*PAYMENT_STATUSES, name="order_payment_status", native_enum=False), default="pending", index=True
    )

    shipping_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    customer_email: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Transaction.id",
    )

    @staticmethod
    def generate_order_number(db: Session, now: datetime) -> str:
        return _generate_unique(
            db,
            Order.order_number,
            lambda: f"{ORDER_NUMBER_PREFIX}{now:%Y%m%d}-{_random_suffix()}",
        )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)

    # Snapshot of the catalog product at order time
    product_id: Mapped[int] = mapped_column(Integer, index=True)
    product_name: Mapped[str] = mapped_column(String(255))
    product_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    product_image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    product_attributes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="items")

    def calculate_subtotal(self) -> Decimal:
        return (Decimal(self.quantity) * Decimal(self.product_price)).quantize(Decimal("0.01"))

    @validates("quantity", "product_price")
    def _recompute_subtotal(self, key, value):
        if key == "quantity" and int(value) < 1:
            raise ValueError("quantity must be at least 1")
        quantity = value if key == "quantity" else self.quantity
        price = value if key == "product_price" else self.product_price
        if quantity is not None and price is not None:
            self.subtotal = (Decimal(quantity) * Decimal(price)).quantize(Decimal("0.01"))
        return value


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)

    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    payment_method: Mapped[str] = mapped_column(
        Enum(*PAYMENT_METHODS, name="payment_method", native_enum=False), index=True
    )
    status: Mapped[str] = mapped_column(
        Enum(*TRANSACTION_STATUSES, name="transaction_status", native_enum=False), default="pending", index=True
    )

    payment_gateway: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_gateway_response: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Never the full card number
    card_last_four: Mapped[str | None] = mapped_column(String(4), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(30), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    order: Mapped["Order"] = relationship(back_populates="transactions")

    @staticmethod
    def generate_transaction_id(db: Session, now: datetime) -> str:
        return _generate_unique(
            db,
            Transaction.transaction_id,
            lambda: f"{TRANSACTION_ID_PREFIX}{now:%Y%m%d%H%M%S}-{_random_suffix()}",
        )

    def is_completed(self) -> bool:
        return self.status == "completed"

    def is_pending(self) -> bool:
        return self.status == "pending"

    def is_failed(self) -> bool:
        return self.status == "failed"

    def mark_completed(self, now: datetime, response: Optional[dict[str, Any]] = None) -> None:
        self.status = "completed"
        self.processed_at = now
        self.updated_at = now
        if response is not None:
            self.payment_gateway_response = response

    def mark_failed(self, now: datetime, reason: Optional[str] = None) -> None:
        self.status = "failed"
        self.failed_at = now
        self.failure_reason = reason
        self.updated_at = now
