from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Text, Boolean, Numeric, Integer, DateTime, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(200), index=True)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    description: Mapped[str] = mapped_column(Text, default="")

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    stock: Mapped[int] = mapped_column(Integer, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    image_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
