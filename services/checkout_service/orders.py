"""
Checkout orchestration and order lifecycle operations.

Order creation is a fixed two-phase sequence: every cart line is checked
against the catalog first, and only a fully admissible cart reaches the
database. The order, its items and its transaction are then written in a
single unit of work together with the payment attempt, so a declined
payment or any unexpected failure leaves no rows behind.
"""
import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from .catalog_client import CatalogClient
from .errors import (
    CheckoutError,
    OrderConflictError,
    OrderCreationError,
    OrderNotFoundError,
    OrderValidationError,
    PaymentDeclinedError,
)
from .models import (
    ORDER_NUMBER_PREFIX,
    ORDER_STATUSES,
    UNCANCELLABLE_STATUSES,
    Order,
    OrderItem,
    Transaction,
)
from .notifier import EmailNotifier
from .payments import DECLINE_REASON, PaymentGateway
from .schemas import CartItemIn, OrderCreateIn
from shared.clock import Clock

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

TAX_RATE = Decimal("0.10")
SHIPPING_COST = Decimal("0.00")
CURRENCY = "USD"
CENTS = Decimal("0.01")

DEFAULT_PER_PAGE = 15
MAX_PER_PAGE = 100

# Larger ids cannot be bound as a 64-bit SQL integer parameter
MAX_ORDER_ID = 2**63 - 1


def money(value: Any) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class ValidatedItem:
    product_id: int
    product_name: str
    product_description: Optional[str]
    product_price: Decimal
    product_image_url: Optional[str]
    quantity: int
    available_stock: int


@dataclass
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total: Decimal


def compute_totals(items: Iterable[ValidatedItem]) -> Totals:
    subtotal = money(sum((i.product_price * i.quantity for i in items), Decimal("0")))
    tax = money(subtotal * TAX_RATE)
    shipping = money(SHIPPING_COST)
    return Totals(subtotal=subtotal, tax=tax, shipping_cost=shipping, total=subtotal + tax + shipping)


async def validate_items(
    items: Sequence[CartItemIn], catalog: CatalogClient
) -> Tuple[List[ValidatedItem], List[str]]:
    """Check each cart line against the catalog, collecting every problem."""
    validated: List[ValidatedItem] = []
    errors: List[str] = []

    for item in items:
        product = await catalog.get_product(item.product_id)

        if product is None:
            errors.append(f"Product with ID {item.product_id} not found or unavailable")
            continue

        if not product.is_active:
            errors.append(f"{product.name} is no longer available")
            continue

        if product.stock < item.quantity:
            errors.append(
                f"{product.name} has insufficient stock. "
                f"Available: {product.stock}, Requested: {item.quantity}"
            )
            continue

        # Price always comes from the catalog, never from the client
        validated.append(
            ValidatedItem(
                product_id=product.id,
                product_name=product.name,
                product_description=product.description,
                product_price=money(product.price),
                product_image_url=product.image_url,
                quantity=item.quantity,
                available_stock=product.stock,
            )
        )

    return validated, errors


def transaction_snapshot(txn: Transaction) -> Dict[str, Any]:
    return {
        "transaction_id": txn.transaction_id,
        "amount": str(txn.amount),
        "currency": txn.currency,
        "payment_method": txn.payment_method,
        "status": txn.status,
        "payment_gateway": txn.payment_gateway,
        "failed_at": txn.failed_at.isoformat() if txn.failed_at else None,
        "failure_reason": txn.failure_reason,
    }


async def create_order(
    db: Session,
    payload: OrderCreateIn,
    *,
    catalog: CatalogClient,
    gateway: PaymentGateway,
    notifier: EmailNotifier,
    clock: Clock,
    user_id: Optional[int] = None,
) -> Order:
    validated, errors = await validate_items(payload.items, catalog)
    if errors:
        logger.info("Order rejected errors=%s", errors)
        raise OrderValidationError(errors=errors)
    if not validated:
        raise OrderValidationError("No valid items to process")

    totals = compute_totals(validated)

    try:
        with db.begin():
            now = clock()
            order = Order(
                order_number=Order.generate_order_number(db, now),
                user_id=user_id,
                subtotal=totals.subtotal,
                tax=totals.tax,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total,
                status="pending",
                payment_status="pending",
                customer_email=payload.customer_email,
                customer_name=payload.customer_name,
                customer_phone=payload.customer_phone,
                shipping_address=payload.shipping_address,
                billing_address=payload.billing_address,
                notes=payload.notes,
                created_at=now,
                updated_at=now,
            )
            for v in validated:
                order.items.append(
                    OrderItem(
                        product_id=v.product_id,
                        product_name=v.product_name,
                        product_description=v.product_description,
                        product_image_url=v.product_image_url,
                        product_price=v.product_price,
                        quantity=v.quantity,
                    )
                )
            db.add(order)
            db.flush()

            txn = Transaction(
                transaction_id=Transaction.generate_transaction_id(db, now),
                amount=totals.total,
                currency=CURRENCY,
                payment_method=payload.payment_method,
                status="pending",
                payment_gateway=gateway.name,
                created_at=now,
                updated_at=now,
            )
            order.transactions.append(txn)
            db.flush()

            result = await gateway.charge(totals.total, payload.payment_method)
            settled_at = clock()

            if not result.success:
                txn.mark_failed(settled_at, result.failure_reason or DECLINE_REASON)
                txn.payment_gateway_response = result.gateway_response or None
                order.payment_status = "failed"
                order.updated_at = settled_at
                logger.warning(
                    "Payment declined order_number=%s transaction_id=%s reason=%s",
                    order.order_number, txn.transaction_id, txn.failure_reason,
                )
                # Leaving the block through an exception rolls everything back
                raise PaymentDeclinedError(transaction_snapshot(txn))

            txn.mark_completed(settled_at, result.gateway_response)
            txn.card_last_four = result.card_last_four
            txn.card_brand = result.card_brand
            order.status = "confirmed"
            order.payment_status = "paid"
            order.confirmed_at = settled_at
            order.updated_at = settled_at

    except CheckoutError:
        raise
    except Exception as e:
        logger.exception("Order creation failed error=%s", repr(e))
        raise OrderCreationError(errors=[str(e)]) from e

    logger.info("Order confirmed order_id=%s order_number=%s total=%s", order.id, order.order_number, order.total_amount)

    db.refresh(order)
    await notifier.notify_order_confirmed(order)
    return order


def _live_orders(db: Session):
    return db.query(Order).filter(Order.deleted_at.is_(None))


def list_orders(
    db: Session,
    *,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_email: Optional[str] = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Dict[str, Any]:
    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PER_PAGE)

    q = _live_orders(db)
    if status is not None:
        q = q.filter(Order.status == status)
    if payment_status is not None:
        q = q.filter(Order.payment_status == payment_status)
    if customer_email is not None:
        q = q.filter(Order.customer_email == customer_email)

    total = q.count()
    rows = (
        q.options(selectinload(Order.items), selectinload(Order.transactions))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "data": rows,
        "current_page": page,
        "per_page": per_page,
        "total": total,
        "last_page": max(math.ceil(total / per_page), 1),
    }


def _is_order_id(value: int) -> bool:
    return 1 <= value <= MAX_ORDER_ID


def find_order(db: Session, identifier: str) -> Order:
    q = _live_orders(db).options(selectinload(Order.items), selectinload(Order.transactions))

    if identifier.startswith(ORDER_NUMBER_PREFIX):
        order = q.filter(Order.order_number == identifier).first()
    elif identifier.isascii() and identifier.isdigit() and len(identifier) <= 19 and _is_order_id(int(identifier)):
        order = q.filter(Order.id == int(identifier)).first()
    else:
        order = None

    if order is None:
        raise OrderNotFoundError()
    return order


def cancel_order(db: Session, order_id: int, clock: Clock) -> Order:
    if not _is_order_id(order_id):
        raise OrderNotFoundError()

    order = _live_orders(db).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFoundError()

    if order.status == "cancelled":
        raise OrderConflictError("Order is already cancelled")
    if order.status in UNCANCELLABLE_STATUSES:
        raise OrderConflictError("Cannot cancel order that has been shipped or delivered")

    order.status = "cancelled"
    order.updated_at = clock()
    db.commit()
    db.refresh(order)
    logger.info("Order cancelled order_id=%s order_number=%s", order.id, order.order_number)
    return order


def order_statistics(db: Session) -> Dict[str, Any]:
    live = Order.deleted_at.is_(None)

    counts = dict(
        db.query(Order.status, func.count(Order.id)).filter(live).group_by(Order.status).all()
    )

    def total_for(payment_status: str) -> Decimal:
        value = (
            db.query(func.coalesce(func.sum(Order.total_amount), 0))
            .filter(live, Order.payment_status == payment_status)
            .scalar()
        )
        return money(value or 0)

    stats: Dict[str, Any] = {"total_orders": sum(counts.values())}
    for status in ORDER_STATUSES:
        stats[f"{status}_orders"] = counts.get(status, 0)
    stats["total_revenue"] = total_for("paid")
    stats["pending_payments"] = total_for("pending")
    return stats
