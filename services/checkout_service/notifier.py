import logging
from typing import Any, Dict, Optional

import httpx

from .models import Order

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_CUSTOMER_NAME = "Valued Customer"


def flatten_address(address: Any) -> Optional[str]:
    if not address:
        return None
    if isinstance(address, dict):
        return ", ".join(str(v) for v in address.values() if v not in (None, ""))
    return str(address)


def order_confirmation_payload(order: Order) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_email": order.customer_email,
        "customer_name": order.customer_name or DEFAULT_CUSTOMER_NAME,
        "order_total": str(order.total_amount),
        "order_items": [
            {
                "product_name": item.product_name,
                "quantity": item.quantity,
                "price": str(item.product_price),
            }
            for item in order.items
        ],
        "shipping_address": flatten_address(order.shipping_address),
    }


class EmailNotifier:
    """
    Best-effort order confirmation through the email service.
    Never raises: the order outcome must not depend on email delivery.
    """

    def __init__(self, base_url: str, http: httpx.AsyncClient, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.timeout = timeout

    async def notify_order_confirmed(self, order: Order) -> bool:
        url = f"{self.base_url}/order-confirmation"
        try:
            payload = order_confirmation_payload(order)
            logger.info(
                "Sending order confirmation email url=%s order_id=%s order_number=%s",
                url, order.id, order.order_number,
            )
            r = await self.http.post(url, json=payload, timeout=self.timeout)
        except Exception as e:
            logger.exception("Order confirmation email failed order_id=%s error=%s", order.id, repr(e))
            return False

        if r.is_success:
            logger.info("Order confirmation email sent order_id=%s", order.id)
            return True

        logger.warning(
            "Order confirmation email rejected order_id=%s status=%s body=%s",
            order.id, r.status_code, r.text,
        )
        return False
