"""Tests for order lookup, listing, cancellation and statistics."""

from datetime import timedelta
from decimal import Decimal

import pytest

from checkout_service.models import Order, OrderItem, Transaction
from conftest import FIXED_NOW


def seed_order(session_factory, number, status="pending", payment_status="pending",
               total="11.00", email="jane@example.com", age_minutes=0, deleted=False):
    created = FIXED_NOW - timedelta(minutes=age_minutes)
    total = Decimal(total)
    with session_factory() as db:
        order = Order(
            order_number=number,
            subtotal=total,
            tax=Decimal("0.00"),
            shipping_cost=Decimal("0.00"),
            total_amount=total,
            status=status,
            payment_status=payment_status,
            customer_email=email,
            created_at=created,
            updated_at=created,
            deleted_at=created if deleted else None,
        )
        order.items.append(
            OrderItem(product_id=1, product_name="Bucket", product_price=total, quantity=1)
        )
        order.transactions.append(
            Transaction(
                transaction_id=f"TXN-{number}",
                amount=total,
                payment_method="credit_card",
                status="completed" if payment_status == "paid" else "pending",
                created_at=created,
                updated_at=created,
            )
        )
        db.add(order)
        db.commit()
        return order.id


class TestGetOrder:
    def test_by_id(self, checkout):
        order_id = seed_order(checkout.session, "ORD-20261019-AAAA0001")

        response = checkout.client.get(f"/orders/{order_id}")

        assert response.status_code == 200
        order = response.json()["data"]["order"]
        assert order["order_number"] == "ORD-20261019-AAAA0001"
        assert len(order["items"]) == 1
        assert len(order["transactions"]) == 1

    def test_by_order_number(self, checkout):
        order_id = seed_order(checkout.session, "ORD-20261019-AAAA0002")

        response = checkout.client.get("/orders/ORD-20261019-AAAA0002")

        assert response.status_code == 200
        assert response.json()["data"]["order"]["id"] == order_id

    @pytest.mark.parametrize(
        "identifier",
        ["999", "ORD-NOPE", "not-an-id", "0", "9223372036854775808", "99999999999999999999999", "9" * 5000],
    )
    def test_unknown(self, checkout, identifier):
        response = checkout.client.get(f"/orders/{identifier}")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Order not found"}

    def test_soft_deleted_is_hidden(self, checkout):
        order_id = seed_order(checkout.session, "ORD-20261019-GONE0001", deleted=True)

        assert checkout.client.get(f"/orders/{order_id}").status_code == 404


class TestListOrders:
    def test_newest_first(self, checkout):
        seed_order(checkout.session, "ORD-OLD", age_minutes=30)
        seed_order(checkout.session, "ORD-NEW", age_minutes=1)
        seed_order(checkout.session, "ORD-MID", age_minutes=10)

        response = checkout.client.get("/orders")

        assert response.status_code == 200
        page = response.json()["data"]
        assert [o["order_number"] for o in page["data"]] == ["ORD-NEW", "ORD-MID", "ORD-OLD"]
        assert page["total"] == 3
        assert page["per_page"] == 15

    def test_filters(self, checkout):
        seed_order(checkout.session, "ORD-A", status="confirmed", payment_status="paid")
        seed_order(checkout.session, "ORD-B", status="pending", email="bob@example.com")
        seed_order(checkout.session, "ORD-C", status="confirmed", payment_status="paid",
                   email="bob@example.com")

        by_status = checkout.client.get("/orders", params={"status": "confirmed"}).json()["data"]
        assert {o["order_number"] for o in by_status["data"]} == {"ORD-A", "ORD-C"}

        by_payment = checkout.client.get("/orders", params={"payment_status": "pending"}).json()["data"]
        assert [o["order_number"] for o in by_payment["data"]] == ["ORD-B"]

        combined = checkout.client.get(
            "/orders", params={"status": "confirmed", "customer_email": "bob@example.com"}
        ).json()["data"]
        assert [o["order_number"] for o in combined["data"]] == ["ORD-C"]

    def test_pagination(self, checkout):
        for n in range(5):
            seed_order(checkout.session, f"ORD-{n}", age_minutes=n)

        page = checkout.client.get("/orders", params={"per_page": 2, "page": 2}).json()["data"]

        assert [o["order_number"] for o in page["data"]] == ["ORD-2", "ORD-3"]
        assert page["current_page"] == 2
        assert page["last_page"] == 3
        assert page["total"] == 5

    def test_per_page_bounds(self, checkout):
        assert checkout.client.get("/orders", params={"per_page": 0}).status_code == 422
        assert checkout.client.get("/orders", params={"per_page": 101}).status_code == 422


class TestCancelOrder:
    @pytest.mark.parametrize("status,payment_status", [("pending", "pending"), ("confirmed", "paid")])
    def test_cancellable(self, checkout, status, payment_status):
        order_id = seed_order(checkout.session, "ORD-X", status=status, payment_status=payment_status)

        response = checkout.client.post(f"/orders/{order_id}/cancel")

        assert response.status_code == 200
        order = response.json()["data"]["order"]
        assert order["status"] == "cancelled"
        assert order["payment_status"] == payment_status

    @pytest.mark.parametrize(
        "status,message",
        [
            ("cancelled", "Order is already cancelled"),
            ("shipped", "Cannot cancel order that has been shipped or delivered"),
            ("delivered", "Cannot cancel order that has been shipped or delivered"),
        ],
    )
    def test_not_cancellable(self, checkout, status, message):
        order_id = seed_order(checkout.session, "ORD-Y", status=status)

        response = checkout.client.post(f"/orders/{order_id}/cancel")

        assert response.status_code == 409
        assert response.json()["message"] == message
        with checkout.session() as db:
            assert db.get(Order, order_id).status == status

    def test_unknown(self, checkout):
        assert checkout.client.post("/orders/12345/cancel").status_code == 404

    @pytest.mark.parametrize("order_id", ["0", "9223372036854775808", "99999999999999999999999"])
    def test_out_of_range_id(self, checkout, order_id):
        response = checkout.client.post(f"/orders/{order_id}/cancel")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Order not found"}


def test_statistics(checkout):
    seed_order(checkout.session, "ORD-1", status="confirmed", payment_status="paid", total="65.98")
    seed_order(checkout.session, "ORD-2", status="delivered", payment_status="paid", total="10.02")
    seed_order(checkout.session, "ORD-3", status="pending", payment_status="pending", total="5.50")
    seed_order(checkout.session, "ORD-4", status="cancelled", payment_status="pending", total="1.00")
    seed_order(checkout.session, "ORD-5", status="confirmed", payment_status="paid", total="99.00",
               deleted=True)

    response = checkout.client.get("/orders/stats/summary")

    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["total_orders"] == 4
    assert stats["pending_orders"] == 1
    assert stats["confirmed_orders"] == 1
    assert stats["delivered_orders"] == 1
    assert stats["cancelled_orders"] == 1
    assert stats["shipped_orders"] == 0
    assert Decimal(stats["total_revenue"]) == Decimal("76.00")
    assert Decimal(stats["pending_payments"]) == Decimal("6.50")
