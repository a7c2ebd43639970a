"""Pytest fixtures shared by the service test suites."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from checkout_service.payments import ChargeResult
from checkout_service.notifier import order_confirmation_payload
from checkout_service.schemas import CatalogProduct

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def make_session_factory(base):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def override_db(factory):
    def _get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    return _get_db


class FakeCatalog:
    """In-memory stand-in for the catalog HTTP client."""

    def __init__(self):
        self.products = {}
        self.calls = []

    def add(self, product_id, name, price, stock, is_active=True, **extra):
        self.products[product_id] = CatalogProduct(
            id=product_id,
            name=name,
            price=Decimal(str(price)),
            stock=stock,
            is_active=is_active,
            description=extra.get("description", f"{name} description"),
            image_url=extra.get("image_url"),
        )

    async def get_product(self, product_id):
        self.calls.append(product_id)
        return self.products.get(product_id)


class StubGateway:
    name = "stub"

    def __init__(self, success=True, error=None):
        self.success = success
        self.error = error
        self.charges = []

    async def charge(self, amount, method):
        self.charges.append((amount, method))
        if self.error is not None:
            raise self.error
        if self.success:
            return ChargeResult(success=True, gateway_response={"success": True})
        return ChargeResult(
            success=False,
            gateway_response={"success": False},
            failure_reason="Payment declined by processor",
        )


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify_order_confirmed(self, order):
        self.sent.append(order_confirmation_payload(order))
        return True


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def checkout(clock):
    """Checkout app wired to in-memory SQLite and stub collaborators."""
    from checkout_service import main
    from checkout_service.db import Base

    factory = make_session_factory(Base)
    ctx = SimpleNamespace(
        catalog=FakeCatalog(),
        gateway=StubGateway(),
        notifier=RecordingNotifier(),
        session=factory,
    )

    main.app.dependency_overrides[main.get_db] = override_db(factory)
    main.app.dependency_overrides[main.get_catalog_client] = lambda: ctx.catalog
    main.app.dependency_overrides[main.get_payment_gateway] = lambda: ctx.gateway
    main.app.dependency_overrides[main.get_notifier] = lambda: ctx.notifier
    main.app.dependency_overrides[main.get_clock] = lambda: clock

    ctx.client = TestClient(main.app)
    yield ctx
    main.app.dependency_overrides.clear()


@pytest.fixture
def catalog_api(clock):
    from catalog_service import main
    from catalog_service.cache import TTLCache
    from catalog_service.db import Base

    factory = make_session_factory(Base)
    ticks = SimpleNamespace(now=0.0)
    cache = TTLCache(clock=lambda: ticks.now)

    main.app.dependency_overrides[main.get_db] = override_db(factory)
    main.app.dependency_overrides[main.get_cache] = lambda: cache
    main.app.dependency_overrides[main.get_clock] = lambda: clock

    yield SimpleNamespace(client=TestClient(main.app), session=factory, ticks=ticks, cache=cache)
    main.app.dependency_overrides.clear()


@pytest.fixture
def email_api(clock):
    from email_service import main
    from email_service.db import Base

    factory = make_session_factory(Base)
    ctx = SimpleNamespace(session=factory, sent=[], error=None)

    def fake_mailer(**kwargs):
        if ctx.error is not None:
            raise ctx.error
        ctx.sent.append(kwargs)
        return {"provider": "fake", "recipient": kwargs["to_email"]}

    main.app.dependency_overrides[main.get_db] = override_db(factory)
    main.app.dependency_overrides[main.get_mailer] = lambda: fake_mailer
    main.app.dependency_overrides[main.get_clock] = lambda: clock

    ctx.client = TestClient(main.app)
    yield ctx
    main.app.dependency_overrides.clear()
