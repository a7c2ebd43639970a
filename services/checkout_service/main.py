import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import orders
from .catalog_client import CatalogClient
from .db import SessionLocal, init_schema
from .errors import CheckoutError
from .notifier import EmailNotifier
from .payments import PaymentGateway, SimulatedGateway
from .schemas import OrderCreateIn, OrderOut, OrderStatsOut
from shared.clock import Clock, get_clock
from shared.security import optional_user, claims_user_id

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
logging.basicConfig(level=logging.INFO)

CATALOG_URL_INTERNAL = os.getenv("CATALOG_URL_INTERNAL", "http://catalog:8000").rstrip("/")
CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "20"))
EMAIL_URL_INTERNAL = os.getenv("EMAIL_URL_INTERNAL", "http://email:8000").rstrip("/")
EMAIL_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", "10"))
PAYMENT_DELAY_SECONDS = float(os.getenv("PAYMENT_DELAY_SECONDS", "2"))
PAYMENT_SUCCESS_PERCENT = int(os.getenv("PAYMENT_SUCCESS_PERCENT", "95"))

# Reuse client across requests
_http_client: httpx.AsyncClient | None = None


def _client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        # fallback in case lifespan didn't run
        _http_client = httpx.AsyncClient(timeout=CATALOG_TIMEOUT)
    return _http_client


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_catalog_client() -> CatalogClient:
    return CatalogClient(CATALOG_URL_INTERNAL, _client(), timeout=CATALOG_TIMEOUT)


def get_notifier() -> EmailNotifier:
    return EmailNotifier(EMAIL_URL_INTERNAL, _client(), timeout=EMAIL_TIMEOUT)


_gateway = SimulatedGateway(
    delay_seconds=PAYMENT_DELAY_SECONDS,
    success_percent=PAYMENT_SUCCESS_PERCENT,
)


def get_payment_gateway() -> PaymentGateway:
    return _gateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _http_client
    init_schema()
    _http_client = httpx.AsyncClient(timeout=CATALOG_TIMEOUT)
    yield
    try:
        if _http_client:
            await _http_client.aclose()
    finally:
        _http_client = None


app = FastAPI(title="checkout-service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in prod
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(
            {"success": False, "message": "Validation failed", "errors": exc.errors()}
        ),
    )


def to_out(order) -> dict:
    return OrderOut.model_validate(order).model_dump(mode="json")


async def _create(payload, db, claims, catalog, gateway, notifier, clock):
    order = await orders.create_order(
        db,
        payload,
        catalog=catalog,
        gateway=gateway,
        notifier=notifier,
        clock=clock,
        user_id=claims_user_id(claims),
    )
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "Order created successfully",
            "data": {"order": to_out(order)},
        },
    )


@app.post("/orders", status_code=201)
async def create_order(
    payload: OrderCreateIn,
    db: Session = Depends(get_db),
    claims: Optional[dict] = Depends(optional_user),
    catalog: CatalogClient = Depends(get_catalog_client),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: EmailNotifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    return await _create(payload, db, claims, catalog, gateway, notifier, clock)


# Alias kept for the storefront's checkout button
@app.post("/checkout", status_code=201)
async def checkout(
    payload: OrderCreateIn,
    db: Session = Depends(get_db),
    claims: Optional[dict] = Depends(optional_user),
    catalog: CatalogClient = Depends(get_catalog_client),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: EmailNotifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    return await _create(payload, db, claims, catalog, gateway, notifier, clock)


@app.get("/orders")
def list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_email: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=orders.DEFAULT_PER_PAGE, ge=1, le=orders.MAX_PER_PAGE),
    db: Session = Depends(get_db),
):
    result = orders.list_orders(
        db,
        status=status,
        payment_status=payment_status,
        customer_email=customer_email,
        page=page,
        per_page=per_page,
    )
    result["data"] = [to_out(o) for o in result["data"]]
    return {"success": True, "data": result}


@app.get("/orders/stats/summary")
def statistics(db: Session = Depends(get_db)):
    stats = OrderStatsOut(**orders.order_statistics(db))
    return {"success": True, "data": stats.model_dump(mode="json")}


@app.get("/orders/{identifier}")
def get_order(identifier: str, db: Session = Depends(get_db)):
    order = orders.find_order(db, identifier)
    return {"success": True, "data": {"order": to_out(order)}}


@app.post("/orders/{order_id}/cancel")
def cancel_order(order_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    order = orders.cancel_order(db, order_id, clock)
    return {
        "success": True,
        "message": "Order cancelled successfully",
        "data": {"order": to_out(order)},
    }


@app.get("/health")
def health(now: Clock = Depends(get_clock)):
    return {"status": "healthy", "service": "checkout-service", "timestamp": now().isoformat()}
