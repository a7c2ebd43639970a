import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .cache import TTLCache
from .db import SessionLocal, init_schema
from .models import Product
from .schemas import ProductOut
from shared.clock import Clock, get_clock

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
logging.basicConfig(level=logging.INFO)

CACHE_TTL = float(os.getenv("CATALOG_CACHE_TTL", "300"))

cache = TTLCache()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_cache() -> TTLCache:
    return cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_schema()
    yield


app = FastAPI(title="catalog-service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def to_out(p: Product) -> dict:
    return ProductOut.model_validate(p).model_dump(mode="json")


@app.get("/products")
def list_products(db: Session = Depends(get_db), products_cache: TTLCache = Depends(get_cache)):
    def load():
        rows = db.query(Product).order_by(Product.id).all()
        return [to_out(r) for r in rows]

    return {"data": products_cache.remember("products_all", CACHE_TTL, load)}


@app.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db), products_cache: TTLCache = Depends(get_cache)):
    def load():
        r = db.get(Product, product_id)
        return to_out(r) if r else None

    product = products_cache.remember(f"product_{product_id}", CACHE_TTL, load)
    if product is None:
        logger.info("Product not found product_id=%s", product_id)
        raise HTTPException(404, "Product not found")
    return {"data": product}


@app.get("/health")
def health(now: Clock = Depends(get_clock)):
    return {"status": "healthy", "service": "catalog-service", "timestamp": now().isoformat()}
