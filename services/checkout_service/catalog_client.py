import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .schemas import CatalogProduct

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class CatalogClient:
    """
    Reads authoritative product data from the catalog service.

    Every failure mode (timeout, connection error, non-2xx, body without a
    usable ``data`` object) is reported as ``None``: the caller treats the
    product as unavailable.
    """

    def __init__(self, base_url: str, http: httpx.AsyncClient, timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.timeout = timeout

    async def get_product(self, product_id: int) -> Optional[CatalogProduct]:
        url = f"{self.base_url}/products/{product_id}"
        logger.info("Fetching product from catalog url=%s product_id=%s", url, product_id)

        try:
            r = await self.http.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error("Catalog request failed product_id=%s error=%s", product_id, repr(e))
            return None

        logger.info("Catalog response status=%s product_id=%s", r.status_code, product_id)
        if not r.is_success:
            return None

        try:
            data = r.json()["data"]
            return CatalogProduct.model_validate(data)
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error("Malformed catalog body product_id=%s error=%s", product_id, repr(e))
            return None
