"""
Open Food Facts product lookup backend.

  GET https://world.openfoodfacts.org/api/v2/product/{barcode}.json

A known product answers {"status": 1, "product": {...}}. Unknown barcodes
still answer 200 but with status 0 — that is "not found", not an error.

Fields consumed:
  product_name / product_name_en        → name
  brands                                → brand
  ingredients_text / ingredients_text_en → ingredients_text
  image_url                             → image_url
  nutriments                            → nutriments (key → value mapping)
"""
from __future__ import annotations

import logging
from typing import Optional

import aiohttp

import config
from lookup_backends.base import LookupBackend, LookupFailure, clean_text
from report import ProductCode, ProductContext

logger = logging.getLogger(__name__)


class OpenFoodFactsBackend(LookupBackend):

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._base_url = (base_url or config.OFF_BASE_URL).rstrip("/")
        self._timeout  = timeout if timeout is not None else config.LOOKUP_TIMEOUT
        self._headers  = {"User-Agent": config.OFF_USER_AGENT}

    @property
    def name(self) -> str:
        return "Open Food Facts"

    def product_url(self, code: ProductCode) -> str:
        return f"{self._base_url}/api/v2/product/{code}.json"

    async def fetch(self, code: ProductCode) -> Optional[ProductContext]:
        data = await self._fetch(code)
        if data.get("status") != 1 or not isinstance(data.get("product"), dict):
            logger.info("Open Food Facts has no product for %s", code)
            return None
        return parse_product(data["product"])

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _fetch(self, code: ProductCode) -> dict:
        """Single HTTP call. Returns the decoded JSON body."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.product_url(code),
                    headers=self._headers,
                    timeout=aiohttp.ClientTimeout(total=self._timeout),
                ) as resp:
                    if not 200 <= resp.status < 300:
                        text = await resp.text()
                        raise LookupFailure(f"Open Food Facts error {resp.status}: {text[:200]}")
                    data = await resp.json(content_type=None)
        except LookupFailure:
            raise
        except Exception as exc:
            raise LookupFailure(f"Open Food Facts request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise LookupFailure("Open Food Facts returned a non-object payload")
        return data


# ── Parser ────────────────────────────────────────────────────────────────────

def parse_product(raw: dict) -> ProductContext:
    """Normalise an Open Food Facts `product` object, tolerating missing fields."""
    nutriments = raw.get("nutriments")
    return ProductContext(
        name=clean_text(raw.get("product_name")) or clean_text(raw.get("product_name_en")),
        brand=clean_text(raw.get("brands")),
        ingredients_text=(
            clean_text(raw.get("ingredients_text"))
            or clean_text(raw.get("ingredients_text_en"))
        ),
        image_url=clean_text(raw.get("image_url")),
        nutriments=dict(nutriments) if isinstance(nutriments, dict) else {},
    )
