"""
product_lookup.py — public interface for product lookup.

The rest of the scanner imports only from here:
  from product_lookup import lookup

lookup() never raises. A non-2xx answer, a transport error, a bad payload
or an unknown barcode all come back as None, which degrades the pipeline to
image-only analysis instead of blocking it.
"""
from __future__ import annotations

import logging
from typing import Optional

from lookup_backends.base import LookupBackend, LookupFailure
from report import ProductCode, ProductContext

logger = logging.getLogger(__name__)

__all__ = ["lookup", "get_backend", "backend_name"]

_backend: Optional[LookupBackend] = None


def get_backend() -> LookupBackend:
    """Return the active backend, initialising it once on first call."""
    global _backend
    if _backend is None:
        from lookup_backends.openfoodfacts_backend import OpenFoodFactsBackend
        _backend = OpenFoodFactsBackend()
        logger.info("Lookup backend: %s", _backend.name)
    return _backend


def backend_name() -> str:
    return get_backend().name


async def lookup(code: Optional[ProductCode]) -> Optional[ProductContext]:
    """Look `code` up; None means "no context" for whatever reason."""
    if not code:
        return None

    backend = get_backend()
    try:
        product = await backend.fetch(code)
    except LookupFailure as exc:
        logger.warning("[%s] Lookup failed for %s: %s", backend.name, code, exc)
        return None
    except Exception as exc:
        logger.error("[%s] Unexpected lookup error for %s: %s", backend.name, code, exc)
        return None

    if product is None:
        logger.info("[%s] %s not found — falling back to image-only analysis", backend.name, code)
    else:
        logger.info("[%s] %s → %r", backend.name, code, product.name)
    return product
