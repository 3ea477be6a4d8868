"""
Abstract base for product lookup backends.
Every backend returns the same normalised ProductContext — the scanner
doesn't care which database answered.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from report import ProductCode, ProductContext


class LookupFailure(Exception):
    """Network, HTTP or payload error while looking a product up."""


def clean_text(value) -> Optional[str]:
    """Strip strings; blank or non-string values become None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


class LookupBackend(ABC):
    """All backends must implement this interface."""

    @abstractmethod
    async def fetch(self, code: ProductCode) -> Optional[ProductContext]:
        """
        Return the product for `code`, or None when the database doesn't know it.
        Raises LookupFailure on transport / HTTP / decode errors.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name for logs/display."""
        ...
