"""
Shared pytest fixtures.

Every test that touches the database or config gets a clean
temporary DATA_DIR via the `tmp_data_dir` fixture so tests
are fully isolated from each other and from the real bot_data.db.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and prevents cross-test pollution.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    # Patch the module-level DB_PATH that was already computed at import time
    import database
    monkeypatch.setattr(database, "DB_PATH", str(data / "bot_data.db"))
    monkeypatch.setattr(database, "_DATA_DIR", data)

    # Also reset the internal lock so tests don't share state
    import asyncio
    monkeypatch.setattr(database, "_lock", asyncio.Lock())

    yield data


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    """Cached provider clients and the lookup backend never leak between tests."""
    import product_lookup
    import providers.manager as manager_mod

    monkeypatch.setattr(product_lookup, "_backend", None)
    manager_mod.reset_providers()
    yield
    manager_mod.reset_providers()


# ── Sample payloads ────────────────────────────────────────────────────────────

@pytest.fixture
def report_payload() -> dict:
    """A well-formed analysis service response."""
    return {
        "productName": "Snickers Bar",
        "barcode": None,
        "score": 42,
        "sugar_g": 27.0,
        "protein_g": 4.3,
        "ingredients": [
            {"name": "Milk chocolate", "risk": "CAUTION", "reason": "Added sugar"},
            {"name": "Peanuts", "risk": "SAFE", "reason": None},
            {"name": "Glucose syrup", "risk": "DANGER", "reason": "Refined sugar bomb"},
        ],
        "nutritional_analysis": "A sugar hit with a few peanuts for an alibi.",
        "verdict": "MID",
    }
