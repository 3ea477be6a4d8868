"""
key_store.py — single source of truth for users' Gemini API keys.

Priority order for every user:
  1. Database (saved with /key in the bot) — takes precedence
  2. GEMINI_API_KEY environment variable / .env — shared fallback

Changing a key takes effect on the NEXT scan (no restart needed —
key_store always reads fresh from the DB).
"""
from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

ENV_FALLBACK = "GEMINI_API_KEY"

# Lazy import to avoid circular dependency at module load time
_db = None


def _get_db():
    global _db
    if _db is None:
        import database as db
        _db = db
    return _db


async def get(user_id: int) -> Optional[str]:
    """
    Return the key for user_id, checking DB first then env.
    Returns None if not set anywhere.
    """
    try:
        db_val = await _get_db().get_user_key(user_id)
        if db_val:
            return db_val
    except Exception as exc:
        logger.warning("key_store: DB lookup failed for user %s: %s", user_id, exc)

    env_val = os.getenv(ENV_FALLBACK)
    return env_val or None


async def set(user_id: int, value: str) -> None:
    """Save a user's key to the DB (overrides .env for that user)."""
    await _get_db().set_user_key(user_id, value)


async def delete(user_id: int) -> None:
    """Remove a user's key from DB (will fall back to .env value if present)."""
    await _get_db().delete_user_key(user_id)


def mask(value: Optional[str]) -> str:
    """Return a masked version safe to show in Telegram."""
    if not value:
        return "❌ not set"
    if len(value) <= 8:
        return "✅ ****"
    return f"✅ {value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
