"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  user_keys   — one Gemini API key per Telegram user (see key_store.py)
  scan_logs   — one row per finished report, for /history

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "bot_data.db")
_lock = asyncio.Lock()          # serialise schema creation


# ── Data models ───────────────────────────────────────────────────────────────

@dataclass
class ScanLog:
    id: int
    user_id: int
    product_name: str
    barcode: Optional[str]
    score: int
    verdict: str
    source: str                 # camera | photo | text
    scanned_at: datetime


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_keys (
    user_id    INTEGER PRIMARY KEY,
    key_value  TEXT    NOT NULL,
    updated_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS scan_logs (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL,
    product_name TEXT    NOT NULL DEFAULT '',
    barcode      TEXT,
    score        INTEGER NOT NULL DEFAULT 0,
    verdict      TEXT    NOT NULL DEFAULT '',
    source       TEXT    NOT NULL DEFAULT 'photo',
    scanned_at   TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_scan_logs_user ON scan_logs (user_id, scanned_at);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


# ── User keys ─────────────────────────────────────────────────────────────────

async def get_user_key(user_id: int) -> Optional[str]:
    """Return DB-stored key for user_id, or None if not set."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT key_value FROM user_keys WHERE user_id = ?", (user_id,)
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None


async def set_user_key(user_id: int, key_value: str) -> None:
    """Insert or replace a user's key."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO user_keys (user_id, key_value, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                 key_value=excluded.key_value,
                 updated_at=excluded.updated_at""",
            (user_id, key_value, now),
        )
        await db.commit()


async def delete_user_key(user_id: int) -> None:
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM user_keys WHERE user_id = ?", (user_id,))
        await db.commit()


# ── Scan log ──────────────────────────────────────────────────────────────────

async def log_scan(
    user_id: int,
    product_name: str,
    barcode: Optional[str],
    score: int,
    verdict: str,
    source: str,
) -> None:
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO scan_logs
               (user_id, product_name, barcode, score, verdict, source, scanned_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (user_id, product_name, barcode, score, verdict, source, now),
        )
        await db.commit()


async def get_recent_scans(user_id: int, limit: int = 5) -> list[ScanLog]:
    """Most recent scans for user_id, newest first."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            """SELECT id, user_id, product_name, barcode, score, verdict, source, scanned_at
               FROM scan_logs WHERE user_id = ?
               ORDER BY scanned_at DESC, id DESC LIMIT ?""",
            (user_id, limit),
        ) as cur:
            rows = await cur.fetchall()
    return [
        ScanLog(
            id=r[0],
            user_id=r[1],
            product_name=r[2],
            barcode=r[3],
            score=r[4],
            verdict=r[5],
            source=r[6],
            scanned_at=datetime.fromisoformat(r[7]),
        )
        for r in rows
    ]
