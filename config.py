"""
Central configuration — reads from .env file.

Credential priority order (see key_store.py):
  1. Database (saved per user via /key in the bot) — takes precedence
  2. GEMINI_API_KEY environment variable / .env  — fallback / bootstrap

Everything else is plain module attributes so tests can monkeypatch them.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Telegram ──────────────────────────────────────────────────────────────────
# Only needed when running the bot (python main.py). The local camera scanner
# (python main.py scan) works without it.
TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

# ── Analysis service (Google Gemini) ──────────────────────────────────────────
# Users normally paste their own AI Studio key; this one is the shared fallback.
GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL: str          = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# Upper bound for one analysis call (seconds). No retries.
ANALYSIS_TIMEOUT: float = float(os.getenv("ANALYSIS_TIMEOUT", "60"))

# ── Product lookup (Open Food Facts) ──────────────────────────────────────────
OFF_BASE_URL: str   = os.getenv("OFF_BASE_URL", "https://world.openfoodfacts.org").rstrip("/")
# Open Food Facts asks API clients to send an identifying User-Agent
OFF_USER_AGENT: str = os.getenv("OFF_USER_AGENT", "HealthyInformer/1.0 (telegram bot)")
LOOKUP_TIMEOUT: float = float(os.getenv("LOOKUP_TIMEOUT", "10"))

# ── Live camera scanning ──────────────────────────────────────────────────────
CAMERA_INDEX: int       = int(os.getenv("CAMERA_INDEX", "0"))
FEED_TIMEOUT: float     = float(os.getenv("FEED_TIMEOUT", "8"))
DETECT_INTERVAL: float  = float(os.getenv("DETECT_INTERVAL", "0.5"))

# ── Bot behaviour ─────────────────────────────────────────────────────────────
HISTORY_SIZE: int = int(os.getenv("HISTORY_SIZE", "5"))
