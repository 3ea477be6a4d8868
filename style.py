"""
style.py — visual style for the bot.

Design language:
  • Loud, blunt cards (the analysis persona is a no-nonsense nutritionist)
  • Unicode box-drawing dividers
  • Score bar + verdict up top, ingredients with risk icons below
  • MarkdownV2 throughout

All text that goes into Telegram messages should be formatted through this module.
"""
from __future__ import annotations

from typing import Optional

from report import HealthyReport, IngredientFinding, Risk

# ── Escape ────────────────────────────────────────────────────────────────────

def esc(text: str) -> str:
    """Escape all MarkdownV2 special characters."""
    for ch in r"\_*[]()~`>#+-=|{}.!":
        text = text.replace(ch, f"\\{ch}")
    return text


# ── Visual constants ──────────────────────────────────────────────────────────

DIV   = "━━━━━━━━━━━━━━━━━━━━━━━━━━"    # thick divider
SDIV  = "┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄"    # subtle divider

RISK_ICON = {Risk.SAFE: "🟢", Risk.CAUTION: "🟡", Risk.DANGER: "🔴"}

MAX_MESSAGE = 4050   # Telegram hard limit is 4096 after entity parsing


def score_icon(score: int) -> str:
    if score >= 70:
        return "💪"
    if score >= 40:
        return "😐"
    return "☠️"


def score_bar(score: int, width: int = 10) -> str:
    filled = round(max(0, min(100, score)) / 100 * width)
    return "█" * filled + "░" * (width - filled)


def fmt_grams(value: Optional[float]) -> str:
    if value is None:
        return "—"
    return f"{value:g} g"


# ══════════════════════════════════════════════════════════════════════════════
# START / SETUP
# ══════════════════════════════════════════════════════════════════════════════

def welcome() -> str:
    return (
        f"🥦 *HEALTHY INFORMER*\n"
        f"{DIV}\n\n"
        f"Send me a food product and I'll tell you the truth about it\\.\n\n"
        f"✨  *What I can do*\n"
        f"▸ Read the barcode and pull data from Open Food Facts\n"
        f"▸ Judge the ingredients: SAFE, CAUTION or DANGER\n"
        f"▸ Score it 0–100 and give a verdict\n\n"
        f"{DIV}\n"
        f"_📸 Send a photo, or type a product name_"
    )


def onboarding() -> str:
    return (
        f"🔑 *INITIALIZE*\n"
        f"{DIV}\n\n"
        f"To begin, give me your Gemini API key:\n"
        f"`/key YOUR_AI_STUDIO_KEY`\n\n"
        f"_I delete that message right away and keep the key only for your scans\\._"
    )


def key_saved(masked: str) -> str:
    return (
        f"✅ *Key saved*  {esc(masked)}\n"
        f"{SDIV}\n"
        f"📸 Send a product photo, or type a product name\\."
    )


def logged_out() -> str:
    return "🔒 Key removed\\. Use `/key YOUR_KEY` to start again\\."


def help_text() -> str:
    return (
        f"📖 *HOW TO USE*\n"
        f"{DIV}\n\n"
        f"*1️⃣  Send a photo*\n"
        f"_Front label or ingredient list, well lit_\n\n"
        f"*2️⃣  Or type it*\n"
        f"_e\\.g\\. Snickers Bar 50g_\n\n"
        f"*3️⃣  Read the verdict*\n"
        f"_Score, sugar, protein and every ingredient rated_\n\n"
        f"{DIV}\n"
        f"_Commands: /start · /help · /history · /key · /logout_"
    )


# ══════════════════════════════════════════════════════════════════════════════
# PROGRESS
# ══════════════════════════════════════════════════════════════════════════════

STATUS = {
    "capturing":  "⠋ Processing image…",
    "analyzing":  "⠙ AI analysing…",
}


def loading(status: str) -> str:
    return (
        f"🔍 *PROCESSING*\n"
        f"{SDIV}\n"
        f"{esc(status)}"
    )


def loading_text(text: str) -> str:
    return (
        f"🔍 *PROCESSING*\n"
        f"{SDIV}\n"
        f"🏷️ _{esc(text[:80])}_\n\n"
        f"⠙ Judging your choice…"
    )


# ══════════════════════════════════════════════════════════════════════════════
# REPORT
# ══════════════════════════════════════════════════════════════════════════════

def ingredient_line(item: IngredientFinding) -> str:
    line = f"{RISK_ICON[item.risk]} *{esc(item.name)}*"
    if item.shows_reason:
        line += f"\n      _{esc(item.reason)}_"
    return line


def report_card(report: HealthyReport) -> str:
    """Format a finished report as one message."""
    lines = [
        f"🏷️ *{esc(report.product_name.upper())}*",
    ]
    if report.barcode:
        lines.append(f"`{esc(report.barcode)}`")
    lines += [
        DIV,
        "",
        f"{score_icon(report.score)} *{report.score}/100*  `{score_bar(report.score)}`",
        f"⚖️ *VERDICT:* {esc(report.verdict.upper())}",
        "",
        f"🍬 Sugar: {esc(fmt_grams(report.sugar_g))}   "
        f"🥩 Protein: {esc(fmt_grams(report.protein_g))}",
        "",
        SDIV,
        esc(report.analysis_text),
        SDIV,
        "",
        f"🧪 *INGREDIENTS* \\({len(report.ingredients)}\\)",
    ]
    if report.ingredients:
        lines += [ingredient_line(i) for i in report.ingredients]
    else:
        lines.append("_none listed_")
    if report.product_image:
        lines += ["", f"🖼 [Product photo]({_url(report.product_image)})"]
    lines += [DIV, "_Send another photo or name to scan again_"]

    text = "\n".join(lines)
    if len(text) > MAX_MESSAGE:
        text = text[:MAX_MESSAGE].rsplit("\n", 1)[0] + "\n…"
    return text


def _url(url: str) -> str:
    """Inside (...) of a MarkdownV2 link only ) and \\ must be escaped."""
    return url.replace("\\", "\\\\").replace(")", "\\)")


def history(scans: list) -> str:
    if not scans:
        return "📭 No scans yet\\. Send a photo to start\\."
    lines = [f"🗂 *RECENT SCANS*\n{DIV}"]
    for s in scans:
        lines.append(
            f"{score_icon(s.score)} *{s.score}*  {esc(s.product_name[:60])}  "
            f"_{esc(s.verdict)}_"
        )
    return "\n".join(lines)


# ══════════════════════════════════════════════════════════════════════════════
# ERRORS
# ══════════════════════════════════════════════════════════════════════════════

def error_analysis_failed() -> str:
    return "❌ *ANALYSIS FAILED\\.* Try again\\."


def error_busy() -> str:
    return "⏳ Still analysing your last product — hang on\\."


def error_no_key() -> str:
    return "🔑 No API key yet\\. Send `/key YOUR_KEY` first\\."


def not_supported() -> str:
    return "📸 Send a *photo* of the product or type its name\\."
