"""
bot.py — Telegram bot handlers.

The bot is the presentation side of the scanner: it feeds photos and text
into a per-user Scanner and renders whatever report comes back.
All visual formatting is delegated to style.py.
Session state is kept in-memory per user_id; only the API key is persisted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

import config
import database as db
import key_store
import style
from report import HealthyReport
from scanner import Scanner
from session import AppSession, View

logger = logging.getLogger(__name__)

# ── Callback data ──────────────────────────────────────────────────────────────
CB_SCAN_AGAIN = "scan:again"


# ── Per-user state ─────────────────────────────────────────────────────────────

@dataclass
class UserState:
    session: AppSession
    scanner: Scanner = field(init=False)
    restored: bool = False

    def __post_init__(self) -> None:
        self.scanner = Scanner(credential=None, on_report=self.session.report_ready)


_users: dict[int, UserState] = {}


async def get_state(user_id: int) -> UserState:
    """Return the user's state, restoring their stored key on first contact."""
    state = _users.get(user_id)
    if state is None:
        state = UserState(session=AppSession(user_id))
        _users[user_id] = state
    if not state.restored:
        await state.session.restore()
        state.restored = True
    state.scanner.credential = state.session.credential
    return state


def again_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🔁  Scan another", callback_data=CB_SCAN_AGAIN)],
    ])


# ── Commands ───────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    state = await get_state(update.effective_user.id)
    await update.message.reply_text(style.welcome(), parse_mode="MarkdownV2")
    if state.session.view is View.SETUP:
        await update.message.reply_text(style.onboarding(), parse_mode="MarkdownV2")


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.help_text(), parse_mode="MarkdownV2")


async def cmd_key(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    state = await get_state(update.effective_user.id)
    value = " ".join(context.args or []).strip()
    if not value:
        await update.message.reply_text(style.onboarding(), parse_mode="MarkdownV2")
        return

    # Keep the key out of the chat history
    try:
        await update.message.delete()
    except TelegramError as exc:
        logger.warning("Could not delete /key message: %s", exc)

    await state.session.save_credential(value)
    state.scanner.credential = value
    await update.effective_chat.send_message(
        style.key_saved(key_store.mask(value)), parse_mode="MarkdownV2",
    )


async def cmd_logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    state = await get_state(update.effective_user.id)
    await state.scanner.close()
    await state.session.logout()
    state.scanner.credential = None
    await update.message.reply_text(style.logged_out(), parse_mode="MarkdownV2")


async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    scans = await db.get_recent_scans(update.effective_user.id, limit=config.HISTORY_SIZE)
    await update.message.reply_text(style.history(scans), parse_mode="MarkdownV2")


# ── Scanning ───────────────────────────────────────────────────────────────────

async def _ready(update: Update, state: UserState) -> bool:
    if not state.session.credential:
        await update.message.reply_text(style.error_no_key(), parse_mode="MarkdownV2")
        return False
    if state.scanner.busy:
        await update.message.reply_text(style.error_busy(), parse_mode="MarkdownV2")
        return False
    return True


async def _deliver(msg, user_id: int, report: Optional[HealthyReport], source: str) -> None:
    if report is None:
        await msg.edit_text(style.error_analysis_failed(), parse_mode="MarkdownV2")
        return
    await msg.edit_text(
        style.report_card(report),
        parse_mode="MarkdownV2",
        reply_markup=again_keyboard(),
    )
    try:
        await db.log_scan(
            user_id=user_id,
            product_name=report.product_name,
            barcode=report.barcode,
            score=report.score,
            verdict=report.verdict,
            source=source,
        )
    except Exception as exc:
        logger.warning("Could not log scan for user %d: %s", user_id, exc)


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    state = await get_state(user_id)
    if not await _ready(update, state):
        return

    msg = await update.message.reply_text(
        style.loading(style.STATUS["capturing"]), parse_mode="MarkdownV2",
    )

    photo       = update.message.photo[-1]
    photo_file  = await context.bot.get_file(photo.file_id)
    image_bytes = bytes(await photo_file.download_as_bytearray())

    state.session.reset()
    report = await state.scanner.upload_image(image_bytes)
    await _deliver(msg, user_id, report, source="photo")


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    state = await get_state(user_id)
    text = (update.message.text or "").strip()
    if not text:
        return
    if not await _ready(update, state):
        return

    msg = await update.message.reply_text(style.loading_text(text), parse_mode="MarkdownV2")
    state.session.reset()
    report = await state.scanner.submit_text(text)
    await _deliver(msg, user_id, report, source="text")


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    state = await get_state(update.effective_user.id)

    if query.data == CB_SCAN_AGAIN:
        state.session.reset()
        await query.message.reply_text(
            "📸 Send a photo or type a product name\\.", parse_mode="MarkdownV2",
        )


async def handle_other(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.not_supported(), parse_mode="MarkdownV2")


# ── App factory ────────────────────────────────────────────────────────────────

async def _post_init(application: Application) -> None:
    await db.init_db()


def build_application() -> Application:
    if not config.TELEGRAM_BOT_TOKEN:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set (.env or environment).")

    app = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .build()
    )

    app.add_handler(CommandHandler("start",   cmd_start))
    app.add_handler(CommandHandler("help",    cmd_help))
    app.add_handler(CommandHandler("key",     cmd_key))
    app.add_handler(CommandHandler("logout",  cmd_logout))
    app.add_handler(CommandHandler("history", cmd_history))
    app.add_handler(MessageHandler(filters.PHOTO,                   handle_photo))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(CallbackQueryHandler(handle_callback))
    app.add_handler(MessageHandler(~filters.COMMAND,                handle_other))
    return app
