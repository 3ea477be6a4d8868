"""
main.py — Single entry point.

  python main.py                      run the Telegram bot (polling)
  python main.py scan                 live camera scan on this machine
  python main.py scan --image F.jpg   analyse a photo from disk
  python main.py scan --text "..."    analyse a product by name
  python main.py scan --list-cameras  show camera indices that open

The bot and the local scanner share the same pipeline (scanner.Scanner);
only the presentation differs.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
import threading
from pathlib import Path

import config

# Log file lives in the same data/ directory as the database so that a single
# Docker volume mount (./data:/app/data) captures both.
_data_dir = Path(os.getenv("DATA_DIR", "data"))
_data_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(_data_dir / "bot.log"), encoding="utf-8"),
    ],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("google_genai").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# ── Telegram bot ──────────────────────────────────────────────────────────────

async def run_bot() -> None:
    # Initialise the DB explicitly so a failure is visible before polling starts
    import database as _db
    try:
        await _db.init_db()
        logger.info("Database ready at %s", _db.DB_PATH)
    except Exception as exc:
        logger.critical("FATAL: database init failed: %s", exc, exc_info=True)
        raise

    from bot import build_application
    ptb_app = build_application()

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    async with ptb_app:
        await ptb_app.start()
        await ptb_app.updater.start_polling(
            allowed_updates=["message", "callback_query"],
            drop_pending_updates=True,
        )
        logger.info("✅ Bot is running. Press Ctrl+C to stop.")

        try:
            await stop_event.wait()
        except (KeyboardInterrupt, SystemExit):
            pass

        logger.info("Shutting down…")
        await ptb_app.updater.stop()
        await ptb_app.stop()

    logger.info("Goodbye.")


# ── Local scan ────────────────────────────────────────────────────────────────

def format_report(report) -> str:
    """Plain-text rendering for the terminal."""
    lines = [
        f"{report.product_name}" + (f"  [{report.barcode}]" if report.barcode else ""),
        f"Score: {report.score}/100   Verdict: {report.verdict}",
    ]
    if report.sugar_g is not None or report.protein_g is not None:
        lines.append(f"Sugar: {report.sugar_g} g   Protein: {report.protein_g} g")
    lines += ["", report.analysis_text, ""]
    for item in report.ingredients:
        line = f"  [{item.risk.value:<7}] {item.name}"
        if item.shows_reason:
            line += f"  ({item.reason})"
        lines.append(line)
    if report.product_image:
        lines += ["", f"Image: {report.product_image}"]
    return "\n".join(lines)


def wait_for_enter() -> asyncio.Future:
    """Future resolved with the next line typed on stdin ("" at end of input)."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _resolve(line: str) -> None:
        if not future.done():
            future.set_result(line)

    def _read() -> None:
        line = sys.stdin.readline()
        try:
            loop.call_soon_threadsafe(_resolve, line)
        except RuntimeError:
            # Event loop already closed
            pass

    # Daemon thread: a pending readline must not hold up interpreter exit
    threading.Thread(target=_read, name="stdin-reader", daemon=True).start()
    return future


async def live_scan(scanner, done: asyncio.Event, read_line=wait_for_enter) -> None:
    """
    Wait on a live scan until a result or failure sets `done`. Enter on the
    terminal takes a manual capture, which is the only way in when the host
    has no barcode detection.
    """
    if scanner.detection_running:
        logger.info("Point the camera at a barcode, or press Enter to capture. Ctrl+C to stop.")
    else:
        logger.info("Barcode detection unavailable on this host. Press Enter to capture.")

    finished = asyncio.ensure_future(done.wait())
    try:
        while not finished.done():
            line = read_line()
            await asyncio.wait({line, finished}, return_when=asyncio.FIRST_COMPLETED)
            if finished.done():
                line.cancel()
                break
            if line.result() == "":
                if not scanner.detection_running:
                    logger.warning("Input closed and no barcode detection: stopping.")
                    break
                await finished
                break
            await scanner.capture()
    finally:
        finished.cancel()


async def run_scan(args: argparse.Namespace) -> int:
    from scanner import AcquisitionMode, Scanner

    if args.list_cameras:
        from camera import CapabilityUnavailable, OpenCVFeed
        try:
            cameras = await asyncio.to_thread(OpenCVFeed.list_cameras)
        except CapabilityUnavailable as exc:
            logger.error("%s", exc)
            return 1
        print("Cameras: " + (", ".join(str(i) for i in cameras) if cameras else "none found"))
        return 0

    credential = args.key or config.GEMINI_API_KEY
    if not credential:
        logger.error("No Gemini API key: pass --key or set GEMINI_API_KEY.")
        return 2

    done = asyncio.Event()

    def on_report(report) -> None:
        print(format_report(report))
        done.set()

    def on_error(reason, exc) -> None:
        print(f"Scan failed ({reason.value}): {exc}", file=sys.stderr)
        done.set()

    if args.camera is not None:
        config.CAMERA_INDEX = args.camera

    scanner = Scanner(credential, on_report, on_error=on_error)
    try:
        if args.text:
            scanner.switch_mode(AcquisitionMode.MANUAL)
            await scanner.submit_text(args.text)
        elif args.image:
            await scanner.upload_file(args.image)
        else:
            if not await scanner.start_live():
                return 1
            await live_scan(scanner, done)
            await scanner.join()
    finally:
        await scanner.close()
    return 0 if scanner.report is not None else 1


# ── CLI ───────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="healthy-informer")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("bot", help="Run the Telegram bot (default)")

    scan = sub.add_parser("scan", help="Scan a product on this machine")
    source = scan.add_mutually_exclusive_group()
    source.add_argument("--image", help="Analyse this image file instead of the camera")
    source.add_argument("--text", help="Analyse a product by name")
    source.add_argument("--list-cameras", action="store_true", help="List camera indices and exit")
    scan.add_argument("--camera", type=int, default=None, help="Camera index (default: CAMERA_INDEX)")
    scan.add_argument("--key", default=None, help="Gemini API key (default: GEMINI_API_KEY)")
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "scan":
            sys.exit(asyncio.run(run_scan(args)))
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
