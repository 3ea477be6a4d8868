"""
scanner.py — capture orchestrator.

Drives one acquisition at a time through:

  IDLE ──start_live()──▶ LIVE_FEED_INITIALIZING ──▶ LIVE_FEED_ACTIVE
                                 │                       │ code detected / capture()
                                 ▼                       ▼
                        FAILED(feed unavailable)     CAPTURING ──▶ ANALYZING ──▶ DONE
                                 │ upload_image()        ▲              │
                                 └───────────────────────┘              ▼
  IDLE ──submit_text()──────────────────────────────▶ ANALYZING   FAILED(analysis failed)

Rules this class enforces:
  • One capture in flight. While `busy`, detections and captures are
    ignored, never queued.
  • Capture releases the detector and the feed synchronously, before the
    first await of the lookup/analysis pipeline.
  • Lookup failure means "no context"; analysis failure fails the attempt
    and leaves nothing behind.
  • In-flight analysis is never cancelled. After close() or switch_mode()
    its result is dropped, but it is still awaited by join(), and the
    scanner is free to start a new acquisition straight away.

Collaborators (feed, detector, lookup, analysis) are injected so the state
machine can be driven without a camera or network.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import config
from camera import AcquisitionTimeout, FeedUnavailable, VideoFeed
from detector import BarcodeDetector, DetectionLoop
from providers.base import AnalysisFailure
from report import (
    AnalysisRequest, HealthyReport, ImageRequest, ProductCode, ProductContext, TextRequest,
)

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE                   = "idle"
    LIVE_FEED_INITIALIZING = "live_feed_initializing"
    LIVE_FEED_ACTIVE       = "live_feed_active"
    CAPTURING              = "capturing"
    ANALYZING              = "analyzing"
    DONE                   = "done"
    FAILED                 = "failed"


class AcquisitionMode(str, Enum):
    LIVE   = "live"
    MANUAL = "manual"


class FailureReason(str, Enum):
    FEED_UNAVAILABLE = "feed_unavailable"
    UPLOAD_FAILED    = "upload_failed"
    ANALYSIS_FAILED  = "analysis_failed"


# States from which a new acquisition may start
_RESTING = (ScanState.IDLE, ScanState.DONE, ScanState.FAILED)


@dataclass
class AcquisitionSession:
    mode: AcquisitionMode
    live_feed_active: bool = False
    last_detected_code: Optional[ProductCode] = None
    busy: bool = False


ReportCallback = Callable[[HealthyReport], Union[None, Awaitable[None]]]
ErrorCallback  = Callable[[FailureReason, Exception], Union[None, Awaitable[None]]]


async def _call(callback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def _default_feed() -> VideoFeed:
    from camera import OpenCVFeed
    return OpenCVFeed(config.CAMERA_INDEX)


def _default_detector() -> BarcodeDetector:
    from detector import detector_capability
    return detector_capability()


async def _default_lookup(code: ProductCode) -> Optional[ProductContext]:
    from product_lookup import lookup
    return await lookup(code)


async def _default_analyze(credential, request: AnalysisRequest) -> HealthyReport:
    from providers.manager import analyze
    return await analyze(credential, request)


class Scanner:
    """Acquisition-and-analysis pipeline for one user."""

    def __init__(
        self,
        credential: Optional[str],
        on_report: ReportCallback,
        *,
        feed_factory: Callable[[], VideoFeed] = _default_feed,
        detector_factory: Callable[[], BarcodeDetector] = _default_detector,
        lookup=_default_lookup,
        analyze=_default_analyze,
        on_state: Optional[Callable[[ScanState], None]] = None,
        on_error: Optional[ErrorCallback] = None,
        feed_timeout: Optional[float] = None,
        detect_interval: Optional[float] = None,
    ) -> None:
        self.credential = credential
        self._on_report = on_report
        self._on_state = on_state
        self._on_error = on_error
        self._feed_factory = feed_factory
        self._detector_factory = detector_factory
        self._lookup = lookup
        self._analyze = analyze
        self._feed_timeout = feed_timeout if feed_timeout is not None else config.FEED_TIMEOUT
        self._detect_interval = (
            detect_interval if detect_interval is not None else config.DETECT_INTERVAL
        )

        self.state: ScanState = ScanState.IDLE
        self.session: Optional[AcquisitionSession] = None
        self.failure: Optional[FailureReason] = None
        self.last_error: Optional[Exception] = None
        self.report: Optional[HealthyReport] = None

        # Owned exclusively by this instance while LIVE_FEED_* is active
        self._feed: Optional[VideoFeed] = None
        self._detection: Optional[DetectionLoop] = None

        self._inflight: Optional[asyncio.Task] = None
        # Pipelines whose result will be discarded, plus error notifications;
        # join() still awaits them
        self._pending: set[asyncio.Task] = set()
        # Bumped on close() / switch_mode(); stale pipelines compare against it
        self._generation = 0

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    @property
    def mode(self) -> Optional[AcquisitionMode]:
        return self.session.mode if self.session else None

    @property
    def detection_running(self) -> bool:
        return self._detection is not None and self._detection.running

    def _set_state(self, state: ScanState) -> None:
        if state is self.state:
            return
        logger.debug("Scanner %s → %s", self.state.value, state.value)
        self.state = state
        if self._on_state:
            self._on_state(state)

    # ── Live feed ─────────────────────────────────────────────────────────────

    async def start_live(self) -> bool:
        """
        Enter LIVE mode: acquire the feed and start detection.
        Returns True when the feed is active. Failure leaves the scanner in
        FAILED(feed unavailable), from which start_live() or upload_image()
        may be called again.
        """
        if self.state in (ScanState.LIVE_FEED_INITIALIZING, ScanState.LIVE_FEED_ACTIVE):
            return self.state is ScanState.LIVE_FEED_ACTIVE
        if self.state not in _RESTING:
            logger.info("start_live() ignored while %s", self.state.value)
            return False

        self._release_feed()
        self.session = AcquisitionSession(mode=AcquisitionMode.LIVE)
        self.failure = None
        self.last_error = None
        self._set_state(ScanState.LIVE_FEED_INITIALIZING)

        generation = self._generation
        feed = self._feed_factory()
        self._feed = feed

        error: Optional[Exception] = None
        try:
            await asyncio.wait_for(feed.open(), timeout=self._feed_timeout)
        except asyncio.TimeoutError:
            error = AcquisitionTimeout(
                f"Camera did not start within {self._feed_timeout:.0f}s. "
                f"Check permissions or upload a photo."
            )
        except FeedUnavailable as exc:
            error = exc
        except Exception as exc:
            logger.error("Unexpected error opening the feed: %s", exc)
            error = FeedUnavailable(str(exc))

        if generation != self._generation or self._feed is not feed:
            # Mode switched or scanner closed while waiting on the device
            feed.close()
            return False

        if error is not None:
            self._release_feed()
            logger.warning("Live feed unavailable: %s", error)
            await self._fail(FailureReason.FEED_UNAVAILABLE, error)
            return False

        self.session.live_feed_active = True
        self._set_state(ScanState.LIVE_FEED_ACTIVE)

        self._detection = DetectionLoop(
            feed, self._detector_factory(), self._on_code_detected, self._detect_interval,
        )
        self._detection.start()
        return True

    def _release_feed(self) -> None:
        """Stop detection, then release the feed. Idempotent."""
        detection, self._detection = self._detection, None
        if detection is not None:
            detection.stop()
        feed, self._feed = self._feed, None
        if feed is not None:
            feed.close()
        if self.session is not None:
            self.session.live_feed_active = False

    # ── Capture ───────────────────────────────────────────────────────────────

    def _on_code_detected(self, code: ProductCode) -> bool:
        """Detection callback. Returns False when the code was ignored."""
        if self.busy or self.state is not ScanState.LIVE_FEED_ACTIVE:
            logger.debug("Ignoring detection %s while %s", code, self.state.value)
            return False
        self.session.last_detected_code = code
        self._begin_capture(code)
        return True

    async def capture(self) -> Optional[HealthyReport]:
        """Manual capture from the live feed (no product code attached)."""
        if self.busy or self.state is not ScanState.LIVE_FEED_ACTIVE:
            logger.debug("capture() ignored while %s", self.state.value)
            return None
        task = self._begin_capture(None)
        if task is None:
            return None
        return await asyncio.shield(task)

    def _begin_capture(self, code: Optional[ProductCode]) -> Optional[asyncio.Task]:
        # Nothing in here yields to the event loop: the feed and detector are
        # gone before any lookup/analysis await can let another tick in.
        try:
            image_bytes = self._feed.snapshot_jpeg()
        except Exception as exc:
            self._release_feed()
            logger.warning("Snapshot failed: %s", exc)
            self._mark_failed(FailureReason.FEED_UNAVAILABLE, exc)
            # Called from the detection loop, so the callback runs in its own task
            self._track(self._notify_error(FailureReason.FEED_UNAVAILABLE, exc))
            return None

        self._release_feed()
        self.session.busy = True
        self._set_state(ScanState.CAPTURING)
        return self._spawn(self._run_image_pipeline(self._generation, image_bytes, code))

    async def upload_image(self, image_bytes: bytes) -> Optional[HealthyReport]:
        """
        Analyse an uploaded photo. Works from any non-busy state, including
        FAILED(feed unavailable); any live feed is released first.
        """
        if self.busy:
            logger.info("upload_image() ignored: analysis already in flight")
            return None
        self._release_feed()
        if self.session is None:
            self.session = AcquisitionSession(mode=AcquisitionMode.LIVE)
        self.session.busy = True
        self.failure = None
        self._set_state(ScanState.CAPTURING)
        task = self._spawn(self._run_image_pipeline(self._generation, image_bytes, None))
        return await asyncio.shield(task)

    async def upload_file(self, path: Union[str, Path]) -> Optional[HealthyReport]:
        """Read an image file off disk (in a worker thread) and analyse it."""
        if self.busy:
            logger.info("upload_file() ignored: analysis already in flight")
            return None
        try:
            image_bytes = await asyncio.to_thread(Path(path).read_bytes)
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            await self._fail(FailureReason.UPLOAD_FAILED, exc)
            return None
        return await self.upload_image(image_bytes)

    # ── Manual text ───────────────────────────────────────────────────────────

    async def submit_text(self, text: str) -> Optional[HealthyReport]:
        """MANUAL mode: free text goes straight to analysis."""
        text = (text or "").strip()
        if not text:
            return None
        if self.busy:
            logger.info("submit_text() ignored: analysis already in flight")
            return None
        self._release_feed()
        self.session = AcquisitionSession(mode=AcquisitionMode.MANUAL, busy=True)
        self.failure = None
        self._set_state(ScanState.ANALYZING)
        task = self._spawn(self._run_text_pipeline(self._generation, text))
        return await asyncio.shield(task)

    # ── Mode switching / teardown ─────────────────────────────────────────────

    def switch_mode(self, mode: AcquisitionMode) -> None:
        """
        Adopt a new acquisition mode. An active feed is force-released; an
        in-flight analysis keeps running but its result will be discarded.
        """
        if self.state not in _RESTING or self._inflight is not None:
            self._generation += 1
            self._retire_inflight()
            self._release_feed()
        self.session = AcquisitionSession(mode=mode)
        self.failure = None
        self._set_state(ScanState.IDLE)

    async def close(self) -> None:
        """Navigation away: release everything and wait out in-flight work."""
        self._generation += 1
        self._retire_inflight()
        self._release_feed()
        self.session = None
        self._set_state(ScanState.IDLE)
        await self.join()

    async def join(self) -> None:
        """Wait for the in-flight pipeline and any discarded ones still running."""
        tasks = set(self._pending)
        if self._inflight is not None:
            tasks.add(self._inflight)
        if tasks:
            await asyncio.shield(asyncio.gather(*tasks))

    # ── Pipelines ─────────────────────────────────────────────────────────────

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight = task
        return task

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _retire_inflight(self) -> None:
        """Detach the in-flight pipeline so a new acquisition may start."""
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run_image_pipeline(
        self,
        generation: int,
        image_bytes: bytes,
        code: Optional[ProductCode],
    ) -> Optional[HealthyReport]:
        try:
            context: Optional[ProductContext] = None
            if code:
                try:
                    context = await self._lookup(code)
                except Exception as exc:
                    logger.warning("Lookup for %s failed: %s", code, exc)
                    context = None

            if generation == self._generation:
                self._set_state(ScanState.ANALYZING)

            try:
                report = await self._analyze(
                    self.credential, ImageRequest(image_bytes, context),
                )
            except Exception as exc:
                return await self._finish_failure(generation, exc)

            if context is not None and context.image_url:
                report = report.with_image(context.image_url)
            return await self._finish_success(generation, report)
        finally:
            self._end_pipeline(generation)

    async def _run_text_pipeline(self, generation: int, text: str) -> Optional[HealthyReport]:
        try:
            try:
                report = await self._analyze(self.credential, TextRequest(text))
            except Exception as exc:
                return await self._finish_failure(generation, exc)
            return await self._finish_success(generation, report)
        finally:
            self._end_pipeline(generation)

    def _end_pipeline(self, generation: int) -> None:
        # A retired pipeline must not touch the state of its successor
        if generation != self._generation or self._inflight is not asyncio.current_task():
            return
        self._inflight = None
        if self.session is not None:
            self.session.busy = False

    async def _finish_success(self, generation: int, report: HealthyReport) -> Optional[HealthyReport]:
        if generation != self._generation:
            logger.info("Discarding report for %r: scanner moved on", report.product_name)
            return None
        self.session = None
        self.report = report
        self._set_state(ScanState.DONE)
        try:
            await _call(self._on_report, report)
        except Exception:
            logger.exception("Report callback failed")
        return report

    async def _finish_failure(self, generation: int, exc: Exception) -> None:
        failure = exc if isinstance(exc, AnalysisFailure) else AnalysisFailure()
        if generation != self._generation:
            logger.info("Discarding analysis failure: scanner moved on (%s)", exc)
            return None
        logger.warning("Analysis failed: %s", exc)
        self.session = None
        await self._fail(FailureReason.ANALYSIS_FAILED, failure)
        return None

    def _mark_failed(self, reason: FailureReason, exc: Exception) -> None:
        self.failure = reason
        self.last_error = exc
        self._set_state(ScanState.FAILED)

    async def _fail(self, reason: FailureReason, exc: Exception) -> None:
        self._mark_failed(reason, exc)
        await self._notify_error(reason, exc)

    async def _notify_error(self, reason: FailureReason, exc: Exception) -> None:
        if not self._on_error:
            return
        try:
            await _call(self._on_error, reason, exc)
        except Exception:
            logger.exception("Error callback failed")
