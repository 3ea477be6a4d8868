"""
detector.py — continuous barcode detection on the live feed.

  detector_capability()   checked once at LIVE mode entry; returns a working
                          PyzbarDetector or the permanent UnavailableDetector
  DetectionLoop           polls the feed every `interval` seconds and reports
                          each distinct code; a code on_code refuses is
                          offered again on the next tick

A host without zbar is not an error — scanning degrades to manual capture.
Per-frame failures (blur, decode errors) are dropped and the next tick retries.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from report import ProductCode

logger = logging.getLogger(__name__)


class BarcodeDetector(ABC):
    available: bool = True

    @abstractmethod
    def detect(self, frame) -> Optional[ProductCode]:
        """Return the first code visible in `frame`, or None."""
        ...


class UnavailableDetector(BarcodeDetector):
    """Stand-in when the host has no barcode support: never detects anything."""
    available = False

    def __init__(self, reason: str = "") -> None:
        self.reason = reason

    def detect(self, frame) -> Optional[ProductCode]:
        return None


class PyzbarDetector(BarcodeDetector):
    """EAN / UPC / QR / Code-128 recognition through the zbar library."""

    def __init__(self) -> None:
        # Both raise ImportError when the wheel or the zbar shared library is missing
        import cv2
        from pyzbar import pyzbar

        self._cv2 = cv2
        self._decode = pyzbar.decode
        self._symbols = [
            pyzbar.ZBarSymbol.EAN13,
            pyzbar.ZBarSymbol.EAN8,
            pyzbar.ZBarSymbol.UPCA,
            pyzbar.ZBarSymbol.UPCE,
            pyzbar.ZBarSymbol.QRCODE,
            pyzbar.ZBarSymbol.CODE128,
        ]

    def detect(self, frame) -> Optional[ProductCode]:
        if frame is None:
            return None
        if getattr(frame, "ndim", 2) == 3:
            frame = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2GRAY)
        for symbol in self._decode(frame, symbols=self._symbols):
            code = symbol.data.decode("utf-8", errors="replace").strip()
            if code:
                return code
        return None


def detector_capability() -> BarcodeDetector:
    """Return a usable detector, or UnavailableDetector when the host lacks zbar/OpenCV."""
    try:
        return PyzbarDetector()
    except (ImportError, OSError) as exc:
        logger.info("Barcode detection not supported on this host (%s). Manual capture only.", exc)
        return UnavailableDetector(str(exc))


class DetectionLoop:
    """
    Periodic detection over a live feed.

    `on_code` is called synchronously from the loop's task and returns whether
    it accepted the code. An accepted code that stays in view is not
    re-reported; a refused one is offered again on the next tick. Nothing is
    reported once stop() has been called.
    """

    def __init__(
        self,
        feed,
        detector: BarcodeDetector,
        on_code: Callable[[ProductCode], bool],
        interval: float = 0.5,
    ) -> None:
        self._feed     = feed
        self._detector = detector
        self._on_code  = on_code
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stopped  = False
        self._last_code: Optional[ProductCode] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._stopped

    def start(self) -> None:
        if not self._detector.available:
            logger.info("Detection loop not started: no barcode capability")
            return
        if self._task is not None or self._stopped:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Stop immediately. Safe to call from inside on_code."""
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self._interval)
            if self._stopped:
                return
            code = await self._tick()
            # A tick that was in flight during teardown must not fire
            if self._stopped:
                return
            if code is None:
                self._last_code = None
                continue
            if code == self._last_code:
                continue
            if self._on_code(code):
                self._last_code = code
                logger.info("Barcode detected: %s", code)

    async def _tick(self) -> Optional[ProductCode]:
        try:
            frame = await asyncio.to_thread(self._feed.read_frame)
            if frame is None:
                return None
            return await asyncio.to_thread(self._detector.detect, frame)
        except Exception as exc:
            logger.debug("Detection tick failed: %s", exc)
            return None
