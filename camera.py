"""
camera.py — live feed for barcode scanning, backed by OpenCV.

The scanner owns exactly one feed at a time. A feed is opened once
(`await feed.open()`), read from by the detection loop and the capture step,
and released with the synchronous `close()`. `close()` is safe to call at
any point, including while `open()` is still waiting on the device.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


# ── Errors ────────────────────────────────────────────────────────────────────

class FeedUnavailable(Exception):
    """The live feed could not be started. Recoverable: retry or upload a photo."""


class CapabilityUnavailable(FeedUnavailable):
    """No camera support on this host (e.g. OpenCV not installed)."""


class PermissionDenied(FeedUnavailable):
    """The capture device refused to open (busy, missing or not permitted)."""


class AcquisitionTimeout(FeedUnavailable):
    """The capture device did not open within the feed timeout."""


# ── Feed port ─────────────────────────────────────────────────────────────────

class VideoFeed(ABC):
    """A live video source the scanner can read frames from."""

    @abstractmethod
    async def open(self) -> None:
        """Acquire the device. Raises FeedUnavailable subclasses."""
        ...

    @abstractmethod
    def read_frame(self):
        """Return the current frame, or None when no frame is ready."""
        ...

    @abstractmethod
    def snapshot_jpeg(self) -> bytes:
        """Grab the current frame as JPEG bytes. Raises FeedUnavailable."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the device. Idempotent."""
        ...

    @property
    @abstractmethod
    def active(self) -> bool:
        ...


class OpenCVFeed(VideoFeed):
    """USB / built-in camera via cv2.VideoCapture."""

    def __init__(self, camera_index: int = 0, jpeg_quality: int = 80) -> None:
        self._camera_index = camera_index
        self._jpeg_quality = jpeg_quality
        self._cap = None
        self._closed = False
        # VideoCapture is not thread-safe; reads run in worker threads
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._cap is not None and not self._closed

    async def open(self) -> None:
        try:
            import cv2
        except ImportError:
            raise CapabilityUnavailable(
                "opencv-python is required for live scanning: pip install opencv-python"
            ) from None
        await asyncio.to_thread(self._open_blocking, cv2)

    def _open_blocking(self, cv2) -> None:
        cap = cv2.VideoCapture(self._camera_index)
        if not cap.isOpened():
            cap.release()
            raise PermissionDenied(
                f"Camera {self._camera_index} could not be opened. "
                f"Check that it is connected and not in use."
            )
        with self._lock:
            if self._closed:
                # Torn down while we were waiting on the device
                cap.release()
                return
            self._cap = cap
        logger.info("Camera %d opened", self._camera_index)

    def read_frame(self):
        with self._lock:
            if self._cap is None or self._closed:
                return None
            ok, frame = self._cap.read()
        return frame if ok else None

    def snapshot_jpeg(self) -> bytes:
        import cv2

        frame = self.read_frame()
        if frame is None:
            raise FeedUnavailable(f"Camera {self._camera_index} returned no frame")
        ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self._jpeg_quality])
        if not ok:
            raise FeedUnavailable("Could not encode the captured frame")
        return buf.tobytes()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()
            logger.info("Camera %d released", self._camera_index)

    @staticmethod
    def list_cameras(max_check: int = 10) -> list[int]:
        """List camera indices that open."""
        try:
            import cv2
        except ImportError:
            raise CapabilityUnavailable(
                "opencv-python is required: pip install opencv-python"
            ) from None

        available: list[int] = []
        for i in range(max_check):
            cap = cv2.VideoCapture(i)
            if cap.isOpened():
                available.append(i)
            cap.release()
        return available
