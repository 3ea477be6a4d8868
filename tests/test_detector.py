"""
Tests for detector.py.

Covers:
  - DetectionLoop: a code in view is reported once; leaving and re-entering reports again
  - stop() silences the loop, including from inside on_code
  - a code refused by on_code is offered again on the next tick
  - per-frame errors are dropped and the next tick retries
  - UnavailableDetector / detector_capability(): loop never starts
"""
from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from detector import BarcodeDetector, DetectionLoop, UnavailableDetector, detector_capability

TICK = 0.01


class FakeFeed:
    def read_frame(self):
        return object()


class ScriptedDetector(BarcodeDetector):
    """Returns the scripted results in order, then repeats the last one."""

    def __init__(self, *results):
        self._results = list(results)
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        result = self._results[0] if len(self._results) == 1 else self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def collect(seen: list):
    def on_code(code):
        seen.append(code)
        return True
    return on_code


async def run_for(loop: DetectionLoop, seconds: float) -> None:
    loop.start()
    await asyncio.sleep(seconds)
    loop.stop()


@pytest.mark.asyncio
class TestDetectionLoop:
    async def test_code_in_view_reported_once(self):
        seen = []
        loop = DetectionLoop(FakeFeed(), ScriptedDetector("5000159407236"), collect(seen), TICK)
        await run_for(loop, TICK * 15)
        assert seen == ["5000159407236"]

    async def test_code_reported_again_after_leaving_view(self):
        seen = []
        detector = ScriptedDetector("111", None, "111", None)
        loop = DetectionLoop(FakeFeed(), detector, collect(seen), TICK)
        await run_for(loop, TICK * 15)
        assert seen == ["111", "111"]

    async def test_no_reports_after_stop(self):
        seen = []
        loop = DetectionLoop(FakeFeed(), ScriptedDetector(None, None, "222"), collect(seen), TICK)
        loop.start()
        loop.stop()
        await asyncio.sleep(TICK * 10)
        assert seen == []
        assert loop.running is False

    async def test_stop_from_inside_callback(self):
        seen = []
        detector = ScriptedDetector("111", "222", "333")

        def on_code(code):
            seen.append(code)
            loop.stop()
            return True

        loop = DetectionLoop(FakeFeed(), detector, on_code, TICK)
        loop.start()
        await asyncio.sleep(TICK * 15)
        assert seen == ["111"]

    async def test_frame_errors_are_dropped(self):
        seen = []
        detector = ScriptedDetector(RuntimeError("blurry"), RuntimeError("blurry"), "333")
        loop = DetectionLoop(FakeFeed(), detector, collect(seen), TICK)
        await run_for(loop, TICK * 15)
        assert seen == ["333"]

    async def test_unavailable_detector_never_starts(self):
        seen = []
        loop = DetectionLoop(FakeFeed(), UnavailableDetector("no zbar"), collect(seen), TICK)
        loop.start()
        await asyncio.sleep(TICK * 5)
        assert loop.running is False
        assert seen == []

    async def test_start_after_stop_is_ignored(self):
        loop = DetectionLoop(FakeFeed(), ScriptedDetector("1"), lambda c: True, TICK)
        loop.stop()
        loop.start()
        assert loop.running is False

    async def test_refused_code_is_offered_again(self):
        offered = []

        def on_code(code):
            offered.append(code)
            # Busy for the first two offers, then accept
            return len(offered) > 2

        loop = DetectionLoop(FakeFeed(), ScriptedDetector("5000159407236"), on_code, TICK)
        await run_for(loop, TICK * 20)
        assert offered == ["5000159407236"] * 3


class TestCapability:
    def test_missing_library_degrades_to_unavailable(self):
        with patch("detector.PyzbarDetector", side_effect=ImportError("Unable to find zbar shared library")):
            detector = detector_capability()
        assert detector.available is False
        assert "zbar" in detector.reason
        assert detector.detect(object()) is None
