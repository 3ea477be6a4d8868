"""
Tests for providers/manager.py.

Covers:
  - get_provider(): caches per credential, refuses a missing key
  - analyze(): dispatches on the request type; lookup context is serialised
    into the call, an explicit MIME type is passed through
  - every failure (provider error, parse error, timeout) becomes AnalysisFailure
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import providers.manager as manager_mod
from providers.base import AnalysisFailure, AnalysisProvider
from providers.manager import analyze, get_provider
from report import HealthyReport, ImageRequest, ProductContext, TextRequest


def make_provider(report: HealthyReport | None = None) -> AnalysisProvider:
    p = MagicMock(spec=AnalysisProvider)
    p.name = "google"
    p.model_id = "gemini-test"
    p.full_name = "google/gemini-test"
    p.analyse_image = AsyncMock(return_value=report)
    p.analyse_text = AsyncMock(return_value=report)
    return p


@pytest.fixture
def report(report_payload) -> HealthyReport:
    return HealthyReport.from_dict(report_payload)


# ── get_provider() ─────────────────────────────────────────────────────────────

class TestGetProvider:
    def test_missing_credential_raises(self):
        with pytest.raises(AnalysisFailure, match="No Gemini API key"):
            get_provider(None)

    def test_blank_credential_raises(self):
        with pytest.raises(AnalysisFailure):
            get_provider("")

    def test_cached_per_credential(self):
        with patch.object(manager_mod, "_build_provider", side_effect=lambda c: make_provider()) as build:
            a1 = get_provider("key-a")
            a2 = get_provider("key-a")
            b = get_provider("key-b")
        assert a1 is a2
        assert a1 is not b
        assert build.call_count == 2

    def test_reset_forgets_clients(self):
        with patch.object(manager_mod, "_build_provider", side_effect=lambda c: make_provider()) as build:
            get_provider("key-a")
            manager_mod.reset_providers()
            get_provider("key-a")
        assert build.call_count == 2


# ── analyze() ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAnalyze:
    async def test_image_without_context(self, report):
        provider = make_provider(report)
        with patch.object(manager_mod, "get_provider", return_value=provider):
            result = await analyze("key", ImageRequest(b"jpeg"))
        assert result is report
        provider.analyse_image.assert_awaited_once_with(b"jpeg", None, None)

    async def test_image_with_context_sends_json(self, report):
        provider = make_provider(report)
        ctx = ProductContext(name="Nutella", brand="Ferrero")
        with patch.object(manager_mod, "get_provider", return_value=provider):
            await analyze("key", ImageRequest(b"jpeg", ctx))
        _, context_json, _ = provider.analyse_image.call_args.args
        assert context_json == ctx.to_prompt_json()

    async def test_text(self, report):
        provider = make_provider(report)
        with patch.object(manager_mod, "get_provider", return_value=provider):
            result = await analyze("key", TextRequest("Snickers Bar 50g"))
        assert result is report
        provider.analyse_text.assert_awaited_once_with("Snickers Bar 50g")
        provider.analyse_image.assert_not_awaited()

    async def test_explicit_mime_type_reaches_provider(self, report):
        provider = make_provider(report)
        with patch.object(manager_mod, "get_provider", return_value=provider):
            await analyze("key", ImageRequest(b"\x89PNG", mime_type="image/png"))
        provider.analyse_image.assert_awaited_once_with(b"\x89PNG", None, "image/png")

    async def test_unknown_request_type_is_rejected(self):
        with pytest.raises(TypeError):
            await analyze("key", "Snickers")

    async def test_missing_key_is_analysis_failure(self):
        with pytest.raises(AnalysisFailure):
            await analyze(None, TextRequest("Snickers"))


@pytest.mark.asyncio
class TestFailures:
    async def test_provider_exception_becomes_analysis_failure(self):
        provider = make_provider()
        provider.analyse_text = AsyncMock(side_effect=RuntimeError("401 API key invalid"))
        with patch.object(manager_mod, "get_provider", return_value=provider):
            with pytest.raises(AnalysisFailure) as info:
                await analyze("bad-key", TextRequest("Snickers"))
        assert isinstance(info.value.__cause__, RuntimeError)
        assert str(info.value) == "Failed to analyze product. Please try again."

    async def test_parse_error_becomes_analysis_failure(self):
        provider = make_provider()
        provider.analyse_image = AsyncMock(side_effect=ValueError("JSON parse error"))
        with patch.object(manager_mod, "get_provider", return_value=provider):
            with pytest.raises(AnalysisFailure):
                await analyze("key", ImageRequest(b"jpeg"))

    async def test_timeout_becomes_analysis_failure(self, monkeypatch):
        async def slow(*_):
            await asyncio.sleep(5)

        provider = make_provider()
        provider.analyse_text = slow
        monkeypatch.setattr(manager_mod.config, "ANALYSIS_TIMEOUT", 0.05)
        with patch.object(manager_mod, "get_provider", return_value=provider):
            with pytest.raises(AnalysisFailure):
                await analyze("key", TextRequest("Snickers"))
