"""
Provider Manager — the analysis client the scanner talks to.

  analyze(credential, request) -> HealthyReport

The request is an ImageRequest (photo, optional lookup context) or a
TextRequest (product name or label text). Every call is single-shot: one
call, bounded by config.ANALYSIS_TIMEOUT, no retry.
Whatever goes wrong (missing key, auth, network, timeout, unparseable or
off-schema response) surfaces as one AnalysisFailure — a report is either
complete or not produced at all.

Providers are cached per credential so a user's client is reused between scans.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import config
from providers.base import AnalysisFailure, AnalysisProvider
from report import AnalysisRequest, HealthyReport, ImageRequest, TextRequest

logger = logging.getLogger(__name__)

# Module-level cache keyed by credential; cleared by reset_providers()
_providers: dict[str, AnalysisProvider] = {}


def _build_provider(credential: str) -> AnalysisProvider:
    from providers.gemini_provider import GeminiProvider
    provider = GeminiProvider(credential, config.GEMINI_MODEL)
    logger.info("Loaded provider: %s", provider.full_name)
    return provider


def get_provider(credential: Optional[str]) -> AnalysisProvider:
    if not credential:
        raise AnalysisFailure("No Gemini API key configured.")
    if credential not in _providers:
        _providers[credential] = _build_provider(credential)
    return _providers[credential]


def reset_providers() -> None:
    """Forget cached clients (e.g. after a user replaces their key)."""
    _providers.clear()


async def _run(credential: Optional[str], label: str, call) -> HealthyReport:
    try:
        provider = get_provider(credential)
        return await asyncio.wait_for(call(provider), timeout=config.ANALYSIS_TIMEOUT)
    except AnalysisFailure:
        raise
    except asyncio.TimeoutError as exc:
        logger.error("%s analysis timed out after %.0fs", label, config.ANALYSIS_TIMEOUT)
        raise AnalysisFailure() from exc
    except Exception as exc:
        logger.error("%s analysis failed: %s", label, exc)
        raise AnalysisFailure() from exc


async def analyze(credential: Optional[str], request: AnalysisRequest) -> HealthyReport:
    """
    Run one analysis. An ImageRequest analyses a product photo, grounded on
    lookup data when the request carries a context; a TextRequest analyses a
    product from its name or pasted label text.
    """
    if isinstance(request, ImageRequest):
        context_json = request.context.to_prompt_json() if request.context else None
        return await _run(
            credential, "Image",
            lambda p: p.analyse_image(request.image_bytes, context_json, request.mime_type),
        )
    if isinstance(request, TextRequest):
        return await _run(credential, "Text", lambda p: p.analyse_text(request.text))
    raise TypeError(f"Unsupported analysis request: {type(request).__name__}")
