"""
Google Gemini analysis provider — uses the google-genai SDK.

One generate_content call per analysis, constrained by REPORT_SCHEMA via
response_schema + response_mime_type="application/json". The model still
occasionally wraps its JSON in a markdown fence, which parse_report() handles.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from google import genai
from google.genai import types as genai_types

from providers.base import (
    REPORT_SCHEMA, SYSTEM_INSTRUCTION,
    AnalysisProvider, build_image_prompt, build_text_prompt, parse_report,
)
from report import HealthyReport

logger = logging.getLogger(__name__)


def sniff_mime(image_bytes: bytes) -> str:
    """Detect the image MIME type from magic bytes; JPEG when unknown."""
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


class GeminiProvider(AnalysisProvider):

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        self.name     = "google"
        self.model_id = model
        self._client  = genai.Client(api_key=api_key)

    def _config(self) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            response_mime_type="application/json",
            response_schema=REPORT_SCHEMA,
        )

    async def _generate(self, contents: list) -> HealthyReport:
        t0 = time.monotonic()
        response = await self._client.aio.models.generate_content(
            model=self.model_id,
            contents=contents,
            config=self._config(),
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        raw = response.text or ""
        if not raw:
            raise ValueError(f"[{self.full_name}] No data returned")

        report = parse_report(raw, self.full_name)
        logger.info(
            "[%s] OK — product=%r score=%d latency=%dms",
            self.full_name, report.product_name, report.score, latency_ms,
        )
        return report

    async def analyse_image(
        self,
        image_bytes: bytes,
        context_json: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> HealthyReport:
        return await self._generate([
            genai_types.Part.from_bytes(
                data=image_bytes, mime_type=mime_type or sniff_mime(image_bytes),
            ),
            build_image_prompt(context_json),
        ])

    async def analyse_text(self, text: str) -> HealthyReport:
        return await self._generate([build_text_prompt(text)])
