"""
Tests for providers/gemini_provider.py.

Covers:
  - sniff_mime(): magic-byte detection
  - analyse_image(): one structured call, image part + plain/context prompt,
    MIME type sniffed unless given
  - analyse_text(): prompt only
  - empty / unparseable responses raise
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from providers.base import REPORT_SCHEMA, SYSTEM_INSTRUCTION
from providers.gemini_provider import GeminiProvider, sniff_mime

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16
PNG  = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def make_provider(response_text: str) -> tuple[GeminiProvider, AsyncMock]:
    client = MagicMock()
    generate = AsyncMock(return_value=MagicMock(text=response_text))
    client.aio.models.generate_content = generate
    with patch("providers.gemini_provider.genai.Client", return_value=client):
        provider = GeminiProvider(api_key="test-key", model="gemini-test")
    return provider, generate


# ── sniff_mime() ───────────────────────────────────────────────────────────────

class TestSniffMime:
    def test_png(self):
        assert sniff_mime(PNG) == "image/png"

    def test_gif(self):
        assert sniff_mime(b"GIF89a" + b"\x00" * 10) == "image/gif"

    def test_webp(self):
        assert sniff_mime(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_jpeg_and_unknown_default_to_jpeg(self):
        assert sniff_mime(JPEG) == "image/jpeg"
        assert sniff_mime(b"???") == "image/jpeg"


# ── Calls ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestGeminiCalls:
    async def test_image_call_uses_schema_and_system_instruction(self, report_payload):
        provider, generate = make_provider(json.dumps(report_payload))
        report = await provider.analyse_image(JPEG)

        assert report.product_name == "Snickers Bar"
        generate.assert_awaited_once()
        kwargs = generate.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["config"].system_instruction == SYSTEM_INSTRUCTION
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["config"].response_schema is not None
        image_part, prompt = kwargs["contents"]
        assert image_part.inline_data.mime_type == "image/jpeg"
        assert image_part.inline_data.data == JPEG
        assert "Analyze this product image" in prompt

    async def test_image_call_with_context_uses_data_prompt(self, report_payload):
        provider, generate = make_provider(json.dumps(report_payload))
        await provider.analyse_image(PNG, '{"product_name": "Nutella"}')

        image_part, prompt = generate.call_args.kwargs["contents"]
        assert image_part.inline_data.mime_type == "image/png"
        assert '{"product_name": "Nutella"}' in prompt

    async def test_explicit_mime_type_overrides_sniffing(self, report_payload):
        provider, generate = make_provider(json.dumps(report_payload))
        await provider.analyse_image(JPEG, None, "image/heic")

        image_part, _ = generate.call_args.kwargs["contents"]
        assert image_part.inline_data.mime_type == "image/heic"

    async def test_text_call_sends_prompt_only(self, report_payload):
        provider, generate = make_provider(json.dumps(report_payload))
        await provider.analyse_text("Snickers Bar 50g")

        contents = generate.call_args.kwargs["contents"]
        assert len(contents) == 1
        assert '"Snickers Bar 50g"' in contents[0]

    async def test_fenced_response_is_accepted(self, report_payload):
        provider, _ = make_provider(f"```json\n{json.dumps(report_payload)}\n```")
        report = await provider.analyse_text("Snickers")
        assert report.score == 42

    async def test_empty_response_raises(self):
        provider, _ = make_provider("")
        with pytest.raises(ValueError, match="No data returned"):
            await provider.analyse_text("Snickers")

    async def test_unparseable_response_raises(self):
        provider, _ = make_provider("I can't see a product here.")
        with pytest.raises(ValueError):
            await provider.analyse_text("Snickers")


class TestGeminiProvider:
    def test_full_name(self):
        provider, _ = make_provider("{}")
        assert provider.full_name == "google/gemini-test"
        assert REPORT_SCHEMA["type"] == "OBJECT"
