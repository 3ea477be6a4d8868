"""
Shared prompt, response schema and base class for analysis providers.

The response schema is the load-bearing contract of the whole scanner:
field names and the SAFE / CAUTION / DANGER vocabulary are what
report.HealthyReport.from_dict() accepts — nothing else is.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from report import HealthyReport

logger = logging.getLogger(__name__)

# ── Prompt (shared across all providers) ──────────────────────────────────────

SYSTEM_INSTRUCTION = (
    "You are the 'HealthyInformer'. You are a neo-brutalist nutritionist. "
    "You do not sugarcoat. You value high protein and low processed sugar. "
    "Your verdicts are short, loud, and aggressive. For ingredients, you must "
    "classify them as SAFE, CAUTION (for mild additives/sugar), or DANGER "
    "(for harmful chemicals, trans fats, high fructose corn syrup)."
)

IMAGE_PROMPT = """Analyze this product image.
1. Identify the product name.
2. List main ingredients and classify their risk (SAFE/CAUTION/DANGER).
3. Calculate a health score (0-100) based on sugar, additives, and nutritional value. Be harsh.
4. Provide a brutal, honest verdict."""

CONTEXT_PROMPT = """I have scanned this product's barcode and retrieved the following data from Open Food Facts:
{context}

Using the image for visual confirmation and the DATA provided above for accuracy:
1. Analyze the ingredients and nutritional values from the data. Prefer the data over what you can infer from the image.
2. List ingredients and classify their risk (SAFE/CAUTION/DANGER).
3. Calculate a health score (0-100).
4. Provide a brutal, honest verdict."""

TEXT_PROMPT = (
    'Analyze this product text/name: "{text}". Infer nutritional data, list '
    "ingredients with risk (SAFE/CAUTION/DANGER), score it 0-100, and give a "
    "brutal verdict."
)


def build_image_prompt(context_json: Optional[str] = None) -> str:
    """Plain image prompt, or the data-first prompt when lookup context exists."""
    if context_json:
        return CONTEXT_PROMPT.format(context=context_json)
    return IMAGE_PROMPT


def build_text_prompt(text: str) -> str:
    return TEXT_PROMPT.format(text=text)


# ── Response schema ───────────────────────────────────────────────────────────

RISK_VALUES = ["SAFE", "CAUTION", "DANGER"]

REPORT_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "productName": {"type": "STRING"},
        "barcode":     {"type": "STRING", "nullable": True},
        "score": {
            "type": "NUMBER",
            "description": "Health score from 0 (worst) to 100 (best)",
        },
        "sugar_g": {
            "type": "NUMBER", "nullable": True,
            "description": "Total sugar in grams per serving",
        },
        "protein_g": {
            "type": "NUMBER", "nullable": True,
            "description": "Total protein in grams per serving",
        },
        "ingredients": {
            "type": "ARRAY",
            "description": "List of main ingredients with health risk assessment",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name":   {"type": "STRING"},
                    "risk":   {"type": "STRING", "enum": RISK_VALUES},
                    "reason": {
                        "type": "STRING", "nullable": True,
                        "description": "Why is it dangerous or caution?",
                    },
                },
                "required": ["name", "risk"],
            },
        },
        "nutritional_analysis": {
            "type": "STRING",
            "description": "A short, punchy paragraph analyzing the health benefits and risks.",
        },
        "verdict": {
            "type": "STRING",
            "description": "A one or two word verdict (e.g. 'PURE TRASH', 'GOLD TIER', 'MID', 'POISON').",
        },
    },
    "required": ["productName", "score", "ingredients", "nutritional_analysis", "verdict"],
}


# ── Errors ────────────────────────────────────────────────────────────────────

class AnalysisFailure(Exception):
    """Transport, auth, timeout or parse failure of an analysis call. Always fatal to the attempt."""

    def __init__(self, message: str = "Failed to analyze product. Please try again.") -> None:
        super().__init__(message)


# ── Parsing ───────────────────────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def parse_json_response(raw: str, provider_name: str) -> dict:
    """
    Parse the JSON object from a model response.

    Tried in order: the text as-is, the contents of a ``` fenced block,
    then the span from the first '{' to the last '}'.
    Raises ValueError when all three fail.
    """
    text = (raw or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("[%s] Direct JSON parse failed, trying fallbacks", provider_name)

    match = _FENCE_RE.search(text)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        try:
            return json.loads(text[first:last + 1])
        except json.JSONDecodeError:
            pass

    logger.error("[%s] Non-JSON response: %s", provider_name, text[:300])
    raise ValueError(f"[{provider_name}] JSON parse error: could not parse response")


def parse_report(raw: str, provider_name: str) -> HealthyReport:
    """parse_json_response() + schema validation into a HealthyReport."""
    return HealthyReport.from_dict(parse_json_response(raw, provider_name))


# ── Abstract base ──────────────────────────────────────────────────────────────

class AnalysisProvider(ABC):
    """Base class all analysis providers must implement."""

    name: str           # e.g. "google"
    model_id: str       # e.g. "gemini-2.5-flash"

    @abstractmethod
    async def analyse_image(
        self,
        image_bytes: bytes,
        context_json: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> HealthyReport:
        """Single structured-generation call on an image (+ optional lookup data)."""
        ...

    @abstractmethod
    async def analyse_text(self, text: str) -> HealthyReport:
        """Single structured-generation call on free text."""
        ...

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"
