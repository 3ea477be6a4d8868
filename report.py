"""
report.py — canonical home of the scanner's data model.

  ProductCode      barcode / QR payload (opaque string)
  ProductContext   normalised Open Food Facts record
  ImageRequest / TextRequest   the two analysis request variants
  HealthyReport    the terminal artifact handed to the presentation layer

HealthyReport.from_dict() is the only way service payloads become reports,
so the score clamp and the risk vocabulary are enforced in one place.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

ProductCode = str


# ── Product lookup context ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProductContext:
    """Normalised product record from the open product database."""
    name: Optional[str] = None
    brand: Optional[str] = None
    ingredients_text: Optional[str] = None
    image_url: Optional[str] = None
    nutriments: dict = field(default_factory=dict)

    def to_prompt_json(self) -> str:
        """Serialise for the analysis prompt using the database's own field names."""
        return json.dumps(
            {
                "product_name":     self.name,
                "brands":           self.brand,
                "ingredients_text": self.ingredients_text,
                "image_url":        self.image_url,
                "nutriments":       self.nutriments,
            },
            ensure_ascii=False,
        )


# ── Analysis requests ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ImageRequest:
    image_bytes: bytes
    context: Optional[ProductContext] = None
    mime_type: Optional[str] = None             # None: sniffed from the bytes


@dataclass(frozen=True)
class TextRequest:
    text: str


AnalysisRequest = Union[ImageRequest, TextRequest]


# ── Report ────────────────────────────────────────────────────────────────────

class Risk(str, Enum):
    SAFE    = "SAFE"
    CAUTION = "CAUTION"
    DANGER  = "DANGER"


@dataclass(frozen=True)
class IngredientFinding:
    name: str
    risk: Risk
    reason: Optional[str] = None

    @property
    def shows_reason(self) -> bool:
        """Reasons are only meaningful for CAUTION / DANGER ingredients."""
        return self.risk is not Risk.SAFE and bool(self.reason)

    @classmethod
    def from_dict(cls, raw: dict) -> "IngredientFinding":
        if not isinstance(raw, dict):
            raise ValueError(f"Ingredient entry is not an object: {raw!r}")
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Ingredient without a name: {raw!r}")
        try:
            risk = Risk(raw.get("risk"))
        except ValueError:
            raise ValueError(f"Unknown ingredient risk: {raw.get('risk')!r}") from None
        reason = raw.get("reason")
        return cls(name=name.strip(), risk=risk, reason=reason or None)

    def to_dict(self) -> dict:
        return {"name": self.name, "risk": self.risk.value, "reason": self.reason}


def _clamp_score(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Score is not a number: {value!r}")
    return max(0, min(100, int(round(value))))


def _optional_number(raw: dict, key: str) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} is not a number: {value!r}")
    return float(value)


@dataclass(frozen=True)
class HealthyReport:
    """Structured, scored health assessment for one product."""
    product_name: str
    score: int                                  # always 0–100
    analysis_text: str
    verdict: str
    ingredients: list[IngredientFinding] = field(default_factory=list)
    barcode: Optional[str] = None
    product_image: Optional[str] = None         # injected from lookup context
    sugar_g: Optional[float] = None
    protein_g: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "HealthyReport":
        """
        Build a report from the analysis service payload.
        product_image is never taken from the payload; see with_image().
        Raises ValueError when a required field is missing or malformed.
        """
        if not isinstance(raw, dict):
            raise ValueError("Report payload is not a JSON object")
        missing = [
            k for k in ("productName", "score", "ingredients", "nutritional_analysis", "verdict")
            if raw.get(k) is None
        ]
        if missing:
            raise ValueError(f"Report payload missing required fields: {', '.join(missing)}")
        if not isinstance(raw["ingredients"], list):
            raise ValueError("ingredients must be a list")

        return cls(
            product_name=str(raw["productName"]),
            barcode=raw.get("barcode") or None,
            score=_clamp_score(raw["score"]),
            sugar_g=_optional_number(raw, "sugar_g"),
            protein_g=_optional_number(raw, "protein_g"),
            ingredients=[IngredientFinding.from_dict(i) for i in raw["ingredients"]],
            analysis_text=str(raw["nutritional_analysis"]),
            verdict=str(raw["verdict"]),
        )

    def to_dict(self) -> dict:
        data = {
            "productName":          self.product_name,
            "barcode":              self.barcode,
            "score":                self.score,
            "sugar_g":              self.sugar_g,
            "protein_g":            self.protein_g,
            "ingredients":          [i.to_dict() for i in self.ingredients],
            "nutritional_analysis": self.analysis_text,
            "verdict":              self.verdict,
        }
        if self.product_image:
            data["product_image"] = self.product_image
        return data

    def with_image(self, image_url: str) -> "HealthyReport":
        """Return a copy whose product_image is overwritten (lookup reconciliation)."""
        return replace(self, product_image=image_url)
