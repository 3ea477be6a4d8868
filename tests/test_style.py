"""
Tests for style.py — MarkdownV2 formatting helpers.

Covers:
  - esc(): all MarkdownV2 special characters are escaped
  - score_bar() / score_icon() / fmt_grams()
  - ingredient_line(): reasons only for CAUTION / DANGER
  - report_card(): key fields, product image link, truncation at 4050 chars
  - history(): empty and populated
"""
from __future__ import annotations

from datetime import datetime, timezone

import style
from database import ScanLog
from report import HealthyReport, IngredientFinding, Risk


def make_report(**overrides) -> HealthyReport:
    defaults = dict(
        product_name="Snickers Bar",
        score=42,
        analysis_text="Sugar first. Peanuts second. Regret third.",
        verdict="MID",
        ingredients=[
            IngredientFinding("Peanuts", Risk.SAFE, "Good fats"),
            IngredientFinding("Glucose syrup", Risk.DANGER, "Refined sugar"),
        ],
        sugar_g=27.0,
        protein_g=4.3,
    )
    defaults.update(overrides)
    return HealthyReport(**defaults)


# ── esc() ─────────────────────────────────────────────────────────────────────

class TestEsc:
    MDV2_SPECIALS = r"\_*[]()~`>#+-=|{}.!"

    def test_all_special_characters_escaped(self):
        for ch in self.MDV2_SPECIALS:
            escaped = style.esc(ch)
            assert escaped == f"\\{ch}", f"Character {ch!r} not escaped"

    def test_plain_text_unchanged(self):
        assert style.esc("Hello World") == "Hello World"

    def test_mixed_text(self):
        result = style.esc("sugar: 27.5g (per bar!)")
        assert "\\." in result
        assert "\\(" in result
        assert "\\!" in result


# ── Small helpers ─────────────────────────────────────────────────────────────

class TestScoreHelpers:
    def test_full_bar(self):
        assert style.score_bar(100) == "██████████"

    def test_empty_bar(self):
        assert style.score_bar(0) == "░░░░░░░░░░"

    def test_half_bar(self):
        assert style.score_bar(50) == "█████░░░░░"

    def test_icons(self):
        assert style.score_icon(85) == "💪"
        assert style.score_icon(50) == "😐"
        assert style.score_icon(10) == "☠️"

    def test_grams(self):
        assert style.fmt_grams(None) == "—"
        assert style.fmt_grams(27.0) == "27 g"
        assert style.fmt_grams(4.3) == "4.3 g"


# ── ingredient_line() ─────────────────────────────────────────────────────────

class TestIngredientLine:
    def test_safe_has_no_reason(self):
        line = style.ingredient_line(IngredientFinding("Peanuts", Risk.SAFE, "Good fats"))
        assert "🟢" in line
        assert "Good fats" not in line

    def test_danger_shows_reason(self):
        line = style.ingredient_line(IngredientFinding("E171", Risk.DANGER, "Banned in the EU"))
        assert "🔴" in line
        assert "Banned in the EU" in line


# ── report_card() ─────────────────────────────────────────────────────────────

class TestReportCard:
    def test_contains_key_fields(self):
        card = style.report_card(make_report())
        assert "SNICKERS BAR" in card
        assert "42/100" in card
        assert "MID" in card
        assert "27 g" in card
        assert "Glucose syrup" in card

    def test_product_image_link(self):
        card = style.report_card(make_report(product_image="https://img.example/a_(1).jpg"))
        assert "https://img.example/a_(1\\).jpg" in card

    def test_barcode_shown(self):
        assert "5000159407236" in style.report_card(make_report(barcode="5000159407236"))

    def test_no_ingredients(self):
        assert "none listed" in style.report_card(make_report(ingredients=[]))

    def test_truncated_at_4050_chars(self):
        many = [IngredientFinding(f"Additive {i}", Risk.DANGER, "x" * 80) for i in range(100)]
        card = style.report_card(make_report(ingredients=many))
        assert len(card) <= style.MAX_MESSAGE + 2
        assert card.endswith("…")


# ── history() ─────────────────────────────────────────────────────────────────

class TestHistory:
    def test_empty(self):
        assert "No scans yet" in style.history([])

    def test_lists_scans(self):
        scan = ScanLog(
            id=1, user_id=1, product_name="Nutella", barcode=None, score=12,
            verdict="POISON", source="photo", scanned_at=datetime.now(timezone.utc),
        )
        text = style.history([scan])
        assert "Nutella" in text
        assert "POISON" in text
        assert "☠️" in text


# ── Static texts ──────────────────────────────────────────────────────────────

class TestStaticTexts:
    def test_non_empty(self):
        for fn in (style.welcome, style.onboarding, style.help_text, style.logged_out,
                   style.error_analysis_failed, style.error_busy, style.error_no_key,
                   style.not_supported):
            assert fn().strip()

    def test_key_saved_escapes_mask(self):
        assert "\\*" in style.key_saved("✅ AIza****cdef")
