"""
Tests for prompt token budgeting.
"""

from codecrew.models import ReferenceMaterial
from codecrew.utils.token_budget import (
    TRUNCATION_MARKER,
    enforce_reference_budget,
    enforce_token_budget,
    estimate_tokens,
    render_reference,
)


class TestTokenBudget:
    """Test estimation and truncation."""

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_text_within_budget_is_unchanged(self):
        assert enforce_token_budget("short text", max_tokens=10) == "short text"

    def test_truncation_keeps_head_and_tail(self):
        text = "H" * 500 + "T" * 500
        truncated = enforce_token_budget(text, max_tokens=100)
        head, tail = truncated.split(TRUNCATION_MARKER)
        assert head == "H" * 280
        assert tail == "T" * 120


class TestReferenceBudget:
    """Test reference material budgeting and rendering."""

    def test_material_within_budget_is_unchanged(self):
        material = ReferenceMaterial(examples=["ex"], best_practices=["bp"], docs=["doc"])
        assert enforce_reference_budget(material, max_tokens=100) is material

    def test_sections_are_split_by_share(self):
        material = ReferenceMaterial(
            examples=["e" * 400, "e" * 400],
            best_practices=["b" * 200, "b" * 200],
            docs=["d" * 1000],
        )
        budgeted = enforce_reference_budget(material, max_tokens=200)

        # 100 tokens for examples, 60 for best practices, 40 for docs
        assert budgeted.examples == ["e" * 400]
        assert budgeted.best_practices == ["b" * 200]
        assert len(budgeted.docs) == 1
        assert TRUNCATION_MARKER in budgeted.docs[0]

    def test_oversized_first_item_is_truncated(self):
        material = ReferenceMaterial(examples=["x" * 4000])
        budgeted = enforce_reference_budget(material, max_tokens=100)
        assert len(budgeted.examples) == 1
        assert TRUNCATION_MARKER in budgeted.examples[0]

    def test_render_reference(self):
        rendered = render_reference(ReferenceMaterial(examples=["ex1"], best_practices=["use hooks"]))
        assert rendered == "REFERENCE EXAMPLES:\nex1\n\nBEST PRACTICES:\n- use hooks"

    def test_render_empty(self):
        assert render_reference(ReferenceMaterial()) == ""
