"""Tests for the research-only phrasing guard."""

from __future__ import annotations

import pytest

from recordaudit.audit.safety import (
    SUPPRESSED_TEXT,
    assert_research_only,
    enforce_research_only,
    find_violation,
    is_research_only,
)
from recordaudit.errors import UnsafeClaimError


class TestFindViolation:
    """Tests for find_violation."""

    @pytest.mark.parametrize(
        "text",
        [
            "The clerk falsified the docket.",
            "Evidence was planted before trial.",
            "Records were withheld from the defense.",
            "This shows a conspiracy.",
        ],
    )
    def test_core_vocabulary(self, text: str) -> None:
        assert find_violation(text) == "banned_core"

    @pytest.mark.parametrize(
        "text",
        [
            "The defendant is innocent.",
            "This was a due process violation.",
            "Counsel provided ineffective assistance.",
        ],
    )
    def test_legal_conclusions(self, text: str) -> None:
        assert find_violation(text) == "banned_legal_conclusion"

    def test_accusatory(self) -> None:
        assert find_violation("The officer made false statements.") == "banned_accusatory"

    def test_empty(self) -> None:
        assert find_violation("   ") == "empty"

    @pytest.mark.parametrize(
        "text",
        [
            "The rule applies to the client filing.",
            "Dates in the register should be cross-checked against the docket.",
            "Review the cited excerpts for context.",
        ],
    )
    def test_neutral_wording_passes(self, text: str) -> None:
        assert find_violation(text) is None
        assert is_research_only(text)


class TestEnforce:
    """Tests for enforce_research_only and assert_research_only."""

    def test_clean_claim_kept(self) -> None:
        verdict = enforce_research_only("  Dates appear in the record.  ")
        assert verdict.claim == "Dates appear in the record."
        assert not verdict.suppressed
        assert verdict.reason is None

    def test_banned_claim_replaced(self) -> None:
        verdict = enforce_research_only("The judge was biased.")
        assert verdict.suppressed
        assert verdict.reason == "banned_core"
        assert verdict.claim == SUPPRESSED_TEXT["banned_core"]

    def test_placeholders_are_themselves_safe(self) -> None:
        for reason, text in SUPPRESSED_TEXT.items():
            assert is_research_only(text), reason

    def test_assert_raises(self) -> None:
        with pytest.raises(UnsafeClaimError) as excinfo:
            assert_research_only("The defendant is guilty.")
        assert excinfo.value.reason == "banned_legal_conclusion"

    def test_assert_returns_clean_text(self) -> None:
        assert assert_research_only(" Notice served. ") == "Notice served."
