"""Tests for the deterministic audit engine."""

from __future__ import annotations

import re

import pytest

from conftest import chunks_of
from recordaudit.audit.engine import (
    AuditEngine,
    EngineOptions,
    confidence_to_severity,
    excerpt_around,
    is_degenerate,
    score_to_confidence,
)
from recordaudit.audit.registry import Category, CategoryRegistry, DEFAULT_REGISTRY, detector
from recordaudit.audit.safety import SUPPRESSED_TEXT, is_research_only

THREE_DATES = (
    "The register lists entries dated January 5, 2020, then February 10, 2020, "
    "and finally March 15, 2020 for this matter."
)

RICH_TEXT = (
    "Case No. 2019-004512-FH in the Circuit Court. The defendant filed a motion on "
    "March 3, 2021. A hearing was adjourned and a continuance granted. Filing fees of "
    "$150.00 and costs were assessed along with restitution. Exhibit 4 is missing and "
    "a page is redacted. The amended order conflicts with the earlier judgment. "
    "See MCL 750.83 and MCR 6.500 on appeal."
)


class TestHelpers:
    """Tests for scoring helpers."""

    @pytest.mark.parametrize(
        "score,expected", [(0, "low"), (2, "low"), (3, "medium"), (5, "medium"), (6, "high"), (40, "high")]
    )
    def test_score_to_confidence(self, score: int, expected: str) -> None:
        assert score_to_confidence(score) == expected

    def test_severity_never_error(self) -> None:
        assert confidence_to_severity("high") == "warning"
        assert confidence_to_severity("medium") == "info"
        assert confidence_to_severity("low") == "info"

    def test_excerpt_clipped_to_text(self) -> None:
        text = "x" * 50 + "MATCH" + "y" * 50
        excerpt = excerpt_around(text, 50, 20)
        assert len(excerpt) <= 20
        assert "MATCH" in excerpt
        assert excerpt_around("short", 2, 900) == "short"

    def test_is_degenerate(self) -> None:
        assert is_degenerate(chunks_of("d", ['{"a": 1}', '  [1, 2]']))
        assert not is_degenerate(chunks_of("d", ['{"a": 1}', "plain text"]))
        assert not is_degenerate([])


class TestEngineRun:
    """Tests for AuditEngine.run."""

    def test_three_dates_produce_timeline_finding(self) -> None:
        findings = AuditEngine().run(chunks_of("doc-1", [THREE_DATES]))

        by_category = {finding.category: finding for finding in findings}
        timeline = by_category["timeline_consistency"]
        assert timeline.title == "Timeline signals"
        assert timeline.meta["matched_terms"] == ["January 5, 2020", "February 10, 2020", "March 15, 2020"]
        assert timeline.meta["score"] == 3
        assert timeline.confidence == "medium"
        assert "fees_and_costs" not in by_category

    def test_degenerate_chunks_short_circuit(self) -> None:
        chunks = chunks_of("doc-1", ['{"title": "Order", "date": "March 3, 2021"}', '[{"fee": "$10.00"}]'])
        assert AuditEngine().run(chunks) == []

    def test_empty_input(self) -> None:
        assert AuditEngine().run([]) == []

    def test_below_min_score_skipped(self) -> None:
        findings = AuditEngine().run(chunks_of("doc-1", ["A single hearing."]))
        assert all(f.category != "timeline_consistency" for f in findings)

    def test_evidence_bounds(self) -> None:
        options = EngineOptions(max_evidence_per_finding=2, excerpt_max_chars=60)
        findings = AuditEngine().run(chunks_of("doc-1", [RICH_TEXT]), options)

        assert findings
        for finding in findings:
            assert 1 <= len(finding.evidence) <= 2
            for item in finding.evidence:
                assert item.document_id == "doc-1"
                assert item.chunk_index == 0
                assert len(item.excerpt) <= 60

    def test_heaviest_matches_become_evidence(self) -> None:
        registry = CategoryRegistry(
            [
                Category(
                    id="weighted",
                    title="Weighted terms",
                    description="",
                    detectors=(detector("light", r"\balpha\b", 1), detector("heavy", r"\bomega\b", 5)),
                )
            ]
        )
        text = "alpha " * 3 + "omega"
        findings = AuditEngine(registry).run(
            chunks_of("doc-1", [text]), EngineOptions(max_evidence_per_finding=1, excerpt_max_chars=10)
        )
        assert len(findings) == 1
        assert "omega" in findings[0].evidence[0].excerpt
        assert findings[0].meta["signals"] == ["light", "heavy"]

    def test_global_cap(self) -> None:
        chunks = chunks_of("doc-1", [RICH_TEXT] * 10)
        findings = AuditEngine().run(chunks, EngineOptions(max_findings=5))
        assert len(findings) == 5

    def test_per_category_cap(self) -> None:
        chunks = chunks_of("doc-1", [THREE_DATES] * 10)
        findings = AuditEngine().run(chunks, EngineOptions(max_findings_per_category=2))
        timeline = [f for f in findings if f.category == "timeline_consistency"]
        assert len(timeline) == 2
        assert [f.evidence[0].chunk_index for f in timeline] == [0, 1]

    def test_category_selection(self) -> None:
        findings = AuditEngine().run(chunks_of("doc-1", [RICH_TEXT]), categories=["fees_and_costs"])
        assert findings
        assert {f.category for f in findings} == {"fees_and_costs"}

    def test_unknown_category(self) -> None:
        with pytest.raises(KeyError):
            AuditEngine().run(chunks_of("doc-1", [RICH_TEXT]), categories=["sentiment"])

    def test_deterministic(self) -> None:
        chunks = chunks_of("doc-1", [RICH_TEXT, THREE_DATES])
        first = [f.to_dict() for f in AuditEngine().run(chunks)]
        second = [f.to_dict() for f in AuditEngine().run(chunks)]
        assert first == second

    def test_every_claim_is_research_only(self) -> None:
        hostile = RICH_TEXT + " The prosecutor lied and the evidence was fabricated; this is fraud."
        findings = AuditEngine().run(chunks_of("doc-1", [hostile, THREE_DATES]))
        assert findings
        for finding in findings:
            assert is_research_only(finding.claim) or finding.suppressed
            assert finding.severity in {"info", "warning"}
            assert finding.confidence in {"low", "medium", "high"}

    def test_banned_draft_claims_are_suppressed(self) -> None:
        """A category title with banned vocabulary yields suppressed findings that still count."""
        registry = CategoryRegistry(
            [
                Category(
                    id="bias_markers",
                    title="Bias markers",
                    description="",
                    detectors=(detector("hearing_reference", r"\bhearing\b", 3),),
                )
            ]
        )
        chunks = chunks_of("doc-1", ["A hearing was held."] * 3)

        findings = AuditEngine(registry).run(chunks, EngineOptions(max_findings=2))

        assert len(findings) == 2
        for finding in findings:
            assert finding.claim == SUPPRESSED_TEXT["banned_core"]
            assert finding.meta["suppressed"] is True
            assert finding.meta["suppressed_reason"] is not None
            assert finding.suppressed
            assert finding.evidence
        assert [f.evidence[0].chunk_index for f in findings] == [0, 1]

    def test_claim_lists_signals(self) -> None:
        findings = AuditEngine().run(chunks_of("doc-1", [THREE_DATES]))
        timeline = next(f for f in findings if f.category == "timeline_consistency")
        assert timeline.claim.startswith("Research signal detected for Timeline signals.")
        assert re.search(r"Signals observed: date_reference\.$", timeline.claim)


class TestRegistry:
    """Tests for the category registry."""

    def test_default_categories(self) -> None:
        assert DEFAULT_REGISTRY.ids == [
            "timeline_consistency",
            "fees_and_costs",
            "document_completeness",
            "case_metadata",
            "internal_consistency",
            "procedural_signals",
            "citation_traceability",
        ]

    def test_duplicate_ids_rejected(self) -> None:
        category = Category(id="a", title="A", description="")
        with pytest.raises(ValueError):
            CategoryRegistry([category, category])

    def test_scan_respects_limit(self) -> None:
        category = Category(id="a", title="A", description="", detectors=(detector("x", r"x", 1),))
        assert len(category.scan("x" * 100, limit=40)) == 40
