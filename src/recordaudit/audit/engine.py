"""Deterministic audit pass over materialized chunks.

The engine scans each chunk against the category registry, scores the hits,
and turns every category that scores high enough into a research-only
finding with bounded evidence excerpts. It never interprets the text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from recordaudit.audit.registry import DEFAULT_REGISTRY, Category, CategoryRegistry, Match
from recordaudit.audit.safety import enforce_research_only
from recordaudit.models import ChunkRecord, Evidence, Finding
from recordaudit.utils.text import normalize_text

LOGGER = logging.getLogger(__name__)

DEFAULT_KIND = "case_fact_audit"
MAX_LISTED_SIGNALS = 6


@dataclass(slots=True)
class EngineOptions:
    max_findings: int = 25
    max_findings_per_category: int = 6
    max_evidence_per_finding: int = 3
    excerpt_max_chars: int = 900
    min_score: int = 2

    def __post_init__(self) -> None:
        for name in (
            "max_findings",
            "max_findings_per_category",
            "max_evidence_per_finding",
            "excerpt_max_chars",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive")


def score_to_confidence(score: int) -> str:
    if score >= 6:
        return "high"
    if score >= 3:
        return "medium"
    return "low"


def confidence_to_severity(confidence: str) -> str:
    # Never escalates to "error".
    return "warning" if confidence == "high" else "info"


def looks_like_structured_payload(content: str) -> bool:
    stripped = (content or "").lstrip()
    return stripped.startswith("{") or stripped.startswith("[")


def is_degenerate(chunks: Sequence[ChunkRecord]) -> bool:
    """True when every chunk looks like serialized data rather than prose."""
    return bool(chunks) and all(looks_like_structured_payload(chunk.content) for chunk in chunks)


def excerpt_around(text: str, offset: int, max_chars: int) -> str:
    half = max_chars // 2
    start = max(0, offset - half)
    end = min(len(text), offset + (max_chars - half))
    return text[start:end].strip()


def _distinct(values: Iterable[str], limit: int) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
            if len(seen) >= limit:
                break
    return seen


def build_claim(category: Category, signals: Sequence[str]) -> str:
    claim = (
        f"Research signal detected for {category.title}. "
        "Recommended: review the cited excerpts and cross-check against the full "
        "record/docket for context and completeness."
    )
    if signals:
        claim += f" Signals observed: {', '.join(signals)}."
    return claim


class AuditEngine:
    def __init__(self, registry: CategoryRegistry = DEFAULT_REGISTRY) -> None:
        self.registry = registry

    def run(
        self,
        chunks: Sequence[ChunkRecord],
        options: Optional[EngineOptions] = None,
        *,
        categories: Optional[Iterable[str]] = None,
        kind: str = DEFAULT_KIND,
    ) -> List[Finding]:
        opts = options or EngineOptions()
        selected = self.registry.select(categories)

        if is_degenerate(chunks):
            LOGGER.warning(
                "All %d chunks look like structured payloads; skipping pattern scan", len(chunks)
            )
            return []

        findings: List[Finding] = []
        per_category: Dict[str, int] = {}

        for chunk in chunks:
            text = normalize_text(chunk.content)
            if not text:
                continue
            for category in selected:
                if per_category.get(category.id, 0) >= opts.max_findings_per_category:
                    continue
                finding = self._scan_category(category, chunk, text, opts, kind)
                if finding is None:
                    continue
                findings.append(finding)
                per_category[category.id] = per_category.get(category.id, 0) + 1
                if len(findings) >= opts.max_findings:
                    LOGGER.debug("Finding cap of %d reached", opts.max_findings)
                    return findings

        return findings

    def _scan_category(
        self,
        category: Category,
        chunk: ChunkRecord,
        text: str,
        opts: EngineOptions,
        kind: str,
    ) -> Optional[Finding]:
        matches = category.scan(text)
        if not matches:
            return None
        score = sum(match.weight for match in matches)
        if score < opts.min_score:
            return None

        confidence = score_to_confidence(score)
        top: List[Match] = sorted(matches, key=lambda m: (-m.weight, m.offset))[
            : opts.max_evidence_per_finding
        ]
        evidence = [
            Evidence(
                document_id=chunk.document_id,
                chunk_index=chunk.index,
                excerpt=excerpt_around(text, match.offset, opts.excerpt_max_chars),
            )
            for match in top
        ]
        signals = _distinct((match.label for match in matches), MAX_LISTED_SIGNALS)
        verdict = enforce_research_only(build_claim(category, signals))
        if verdict.suppressed:
            LOGGER.warning(
                "Claim for %s in chunk %s suppressed (%s)", category.id, chunk.index, verdict.reason
            )

        return Finding(
            kind=kind,
            category=category.id,
            title=category.title,
            severity=confidence_to_severity(confidence),
            confidence=confidence,
            claim=verdict.claim,
            evidence=evidence,
            meta={
                "score": score,
                "signals": signals,
                "matched_terms": _distinct(
                    (match.text.strip() for match in matches), MAX_LISTED_SIGNALS
                ),
                "suppressed": verdict.suppressed,
                "suppressed_reason": verdict.reason,
            },
        )
