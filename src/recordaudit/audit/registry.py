"""Audit category registry.

Each category owns a list of detectors. Detectors and categories are plain
values; the engine only iterates over them, so adding a category or a detector
never touches the scan loop.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

MAX_HITS_PER_SCAN = 40

_MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|"
    r"Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)


@dataclass(slots=True, frozen=True)
class Match:
    label: str
    weight: int
    offset: int
    text: str


@dataclass(slots=True, frozen=True)
class Detector:
    label: str
    pattern: Pattern[str]
    weight: int

    def scan(self, text: str, *, limit: int = MAX_HITS_PER_SCAN) -> List[Match]:
        matches: List[Match] = []
        for found in self.pattern.finditer(text):
            matches.append(Match(self.label, self.weight, found.start(), found.group(0)))
            if len(matches) >= limit:
                break
        return matches


@dataclass(slots=True, frozen=True)
class Category:
    id: str
    title: str
    description: str
    detectors: Tuple[Detector, ...] = field(default_factory=tuple)

    def scan(self, text: str, *, limit: int = MAX_HITS_PER_SCAN) -> List[Match]:
        """Run every detector in order, keeping at most ``limit`` hits overall."""
        matches: List[Match] = []
        for detector in self.detectors:
            matches.extend(detector.scan(text, limit=limit - len(matches)))
            if len(matches) >= limit:
                break
        return matches


def detector(label: str, pattern: str, weight: int, flags: int = re.IGNORECASE) -> Detector:
    return Detector(label=label, pattern=re.compile(pattern, flags), weight=weight)


class CategoryRegistry:
    """Ordered, closed set of categories."""

    def __init__(self, categories: Iterable[Category]) -> None:
        self._categories: Dict[str, Category] = {}
        for category in categories:
            if category.id in self._categories:
                raise ValueError(f"Duplicate audit category: {category.id}")
            self._categories[category.id] = category

    def __iter__(self):
        return iter(self._categories.values())

    def __len__(self) -> int:
        return len(self._categories)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._categories

    @property
    def ids(self) -> List[str]:
        return list(self._categories)

    def get(self, category_id: str) -> Category:
        try:
            return self._categories[category_id]
        except KeyError as exc:
            raise KeyError(f"Unknown audit category: {category_id}") from exc

    def select(self, category_ids: Optional[Iterable[str]] = None) -> List[Category]:
        if not category_ids:
            return list(self._categories.values())
        return [self.get(category_id) for category_id in category_ids]


DEFAULT_CATEGORIES: Tuple[Category, ...] = (
    Category(
        id="timeline_consistency",
        title="Timeline signals",
        description="Dates, filing and hearing references that place events on a timeline.",
        detectors=(
            detector("date_reference", rf"\b{_MONTHS}\.?\s+\d{{1,2}},?\s+\d{{4}}\b", 1),
            detector("numeric_date", r"\b(?:0?[1-9]|1[0-2])[/-](?:0?[1-9]|[12]\d|3[01])[/-](?:\d{4}|\d{2})\b", 1),
            detector("date_filed", r"\bdate\s+filed\b|\bfiled\s+on\b", 2),
            detector("hearing_or_trial", r"\bhearing\b|\btrial\b|\barraign(?:ment)?\b|\bpretrial\b", 1),
            detector("continuance", r"\bcontinuance\b|\badjourn(?:ed|ment)\b", 1),
        ),
    ),
    Category(
        id="fees_and_costs",
        title="Fees and money references",
        description="Amounts, fees, costs, fines and assessments mentioned in the record.",
        detectors=(
            detector("amount", r"\$\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?", 1),
            detector("fee_language", r"\b(?:filing\s+)?fees?\b|\bcosts?\b|\bfines?\b", 1),
            detector("assessment", r"\bassessments?\b|\brestitution\b|\bsurcharges?\b", 2),
        ),
    ),
    Category(
        id="document_completeness",
        title="Document completeness",
        description="Referenced exhibits, attachments and record gaps worth locating.",
        detectors=(
            detector("missing_record", r"\bmissing\b|\bnot\s+in\s+the\s+record\b|\bno\s+record\b", 3),
            detector("redacted", r"\bredact(?:ed|ion)\b", 2),
            detector("appendix_or_exhibit", r"\bappendix\b|\bexhibits?\b|\battachments?\b", 1),
            detector("unclear_reference", r"\bunclear\b|\bunknown\b|\bunspecified\b", 1),
        ),
    ),
    Category(
        id="case_metadata",
        title="Case metadata",
        description="Case numbers, docket identifiers, courts and party designations.",
        detectors=(
            detector("case_number", r"\b(?:case|docket|file)\s+no\.?\s*:?\s*[A-Z0-9][A-Z0-9-]{2,}", 2),
            detector("docket_token", r"\b\d{2,4}-\d{3,7}(?:-[A-Z]{1,3})?\b", 1, 0),
            detector("court_name", r"\b(?:circuit|district|probate|appeals?|supreme)\s+court\b", 1),
            detector("party_designation", r"\b(?:plaintiff|defendant|appellant|appellee|petitioner|respondent)s?\b", 1),
        ),
    ),
    Category(
        id="internal_consistency",
        title="Internal consistency",
        description="Markers of differing versions or references that should be cross-checked.",
        detectors=(
            detector("inconsistent_marker", r"\binconsistent\b|\bcontradict(?:s|ed|ion)?\b|\bvaries\b", 2),
            detector("discrepancy", r"\bdiscrepanc(?:y|ies)\b|\bmismatch(?:ed)?\b|\bconflict(?:ing)?\b", 2),
            detector("different_version", r"\brevised\b|\bamended\b|\bsupersed(?:e|ed|ing)\b", 1),
        ),
    ),
    Category(
        id="procedural_signals",
        title="Procedural signals",
        description="Motions, orders, appeals and service events in the record.",
        detectors=(
            detector("motion", r"\bmotions?\b", 1),
            detector("order", r"\border\b|\bjudgment\b|\bopinion\b", 1),
            detector("appeal_or_remand", r"\bappeal\b|\bappellate\b|\bremand(?:ed)?\b", 2),
            detector("notice_or_service", r"\bnotice\b|\bserved\b|\bservice\b", 1),
        ),
    ),
    Category(
        id="citation_traceability",
        title="Citation traceability",
        description="Statute, rule and reporter references that can be traced to sources.",
        detectors=(
            detector("case_citation_like", r"\b\d{1,4}\s+(?:[A-Z][A-Za-z.]*\s?){1,4}\d?d?\s+\d{1,4}\b", 2, 0),
            detector("statute_reference", r"\bMCL\s+\d+(?:\.\d+)?\b|\b\d+\s*U\.?\s*S\.?\s*C\.?\s*§?\s*\d+\b", 2),
            detector("rule_reference", r"\bMCR\s+\d+(?:\.\d+)?\b|\bFed\.\s*R\.\s*(?:Crim|Civ)\.\s*P\.", 2),
            detector("quoted_block", r"“[^”]{40,}”|\"[^\"]{40,}\"", 1, 0),
        ),
    ),
)

DEFAULT_REGISTRY = CategoryRegistry(DEFAULT_CATEGORIES)
