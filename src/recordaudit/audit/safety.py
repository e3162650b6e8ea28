"""Research-only phrasing guard for finding text.

Findings describe patterns in the record. They never allege wrongdoing or
intent and never state legal conclusions; claims that do are replaced by a
fixed placeholder and flagged as suppressed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from recordaudit.errors import UnsafeClaimError

_BANNED_CORE = re.compile(
    r"\b(?:"
    r"corrupt\w*|brib\w*|collu(?:sion|sive|de|ded)|conspir\w*|cover[- ]?ups?|"
    r"falsif\w*|forg(?:e|ed|es|ery|eries|ing)|tamper\w*|framed|misconduct|"
    r"unlawful\w*|illegal\w*|criminal(?:ly)?|fraud\w*|perjur\w*|extort\w*|kickbacks?|"
    r"racketeer\w*|plant(?:ed|ing)|fabricat\w*|withh(?:eld|old|olding)|"
    r"destroy(?:ed|ing)|hid|hide|hidden|hiding|lie|lied|lies|lying|"
    r"target(?:ed|ing)|retaliat\w*|bias(?:ed)?|discriminat\w*"
    r")\b",
    re.IGNORECASE,
)

_BANNED_LEGAL_CONCLUSION = re.compile(
    r"\b(?:"
    r"guilty|innocent|wrongful(?:ly)?\s+convict\w*|malpractice|negligen\w*|"
    r"due\s+process\s+violations?|constitutional\s+violations?|"
    r"miscarriage\s+of\s+justice|probable\s+cause|beyond\s+a\s+reasonable\s+doubt|"
    r"ineffective\s+assistance|brady|giglio"
    r")\b",
    re.IGNORECASE,
)

_BANNED_ACCUSATORY = re.compile(
    r"\b(?:false\s+statements?|made\s+up|untruthful|dishonest\w*)\b",
    re.IGNORECASE,
)

RULES: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("banned_core", _BANNED_CORE),
    ("banned_legal_conclusion", _BANNED_LEGAL_CONCLUSION),
    ("banned_accusatory", _BANNED_ACCUSATORY),
)

SUPPRESSED_TEXT = {
    "empty": "Finding text suppressed (empty).",
    "banned_core": "Finding text suppressed by safety policy (research-only phrasing required).",
    "banned_legal_conclusion": (
        "Finding text suppressed by safety policy (avoid legal conclusions; use record-based wording)."
    ),
    "banned_accusatory": (
        "Finding text suppressed by safety policy "
        "(avoid accusatory language; use 'inconsistent' / 'not confirmed')."
    ),
}

DISCLAIMER = (
    "Research-only: this report summarizes patterns observed in the provided records. "
    "It does not make legal conclusions, allegations, or determinations, and it is not legal advice."
)


@dataclass(slots=True, frozen=True)
class SafetyVerdict:
    claim: str
    suppressed: bool
    reason: Optional[str] = None


def find_violation(text: str) -> Optional[str]:
    """Return the reason code of the first rule ``text`` breaks, if any."""
    stripped = (text or "").strip()
    if not stripped:
        return "empty"
    for reason, pattern in RULES:
        if pattern.search(stripped):
            return reason
    return None


def is_research_only(text: str) -> bool:
    return find_violation(text) is None


def enforce_research_only(claim: str) -> SafetyVerdict:
    reason = find_violation(claim)
    if reason is None:
        return SafetyVerdict(claim=claim.strip(), suppressed=False)
    return SafetyVerdict(claim=SUPPRESSED_TEXT[reason], suppressed=True, reason=reason)


def assert_research_only(claim: str) -> str:
    reason = find_violation(claim)
    if reason is not None:
        raise UnsafeClaimError(
            "Prohibited allegation, intent or legal-conclusion language detected",
            reason=reason,
        )
    return claim.strip()
