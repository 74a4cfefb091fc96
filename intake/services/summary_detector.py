"""Onboarding summary candidate detection.

An onboarding reply is flagged as a summary candidate when a strict majority of
the section markers below occur in it. This is an approximation: ordinary replies
that mention several of the phrases are flagged too, and summaries worded
differently are missed. Callers only use the flag to offer the reply for approval.
"""

import re
from dataclasses import dataclass
from typing import Tuple

SUMMARY_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("role", r"\b(?:role|responsibilit(?:y|ies)|job title)\b"),
    ("tools", r"\b(?:tools?|software)\b"),
    (
        "time_allocation",
        r"\b(?:time allocation|time spent|time breakdown|of (?:your|the|their) time"
        r"|hours? (?:per|a|each) (?:week|day))\b",
    ),
    ("pain_points", r"\b(?:pain points?|challenges|frustrations|bottlenecks)\b"),
    (
        "confirmation",
        r"(?:does (?:this|that) (?:summary )?(?:look|sound|seem) (?:right|accurate|correct)"
        r"|(?:is|are) (?:this|that|these|everything) (?:accurate|correct|right)"
        r"|anything (?:you'?d like to|to) (?:add|change|correct))[^?]*\?",
    ),
)

_COMPILED = tuple((name, re.compile(pattern, re.IGNORECASE)) for name, pattern in SUMMARY_MARKERS)


@dataclass(frozen=True)
class SummaryCheck:
    matched: Tuple[str, ...]
    is_candidate: bool


def check_summary(text: str) -> SummaryCheck:
    """Report which markers occur in ``text`` and whether they form a majority."""
    matched = tuple(name for name, regex in _COMPILED if regex.search(text or ""))
    return SummaryCheck(matched=matched, is_candidate=len(matched) * 2 > len(_COMPILED))


def is_summary_candidate(text: str) -> bool:
    return check_summary(text).is_candidate
