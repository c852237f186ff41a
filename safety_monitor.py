#!/usr/bin/env python3
"""
Keyword safety monitor for finalized transcript text.

Scans an utterance against an ordered keyword policy and reports the first
keyword that matches as a whole word or phrase. A keyword never matches
inside a longer word ("kill" does not match "killer").

Severity:
    high   - keyword contains a self-harm or weapon marker
    medium - any other keyword
    low    - reserved, not emitted

Usage:
    python safety_monitor.py "I want to run away today"
"""

import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from config import FLAGGED_KEYWORDS, HIGH_SEVERITY_MARKERS
from transcript_assembler import utc_now, new_id


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class FlaggedEvent:
    """A keyword match in one utterance, for guardian review."""
    keyword: str
    context: str           # full source utterance
    severity: Severity
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "keyword": self.keyword,
            "context": self.context,
            "severity": self.severity.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FlaggedEvent":
        return cls(
            keyword=data["keyword"],
            context=data["context"],
            severity=Severity(data["severity"]),
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


def compile_keyword(keyword: str) -> re.Pattern:
    """Whole-word/phrase pattern: non-word characters (or text edges) on both sides."""
    return re.compile(r"(?<!\w)" + re.escape(keyword.lower()) + r"(?!\w)", re.IGNORECASE)


class SafetyMonitor:
    """Deterministic first-match keyword classifier.

    Patterns are compiled once; scan() has no side effects.
    """

    def __init__(self, keywords=FLAGGED_KEYWORDS, high_markers=HIGH_SEVERITY_MARKERS):
        self._patterns = [(kw, compile_keyword(kw)) for kw in keywords if kw.strip()]
        self._high_markers = tuple(m.lower() for m in high_markers)

    @property
    def keywords(self) -> list[str]:
        return [kw for kw, _ in self._patterns]

    def classify(self, keyword: str) -> Severity:
        lowered = keyword.lower()
        if any(marker in lowered for marker in self._high_markers):
            return Severity.HIGH
        return Severity.MEDIUM

    def match(self, text: str) -> str | None:
        """Return the first keyword (in policy order) found in text."""
        lowered = text.lower()
        for keyword, pattern in self._patterns:
            if pattern.search(lowered):
                return keyword
        return None

    def scan(self, text: str) -> FlaggedEvent | None:
        keyword = self.match(text)
        if keyword is None:
            return None
        return FlaggedEvent(keyword=keyword, context=text, severity=self.classify(keyword))


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(f"Usage: {sys.argv[0]} TEXT", file=sys.stderr)
        sys.exit(2)
    event = SafetyMonitor().scan(" ".join(sys.argv[1:]))
    if event is None:
        print("no match")
        sys.exit(0)
    print(f"{event.severity.value}: {event.keyword}")
