"""
Pattern Matcher: Known False-Positive Suppression

Compares an evaluation against fingerprints of previously confirmed
false positives. A fingerprint is the target category, the geological
context, and the detected/not-detected verdict each detector gave.

Similarity (default weights, configurable):
  0.3 x category match
  0.3 x context match
  0.4 x fraction of the evaluated detectors whose verdict equals the
        fingerprint's verdict for that detector

Any pattern scoring strictly above the threshold suppresses the
detection. Read-only: matching never changes the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from geoconsensus.config import DEFAULT_PATTERN_WEIGHTS
from geoconsensus.models import Candidate, DetectorResult, FalsePositiveCheck


@dataclass(frozen=True)
class FalsePositivePattern:
    """Fingerprint of a confirmed false positive."""
    pattern_id: str
    name: str
    target_category: str
    context: str
    detector_pattern: Mapping[str, bool]
    description: str = ""
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    match_count: int = 0

    def __post_init__(self):
        if not self.pattern_id:
            raise ValueError("pattern_id must not be empty")
        object.__setattr__(
            self, "detector_pattern",
            MappingProxyType({str(k): bool(v) for k, v in self.detector_pattern.items()}),
        )

    def to_dict(self) -> dict:
        return {
            "pattern_id": self.pattern_id,
            "name": self.name,
            "target_category": self.target_category,
            "context": self.context,
            "detector_pattern": dict(self.detector_pattern),
            "description": self.description,
            "created_at": self.created_at,
            "match_count": self.match_count,
        }


class PatternMatcher:

    def __init__(
        self,
        threshold: float = 0.7,
        weights: Optional[Mapping[str, float]] = None,
    ):
        self.threshold = threshold
        self.weights = dict(weights or DEFAULT_PATTERN_WEIGHTS)

    def score(
        self,
        candidate: Candidate,
        results: Mapping[str, DetectorResult],
        pattern: FalsePositivePattern,
    ) -> float:
        score = 0.0
        if candidate.target_category == pattern.target_category:
            score += self.weights["category"]
        if candidate.context == pattern.context:
            score += self.weights["context"]

        if results:
            matches = sum(
                1
                for name, result in results.items()
                if name in pattern.detector_pattern
                and pattern.detector_pattern[name] == result.detected
            )
            score += self.weights["detections"] * (matches / len(results))
        return score

    def match(
        self,
        candidate: Candidate,
        results: Mapping[str, DetectorResult],
        patterns: Iterable[FalsePositivePattern],
    ) -> FalsePositiveCheck:
        """Best pattern over the threshold; ties go to the earliest pattern."""
        best: Optional[FalsePositivePattern] = None
        best_score = 0.0
        for pattern in patterns:
            s = self.score(candidate, results, pattern)
            if s > self.threshold and (best is None or s > best_score):
                best, best_score = pattern, s

        if best is None:
            return FalsePositiveCheck(is_known_fp=False)

        return FalsePositiveCheck(
            is_known_fp=True,
            pattern_id=best.pattern_id,
            pattern_name=best.name,
            match_score=best_score,
            explanation=(
                f"Matches known false positive pattern: {best.name}. "
                f"Common in {candidate.context} contexts with "
                f"{candidate.target_category} targets."
            ),
        )
