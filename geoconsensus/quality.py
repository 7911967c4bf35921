"""
Quality Gate

Scores a data snapshot before any detector runs. When the snapshot is
unfit, the engine returns a negative result straight away and the
detectors are never invoked.

Four independent sub-scores, each in [0, 1]:
  - temporal:     how many revisit-capable modalities are present
  - cloud:        optical contamination (SAR is unaffected)
  - resolution:   whether fine (~10 m) and medium (~30 m) families can be co-registered
  - radiometric:  cross-channel calibration consistency

Pure function of the snapshot: no I/O, no state.
"""

from __future__ import annotations

import math
from typing import Mapping, Optional

from geoconsensus.config import DEFAULT_QUALITY_WEIGHTS
from geoconsensus.models import DataSnapshot, QualityReport

# Channel families used by the resolution check
FINE_RESOLUTION_CHANNELS = ("optical", "sar")
MEDIUM_RESOLUTION_CHANNELS = ("thermal", "elevation")

# (sub-score, bar, issue, recommendation): an issue is raised when the
# sub-score falls strictly below its bar
_CHECKS = (
    ("temporal", 0.7,
     "Insufficient temporal coverage",
     "Extend date range or use seasonal composite"),
    ("cloud", 0.8,
     "High cloud contamination in optical data",
     "Apply cloud masking or rely on SAR data"),
    ("resolution", 0.6,
     "Incompatible resolutions across sensors",
     "Resample to common resolution grid"),
    ("radiometric", 0.9,
     "Radiometric inconsistencies detected",
     "Apply cross-sensor calibration"),
)


class QualityGate:
    """Computes a QualityReport for a snapshot."""

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        pass_score: float = 0.75,
    ):
        self.weights = dict(weights or DEFAULT_QUALITY_WEIGHTS)
        self.pass_score = pass_score

    def assess(self, snapshot: DataSnapshot) -> QualityReport:
        sub_scores = {
            "temporal": self._temporal_coverage(snapshot),
            "cloud": self._cloud_cover(snapshot),
            "resolution": self._resolution_compatibility(snapshot),
            "radiometric": self._radiometric_consistency(snapshot),
        }

        issues: list[str] = []
        recommendations: list[str] = []
        for name, bar, issue, recommendation in _CHECKS:
            if sub_scores[name] < bar:
                issues.append(issue)
                recommendations.append(recommendation)

        total_weight = sum(self.weights.values())
        score = sum(sub_scores[k] * self.weights.get(k, 0.0) for k in sub_scores)
        if total_weight > 0:
            score /= total_weight
        score = max(0.0, min(1.0, score))

        return QualityReport(
            score=score,
            issues=issues,
            recommendations=recommendations,
            passed=score >= self.pass_score,
            sub_scores={k: round(v, 4) for k, v in sub_scores.items()},
        )

    def _temporal_coverage(self, snapshot: DataSnapshot) -> float:
        if snapshot.is_empty:
            return 0.0
        score = 0.5
        if snapshot.has("optical"):
            score += 0.2
        if snapshot.has("sar"):
            score += 0.2
        if snapshot.has("thermal"):
            score += 0.1
        return min(1.0, score)

    def _cloud_cover(self, snapshot: DataSnapshot) -> float:
        if not snapshot.has("optical"):
            return 1.0
        cloud_cover = snapshot.hint("optical", "cloud_cover")
        if isinstance(cloud_cover, (int, float)) and not isinstance(cloud_cover, bool):
            if not math.isfinite(cloud_cover):
                # Corrupt reading: score as fully obscured
                return 0.0
            return max(0.0, min(1.0, 1.0 - float(cloud_cover)))
        return 0.85

    def _resolution_compatibility(self, snapshot: DataSnapshot) -> float:
        has_fine = any(snapshot.has(c) for c in FINE_RESOLUTION_CHANNELS)
        has_medium = any(snapshot.has(c) for c in MEDIUM_RESOLUTION_CHANNELS)
        return 0.9 if has_fine and has_medium else 0.6

    def _radiometric_consistency(self, snapshot: DataSnapshot) -> float:
        if snapshot.is_empty:
            return 0.0
        if any(snapshot.hint(name, "calibrated", True) is False for name in snapshot.channels):
            return 0.6
        return 0.9
