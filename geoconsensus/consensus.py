"""
Consensus Calculator

Pure aggregation over a detector result map:
  - raw agreement:       fraction of detectors that detected
  - weighted agreement:  confidence-weighted share of the total weight
  - agreement ratio:     fraction of detector pairs whose verdicts match

Never terminates the pipeline; the numbers are inputs to the later
stages and to the result record.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from geoconsensus.detectors import Detector
from geoconsensus.models import ConsensusMetrics, DetectorResult


def resolve_weights(
    results: Mapping[str, DetectorResult],
    detectors: Optional[Iterable[Detector]] = None,
    overrides: Optional[Mapping[str, float]] = None,
) -> dict[str, float]:
    """
    Weight per detector: configured override, else the detector's
    priority, else 1.0.
    """
    overrides = overrides or {}
    priorities = {d.name: d.priority for d in detectors or ()}
    weights: dict[str, float] = {}
    for name in results:
        if name in overrides:
            weight = overrides[name]
        else:
            weight = priorities.get(name, 1.0)
        if weight < 0:
            raise ValueError(f"weight for {name} must be >= 0, got {weight}")
        weights[name] = float(weight)
    return weights


def agreement_ratio(results: Mapping[str, DetectorResult]) -> float:
    """Share of unordered detector pairs that returned the same verdict."""
    verdicts = [r.detected for r in results.values()]
    n = len(verdicts)
    if n <= 1:
        return 1.0
    agreements = sum(
        1
        for i in range(n)
        for j in range(i + 1, n)
        if verdicts[i] == verdicts[j]
    )
    return agreements / (n * (n - 1) / 2)


def calculate_consensus(
    results: Mapping[str, DetectorResult],
    weights: Mapping[str, float],
) -> ConsensusMetrics:
    total = len(results)
    detection_count = sum(1 for r in results.values() if r.detected)
    raw = detection_count / total if total else 0.0

    total_weight = sum(weights.get(name, 1.0) for name in results)
    weighted_sum = sum(
        r.confidence * weights.get(name, 1.0)
        for name, r in results.items()
        if r.detected
    )
    weighted = weighted_sum / total_weight if total_weight > 0 else 0.0

    return ConsensusMetrics(
        raw_agreement=raw,
        weighted_agreement=weighted,
        agreement_ratio=agreement_ratio(results),
        detection_count=detection_count,
        total_count=total,
        weights={name: weights.get(name, 1.0) for name in results},
    )
