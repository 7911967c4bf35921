"""
Decision Fusion

Collapses the detector results into one confidence: each detecting
detector contributes its confidence discounted by its own uncertainty,
scaled by its weight; every detector's weight counts in the
denominator, so silence and failure dilute the score.
"""

from __future__ import annotations

from typing import Mapping

from geoconsensus.models import DetectorResult


def fuse_confidence(
    results: Mapping[str, DetectorResult],
    weights: Mapping[str, float],
) -> float:
    total_weight = 0.0
    weighted_sum = 0.0
    for name, result in results.items():
        weight = weights.get(name, 1.0)
        total_weight += weight
        if result.detected:
            weighted_sum += result.confidence * (1.0 - result.uncertainty) * weight

    if total_weight <= 0:
        return 0.0
    return max(0.0, min(1.0, weighted_sum / total_weight))


def is_detection(confidence: float, threshold: float) -> bool:
    return confidence >= threshold
