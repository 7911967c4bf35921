"""
Data Model

Immutable value types shared by every stage of the consensus pipeline.
Nothing here is mutated after construction; stages that need a changed
value build a new one with dataclasses.replace().
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _check_fraction(name: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


def _jsonable(value: Any) -> Any:
    """Reduce an opaque detector payload to JSON-native types with string keys."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(v) for v in value), key=repr)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


# ============================================================
# QUERY + INPUT
# ============================================================

@dataclass(frozen=True)
class TimeWindow:
    """Closed time interval a candidate is evaluated over."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("time window start must not be after its end")

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class Candidate:
    """A location being queried for the target phenomenon."""
    latitude: float
    longitude: float
    target_category: str        # free-form tag, e.g. "petroleum", "lithium"
    context: str                # geological / environmental category, e.g. "basin"
    depth: Optional[float] = None       # metres
    radius: Optional[float] = None      # metres
    time_window: Optional[TimeWindow] = None
    candidate_id: str = field(default_factory=_new_id)

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if not self.target_category:
            raise ValueError("target_category must not be empty")
        if self.depth is not None and self.depth < 0:
            raise ValueError(f"depth must be >= 0, got {self.depth}")
        if self.radius is not None and self.radius <= 0:
            raise ValueError(f"radius must be > 0, got {self.radius}")

    def to_dict(self) -> dict:
        return {
            "candidate_id": self.candidate_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "target_category": self.target_category,
            "context": self.context,
            "depth": self.depth,
            "radius": self.radius,
            "time_window": self.time_window.to_dict() if self.time_window else None,
        }


@dataclass(frozen=True)
class DataSnapshot:
    """
    Bundle of measurement channels supplied by the acquisition layer.

    Channels are opaque to the engine. The quality gate only reads a few
    optional hints (cloud_cover, calibrated) when a channel is a mapping.
    """
    channels: Mapping[str, Any] = field(default_factory=dict)
    source: str = "unknown"
    acquired_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(self, "channels", MappingProxyType(dict(self.channels)))

    def has(self, channel: str) -> bool:
        return self.channels.get(channel) is not None

    def hint(self, channel: str, key: str, default: Any = None) -> Any:
        """Read an optional hint from a mapping-shaped channel."""
        value = self.channels.get(channel)
        if isinstance(value, Mapping):
            return value.get(key, default)
        return default

    @property
    def is_empty(self) -> bool:
        return not any(v is not None for v in self.channels.values())


# ============================================================
# DETECTOR OUTPUT
# ============================================================

@dataclass(frozen=True)
class StructuralValidation:
    """A detector's own check of physical / structural plausibility."""
    passes: bool
    violations: tuple[str, ...] = ()
    residual: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "violations", tuple(self.violations))
        if not math.isfinite(self.residual) or self.residual < 0:
            raise ValueError(f"residual must be finite and >= 0, got {self.residual}")

    def to_dict(self) -> dict:
        return {
            "passes": self.passes,
            "violations": list(self.violations),
            "residual": self.residual,
        }


@dataclass(frozen=True)
class DetectorResult:
    """Output of one detector for one evaluation."""
    detector: str
    detected: bool
    confidence: float
    uncertainty: float
    payload: Any = None
    elapsed: float = 0.0        # seconds
    method: str = "unspecified"
    veto_eligible: Optional[bool] = None
    structural_validation: Optional[StructuralValidation] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not isinstance(self.detected, bool):
            raise ValueError(f"detected must be a bool, got {type(self.detected).__name__}")
        _check_fraction("confidence", self.confidence)
        _check_fraction("uncertainty", self.uncertainty)

    @property
    def failed(self) -> bool:
        return self.method == FAILED_METHOD

    @classmethod
    def failure(cls, detector: str, elapsed: float = 0.0, reason: str = "") -> "DetectorResult":
        """Synthetic result substituted for a detector that crashed or timed out."""
        return cls(
            detector=detector,
            detected=False,
            confidence=0.0,
            uncertainty=1.0,
            payload={"error": reason} if reason else None,
            elapsed=elapsed,
            method=FAILED_METHOD,
        )

    def to_dict(self) -> dict:
        return {
            "detector": self.detector,
            "detected": self.detected,
            "confidence": self.confidence,
            "uncertainty": self.uncertainty,
            "payload": _jsonable(self.payload),
            "elapsed": round(self.elapsed, 6),
            "method": self.method,
            "veto_eligible": self.veto_eligible,
            "structural_validation": (
                self.structural_validation.to_dict() if self.structural_validation else None
            ),
            "timestamp": self.timestamp.isoformat(),
        }


FAILED_METHOD = "failed"


# ============================================================
# STAGE OUTPUTS
# ============================================================

@dataclass(frozen=True)
class QualityReport:
    score: float
    issues: tuple[str, ...]
    recommendations: tuple[str, ...]
    passed: bool
    sub_scores: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "issues", tuple(self.issues))
        object.__setattr__(self, "recommendations", tuple(self.recommendations))
        object.__setattr__(self, "sub_scores", MappingProxyType(dict(self.sub_scores)))

    def to_dict(self) -> dict:
        return {
            "score": round(self.score, 4),
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "passed": self.passed,
            "sub_scores": dict(self.sub_scores),
        }


@dataclass(frozen=True)
class ConsensusMetrics:
    raw_agreement: float
    weighted_agreement: float
    agreement_ratio: float
    detection_count: int
    total_count: int
    weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))


@dataclass(frozen=True)
class VetoStatus:
    vetoed: bool
    rule_id: Optional[str] = None
    vetoing_agent: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "vetoed": self.vetoed,
            "rule_id": self.rule_id,
            "vetoing_agent": self.vetoing_agent,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class FalsePositiveCheck:
    is_known_fp: bool
    pattern_id: Optional[str] = None
    pattern_name: Optional[str] = None
    match_score: float = 0.0
    explanation: str = ""

    def to_dict(self) -> dict:
        return {
            "is_known_fp": self.is_known_fp,
            "pattern_id": self.pattern_id,
            "pattern_name": self.pattern_name,
            "match_score": round(self.match_score, 4),
            "explanation": self.explanation,
        }


# ============================================================
# FINAL RESULT
# ============================================================

# Terminal stages of the per-evaluation state machine
STAGE_QUALITY = "quality_check"
STAGE_VETO = "veto_check"
STAGE_FALSE_POSITIVE = "fp_check"
STAGE_FUSION = "fusion"


@dataclass(frozen=True)
class EvaluationResult:
    candidate: Candidate
    detected: bool
    confidence: float
    raw_agreement: float
    weighted_agreement: float
    quality_report: QualityReport
    stage: str
    agreement_ratio: float = 1.0
    consensus_reached: bool = False
    veto: Optional[VetoStatus] = None
    false_positive: Optional[FalsePositiveCheck] = None
    detector_results: Mapping[str, DetectorResult] = field(default_factory=dict)
    processing_time: float = 0.0    # seconds
    evaluation_id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(self, "detector_results", MappingProxyType(dict(self.detector_results)))
        if self.detected and (self.vetoed or self.suppressed):
            raise ValueError("a vetoed or false-positive-matched result cannot be a detection")

    @property
    def vetoed(self) -> bool:
        return self.veto is not None and self.veto.vetoed

    @property
    def suppressed(self) -> bool:
        return self.false_positive is not None and self.false_positive.is_known_fp

    def to_dict(self) -> dict:
        return {
            "evaluation_id": self.evaluation_id,
            "candidate": self.candidate.to_dict(),
            "detected": self.detected,
            "confidence": round(self.confidence, 6),
            "raw_agreement": round(self.raw_agreement, 6),
            "weighted_agreement": round(self.weighted_agreement, 6),
            "agreement_ratio": round(self.agreement_ratio, 6),
            "consensus_reached": self.consensus_reached,
            "stage": self.stage,
            "veto": self.veto.to_dict() if self.veto else None,
            "false_positive": self.false_positive.to_dict() if self.false_positive else None,
            "detector_results": {
                name: result.to_dict() for name, result in self.detector_results.items()
            },
            "quality_report": self.quality_report.to_dict(),
            "processing_time": round(self.processing_time, 6),
            "timestamp": self.timestamp.isoformat(),
        }
