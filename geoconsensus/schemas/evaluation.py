"""
API Schemas: Request and Response Models

Pydantic models for the GeoConsensus API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


# ============================================================
# EVALUATE
# ============================================================

class TimeWindowIn(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self):
        if self.start > self.end:
            raise ValueError("time window start must not be after its end")
        return self


class CandidateIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    target_category: str = Field(..., min_length=1, max_length=100,
                                 description="Target tag, e.g. petroleum or lithium.")
    context: str = Field("", max_length=100,
                         description="Geological context, e.g. basin or craton.")
    depth: Optional[float] = Field(None, ge=0, description="Metres.")
    radius: Optional[float] = Field(None, gt=0, description="Metres.")
    time_window: Optional[TimeWindowIn] = None


class EvaluateRequest(BaseModel):
    """POST /evaluate request body."""
    candidate: CandidateIn
    channels: dict[str, Any] = Field(default_factory=dict,
                                     description="Measurement channels keyed by name.")
    source: str = Field("api", max_length=100)

    model_config = {"json_schema_extra": {"examples": [
        {
            "candidate": {"latitude": 29.7, "longitude": -95.3,
                          "target_category": "petroleum", "context": "basin"},
            "channels": {
                "gravity": {"signal": 12.0, "noise": 1.5, "quality": 0.95},
                "spectral": {"signal": 8.0, "noise": 1.0, "alteration_detected": True},
                "inversion": {"signal": 10.0, "noise": 1.2,
                              "structural_validation": {"passes": True, "residual": 0.3}},
                "optical": {"cloud_cover": 0.1},
                "thermal": {},
            },
        },
    ]}}


class EvaluateBatchRequest(BaseModel):
    """POST /evaluate/batch request body."""
    items: list[EvaluateRequest] = Field(..., min_length=1, max_length=50)


class EvaluationResponse(BaseModel):
    """POST /evaluate response body."""
    evaluation_id: str
    candidate: dict
    detected: bool
    confidence: float
    raw_agreement: float
    weighted_agreement: float
    agreement_ratio: float
    consensus_reached: bool
    stage: str
    veto: Optional[dict] = None
    false_positive: Optional[dict] = None
    detector_results: dict[str, dict]
    quality_report: dict
    processing_time: float
    timestamp: str
    audit_hash: Optional[str] = None


class EvaluateBatchResponse(BaseModel):
    results: list[EvaluationResponse]
    total: int
    evaluated: int


# ============================================================
# HISTORY
# ============================================================

class HistoryEntryOut(BaseModel):
    index: int
    prev_hash: str
    hash: str
    evaluation_id: str
    core_version: str
    result: dict


class HistoryResponse(BaseModel):
    entries: list[HistoryEntryOut]
    total_count: int


class ChainVerification(BaseModel):
    verified: bool
    entries_checked: int
    broken_links: list[dict]


# ============================================================
# FALSE-POSITIVE PATTERNS
# ============================================================

class PatternIn(BaseModel):
    """POST /patterns request body."""
    pattern_id: Optional[str] = Field(None, min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    target_category: str = Field(..., min_length=1, max_length=100)
    context: str = Field("", max_length=100)
    detector_pattern: dict[str, bool] = Field(..., min_length=1)
    description: str = Field("", max_length=2000)


class PatternFromEvaluationIn(BaseModel):
    """POST /patterns/from-evaluation request body."""
    evaluation_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)


class PatternOut(BaseModel):
    pattern_id: str
    name: str
    target_category: str
    context: str
    detector_pattern: dict[str, bool]
    description: str
    created_at: str
    match_count: int


class PatternListResponse(BaseModel):
    total: int
    patterns: list[PatternOut]


# ============================================================
# STATUS / HEALTH
# ============================================================

class StatusResponse(BaseModel):
    core_version: str
    detectors: list[dict]
    veto_rules: list[dict]
    statistics: dict
    config: dict


class HealthResponse(BaseModel):
    status: str
    version: str
    core_version: str
    registered_detectors: int
    history_entries: int
    fp_patterns: int
