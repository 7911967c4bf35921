"""
GeoConsensus Configuration

Two layers:
  - Settings:        process settings loaded from environment variables
                     (and a local .env file when present).
  - ConsensusConfig: the validated knobs a ConsensusEngine runs with.
                     Invalid values fail at construction, never mid-evaluation.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(ValueError):
    """Raised when engine configuration is malformed or out of range."""


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    # --- Versioning ---
    CORE_VERSION: str = "1.0.0"
    API_VERSION: str = "1"

    # --- Consensus (raw strings, validated by build_consensus_config) ---
    CONSENSUS_THRESHOLD: str = os.getenv("GEOCONSENSUS_CONSENSUS_THRESHOLD", "0.85")
    CONFIDENCE_THRESHOLD: str = os.getenv("GEOCONSENSUS_CONFIDENCE_THRESHOLD", "0.7")
    VETO_ENABLED: str = os.getenv("GEOCONSENSUS_VETO_ENABLED", "true")
    MAX_PROCESSING_TIME: str = os.getenv("GEOCONSENSUS_MAX_PROCESSING_TIME", "300")
    PARALLEL_EXECUTION: str = os.getenv("GEOCONSENSUS_PARALLEL_EXECUTION", "true")
    DETECTOR_WEIGHTS: str = os.getenv("GEOCONSENSUS_DETECTOR_WEIGHTS", "")
    FP_MATCH_THRESHOLD: str = os.getenv("GEOCONSENSUS_FP_MATCH_THRESHOLD", "0.7")

    # --- Detectors wired into the API: "name:channel:priority,..." ---
    DETECTORS: str = os.getenv(
        "GEOCONSENSUS_DETECTORS",
        "GravimetricDecompositionAgent:gravity:2,"
        "SpectralEvolutionAgent:spectral:2,"
        "QuantumInversionAgent:inversion:3",
    )

    # --- False-positive registry ---
    FP_DB_PATH: str = os.getenv("GEOCONSENSUS_FP_DB", "geoconsensus_patterns.db")

    # --- Server ---
    HOST: str = os.getenv("GEOCONSENSUS_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("GEOCONSENSUS_PORT", "8000"))

    # --- CORS ---
    CORS_ORIGINS: str = os.getenv("GEOCONSENSUS_CORS_ORIGINS", "*")


settings = Settings()


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

DEFAULT_QUALITY_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "temporal": 0.20,
    "cloud": 0.30,
    "resolution": 0.25,
    "radiometric": 0.25,
})

DEFAULT_PATTERN_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "category": 0.3,
    "context": 0.3,
    "detections": 0.4,
})


def _check_unit(name: str, value: Any) -> None:
    _check_number(name, value)
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value}")


def _check_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value}")


def _check_weights(name: str, weights: Mapping[str, float], required: tuple[str, ...] = ()) -> None:
    missing = [k for k in required if k not in weights]
    if missing:
        raise ConfigurationError(f"{name} is missing keys: {', '.join(missing)}")
    for key, value in weights.items():
        _check_number(f"{name}[{key}]", value)
        if value < 0:
            raise ConfigurationError(f"{name}[{key}] must be >= 0, got {value}")


@dataclass(frozen=True)
class ConsensusConfig:
    """
    Validated engine configuration.

    max_processing_time is in seconds and applies to each detector
    independently. The quality and pattern weights are calibration
    defaults, not derived constants.
    """

    consensus_threshold: float = 0.85
    confidence_threshold: float = 0.7
    veto_enabled: bool = True
    max_processing_time: float = 300.0
    detector_weights: Mapping[str, float] = field(default_factory=dict)
    parallel_execution: bool = True
    quality_pass_score: float = 0.75
    quality_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_QUALITY_WEIGHTS))
    fp_match_threshold: float = 0.7
    pattern_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_PATTERN_WEIGHTS))

    def __post_init__(self):
        _check_unit("consensus_threshold", self.consensus_threshold)
        _check_unit("confidence_threshold", self.confidence_threshold)
        _check_unit("quality_pass_score", self.quality_pass_score)
        _check_unit("fp_match_threshold", self.fp_match_threshold)

        for flag in ("veto_enabled", "parallel_execution"):
            if not isinstance(getattr(self, flag), bool):
                raise ConfigurationError(f"{flag} must be a bool")

        _check_number("max_processing_time", self.max_processing_time)
        if self.max_processing_time <= 0:
            raise ConfigurationError(
                f"max_processing_time must be > 0, got {self.max_processing_time}"
            )

        _check_weights("detector_weights", self.detector_weights)
        _check_weights("quality_weights", self.quality_weights, tuple(DEFAULT_QUALITY_WEIGHTS))
        _check_weights("pattern_weights", self.pattern_weights, tuple(DEFAULT_PATTERN_WEIGHTS))
        if sum(self.quality_weights.values()) <= 0:
            raise ConfigurationError("quality_weights must have a positive sum")

        # Freeze the mappings so a shared config cannot drift between evaluations
        for name in ("detector_weights", "quality_weights", "pattern_weights"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def weight_for(self, detector: str) -> Optional[float]:
        """Configured weight override for a detector, if any."""
        return self.detector_weights.get(detector)

    def to_dict(self) -> dict:
        return {
            "consensus_threshold": self.consensus_threshold,
            "confidence_threshold": self.confidence_threshold,
            "veto_enabled": self.veto_enabled,
            "max_processing_time": self.max_processing_time,
            "detector_weights": dict(self.detector_weights),
            "parallel_execution": self.parallel_execution,
            "quality_pass_score": self.quality_pass_score,
            "quality_weights": dict(self.quality_weights),
            "fp_match_threshold": self.fp_match_threshold,
            "pattern_weights": dict(self.pattern_weights),
        }


# ============================================================
# ENV PARSING
# ============================================================

def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} is not a number: {raw!r}") from None


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} is not a boolean: {raw!r}")


def parse_weights(raw: str) -> dict[str, float]:
    """Parse ``"name=2,other=3.5"`` into a weight mapping."""
    weights: dict[str, float] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"Malformed detector weight entry: {item!r}")
        weights[name.strip()] = _parse_float(f"weight for {name.strip()}", value.strip())
    return weights


def build_consensus_config(source: Settings = settings) -> ConsensusConfig:
    """Build a validated ConsensusConfig from environment settings."""
    return ConsensusConfig(
        consensus_threshold=_parse_float("GEOCONSENSUS_CONSENSUS_THRESHOLD", source.CONSENSUS_THRESHOLD),
        confidence_threshold=_parse_float("GEOCONSENSUS_CONFIDENCE_THRESHOLD", source.CONFIDENCE_THRESHOLD),
        veto_enabled=_parse_bool("GEOCONSENSUS_VETO_ENABLED", source.VETO_ENABLED),
        max_processing_time=_parse_float("GEOCONSENSUS_MAX_PROCESSING_TIME", source.MAX_PROCESSING_TIME),
        parallel_execution=_parse_bool("GEOCONSENSUS_PARALLEL_EXECUTION", source.PARALLEL_EXECUTION),
        detector_weights=parse_weights(source.DETECTOR_WEIGHTS),
        fp_match_threshold=_parse_float("GEOCONSENSUS_FP_MATCH_THRESHOLD", source.FP_MATCH_THRESHOLD),
    )
