"""
GeoConsensus: Multi-Detector Consensus Engine

Turns independent, unreliable, possibly slow detectors into one
auditable yes/no decision with a confidence, while guaranteeing that
structurally implausible or known-false-positive combinations never
produce a positive result.

Public API:
  - ConsensusEngine:       Quality gate -> detectors -> consensus -> veto -> FP check -> fusion
  - ConsensusConfig:       Validated engine configuration
  - Detector:              Abstract detector interface
  - ChannelDetector:       Reference detector over signal/noise channels
  - DataSource:            Abstract data acquisition interface
  - VetoRule, VetoEngine:  Declarative structural veto rules
  - FalsePositiveRegistry: SQLite-backed false-positive fingerprints
  - EvaluationHistory:     SHA-256 hash-chained evaluation log

Usage:
    from geoconsensus import ConsensusEngine, ConsensusConfig, Candidate, DataSnapshot
"""

__version__ = "1.0.0"

from geoconsensus.config import ConsensusConfig, ConfigurationError
from geoconsensus.models import (
    Candidate,
    DataSnapshot,
    DetectorResult,
    EvaluationResult,
    StructuralValidation,
    TimeWindow,
)
from geoconsensus.detectors import Detector
from geoconsensus.detectors.channel import ChannelDetector
from geoconsensus.acquisition import DataSource
from geoconsensus.orchestrator import DetectorOrchestrator, DuplicateDetectorError
from geoconsensus.veto import DEFAULT_VETO_RULES, VetoEngine, VetoRule
from geoconsensus.patterns.matcher import FalsePositivePattern, PatternMatcher
from geoconsensus.patterns.registry import FalsePositiveRegistry
from geoconsensus.history import EvaluationHistory
from geoconsensus.engine import ConsensusEngine

__all__ = [
    "ConsensusConfig",
    "ConfigurationError",
    "Candidate",
    "DataSnapshot",
    "DetectorResult",
    "EvaluationResult",
    "StructuralValidation",
    "TimeWindow",
    "Detector",
    "ChannelDetector",
    "DataSource",
    "DetectorOrchestrator",
    "DuplicateDetectorError",
    "DEFAULT_VETO_RULES",
    "VetoEngine",
    "VetoRule",
    "FalsePositivePattern",
    "PatternMatcher",
    "FalsePositiveRegistry",
    "EvaluationHistory",
    "ConsensusEngine",
]
