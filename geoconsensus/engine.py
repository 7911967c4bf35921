"""
Consensus Engine: Evaluation Pipeline

Turns N independent, unreliable, possibly slow detectors into one
auditable yes/no decision with a confidence.

Stages (each one can end the evaluation with a complete negative result):
  1. quality_check  snapshot unfit -> done, detectors never run
  2. detector run   fan-out / fan-in with per-detector timeouts
  3. consensus      raw / weighted / pairwise agreement
  4. veto_check     first firing structural rule -> done, not detected
  5. fp_check       known false-positive fingerprint -> done, not detected
  6. fusion         uncertainty-discounted weighted confidence vs threshold

Every terminal result is appended to the hash-chained history.
Evaluations are independent of each other; history is never read back
into a decision.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, Optional, Sequence

from geoconsensus.acquisition import DataSource
from geoconsensus.config import ConsensusConfig
from geoconsensus.consensus import calculate_consensus, resolve_weights
from geoconsensus.detectors import Detector
from geoconsensus.fusion import fuse_confidence, is_detection
from geoconsensus.history import EvaluationHistory
from geoconsensus.logging import get_logger
from geoconsensus.models import (
    STAGE_FALSE_POSITIVE,
    STAGE_FUSION,
    STAGE_QUALITY,
    STAGE_VETO,
    Candidate,
    DataSnapshot,
    EvaluationResult,
    QualityReport,
)
from geoconsensus.orchestrator import DetectorOrchestrator
from geoconsensus.patterns.matcher import FalsePositivePattern, PatternMatcher
from geoconsensus.quality import QualityGate
from geoconsensus.veto import VetoEngine, VetoRule

logger = get_logger("engine")

ACQUISITION_FAILED_ISSUE = "Data acquisition failed"
ACQUISITION_FAILED_RECOMMENDATION = "Check the data source and retry the query"

PatternSource = Callable[[], Iterable[FalsePositivePattern]]


class ConsensusEngine:

    def __init__(
        self,
        config: Optional[ConsensusConfig] = None,
        detectors: Optional[Iterable[Detector]] = None,
        veto_rules: Optional[Sequence[VetoRule]] = None,
        pattern_source: Optional[PatternSource] = None,
        quality_gate: Optional[QualityGate] = None,
        history: Optional[EvaluationHistory] = None,
    ):
        self.config = config or ConsensusConfig()
        self.orchestrator = DetectorOrchestrator(
            detectors,
            max_processing_time=self.config.max_processing_time,
            parallel=self.config.parallel_execution,
        )
        self.quality_gate = quality_gate or QualityGate(
            weights=self.config.quality_weights,
            pass_score=self.config.quality_pass_score,
        )
        self.veto_engine = VetoEngine(veto_rules, enabled=self.config.veto_enabled)
        self.matcher = PatternMatcher(
            threshold=self.config.fp_match_threshold,
            weights=self.config.pattern_weights,
        )
        self._pattern_source: PatternSource = pattern_source or (lambda: ())
        self.history = history or EvaluationHistory()

    # --- Detector registry ---

    def register_detector(self, detector: Detector) -> None:
        self.orchestrator.register(detector)

    def remove_detector(self, name: str) -> None:
        self.orchestrator.remove(name)

    @property
    def detectors(self) -> list[Detector]:
        return self.orchestrator.detectors

    # --- Evaluation ---

    async def evaluate(self, candidate: Candidate, snapshot: DataSnapshot) -> EvaluationResult:
        start = time.monotonic()
        quality = self.quality_gate.assess(snapshot)
        return await self._evaluate(candidate, snapshot, quality, start)

    async def evaluate_at(self, candidate: Candidate, source: DataSource) -> EvaluationResult:
        """Gather a snapshot for the candidate, then evaluate it."""
        start = time.monotonic()
        try:
            snapshot = await source.gather(
                candidate.latitude,
                candidate.longitude,
                candidate.radius,
                candidate.target_category,
                candidate.time_window,
            )
        except Exception as e:
            logger.warning(
                f"Data acquisition failed: {e}",
                extra={"candidate_id": candidate.candidate_id,
                       "error": str(e), "error_type": type(e).__name__},
            )
            snapshot = DataSnapshot(source=getattr(source, "name", "unknown"))
            quality = self.quality_gate.assess(snapshot)
            quality = QualityReport(
                score=quality.score,
                issues=(ACQUISITION_FAILED_ISSUE,) + quality.issues,
                recommendations=(ACQUISITION_FAILED_RECOMMENDATION,) + quality.recommendations,
                passed=False,
                sub_scores=quality.sub_scores,
            )
            return await self._evaluate(candidate, snapshot, quality, start)

        return await self._evaluate(candidate, snapshot, self.quality_gate.assess(snapshot), start)

    async def _evaluate(
        self,
        candidate: Candidate,
        snapshot: DataSnapshot,
        quality: QualityReport,
        start: float,
    ) -> EvaluationResult:
        if not quality.passed:
            logger.info(
                f"Quality gate rejected snapshot (score {quality.score:.2f})",
                extra={"candidate_id": candidate.candidate_id, "stage": STAGE_QUALITY,
                       "quality_score": round(quality.score, 4)},
            )
            return self._finish(EvaluationResult(
                candidate=candidate,
                detected=False,
                confidence=0.0,
                raw_agreement=0.0,
                weighted_agreement=0.0,
                quality_report=quality,
                stage=STAGE_QUALITY,
                processing_time=time.monotonic() - start,
            ))

        results = await self.orchestrator.run(candidate, snapshot)
        weights = resolve_weights(results, self.orchestrator.detectors, self.config.detector_weights)
        metrics = calculate_consensus(results, weights)
        confidence = fuse_confidence(results, weights)

        common = dict(
            candidate=candidate,
            confidence=confidence,
            raw_agreement=metrics.raw_agreement,
            weighted_agreement=metrics.weighted_agreement,
            agreement_ratio=metrics.agreement_ratio,
            consensus_reached=metrics.weighted_agreement >= self.config.consensus_threshold,
            quality_report=quality,
            detector_results=results,
        )

        veto = self.veto_engine.evaluate(results)
        if veto.vetoed:
            logger.info(
                f"False positive prevented: {veto.reason}",
                extra={"candidate_id": candidate.candidate_id, "stage": STAGE_VETO,
                       "rule_id": veto.rule_id, "vetoing_agent": veto.vetoing_agent},
            )
            return self._finish(EvaluationResult(
                detected=False,
                stage=STAGE_VETO,
                veto=veto,
                processing_time=time.monotonic() - start,
                **common,
            ))

        fp_check = self.matcher.match(candidate, results, self._pattern_source())
        if fp_check.is_known_fp:
            logger.info(
                f"False positive prevented: {fp_check.explanation}",
                extra={"candidate_id": candidate.candidate_id, "stage": STAGE_FALSE_POSITIVE,
                       "pattern_id": fp_check.pattern_id,
                       "match_score": round(fp_check.match_score, 4)},
            )
            return self._finish(EvaluationResult(
                detected=False,
                stage=STAGE_FALSE_POSITIVE,
                veto=veto,
                false_positive=fp_check,
                processing_time=time.monotonic() - start,
                **common,
            ))

        return self._finish(EvaluationResult(
            detected=is_detection(confidence, self.config.confidence_threshold),
            stage=STAGE_FUSION,
            veto=veto,
            false_positive=fp_check,
            processing_time=time.monotonic() - start,
            **common,
        ))

    def _finish(self, result: EvaluationResult) -> EvaluationResult:
        audit_hash = self.history.append(result)
        logger.info(
            f"Evaluation complete: detected={result.detected} stage={result.stage}",
            extra={
                "evaluation_id": result.evaluation_id,
                "candidate_id": result.candidate.candidate_id,
                "stage": result.stage,
                "detected": result.detected,
                "confidence": round(result.confidence, 4),
                "duration_ms": round(result.processing_time * 1000, 1),
                "audit_hash": audit_hash,
            },
        )
        return result

    # --- Introspection ---

    def statistics(self) -> dict:
        stats = self.history.statistics()
        stats["registered_detectors"] = len(self.orchestrator)
        return stats
