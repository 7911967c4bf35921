"""
Tests for false-positive pattern matching and the SQLite registry.
"""

import os
import tempfile

import pytest

from geoconsensus.models import EvaluationResult, QualityReport
from geoconsensus.patterns.matcher import FalsePositivePattern, PatternMatcher
from geoconsensus.patterns.registry import FalsePositiveRegistry
from tests.stubs import make_candidate, result


def _pattern(pattern_id="fp_1", category="petroleum", context="basin", detectors=None, name="Salt dome"):
    return FalsePositivePattern(
        pattern_id=pattern_id,
        name=name,
        target_category=category,
        context=context,
        detector_pattern=detectors if detectors is not None else {"grav": True, "spectral": True},
    )


RESULTS = {
    "grav": result("grav", detected=True),
    "spectral": result("spectral", detected=True),
}


# ============================================================
# MATCHER
# ============================================================

class TestScore:

    def test_full_match(self):
        score = PatternMatcher().score(make_candidate(), RESULTS, _pattern())
        assert score == pytest.approx(1.0)

    def test_category_and_context_only(self):
        pattern = _pattern(detectors={"grav": False, "spectral": False})
        assert PatternMatcher().score(make_candidate(), RESULTS, pattern) == pytest.approx(0.6)

    def test_partial_detector_match(self):
        pattern = _pattern(detectors={"grav": True, "spectral": False})
        assert PatternMatcher().score(make_candidate(), RESULTS, pattern) == pytest.approx(0.8)

    def test_missing_detector_does_not_match(self):
        pattern = _pattern(detectors={"grav": True})
        assert PatternMatcher().score(make_candidate(), RESULTS, pattern) == pytest.approx(0.8)

    def test_no_detectors(self):
        assert PatternMatcher().score(make_candidate(), {}, _pattern()) == pytest.approx(0.6)

    def test_category_mismatch(self):
        pattern = _pattern(category="lithium")
        assert PatternMatcher().score(make_candidate(), RESULTS, pattern) == pytest.approx(0.7)


class TestMatch:

    def test_above_threshold_suppresses(self):
        check = PatternMatcher().match(make_candidate(), RESULTS, [_pattern()])
        assert check.is_known_fp is True
        assert check.pattern_id == "fp_1"
        assert check.pattern_name == "Salt dome"
        assert check.match_score == pytest.approx(1.0)
        assert "Salt dome" in check.explanation

    def test_threshold_is_strict(self):
        # A score exactly on the threshold does not suppress
        matcher = PatternMatcher(
            threshold=0.75,
            weights={"category": 0.5, "context": 0.25, "detections": 0.25},
        )
        pattern = _pattern(detectors={"grav": False, "spectral": False})
        assert matcher.score(make_candidate(), RESULTS, pattern) == 0.75
        assert matcher.match(make_candidate(), RESULTS, [pattern]).is_known_fp is False

    def test_no_patterns(self):
        assert PatternMatcher().match(make_candidate(), RESULTS, []).is_known_fp is False

    def test_best_match_reported(self):
        patterns = [
            _pattern("weak", detectors={"grav": True, "spectral": False}),
            _pattern("strong"),
        ]
        check = PatternMatcher().match(make_candidate(), RESULTS, patterns)
        assert check.pattern_id == "strong"

    def test_ties_go_to_first(self):
        check = PatternMatcher().match(make_candidate(), RESULTS, [_pattern("first"), _pattern("second")])
        assert check.pattern_id == "first"

    def test_custom_threshold(self):
        matcher = PatternMatcher(threshold=0.95)
        pattern = _pattern(detectors={"grav": True, "spectral": False})
        assert matcher.match(make_candidate(), RESULTS, [pattern]).is_known_fp is False


# ============================================================
# REGISTRY
# ============================================================

@pytest.fixture
def registry():
    """Fresh registry with a temp database."""
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    reg = FalsePositiveRegistry(db_path=tmp.name)
    yield reg
    os.unlink(tmp.name)


class TestRegistry:

    def test_register_and_get(self, registry):
        registry.register(_pattern())
        stored = registry.get("fp_1")
        assert stored is not None
        assert stored.name == "Salt dome"
        assert dict(stored.detector_pattern) == {"grav": True, "spectral": True}
        assert registry.count() == 1

    def test_get_unknown(self, registry):
        assert registry.get("nope") is None

    def test_duplicate_id_rejected(self, registry):
        registry.register(_pattern())
        with pytest.raises(ValueError):
            registry.register(_pattern())

    def test_registration_order_preserved(self, registry):
        for pid in ("c", "a", "b"):
            registry.register(_pattern(pid))
        assert [p.pattern_id for p in registry.get_patterns()] == ["c", "a", "b"]

    def test_record_match(self, registry):
        registry.register(_pattern())
        assert registry.record_match("fp_1") is True
        assert registry.record_match("fp_1") is True
        assert registry.record_match("unknown") is False
        assert registry.get("fp_1").match_count == 2

    def test_get_all_dicts(self, registry):
        registry.register(_pattern())
        [data] = registry.get_all()
        assert data["pattern_id"] == "fp_1"
        assert data["detector_pattern"] == {"grav": True, "spectral": True}

    def test_register_from_result(self, registry):
        evaluation = EvaluationResult(
            candidate=make_candidate(),
            detected=True,
            confidence=0.85,
            raw_agreement=1.0,
            weighted_agreement=0.85,
            quality_report=QualityReport(score=0.9, issues=[], recommendations=[], passed=True),
            stage="fusion",
            detector_results={
                "grav": result("grav", detected=True),
                "spectral": result("spectral", detected=False),
            },
        )
        pattern = registry.register_from_result(evaluation, name="Karst collapse")
        assert pattern.target_category == "petroleum"
        assert pattern.context == "basin"
        assert dict(pattern.detector_pattern) == {"grav": True, "spectral": False}
        assert evaluation.evaluation_id in pattern.description
        assert registry.get(pattern.pattern_id) is not None

    def test_register_from_result_without_detectors(self, registry):
        evaluation = EvaluationResult(
            candidate=make_candidate(),
            detected=False, confidence=0.0, raw_agreement=0.0, weighted_agreement=0.0,
            quality_report=QualityReport(score=0.2, issues=[], recommendations=[], passed=False),
            stage="quality_check",
        )
        with pytest.raises(ValueError):
            registry.register_from_result(evaluation, name="nothing")

    def test_audit_hook(self, registry):
        events = []
        registry.set_audit_logger(lambda event, data: events.append((event, data)) or "hash")
        registry.register(_pattern())
        assert events[0][0] == "fp_pattern_registered"
        assert events[0][1]["pattern_id"] == "fp_1"

    def test_persists_across_instances(self, registry):
        registry.register(_pattern())
        reopened = FalsePositiveRegistry(db_path=registry.db_path)
        assert reopened.count() == 1
