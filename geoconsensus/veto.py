"""
Veto Engine

Structural plausibility rules that can force a negative decision no
matter how strongly the detectors agree.

Rules are data: a VetoRule pairs a primary predicate with an optional
secondary predicate over the full detector result map. VetoEngine walks
the rules in order and the first one that fires wins.

Detector roles are recognised by name (case-insensitive substring), so
a rule written for "grav" applies to "GravimetricDecompositionAgent" and
"gravity-v2" alike.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from geoconsensus.logging import get_logger
from geoconsensus.models import DetectorResult, VetoStatus

logger = get_logger("veto")

Results = Mapping[str, DetectorResult]
Predicate = Callable[[Results], bool]

RESIDUAL_LIMIT = 1.0
COHERENCE_FLOOR = 0.7


@dataclass(frozen=True)
class VetoRule:
    rule_id: str
    primary: Predicate
    reason: str
    vetoing_agent: str
    secondary: Optional[Predicate] = None

    def fires(self, results: Results) -> bool:
        if not self.primary(results):
            return False
        return self.secondary is None or self.secondary(results)


# ============================================================
# PREDICATE BUILDING BLOCKS
# ============================================================

def _named(results: Results, fragment: str) -> Iterable[DetectorResult]:
    fragment = fragment.lower()
    return (r for name, r in results.items() if fragment in name.lower())


def _payload_value(result: DetectorResult, key: str) -> Any:
    if isinstance(result.payload, Mapping):
        return result.payload.get(key)
    return None


def any_detected(fragment: str) -> Predicate:
    """Some detector named like `fragment` detected."""
    return lambda results: any(r.detected for r in _named(results, fragment))


def none_detected(fragment: str) -> Predicate:
    """No detector named like `fragment` detected (vacuously true if there are none)."""
    return lambda results: not any(r.detected for r in _named(results, fragment))


def any_payload_flag(fragment: str, key: str) -> Predicate:
    return lambda results: any(bool(_payload_value(r, key)) for r in _named(results, fragment))


def no_payload_flag(fragment: str, key: str) -> Predicate:
    return lambda results: not any(bool(_payload_value(r, key)) for r in _named(results, fragment))


def any_payload_below(fragment: str, key: str, floor: float) -> Predicate:
    def check(results: Results) -> bool:
        for r in _named(results, fragment):
            value = _payload_value(r, key)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value < floor:
                return True
        return False
    return check


def structural_failure(results: Results) -> bool:
    return any(
        r.structural_validation is not None and not r.structural_validation.passes
        for r in results.values()
    )


def residual_above(limit: float) -> Predicate:
    return lambda results: any(
        r.structural_validation is not None and r.structural_validation.residual > limit
        for r in results.values()
    )


# ============================================================
# DEFAULT RULE SET
# ============================================================

# The residual rule precedes the generic pass/fail rule so a detector
# reporting both is attributed to the more specific cause.
DEFAULT_VETO_RULES: tuple[VetoRule, ...] = (
    VetoRule(
        rule_id="SURFACE_WITHOUT_SUBSURFACE",
        primary=any_detected("seep"),
        secondary=none_detected("trap"),
        reason="Surface seepage without subsurface trap violates causal consistency",
        vetoing_agent="StructuralContextAgent",
    ),
    VetoRule(
        rule_id="SHORT_WAVELENGTH_WITHOUT_ALTERATION",
        primary=any_payload_flag("grav", "short_wavelength_anomaly"),
        secondary=no_payload_flag("spectral", "alteration_detected"),
        reason="High-frequency gravity anomaly without mineral alteration",
        vetoing_agent="SpectralEvolutionAgent",
    ),
    VetoRule(
        rule_id="STRUCTURAL_RESIDUAL_HIGH",
        primary=residual_above(RESIDUAL_LIMIT),
        reason="Model residual exceeds the physical plausibility limit at this location",
        vetoing_agent="QuantumInversionAgent",
    ),
    VetoRule(
        rule_id="STRUCTURAL_VIOLATION",
        primary=structural_failure,
        reason="Anomaly violates structural constraints for this geological province",
        vetoing_agent="PhysicsValidationAgent",
    ),
    VetoRule(
        rule_id="TEMPORAL_COHERENCE_LOW",
        primary=any_payload_below("temporal", "coherence_score", COHERENCE_FLOOR),
        reason="Signal lacks the multi-year persistence required for a valid detection",
        vetoing_agent="TemporalCoherenceAgent",
    ),
)


class VetoEngine:
    """Applies an ordered, immutable rule list to a detector result map."""

    def __init__(self, rules: Optional[Sequence[VetoRule]] = None, enabled: bool = True):
        self.rules: tuple[VetoRule, ...] = tuple(DEFAULT_VETO_RULES if rules is None else rules)
        self.enabled = enabled
        ids = [r.rule_id for r in self.rules]
        if len(ids) != len(set(ids)):
            raise ValueError("veto rule ids must be unique")

    def evaluate(self, results: Results) -> VetoStatus:
        if not self.enabled:
            return VetoStatus(vetoed=False)

        for rule in self.rules:
            if rule.fires(results):
                logger.debug(
                    f"Veto rule fired: {rule.rule_id}",
                    extra={"rule_id": rule.rule_id, "vetoing_agent": rule.vetoing_agent},
                )
                return VetoStatus(
                    vetoed=True,
                    rule_id=rule.rule_id,
                    vetoing_agent=rule.vetoing_agent,
                    reason=rule.reason,
                )
        return VetoStatus(vetoed=False)

    def describe(self) -> list[dict]:
        return [
            {"rule_id": r.rule_id, "vetoing_agent": r.vetoing_agent, "reason": r.reason}
            for r in self.rules
        ]
