"""
Channel Detector

Reference detector for signals already reduced upstream to a
signal / noise / quality triple. Turns one snapshot channel into a
DetectorResult; everything else on the channel rides along as payload
so veto rules can inspect it (short_wavelength_anomaly,
alteration_detected, coherence_score, ...).

Channel shape:
    {
        "signal": 12.5,
        "noise": 3.0,
        "quality": 0.9,                      # optional, default 1.0
        "structural_validation": {           # optional
            "passes": True, "violations": [], "residual": 0.2,
        },
        ...                                  # passed through as payload
    }
"""

from __future__ import annotations

import math
from typing import Any, Mapping

from geoconsensus.detectors import Detector
from geoconsensus.models import Candidate, DataSnapshot, DetectorResult, StructuralValidation

_RESERVED_KEYS = {"signal", "noise", "quality", "structural_validation"}


class ChannelDetector(Detector):

    def __init__(
        self,
        name: str,
        channel: str,
        kind: str = "channel",
        priority: float = 1.0,
        veto_power: bool = False,
        threshold: float = 0.5,
        reliability: float = 0.9,
    ):
        super().__init__(name, kind=kind, priority=priority, veto_power=veto_power)
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        if not 0.0 <= reliability <= 1.0:
            raise ValueError(f"reliability must be within [0, 1], got {reliability}")
        self.channel = channel
        self.threshold = threshold
        self.reliability = reliability

    async def evaluate(self, candidate: Candidate, snapshot: DataSnapshot) -> DetectorResult:
        data = snapshot.channels.get(self.channel)
        if not isinstance(data, Mapping):
            return DetectorResult(
                detector=self.name,
                detected=False,
                confidence=0.0,
                uncertainty=1.0,
                payload={"channel": self.channel},
                method="no_data",
                veto_eligible=self.veto_power,
            )

        signal = float(data["signal"])
        noise = float(data.get("noise", 0.0))
        quality = float(data.get("quality", 1.0))
        if not 0.0 <= quality <= 1.0:
            raise ValueError(f"channel {self.channel!r} quality out of range: {quality}")

        snr = abs(signal) / (abs(noise) + 0.001)
        confidence = math.tanh(snr / 2) * quality * self.reliability
        uncertainty = min(0.95, 1.0 - quality * self.reliability)

        payload: dict[str, Any] = {
            k: v for k, v in data.items() if k not in _RESERVED_KEYS
        }
        payload["snr"] = round(snr, 4)

        return DetectorResult(
            detector=self.name,
            detected=confidence >= self.threshold,
            confidence=min(1.0, max(0.0, confidence)),
            uncertainty=max(0.0, uncertainty),
            payload=payload,
            method=f"{self.kind}_snr",
            veto_eligible=self.veto_power,
            structural_validation=_structural_validation(data.get("structural_validation")),
        )


def _structural_validation(raw: Any) -> StructuralValidation | None:
    if raw is None:
        return None
    if isinstance(raw, StructuralValidation):
        return raw
    return StructuralValidation(
        passes=bool(raw.get("passes", True)),
        violations=tuple(raw.get("violations", ())),
        residual=float(raw.get("residual", 0.0)),
    )
