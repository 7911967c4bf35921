"""
Detector: Abstract Interface

Every detector plugged into the engine implements this interface.
The engine treats detectors as untrusted black boxes: it only relies on
evaluate() eventually returning a DetectorResult (or failing, which the
orchestrator absorbs).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from geoconsensus.models import Candidate, DataSnapshot, DetectorResult


class Detector(ABC):
    """Abstract base for detectors."""

    def __init__(
        self,
        name: str,
        kind: str = "generic",
        priority: float = 1.0,
        veto_power: bool = False,
    ):
        if not name:
            raise ValueError("detector name must not be empty")
        if priority < 0:
            raise ValueError(f"detector priority must be >= 0, got {priority}")
        self.name = name
        self.kind = kind
        self.priority = priority
        self.veto_power = veto_power

    @abstractmethod
    async def evaluate(
        self,
        candidate: Candidate,
        snapshot: DataSnapshot,
    ) -> DetectorResult:
        """
        Evaluate one candidate against a data snapshot.

        Must not mutate either argument. Blocking work belongs in a thread
        (asyncio.to_thread) so the per-detector timeout can fire.
        """
        ...

    def metadata(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "priority": self.priority,
            "veto_power": self.veto_power,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"
