"""
Orchestrator: Detector Fan-Out / Fan-In

Runs every registered detector against the same (candidate, snapshot)
pair. Each detector gets its own asyncio task and its own timeout; the
orchestrator waits for all of them to settle before returning.

Failure isolation: a detector that raises, times out, or returns
something other than a DetectorResult is replaced by a synthetic failed
result (detected=False, confidence=0, uncertainty=1, method="failed").
Nothing a detector does can abort the evaluation.

The one error that does propagate is registering two detectors under
the same name.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import time
from typing import Iterable, Optional

from geoconsensus.detectors import Detector
from geoconsensus.logging import get_logger
from geoconsensus.models import Candidate, DataSnapshot, DetectorResult

logger = get_logger("orchestrator")


class DuplicateDetectorError(Exception):
    """Raised when a detector name is registered twice."""


async def _invoke(detector: Detector, candidate: Candidate, snapshot: DataSnapshot):
    # Call inside the task so a plain-def evaluate that raises is caught like any other failure
    outcome = detector.evaluate(candidate, snapshot)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


def _consume_outcome(task: asyncio.Task) -> None:
    # Retrieve the outcome of an abandoned task so asyncio does not warn about it
    if not task.cancelled():
        task.exception()


class DetectorOrchestrator:
    """Name-keyed detector registry with concurrent, isolated execution."""

    def __init__(
        self,
        detectors: Optional[Iterable[Detector]] = None,
        max_processing_time: float = 300.0,
        parallel: bool = True,
    ):
        self._detectors: dict[str, Detector] = {}
        self.max_processing_time = max_processing_time
        self.parallel = parallel
        for detector in detectors or ():
            self.register(detector)

    # --- Registry ---

    def register(self, detector: Detector) -> None:
        if detector.name in self._detectors:
            raise DuplicateDetectorError(f"Detector already registered: {detector.name}")
        self._detectors[detector.name] = detector
        logger.info(f"Registered detector: {detector.name}", extra={"detector": detector.name})

    def remove(self, name: str) -> None:
        if self._detectors.pop(name, None) is not None:
            logger.info(f"Removed detector: {name}", extra={"detector": name})

    def get(self, name: str) -> Optional[Detector]:
        return self._detectors.get(name)

    @property
    def detectors(self) -> list[Detector]:
        return list(self._detectors.values())

    @property
    def names(self) -> list[str]:
        return list(self._detectors)

    def __len__(self) -> int:
        return len(self._detectors)

    def __contains__(self, name: object) -> bool:
        return name in self._detectors

    # --- Execution ---

    async def run(
        self,
        candidate: Candidate,
        snapshot: DataSnapshot,
    ) -> dict[str, DetectorResult]:
        """Run all detectors; exactly one result per registered detector."""
        # Snapshot the registry so a concurrent register/remove cannot skew this run
        detectors = list(self._detectors.items())

        if self.parallel:
            outcomes = await asyncio.gather(
                *[self._run_one(name, d, candidate, snapshot) for name, d in detectors]
            )
        else:
            outcomes = []
            for name, detector in detectors:
                outcomes.append(await self._run_one(name, detector, candidate, snapshot))

        return {name: result for (name, _), result in zip(detectors, outcomes)}

    async def _run_one(
        self,
        name: str,
        detector: Detector,
        candidate: Candidate,
        snapshot: DataSnapshot,
    ) -> DetectorResult:
        """Run one detector under its own timeout. Never raises (except cancellation)."""
        start = time.monotonic()
        task = asyncio.ensure_future(_invoke(detector, candidate, snapshot))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.max_processing_time)
        finally:
            if not task.done():
                # Timed out, or the caller was cancelled: abandon the detector
                task.cancel()
                task.add_done_callback(_consume_outcome)

        elapsed = time.monotonic() - start

        if not done:
            logger.warning(
                f"Detector {name} timed out after {self.max_processing_time}s",
                extra={"detector": name, "error_type": "timeout",
                       "duration_ms": round(elapsed * 1000, 1)},
            )
            return DetectorResult.failure(name, elapsed, "timeout")

        if task.cancelled():
            logger.warning(f"Detector {name} cancelled itself", extra={"detector": name})
            return DetectorResult.failure(name, elapsed, "cancelled")

        exc = task.exception()
        if exc is not None:
            logger.warning(
                f"Detector {name} failed: {exc}",
                extra={"detector": name, "error": str(exc), "error_type": type(exc).__name__},
            )
            return DetectorResult.failure(name, elapsed, f"{type(exc).__name__}: {exc}")

        result = task.result()
        if not isinstance(result, DetectorResult):
            logger.warning(
                f"Detector {name} returned {type(result).__name__}, expected DetectorResult",
                extra={"detector": name, "error_type": "invalid_result"},
            )
            return DetectorResult.failure(name, elapsed, "invalid result type")

        # Results are keyed and timed by the orchestrator, not by the detector
        return dataclasses.replace(result, detector=name, elapsed=elapsed)
