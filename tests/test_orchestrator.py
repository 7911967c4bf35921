"""
Tests for detector fan-out / fan-in: timeouts, isolation, registry.
"""

import asyncio
import time

import pytest

from geoconsensus.models import DetectorResult
from geoconsensus.orchestrator import DetectorOrchestrator, DuplicateDetectorError
from tests.stubs import StubDetector, SyncDetector, make_candidate, make_snapshot, result


class TestRegistry:

    def test_register_and_lookup(self):
        orch = DetectorOrchestrator([StubDetector("grav"), StubDetector("spectral")])
        assert len(orch) == 2
        assert "grav" in orch
        assert orch.names == ["grav", "spectral"]
        assert orch.get("grav").name == "grav"

    def test_duplicate_registration_raises(self):
        orch = DetectorOrchestrator([StubDetector("grav")])
        with pytest.raises(DuplicateDetectorError):
            orch.register(StubDetector("grav"))

    def test_remove(self):
        orch = DetectorOrchestrator([StubDetector("grav")])
        orch.remove("grav")
        orch.remove("never-registered")
        assert len(orch) == 0


class TestRun:

    @pytest.mark.asyncio
    async def test_one_result_per_detector(self):
        orch = DetectorOrchestrator([StubDetector("a"), StubDetector("b", detected=False)])
        results = await orch.run(make_candidate(), make_snapshot())
        assert set(results) == {"a", "b"}
        assert results["a"].detected is True
        assert results["b"].detected is False

    @pytest.mark.asyncio
    async def test_results_restamped_with_registry_name(self):
        orch = DetectorOrchestrator([StubDetector("grav", delay=0.01)])
        results = await orch.run(make_candidate(), make_snapshot())
        assert results["grav"].detector == "grav"
        assert results["grav"].elapsed >= 0.0

    @pytest.mark.asyncio
    async def test_empty_registry(self):
        results = await DetectorOrchestrator().run(make_candidate(), make_snapshot())
        assert results == {}

    @pytest.mark.asyncio
    async def test_exception_is_isolated(self):
        orch = DetectorOrchestrator([
            StubDetector("broken", error=RuntimeError("sensor offline")),
            StubDetector("healthy"),
        ])
        results = await orch.run(make_candidate(), make_snapshot())
        assert results["broken"].failed
        assert results["broken"].detected is False
        assert results["broken"].confidence == 0.0
        assert results["broken"].uncertainty == 1.0
        assert "sensor offline" in results["broken"].payload["error"]
        assert results["healthy"].detected is True

    @pytest.mark.asyncio
    async def test_invalid_return_type_is_failure(self):
        orch = DetectorOrchestrator([StubDetector("liar", returns={"detected": True})])
        results = await orch.run(make_candidate(), make_snapshot())
        assert results["liar"].failed

    @pytest.mark.asyncio
    async def test_synchronous_raise_is_isolated(self):
        orch = DetectorOrchestrator([
            SyncDetector("bad", error=RuntimeError("sync detector bug")),
            StubDetector("good"),
        ])
        results = await orch.run(make_candidate(), make_snapshot())
        assert results["bad"].failed
        assert "sync detector bug" in results["bad"].payload["error"]
        assert results["good"].detected is True

    @pytest.mark.asyncio
    async def test_non_awaitable_garbage_is_failure(self):
        orch = DetectorOrchestrator([SyncDetector("bad", returns=42), StubDetector("good")])
        results = await orch.run(make_candidate(), make_snapshot())
        assert results["bad"].failed
        assert not results["good"].failed

    @pytest.mark.asyncio
    async def test_synchronous_result_accepted(self):
        orch = DetectorOrchestrator([
            SyncDetector("plain", returns=result("whatever", True, 0.6)),
        ])
        results = await orch.run(make_candidate(), make_snapshot())
        assert not results["plain"].failed
        assert results["plain"].detector == "plain"
        assert results["plain"].confidence == 0.6

    @pytest.mark.asyncio
    async def test_non_bool_detected_is_failure(self):
        class Sloppy(StubDetector):
            async def evaluate(self, candidate, snapshot):
                return DetectorResult("sloppy", "no", 0.9, 0.1)

        orch = DetectorOrchestrator([Sloppy("sloppy"), StubDetector("good")])
        results = await orch.run(make_candidate(), make_snapshot())
        assert results["sloppy"].failed
        assert results["sloppy"].detected is False

    @pytest.mark.asyncio
    async def test_timeout_substitutes_failure(self):
        orch = DetectorOrchestrator(
            [StubDetector("slow", delay=5.0), StubDetector("fast")],
            max_processing_time=0.05,
        )
        start = time.monotonic()
        results = await orch.run(make_candidate(), make_snapshot())
        assert time.monotonic() - start < 2.0
        assert results["slow"].failed
        assert results["slow"].payload == {"error": "timeout"}
        assert results["fast"].detected is True

    @pytest.mark.asyncio
    async def test_timeouts_are_per_detector(self):
        # Two detectors each just under the limit would breach a shared deadline
        orch = DetectorOrchestrator(
            [StubDetector("a", delay=0.2), StubDetector("b", delay=0.2)],
            max_processing_time=0.35,
            parallel=False,
        )
        results = await orch.run(make_candidate(), make_snapshot())
        assert not results["a"].failed
        assert not results["b"].failed

    @pytest.mark.asyncio
    async def test_parallel_runs_concurrently(self):
        orch = DetectorOrchestrator([StubDetector(f"d{i}", delay=0.2) for i in range(4)])
        start = time.monotonic()
        await orch.run(make_candidate(), make_snapshot())
        assert time.monotonic() - start < 0.7

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self):
        orch = DetectorOrchestrator([StubDetector("slow", delay=5.0)])
        task = asyncio.ensure_future(orch.run(make_candidate(), make_snapshot()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
