"""
API Integration Tests: Endpoint Verification

Tests every public API endpoint using FastAPI's TestClient, with the
default channel detectors and a temp false-positive database.

These tests catch:
  - Schema mismatches (response model vs actual data)
  - Route registration issues
  - Response format regressions
"""

from __future__ import annotations

import dataclasses

import pytest
from fastapi.testclient import TestClient

from geoconsensus.patterns.registry import FalsePositiveRegistry


DETECTING_CHANNELS = {
    "gravity": {"signal": 40.0, "noise": 1.0, "quality": 1.0},
    "spectral": {"signal": 40.0, "noise": 1.0, "quality": 1.0, "alteration_detected": True},
    "inversion": {
        "signal": 40.0, "noise": 1.0, "quality": 1.0,
        "structural_validation": {"passes": True, "residual": 0.2},
    },
    "optical": {"cloud_cover": 0.05},
    "sar": {},
    "thermal": {},
}

CANDIDATE = {
    "latitude": 29.7,
    "longitude": -95.3,
    "target_category": "petroleum",
    "context": "basin",
}


# --- Fixtures ---

@pytest.fixture(scope="module")
def client(tmp_path_factory):
    """Test client wired to a throwaway pattern database."""
    from api import main
    original = main.fp_registry
    main.fp_registry = FalsePositiveRegistry(str(tmp_path_factory.mktemp("db") / "patterns.db"))
    try:
        with TestClient(main.app) as c:
            yield c
    finally:
        main.fp_registry = original


def _evaluate(client, channels=None, candidate=None):
    return client.post("/evaluate", json={
        "candidate": candidate or CANDIDATE,
        "channels": DETECTING_CHANNELS if channels is None else channels,
    })


# ============================================================
# HEALTH & STATUS
# ============================================================

class TestHealth:

    def test_health_returns_200(self, client):
        r = client.get("/health")
        assert r.status_code == 200

    def test_health_fields(self, client):
        data = client.get("/health").json()
        assert data["status"] == "operational"
        assert data["registered_detectors"] == 3
        assert "history_entries" in data
        assert "fp_patterns" in data

    def test_version_headers(self, client):
        r = client.get("/health")
        assert "X-GeoConsensus-Version" in r.headers
        assert "X-Core-Version" in r.headers


class TestStartup:

    def test_registry_opened_by_lifespan(self, tmp_path, monkeypatch):
        from api import main
        db_path = tmp_path / "startup.db"
        monkeypatch.setattr(main, "fp_registry", None)
        monkeypatch.setattr(main, "settings", dataclasses.replace(main.settings, FP_DB_PATH=str(db_path)))
        assert not db_path.exists()
        with TestClient(main.app) as c:
            assert isinstance(main.fp_registry, FalsePositiveRegistry)
            assert c.get("/health").json()["fp_patterns"] == 0
        assert db_path.exists()


class TestStatus:

    def test_status_shape(self, client):
        data = client.get("/status").json()
        names = [d["name"] for d in data["detectors"]]
        assert "GravimetricDecompositionAgent" in names
        assert len(data["veto_rules"]) == 5
        assert data["config"]["confidence_threshold"] == 0.7
        assert "total_evaluations" in data["statistics"]


# ============================================================
# EVALUATE
# ============================================================

class TestEvaluate:

    def test_strong_signals_detected(self, client):
        r = _evaluate(client)
        assert r.status_code == 200
        data = r.json()
        assert data["detected"] is True
        assert data["stage"] == "fusion"
        assert len(data["audit_hash"]) == 64
        assert set(data["detector_results"]) == {
            "GravimetricDecompositionAgent", "SpectralEvolutionAgent", "QuantumInversionAgent",
        }

    def test_empty_channels_rejected_by_quality_gate(self, client):
        data = _evaluate(client, channels={}).json()
        assert data["detected"] is False
        assert data["stage"] == "quality_check"
        assert data["detector_results"] == {}
        assert data["quality_report"]["passed"] is False

    def test_residual_veto(self, client):
        channels = dict(DETECTING_CHANNELS)
        channels["inversion"] = {
            "signal": 40.0, "noise": 1.0,
            "structural_validation": {"passes": False, "residual": 1.2},
        }
        data = _evaluate(client, channels=channels).json()
        assert data["detected"] is False
        assert data["stage"] == "veto_check"
        assert data["veto"]["rule_id"] == "STRUCTURAL_RESIDUAL_HIGH"

    def test_invalid_latitude(self, client):
        r = _evaluate(client, candidate={**CANDIDATE, "latitude": 120})
        assert r.status_code == 422

    def test_missing_category(self, client):
        r = _evaluate(client, candidate={"latitude": 0, "longitude": 0})
        assert r.status_code == 422

    def test_time_window_order(self, client):
        r = _evaluate(client, candidate={
            **CANDIDATE,
            "time_window": {"start": "2024-06-01T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        })
        assert r.status_code == 422


class TestBatch:

    def test_batch(self, client):
        r = client.post("/evaluate/batch", json={"items": [
            {"candidate": CANDIDATE, "channels": DETECTING_CHANNELS},
            {"candidate": CANDIDATE, "channels": {}},
        ]})
        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 2
        assert data["evaluated"] == 2
        assert [x["detected"] for x in data["results"]] == [True, False]

    def test_batch_too_large(self, client):
        items = [{"candidate": CANDIDATE, "channels": {}}] * 51
        r = client.post("/evaluate/batch", json={"items": items})
        assert r.status_code == 422

    def test_batch_empty(self, client):
        r = client.post("/evaluate/batch", json={"items": []})
        assert r.status_code == 422


# ============================================================
# HISTORY
# ============================================================

class TestHistory:

    def test_history_lists_recent(self, client):
        evaluated = _evaluate(client).json()
        data = client.get("/history?limit=1").json()
        assert data["total_count"] >= 1
        [entry] = data["entries"]
        assert entry["evaluation_id"] == evaluated["evaluation_id"]
        assert entry["hash"] == evaluated["audit_hash"]

    def test_history_limit_bounds(self, client):
        assert client.get("/history?limit=0").status_code == 422

    def test_verify(self, client):
        _evaluate(client)
        data = client.get("/history/verify").json()
        assert data["verified"] is True
        assert data["entries_checked"] >= 1


# ============================================================
# FALSE-POSITIVE PATTERNS
# ============================================================

class TestPatterns:

    def test_register_and_list(self, client):
        r = client.post("/patterns", json={
            "pattern_id": "fp_lithium_playa",
            "name": "Playa evaporite",
            "target_category": "lithium",
            "context": "salar",
            "detector_pattern": {"SpectralEvolutionAgent": True},
        })
        assert r.status_code == 201
        assert r.json()["pattern_id"] == "fp_lithium_playa"

        listed = client.get("/patterns").json()
        assert "fp_lithium_playa" in [p["pattern_id"] for p in listed["patterns"]]

    def test_duplicate_pattern_conflict(self, client):
        body = {
            "pattern_id": "fp_dup",
            "name": "Dup",
            "target_category": "gold",
            "detector_pattern": {"a": True},
        }
        assert client.post("/patterns", json=body).status_code == 201
        assert client.post("/patterns", json=body).status_code == 409

    def test_from_unknown_evaluation(self, client):
        r = client.post("/patterns/from-evaluation", json={
            "evaluation_id": "does-not-exist", "name": "nope",
        })
        assert r.status_code == 404

    def test_confirmed_false_positive_suppresses_repeat(self, client):
        candidate = {**CANDIDATE, "target_category": "helium", "context": "rift"}
        first = _evaluate(client, candidate=candidate).json()
        assert first["detected"] is True

        r = client.post("/patterns/from-evaluation", json={
            "evaluation_id": first["evaluation_id"], "name": "Rift degassing artefact",
        })
        assert r.status_code == 201
        pattern_id = r.json()["pattern_id"]

        second = _evaluate(client, candidate=candidate).json()
        assert second["detected"] is False
        assert second["stage"] == "fp_check"
        assert second["false_positive"]["pattern_id"] == pattern_id

        listed = client.get("/patterns").json()["patterns"]
        stored = next(p for p in listed if p["pattern_id"] == pattern_id)
        assert stored["match_count"] == 1
