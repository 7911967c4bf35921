"""
GeoConsensus API: Main Application

POST /evaluate                  Evaluate one candidate against a snapshot
POST /evaluate/batch            Evaluate up to 50 candidates concurrently
GET  /status                    Detectors, veto rules, statistics, config
GET  /history                   Recent evaluations (hash-chained)
GET  /history/verify            Verify history chain integrity
GET  /patterns                  List known false-positive patterns
POST /patterns                  Register a false-positive pattern
POST /patterns/from-evaluation  Fingerprint an evaluation as a false positive
GET  /health                    Health check
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from geoconsensus import __version__
from geoconsensus.config import build_consensus_config, settings
from geoconsensus.detectors.factory import build_detectors
from geoconsensus.engine import ConsensusEngine
from geoconsensus.logging import get_logger, setup_logging
from geoconsensus.models import Candidate, DataSnapshot, EvaluationResult, TimeWindow
from geoconsensus.patterns.matcher import FalsePositivePattern
from geoconsensus.patterns.registry import FalsePositiveRegistry
from geoconsensus.schemas.evaluation import (
    ChainVerification,
    EvaluateBatchRequest,
    EvaluateBatchResponse,
    EvaluateRequest,
    EvaluationResponse,
    HealthResponse,
    HistoryResponse,
    PatternFromEvaluationIn,
    PatternIn,
    PatternListResponse,
    PatternOut,
    StatusResponse,
)

logger = get_logger("api")

# Opened on startup so importing the app touches no database file
fp_registry: Optional[FalsePositiveRegistry] = None
engine = ConsensusEngine(
    config=build_consensus_config(settings),
    detectors=build_detectors(settings.DETECTORS),
    pattern_source=lambda: fp_registry.get_patterns(),
)


# ============================================================
# STARTUP / SHUTDOWN
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pattern registry on startup."""
    global fp_registry
    setup_logging()
    if fp_registry is None:
        fp_registry = FalsePositiveRegistry(db_path=settings.FP_DB_PATH)
    logger.info(
        "GeoConsensus API starting",
        extra={"detectors": engine.orchestrator.names},
    )
    yield
    logger.info("GeoConsensus API shutting down")


app = FastAPI(
    title="GeoConsensus API",
    description="Multi-detector consensus engine with structural veto and false-positive suppression",
    version=f"{__version__} (core {settings.CORE_VERSION})",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
    allow_credentials=False,
)


# ============================================================
# GLOBAL ERROR HANDLER
# ============================================================

@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; return a structured error without internals."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={"error": str(exc), "path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error. The evaluation could not be completed."},
    )


# ============================================================
# HELPERS
# ============================================================

def _to_candidate(item: EvaluateRequest) -> Candidate:
    c = item.candidate
    window = TimeWindow(c.time_window.start, c.time_window.end) if c.time_window else None
    try:
        return Candidate(
            latitude=c.latitude,
            longitude=c.longitude,
            target_category=c.target_category,
            context=c.context,
            depth=c.depth,
            radius=c.radius,
            time_window=window,
        )
    except ValueError as e:
        raise HTTPException(422, str(e)) from None


def _respond(result: EvaluationResult) -> dict:
    body = result.to_dict()
    entry = engine.history.get(result.evaluation_id)
    body["audit_hash"] = entry.hash if entry else None
    if result.suppressed:
        fp_registry.record_match(result.false_positive.pattern_id)
    return body


async def _evaluate_one(item: EvaluateRequest) -> EvaluationResult:
    snapshot = DataSnapshot(channels=item.channels, source=item.source)
    return await engine.evaluate(_to_candidate(item), snapshot)


# ============================================================
# ROUTES
# ============================================================

@app.post("/evaluate", response_model=EvaluationResponse)
async def evaluate(request: EvaluateRequest):
    """Evaluate one candidate location."""
    return _respond(await _evaluate_one(request))


@app.post("/evaluate/batch", response_model=EvaluateBatchResponse)
async def evaluate_batch(request: EvaluateBatchRequest):
    """Evaluate several candidates concurrently."""
    candidates = [_to_candidate(item) for item in request.items]
    results = await asyncio.gather(
        *[
            engine.evaluate(candidate, DataSnapshot(channels=item.channels, source=item.source))
            for candidate, item in zip(candidates, request.items)
        ],
        return_exceptions=True,
    )

    clean = []
    for r in results:
        if isinstance(r, EvaluationResult):
            clean.append(_respond(r))
        else:
            logger.warning(
                "Batch evaluation item failed",
                extra={"error": str(r), "error_type": type(r).__name__},
            )

    logger.info(f"Batch complete: {len(clean)}/{len(request.items)} evaluated")
    return {"results": clean, "total": len(request.items), "evaluated": len(clean)}


@app.get("/status", response_model=StatusResponse)
async def status():
    return {
        "core_version": settings.CORE_VERSION,
        "detectors": [d.metadata() for d in engine.detectors],
        "veto_rules": engine.veto_engine.describe(),
        "statistics": engine.statistics(),
        "config": engine.config.to_dict(),
    }


@app.get("/history", response_model=HistoryResponse)
async def history(limit: int = Query(20, ge=1, le=500)):
    """Most recent evaluations first."""
    return {
        "entries": [e.to_dict() for e in engine.history.recent(limit)],
        "total_count": len(engine.history),
    }


@app.get("/history/verify", response_model=ChainVerification)
async def verify_history():
    return engine.history.verify_chain()


@app.get("/patterns", response_model=PatternListResponse)
async def list_patterns():
    patterns = fp_registry.get_all()
    return {"total": len(patterns), "patterns": patterns}


@app.post("/patterns", response_model=PatternOut, status_code=201)
async def register_pattern(request: PatternIn):
    try:
        pattern = fp_registry.register(FalsePositivePattern(
            pattern_id=request.pattern_id or f"fp_{uuid.uuid4().hex[:12]}",
            name=request.name,
            target_category=request.target_category,
            context=request.context,
            detector_pattern=request.detector_pattern,
            description=request.description,
        ))
    except ValueError as e:
        raise HTTPException(409, str(e)) from None
    return pattern.to_dict()


@app.post("/patterns/from-evaluation", response_model=PatternOut, status_code=201)
async def pattern_from_evaluation(request: PatternFromEvaluationIn):
    """Record a past evaluation as a confirmed false positive."""
    entry = engine.history.get(request.evaluation_id)
    if entry is None:
        raise HTTPException(404, f"Evaluation {request.evaluation_id} not found")
    try:
        pattern = fp_registry.register_from_result(
            entry.result, name=request.name, description=request.description,
        )
    except ValueError as e:
        raise HTTPException(422, str(e)) from None
    return pattern.to_dict()


@app.get("/health", response_model=HealthResponse)
async def health():
    return {
        "status": "operational",
        "version": __version__,
        "core_version": settings.CORE_VERSION,
        "registered_detectors": len(engine.orchestrator),
        "history_entries": len(engine.history),
        "fp_patterns": fp_registry.count(),
    }


# --- Version Headers Middleware ---
@app.middleware("http")
async def add_version_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-GeoConsensus-Version"] = __version__
    response.headers["X-Core-Version"] = settings.CORE_VERSION
    return response


# --- Request Logging Middleware ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with method, path, status, duration."""
    path = request.url.path
    if path == "/health":
        return await call_next(request)

    start = time.time()
    response = await call_next(request)
    duration_ms = round((time.time() - start) * 1000, 1)

    logger.info(
        f"{request.method} {path} -> {response.status_code} ({duration_ms}ms)",
        extra={
            "method": request.method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.HOST, port=settings.PORT)
