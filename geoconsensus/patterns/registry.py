"""
False-Positive Registry

Durable store of confirmed false-positive fingerprints, consumed
read-only by the pattern matcher.

Patterns enter the registry two ways:
  1. Registered directly (curated knowledge)
  2. Fingerprinted from an evaluation a reviewer has confirmed spurious

Backed by SQLite. Every registration is reported to the audit hook when
one is wired in.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from typing import Callable, Optional

from geoconsensus.logging import get_logger
from geoconsensus.models import EvaluationResult
from geoconsensus.patterns.matcher import FalsePositivePattern

logger = get_logger("patterns")

AuditFn = Callable[[str, dict], Optional[str]]


class FalsePositiveRegistry:

    def __init__(self, db_path: str = "geoconsensus_patterns.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._audit_fn: Optional[AuditFn] = None
        self._init_db()

    def set_audit_logger(self, audit_fn: AuditFn) -> None:
        """Wire in the audit logger function: fn(event_type, data) -> hash."""
        self._audit_fn = audit_fn

    def _init_db(self):
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS fp_patterns (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    pattern_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    target_category TEXT NOT NULL,
                    context TEXT NOT NULL,
                    detector_pattern TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    match_count INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _audit(self, event_type: str, data: dict) -> Optional[str]:
        if self._audit_fn:
            return self._audit_fn(event_type, data)
        return None

    @staticmethod
    def _row_to_pattern(row) -> FalsePositivePattern:
        return FalsePositivePattern(
            pattern_id=row[0],
            name=row[1],
            target_category=row[2],
            context=row[3],
            detector_pattern=json.loads(row[4]),
            description=row[5],
            created_at=row[6],
            match_count=row[7],
        )

    _COLUMNS = (
        "pattern_id, name, target_category, context, detector_pattern, "
        "description, created_at, match_count"
    )

    # --- Writes ---

    def register(self, pattern: FalsePositivePattern) -> FalsePositivePattern:
        """Insert a pattern. Raises ValueError if the id already exists."""
        with self._lock:
            with self._get_conn() as conn:
                try:
                    conn.execute(
                        f"INSERT INTO fp_patterns ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            pattern.pattern_id, pattern.name, pattern.target_category,
                            pattern.context, json.dumps(dict(pattern.detector_pattern), sort_keys=True),
                            pattern.description, pattern.created_at, pattern.match_count,
                        ),
                    )
                except sqlite3.IntegrityError:
                    raise ValueError(f"Pattern already registered: {pattern.pattern_id}") from None
                conn.commit()

        logger.info(
            f"False-positive pattern registered: {pattern.name}",
            extra={"pattern_id": pattern.pattern_id},
        )
        self._audit("fp_pattern_registered", {
            "pattern_id": pattern.pattern_id,
            "name": pattern.name,
            "target_category": pattern.target_category,
            "context": pattern.context,
        })
        return pattern

    def register_from_result(
        self,
        result: EvaluationResult,
        name: str,
        description: str = "",
    ) -> FalsePositivePattern:
        """Fingerprint an evaluation confirmed to be a false positive."""
        if not result.detector_results:
            raise ValueError("Evaluation has no detector results to fingerprint")
        pattern = FalsePositivePattern(
            pattern_id=f"fp_{uuid.uuid4().hex[:12]}",
            name=name,
            target_category=result.candidate.target_category,
            context=result.candidate.context,
            detector_pattern={n: r.detected for n, r in result.detector_results.items()},
            description=description or f"Confirmed false positive from evaluation {result.evaluation_id}",
        )
        return self.register(pattern)

    def record_match(self, pattern_id: str) -> bool:
        """Increment the match counter. Returns False for an unknown id."""
        with self._lock:
            with self._get_conn() as conn:
                cursor = conn.execute(
                    "UPDATE fp_patterns SET match_count = match_count + 1 WHERE pattern_id = ?",
                    (pattern_id,),
                )
                conn.commit()
                return cursor.rowcount > 0

    # --- Reads ---

    def get_patterns(self) -> list[FalsePositivePattern]:
        """All patterns, in registration order."""
        with self._get_conn() as conn:
            rows = conn.execute(
                f"SELECT {self._COLUMNS} FROM fp_patterns ORDER BY seq"
            ).fetchall()
        return [self._row_to_pattern(r) for r in rows]

    def get(self, pattern_id: str) -> Optional[FalsePositivePattern]:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {self._COLUMNS} FROM fp_patterns WHERE pattern_id = ?",
                (pattern_id,),
            ).fetchone()
        return self._row_to_pattern(row) if row else None

    def get_all(self) -> list[dict]:
        return [p.to_dict() for p in self.get_patterns()]

    def count(self) -> int:
        with self._get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM fp_patterns").fetchone()[0]
