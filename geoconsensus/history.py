"""
Evaluation History: Hash-Chained, Append-Only

Every terminal EvaluationResult is appended here. Each entry carries
the SHA-256 hash of the previous one, so rewriting any past entry
breaks the chain and verify_chain() reports it.

In-process only: the engine holds no durable storage. History feeds
aggregate statistics and the audit trail; it is never consulted when
making a decision.
"""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from typing import Optional

from geoconsensus.config import settings
from geoconsensus.models import EvaluationResult

GENESIS_HASH = "0" * 64


@dataclass(frozen=True)
class HistoryEntry:
    index: int
    prev_hash: str
    hash: str
    evaluation_id: str
    data: str               # canonical JSON of the result
    core_version: str
    result: EvaluationResult

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "prev_hash": self.prev_hash,
            "hash": self.hash,
            "evaluation_id": self.evaluation_id,
            "core_version": self.core_version,
            "result": json.loads(self.data),
        }


def _entry_hash(prev_hash: str, evaluation_id: str, data: str, core_version: str) -> str:
    chain_input = f"{prev_hash}{evaluation_id}{data}{core_version}"
    return hashlib.sha256(chain_input.encode()).hexdigest()


class EvaluationHistory:
    """Append-only, hash-chained evaluation log."""

    def __init__(self, core_version: str = settings.CORE_VERSION):
        self.core_version = core_version
        self._entries: list[HistoryEntry] = []
        self._by_id: dict[str, HistoryEntry] = {}
        self._lock = threading.Lock()

    def append(self, result: EvaluationResult) -> str:
        """Append a result. Returns the SHA-256 hash of the new entry."""
        data = json.dumps(result.to_dict(), sort_keys=True, default=str)
        with self._lock:
            prev_hash = self._entries[-1].hash if self._entries else GENESIS_HASH
            entry = HistoryEntry(
                index=len(self._entries),
                prev_hash=prev_hash,
                hash=_entry_hash(prev_hash, result.evaluation_id, data, self.core_version),
                evaluation_id=result.evaluation_id,
                data=data,
                core_version=self.core_version,
                result=result,
            )
            self._entries.append(entry)
            self._by_id[result.evaluation_id] = entry
            return entry.hash

    def entries(self) -> tuple[HistoryEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def get(self, evaluation_id: str) -> Optional[HistoryEntry]:
        with self._lock:
            return self._by_id.get(evaluation_id)

    def recent(self, limit: int = 20) -> list[HistoryEntry]:
        """Most recent entries first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(reversed(self._entries[-limit:]))

    def verify_chain(self) -> dict:
        entries = self.entries()
        broken = []
        for i, entry in enumerate(entries):
            computed = _entry_hash(entry.prev_hash, entry.evaluation_id, entry.data, entry.core_version)
            if computed != entry.hash:
                broken.append({
                    "index": entry.index,
                    "issue": "hash_mismatch",
                    "expected": computed,
                    "stored": entry.hash,
                })
            expected_prev = entries[i - 1].hash if i > 0 else GENESIS_HASH
            if entry.prev_hash != expected_prev:
                broken.append({
                    "index": entry.index,
                    "issue": "chain_break",
                    "expected_prev": expected_prev,
                    "stored_prev": entry.prev_hash,
                })

        return {
            "verified": len(broken) == 0,
            "entries_checked": len(entries),
            "broken_links": broken,
        }

    def statistics(self) -> dict:
        results = [e.result for e in self.entries()]
        total = len(results)
        if total == 0:
            return {
                "total_evaluations": 0,
                "detection_rate": 0.0,
                "veto_rate": 0.0,
                "false_positive_rate": 0.0,
                "quality_rejection_rate": 0.0,
                "average_confidence": 0.0,
                "average_raw_agreement": 0.0,
            }

        return {
            "total_evaluations": total,
            "detection_rate": sum(r.detected for r in results) / total,
            "veto_rate": sum(r.vetoed for r in results) / total,
            "false_positive_rate": sum(r.suppressed for r in results) / total,
            "quality_rejection_rate": sum(not r.quality_report.passed for r in results) / total,
            "average_confidence": sum(r.confidence for r in results) / total,
            "average_raw_agreement": sum(r.raw_agreement for r in results) / total,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
