# src/osmcs/ingest/anomalies.py
from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AnomalyKind(str, enum.Enum):
    # Byte source
    IO_ERROR = "IO_ERROR"
    # Records
    DECODE_FAILED = "DECODE_FAILED"      # attribute present but not parseable
    STRUCTURAL = "STRUCTURAL"            # XML syntax / unexpected end of record
    # Run outcome
    PARTIAL_OUTPUT = "PARTIAL_OUTPUT"    # best-effort run stopped early
    # Catch-all
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Anomaly:
    """
    Immutable diagnostic record. Serialised into the run receipt.
    """
    source: str
    kind: AnomalyKind
    severity: Severity
    detail: str = ""
    record_id: Optional[int] = None        # last good changeset id at the time
    byte_offset: Optional[int] = None
    line: Optional[int] = None
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict:
        return {
            "source": self.source,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "record_id": self.record_id,
            "byte_offset": self.byte_offset,
            "line": self.line,
            "ts_ms": int(self.ts_ms),
        }


class AnomalySink:
    """
    Thread-safe anomaly collector + lightweight observability.

    - emit(): add an anomaly, update counters
    - items(): snapshot of buffered anomalies
    - counters(): snapshot of counters (for receipts)
    - observe_duration(): record timing histograms (batch write times, etc.)
    """

    __slots__ = ("_lock", "_buffer", "_counts", "_timers")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buffer: List[Anomaly] = []
        self._counts: Dict[str, int] = {
            "total": 0,
        }
        # Timers: name -> bucket -> count
        self._timers: Dict[str, Dict[str, int]] = {}

    # ----------------------------- public API ---------------------------------

    def emit(self, anomaly: Anomaly) -> None:
        with self._lock:
            self._buffer.append(anomaly)
            self._counts["total"] = self._counts.get("total", 0) + 1
            self._counts[f"kind:{anomaly.kind.value}"] = self._counts.get(f"kind:{anomaly.kind.value}", 0) + 1
            self._counts[f"sev:{anomaly.severity.value}"] = self._counts.get(f"sev:{anomaly.severity.value}", 0) + 1

    def items(self) -> List[Anomaly]:
        with self._lock:
            return list(self._buffer)

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def observe_duration(self, name: str, seconds: float) -> None:
        """
        Record a single observation into log-scale buckets.
        Example: observe_duration("batch_write_seconds", dt)
        """
        bucket = _duration_bucket(seconds)
        with self._lock:
            buckets = self._timers.setdefault(name, {})
            buckets[bucket] = buckets.get(bucket, 0) + 1
            total_key = f"{name}::count"
            buckets[total_key] = buckets.get(total_key, 0) + 1

    def timer_histograms(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {k: dict(v) for k, v in self._timers.items()}


# ----------------------------- helpers ----------------------------------------

def _duration_bucket(seconds: float) -> str:
    """
    Log-ish buckets from microseconds to minutes.
    """
    s = max(0.0, float(seconds))
    if s < 1e-3:
        return "<1ms"
    if s < 1e-2:
        return "<10ms"
    if s < 1e-1:
        return "<100ms"
    if s < 1.0:
        return "<1s"
    if s < 5.0:
        return "<5s"
    if s < 30.0:
        return "<30s"
    return ">=30s"
