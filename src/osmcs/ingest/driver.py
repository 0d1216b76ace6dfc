# src/osmcs/ingest/driver.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol

import pyarrow as pa

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .assembler import assemble_changeset, is_record_opening
from .batches import ColumnBatchBuffer, changeset_schema
from .events import ConversionError, ErrorKind, XmlEvent, XmlEventKind

logger = logging.getLogger(__name__)


class BatchSink(Protocol):
    def open(self, schema: pa.Schema) -> None: ...

    def write_batch(self, batch: pa.RecordBatch) -> None: ...


class RunStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"   # best-effort: stopped early, buffered rows kept
    FAILED = "failed"


@dataclass
class RunState:
    records: int = 0
    batches: int = 0
    rows_flushed: int = 0
    last_id: Optional[int] = None


@dataclass(frozen=True)
class RunResult:
    status: RunStatus
    records: int
    batches: int
    rows_flushed: int
    last_id: Optional[int]
    error: Optional[ConversionError] = None

    @property
    def ok(self) -> bool:
        return self.status is not RunStatus.FAILED


class ChangesetStreamDriver:
    """
    Owns the top-level walk: dispatches each changeset to the assembler,
    feeds the column buffer, hands full batches to the sink and applies the
    recovery policy when a record or the tokenizer fails.

    Strict mode stops on the first error and leaves buffered rows unflushed.
    Best-effort mode (continue_on_error) also stops reading, but flushes what
    was buffered and reports a partial success. IO errors are fatal in both.
    """

    def __init__(
        self,
        sink: BatchSink,
        *,
        batch_size: int = 100_000,
        continue_on_error: bool = False,
        anomaly_sink: Optional[AnomalySink] = None,
        source_name: str = "<stream>",
    ) -> None:
        self._sink = sink
        self.batch_size = max(1, int(batch_size))
        self.continue_on_error = continue_on_error
        self._anomalies = anomaly_sink if anomaly_sink is not None else AnomalySink()
        self._source = source_name
        self._schema = changeset_schema()
        self._buffer = ColumnBatchBuffer(self.batch_size, self._schema)
        self.state = RunState()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def run(self, events: Iterable[XmlEvent]) -> RunResult:
        self.state = RunState()
        self._sink.open(self._schema)
        it = iter(events)
        failure: Optional[ConversionError] = None

        for ev in it:
            if is_record_opening(ev):
                result = assemble_changeset(ev, it)
                if result.error is not None:
                    failure = result.error
                    break
                record = result.record
                self._buffer.append(record)
                self.state.records += 1
                self.state.last_id = record.id
                if self._buffer.is_full():
                    self._flush(final=False)
            elif ev.kind is XmlEventKind.ERROR:
                failure = ev.error or ConversionError(
                    kind=ErrorKind.STRUCTURAL,
                    code="XML_SYNTAX",
                    message="tokenizer error",
                    byte_offset=ev.byte_offset,
                    line=ev.line,
                )
                break
            elif ev.kind is XmlEventKind.EOF:
                break

        if failure is None:
            if self._buffer:
                self._flush(final=True)
            return self._result(RunStatus.OK)

        return self._handle_failure(failure)

    # ---- internals ------------------------------------------------------------

    def _handle_failure(self, err: ConversionError) -> RunResult:
        fatal = err.kind is ErrorKind.IO or not self.continue_on_error
        logger.log(
            logging.ERROR if fatal else logging.WARNING,
            "conversion stopped: %s | changesets parsed=%d last_id=%s",
            err.describe(),
            self.state.records,
            self.state.last_id,
        )
        self._anomalies.emit(
            Anomaly(
                source=self._source,
                kind=_anomaly_kind(err),
                severity=Severity.ERROR if fatal else Severity.WARN,
                detail=err.describe(),
                record_id=self.state.last_id,
                byte_offset=err.byte_offset,
                line=err.line,
            )
        )
        if fatal:
            return self._result(RunStatus.FAILED, err)

        logger.warning("continuing with %d successfully parsed changesets", self.state.records)
        if self._buffer:
            self._flush(final=True)
        self._anomalies.emit(
            Anomaly(
                source=self._source,
                kind=AnomalyKind.PARTIAL_OUTPUT,
                severity=Severity.WARN,
                detail=f"kept {self.state.rows_flushed} rows written before the error",
                record_id=self.state.last_id,
                byte_offset=err.byte_offset,
                line=err.line,
            )
        )
        return self._result(RunStatus.PARTIAL, err)

    def _flush(self, *, final: bool) -> None:
        batch = self._buffer.flush()
        self.state.batches += 1
        logger.info(
            "Writing %sbatch %d with %d rows (total: %d)",
            "final " if final else "",
            self.state.batches,
            batch.num_rows,
            self.state.records,
        )
        t0 = time.perf_counter()
        self._sink.write_batch(batch)
        self._anomalies.observe_duration("batch_write_seconds", time.perf_counter() - t0)
        self.state.rows_flushed += batch.num_rows

    def _result(self, status: RunStatus, err: Optional[ConversionError] = None) -> RunResult:
        s = self.state
        return RunResult(
            status=status,
            records=s.records,
            batches=s.batches,
            rows_flushed=s.rows_flushed,
            last_id=s.last_id,
            error=err,
        )


def _anomaly_kind(err: ConversionError) -> AnomalyKind:
    if err.kind is ErrorKind.IO:
        return AnomalyKind.IO_ERROR
    if err.kind is ErrorKind.DECODE:
        return AnomalyKind.DECODE_FAILED
    if err.kind is ErrorKind.STRUCTURAL:
        return AnomalyKind.STRUCTURAL
    return AnomalyKind.UNKNOWN
