# src/osmcs/ingest/api.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from .anomalies import AnomalySink
from .driver import ChangesetStreamDriver, RunStatus
from .events import DEFAULT_READ_CHUNK_BYTES, ConversionError, iter_xml_events, open_byte_source
from .parquet_store import ParquetChangesetStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvertConfig:
    """Execution knobs for one conversion run."""
    batch_size: int = 100_000
    continue_on_error: bool = False
    compression: str = "snappy"
    compression_level: Optional[int] = None
    read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES
    write_receipt: bool = True
    discard_partial: bool = False   # strict failure: delete the staging file too


@dataclass(frozen=True)
class ConvertSummary:
    status: RunStatus
    records: int
    batches: int
    rows_written: int
    last_id: Optional[int]
    error: Optional[ConversionError]
    output_path: Optional[str]     # set only when the table was published
    staging_path: Optional[str]    # kept partial file after a strict failure
    anomalies: int
    wall_ms: int

    @property
    def ok(self) -> bool:
        return self.status is not RunStatus.FAILED


def convert_changesets(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    *,
    cfg: Optional[ConvertConfig] = None,
    run_metadata: Optional[Dict] = None,
) -> ConvertSummary:
    """
    Stream `input_path` (plain or .bz2 changeset XML) into a Parquet table at
    `output_path`.

    A failed run (strict-mode error or any IO error) publishes nothing; the
    returned summary carries the diagnostics. Sink write failures raise.
    """
    cfg = cfg or ConvertConfig()
    start = time.time()
    input_path = Path(input_path)

    store = ParquetChangesetStore(
        output_path,
        compression=cfg.compression,
        compression_level=cfg.compression_level,
        write_receipt=cfg.write_receipt,
    )
    sink = AnomalySink()
    driver = ChangesetStreamDriver(
        store,
        batch_size=cfg.batch_size,
        continue_on_error=cfg.continue_on_error,
        anomaly_sink=sink,
        source_name=str(input_path),
    )

    logger.info("Reading from: %s", input_path)
    logger.info("Writing to: %s", output_path)
    if input_path.name.endswith(".bz2"):
        logger.info("Detected bzip2 compressed input")

    with open_byte_source(input_path) as src:
        try:
            result = driver.run(iter_xml_events(src, chunk_size=cfg.read_chunk_bytes))
        except BaseException:
            store.abort(discard=True)
            raise

    published: Optional[Path] = None
    kept: Optional[Path] = None
    if result.ok:
        published = store.finalize(
            receipt={
                "run_meta": run_metadata or {},
                "source": str(input_path),
                "status": result.status.value,
                "records": result.records,
                "last_id": result.last_id,
                "error": result.error.describe() if result.error else None,
                "anomaly_counters": sink.counters(),
                "anomalies": [a.to_dict() for a in sink.items()],
                "timers": sink.timer_histograms(),
            }
        )
    else:
        kept = store.abort(discard=cfg.discard_partial)
        if kept is not None:
            logger.error("partial output left for inspection at %s", kept)

    return ConvertSummary(
        status=result.status,
        records=result.records,
        batches=result.batches,
        rows_written=result.rows_flushed,
        last_id=result.last_id,
        error=result.error,
        output_path=str(published) if published else None,
        staging_path=str(kept) if kept else None,
        anomalies=sink.counters().get("total", 0),
        wall_ms=int((time.time() - start) * 1000),
    )
