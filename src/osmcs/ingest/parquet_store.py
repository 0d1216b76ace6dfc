# src/osmcs/ingest/parquet_store.py
from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

import pyarrow as pa
import pyarrow.parquet as pq

from .batches import SCHEMA_VERSION

logger = logging.getLogger(__name__)

_CODECS = ("snappy", "zstd", "gzip", "brotli", "lz4", "none")


class ParquetChangesetStore:
    """
    Streaming Parquet sink for changeset batches with:
      - a single ParquetWriter on a staging file (one row group per batch)
      - verified finalize (footer row count must equal rows written)
      - optional run receipt with integrity hash
      - atomic publish (staging -> output)

    Nothing appears at the output path unless finalize() succeeds.
    """

    def __init__(
        self,
        output: Union[str, Path],
        *,
        compression: str = "snappy",
        compression_level: Optional[int] = None,
        staging_suffix: str = ".staging",
        write_receipt: bool = True,
    ) -> None:
        codec = (compression or "none").lower()
        if codec not in _CODECS:
            raise ValueError(f"unsupported compression {compression!r}; expected one of {_CODECS}")
        self.output = Path(output)
        self.compression = codec
        self.compression_level = compression_level
        self.write_receipt = write_receipt
        self._staging = Path(str(self.output) + staging_suffix)
        self._schema: Optional[pa.Schema] = None
        self._writer: Optional[pq.ParquetWriter] = None
        self._rows_written = 0
        self._batches_written = 0
        self._transaction_log: List[str] = []
        self._closed = False

    # ----------------------------- sink contract ------------------------------

    @property
    def staging_path(self) -> Path:
        return self._staging

    @property
    def receipt_path(self) -> Path:
        return Path(str(self.output) + ".receipt.json")

    @property
    def rows_written(self) -> int:
        return self._rows_written

    @property
    def batches_written(self) -> int:
        return self._batches_written

    def open(self, schema: pa.Schema) -> None:
        """Accept the table schema once, before any batch."""
        if self._writer is not None or self._closed:
            raise RuntimeError("store already opened")
        self._schema = schema
        self._staging.parent.mkdir(parents=True, exist_ok=True)
        if self._staging.exists():
            self._staging.unlink()
        kwargs: Dict = {"compression": self.compression}
        if self.compression_level is not None and self.compression != "none":
            kwargs["compression_level"] = int(self.compression_level)
        self._writer = pq.ParquetWriter(str(self._staging), schema, **kwargs)
        self._transaction_log.append(f"opened:{self._staging.name}")

    def write_batch(self, batch: pa.RecordBatch) -> None:
        if self._writer is None:
            raise RuntimeError("write_batch() before open()")
        if not batch.schema.equals(self._schema, check_metadata=False):
            raise ValueError("batch schema does not match the store schema")
        self._writer.write_batch(batch)
        self._rows_written += batch.num_rows
        self._batches_written += 1
        self._transaction_log.append(f"wrote_batch:{self._batches_written}:{batch.num_rows}")

    def finalize(self, *, receipt: Optional[Dict] = None) -> Path:
        """
        Close the writer, verify the file, write the receipt and atomically
        publish the staging file to the output path.
        """
        if self._writer is None:
            raise RuntimeError("finalize() before open()")
        self._close_writer()

        try:
            written = pq.read_metadata(str(self._staging)).num_rows
        except Exception as e:
            raise RuntimeError(f"Parquet verification failed for {self._staging}: {e}") from e
        if written != self._rows_written:
            raise RuntimeError(
                f"Row count mismatch in {self._staging}: expected {self._rows_written}, got {written}"
            )

        if self.write_receipt:
            meta = {
                "schema_version": SCHEMA_VERSION,
                "rows": self._rows_written,
                "batches": self._batches_written,
                "bytes_written": self._staging.stat().st_size,
                "compression": {"algorithm": self.compression, "level": self.compression_level},
                "created_at_epoch": int(time.time()),
                "created_at_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "transaction_log": self._transaction_log,
            }
            meta.update(receipt or {})
            meta["integrity"] = {self.output.name: _blake2b_file(self._staging)}
            self.receipt_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")

        self._atomic_publish()
        logger.info("published %s (%d rows, %d batches)", self.output, self._rows_written, self._batches_written)
        return self.output

    def abort(self, *, discard: bool = False) -> Optional[Path]:
        """
        Stop without publishing. The staging file keeps every batch written so
        far and is left for inspection unless discard=True.
        Returns the staging path when it is kept.
        """
        if self._writer is not None:
            self._close_writer()
        self._closed = True
        if discard:
            self._staging.unlink(missing_ok=True)
            return None
        return self._staging if self._staging.exists() else None

    # ----------------------------- internals ----------------------------------

    def _close_writer(self) -> None:
        writer, self._writer = self._writer, None
        self._closed = True
        if writer is not None:
            writer.close()

    def _atomic_publish(self) -> None:
        self.output.parent.mkdir(parents=True, exist_ok=True)
        self._staging.replace(self.output)
        self._transaction_log.append(f"published:{self.output.name}")


def _blake2b_file(path: Path) -> str:
    h = hashlib.blake2b(digest_size=16)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            h.update(block)
    return h.hexdigest()
