# src/osmcs/ingest/batches.py
from __future__ import annotations

from typing import List, Optional, Tuple

import pyarrow as pa

from .assembler import Changeset

SCHEMA_VERSION = "1.0"

# (name, arrow type, nullable) in column order; matches Changeset.as_row().
COLUMNS: Tuple[Tuple[str, pa.DataType, bool], ...] = (
    ("id", pa.int64(), False),
    ("created_at", pa.timestamp("ms"), True),
    ("closed_at", pa.timestamp("ms"), True),
    ("open", pa.bool_(), False),
    ("user", pa.string(), True),
    ("uid", pa.int64(), True),
    ("min_lat", pa.float64(), True),
    ("min_lon", pa.float64(), True),
    ("max_lat", pa.float64(), True),
    ("max_lon", pa.float64(), True),
    ("num_changes", pa.uint32(), False),
    ("comments_count", pa.uint32(), False),
    ("description", pa.string(), True),
)

COLUMN_NAMES: Tuple[str, ...] = tuple(name for name, _, _ in COLUMNS)


def changeset_schema() -> pa.Schema:
    schema = pa.schema(
        [pa.field(name, typ, nullable=nullable) for name, typ, nullable in COLUMNS]
    )
    return schema.with_metadata({"version": SCHEMA_VERSION})


class ColumnBatchBuffer:
    """
    Column arena for in-flight changesets: one list per column, addressed by
    its fixed index. Every column has the same length after each append and
    after each flush.
    """

    __slots__ = ("_schema", "_capacity", "_cols", "_count")

    def __init__(self, capacity: int, schema: Optional[pa.Schema] = None) -> None:
        self._schema = schema if schema is not None else changeset_schema()
        self._capacity = max(1, int(capacity))
        self._cols: List[List] = [[] for _ in self._schema]
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def __bool__(self) -> bool:
        return self._count > 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def schema(self) -> pa.Schema:
        return self._schema

    def append(self, record: Changeset) -> None:
        row = record.as_row()
        if len(row) != len(self._cols):
            raise ValueError(f"row has {len(row)} values, expected {len(self._cols)}")
        for col, value in zip(self._cols, row):
            col.append(value)
        self._count += 1

    def is_full(self, threshold: Optional[int] = None) -> bool:
        """True once the buffer holds `threshold` rows (default: its capacity)."""
        limit = self._capacity if threshold is None else threshold
        return self._count >= limit

    def column_lengths(self) -> List[int]:
        return [len(c) for c in self._cols]

    def flush(self) -> pa.RecordBatch:
        """Drain every column into one RecordBatch and reset to empty."""
        if self._count == 0:
            raise ValueError("flush() called on an empty buffer")
        arrays = [
            pa.array(col, type=f.type)
            for col, f in zip(self._cols, self._schema)
        ]
        batch = pa.RecordBatch.from_arrays(arrays, schema=self._schema)
        self._cols = [[] for _ in self._schema]
        self._count = 0
        return batch
