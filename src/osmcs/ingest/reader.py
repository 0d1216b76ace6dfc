# src/osmcs/ingest/reader.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

# Depend on DuckDB for fast columnar scans
try:
    import duckdb
except Exception as e:  # pragma: no cover
    _DUCKDB_IMPORT_ERROR = e
else:
    _DUCKDB_IMPORT_ERROR = None

from .assembler import Changeset


@dataclass(frozen=True)
class TableStats:
    rows: int
    min_id: Optional[int]
    max_id: Optional[int]
    open_count: int
    with_description: int
    first_created_ms: Optional[int]
    last_created_ms: Optional[int]


def _require_duckdb():
    if _DUCKDB_IMPORT_ERROR is not None:
        raise RuntimeError(
            "duckdb is required for the changeset reader. "
            f"Import failed with: {_DUCKDB_IMPORT_ERROR}"
        )


_SELECT_COLUMNS = """
    id,
    epoch_ms(created_at) AS created_at,
    epoch_ms(closed_at) AS closed_at,
    open,
    "user",
    uid,
    min_lat,
    min_lon,
    max_lat,
    max_lon,
    num_changes,
    comments_count,
    description
"""


class ChangesetReader:
    """
    Read-side API over a converted changeset table.

    - Uses DuckDB to stream rows in id order without loading the whole table.
    - Timestamps come back as epoch milliseconds, matching Changeset.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        _require_duckdb()
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"changeset table not found: {self.path}")
        self.con = duckdb.connect(database=":memory:")
        self._src = f"read_parquet('{self.path.as_posix()}')"

    def close(self) -> None:
        self.con.close()

    def __enter__(self) -> "ChangesetReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def count(self) -> int:
        return int(self.con.execute(f"SELECT count(*) FROM {self._src}").fetchone()[0])

    def stats(self) -> TableStats:
        row = self.con.execute(
            f"""
            SELECT
                count(*),
                min(id),
                max(id),
                count(*) FILTER (WHERE open),
                count(description),
                epoch_ms(min(created_at)),
                epoch_ms(max(created_at))
            FROM {self._src}
            """
        ).fetchone()
        return TableStats(
            rows=int(row[0]),
            min_id=row[1],
            max_id=row[2],
            open_count=int(row[3]),
            with_description=int(row[4]),
            first_created_ms=row[5],
            last_created_ms=row[6],
        )

    def iter_changesets(
        self,
        *,
        min_id: Optional[int] = None,
        batch_size: int = 50_000,
    ) -> Iterator[Changeset]:
        """
        Stream changesets in ascending id order, optionally starting at min_id.
        """
        sql = f"SELECT {_SELECT_COLUMNS} FROM {self._src}"
        params = []
        if min_id is not None:
            sql += " WHERE id >= ?"
            params.append(int(min_id))
        sql += " ORDER BY id"
        cur = self.con.execute(sql, params)
        while True:
            rows = cur.fetchmany(max(1, int(batch_size)))
            if not rows:
                break
            for r in rows:
                yield Changeset(*r)
