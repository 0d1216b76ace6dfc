# src/osmcs/ingest/__main__.py
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from ..core.config import env_int, env_str, feature_enabled
from .api import ConvertConfig, ConvertSummary, convert_changesets
from .driver import RunStatus
from .events import DEFAULT_READ_CHUNK_BYTES
from .reader import ChangesetReader

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="osmcs-convert",
        description="Convert an OSM changeset XML dump (.osm or .osm.bz2) into a Parquet table.",
    )
    ap.add_argument("-i", "--input", required=True, help="input changeset XML file (.osm or .osm.bz2)")
    ap.add_argument("-o", "--output", required=True, help="output Parquet file")
    ap.add_argument(
        "-b", "--batch-size", type=int, default=env_int("batch_size", 100_000),
        help="records per written batch (default: %(default)s)",
    )
    ap.add_argument(
        "--continue-on-error", action="store_true", default=feature_enabled("continue_on_error"),
        help="stop at the first parse error but keep what was parsed before it",
    )
    ap.add_argument(
        "--compression", default=env_str("compression", "snappy"),
        choices=["snappy", "zstd", "gzip", "brotli", "lz4", "none"],
        help="Parquet compression codec (default: %(default)s)",
    )
    ap.add_argument("--compression-level", type=int, default=None)
    ap.add_argument(
        "--read-chunk-bytes", type=int, default=DEFAULT_READ_CHUNK_BYTES,
        help="bytes fed to the XML parser per read (default: %(default)s)",
    )
    ap.add_argument("--no-receipt", action="store_true", help="do not write <output>.receipt.json")
    ap.add_argument("--discard-partial", action="store_true", help="delete the staging file after a failed run")
    ap.add_argument("--verify", action="store_true", help="re-read the published table and report its stats")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return ap


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = ConvertConfig(
        batch_size=max(1, args.batch_size),
        continue_on_error=args.continue_on_error,
        compression=args.compression,
        compression_level=args.compression_level,
        read_chunk_bytes=max(1, args.read_chunk_bytes),
        write_receipt=not args.no_receipt,
        discard_partial=args.discard_partial,
    )
    try:
        summary = convert_changesets(args.input, args.output, cfg=cfg)
    except OSError as e:
        logger.error("cannot convert %s: %s", args.input, e)
        return 1

    _report(summary)
    if not summary.ok:
        return 1

    if args.verify and summary.output_path:
        with ChangesetReader(summary.output_path) as reader:
            stats = reader.stats()
        logger.info(
            "verified %s: rows=%d ids=%s..%s open=%d with_description=%d",
            summary.output_path, stats.rows, stats.min_id, stats.max_id,
            stats.open_count, stats.with_description,
        )
        if stats.rows != summary.rows_written:
            logger.error("row count mismatch: wrote %d, read %d", summary.rows_written, stats.rows)
            return 1
    return 0


def _report(summary: ConvertSummary) -> None:
    if summary.status is RunStatus.OK:
        logger.info("Successfully wrote %d changesets to %s", summary.rows_written, summary.output_path)
        return
    err = summary.error.describe() if summary.error else "unknown error"
    if summary.status is RunStatus.PARTIAL:
        logger.warning(
            "Wrote %d changesets to %s before stopping (last id %s): %s",
            summary.rows_written, summary.output_path, summary.last_id, err,
        )
        return
    logger.error(
        "Conversion failed after %d changesets (last id %s): %s. "
        "Use --continue-on-error to save partial results.",
        summary.records, summary.last_id, err,
    )


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
