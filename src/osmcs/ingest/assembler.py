# src/osmcs/ingest/assembler.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from .events import ConversionError, ErrorKind, XmlEvent, XmlEventKind
from .fields import (
    DecodeError,
    decode_bool,
    decode_f64,
    decode_i64,
    decode_timestamp_ms,
    decode_u32,
)

RECORD_ELEMENT = "changeset"
TAG_ELEMENT = "tag"
DESCRIPTION_KEY = "comment"


# ==============================================================================
# Record model
# ==============================================================================


@dataclass(frozen=True)
class Changeset:
    """
    One fully decoded changeset. Optional fields are None when the source
    does not carry them; timestamps are epoch milliseconds.
    """
    id: int
    created_at: Optional[int]
    closed_at: Optional[int]
    open: bool
    user: Optional[str]
    uid: Optional[int]
    min_lat: Optional[float]
    min_lon: Optional[float]
    max_lat: Optional[float]
    max_lon: Optional[float]
    num_changes: int
    comments_count: int
    description: Optional[str]

    def as_row(self) -> Tuple:
        """Values in column order (see batches.COLUMN_NAMES)."""
        return (
            self.id,
            self.created_at,
            self.closed_at,
            self.open,
            self.user,
            self.uid,
            self.min_lat,
            self.min_lon,
            self.max_lat,
            self.max_lon,
            self.num_changes,
            self.comments_count,
            self.description,
        )


# attribute name -> decoder(field, raw)
_ATTRIBUTE_DECODERS: Dict[str, Callable[[str, str], object]] = {
    "id": decode_i64,
    "created_at": decode_timestamp_ms,
    "closed_at": decode_timestamp_ms,
    "open": lambda _field, raw: decode_bool(raw),
    "user": lambda _field, raw: raw,
    "uid": decode_i64,
    "min_lat": decode_f64,
    "min_lon": decode_f64,
    "max_lat": decode_f64,
    "max_lon": decode_f64,
    "num_changes": decode_u32,
    "comments_count": decode_u32,
}

# Non-nullable columns without a permissive default.
_REQUIRED = ("id", "num_changes", "comments_count")


# ==============================================================================
# Per-record state machine
# ==============================================================================


class AssemblerState(str, Enum):
    START = "start"
    READING_ATTRIBUTES = "reading_attributes"
    READING_CHILDREN = "reading_children"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class Assembled:
    """Outcome of one record: exactly one of record / error is set."""
    record: Optional[Changeset] = None
    error: Optional[ConversionError] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


def is_record_opening(ev: XmlEvent) -> bool:
    return ev.kind in (XmlEventKind.START, XmlEventKind.EMPTY) and ev.name == RECORD_ELEMENT


def assemble_changeset(opening: XmlEvent, events: Iterator[XmlEvent]) -> Assembled:
    """
    Build one Changeset from its opening event, pulling nested events from
    `events` until the matching close.

    Nested elements other than direct `tag` children are skipped with a depth
    counter, so arbitrarily deep content never desynchronises the outer walk.
    On failure no partial record is returned.
    """
    state = AssemblerState.START
    values: Dict[str, Any] = {}
    description: Optional[str] = None
    failure: Optional[ConversionError] = None
    depth = 0

    while state not in (AssemblerState.COMPLETE, AssemblerState.FAILED):
        if state is AssemblerState.START:
            state = AssemblerState.READING_ATTRIBUTES

        elif state is AssemblerState.READING_ATTRIBUTES:
            try:
                for name, raw in opening.attrs:
                    decoder = _ATTRIBUTE_DECODERS.get(name)
                    if decoder is None:
                        continue
                    values[name] = decoder(name, raw)
                for name in _REQUIRED:
                    if name not in values:
                        raise DecodeError(name, None)
            except DecodeError as e:
                failure = ConversionError(
                    kind=ErrorKind.DECODE,
                    code="DECODE_ERROR",
                    message=str(e),
                    field=e.field,
                    raw_value=e.raw_value,
                    record_id=values.get("id"),
                    byte_offset=opening.byte_offset,
                    line=opening.line,
                )
                state = AssemblerState.FAILED
                continue
            if opening.kind is XmlEventKind.EMPTY:
                state = AssemblerState.COMPLETE
            else:
                state = AssemblerState.READING_CHILDREN

        elif state is AssemblerState.READING_CHILDREN:
            ev = next(events, None)
            if ev is None or ev.kind is XmlEventKind.EOF:
                failure = ConversionError(
                    kind=ErrorKind.STRUCTURAL,
                    code="UNEXPECTED_EOF",
                    message=f"end of input inside <{opening.name}>",
                    record_id=values.get("id"),
                    byte_offset=ev.byte_offset if ev is not None else opening.byte_offset,
                    line=ev.line if ev is not None else opening.line,
                )
                state = AssemblerState.FAILED
            elif ev.kind is XmlEventKind.ERROR:
                failure = ev.error or ConversionError(
                    kind=ErrorKind.STRUCTURAL,
                    code="XML_SYNTAX",
                    message="tokenizer error",
                    byte_offset=ev.byte_offset,
                    line=ev.line,
                )
                state = AssemblerState.FAILED
            elif ev.kind is XmlEventKind.START:
                if depth == 0 and ev.name == TAG_ELEMENT:
                    description = _apply_tag(ev, description)
                depth += 1
            elif ev.kind is XmlEventKind.EMPTY:
                if depth == 0 and ev.name == TAG_ELEMENT:
                    description = _apply_tag(ev, description)
            elif ev.kind is XmlEventKind.END:
                if depth > 0:
                    depth -= 1
                elif ev.name == opening.name:
                    state = AssemblerState.COMPLETE
                else:
                    failure = ConversionError(
                        kind=ErrorKind.STRUCTURAL,
                        code="MISMATCHED_END",
                        message=f"</{ev.name}> closes <{opening.name}>",
                        record_id=values.get("id"),
                        byte_offset=ev.byte_offset,
                        line=ev.line,
                    )
                    state = AssemblerState.FAILED

    if state is AssemblerState.FAILED:
        return Assembled(error=failure)

    return Assembled(
        record=Changeset(
            id=values["id"],
            created_at=values.get("created_at"),
            closed_at=values.get("closed_at"),
            open=bool(values.get("open", False)),
            user=values.get("user"),
            uid=values.get("uid"),
            min_lat=values.get("min_lat"),
            min_lon=values.get("min_lon"),
            max_lat=values.get("max_lat"),
            max_lon=values.get("max_lon"),
            num_changes=values["num_changes"],
            comments_count=values["comments_count"],
            description=description,
        )
    )


def _apply_tag(ev: XmlEvent, current: Optional[str]) -> Optional[str]:
    key = value = None
    for name, raw in ev.attrs:
        if name == "k":
            key = raw
        elif name == "v":
            value = raw
    if key == DESCRIPTION_KEY and value is not None:
        return value
    return current
