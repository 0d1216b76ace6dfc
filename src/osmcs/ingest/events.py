# src/osmcs/ingest/events.py
from __future__ import annotations

import bz2
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple, Union

from lxml import etree

DEFAULT_READ_CHUNK_BYTES = 1024 * 1024

# ==============================================================================
# Error model (value objects; the driver matches on kind)
# ==============================================================================


class ErrorKind(str, Enum):
    DECODE = "decode"          # value present but not parseable
    STRUCTURAL = "structural"  # XML syntax error / unexpected end of record
    IO = "io"                  # byte source failure, always fatal


@dataclass(frozen=True)
class ConversionError:
    """
    Everything needed to locate a failure in the source without re-parsing.
    """
    kind: ErrorKind
    code: str
    message: str
    field: Optional[str] = None
    raw_value: Optional[str] = None
    record_id: Optional[int] = None   # id of the failing record, if decoded
    byte_offset: Optional[int] = None
    line: Optional[int] = None

    def describe(self) -> str:
        parts = [f"{self.kind.value}/{self.code}: {self.message}"]
        if self.record_id is not None:
            parts.append(f"record_id={self.record_id}")
        if self.byte_offset is not None:
            # offsets are taken at chunk granularity, so only an upper bound
            parts.append(f"byte_offset<={self.byte_offset}")
        if self.line is not None:
            parts.append(f"line={self.line}")
        return " ".join(parts)


# ==============================================================================
# Structural event model
# ==============================================================================


class XmlEventKind(str, Enum):
    START = "start"    # open tag with attributes
    EMPTY = "empty"    # self-closing open tag with attributes
    END = "end"        # close tag
    EOF = "eof"        # end of input
    ERROR = "error"    # tokenizing / byte source failure


@dataclass(frozen=True)
class XmlEvent:
    """
    One structural event. Attribute values are already unescaped and kept in
    document order.

    byte_offset is the number of source bytes handed to the tokenizer when the
    event was produced (end of the chunk that contained it).
    """
    kind: XmlEventKind
    name: str = ""
    attrs: Tuple[Tuple[str, str], ...] = ()
    byte_offset: int = 0
    line: Optional[int] = None
    error: Optional[ConversionError] = None


# ==============================================================================
# Byte source
# ==============================================================================


def open_byte_source(path: Union[str, Path]) -> BinaryIO:
    """
    Open the input for binary reading, decompressing transparently when the
    name ends in .bz2 (concatenated multi-stream archives included).
    """
    p = Path(path)
    if p.name.endswith(".bz2"):
        return bz2.open(p, "rb")
    return open(p, "rb")


# ==============================================================================
# Tokenizer adapter (lxml pull parser → XmlEvent stream)
# ==============================================================================


def iter_xml_events(
    stream: BinaryIO,
    *,
    chunk_size: int = DEFAULT_READ_CHUNK_BYTES,
) -> Iterator[XmlEvent]:
    """
    Lazily turn a byte stream into XmlEvents.

    The stream ends with exactly one EOF or one ERROR event. Finished elements
    are released from the lxml tree as their END event is produced, so memory
    does not grow with the document.
    """
    chunk_size = max(1, int(chunk_size))
    parser = etree.XMLPullParser(
        events=("start", "end"),
        huge_tree=True,
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
    )
    consumed = 0

    while True:
        try:
            chunk = stream.read(chunk_size)
        except (OSError, EOFError) as e:
            yield from _drain(parser, consumed)
            yield _error_event(ErrorKind.IO, "READ_FAILED", f"{type(e).__name__}: {e}", consumed, None)
            return
        if not chunk:
            break
        consumed += len(chunk)
        try:
            parser.feed(chunk)
        except etree.XMLSyntaxError as e:
            yield from _drain(parser, consumed)
            yield _syntax_error_event(e, consumed)
            return
        yield from _drain(parser, consumed)

    if consumed == 0:
        # Empty input is an empty document, not a syntax error.
        yield XmlEvent(kind=XmlEventKind.EOF, byte_offset=0)
        return

    try:
        parser.close()
    except etree.XMLSyntaxError as e:
        yield from _drain(parser, consumed)
        yield _syntax_error_event(e, consumed)
        return
    yield from _drain(parser, consumed)
    yield XmlEvent(kind=XmlEventKind.EOF, byte_offset=consumed)


# ---- internals ----------------------------------------------------------------


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[-1]
    return tag


def _drain(parser: etree.XMLPullParser, consumed: int) -> Iterator[XmlEvent]:
    for action, elem in parser.read_events():
        if not isinstance(elem.tag, str):
            continue
        if action == "start":
            yield XmlEvent(
                kind=XmlEventKind.START,
                name=_local_name(elem.tag),
                attrs=tuple(elem.attrib.items()),
                byte_offset=consumed,
                line=elem.sourceline,
            )
            continue

        yield XmlEvent(
            kind=XmlEventKind.END,
            name=_local_name(elem.tag),
            byte_offset=consumed,
            line=elem.sourceline,
        )
        # Release the finished element and any earlier siblings.
        elem.clear()
        parent = elem.getparent()
        if parent is not None:
            while elem.getprevious() is not None:
                del parent[0]


def _syntax_error_event(e: etree.XMLSyntaxError, consumed: int) -> XmlEvent:
    line = e.lineno if getattr(e, "lineno", None) else None
    return _error_event(ErrorKind.STRUCTURAL, "XML_SYNTAX", str(e), consumed, line)


def _error_event(kind: ErrorKind, code: str, message: str, consumed: int, line: Optional[int]) -> XmlEvent:
    err = ConversionError(kind=kind, code=code, message=message, byte_offset=consumed, line=line)
    return XmlEvent(kind=XmlEventKind.ERROR, byte_offset=consumed, line=line, error=err)
