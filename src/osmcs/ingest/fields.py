# src/osmcs/ingest/fields.py
"""
Typed decoding of raw attribute text.

Every decoder is a pure function of (field, raw) and either returns a Python
scalar or raises DecodeError naming the field and the offending text.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

_I64_MIN = -(2 ** 63)
_I64_MAX = 2 ** 63 - 1
_U32_MAX = 2 ** 32 - 1

_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT_RE = re.compile(r"\+?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE,
)
# RFC 3339 date-time; the offset is mandatory.
_RFC3339_RE = re.compile(
    r"(?P<date>[0-9]{4}-[0-9]{2}-[0-9]{2})[Tt ]"
    r"(?P<time>[0-9]{2}:[0-9]{2}:[0-9]{2})"
    r"(?:\.(?P<frac>[0-9]+))?"
    r"(?P<offset>[Zz]|[+-][0-9]{2}:[0-9]{2})"
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


class DecodeError(ValueError):
    """
    A value is present but not parseable under its semantic type.
    raw_value is None when a required value is missing altogether.
    """

    def __init__(self, field: str, raw_value: Optional[str], reason: str = "") -> None:
        self.field = field
        self.raw_value = raw_value
        self.reason = reason
        if raw_value is None:
            msg = f"missing required field {field!r}"
        else:
            msg = f"cannot decode {field!r} from {raw_value!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


def decode_i64(field: str, raw: str) -> int:
    if not _INT_RE.fullmatch(raw):
        raise DecodeError(field, raw, "not an integer")
    value = int(raw)
    if value < _I64_MIN or value > _I64_MAX:
        raise DecodeError(field, raw, "out of int64 range")
    return value


def decode_u32(field: str, raw: str) -> int:
    if not _UINT_RE.fullmatch(raw):
        raise DecodeError(field, raw, "not an unsigned integer")
    value = int(raw)
    if value > _U32_MAX:
        raise DecodeError(field, raw, "out of uint32 range")
    return value


def decode_bool(raw: Optional[str]) -> bool:
    # Only the exact literal counts; "TRUE", "1" and absence are all False.
    return raw == "true"


def decode_f64(field: str, raw: str) -> float:
    if not _FLOAT_RE.fullmatch(raw):
        raise DecodeError(field, raw, "not a float")
    return float(raw)


def decode_timestamp_ms(field: str, raw: str) -> int:
    """Milliseconds since the Unix epoch for an offset-qualified RFC 3339 date-time."""
    m = _RFC3339_RE.fullmatch(raw)
    if m is None:
        raise DecodeError(field, raw, "not an RFC 3339 date-time with offset")
    offset = m.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    frac = (m.group("frac") or "")[:6].ljust(6, "0")
    hms = m.group("time")
    leap = hms.endswith(":60")
    if leap:
        # leap second: counted as the first instant of the following second
        hms = hms[:-2] + "59"
    text = f"{m.group('date')}T{hms}.{frac}{offset}"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise DecodeError(field, raw, str(e)) from None
    if leap:
        dt += timedelta(seconds=1)
    return (dt - _EPOCH) // _ONE_MS
