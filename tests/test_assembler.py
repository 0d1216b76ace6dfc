import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from osmcs.ingest.assembler import assemble_changeset
from osmcs.ingest.events import ConversionError, ErrorKind, XmlEvent, XmlEventKind


BASE_ATTRS = (
    ("id", "42"),
    ("created_at", "2020-01-01T00:00:00Z"),
    ("closed_at", "2020-01-01T01:00:00Z"),
    ("open", "false"),
    ("user", "alice"),
    ("uid", "7"),
    ("min_lat", "51.5"),
    ("min_lon", "-0.1"),
    ("max_lat", "51.6"),
    ("max_lon", "0.1"),
    ("num_changes", "12"),
    ("comments_count", "3"),
)


def _open(attrs=BASE_ATTRS, *, empty=False, name="changeset") -> XmlEvent:
    kind = XmlEventKind.EMPTY if empty else XmlEventKind.START
    return XmlEvent(kind=kind, name=name, attrs=tuple(attrs), byte_offset=100, line=3)


def _start(name, **attrs) -> XmlEvent:
    return XmlEvent(kind=XmlEventKind.START, name=name, attrs=tuple(attrs.items()))


def _empty(name, **attrs) -> XmlEvent:
    return XmlEvent(kind=XmlEventKind.EMPTY, name=name, attrs=tuple(attrs.items()))


def _end(name) -> XmlEvent:
    return XmlEvent(kind=XmlEventKind.END, name=name)


def _with(attrs, **overrides):
    out = [(k, overrides.pop(k)) if k in overrides else (k, v) for k, v in attrs]
    out.extend(overrides.items())
    return tuple(out)


def _without(attrs, *names):
    return tuple((k, v) for k, v in attrs if k not in names)


def test_self_closing_record_decodes_every_field():
    result = assemble_changeset(_open(empty=True), iter(()))
    assert result.ok, result.error
    cs = result.record
    assert cs.id == 42
    assert cs.created_at == 1577836800000
    assert cs.closed_at == 1577840400000
    assert cs.open is False
    assert cs.user == "alice"
    assert cs.uid == 7
    assert (cs.min_lat, cs.min_lon, cs.max_lat, cs.max_lon) == (51.5, -0.1, 51.6, 0.1)
    assert cs.num_changes == 12
    assert cs.comments_count == 3
    assert cs.description is None


def test_absent_optional_fields_are_none_not_zero():
    attrs = _without(BASE_ATTRS, "created_at", "closed_at", "user", "uid", "min_lat", "min_lon", "max_lat", "max_lon")
    cs = assemble_changeset(_open(attrs, empty=True), iter(())).record
    assert cs is not None
    assert cs.created_at is None and cs.closed_at is None
    assert cs.user is None and cs.uid is None
    assert (cs.min_lat, cs.min_lon, cs.max_lat, cs.max_lon) == (None, None, None, None)

    zero = assemble_changeset(_open(_with(BASE_ATTRS, uid="0"), empty=True), iter(())).record
    assert zero.uid == 0


def test_unknown_attribute_parses_like_it_was_absent():
    plain = assemble_changeset(_open(empty=True), iter(())).record
    extra = assemble_changeset(_open(_with(BASE_ATTRS, future_field="x"), empty=True), iter(())).record
    assert plain == extra


def test_open_flag_only_exact_true():
    assert assemble_changeset(_open(_with(BASE_ATTRS, open="true"), empty=True), iter(())).record.open is True
    assert assemble_changeset(_open(_with(BASE_ATTRS, open="TRUE"), empty=True), iter(())).record.open is False
    assert assemble_changeset(_open(_without(BASE_ATTRS, "open"), empty=True), iter(())).record.open is False


def test_last_comment_tag_wins():
    events = iter([
        _empty("tag", k="comment", v="fix road"),
        _empty("tag", k="created_by", v="JOSM"),
        _start("tag", k="comment", v="final edit"),
        _end("tag"),
        _end("changeset"),
    ])
    result = assemble_changeset(_open(), events)
    assert result.record.description == "final edit"


def test_comment_tag_without_value_is_ignored():
    events = iter([
        _empty("tag", k="comment", v="fix road"),
        _empty("tag", k="comment"),
        _end("changeset"),
    ])
    assert assemble_changeset(_open(), events).record.description == "fix road"


def test_nested_unknown_elements_are_skipped_without_desync():
    trailing = _start("changeset", id="43")
    events = iter([
        _start("discussion"),
        _start("comment", uid="1"),
        _start("text"),
        _empty("tag", k="comment", v="inside discussion"),
        _end("text"),
        _end("comment"),
        _start("tag", k="comment", v="outer"),
        _start("tag", k="comment", v="nested in tag"),
        _end("tag"),
        _end("tag"),
        _end("discussion"),
        _empty("tag", k="comment", v="real"),
        _end("changeset"),
        trailing,
    ])
    result = assemble_changeset(_open(), events)
    assert result.record.description == "real"
    # the walk stops exactly at the record's closing event
    assert next(events) is trailing


def test_end_of_input_inside_record_is_structural():
    result = assemble_changeset(_open(), iter([_empty("tag", k="comment", v="x")]))
    assert not result.ok
    assert result.record is None
    assert result.error.kind is ErrorKind.STRUCTURAL
    assert result.error.code == "UNEXPECTED_EOF"
    assert result.error.record_id == 42

    eof = XmlEvent(kind=XmlEventKind.EOF, byte_offset=999)
    result = assemble_changeset(_open(), iter([eof]))
    assert result.error.code == "UNEXPECTED_EOF"
    assert result.error.byte_offset == 999


def test_tokenizer_error_inside_record_propagates():
    err = ConversionError(kind=ErrorKind.STRUCTURAL, code="XML_SYNTAX", message="boom", byte_offset=7)
    result = assemble_changeset(_open(), iter([XmlEvent(kind=XmlEventKind.ERROR, error=err)]))
    assert result.error is err


def test_mismatched_close_is_structural():
    result = assemble_changeset(_open(), iter([_end("osm")]))
    assert result.error.kind is ErrorKind.STRUCTURAL
    assert result.error.code == "MISMATCHED_END"


def test_malformed_timestamp_is_decode_error_with_context():
    result = assemble_changeset(_open(_with(BASE_ATTRS, created_at="not-a-date"), empty=True), iter(()))
    assert result.record is None
    err = result.error
    assert err.kind is ErrorKind.DECODE
    assert err.field == "created_at"
    assert err.raw_value == "not-a-date"
    assert err.record_id == 42
    assert err.byte_offset == 100
    assert err.line == 3


def test_decode_failure_stops_before_reading_children():
    child = _empty("tag", k="comment", v="never read")
    events = iter([child, _end("changeset")])
    result = assemble_changeset(_open(_with(BASE_ATTRS, uid="x")), events)
    assert result.error.field == "uid"
    assert next(events) is child


def test_missing_required_attribute_is_decode_error():
    result = assemble_changeset(_open(_without(BASE_ATTRS, "id"), empty=True), iter(()))
    assert result.error.kind is ErrorKind.DECODE
    assert result.error.field == "id"
    assert result.error.raw_value is None
