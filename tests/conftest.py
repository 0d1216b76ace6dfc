"""Shared fixtures for the osmcs test suite."""

import sys
from pathlib import Path
from typing import Callable, List

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


def changeset_xml(
    cs_id: int,
    *,
    created_at: str = "2020-01-01T00:00:00Z",
    closed_at: str = "2020-01-01T01:00:00Z",
    open_flag: str = "false",
    comment: str = "",
) -> str:
    attrs = (
        f'id="{cs_id}" created_at="{created_at}" closed_at="{closed_at}" open="{open_flag}" '
        f'user="mapper{cs_id}" uid="{cs_id * 10}" min_lat="51.5" min_lon="-0.1" '
        f'max_lat="51.6" max_lon="0.1" num_changes="{cs_id + 1}" comments_count="0"'
    )
    if not comment:
        return f"  <changeset {attrs}/>\n"
    return (
        f"  <changeset {attrs}>\n"
        f'    <tag k="created_by" v="JOSM"/>\n'
        f'    <tag k="comment" v="{comment}"/>\n'
        f"  </changeset>\n"
    )


def osm_document(bodies: List[str]) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<osm version="0.6" generator="test">\n'
        + "".join(bodies)
        + "</osm>\n"
    )


@pytest.fixture
def write_osm(tmp_path) -> Callable[..., Path]:
    """Write an OSM changeset document into tmp_path and return its path."""

    def _write(bodies: List[str], name: str = "changesets.osm") -> Path:
        path = tmp_path / name
        path.write_text(osm_document(bodies), encoding="utf-8")
        return path

    return _write
