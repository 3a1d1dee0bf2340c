"""
Shared fixtures: a note home in tmp_path with a fixed clock, and archive
documents in each legacy shape.
"""

import json
import itertools
import uuid

import pytest

from notectl.config import NoteContext
from notectl.migrate import LATEST_VERSION
from notectl.schema import write_schema
from notectl.types import SchemaRecord

NOW = 1_700_000_000


def _sequential_uuids():
    counter = itertools.count(1)
    return lambda: str(uuid.UUID(int=next(counter)))


@pytest.fixture
def ctx(tmp_path):
    """Empty note home with a fixed clock and deterministic UUIDs."""
    home = tmp_path / "home"
    home.mkdir()
    return NoteContext(
        home_dir=home,
        clock=lambda: NOW,
        uuid_factory=_sequential_uuids(),
    )


@pytest.fixture
def current_ctx(ctx):
    """Note home already at the latest schema version, no notes."""
    ctx.archive_path.write_text("{}", encoding="utf-8")
    write_schema(ctx, SchemaRecord(current_version=LATEST_VERSION))
    return ctx


@pytest.fixture
def unversioned_archive():
    """Archive written before schema versioning: short uids, partial metadata."""
    return {
        "algorithm": [
            {
                "uid": "43827b9a",
                "content": "in-place means no extra space required. it mutates the input",
                "added_on": 1515199943,
            },
            {"uid": "f1b3c2d4", "content": "merge sort is stable", "added_on": 1515199951},
            {"content": "heap sort is not stable"},
            {"uid": "", "content": "building a heap takes linear time", "added_on": 0},
        ],
        "js": [
            {"uid": "a1b2c3d4", "content": "closures capture variables by reference",
             "added_on": 1515200001},
            {"uid": "e5f6a7b8", "name": "js_note_1",
             "content": "  whitespace is preserved\n"},
        ],
    }


@pytest.fixture
def v2_archive():
    """Name-keyed v2 archive: two books with 4 and 2 notes."""
    def note(n, content, added_on):
        return {
            "uuid": str(uuid.UUID(int=1000 + n)),
            "content": content,
            "added_on": added_on,
            "edited_on": 0,
        }

    return {
        "algorithm": {
            "name": "algorithm",
            "notes": [
                note(1, "quick sort is in-place", 1515199943),
                note(2, "merge sort is stable", 1515199951),
                note(3, "heap sort is not stable", 1515199960),
                note(4, "radix sort is not comparison based", 1515199970),
            ],
        },
        "js": {
            "name": "js",
            "notes": [
                note(5, "closures capture variables", 1515200001),
                note(6, "promises are eager", 1515200002),
            ],
        },
    }


@pytest.fixture
def write_archive_json(ctx):
    """Write a document to the archive file as JSON."""
    def _write(data):
        ctx.archive_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return ctx.archive_path
    return _write
