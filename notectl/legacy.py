"""
Legacy Format Readers — Pre-v3 Archive Shapes

Each schema version before the current one has its own tagged shape, and each
reader decodes exactly one of them:

    read_flat_yaml()    earliest archive: YAML  name -> [raw note text]
    read_unversioned()  JSON  name -> [{uid?, name?, content, added_on?}]
    read_v2()           JSON  name -> {name, notes: [{uuid, content, added_on, edited_on}]}

Readers are all-or-nothing: any shape mismatch raises DecodeError and no
partially populated result is returned.

The load_*() functions read the archive from disk for the migration step
that expects that shape.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import yaml

from notectl.config import NoteContext
from notectl.errors import DecodeError
from notectl.fileio import file_mtime, parse_json, read_text
from notectl.types import (
    Note,
    expect_list,
    expect_mapping,
    require_int,
    require_str,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------

# Flat YAML archive: book name -> raw note strings
FlatArchive = Dict[str, List[str]]


@dataclass
class LegacyNote:
    """Note as stored before v2: short or missing id, no edit time."""
    uid: str = ""
    content: str = ""
    added_on: int = 0


@dataclass
class UnversionedArchive:
    """Name-keyed JSON archive written before schema versioning existed."""
    books: Dict[str, List[LegacyNote]] = field(default_factory=dict)
    # Archive file mtime, used to date notes that carry no added_on
    mtime: int = 0

    @property
    def note_count(self) -> int:
        return sum(len(notes) for notes in self.books.values())

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name, notes in self.books.items():
            rows = []
            for n in notes:
                row: Dict[str, Any] = {"content": n.content}
                if n.uid:
                    row["uid"] = n.uid
                if n.added_on:
                    row["added_on"] = n.added_on
                rows.append(row)
            out[name] = rows
        return out


@dataclass
class V2Book:
    """Book at v2: name-keyed, notes carry UUIDs."""
    name: str = ""
    notes: List[Note] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "notes": [n.to_dict() for n in self.notes]}


V2Archive = Dict[str, V2Book]


def v2_archive_to_dict(archive: V2Archive) -> Dict[str, Any]:
    return {name: book.to_dict() for name, book in archive.items()}


@dataclass
class PreV1State:
    """Input of the first migration step."""
    archive: UnversionedArchive = field(default_factory=UnversionedArchive)
    yaml_archive_present: bool = False
    # True when the archive file itself was still in the flat YAML format
    converted_from_yaml: bool = False


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------


def read_flat_yaml(text: str, where: str = "yaml archive") -> FlatArchive:
    """Decode the flat YAML archive (book name -> list of note strings)."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DecodeError(f"{where}: invalid YAML: {e}") from e
    if data is None:
        return {}
    data = expect_mapping(data, where)
    archive: FlatArchive = {}
    for name, notes in data.items():
        if not isinstance(name, str):
            raise DecodeError(f"{where}: book name {name!r} is not a string")
        if notes is None:
            notes = []
        notes = expect_list(notes, f"{where}[{name!r}]")
        for i, raw in enumerate(notes):
            if not isinstance(raw, str):
                raise DecodeError(
                    f"{where}[{name!r}][{i}]: expected note text, "
                    f"got {type(raw).__name__}"
                )
        archive[name] = list(notes)
    return archive


_LEGACY_NOTE_KEYS = {"uid", "name", "content", "added_on"}


def _read_legacy_note(d: Any, where: str) -> LegacyNote:
    d = expect_mapping(d, where)
    unknown = set(d) - _LEGACY_NOTE_KEYS
    if unknown:
        raise DecodeError(f"{where}: unexpected field(s) {sorted(unknown)}")
    uid = require_str(d, "uid", where) if "uid" in d else ""
    added_on = require_int(d, "added_on", where) if "added_on" in d else 0
    if "name" in d and not isinstance(d["name"], str):
        raise DecodeError(f"{where}.name: expected a string")
    return LegacyNote(
        uid=uid,
        content=require_str(d, "content", where),
        added_on=added_on,
    )


def read_unversioned(
    text: str, where: str = "archive", mtime: int = 0,
) -> UnversionedArchive:
    """Decode the unversioned JSON archive (book name -> list of notes)."""
    data = expect_mapping(parse_json(text, where), where)
    books: Dict[str, List[LegacyNote]] = {}
    for name, notes in data.items():
        notes = expect_list(notes, f"{where}[{name!r}]")
        books[name] = [
            _read_legacy_note(n, f"{where}[{name!r}][{i}]")
            for i, n in enumerate(notes)
        ]
    return UnversionedArchive(books=books, mtime=mtime)


def read_v2(text: str, where: str = "archive") -> V2Archive:
    """Decode the v2 archive (name-keyed books with UUID notes)."""
    data = expect_mapping(parse_json(text, where), where)
    archive: V2Archive = {}
    for key, raw in data.items():
        book_where = f"{where}[{key!r}]"
        raw = expect_mapping(raw, book_where)
        name = require_str(raw, "name", book_where)
        if name != key:
            raise DecodeError(f"{book_where}: key does not match book name {name!r}")
        notes = expect_list(raw.get("notes"), f"{book_where}.notes")
        archive[key] = V2Book(
            name=name,
            notes=[
                Note.from_dict(n, f"{book_where}.notes[{i}]")
                for i, n in enumerate(notes)
            ],
        )
    return archive


def flat_to_unversioned(flat: FlatArchive, mtime: int = 0) -> UnversionedArchive:
    """Lift the flat YAML archive into the unversioned shape."""
    return UnversionedArchive(
        books={
            name: [LegacyNote(content=text) for text in notes]
            for name, notes in flat.items()
        },
        mtime=mtime,
    )


# ---------------------------------------------------------------------------
# Disk loaders (one per step input shape)
# ---------------------------------------------------------------------------


def load_pre_v1(ctx: NoteContext) -> PreV1State:
    """Read the archive as it may exist before v1.

    The archive file is either the unversioned JSON archive or, on the oldest
    installs, the flat YAML archive.  JSON is tried first since any JSON
    document would also parse as YAML.
    """
    path = ctx.archive_path
    text = read_text(path)
    mtime = file_mtime(path)
    converted = False
    if text is None or not text.strip():
        archive = UnversionedArchive(mtime=mtime)
    else:
        try:
            parse_json(text, str(path))
            is_json = True
        except DecodeError:
            is_json = False
        if is_json:
            archive = read_unversioned(text, str(path), mtime=mtime)
        else:
            flat = read_flat_yaml(text, str(path))
            archive = flat_to_unversioned(flat, mtime=mtime)
            converted = True
            logger.info(f"Archive {path} is in the flat YAML format")
    return PreV1State(
        archive=archive,
        yaml_archive_present=ctx.legacy_yaml_path.exists(),
        converted_from_yaml=converted,
    )


def load_unversioned(ctx: NoteContext) -> UnversionedArchive:
    """Read the unversioned JSON archive (input of step 2)."""
    path = ctx.archive_path
    text = read_text(path)
    if text is None or not text.strip():
        return UnversionedArchive(mtime=file_mtime(path))
    return read_unversioned(text, str(path), mtime=file_mtime(path))


def load_v2(ctx: NoteContext) -> V2Archive:
    """Read the v2 archive (input of step 3)."""
    path = ctx.archive_path
    text = read_text(path)
    if text is None or not text.strip():
        return {}
    return read_v2(text, str(path))
