"""
Note Data Model — Current Archive Shape

Defines the current (post-v3) archive entities: notes, books, action records
and the schema record.  Decoding is strict: a document that does not have the
exact expected shape raises DecodeError instead of producing a partially
populated object.

Notes are identified by UUID once assigned; content is never rewritten by
migration.  Actions are immutable facts, replayed later by a sync client.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Literal, Set

from notectl.errors import DecodeError, IdentifierError

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

ActionKind = Literal["insert", "edit", "delete"]

VALID_ACTION_KINDS: set = {"insert", "edit", "delete"}


def new_uuid() -> str:
    """Random UUID string (version 4)."""
    return str(uuid.uuid4())


def draw_unique_uuid(
    factory: Callable[[], str], taken: Set[str], max_attempts: int,
) -> str:
    """Draw a UUID not in taken, re-drawing on collision up to max_attempts.

    The drawn UUID is added to taken.

    Raises:
        IdentifierError: If every attempt collided.
    """
    for _ in range(max_attempts):
        candidate = factory()
        if candidate and candidate not in taken:
            taken.add(candidate)
            return candidate
    raise IdentifierError(
        f"Could not draw an unused identifier after {max_attempts} attempt(s)"
    )


def canonical_uuid(value: str) -> str:
    """Lowercase hyphenated form of a UUID string accepted by is_uuid()."""
    return str(uuid.UUID(value))


def is_uuid(value: str) -> bool:
    """Return True if value is a canonical hyphenated UUID string."""
    if not isinstance(value, str) or len(value) != 36:
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Strict field access
# ---------------------------------------------------------------------------


def expect_mapping(value: Any, where: str) -> Dict[str, Any]:
    """Return value if it is a JSON object, else raise DecodeError."""
    if not isinstance(value, dict):
        raise DecodeError(f"{where}: expected an object, got {type(value).__name__}")
    return value


def expect_list(value: Any, where: str) -> List[Any]:
    """Return value if it is a JSON array, else raise DecodeError."""
    if not isinstance(value, list):
        raise DecodeError(f"{where}: expected an array, got {type(value).__name__}")
    return value


def require_str(d: Dict[str, Any], key: str, where: str) -> str:
    if key not in d:
        raise DecodeError(f"{where}: missing field {key!r}")
    value = d[key]
    if not isinstance(value, str):
        raise DecodeError(f"{where}.{key}: expected a string, got {type(value).__name__}")
    return value


def require_int(d: Dict[str, Any], key: str, where: str) -> int:
    if key not in d:
        raise DecodeError(f"{where}: missing field {key!r}")
    value = d[key]
    # bool is an int subclass; a true/false timestamp is malformed data
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{where}.{key}: expected an integer, got {type(value).__name__}")
    if value < 0:
        raise DecodeError(f"{where}.{key}: negative value {value}")
    return value


# ---------------------------------------------------------------------------
# Note
# ---------------------------------------------------------------------------


@dataclass
class Note:
    """A single note.  edited_on stays 0 until the first edit."""

    uuid: str = ""
    content: str = ""
    added_on: int = 0
    edited_on: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize note to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Any, where: str = "note") -> Note:
        """Strictly decode a note object."""
        d = expect_mapping(d, where)
        note = cls(
            uuid=require_str(d, "uuid", where),
            content=require_str(d, "content", where),
            added_on=require_int(d, "added_on", where),
            edited_on=require_int(d, "edited_on", where),
        )
        if not note.uuid:
            raise DecodeError(f"{where}.uuid: empty identifier")
        return note


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------


@dataclass
class Book:
    """A named, ordered collection of notes."""

    uuid: str = field(default_factory=new_uuid)
    name: str = ""
    notes: List[Note] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "notes": [n.to_dict() for n in self.notes],
        }

    @classmethod
    def from_dict(cls, d: Any, where: str = "book") -> Book:
        """Strictly decode a book object."""
        d = expect_mapping(d, where)
        raw_notes = expect_list(d.get("notes"), f"{where}.notes")
        return cls(
            uuid=require_str(d, "uuid", where),
            name=require_str(d, "name", where),
            notes=[
                Note.from_dict(n, f"{where}.notes[{i}]")
                for i, n in enumerate(raw_notes)
            ],
        )


# Archive (current shape): book UUID -> Book, in insertion order
Archive = Dict[str, Book]


def archive_to_dict(archive: Archive) -> Dict[str, Any]:
    """Serialize an archive, preserving book order."""
    return {key: book.to_dict() for key, book in archive.items()}


def archive_from_dict(data: Any) -> Archive:
    """Strictly decode a UUID-keyed archive document."""
    data = expect_mapping(data, "archive")
    archive: Archive = {}
    for key, raw in data.items():
        book = Book.from_dict(raw, f"archive[{key!r}]")
        if book.uuid != key:
            raise DecodeError(
                f"archive[{key!r}]: key does not match book uuid {book.uuid!r}"
            )
        archive[key] = book
    return archive


# ---------------------------------------------------------------------------
# Action (append-only sync record)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Action:
    """A note-level mutation, replayed to the remote sync service."""

    kind: ActionKind
    note_uuid: str
    book_name: str
    content: str = ""
    timestamp: int = 0

    def __post_init__(self):
        if self.kind not in VALID_ACTION_KINDS:
            raise ValueError(f"Invalid action kind: {self.kind!r}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Any, where: str = "action") -> Action:
        d = expect_mapping(d, where)
        kind = require_str(d, "kind", where)
        if kind not in VALID_ACTION_KINDS:
            raise DecodeError(f"{where}.kind: unknown action kind {kind!r}")
        return cls(
            kind=kind,
            note_uuid=require_str(d, "note_uuid", where),
            book_name=require_str(d, "book_name", where),
            content=require_str(d, "content", where),
            timestamp=require_int(d, "timestamp", where),
        )


# ---------------------------------------------------------------------------
# Schema record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SchemaRecord:
    """The persisted schema version of the archive."""

    current_version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"current_version": self.current_version}

    @classmethod
    def from_dict(cls, d: Any) -> SchemaRecord:
        d = expect_mapping(d, "schema")
        return cls(current_version=require_int(d, "current_version", "schema"))
