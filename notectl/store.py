"""
Note Store — Archive Persistence and Note Operations

The archive is one JSON document mapping book UUID -> book.  This module
owns reading and writing it:

    write_archive_data(ctx, data)  raw document write, used by migration steps
    read_archive(ctx)              strict decode of the current shape
    write_archive(ctx, archive)

and the live note operations used by the CLI (add, edit, remove).  Each
operation changes exactly one note and appends exactly one action, in the
same format migration uses, so the sync client sees a single stream.

Live operations only run against an archive at the latest schema version.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Dict, Iterator, List, Optional

from notectl.actions import log_delete, log_edit, log_insert
from notectl.config import NoteContext
from notectl.errors import (
    BookNotFound,
    NoteError,
    NoteNotFound,
    NothingChanged,
    VersionError,
)
from notectl.fileio import (
    atomic_write_text,
    file_lock,
    parse_json,
    read_text,
    remove_file,
    write_json,
)
from notectl.types import (
    Archive,
    Book,
    Note,
    archive_from_dict,
    archive_to_dict,
    draw_unique_uuid,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Archive I/O
# ---------------------------------------------------------------------------


def write_archive_data(ctx: NoteContext, data: Dict[str, Any]) -> None:
    """Atomically write a raw archive document."""
    write_json(ctx.archive_path, data)


def read_archive(ctx: NoteContext) -> Archive:
    """Read the current-shape archive. A missing or empty file is empty."""
    text = read_text(ctx.archive_path)
    if text is None or not text.strip():
        return {}
    return archive_from_dict(parse_json(text, str(ctx.archive_path)))


def write_archive(ctx: NoteContext, archive: Archive) -> None:
    write_archive_data(ctx, archive_to_dict(archive))


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def book_names(archive: Archive) -> List[str]:
    """Sorted book names."""
    return sorted(book.name for book in archive.values())


def find_book(archive: Archive, name: str) -> Optional[Book]:
    for book in archive.values():
        if book.name == name:
            return book
    return None


def get_book(archive: Archive, name: str) -> Book:
    book = find_book(archive, name)
    if book is None:
        raise BookNotFound(f"Book {name} does not exist")
    return book


def get_note(book: Book, index: int) -> Note:
    if index < 0 or index >= len(book.notes):
        raise NoteNotFound(f"Book {book.name} does not have note with index {index}")
    return book.notes[index]


def _taken_uuids(archive: Archive) -> set:
    taken = set(archive)
    for book in archive.values():
        taken.update(n.uuid for n in book.notes)
    return taken


def sanitize_content(content: str) -> str:
    """Normalize user-entered note content."""
    return content.strip()


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _require_current(ctx: NoteContext) -> None:
    from notectl.migrate import LATEST_VERSION
    from notectl.schema import read_version

    version = read_version(ctx)
    if version != LATEST_VERSION:
        raise VersionError(
            f"Archive is at schema version {version}, expected {LATEST_VERSION}; "
            "run `notectl migrate` first"
        )


def _exclusive(ctx: NoteContext):
    if ctx.config.migrate.use_file_lock:
        return file_lock(ctx.lock_path)
    return contextlib.nullcontext()


# ---------------------------------------------------------------------------
# Note operations
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def _logged_change(ctx: NoteContext) -> Iterator[None]:
    """Run an action-log append followed by an archive write as one change.

    The action is appended first, so a malformed or unwritable log aborts
    before the archive is touched.  If the archive write then fails, the log
    is put back to its previous content.
    """
    previous = read_text(ctx.actions_path)
    try:
        yield
    except Exception:
        try:
            if previous is None:
                remove_file(ctx.actions_path)
            else:
                atomic_write_text(ctx.actions_path, previous)
        except NoteError as e:
            logger.error(f"Could not roll back action log {ctx.actions_path}: {e}")
        raise


def add_note(ctx: NoteContext, book_name: str, content: str) -> Note:
    """Append a note to a book, creating the book if needed."""
    content = sanitize_content(content)
    if not content:
        raise NothingChanged("Refusing to add an empty note")
    with _exclusive(ctx):
        _require_current(ctx)
        archive = read_archive(ctx)
        taken = _taken_uuids(archive)
        attempts = ctx.config.migrate.uuid_max_attempts
        book = find_book(archive, book_name)
        if book is None:
            book = Book(
                uuid=draw_unique_uuid(ctx.uuid_factory, taken, attempts),
                name=book_name,
            )
            archive[book.uuid] = book
            logger.info(f"Created book {book_name}")
        ts = ctx.now()
        note = Note(
            uuid=draw_unique_uuid(ctx.uuid_factory, taken, attempts),
            content=content,
            added_on=ts,
            edited_on=0,
        )
        book.notes.append(note)
        with _logged_change(ctx):
            log_insert(ctx, note.uuid, book.name, note.content, ts)
            write_archive(ctx, archive)
    return note


def edit_note(ctx: NoteContext, book_name: str, index: int, content: str) -> Note:
    """Replace the content of the note at index in a book."""
    content = sanitize_content(content)
    if not content:
        raise NothingChanged("Refusing to save an empty note")
    with _exclusive(ctx):
        _require_current(ctx)
        archive = read_archive(ctx)
        book = get_book(archive, book_name)
        note = get_note(book, index)
        if note.content == content:
            raise NothingChanged("Nothing changed")
        ts = ctx.now()
        note.content = content
        note.edited_on = ts
        with _logged_change(ctx):
            log_edit(ctx, note.uuid, book.name, note.content, ts)
            write_archive(ctx, archive)
    return note


def remove_note(ctx: NoteContext, book_name: str, index: int) -> Note:
    """Delete the note at index in a book."""
    with _exclusive(ctx):
        _require_current(ctx)
        archive = read_archive(ctx)
        book = get_book(archive, book_name)
        note = get_note(book, index)
        del book.notes[index]
        with _logged_change(ctx):
            log_delete(ctx, note.uuid, book.name, ctx.now())
            write_archive(ctx, archive)
    return note
