"""
Error taxonomy for notectl.

Every failure the CLI reports to the user derives from NoteError and exits
with code 1.  Anything else is an internal failure (exit code 2).
"""

from __future__ import annotations


class NoteError(Exception):
    """Base class for all notectl operational errors."""

    pass


class DecodeError(NoteError):
    """Raised when persisted data does not have the expected shape."""

    pass


class StorageError(NoteError):
    """Raised when a filesystem operation fails."""

    pass


class SchemaNotFound(NoteError):
    """Raised when no schema file exists yet."""

    pass


class VersionError(NoteError):
    """Raised when the persisted schema version is not the one expected."""

    pass


class MigrationError(NoteError):
    """Raised when a migration step cannot produce its output."""

    pass


class IdentifierError(NoteError):
    """Raised when no unused identifier could be drawn within the retry cap."""

    pass


class QueryError(NoteError):
    """Raised when a search cannot be run with the configured settings."""

    pass


class NothingChanged(NoteError):
    """Raised when an edit would leave the note unchanged."""

    pass


class BookNotFound(NoteError):
    pass


class NoteNotFound(NoteError):
    pass
