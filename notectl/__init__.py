"""
notectl — Personal notes from the terminal.

Notes live in a single JSON archive under the note home directory.  The
archive format is schema-versioned; the migration engine upgrades older
archives in place and logs synthesized history for the sync service.
"""

__version__ = "0.4.0"

from notectl.types import Action, Book, Note, SchemaRecord
from notectl.config import NoteConfig, NoteContext, build_context, load_config
from notectl.errors import (
    DecodeError,
    NoteError,
    StorageError,
    VersionError,
)
from notectl.migrate import LATEST_VERSION, MIGRATION_SEQUENCE, Migrator

__all__ = [
    "__version__",
    "Action",
    "Book",
    "Note",
    "SchemaRecord",
    "NoteConfig",
    "NoteContext",
    "build_context",
    "load_config",
    "DecodeError",
    "NoteError",
    "StorageError",
    "VersionError",
    "LATEST_VERSION",
    "MIGRATION_SEQUENCE",
    "Migrator",
]
