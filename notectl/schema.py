"""
Schema State Store

Persists the archive's schema version as {"current_version": <int>}.
Writes are atomic so a crash never leaves a half-written version number.
"""

from __future__ import annotations

import logging

from notectl.config import NoteContext
from notectl.errors import SchemaNotFound
from notectl.fileio import parse_json, read_text, write_json
from notectl.types import SchemaRecord

logger = logging.getLogger(__name__)


def read_schema(ctx: NoteContext) -> SchemaRecord:
    """Read the persisted schema record.

    Raises:
        SchemaNotFound: If the schema file does not exist.
        DecodeError: If the file is not a valid schema record.
        StorageError: If the file cannot be read.
    """
    text = read_text(ctx.schema_path)
    if text is None:
        raise SchemaNotFound(f"No schema file at {ctx.schema_path}")
    return SchemaRecord.from_dict(parse_json(text, str(ctx.schema_path)))


def read_version(ctx: NoteContext) -> int:
    """Current schema version; 0 when no schema file exists."""
    try:
        return read_schema(ctx).current_version
    except SchemaNotFound:
        return 0


def write_schema(ctx: NoteContext, record: SchemaRecord) -> None:
    """Atomically persist the schema record."""
    write_json(ctx.schema_path, record.to_dict())
    logger.debug(f"Schema version set to {record.current_version}")


def init_schema_file(ctx: NoteContext, pristine: bool) -> bool:
    """Create the schema file if it does not exist.

    A pristine home has nothing to migrate and starts at the latest version;
    an existing archive starts at 0 so every step runs.

    Returns:
        True if a file was written, False if one already existed.
    """
    from notectl.migrate import LATEST_VERSION

    if ctx.schema_path.exists():
        return False
    version = LATEST_VERSION if pristine else 0
    write_schema(ctx, SchemaRecord(current_version=version))
    logger.info(f"Initialized schema file at version {version}")
    return True
