"""
Action Log — Append-Only Sync Records

The action log is a single JSON array of
{kind, note_uuid, book_name, content, timestamp} objects.  Migration steps
that synthesize history and live note operations both append here, forming
one stream for the sync client.

append_actions() is all-or-nothing: the existing log is read, the new records
are appended in order, and the whole array is written atomically.  Records
are never reordered, rewritten or deduplicated.
"""

from __future__ import annotations

import json
import logging
from typing import List, Sequence

from notectl.config import NoteContext
from notectl.fileio import atomic_write_text, parse_json, read_text
from notectl.types import Action, expect_list

logger = logging.getLogger(__name__)


def read_actions(ctx: NoteContext) -> List[Action]:
    """Read the full action log. A missing or empty file is an empty log."""
    path = ctx.actions_path
    text = read_text(path)
    if text is None or not text.strip():
        return []
    raw = expect_list(parse_json(text, str(path)), str(path))
    return [Action.from_dict(a, f"{path}[{i}]") for i, a in enumerate(raw)]


def _serialize(records: List[dict]) -> str:
    return json.dumps(records, ensure_ascii=False, indent=2) + "\n"


def append_actions(ctx: NoteContext, actions: Sequence[Action]) -> int:
    """Append actions to the log.

    Returns:
        Number of actions appended.

    Raises:
        DecodeError: If the existing log is malformed (nothing is written).
        StorageError: If the log cannot be written (nothing is written).
    """
    if not actions:
        return 0
    existing = read_actions(ctx)
    records = [a.to_dict() for a in existing]
    records.extend(a.to_dict() for a in actions)
    atomic_write_text(ctx.actions_path, _serialize(records))
    logger.debug(f"Appended {len(actions)} action(s), log size {len(records)}")
    return len(actions)


# ---------------------------------------------------------------------------
# Live operation helpers
# ---------------------------------------------------------------------------


def log_insert(
    ctx: NoteContext, note_uuid: str, book_name: str, content: str, ts: int,
) -> None:
    append_actions(ctx, [Action("insert", note_uuid, book_name, content, ts)])


def log_edit(
    ctx: NoteContext, note_uuid: str, book_name: str, content: str, ts: int,
) -> None:
    append_actions(ctx, [Action("edit", note_uuid, book_name, content, ts)])


def log_delete(ctx: NoteContext, note_uuid: str, book_name: str, ts: int) -> None:
    append_actions(ctx, [Action("delete", note_uuid, book_name, "", ts)])
