"""
Note search for `notectl find`.

The archive is indexed into a throwaway in-memory SQLite FTS5 table and
queried with MATCH; snippet() marks hits with highlight markers that
format_snippet() turns into terminal colors.  If the SQLite build lacks
FTS5, a case-insensitive substring scan (every term must appear) is used.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from notectl.errors import QueryError
from notectl.types import Archive

logger = logging.getLogger(__name__)

HL_BEGIN = "<hl>"
HL_END = "</hl>"
ELLIPSIS = "..."

_YELLOW = "\033[33m"
_RESET = "\033[0m"

_NEWLINES_RE = re.compile(r"\r?\n")
_TOKENIZER_RE = re.compile(r"^[a-zA-Z0-9_ .-]+$")


@dataclass
class NoteMatch:
    """A note matched by a search."""
    book_name: str
    index: int
    note_uuid: str
    snippet: str


def escape_query(s: str) -> str:
    """Quote each whitespace-separated term as an FTS5 string.

    Embedded double quotes are doubled.  Terms are joined by single spaces
    (implicit AND).

        >>> escape_query('merge  sort')
        '"merge" "sort"'
    """
    terms = s.split()
    parts: List[str] = []
    for idx, term in enumerate(terms):
        parts.append('"' + term.replace('"', '""') + '"')
        if idx != len(terms) - 1:
            parts.append(" ")
    return "".join(parts)


def format_snippet(s: str, color: bool = True) -> str:
    """Flatten a snippet onto one line and render highlight markers."""
    body = _NEWLINES_RE.sub(" ", s)
    begin, end = (_YELLOW, _RESET) if color else ("", "")
    return body.replace(HL_BEGIN, begin).replace(HL_END, end)


# ---------------------------------------------------------------------------
# FTS5 search
# ---------------------------------------------------------------------------


def _fts_search(
    archive: Archive,
    query: str,
    book: Optional[str],
    tokenizer: str,
    snippet_tokens: int,
    limit: int,
) -> List[NoteMatch]:
    if not _TOKENIZER_RE.match(tokenizer):
        raise QueryError(f"Unsafe FTS5 tokenizer string: {tokenizer!r}")
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute(
            "CREATE VIRTUAL TABLE note_fts USING fts5("
            "content, book_name UNINDEXED, idx UNINDEXED, note_uuid UNINDEXED, "
            f"tokenize='{tokenizer}')"
        )
        rows = [
            (note.content, b.name, i, note.uuid)
            for b in archive.values()
            if book is None or b.name == book
            for i, note in enumerate(b.notes)
        ]
        conn.executemany(
            "INSERT INTO note_fts (content, book_name, idx, note_uuid) "
            "VALUES (?, ?, ?, ?)",
            rows,
        )
        cur = conn.execute(
            "SELECT book_name, idx, note_uuid, "
            "snippet(note_fts, 0, ?, ?, ?, ?) "
            "FROM note_fts WHERE note_fts MATCH ? ORDER BY rank LIMIT ?",
            (HL_BEGIN, HL_END, ELLIPSIS, snippet_tokens, escape_query(query), limit),
        )
        return [NoteMatch(r[0], int(r[1]), r[2], r[3]) for r in cur.fetchall()]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Substring fallback
# ---------------------------------------------------------------------------


def _highlight(content: str, term: str, width: int) -> str:
    """Window of roughly width characters around the first hit of term."""
    pos = content.lower().find(term.lower())
    start = max(0, pos - width // 2)
    end = min(len(content), pos + len(term) + width // 2)
    hit_end = pos + len(term)
    snippet = (
        content[start:pos] + HL_BEGIN + content[pos:hit_end] + HL_END
        + content[hit_end:end]
    )
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet += ELLIPSIS
    return snippet


def _substring_search(
    archive: Archive, query: str, book: Optional[str], limit: int,
) -> List[NoteMatch]:
    terms = query.split()
    matches: List[NoteMatch] = []
    for b in archive.values():
        if book is not None and b.name != book:
            continue
        for i, note in enumerate(b.notes):
            lowered = note.content.lower()
            if all(t.lower() in lowered for t in terms):
                matches.append(NoteMatch(
                    b.name, i, note.uuid, _highlight(note.content, terms[0], 80),
                ))
                if len(matches) >= limit:
                    return matches
    return matches


def find_notes(
    archive: Archive,
    query: str,
    *,
    book: Optional[str] = None,
    tokenizer: str = "unicode61 remove_diacritics 2",
    snippet_tokens: int = 28,
    limit: int = 50,
) -> List[NoteMatch]:
    """Find notes containing every term of query.

    Args:
        archive: Current-shape archive.
        query: Whitespace-separated keywords.
        book: Restrict to one book by name.
        tokenizer: FTS5 tokenizer string.
        snippet_tokens: Max tokens per snippet.
        limit: Max results.

    Returns:
        Matches, best first when FTS5 ranking is available.
    """
    if not query.split():
        return []
    try:
        return _fts_search(archive, query, book, tokenizer, snippet_tokens, limit)
    except sqlite3.OperationalError as e:
        logger.debug(f"FTS5 unavailable ({e}), using substring search")
        return _substring_search(archive, query, book, limit)
