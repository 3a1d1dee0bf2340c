"""
Tests for notectl.query — FTS5 note search with substring fallback.
"""

import sqlite3

import pytest

import notectl.query as query_mod
from notectl.errors import QueryError
from notectl.query import (
    HL_BEGIN,
    HL_END,
    escape_query,
    find_notes,
    format_snippet,
)
from notectl.types import Book, Note


@pytest.fixture
def archive():
    def book(uuid, name, *contents):
        return Book(
            uuid=uuid,
            name=name,
            notes=[Note(f"{uuid}-{i}", c, 1, 0) for i, c in enumerate(contents)],
        )

    return {
        "b1": book("b1", "algorithm",
                   "quick sort is in-place",
                   "building a heap takes linear time",
                   "merge sort is stable"),
        "b2": book("b2", "js",
                   "closures capture variables",
                   "sort() mutates the array in place"),
    }


class TestEscapeQuery:
    def test_terms_quoted_and_joined(self):
        assert escape_query("building a heap") == '"building" "a" "heap"'

    def test_single_term_has_no_trailing_space(self):
        assert escape_query("heap") == '"heap"'

    def test_collapses_whitespace(self):
        assert escape_query("  merge \t sort ") == '"merge" "sort"'

    def test_embedded_quotes_doubled(self):
        assert escape_query('say "hi"') == '"say" """hi"""'

    def test_operators_neutralized(self):
        assert escape_query("heap OR NEAR(x)") == '"heap" "OR" "NEAR(x)"'

    def test_empty(self):
        assert escape_query("   ") == ""


class TestFormatSnippet:
    def test_plain(self):
        s = f"a {HL_BEGIN}heap{HL_END}\nis fast"
        assert format_snippet(s, color=False) == "a heap is fast"

    def test_color(self):
        s = f"{HL_BEGIN}heap{HL_END}"
        assert format_snippet(s) == "\033[33mheap\033[0m"


class TestFindNotes:
    def test_every_term_must_match(self, archive):
        matches = find_notes(archive, "sort stable")
        assert [(m.book_name, m.index) for m in matches] == [("algorithm", 2)]
        assert matches[0].note_uuid == "b1-2"
        assert HL_BEGIN in matches[0].snippet

    def test_across_books(self, archive):
        matches = find_notes(archive, "sort")
        assert sorted((m.book_name, m.index) for m in matches) == [
            ("algorithm", 0), ("algorithm", 2), ("js", 1),
        ]

    def test_book_filter(self, archive):
        matches = find_notes(archive, "sort", book="js")
        assert [(m.book_name, m.index) for m in matches] == [("js", 1)]

    def test_limit(self, archive):
        assert len(find_notes(archive, "sort", limit=1)) == 1

    def test_empty_query(self, archive):
        assert find_notes(archive, "  ") == []

    def test_operator_words_are_plain_terms(self, archive):
        assert find_notes(archive, "NOT heap") == []

    def test_unsafe_tokenizer_rejected(self, archive):
        with pytest.raises(QueryError, match="tokenizer"):
            find_notes(archive, "sort", tokenizer="unicode61'); DROP TABLE x; --")

    def test_no_match(self, archive):
        assert find_notes(archive, "goroutine") == []


class TestSubstringFallback:
    @pytest.fixture(autouse=True)
    def no_fts(self, monkeypatch):
        def unavailable(*args, **kwargs):
            raise sqlite3.OperationalError("no such module: fts5")

        monkeypatch.setattr(query_mod, "_fts_search", unavailable)

    def test_every_term_must_match(self, archive):
        matches = find_notes(archive, "SORT stable")
        assert [(m.book_name, m.index) for m in matches] == [("algorithm", 2)]

    def test_snippet_highlights_first_term(self, archive):
        [match] = find_notes(archive, "heap")
        assert match.snippet == f"building a {HL_BEGIN}heap{HL_END} takes linear time"

    def test_book_filter_and_limit(self, archive):
        assert [m.index for m in find_notes(archive, "sort", book="algorithm")] == [0, 2]
        assert len(find_notes(archive, "sort", limit=2)) == 2
