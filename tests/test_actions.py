"""
Tests for notectl.actions — append-only action log.
"""

import json

import pytest

import notectl.actions as actions_mod
from notectl.actions import (
    append_actions,
    log_delete,
    log_edit,
    log_insert,
    read_actions,
)
from notectl.errors import DecodeError, StorageError
from notectl.types import Action


def _insert(n):
    return Action("insert", f"note-{n}", "algorithm", f"content {n}", 1000 + n)


class TestAppendActions:
    def test_missing_log_is_empty(self, ctx):
        assert read_actions(ctx) == []

    def test_append_to_empty(self, ctx):
        assert append_actions(ctx, [_insert(1), _insert(2)]) == 2
        data = json.loads(ctx.actions_path.read_text(encoding="utf-8"))
        assert data == [
            {"kind": "insert", "note_uuid": "note-1", "book_name": "algorithm",
             "content": "content 1", "timestamp": 1001},
            {"kind": "insert", "note_uuid": "note-2", "book_name": "algorithm",
             "content": "content 2", "timestamp": 1002},
        ]

    def test_preserves_existing_order(self, ctx):
        append_actions(ctx, [_insert(3), _insert(1)])
        append_actions(ctx, [_insert(2)])
        assert [a.note_uuid for a in read_actions(ctx)] == ["note-3", "note-1", "note-2"]

    def test_no_deduplication(self, ctx):
        append_actions(ctx, [_insert(1)])
        append_actions(ctx, [_insert(1)])
        assert read_actions(ctx) == [_insert(1), _insert(1)]

    def test_empty_append_writes_nothing(self, ctx):
        assert append_actions(ctx, []) == 0
        assert not ctx.actions_path.exists()

    def test_malformed_log_not_overwritten(self, ctx):
        ctx.actions_path.write_text('{"kind": "insert"}', encoding="utf-8")
        with pytest.raises(DecodeError):
            append_actions(ctx, [_insert(1)])
        assert ctx.actions_path.read_text(encoding="utf-8") == '{"kind": "insert"}'

    def test_unknown_kind_rejected(self, ctx):
        ctx.actions_path.write_text(
            '[{"kind": "rename", "note_uuid": "x", "book_name": "b", '
            '"content": "", "timestamp": 1}]',
            encoding="utf-8",
        )
        with pytest.raises(DecodeError, match="rename"):
            read_actions(ctx)

    def test_failed_write_is_all_or_nothing(self, ctx, monkeypatch):
        append_actions(ctx, [_insert(1)])
        before = ctx.actions_path.read_bytes()

        def failing(path, text):
            raise StorageError("disk full")

        monkeypatch.setattr(actions_mod, "atomic_write_text", failing)
        with pytest.raises(StorageError):
            append_actions(ctx, [_insert(2), _insert(3)])
        assert ctx.actions_path.read_bytes() == before


class TestLiveHelpers:
    def test_insert_edit_delete(self, ctx):
        log_insert(ctx, "u1", "js", "closures", 10)
        log_edit(ctx, "u1", "js", "closures capture", 20)
        log_delete(ctx, "u1", "js", 30)
        got = [(a.kind, a.content, a.timestamp) for a in read_actions(ctx)]
        assert got == [
            ("insert", "closures", 10),
            ("edit", "closures capture", 20),
            ("delete", "", 30),
        ]

    def test_action_kind_validated(self):
        with pytest.raises(ValueError):
            Action("upsert", "u1", "js")
