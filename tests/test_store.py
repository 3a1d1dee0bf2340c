"""
Tests for notectl.store — archive persistence and live note operations.
"""

import fcntl
import json
import uuid

import pytest

import notectl.actions as actions_mod
import notectl.store as store_mod
from conftest import NOW
from notectl.actions import read_actions
from notectl.errors import (
    BookNotFound,
    DecodeError,
    NoteNotFound,
    NothingChanged,
    StorageError,
    VersionError,
)
from notectl.schema import write_schema
from notectl.store import (
    add_note,
    book_names,
    edit_note,
    get_book,
    read_archive,
    remove_note,
)
from notectl.types import SchemaRecord


def _uuid(n):
    return str(uuid.UUID(int=n))


# ---------------------------------------------------------------------------
# Archive I/O
# ---------------------------------------------------------------------------


class TestReadArchive:
    def test_missing_is_empty(self, ctx):
        assert read_archive(ctx) == {}

    def test_key_must_match_book_uuid(self, ctx, write_archive_json):
        write_archive_json({
            "not-the-uuid": {"uuid": _uuid(1), "name": "js", "notes": []},
        })
        with pytest.raises(DecodeError, match="does not match"):
            read_archive(ctx)

    def test_name_keyed_archive_rejected(self, ctx, write_archive_json, v2_archive):
        write_archive_json(v2_archive)
        with pytest.raises(DecodeError):
            read_archive(ctx)


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------


class TestAddNote:
    def test_creates_book(self, current_ctx):
        note = add_note(current_ctx, "js", "closures capture variables")
        archive = read_archive(current_ctx)
        assert list(archive) == [_uuid(1)]
        assert archive[_uuid(1)].name == "js"
        assert archive[_uuid(1)].notes == [note]
        assert note.uuid == _uuid(2)
        assert note.added_on == NOW
        assert note.edited_on == 0

    def test_appends_to_existing_book(self, current_ctx):
        add_note(current_ctx, "js", "first")
        add_note(current_ctx, "js", "second")
        book = get_book(read_archive(current_ctx), "js")
        assert [n.content for n in book.notes] == ["first", "second"]

    def test_logs_insert(self, current_ctx):
        note = add_note(current_ctx, "js", "  promises are eager\n")
        assert note.content == "promises are eager"
        [action] = read_actions(current_ctx)
        assert action.kind == "insert"
        assert action.note_uuid == note.uuid
        assert action.book_name == "js"
        assert action.content == "promises are eager"
        assert action.timestamp == NOW

    def test_empty_content_rejected(self, current_ctx):
        with pytest.raises(NothingChanged):
            add_note(current_ctx, "js", "   \n")
        assert read_archive(current_ctx) == {}
        assert read_actions(current_ctx) == []

    def test_requires_latest_schema(self, current_ctx):
        write_schema(current_ctx, SchemaRecord(current_version=2))
        with pytest.raises(VersionError):
            add_note(current_ctx, "js", "closures")
        assert current_ctx.archive_path.read_text(encoding="utf-8") == "{}"

    def test_locked_archive(self, current_ctx):
        with open(current_ctx.lock_path, "a+") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            try:
                with pytest.raises(StorageError, match="locked"):
                    add_note(current_ctx, "js", "closures")
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        assert read_archive(current_ctx) == {}


# ---------------------------------------------------------------------------
# edit / remove
# ---------------------------------------------------------------------------


class TestEditNote:
    def test_edit(self, current_ctx):
        added = add_note(current_ctx, "js", "closures")
        edited = edit_note(current_ctx, "js", 0, "closures capture by reference")
        assert edited.uuid == added.uuid
        assert edited.edited_on == NOW
        assert edited.added_on == added.added_on
        assert [a.kind for a in read_actions(current_ctx)] == ["insert", "edit"]
        assert read_actions(current_ctx)[1].content == "closures capture by reference"

    def test_empty_content_rejected(self, current_ctx):
        add_note(current_ctx, "js", "closures")
        with pytest.raises(NothingChanged):
            edit_note(current_ctx, "js", 0, "  \n")
        assert get_book(read_archive(current_ctx), "js").notes[0].content == "closures"
        assert len(read_actions(current_ctx)) == 1

    def test_unchanged_content(self, current_ctx):
        add_note(current_ctx, "js", "closures")
        with pytest.raises(NothingChanged):
            edit_note(current_ctx, "js", 0, "closures\n")
        assert len(read_actions(current_ctx)) == 1

    def test_unknown_book(self, current_ctx):
        with pytest.raises(BookNotFound):
            edit_note(current_ctx, "go", 0, "goroutines")

    @pytest.mark.parametrize("index", [1, -1])
    def test_bad_index(self, current_ctx, index):
        add_note(current_ctx, "js", "closures")
        with pytest.raises(NoteNotFound):
            edit_note(current_ctx, "js", index, "anything")


class TestRemoveNote:
    def test_remove(self, current_ctx):
        add_note(current_ctx, "js", "first")
        second = add_note(current_ctx, "js", "second")
        removed = remove_note(current_ctx, "js", 1)
        assert removed.uuid == second.uuid
        book = get_book(read_archive(current_ctx), "js")
        assert [n.content for n in book.notes] == ["first"]
        last = read_actions(current_ctx)[-1]
        assert (last.kind, last.note_uuid, last.content) == ("delete", second.uuid, "")

    def test_book_survives_last_note(self, current_ctx):
        add_note(current_ctx, "js", "only")
        remove_note(current_ctx, "js", 0)
        assert book_names(read_archive(current_ctx)) == ["js"]

    def test_missing_note(self, current_ctx):
        add_note(current_ctx, "js", "only")
        with pytest.raises(NoteNotFound):
            remove_note(current_ctx, "js", 3)

    def test_archive_written_as_uuid_keyed_json(self, current_ctx):
        add_note(current_ctx, "js", "closures")
        data = json.loads(current_ctx.archive_path.read_text(encoding="utf-8"))
        assert data == {
            _uuid(1): {
                "uuid": _uuid(1),
                "name": "js",
                "notes": [{
                    "uuid": _uuid(2),
                    "content": "closures",
                    "added_on": NOW,
                    "edited_on": 0,
                }],
            },
        }


# ---------------------------------------------------------------------------
# Archive and action log change together
# ---------------------------------------------------------------------------


class TestLoggedChange:
    def test_malformed_log_leaves_archive_untouched(self, current_ctx):
        current_ctx.actions_path.write_text("not json", encoding="utf-8")
        with pytest.raises(DecodeError):
            add_note(current_ctx, "js", "closures")
        assert read_archive(current_ctx) == {}
        assert current_ctx.actions_path.read_text(encoding="utf-8") == "not json"

    def test_failed_log_write_leaves_archive_untouched(self, current_ctx, monkeypatch):
        add_note(current_ctx, "js", "closures")
        before = current_ctx.archive_path.read_bytes()

        def failing(path, text):
            raise StorageError("disk full")

        monkeypatch.setattr(actions_mod, "atomic_write_text", failing)
        with pytest.raises(StorageError):
            edit_note(current_ctx, "js", 0, "closures capture by reference")
        with pytest.raises(StorageError):
            remove_note(current_ctx, "js", 0)
        assert current_ctx.archive_path.read_bytes() == before

    def test_failed_archive_write_rolls_back_log(self, current_ctx, monkeypatch):
        add_note(current_ctx, "js", "closures")
        archive_before = current_ctx.archive_path.read_bytes()
        log_before = current_ctx.actions_path.read_bytes()

        def failing(ctx, data):
            raise StorageError("disk full")

        monkeypatch.setattr(store_mod, "write_archive_data", failing)
        with pytest.raises(StorageError, match="disk full"):
            add_note(current_ctx, "js", "promises")
        with pytest.raises(StorageError, match="disk full"):
            remove_note(current_ctx, "js", 0)
        assert current_ctx.archive_path.read_bytes() == archive_before
        assert current_ctx.actions_path.read_bytes() == log_before

    def test_first_action_rolled_back_to_no_log(self, current_ctx, monkeypatch):
        def failing(ctx, data):
            raise StorageError("disk full")

        monkeypatch.setattr(store_mod, "write_archive_data", failing)
        with pytest.raises(StorageError):
            add_note(current_ctx, "js", "closures")
        assert not current_ctx.actions_path.exists()
        assert current_ctx.archive_path.read_text(encoding="utf-8") == "{}"
