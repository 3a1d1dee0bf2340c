"""
Migration Engine — Schema-Versioned Archive Upgrades

Brings an archive from whatever shape it has on disk to the current one:

    v0 -> v1  drop the obsolete YAML archive backup; lift a flat YAML
              archive into the unversioned JSON shape
    v1 -> v2  give every note a UUID, an added_on and edited_on=0
    v2 -> v3  re-key books by UUID; synthesize one insert action per note

Each step is a MigrationStep: a loader that decodes the disk state into the
shape the step expects, a pure transform (no I/O; identifiers and time come
from the context), and an encoder for the persisted document.

Migrator.run() applies the pending steps in ascending order.  A step is
all-or-nothing: the files it touches are checkpointed first, the new
archive, action log and schema version are written, and the checkpoint is
discarded.  If any write fails, the checkpoint is restored and the error
propagates; if the process dies mid-step, the next run restores it before
doing anything else.  The schema version therefore always names the last
fully completed step, and re-running is safe.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from notectl.actions import append_actions
from notectl.config import NoteContext
from notectl.errors import DecodeError, MigrationError, NoteError, VersionError
from notectl.fileio import (
    copy_file,
    file_lock,
    parse_json,
    read_text,
    remove_file,
    remove_tree,
    restore_file,
    write_json,
)
from notectl.legacy import (
    LegacyNote,
    PreV1State,
    UnversionedArchive,
    V2Archive,
    V2Book,
    load_pre_v1,
    load_unversioned,
    load_v2,
    v2_archive_to_dict,
)
from notectl.schema import read_version, write_schema
from notectl.store import write_archive_data
from notectl.types import (
    Action,
    Archive,
    Book,
    Note,
    SchemaRecord,
    archive_to_dict,
    canonical_uuid,
    draw_unique_uuid,
    expect_list,
    expect_mapping,
    is_uuid,
    require_int,
    require_str,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Step definition
# ---------------------------------------------------------------------------


@dataclass
class StepResult:
    """Output of a migration transform."""
    # New archive state; None leaves the archive file untouched
    state: Any = None
    actions: List[Action] = field(default_factory=list)
    obsolete_files: List[Path] = field(default_factory=list)


@dataclass(frozen=True)
class MigrationStep:
    """One version-to-version transform and how to read/write its data."""
    version: int
    name: str
    load: Callable[[NoteContext], Any]
    apply: Callable[[Any, NoteContext], StepResult]
    encode: Callable[[Any], Dict[str, Any]]


# ---------------------------------------------------------------------------
# Step 1: retire the YAML archive
# ---------------------------------------------------------------------------


def migrate_to_v1(state: PreV1State, ctx: NoteContext) -> StepResult:
    """Delete the obsolete YAML archive backup.

    When the archive file is itself still flat YAML, it is rewritten in the
    unversioned JSON shape.  Flat notes carry no metadata, so they are dated
    with the archive's mtime before the rewrite replaces it.
    """
    result = StepResult()
    if state.yaml_archive_present:
        result.obsolete_files.append(ctx.legacy_yaml_path)
    if state.converted_from_yaml:
        stamp = state.archive.mtime or ctx.now()
        result.state = UnversionedArchive(
            books={
                name: [
                    LegacyNote(n.uid, n.content, n.added_on or stamp)
                    for n in notes
                ]
                for name, notes in state.archive.books.items()
            },
            mtime=state.archive.mtime,
        )
    return result


def _encode_unversioned(archive: UnversionedArchive) -> Dict[str, Any]:
    return archive.to_dict()


# ---------------------------------------------------------------------------
# Step 2: assign UUIDs and timestamps
# ---------------------------------------------------------------------------


def migrate_to_v2(archive: UnversionedArchive, ctx: NoteContext) -> StepResult:
    """Give every note a UUID and timestamps.

    A note keeps its identifier, lowercased, only if it is already a proper
    UUID not used by an earlier note in any letter case; legacy short ids,
    empty ids and duplicates get a fresh UUID that collides with nothing in
    the archive.  added_on keeps a legacy
    value, else the archive mtime, else the current time.
    """
    kept: Dict[Tuple[str, int], str] = {}
    taken: set = set()
    for name, notes in archive.books.items():
        for i, note in enumerate(notes):
            if not is_uuid(note.uid):
                continue
            canonical = canonical_uuid(note.uid)
            if canonical not in taken:
                taken.add(canonical)
                kept[(name, i)] = canonical

    max_attempts = ctx.config.migrate.uuid_max_attempts
    fallback_added_on = archive.mtime or ctx.now()
    out: V2Archive = {}
    for name, notes in archive.books.items():
        book = V2Book(name=name)
        for i, note in enumerate(notes):
            note_uuid = kept.get((name, i))
            if note_uuid is None:
                note_uuid = draw_unique_uuid(ctx.uuid_factory, taken, max_attempts)
            book.notes.append(Note(
                uuid=note_uuid,
                content=note.content,
                added_on=note.added_on or fallback_added_on,
                edited_on=0,
            ))
        out[name] = book
    logger.debug(f"v2: {len(kept)} note id(s) kept, {len(taken) - len(kept)} drawn")
    return StepResult(state=out)


# ---------------------------------------------------------------------------
# Step 3: re-key by UUID and synthesize history
# ---------------------------------------------------------------------------


def migrate_to_v3(archive: V2Archive, ctx: NoteContext) -> StepResult:
    """Key books by UUID and emit one insert action per existing note.

    Books and notes keep their order; actions follow it.  Re-keying itself
    produces no action.
    """
    taken = {n.uuid.lower() for book in archive.values() for n in book.notes}
    max_attempts = ctx.config.migrate.uuid_max_attempts
    out: Archive = {}
    actions: List[Action] = []
    for name, v2_book in archive.items():
        book = Book(
            uuid=draw_unique_uuid(ctx.uuid_factory, taken, max_attempts),
            name=name,
            notes=list(v2_book.notes),
        )
        out[book.uuid] = book
        for note in book.notes:
            actions.append(Action(
                kind="insert",
                note_uuid=note.uuid,
                book_name=name,
                content=note.content,
                timestamp=note.added_on,
            ))
    return StepResult(state=out, actions=actions)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

MIGRATION_SEQUENCE: Tuple[MigrationStep, ...] = (
    MigrationStep(1, "remove-yaml-archive", load_pre_v1, migrate_to_v1,
                  _encode_unversioned),
    MigrationStep(2, "assign-note-uuids", load_unversioned, migrate_to_v2,
                  v2_archive_to_dict),
    MigrationStep(3, "key-books-by-uuid", load_v2, migrate_to_v3,
                  archive_to_dict),
)

LATEST_VERSION = len(MIGRATION_SEQUENCE)


# ---------------------------------------------------------------------------
# Checkpoint
# ---------------------------------------------------------------------------


class Checkpoint:
    """Copies of the files a step is about to touch.

    The marker file is written last, so a checkpoint without a marker was
    never completed and nothing was persisted under it.
    """

    MARKER = "checkpoint.json"

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def marker_path(self) -> Path:
        return self.root / self.MARKER

    def save(self, version: int, paths: Sequence[Path]) -> None:
        remove_tree(self.root)
        entries = []
        for i, path in enumerate(paths):
            path = Path(path)
            backup = f"{i}-{path.name}"
            existed = path.exists()
            if existed:
                copy_file(path, self.root / backup)
            entries.append({"path": str(path), "existed": existed, "backup": backup})
        write_json(self.marker_path, {"version": version, "files": entries})

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the marker, or None if there is no complete checkpoint."""
        text = read_text(self.marker_path)
        if text is None:
            return None
        where = str(self.marker_path)
        marker = expect_mapping(parse_json(text, where), where)
        require_int(marker, "version", where)
        for i, entry in enumerate(expect_list(marker.get("files"), f"{where}.files")):
            entry_where = f"{where}.files[{i}]"
            expect_mapping(entry, entry_where)
            require_str(entry, "path", entry_where)
            require_str(entry, "backup", entry_where)
            if not isinstance(entry.get("existed"), bool):
                raise DecodeError(f"{entry_where}.existed: expected a boolean")
        return marker

    def restore(self, marker: Dict[str, Any]) -> None:
        for entry in marker["files"]:
            target = Path(entry["path"])
            if entry["existed"]:
                restore_file(self.root / entry["backup"], target)
            else:
                remove_file(target)

    def discard(self) -> None:
        remove_tree(self.root)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


@dataclass
class MigrationReport:
    """What a migration run did."""
    from_version: int = 0
    to_version: int = 0
    steps_applied: List[str] = field(default_factory=list)
    actions_written: int = 0
    recovered_version: Optional[int] = None

    @property
    def changed(self) -> bool:
        return bool(self.steps_applied) or self.recovered_version is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_version": self.from_version,
            "to_version": self.to_version,
            "steps_applied": list(self.steps_applied),
            "actions_written": self.actions_written,
            "recovered_version": self.recovered_version,
        }


class Migrator:
    """Applies pending migration steps to the archive in ctx.home_dir."""

    def __init__(
        self,
        ctx: NoteContext,
        steps: Sequence[MigrationStep] = MIGRATION_SEQUENCE,
    ):
        for expected, step in enumerate(steps, start=1):
            if step.version != expected:
                raise ValueError(
                    f"Migration step {step.name!r} has version {step.version}, "
                    f"expected {expected}"
                )
        self.ctx = ctx
        self.steps: Tuple[MigrationStep, ...] = tuple(steps)
        self._checkpoint = Checkpoint(ctx.checkpoint_path)

    @property
    def latest_version(self) -> int:
        return len(self.steps)

    def _exclusive(self):
        if self.ctx.config.migrate.use_file_lock:
            return file_lock(self.ctx.lock_path)
        return contextlib.nullcontext()

    def _check_version(self, version: int) -> None:
        if version > self.latest_version:
            raise VersionError(
                f"Archive schema version {version} is newer than the latest "
                f"known version {self.latest_version}; refusing to downgrade"
            )

    def status(self) -> Dict[str, Any]:
        """Current and latest version, with the names of pending steps."""
        version = read_version(self.ctx)
        return {
            "current_version": version,
            "latest_version": self.latest_version,
            "pending": [s.name for s in self.steps[version:]],
        }

    def run(self) -> MigrationReport:
        """Apply every pending step.

        Raises:
            VersionError: If the archive is newer than any known step.
            DecodeError: If a step's input is malformed.
            StorageError: If persisting a step fails.
            IdentifierError: If no unused UUID could be drawn.
        """
        with self._exclusive():
            recovered = self._recover()
            version = read_version(self.ctx)
            self._check_version(version)
            report = MigrationReport(
                from_version=version, to_version=version,
                recovered_version=recovered,
            )
            for step in self.steps[version:]:
                report.actions_written += self._apply(step)
                report.steps_applied.append(step.name)
                report.to_version = step.version
        if report.steps_applied:
            logger.info(
                f"Migrated archive from v{report.from_version} to v{report.to_version}"
            )
        return report

    def _recover(self) -> Optional[int]:
        """Roll back a step interrupted by a crash. Returns its version."""
        marker = self._checkpoint.load()
        if marker is None:
            self._checkpoint.discard()
            return None
        version = read_version(self.ctx)
        if marker["version"] <= version:
            # schema advanced; only the cleanup was lost
            self._checkpoint.discard()
            return None
        if marker["version"] != version + 1:
            raise MigrationError(
                f"Checkpoint for step {marker['version']} does not follow "
                f"schema version {version}"
            )
        logger.warning(
            f"Restoring files from interrupted migration step {marker['version']}"
        )
        self._checkpoint.restore(marker)
        self._checkpoint.discard()
        return marker["version"]

    def _apply(self, step: MigrationStep) -> int:
        ctx = self.ctx
        logger.info(f"Applying migration step {step.version} ({step.name})")
        state = step.load(ctx)
        result = step.apply(state, ctx)

        touched = [ctx.archive_path, ctx.actions_path, *result.obsolete_files]
        self._checkpoint.save(step.version, touched)
        marker = self._checkpoint.load()
        try:
            if result.state is not None:
                write_archive_data(ctx, step.encode(result.state))
            for path in result.obsolete_files:
                if remove_file(path):
                    logger.info(f"Removed obsolete file {path}")
            written = append_actions(ctx, result.actions)
            write_schema(ctx, SchemaRecord(current_version=step.version))
        except Exception:
            logger.error(f"Migration step {step.version} failed; restoring files")
            try:
                self._checkpoint.restore(marker)
                self._checkpoint.discard()
            except NoteError as e:
                # checkpoint stays on disk; the next run restores it
                logger.error(f"Could not restore step {step.version} checkpoint: {e}")
            raise
        self._checkpoint.discard()
        return written


def migrate(ctx: NoteContext) -> MigrationReport:
    """Bring the archive in ctx up to LATEST_VERSION."""
    return Migrator(ctx).run()
