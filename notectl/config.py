"""
notectl Configuration and Context

Configuration dataclasses for notectl: file layout, migration policy and
search settings.  Includes load_config() for reading a JSON config file with
silent fallback to compiled defaults, and NoteContext, the explicit context
object built once per process and passed to every component.

The current book lives in a small YAML rc file next to the archive
(read_rc / write_rc).
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from notectl.errors import DecodeError, StorageError
from notectl.types import new_uuid


DEFAULT_HOME = "~/.notectl"
DEFAULT_BOOK = "general"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


def _check_filename(errors: List[str], name: str, value) -> None:
    """File names are relative to the home directory and must not escape it."""
    if not isinstance(value, str) or not value:
        errors.append(f"{name}: expected a non-empty file name")
        return
    if os.path.isabs(value) or ".." in Path(value).parts:
        errors.append(f"{name}: {value!r} must stay inside the home directory")


@dataclass
class PathsConfig:
    """File names inside the notectl home directory."""
    archive_file: str = "notes.json"
    schema_file: str = "schema.json"
    actions_file: str = "actions.json"
    legacy_yaml_file: str = "notes-yaml-archived"
    rc_file: str = "notectlrc"
    lock_file: str = ".lock"
    checkpoint_dir: str = ".migrate-checkpoint"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        for name in (
            "archive_file", "schema_file", "actions_file", "legacy_yaml_file",
            "rc_file", "lock_file", "checkpoint_dir",
        ):
            _check_filename(errors, f"paths.{name}", getattr(self, name))
        return errors


@dataclass
class MigrateConfig:
    """Migration engine policy."""
    uuid_max_attempts: int = 10
    use_file_lock: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "migrate.uuid_max_attempts",
                     self.uuid_max_attempts, 1, 1000, int)
        return errors


@dataclass
class FindConfig:
    """Full-text search settings for `notectl find`."""
    fts_tokenizer: str = "unicode61 remove_diacritics 2"
    snippet_tokens: int = 28
    max_results: int = 50

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "find.snippet_tokens",
                     self.snippet_tokens, 1, 64, int)
        _check_range(errors, "find.max_results",
                     self.max_results, 1, 10000, int)
        return errors


@dataclass
class NoteConfig:
    """Top-level notectl configuration."""
    paths: PathsConfig = field(default_factory=PathsConfig)
    migrate: MigrateConfig = field(default_factory=MigrateConfig)
    find: FindConfig = field(default_factory=FindConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> NoteConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "paths" in d:
            kwargs["paths"] = PathsConfig(**d["paths"])
        if "migrate" in d:
            kwargs["migrate"] = MigrateConfig(**d["migrate"])
        if "find" in d:
            kwargs["find"] = FindConfig(**d["find"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.paths.validate())
        errors.extend(self.migrate.validate())
        errors.extend(self.find.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> NoteConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        NoteConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = NoteConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = NoteConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError, AttributeError):
            cfg = NoteConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


def _epoch_now() -> int:
    return int(time.time())


@dataclass
class NoteContext:
    """Everything a component needs to locate and stamp data.

    Built once at process start and passed explicitly; no component reads
    paths or the clock from global state.
    """
    home_dir: Path
    config: NoteConfig = field(default_factory=NoteConfig)
    clock: Callable[[], int] = _epoch_now
    uuid_factory: Callable[[], str] = new_uuid

    def _path(self, name: str) -> Path:
        return self.home_dir / name

    @property
    def archive_path(self) -> Path:
        return self._path(self.config.paths.archive_file)

    @property
    def schema_path(self) -> Path:
        return self._path(self.config.paths.schema_file)

    @property
    def actions_path(self) -> Path:
        return self._path(self.config.paths.actions_file)

    @property
    def legacy_yaml_path(self) -> Path:
        return self._path(self.config.paths.legacy_yaml_file)

    @property
    def rc_path(self) -> Path:
        return self._path(self.config.paths.rc_file)

    @property
    def lock_path(self) -> Path:
        return self._path(self.config.paths.lock_file)

    @property
    def checkpoint_path(self) -> Path:
        return self._path(self.config.paths.checkpoint_dir)

    def now(self) -> int:
        """Current epoch seconds from the context clock."""
        return self.clock()


def build_context(
    home_dir: Optional[str] = None,
    *,
    config_path: Optional[str] = None,
    strict: bool = False,
) -> NoteContext:
    """Build a NoteContext.

    The home directory defaults to ~/.notectl.  The config file defaults to
    <home>/config.json and is optional.
    """
    home = Path(os.path.expanduser(home_dir or DEFAULT_HOME)).resolve()
    if config_path is None:
        candidate = home / "config.json"
        config_path = str(candidate) if candidate.exists() else None
    cfg = load_config(config_path, strict=strict)
    return NoteContext(home_dir=home, config=cfg)


# ---------------------------------------------------------------------------
# rc file (current book)
# ---------------------------------------------------------------------------


def read_rc(ctx: NoteContext) -> Dict[str, Any]:
    """Read the YAML rc file. A missing file yields the default book."""
    try:
        text = ctx.rc_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {"book": DEFAULT_BOOK}
    except OSError as e:
        raise StorageError(f"Failed to read {ctx.rc_path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DecodeError(f"{ctx.rc_path}: invalid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DecodeError(f"{ctx.rc_path}: expected a mapping")
    book = data.get("book") or DEFAULT_BOOK
    if not isinstance(book, str):
        raise DecodeError(f"{ctx.rc_path}: book must be a string")
    data["book"] = book
    return data


def write_rc(ctx: NoteContext, rc: Dict[str, Any]) -> None:
    """Persist the rc file atomically."""
    from notectl.fileio import atomic_write_text

    atomic_write_text(
        ctx.rc_path, yaml.safe_dump(rc, default_flow_style=False, sort_keys=True),
    )


def current_book(ctx: NoteContext) -> str:
    """Name of the book used when a command does not name one."""
    return read_rc(ctx)["book"]
