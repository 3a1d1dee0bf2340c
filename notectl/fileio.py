"""
File I/O primitives shared by the schema store, archive writer and action log.

All writes go through atomic_write_text(): the payload is written to a temp
file in the same directory, fsynced, then renamed over the target, so a crash
leaves either the old file or the new one, never a torn write.

OSError is always re-raised as StorageError; malformed JSON as DecodeError.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Iterator, Optional

from notectl.errors import DecodeError, StorageError

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path via write-temp-then-rename."""
    path = Path(path)
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent),
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_name is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)


def write_json(path: Path, payload: Any) -> None:
    """Serialize payload as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def read_text(path: Path) -> Optional[str]:
    """Read a UTF-8 file. Returns None if it does not exist."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as e:
        raise DecodeError(f"{path}: not valid UTF-8: {e}") from e
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e


def parse_json(text: str, where: str) -> Any:
    """Parse JSON text, mapping syntax errors to DecodeError."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"{where}: invalid JSON: {e}") from e


def file_mtime(path: Path) -> int:
    """Modification time in epoch seconds, or 0 if unknown."""
    try:
        return int(Path(path).stat().st_mtime)
    except OSError:
        return 0


def remove_file(path: Path) -> bool:
    """Delete a file. Returns False if it was already absent."""
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError(f"Failed to delete {path}: {e}") from e


def copy_file(src: Path, dst: Path) -> None:
    """Copy a file with metadata, creating dst's parent directory."""
    try:
        Path(dst).parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
    except OSError as e:
        raise StorageError(f"Failed to copy {src} to {dst}: {e}") from e


def restore_file(backup: Path, target: Path) -> None:
    """Atomically put a byte-identical copy of backup at target."""
    target = Path(target)
    tmp_name: Optional[str] = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".restore", dir=str(target.parent),
        )
        os.close(fd)
        shutil.copy2(backup, tmp_name)
        os.replace(tmp_name, target)
        tmp_name = None
    except OSError as e:
        raise StorageError(f"Failed to restore {target} from {backup}: {e}") from e
    finally:
        if tmp_name is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)


def remove_tree(path: Path) -> None:
    """Delete a directory tree if present."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise StorageError(f"Failed to delete {path}: {e}") from e


@contextlib.contextmanager
def file_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive, non-blocking lock on path for the block's duration.

    Raises:
        StorageError: If another process holds the lock.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(path, "a+", encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Failed to open lock file {path}: {e}") from e
    try:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise StorageError(
                f"Archive is locked by another process ({path})"
            ) from e
        except OSError as e:
            raise StorageError(f"Failed to lock {path}: {e}") from e
        logger.debug(f"Acquired lock {path}")
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            logger.debug(f"Released lock {path}")
    finally:
        fh.close()
