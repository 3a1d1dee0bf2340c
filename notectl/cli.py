"""
notectl CLI — Personal Notes from the Terminal

Commands:
    notectl init                            — create the note home
    notectl migrate                         — upgrade the archive to the latest schema
    notectl status                          — schema version and pending steps
    notectl books                           — list books (* = current)
    notectl use   BOOK                      — set the current book
    notectl add   [BOOK] [-c TEXT]          — add a note
    notectl edit  [BOOK] INDEX [-c TEXT]    — edit a note
    notectl remove [BOOK] INDEX [-y]        — remove a note
    notectl find  "keywords" [-b BOOK]      — full-text search
    notectl log                             — print the action log

Every command except init, migrate and status first migrates the archive.

Environment variables:
    NOTECTL_HOME    Note home directory (default: ~/.notectl)
    EDITOR          Editor used when -c is not given (default: vi)

Precedence (invariant):
    CLI --flag  >  NOTECTL_* env var  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (bad args, malformed archive, locked archive)
    2  Internal failure (unexpected exception)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shlex
import subprocess
import sys
from typing import List, Optional, Tuple

from notectl.errors import NoteError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


def _resolve_home(args: Optional[argparse.Namespace] = None) -> str:
    """Resolve home directory: CLI --home > NOTECTL_HOME > ~/.notectl."""
    from notectl.config import DEFAULT_HOME

    if args and getattr(args, "home", None):
        return args.home
    return _env_str("NOTECTL_HOME", DEFAULT_HOME)


def _context(args: argparse.Namespace):
    from notectl.config import build_context

    config_path = getattr(args, "config", None)
    return build_context(
        _resolve_home(args), config_path=config_path, strict=config_path is not None,
    )


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _json_out(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Home setup and migration preflight
# ---------------------------------------------------------------------------


def _ensure_home(ctx) -> bool:
    """Create the home layout if missing. Returns True for a fresh home."""
    from notectl.config import read_rc, write_rc
    from notectl.schema import init_schema_file
    from notectl.store import write_archive_data

    ctx.home_dir.mkdir(parents=True, exist_ok=True)
    pristine = not any(
        p.exists() for p in (ctx.archive_path, ctx.schema_path, ctx.legacy_yaml_path)
    )
    if pristine:
        write_archive_data(ctx, {})
    init_schema_file(ctx, pristine=pristine)
    if not ctx.rc_path.exists():
        write_rc(ctx, read_rc(ctx))
    return pristine


def _prepare(args: argparse.Namespace):
    """Build the context, set up the home and apply pending migrations."""
    from notectl.migrate import migrate

    ctx = _context(args)
    _ensure_home(ctx)
    report = migrate(ctx)
    if report.changed:
        _info(
            f"Migrated archive v{report.from_version} -> v{report.to_version} "
            f"({report.actions_written} action(s) logged)"
        )
    return ctx


def _book_and_index(ctx, target: List[str]) -> Tuple[str, int]:
    """Parse [BOOK] INDEX positional arguments."""
    from notectl.config import current_book

    if len(target) == 1:
        book, raw_index = current_book(ctx), target[0]
    elif len(target) == 2:
        book, raw_index = target
    else:
        raise NoteError("Expected [BOOK] INDEX")
    try:
        return book, int(raw_index)
    except ValueError:
        raise NoteError(f"Invalid note index: {raw_index!r}") from None


def _editor_input(ctx, initial: str) -> str:
    """Open $EDITOR on a temp file seeded with initial text; return the result."""
    import tempfile

    editor = shlex.split(_env_str("EDITOR", "vi"))
    fd, path = tempfile.mkstemp(prefix="note-", suffix=".md", dir=str(ctx.home_dir))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(initial)
        rc = subprocess.run(editor + [path]).returncode
        if rc != 0:
            raise NoteError(f"Editor exited with status {rc}")
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()
    finally:
        os.unlink(path)


# ===========================================================================
# Command: init
# ===========================================================================


def cmd_init(args: argparse.Namespace) -> None:
    """Create the note home (idempotent)."""
    ctx = _context(args)
    if _ensure_home(ctx):
        _info(f"Note home initialized: {ctx.home_dir}")
    else:
        _info(f"Note home exists: {ctx.home_dir}")
    print(f'export NOTECTL_HOME="{ctx.home_dir}"')


# ===========================================================================
# Command: migrate / status
# ===========================================================================


def cmd_migrate(args: argparse.Namespace) -> None:
    """Apply pending schema migrations."""
    from notectl.migrate import migrate

    ctx = _context(args)
    _ensure_home(ctx)
    report = migrate(ctx)

    if getattr(args, "json", False):
        payload = report.to_dict()
        payload["status"] = "ok"
        _json_out(payload)
        return
    if report.recovered_version is not None:
        print(f"Rolled back interrupted step {report.recovered_version}")
    if not report.steps_applied:
        print(f"Archive is up to date (v{report.to_version})")
        return
    print(f"Migrated v{report.from_version} -> v{report.to_version}:")
    for name in report.steps_applied:
        print(f"  {name}")
    print(f"  Actions logged: {report.actions_written}")


def cmd_status(args: argparse.Namespace) -> None:
    """Show schema version and pending steps."""
    from notectl.migrate import Migrator

    status = Migrator(_context(args)).status()
    if getattr(args, "json", False):
        _json_out(status)
        return
    print(f"Schema version: {status['current_version']} "
          f"(latest: {status['latest_version']})")
    for name in status["pending"]:
        print(f"  pending: {name}")


# ===========================================================================
# Command: books / use
# ===========================================================================


def cmd_books(args: argparse.Namespace) -> None:
    """List books, marking the current one."""
    from notectl.config import current_book
    from notectl.store import book_names, read_archive

    ctx = _prepare(args)
    names = book_names(read_archive(ctx))
    current = current_book(ctx)
    if getattr(args, "json", False):
        _json_out({"current": current, "books": names})
        return
    for name in names:
        marker = "*" if name == current else " "
        print(f"{marker} {name}")


def cmd_use(args: argparse.Namespace) -> None:
    """Set the current book."""
    from notectl.config import read_rc, write_rc

    ctx = _prepare(args)
    rc = read_rc(ctx)
    rc["book"] = args.book
    write_rc(ctx, rc)
    _info(f"Now using book {args.book}")


# ===========================================================================
# Command: add / edit / remove
# ===========================================================================


def cmd_add(args: argparse.Namespace) -> None:
    """Add a note to a book."""
    from notectl.config import current_book
    from notectl.store import add_note

    ctx = _prepare(args)
    book = args.book or current_book(ctx)
    content = args.content if args.content is not None else _editor_input(ctx, "")
    note = add_note(ctx, book, content)
    if getattr(args, "json", False):
        _json_out({"status": "ok", "book": book, "note": note.to_dict()})
        return
    _info(f"Added note to {book}")


def cmd_edit(args: argparse.Namespace) -> None:
    """Edit a note by index."""
    from notectl.store import edit_note, get_book, get_note, read_archive

    ctx = _prepare(args)
    book, index = _book_and_index(ctx, args.target)
    content = args.content
    if content is None:
        current = get_note(get_book(read_archive(ctx), book), index)
        content = _editor_input(ctx, current.content)
    note = edit_note(ctx, book, index, content)
    if getattr(args, "json", False):
        _json_out({"status": "ok", "book": book, "note": note.to_dict()})
        return
    _info(f"new content: {note.content}")
    _info("Edited the note")


def cmd_remove(args: argparse.Namespace) -> None:
    """Remove a note by index."""
    from notectl.store import get_book, get_note, read_archive, remove_note

    ctx = _prepare(args)
    book, index = _book_and_index(ctx, args.target)
    if not args.yes:
        preview = get_note(get_book(read_archive(ctx), book), index).content
        answer = input(f"Remove note {index} from {book} ({preview!r})? [Y/n]: ")
        if answer.strip().lower() not in ("", "y", "yes"):
            _info("Aborted")
            return
    remove_note(ctx, book, index)
    _info(f"Removed note {index} from {book}")


# ===========================================================================
# Command: find / log
# ===========================================================================


def cmd_find(args: argparse.Namespace) -> None:
    """Full-text search over notes."""
    from notectl.query import find_notes, format_snippet
    from notectl.store import read_archive

    ctx = _prepare(args)
    cfg = ctx.config.find
    limit = cfg.max_results
    if args.k is not None:
        if args.k < 1:
            raise NoteError(f"-k must be a positive integer, got {args.k}")
        limit = args.k
    matches = find_notes(
        read_archive(ctx), args.query,
        book=args.book,
        tokenizer=cfg.fts_tokenizer,
        snippet_tokens=cfg.snippet_tokens,
        limit=limit,
    )
    if getattr(args, "json", False):
        _json_out([
            {
                "book": m.book_name, "index": m.index, "uuid": m.note_uuid,
                "snippet": format_snippet(m.snippet, color=False),
            }
            for m in matches
        ])
        return
    color = sys.stdout.isatty()
    for m in matches:
        print(f"({m.book_name}) ({m.index}) {format_snippet(m.snippet, color=color)}")


def cmd_log(args: argparse.Namespace) -> None:
    """Print the action log."""
    from notectl.actions import read_actions

    ctx = _prepare(args)
    actions = read_actions(ctx)
    if getattr(args, "json", False):
        _json_out([a.to_dict() for a in actions])
        return
    for a in actions:
        print(f"{a.timestamp} {a.kind:6s} {a.book_name} {a.note_uuid}")


# ===========================================================================
# Entry point
# ===========================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the notectl argument parser."""
    # SUPPRESS defaults keep subparser defaults from overriding values parsed
    # at the main-parser level (argparse parents quirk).
    _home_default = _env_str("NOTECTL_HOME", "~/.notectl")
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--home", default=argparse.SUPPRESS,
        help=f"Note home directory (default: {_home_default})",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (default: <home>/config.json if present)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="notectl",
        description="notectl — personal notes with a versioned archive",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("init", parents=[_common], help="Create the note home")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("migrate", parents=[_common], help="Apply pending migrations")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("status", parents=[_common], help="Show schema version")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("books", aliases=["b"], parents=[_common], help="List books")
    p.set_defaults(func=cmd_books)

    p = sub.add_parser("use", parents=[_common], help="Set the current book")
    p.add_argument("book", help="Book name")
    p.set_defaults(func=cmd_use)

    p = sub.add_parser("add", aliases=["a"], parents=[_common], help="Add a note")
    p.add_argument("book", nargs="?", default=None,
                   help="Book name (default: current book)")
    p.add_argument("-c", "--content", default=None,
                   help="Note content (default: open $EDITOR)")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("edit", aliases=["e"], parents=[_common], help="Edit a note")
    p.add_argument("target", nargs="+", metavar="[BOOK] INDEX")
    p.add_argument("-c", "--content", default=None,
                   help="New content (default: open $EDITOR)")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("remove", aliases=["rm"], parents=[_common], help="Remove a note")
    p.add_argument("target", nargs="+", metavar="[BOOK] INDEX")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("find", aliases=["f"], parents=[_common], help="Find notes by keywords")
    p.add_argument("query", help="Keywords")
    p.add_argument("-b", "--book", default=None, help="Restrict to one book")
    p.add_argument("-k", type=int, default=None, help="Max results")
    p.set_defaults(func=cmd_find)

    p = sub.add_parser("log", parents=[_common], help="Print the action log")
    p.set_defaults(func=cmd_log)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: notectl <command> [args]."""
    global _quiet

    parser = build_parser()
    args = parser.parse_args(argv)

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from notectl.config import ValidationError

    try:
        args.func(args)
    except BrokenPipeError:
        # e.g. notectl log | head
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except (NoteError, ValidationError) as e:
        _warn(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
