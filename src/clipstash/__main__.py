import argparse
import asyncio
import base64
import json
import logging
import os
import re
import sqlite3
import sys
from pathlib import Path

from clipstash import __version__
from clipstash.config import LOG_PATH, Settings, parse_duration
from clipstash.errors import (
    ClipboardError,
    ImportFormatError,
    InvalidIdError,
    MigrationError,
    NothingToDeleteError,
    NotFoundError,
    RejectedError,
)
from clipstash.models import ClipboardEntry, MimePreference
from clipstash.redact import SensitivityFilter
from clipstash.storage import StorageManager
from clipstash.utils import ensure_dirs, preview_entry

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_REJECTED = 2

# Set by password managers around copies that must not be kept
CLIPBOARD_STATE_VAR = "CLIPSTASH_CLIPBOARD_STATE"
DISCARD_STATES = ("sensitive", "clear")


def setup_logging(verbosity: int, quiet: bool = False, base_level: int = logging.WARNING, log_file: bool = False,
                  console: bool = True) -> None:
    """Configure the root logger for one CLI run."""
    if quiet:
        level = logging.ERROR
    elif verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = min(base_level, logging.INFO)
    else:
        level = base_level

    handlers: list[logging.Handler] = []
    if log_file:
        ensure_dirs()
        handlers.append(logging.FileHandler(LOG_PATH))
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment settings with any command-line overrides applied."""
    settings = Settings.from_env()
    overrides = {
        "db_path": Path(args.db_path) if args.db_path else None,
        "max_items": args.max_items,
        "max_dedupe_search": args.max_dedupe_search,
        "min_size": args.min_size,
        "max_size": args.max_size,
        "preview_width": args.preview_width,
        "expire_after": args.expire_after,
        "mime_preference": MimePreference(args.mime_type) if args.mime_type else None,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(settings, name, value)
    if args.excluded_apps is not None:
        settings.excluded_apps = [p.strip() for p in args.excluded_apps.split(",") if p.strip()]
    return settings


def open_storage(settings: Settings) -> StorageManager:
    """Open the history database, building the sensitivity filter from settings.

    Raises:
        re.error: If the configured sensitive regex does not compile.
        MigrationError: If the database cannot be brought up to date.
    """
    sensitivity_filter = SensitivityFilter.from_config(settings.sensitive_regex, settings.redact_builtin)
    db_path = str(settings.db_path)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return StorageManager(db_path=db_path, sensitivity_filter=sensitivity_filter)


def entry_to_json(entry: ClipboardEntry) -> dict:
    contents: str | None = None
    if entry.is_text:
        try:
            contents = entry.contents.decode("utf-8")
        except UnicodeDecodeError:
            contents = None
    if contents is None:
        contents = base64.b64encode(entry.contents).decode("ascii")
    return {"id": entry.id, "contents": contents, "mime": entry.mime}


def cmd_store(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    state = os.environ.get(CLIPBOARD_STATE_VAR, "").strip().lower()
    if state in DISCARD_STATES:
        try:
            entry_id = storage.delete_last()
        except NothingToDeleteError:
            logger.info("Clipboard state is %s but there is nothing to delete", state)
            return EXIT_OK
        logger.info("Clipboard state is %s, removed entry %d", state, entry_id)
        return EXIT_OK

    from clipstash.apps import AppExclusion, detect_app_oracle

    exclusion_check = None
    exclusion = AppExclusion(settings.excluded_apps)
    if exclusion:
        oracle = detect_app_oracle()

        def exclusion_check() -> bool:
            return exclusion.matches(oracle.focused_app_name())

    data = sys.stdin.buffer.read()
    try:
        storage.store(
            data,
            dedupe_window=settings.max_dedupe_search,
            capacity=settings.max_items,
            min_size=settings.min_size,
            max_size=settings.max_size,
            exclusion_check=exclusion_check,
        )
    except RejectedError as e:
        logger.warning("Input not stored: %s", e)
        return EXIT_REJECTED
    return EXIT_OK


def cmd_list(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    entries = storage.list_entries(include_expired=args.include_expired)
    if args.format == "json":
        json.dump([entry_to_json(e) for e in entries], sys.stdout)
        sys.stdout.write("\n")
        return EXIT_OK
    for entry in entries:
        print(f"{entry.id}\t{preview_entry(entry.contents, entry.mime, settings.preview_width)}")
    return EXIT_OK


def cmd_decode(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    line = args.input if args.input is not None else sys.stdin.readline()
    try:
        contents = storage.decode(line.rstrip("\r\n"))
    except (InvalidIdError, NotFoundError) as e:
        print(f"decode: {e}", file=sys.stderr)
        return EXIT_FAILURE
    sys.stdout.buffer.write(contents)
    sys.stdout.buffer.flush()
    return EXIT_OK


def cmd_delete(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    if args.arg is None:
        if args.type == "query":
            deleted = storage.delete_by_query(sys.stdin.buffer.read().rstrip(b"\r\n"))
        else:
            deleted = storage.delete_by_ids(sys.stdin)
    else:
        kind = args.type or ("id" if args.arg.strip().isdigit() else "query")
        if kind == "id":
            try:
                entry_id = int(args.arg)
            except ValueError:
                print(f"delete: invalid id: {args.arg!r}", file=sys.stderr)
                return EXIT_FAILURE
            deleted = 1 if storage.delete_entry(entry_id) else 0
        else:
            deleted = storage.delete_by_query(args.arg)

    print(f"Deleted {deleted} entries")
    return EXIT_OK


def cmd_wipe(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    storage.wipe()
    print("History wiped")
    return EXIT_OK


def cmd_trim(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    max_items = args.max if args.max is not None else settings.max_items
    trimmed = storage.trim(max_items)
    print(f"Trimmed {trimmed} entries")
    return EXIT_OK


def cmd_cleanup(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    removed = storage.cleanup_expired()
    print(f"Removed {removed} expired entries")
    return EXIT_OK


def cmd_import(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    try:
        imported = storage.import_tsv(sys.stdin, capacity=settings.max_items)
    except ImportFormatError as e:
        print(f"import: {e}", file=sys.stderr)
        return EXIT_FAILURE
    print(f"Imported {imported} entries")
    return EXIT_OK


def cmd_watch(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    from clipstash.apps import detect_app_oracle
    from clipstash.clipboard import detect_clipboard
    from clipstash.monitor import WatchScheduler

    try:
        clipboard = detect_clipboard()
    except ClipboardError as e:
        logger.error("%s", e)
        return EXIT_FAILURE

    scheduler = WatchScheduler(storage, clipboard, settings, app_oracle=detect_app_oracle())
    try:
        asyncio.run(scheduler.run())
    except KeyboardInterrupt:
        logger.info("Watch daemon stopped")
    return EXIT_OK


def cmd_browse(storage: StorageManager, settings: Settings, args: argparse.Namespace) -> int:
    from clipstash.clipboard import detect_clipboard
    from clipstash.tui import run_browser

    entry = run_browser(storage, settings.preview_width, include_expired=args.include_expired)
    if entry is None:
        return EXIT_OK

    try:
        detect_clipboard().write(entry.contents, entry.mime)
    except ClipboardError as e:
        print(f"browse: failed to copy entry {entry.id}: {e}", file=sys.stderr)
        return EXIT_FAILURE
    logger.info("Copied entry %d to the clipboard", entry.id)
    return EXIT_OK


COMMANDS = {
    "store": cmd_store,
    "list": cmd_list,
    "decode": cmd_decode,
    "delete": cmd_delete,
    "wipe": cmd_wipe,
    "trim": cmd_trim,
    "cleanup": cmd_cleanup,
    "import": cmd_import,
    "watch": cmd_watch,
    "browse": cmd_browse,
}


def _duration(raw: str) -> float:
    try:
        return parse_duration(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipstash",
        description="Clipstash - Clipboard history store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  wl-paste --watch clipstash store     # Store every copy (Wayland)
  clipstash watch                      # Poll the clipboard directly
  clipstash list | fzf | clipstash decode | wl-copy
  clipstash browse                     # Interactive history browser
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--db-path", help="Path to the history database")
    parser.add_argument("--max-items", type=int, help="Maximum number of entries to keep")
    parser.add_argument("--max-dedupe-search", type=int, help="How many recent entries to check for duplicates")
    parser.add_argument("--min-size", type=int, help="Reject entries smaller than this many bytes")
    parser.add_argument("--max-size", type=int, help="Reject entries larger than this many bytes")
    parser.add_argument("--preview-width", type=int, help="Width of text previews")
    parser.add_argument("--expire-after", type=_duration, help="Expire new entries after this long (30s, 5m, 2h)")
    parser.add_argument("--excluded-apps", help="Comma separated applications whose copies are ignored")
    parser.add_argument("--mime-type", choices=[p.value for p in MimePreference], help="Preferred clipboard type")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (repeatable)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sub.add_parser("store", help="Store stdin as a new entry")

    p_list = sub.add_parser("list", help="List entries, most recent first")
    p_list.add_argument("--format", choices=["tsv", "json"], default="tsv")
    p_list.add_argument("--include-expired", action="store_true")

    p_decode = sub.add_parser("decode", help="Write an entry's raw contents to stdout")
    p_decode.add_argument("input", nargs="?", help="Entry id or a line from 'list' (default: stdin)")

    p_delete = sub.add_parser("delete", help="Delete entries by id or by content")
    p_delete.add_argument("arg", nargs="?", help="Id or query (default: ids from stdin)")
    p_delete.add_argument("--type", choices=["id", "query"])

    sub.add_parser("wipe", help="Delete every entry")

    p_trim = sub.add_parser("trim", help="Keep only the newest entries")
    p_trim.add_argument("max", nargs="?", type=int, help="Entries to keep (default: --max-items)")

    sub.add_parser("cleanup", help="Remove entries whose expiry has passed")

    p_import = sub.add_parser("import", help="Import '<id>\\t<text>' lines from stdin")
    p_import.add_argument("--type", choices=["tsv"], default="tsv")

    sub.add_parser("watch", help="Watch the clipboard and store new contents")

    p_browse = sub.add_parser("browse", help="Browse the history interactively")
    p_browse.add_argument("--include-expired", action="store_true")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "watch":
        setup_logging(args.verbose, args.quiet, base_level=logging.INFO, log_file=True)
    elif args.command == "browse":
        # stderr output would corrupt the curses screen
        setup_logging(args.verbose, args.quiet, log_file=True, console=False)
    else:
        setup_logging(args.verbose, args.quiet)

    settings = build_settings(args)
    try:
        storage = open_storage(settings)
    except re.error as e:
        logger.error("Invalid sensitive regex: %s", e)
        return EXIT_FAILURE
    except MigrationError as e:
        logger.error("Database migration failed: %s", e)
        return EXIT_FAILURE
    except sqlite3.Error as e:
        logger.error("Failed to open database %s: %s", settings.db_path, e)
        return EXIT_FAILURE

    with storage:
        try:
            return COMMANDS[args.command](storage, settings, args)
        except sqlite3.Error:
            logger.exception("Command %s failed", args.command)
            return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
