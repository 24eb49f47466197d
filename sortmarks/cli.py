from __future__ import annotations

import argparse
import signal
import sqlite3
import threading
from pathlib import Path
from typing import List

from pydantic import ValidationError

from . import __version__
from .collation import set_collation_locale
from .config import load_settings
from .errors import StoreUnavailable
from .log import LogConfig, get_logger, setup_logging
from .service import AutoSortService

log = get_logger(__name__)


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="sortmarks",
        description="Keep Firefox bookmark folders sorted (places.sqlite).",
    )
    p.add_argument("-V", "--version", action="version", version=f"sortmarks {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--places", default=None, help="Path to places.sqlite (or a Firefox profile dir).")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    srt = sub.add_parser("sort", help="Sort every eligible folder once and exit.")
    srt.add_argument("--folder", type=int, default=None, help="Sort only this folder id.")
    srt.add_argument("--check", action="store_true", help="Run an SQLite integrity check after sorting.")

    sub.add_parser(
        "watch",
        help="Keep sorting as bookmarks change, until interrupted. SIGUSR1/SIGUSR2 pause and resume for imports.",
    )

    fl = sub.add_parser("folders", help="List folders with their exclusion flags.")
    fl.add_argument("--parent", type=int, default=None, help="List child folders of this id (default: roots).")

    ex = sub.add_parser("exclude", help="Stop sorting a folder.")
    ex.add_argument("folder_id", type=int)
    ex.add_argument("--recursive", action="store_true", help="Also skip every sub-folder.")

    inc = sub.add_parser("include", help="Sort a folder again.")
    inc.add_argument("folder_id", type=int)
    inc.add_argument(
        "--recursive-only",
        action="store_true",
        help="Only drop the recursive flag; the folder itself stays excluded.",
    )

    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.places:
        cfg.places_db = _resolve_places_path(args.places)
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color, log_file=cfg.log_file))
    _init_collation(cfg.collation_locale)

    if not cfg.places_db:
        log.error("No places.sqlite given. Use --places or SORTMARKS_PLACES_DB.")
        return 2

    try:
        service = AutoSortService(cfg)
    except ValidationError as e:
        log.error("Invalid sort settings: %s", e)
        return 2

    try:
        with service:
            if args.cmd == "sort":
                return _cmd_sort(service, args)
            if args.cmd == "watch":
                return _cmd_watch(service)
            if args.cmd == "folders":
                return _cmd_folders(service, args)
            if args.cmd == "exclude":
                return _cmd_exclude(service, args)
            if args.cmd == "include":
                return _cmd_include(service, args)
    except StoreUnavailable as e:
        log.error("%s", e)
        return 2
    except sqlite3.OperationalError as e:
        msg = str(e).strip()
        if "locked" in msg.lower() or "busy" in msg.lower():
            log.error("Firefox database is locked (%s). Close Firefox and rerun.", cfg.places_db)
            return 2
        raise
    except ValueError as e:
        log.error("%s", e)
        return 2
    return 2


def _cmd_sort(service: AutoSortService, args) -> int:
    if args.folder is not None:
        res = service.sort_folder(args.folder)
        log.info(
            "Folder %d: %s (%d positions written, %d failed)",
            res.folder_id,
            "reordered" if res.moved else "already sorted",
            res.written,
            len(res.failed_writes),
        )
    else:
        stats = service.sort_now()
        if stats is None:
            log.error("Sort pass did not complete; see log above.")
            return 1
        if stats.failed_folders or stats.failed_writes:
            log.warning("Sort finished with %d failed folders and %d failed writes.", stats.failed_folders, stats.failed_writes)
    if args.check:
        service.db.validate_integrity()
        log.info("Integrity check passed.")
    return 0


def _cmd_watch(service: AutoSortService) -> int:
    done = threading.Event()

    def _on_signal(signum, _frame) -> None:
        log.info("Received signal %d; stopping.", signum)
        done.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)
    if hasattr(signal, "SIGUSR1"):
        # An external importer brackets its run with USR1 / USR2.
        signal.signal(signal.SIGUSR1, lambda _s, _f: service.begin_import())
        signal.signal(signal.SIGUSR2, lambda _s, _f: service.end_import())

    settings = service.settings
    if settings.auto_sort:
        service.mark_dirty()
    else:
        log.warning("Auto-sort is disabled; watching without sorting (set SORTMARKS_AUTO_SORT=1).")
    log.info(
        "Watching %s (debounce %.1fs, roots: %s)",
        settings.places_db,
        settings.debounce_s,
        ", ".join(settings.roots),
    )
    service.start()
    done.wait()
    service.stop()
    return 0


def _cmd_folders(service: AutoSortService, args) -> int:
    rows = service.root_folders() if args.parent is None else service.child_folders(args.parent)
    for f in rows:
        flags = []
        if f.do_not_sort:
            flags.append("excluded")
        if f.recursive:
            flags.append("recursive")
        print(f"{f.id}\t{f.title}\t{','.join(flags) or '-'}")
    return 0


def _cmd_exclude(service: AutoSortService, args) -> int:
    service.set_sort_enabled(args.folder_id, False)
    if args.recursive:
        service.set_recursive(args.folder_id, True)
    log.info("Folder %d excluded%s.", args.folder_id, " with its sub-folders" if args.recursive else "")
    return 0


def _cmd_include(service: AutoSortService, args) -> int:
    service.set_recursive(args.folder_id, False)
    if not args.recursive_only:
        service.set_sort_enabled(args.folder_id, True)
    log.info("Folder %d %s.", args.folder_id, "no longer recursive" if args.recursive_only else "included")
    return 0


def _init_collation(name: str) -> None:
    if set_collation_locale(name) is not None:
        return
    if name:
        log.warning("Collation locale %r is not installed; using the environment locale.", name)
        set_collation_locale("")


def _resolve_places_path(value: str) -> str:
    p = Path(value).expanduser()
    if p.is_dir():
        return str(p / "places.sqlite")
    return str(p)
