from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .annotations import DO_NOT_SORT, RECURSIVE, AnnotationStore
from .config import Settings
from .errors import AnnotationReadFailure
from .exclusion import ExclusionResolver
from .log import get_logger
from .model import FolderFlags, ItemKind, PassStats, SortResult
from .places_db import PlacesDB
from .scheduler import ChangeScheduler, SortContext
from .sorter import FolderSorter
from .watcher import PlacesWatcher

log = get_logger(__name__)


class AutoSortService:
    """Wires the stores, resolver, sorter, scheduler and watcher together.

    This is the surface a front end talks to: mark the tree dirty, force a
    sort, read and edit folder exclusion flags, and swap settings.
    """

    def __init__(self, settings: Settings):
        if not settings.places_db:
            raise ValueError("places_db is not configured")
        self.settings = settings
        self.db = PlacesDB(Path(settings.places_db).expanduser(), busy_timeout_ms=settings.busy_timeout_ms)
        self.annotations = AnnotationStore(settings.annotations_path())
        self.resolver = ExclusionResolver(self.db, self.annotations)
        self.scheduler = ChangeScheduler(
            folders=self._pass_folders,
            sort_folder=self._sort_folder,
            context=SortContext.build(settings.sort_config(), settings.type_priorities()),
            debounce_s=settings.debounce_s,
            listener_retry_s=settings.listener_retry_s,
            jobs=settings.jobs,
        )
        self.watcher = PlacesWatcher(self.db.db_path, self.scheduler.notify_change, poll_s=settings.watch_poll_s)
        self._listener_thread: Optional[threading.Thread] = None
        self._listener_stop = threading.Event()

    def __enter__(self) -> "AutoSortService":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        self.db.open()
        self.annotations.init()

    def close(self) -> None:
        self.stop()
        self.db.close()

    def start(self) -> None:
        """Run the debounce loop in the background and attach the watcher when idle."""
        self.scheduler.start()
        if self.settings.auto_sort:
            self._enable_listener()

    def stop(self) -> None:
        self.scheduler.stop()
        self._cancel_listener()
        self.watcher.stop()

    def root_ids(self) -> List[int]:
        out: List[int] = []
        for name in self.settings.roots:
            rid = self.db.get_root_folder_id(name)
            if rid is None:
                log.warning("Bookmark root %r not found in %s", name, self.db.db_path)
                continue
            out.append(rid)
        return out

    def mark_dirty(self) -> bool:
        return self.scheduler.mark_dirty()

    def sort_now(self) -> Optional[PassStats]:
        return self.scheduler.sort_now()

    def sort_folder(self, folder_id: int) -> SortResult:
        return self._sort_folder(self.scheduler.context, folder_id)

    def begin_import(self) -> None:
        self.scheduler.begin_import()

    def end_import(self) -> None:
        self.scheduler.end_import()

    @contextmanager
    def bulk_import(self) -> Iterator[None]:
        """Suppress change signals while an importer rewrites the tree."""
        with self.scheduler.bulk_import():
            yield

    def root_folders(self) -> List[FolderFlags]:
        return self._folder_flags([(rid, self.db.root_label(rid)) for rid in self.root_ids()])

    def child_folders(self, folder_id: int) -> List[FolderFlags]:
        folders = [(c.id, c.title) for c in self.db.child_folders(folder_id) if c.kind is ItemKind.FOLDER]
        return self._folder_flags(folders)

    def set_sort_enabled(self, folder_id: int, enabled: bool) -> None:
        self._require_folder(folder_id)
        if enabled:
            self.annotations.remove_flag(folder_id, DO_NOT_SORT)
        else:
            self.annotations.set_flag(folder_id, DO_NOT_SORT)
        self._flags_changed(folder_id)

    def set_recursive(self, folder_id: int, enabled: bool) -> None:
        self._require_folder(folder_id)
        if enabled:
            self.annotations.set_flag(folder_id, RECURSIVE)
        else:
            self.annotations.remove_flag(folder_id, RECURSIVE)
        self._flags_changed(folder_id)

    def apply_settings(self, settings: Settings) -> None:
        """Swap in new sort criteria; a pass already running keeps its own."""
        self.settings = settings
        self.scheduler.replace_context(SortContext.build(settings.sort_config(), settings.type_priorities()))
        if settings.auto_sort:
            self.scheduler.mark_dirty()

    def set_auto_sort(self, enabled: bool) -> None:
        self.settings.auto_sort = enabled
        if enabled:
            self.watcher.stop()
            self.scheduler.mark_dirty()
            self._enable_listener()
        else:
            self._cancel_listener()
            self.watcher.stop()
            self.scheduler.listeners_active = False

    def _enable_listener(self) -> None:
        if self._listener_thread is not None and self._listener_thread.is_alive():
            return
        self._listener_stop = threading.Event()
        self._listener_thread = threading.Thread(
            target=self.scheduler.register_listener,
            args=(self.watcher.start,),
            kwargs={"stop": self._listener_stop},
            name="sortmarks-listener",
            daemon=True,
        )
        self._listener_thread.start()

    def _cancel_listener(self) -> None:
        self._listener_stop.set()
        if self._listener_thread is not None:
            self._listener_thread.join()
            self._listener_thread = None

    def _pass_folders(self):
        return self.resolver.iter_pass_folders(self.root_ids())

    def _sort_folder(self, ctx: SortContext, folder_id: int) -> SortResult:
        sorter = FolderSorter(self.db, ctx.compare, resolver=self.resolver, priorities=ctx.priorities)
        return sorter.sort_and_save(folder_id)

    def _folder_flags(self, folders: List[Tuple[int, str]]) -> List[FolderFlags]:
        try:
            flags: Dict[int, Set[str]] = self.annotations.flags_for(fid for fid, _ in folders)
        except AnnotationReadFailure as e:
            log.warning("%s; showing folders without flags", e)
            flags = {}
        return [
            FolderFlags(
                id=fid,
                title=title,
                do_not_sort=DO_NOT_SORT in flags.get(fid, ()),
                recursive=RECURSIVE in flags.get(fid, ()),
            )
            for fid, title in folders
        ]

    def _require_folder(self, folder_id: int) -> None:
        kind = self.db.item_kind(folder_id)
        if kind is None:
            raise ValueError(f"folder id not found: {folder_id}")
        if kind is not ItemKind.FOLDER:
            raise ValueError(f"id is not a folder: {folder_id}")

    def _flags_changed(self, folder_id: int) -> None:
        log.info("Updated sort flags for folder %d", folder_id)
        if self.settings.auto_sort:
            self.scheduler.mark_dirty()
