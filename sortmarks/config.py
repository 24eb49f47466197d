from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .comparator import SortConfig
from .model import ItemKind


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_opt_bool(name: str, default: Optional[bool]) -> Optional[bool]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_list(name: str, default: List[str]) -> List[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return list(default)
    return [x.strip() for x in v.split(",") if x.strip()]


@dataclass
class Settings:
    # Stores
    places_db: str = ""
    annotations_db: str = ""  # "" => sortmarks-annotations.sqlite next to places_db
    roots: List[str] = field(default_factory=lambda: ["menu", "toolbar", "unfiled"])
    busy_timeout_ms: int = 5000

    # Sorting rules
    auto_sort: bool = True
    sort_by: str = "title"
    sort_reverse: bool = False
    then_sort_by: str = ""
    then_reverse: bool = False
    folder_sort_by: str = "title"
    folder_reverse: bool = False
    distinct_folder_order: Optional[bool] = None  # None => derived from priorities
    case_insensitive: bool = False
    collation_locale: str = ""  # "" => LC_COLLATE from the environment

    # Kind priorities (lower sorts first)
    folder_priority: int = 1
    feed_folder_priority: int = 2
    query_priority: int = 3
    bookmark_priority: int = 4

    # Scheduling
    debounce_s: float = 3.0
    listener_retry_s: float = 0.5
    watch_poll_s: float = 1.0
    jobs: int = 4

    # Logging / UX
    log_level: str = "INFO"
    log_file: str = ""
    no_color: bool = False

    def type_priorities(self) -> Dict[ItemKind, int]:
        return {
            ItemKind.FOLDER: int(self.folder_priority),
            ItemKind.FEED_FOLDER: int(self.feed_folder_priority),
            ItemKind.QUERY: int(self.query_priority),
            ItemKind.BOOKMARK: int(self.bookmark_priority),
            ItemKind.SEPARATOR: 0,
        }

    def folders_sorted_apart(self) -> bool:
        if self.distinct_folder_order is not None:
            return bool(self.distinct_folder_order)
        # Folders only get their own criterion when no other kind shares their slot.
        others = (self.feed_folder_priority, self.query_priority, self.bookmark_priority)
        return all(int(self.folder_priority) != int(p) for p in others)

    def sort_config(self) -> SortConfig:
        return SortConfig(
            primary_key=self.sort_by,
            primary_reverse=self.sort_reverse,
            secondary_key=self.then_sort_by or None,
            secondary_reverse=self.then_reverse,
            distinct_folder_order=self.folders_sorted_apart(),
            folder_key=self.folder_sort_by or None,
            folder_reverse=self.folder_reverse,
            case_insensitive=self.case_insensitive,
        )

    def annotations_path(self) -> Path:
        if self.annotations_db:
            return Path(self.annotations_db).expanduser()
        return Path(self.places_db).expanduser().parent / "sortmarks-annotations.sqlite"

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.places_db = _env_str("SORTMARKS_PLACES_DB", s.places_db)
        s.annotations_db = _env_str("SORTMARKS_ANNOTATIONS_DB", s.annotations_db)
        s.roots = _env_list("SORTMARKS_ROOTS", s.roots)
        s.busy_timeout_ms = _env_int("SORTMARKS_BUSY_TIMEOUT_MS", s.busy_timeout_ms)

        s.auto_sort = _env_bool("SORTMARKS_AUTO_SORT", s.auto_sort)
        s.sort_by = _env_str("SORTMARKS_SORT_BY", s.sort_by)
        s.sort_reverse = _env_bool("SORTMARKS_SORT_REVERSE", s.sort_reverse)
        s.then_sort_by = _env_str("SORTMARKS_THEN_SORT_BY", s.then_sort_by)
        s.then_reverse = _env_bool("SORTMARKS_THEN_REVERSE", s.then_reverse)
        s.folder_sort_by = _env_str("SORTMARKS_FOLDER_SORT_BY", s.folder_sort_by)
        s.folder_reverse = _env_bool("SORTMARKS_FOLDER_REVERSE", s.folder_reverse)
        s.distinct_folder_order = _env_opt_bool("SORTMARKS_DISTINCT_FOLDER_ORDER", s.distinct_folder_order)
        s.case_insensitive = _env_bool("SORTMARKS_CASE_INSENSITIVE", s.case_insensitive)
        s.collation_locale = _env_str("SORTMARKS_COLLATION_LOCALE", s.collation_locale)

        s.folder_priority = _env_int("SORTMARKS_FOLDER_PRIORITY", s.folder_priority)
        s.feed_folder_priority = _env_int("SORTMARKS_FEED_FOLDER_PRIORITY", s.feed_folder_priority)
        s.query_priority = _env_int("SORTMARKS_QUERY_PRIORITY", s.query_priority)
        s.bookmark_priority = _env_int("SORTMARKS_BOOKMARK_PRIORITY", s.bookmark_priority)

        s.debounce_s = _env_float("SORTMARKS_DEBOUNCE_S", s.debounce_s)
        s.listener_retry_s = _env_float("SORTMARKS_LISTENER_RETRY_S", s.listener_retry_s)
        s.watch_poll_s = _env_float("SORTMARKS_WATCH_POLL_S", s.watch_poll_s)
        s.jobs = _env_int("SORTMARKS_JOBS", s.jobs)

        s.log_level = _env_str("SORTMARKS_LOG_LEVEL", s.log_level)
        s.log_file = _env_str("SORTMARKS_LOG_FILE", s.log_file)
        s.no_color = _env_bool("SORTMARKS_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        for k, v in data.items():
            if hasattr(s, k):
                setattr(s, k, v)
        if isinstance(s.roots, str):
            s.roots = [x.strip() for x in s.roots.split(",") if x.strip()]
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
