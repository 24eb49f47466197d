"""Debounced, overlap-safe driver for sort passes.

Change signals only set a dirty flag. A periodic tick turns the flag into at
most one pass at a time; signals arriving during a pass are kept for the next
one. While a bulk import runs, signals are ignored outright.
"""

from __future__ import annotations

import enum
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, Optional

from .comparator import Comparator, SortConfig, build_comparator
from .log import get_logger
from .model import DEFAULT_TYPE_PRIORITIES, ItemKind, PassStats, SortResult
from .parallel import run_tasks

log = get_logger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    SORT_PENDING = "sort_pending"
    SORTING = "sorting"


@dataclass(frozen=True)
class SortContext:
    """Everything one pass needs. Replaced as a whole, never mutated."""

    config: SortConfig
    compare: Comparator
    priorities: Dict[ItemKind, int] = field(default_factory=lambda: dict(DEFAULT_TYPE_PRIORITIES))

    @classmethod
    def build(cls, config: SortConfig, priorities: Optional[Dict[ItemKind, int]] = None) -> "SortContext":
        prio = dict(DEFAULT_TYPE_PRIORITIES)
        if priorities:
            prio.update(priorities)
        return cls(config=config, compare=build_comparator(config), priorities=prio)


class ChangeScheduler:
    def __init__(
        self,
        *,
        folders: Callable[[], Iterable[int]],
        sort_folder: Callable[[SortContext, int], SortResult],
        context: SortContext,
        debounce_s: float = 3.0,
        listener_retry_s: float = 0.5,
        jobs: int = 4,
    ):
        self._folders = folders
        self._sort_folder = sort_folder
        self._context = context
        self.debounce_s = debounce_s
        self.listener_retry_s = listener_retry_s
        self.jobs = jobs

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._dirty = False
        self._sorting = False
        self._importing = False
        self.listeners_active = False
        self.passes = 0
        self.last_stats: Optional[PassStats] = None

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            if self._sorting:
                return SchedulerState.SORTING
            if self._dirty:
                return SchedulerState.SORT_PENDING
            return SchedulerState.IDLE

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    @property
    def importing(self) -> bool:
        with self._lock:
            return self._importing

    @property
    def context(self) -> SortContext:
        with self._lock:
            return self._context

    def notify_change(self, source: str = "") -> bool:
        """Record an external change. Returns False when the signal was suppressed."""
        with self._lock:
            if self._importing:
                return False
            self._dirty = True
        log.debug("Change signal%s", f" ({source})" if source else "")
        return True

    def mark_dirty(self) -> bool:
        return self.notify_change("request")

    def begin_import(self) -> None:
        with self._lock:
            self._importing = True
        log.info("Import began; change signals suspended")

    def end_import(self) -> None:
        with self._lock:
            self._importing = False
        log.info("Import ended")

    @contextmanager
    def bulk_import(self) -> Iterator[None]:
        self.begin_import()
        try:
            yield
        finally:
            self.end_import()

    def replace_context(self, context: SortContext) -> None:
        with self._lock:
            self._context = context
        log.info(
            "Sort criteria: %s%s",
            context.config.primary_key,
            f", then {context.config.secondary_key}" if context.config.secondary_key else "",
        )

    def replace_comparator(self, config: SortConfig) -> None:
        """Rebuild the comparator from ``config``, keeping the current priorities."""
        self.replace_context(SortContext.build(config, self.context.priorities))

    def tick(self) -> bool:
        """Run one pass if a change is pending and no pass is active."""
        with self._lock:
            if self._sorting or not self._dirty:
                return False
            self._sorting = True
            self._dirty = False
            ctx = self._context

        stats: Optional[PassStats] = None
        try:
            stats = self._run_pass(ctx)
        except Exception:
            log.exception("Sort pass aborted")
        finally:
            with self._lock:
                self._sorting = False
                self.passes += 1
                if stats is not None:
                    self.last_stats = stats
                self._idle.notify_all()
        return True

    def sort_now(self) -> Optional[PassStats]:
        """Force a full pass, waiting for any running pass to finish first."""
        with self._lock:
            self._dirty = True
            while self._sorting:
                self._idle.wait()
        if not self.tick():
            # Another thread picked the pass up between our wait and tick.
            self.wait_idle()
        return self.last_stats

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            while self._sorting:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
            return True

    def register_listener(self, attach: Callable[[], None], *, stop: Optional[threading.Event] = None) -> bool:
        """Attach a change listener once no pass is running.

        Polls every ``listener_retry_s`` so the listener never starts in the
        middle of a pass and picks up that pass's own writes.
        """
        stop = stop or self._stop
        while True:
            with self._lock:
                if stop.is_set():
                    return False
                if not self._sorting:
                    attach()
                    self.listeners_active = True
                    log.info("Change listener active")
                    return True
            log.debug("Sort pass active; retrying listener registration in %.1fs", self.listener_retry_s)
            if stop.wait(self.listener_retry_s):
                return False

    def run(self, stop: Optional[threading.Event] = None) -> None:
        stop = stop or self._stop
        while not stop.is_set():
            self.tick()
            stop.wait(self.debounce_s)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="sortmarks-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run_pass(self, ctx: SortContext) -> PassStats:
        t0 = time.monotonic()
        stats = PassStats()

        def sort_one(folder_id: int) -> SortResult:
            return self._sort_folder(ctx, folder_id)

        results, failures = run_tasks(
            label="sort",
            items=self._folders(),
            run=sort_one,
            jobs=self.jobs,
            logger=log,
        )
        stats.folders = len(results) + len(failures)
        stats.failed_folders = len(failures)
        for res in results:
            if res.moved:
                stats.moved_folders += 1
            stats.written += res.written
            stats.failed_writes += len(res.failed_writes)
        stats.elapsed_ms = int((time.monotonic() - t0) * 1000)
        log.info(
            "Sort pass: %d folders, %d reordered, %d positions written, %d failed (%d ms)",
            stats.folders,
            stats.moved_folders,
            stats.written,
            stats.failed_folders + stats.failed_writes,
            stats.elapsed_ms,
        )
        return stats
