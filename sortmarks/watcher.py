from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Callable, Optional

from .log import get_logger

log = get_logger(__name__)


class PlacesWatcher:
    """Reports commits made to ``places.sqlite`` by other connections.

    SQLite bumps ``PRAGMA data_version`` on this watcher's private connection
    whenever another connection commits, which covers Firefox itself as well
    as our own sort writes. The latter show up as one extra signal whose pass
    finds nothing to move and writes nothing.
    """

    def __init__(self, db_path: Path | str, on_change: Callable[[str], object], *, poll_s: float = 1.0):
        self.db_path = Path(db_path)
        self.on_change = on_change
        self.poll_s = poll_s
        self.conn: sqlite3.Connection | None = None
        self._last_version: Optional[int] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self) -> bool:
        """Poll once; fire ``on_change`` and return True if the database changed."""
        if self.conn is None:
            uri = f"file:{self.db_path.as_posix()}?mode=ro"
            self.conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        version = int(self.conn.execute("PRAGMA data_version").fetchone()[0])
        previous, self._last_version = self._last_version, version
        if previous is None or previous == version:
            return False
        log.debug("places.sqlite data_version %d -> %d", previous, version)
        self.on_change("places")
        return True

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self.check()  # baseline
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="sortmarks-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        self._last_version = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.poll_s):
            try:
                self.check()
            except sqlite3.Error as e:
                # Firefox may hold an exclusive lock for a moment; try again next poll.
                log.debug("Watcher poll failed: %s", e)
