import sqlite3
import time
from pathlib import Path

from sortmarks.watcher import PlacesWatcher


def _touch(path: Path) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.execute("UPDATE moz_bookmarks SET lastModified = lastModified + 1 WHERE id = 1")
        conn.commit()
    finally:
        conn.close()


def test_check_reports_foreign_commits_once(places_path: Path):
    seen = []
    watcher = PlacesWatcher(places_path, seen.append)
    try:
        assert not watcher.check()
        assert not watcher.check()
        _touch(places_path)
        assert watcher.check()
        assert not watcher.check()
    finally:
        watcher.stop()
    assert seen == ["places"]
    assert watcher.conn is None


def test_background_polling_fires_on_change(places_path: Path):
    seen = []
    watcher = PlacesWatcher(places_path, seen.append, poll_s=0.01)
    watcher.start()
    try:
        assert watcher.running
        _touch(places_path)
        deadline = time.monotonic() + 2
        while not seen and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        watcher.stop()
    assert seen and seen[0] == "places"
    assert not watcher.running


def test_restart_takes_a_fresh_baseline(places_path: Path):
    seen = []
    watcher = PlacesWatcher(places_path, seen.append, poll_s=60)
    watcher.start()
    watcher.stop()
    _touch(places_path)
    watcher.start()
    watcher.stop()
    assert seen == []
