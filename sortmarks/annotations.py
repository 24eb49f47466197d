from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Set

from .errors import AnnotationReadFailure

DO_NOT_SORT = "sortmarks/donotsort"
RECURSIVE = "sortmarks/recursive"


class AnnotationStore:
    """Per-item flags kept in a small SQLite file next to ``places.sqlite``.

    Firefox no longer exposes item annotations to add-ons or external tools,
    so the exclusion flags live in their own database keyed by bookmark id.
    Each call opens its own connection; the store is safe to share between
    sort workers.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)

    def init(self, *, recreate: bool = False) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if recreate and self.db_path.exists():
            self.db_path.unlink()

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS item_flags (
                    item_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    value TEXT NOT NULL DEFAULT '1',
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (item_id, name)
                )
                """
            )
        conn.close()

    def has_flag(self, item_id: int, name: str) -> bool:
        if not self.db_path.exists():
            return False
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT 1 FROM item_flags WHERE item_id = ? AND name = ? LIMIT 1",
                    (int(item_id), name),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise AnnotationReadFailure(f"cannot read {name} for item {item_id}: {e}") from e
        return row is not None

    def flags_for(self, item_ids: Iterable[int]) -> Dict[int, Set[str]]:
        ids = [int(x) for x in item_ids]
        if not ids or not self.db_path.exists():
            return {}
        placeholders = ",".join(["?"] * len(ids))
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                rows = conn.execute(
                    f"SELECT item_id, name FROM item_flags WHERE item_id IN ({placeholders})",
                    ids,
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise AnnotationReadFailure(f"cannot read flags: {e}") from e
        out: Dict[int, Set[str]] = {}
        for item_id, name in rows:
            out.setdefault(int(item_id), set()).add(str(name))
        return out

    def set_flag(self, item_id: int, name: str, value: str = "1") -> None:
        self.init()
        now = datetime.now(timezone.utc).isoformat()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO item_flags (item_id, name, value, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(item_id, name) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (int(item_id), name, value, now),
            )
        conn.close()

    def remove_flag(self, item_id: int, name: str) -> None:
        if not self.db_path.exists():
            return
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM item_flags WHERE item_id = ? AND name = ?", (int(item_id), name))
        conn.close()
