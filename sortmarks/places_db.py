from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import StoreUnavailable, StoreWriteFailure
from .log import get_logger
from .model import DEFAULT_TYPE_PRIORITIES, Item, ItemKind

log = get_logger(__name__)

TYPE_BOOKMARK = 1
TYPE_FOLDER = 2
TYPE_SEPARATOR = 3

FEED_ANNO = "livemark/feedURI"
DESCRIPTION_ANNO = "bookmarkProperties/description"
QUERY_SCHEME = "place:"

ROOT_LABELS = {
    "toolbar": "Bookmarks Toolbar",
    "menu": "Bookmarks Menu",
    "unfiled": "Other Bookmarks",
    "mobile": "Mobile Bookmarks",
    "tags": "Tags",
}

_ROOT_GUID_TO_NAME = {
    "menu________": "menu",
    "toolbar_____": "toolbar",
    "tags________": "tags",
    "unfiled_____": "unfiled",
    "mobile______": "mobile",
}

_PLACES_ROOT_GUID = "root________"


class PlacesDB:
    """Bookmark store backed by Firefox's ``places.sqlite``.

    One connection is shared by the scheduler thread and the per-folder sort
    workers, so every statement runs under ``self._lock``.
    """

    def __init__(self, db_path: Path | str, *, readonly: bool = False, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.readonly = readonly
        self.busy_timeout_ms = max(0, int(busy_timeout_ms))
        self.conn: sqlite3.Connection | None = None
        self.root_ids: Dict[str, int] = {}
        self.places_root_id: Optional[int] = None
        self._lock = threading.RLock()
        self._has_guid = False
        self._has_visit_stats = False
        self._has_sync_counter = False
        self._keyword_mode = ""  # "place" | "bookmark" | ""
        self._has_item_annos = False

    def __enter__(self) -> "PlacesDB":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        if not self.db_path.exists():
            raise StoreUnavailable(f"places database not found: {self.db_path}")
        mode = "ro" if self.readonly else "rw"
        uri = f"file:{self.db_path.as_posix()}?mode={mode}"
        timeout_s = max(0.1, self.busy_timeout_ms / 1000.0) if self.busy_timeout_ms > 0 else 0.1
        try:
            self.conn = sqlite3.connect(uri, uri=True, timeout=timeout_s, check_same_thread=False)
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"cannot open {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        if self.busy_timeout_ms > 0:
            self.conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        self._has_guid = self._has_column("moz_bookmarks", "guid")
        self._has_sync_counter = self._has_column("moz_bookmarks", "syncChangeCounter")
        self._has_visit_stats = self._has_column("moz_places", "visit_count") and self._has_column(
            "moz_places", "last_visit_date"
        )
        if self._has_table("moz_keywords"):
            if self._has_column("moz_keywords", "place_id"):
                self._keyword_mode = "place"
            elif self._has_column("moz_bookmarks", "keyword_id"):
                self._keyword_mode = "bookmark"
        self._has_item_annos = self._has_table("moz_items_annos") and self._has_table("moz_anno_attributes")
        self.root_ids = self._discover_root_ids()
        self.places_root_id = self._discover_places_root()

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def get_root_folder_id(self, name: str) -> Optional[int]:
        return self.root_ids.get(name)

    def root_label(self, folder_id: int) -> str:
        for name, rid in self.root_ids.items():
            if rid == folder_id:
                return ROOT_LABELS.get(name, name.title())
        return ""

    def is_places_root(self, item_id: int) -> bool:
        return self.places_root_id is not None and item_id == self.places_root_id

    def exists(self, item_id: int) -> bool:
        with self._lock:
            row = self._cursor().execute("SELECT 1 FROM moz_bookmarks WHERE id = ?", (item_id,)).fetchone()
        return row is not None

    def parent_of(self, item_id: int) -> Optional[int]:
        with self._lock:
            row = self._cursor().execute("SELECT parent FROM moz_bookmarks WHERE id = ?", (item_id,)).fetchone()
        if not row or not row["parent"]:
            return None
        return int(row["parent"])

    def item_kind(self, item_id: int) -> Optional[ItemKind]:
        with self._lock:
            row = self._cursor().execute(
                """
                SELECT b.type, p.url
                FROM moz_bookmarks b
                LEFT JOIN moz_places p ON p.id = b.fk
                WHERE b.id = ?
                """,
                (item_id,),
            ).fetchone()
            if not row:
                return None
            return self._kind_for(item_id, int(row["type"] or 0), row["url"])

    def children(self, folder_id: int, *, priorities: Optional[Mapping[ItemKind, int]] = None) -> List[Item]:
        """Direct children of ``folder_id`` in their current order, separators included."""
        prio = dict(DEFAULT_TYPE_PRIORITIES)
        if priorities:
            prio.update(priorities)
        visit_cols = "p.visit_count, p.last_visit_date" if self._has_visit_stats else "0 AS visit_count, 0 AS last_visit_date"
        with self._lock:
            rows = self._cursor().execute(
                f"""
                SELECT b.id, b.type, b.parent, b.position, b.title, b.dateAdded, b.lastModified, b.fk,
                       p.url, {visit_cols}
                FROM moz_bookmarks b
                LEFT JOIN moz_places p ON p.id = b.fk
                WHERE b.parent = ?
                ORDER BY b.position, b.id
                """,
                (folder_id,),
            ).fetchall()
            out: List[Item] = []
            for r in rows:
                item = self._item_from_row(r)
                item.type_priority = prio.get(item.kind, 0)
                out.append(item)
        return out

    def child_folders(self, folder_id: int) -> List[Item]:
        """Direct child containers (plain folders and feed folders) in position order."""
        with self._lock:
            rows = self._cursor().execute(
                """
                SELECT id, type, parent, position, title, dateAdded, lastModified
                FROM moz_bookmarks
                WHERE parent = ? AND type = ?
                ORDER BY position, id
                """,
                (folder_id, TYPE_FOLDER),
            ).fetchall()
            out: List[Item] = []
            for r in rows:
                fid = int(r["id"])
                kind = ItemKind.FEED_FOLDER if self._has_item_anno(fid, FEED_ANNO) else ItemKind.FOLDER
                out.append(
                    Item(
                        id=fid,
                        parent_id=int(r["parent"] or 0),
                        kind=kind,
                        index=int(r["position"] or 0),
                        title=(r["title"] or "").strip(),
                        date_added=int(r["dateAdded"] or 0),
                        last_modified=int(r["lastModified"] or 0),
                    )
                )
        return out

    def set_positions(self, folder_id: int, positions: Iterable[Tuple[int, int]]) -> List[StoreWriteFailure]:
        """Write ``(item_id, position)`` pairs for children of ``folder_id`` in one transaction.

        A rejected row is reported and skipped; the rest of the batch still
        commits.
        """
        self._assert_writable()
        failures: List[StoreWriteFailure] = []
        now = self._now_us()
        counter_sql = ", syncChangeCounter = syncChangeCounter + 1" if self._has_sync_counter else ""
        with self._lock:
            c = self._cursor()
            try:
                for item_id, position in positions:
                    try:
                        c.execute(
                            f"UPDATE moz_bookmarks SET position = ?{counter_sql} WHERE id = ? AND parent = ?",
                            (int(position), int(item_id), int(folder_id)),
                        )
                    except sqlite3.DatabaseError as e:
                        failures.append(StoreWriteFailure(item_id, str(e)))
                        continue
                    if c.rowcount == 0:
                        failures.append(StoreWriteFailure(item_id, f"not a child of folder {folder_id}"))
                c.execute("UPDATE moz_bookmarks SET lastModified = ? WHERE id = ?", (now, folder_id))
                self.conn.commit()
            except sqlite3.OperationalError:
                self.conn.rollback()
                raise
        return failures

    def data_version(self) -> int:
        with self._lock:
            row = self._cursor().execute("PRAGMA data_version").fetchone()
        return int(row[0])

    def validate_integrity(self) -> None:
        with self._lock:
            row = self._cursor().execute("PRAGMA integrity_check").fetchone()
        status = str(row[0]) if row is not None else ""
        if status.lower() != "ok":
            raise RuntimeError(f"sqlite integrity_check failed: {status or '<empty>'}")

    def _item_from_row(self, r: sqlite3.Row) -> Item:
        item_id = int(r["id"])
        btype = int(r["type"] or 0)
        kind = self._kind_for(item_id, btype, r["url"])
        item = Item(
            id=item_id,
            parent_id=int(r["parent"] or 0),
            kind=kind,
            index=int(r["position"] or 0),
        )
        if kind is ItemKind.SEPARATOR:
            return item

        mandatory = [r["title"], r["dateAdded"], r["lastModified"]]
        if kind in (ItemKind.BOOKMARK, ItemKind.QUERY):
            mandatory.append(r["url"])
        item.corrupted = any(v is None for v in mandatory)
        if item.corrupted:
            log.debug("Corrupted item %d (title=%r, url=%r)", item_id, r["title"], r["url"])

        item.title = r["title"] or ""
        item.url = r["url"] or ""
        item.date_added = int(r["dateAdded"] or 0)
        item.last_modified = int(r["lastModified"] or 0)
        if kind in (ItemKind.BOOKMARK, ItemKind.QUERY):
            # Never-visited places carry NULL visit data; that is not corruption.
            item.last_visited = int(r["last_visit_date"] or 0)
            item.access_count = int(r["visit_count"] or 0)
            item.keyword = self._keyword_for(item_id, r["fk"])
        item.description = self._item_anno(item_id, DESCRIPTION_ANNO) or ""
        return item

    def _kind_for(self, item_id: int, btype: int, url: Optional[str]) -> ItemKind:
        if btype == TYPE_SEPARATOR:
            return ItemKind.SEPARATOR
        if btype == TYPE_FOLDER:
            return ItemKind.FEED_FOLDER if self._has_item_anno(item_id, FEED_ANNO) else ItemKind.FOLDER
        if (url or "").startswith(QUERY_SCHEME):
            return ItemKind.QUERY
        return ItemKind.BOOKMARK

    def _keyword_for(self, item_id: int, place_id) -> str:
        try:
            c = self._cursor()
            if self._keyword_mode == "place" and place_id:
                row = c.execute(
                    "SELECT keyword FROM moz_keywords WHERE place_id = ? ORDER BY keyword LIMIT 1",
                    (int(place_id),),
                ).fetchone()
            elif self._keyword_mode == "bookmark":
                row = c.execute(
                    """
                    SELECT k.keyword FROM moz_bookmarks b
                    JOIN moz_keywords k ON k.id = b.keyword_id
                    WHERE b.id = ?
                    """,
                    (item_id,),
                ).fetchone()
            else:
                return ""
        except sqlite3.DatabaseError as e:
            log.debug("Keyword lookup failed for %d: %s", item_id, e)
            return ""
        return (row["keyword"] or "") if row else ""

    def _item_anno(self, item_id: int, name: str) -> Optional[str]:
        if not self._has_item_annos:
            return None
        try:
            row = self._cursor().execute(
                """
                SELECT a.content FROM moz_items_annos a
                JOIN moz_anno_attributes n ON n.id = a.anno_attribute_id
                WHERE a.item_id = ? AND n.name = ?
                LIMIT 1
                """,
                (item_id, name),
            ).fetchone()
        except sqlite3.DatabaseError as e:
            log.debug("Annotation %s lookup failed for %d: %s", name, item_id, e)
            return None
        if row is None:
            return None
        return "" if row["content"] is None else str(row["content"])

    def _has_item_anno(self, item_id: int, name: str) -> bool:
        return self._item_anno(item_id, name) is not None

    def _discover_root_ids(self) -> Dict[str, int]:
        c = self._cursor()
        out: Dict[str, int] = {}
        if self._has_table("moz_bookmarks_roots"):
            rows = c.execute("SELECT root_name, folder_id FROM moz_bookmarks_roots").fetchall()
            for r in rows:
                out[str(r["root_name"])] = int(r["folder_id"])
        if not out and self._has_guid:
            rows = c.execute(
                "SELECT id, guid FROM moz_bookmarks WHERE guid IN (?, ?, ?, ?, ?)",
                tuple(_ROOT_GUID_TO_NAME.keys()),
            ).fetchall()
            for r in rows:
                name = _ROOT_GUID_TO_NAME.get(str(r["guid"]))
                if name:
                    out[name] = int(r["id"])
        return out

    def _discover_places_root(self) -> Optional[int]:
        c = self._cursor()
        if self._has_guid:
            row = c.execute("SELECT id FROM moz_bookmarks WHERE guid = ?", (_PLACES_ROOT_GUID,)).fetchone()
            if row:
                return int(row["id"])
        row = c.execute(
            "SELECT id FROM moz_bookmarks WHERE parent IS NULL OR parent = 0 ORDER BY id LIMIT 1"
        ).fetchone()
        return int(row["id"]) if row else None

    def _assert_writable(self) -> None:
        if self.readonly:
            raise RuntimeError("database opened in readonly mode")

    def _has_table(self, name: str) -> bool:
        row = self._cursor().execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1",
            (name,),
        ).fetchone()
        return row is not None

    def _has_column(self, table_name: str, column_name: str) -> bool:
        rows = self._cursor().execute(f"PRAGMA table_info({table_name})").fetchall()
        return any(str(r[1]) == column_name for r in rows)

    def _cursor(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise RuntimeError("database is not open")
        return self.conn.cursor()

    def _now_us(self) -> int:
        return int(time.time() * 1_000_000)
