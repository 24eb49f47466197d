import locale
import sqlite3
import sys
from pathlib import Path

import pytest

# Allow `import sortmarks` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

MENU = 2
TOOLBAR = 3
TAGS = 4
UNFILED = 5
MOBILE = 6

WORK = 10
PROJECTS = 11
NEWS = 12
FEEDS = 13
TAG_VIDEO = 50


def make_places_db(path: Path, *, with_roots_table: bool = True, with_annos: bool = True) -> None:
    """A small places.sqlite with unsorted menu content, a sorted toolbar and a feed folder."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE moz_places (
              id INTEGER PRIMARY KEY,
              url TEXT,
              title TEXT,
              hidden INTEGER DEFAULT 0,
              visit_count INTEGER DEFAULT 0,
              last_visit_date INTEGER,
              guid TEXT,
              foreign_count INTEGER DEFAULT 0
            );
            CREATE TABLE moz_bookmarks (
              id INTEGER PRIMARY KEY,
              type INTEGER,
              fk INTEGER DEFAULT NULL,
              parent INTEGER,
              position INTEGER,
              title TEXT,
              keyword_id INTEGER,
              folder_type TEXT,
              dateAdded INTEGER,
              lastModified INTEGER,
              guid TEXT,
              syncStatus INTEGER NOT NULL DEFAULT 0,
              syncChangeCounter INTEGER NOT NULL DEFAULT 1
            );
            CREATE TABLE moz_keywords (
              id INTEGER PRIMARY KEY,
              keyword TEXT UNIQUE,
              place_id INTEGER,
              post_data TEXT
            );
            """
        )
        if with_annos:
            conn.executescript(
                """
                CREATE TABLE moz_anno_attributes (id INTEGER PRIMARY KEY, name TEXT UNIQUE NOT NULL);
                CREATE TABLE moz_items_annos (
                  id INTEGER PRIMARY KEY,
                  item_id INTEGER NOT NULL,
                  anno_attribute_id INTEGER,
                  content TEXT
                );
                INSERT INTO moz_anno_attributes(id, name) VALUES (1, 'livemark/feedURI');
                INSERT INTO moz_anno_attributes(id, name) VALUES (2, 'bookmarkProperties/description');
                INSERT INTO moz_items_annos(item_id, anno_attribute_id, content)
                  VALUES (13, 1, 'https://feeds.example/rss');
                INSERT INTO moz_items_annos(item_id, anno_attribute_id, content)
                  VALUES (21, 2, 'first letter');
                """
            )
        if with_roots_table:
            conn.execute("CREATE TABLE moz_bookmarks_roots (root_name TEXT PRIMARY KEY, folder_id INTEGER)")
            conn.executemany(
                "INSERT INTO moz_bookmarks_roots(root_name, folder_id) VALUES(?, ?)",
                [("menu", MENU), ("toolbar", TOOLBAR), ("tags", TAGS), ("unfiled", UNFILED), ("mobile", MOBILE)],
            )

        conn.executemany(
            "INSERT INTO moz_places(id,url,title,visit_count,last_visit_date,guid) VALUES(?,?,?,?,?,?)",
            [
                (100, "https://zeta.example/", "zeta", 3, 3000, "p100"),
                (101, "https://alpha.example/", "alpha", 1, 1000, "p101"),
                (102, "https://delta.example/", "delta", 0, None, "p102"),
                (103, "https://charlie.example/", "charlie", 7, 7000, "p103"),
                (104, "https://b.example/", "b", 0, None, "p104"),
                (105, "https://a.example/", "a", 0, None, "p105"),
                (106, "https://y.example/", "y", 0, None, "p106"),
                (107, "https://x.example/", "x", 0, None, "p107"),
                (108, "https://apple.example/", "apple", 0, None, "p108"),
                (109, "https://banana.example/", "banana", 0, None, "p109"),
                (110, "place:sort=8&maxResults=10", "recent", 0, None, "p110"),
                (111, "https://www.mozilla.org/", "mozilla", 0, None, "p111"),
                (112, "https://feeds.example/z", "z", 0, None, "p112"),
                (113, "https://feeds.example/a", "a", 0, None, "p113"),
            ],
        )
        conn.execute("INSERT INTO moz_keywords(id, keyword, place_id) VALUES (1, 'al', 101)")
        conn.executemany(
            "INSERT INTO moz_bookmarks(id,type,fk,parent,position,title,dateAdded,lastModified,guid) VALUES(?,?,?,?,?,?,?,?,?)",
            [
                (1, 2, None, 0, 0, "", 1, 1, "root________"),
                (MENU, 2, None, 1, 0, "menu", 1, 1, "menu________"),
                (TOOLBAR, 2, None, 1, 1, "toolbar", 1, 1, "toolbar_____"),
                (TAGS, 2, None, 1, 2, "tags", 1, 1, "tags________"),
                (UNFILED, 2, None, 1, 3, "unfiled", 1, 1, "unfiled_____"),
                (MOBILE, 2, None, 1, 4, "mobile", 1, 1, "mobile______"),
                # menu: two groups split by a separator, folder last
                (20, 1, 100, MENU, 0, "Zeta", 10, 10, "b20"),
                (21, 1, 101, MENU, 1, "alpha", 20, 20, "b21"),
                (40, 3, None, MENU, 2, None, 30, 30, "s40"),
                (22, 1, 102, MENU, 3, "Delta", 40, 40, "b22"),
                (23, 1, 103, MENU, 4, "Charlie", 50, 50, "b23"),
                (WORK, 2, None, MENU, 5, "Work", 60, 60, "f10"),
                (24, 1, 104, WORK, 0, "b", 70, 70, "b24"),
                (25, 1, 105, WORK, 1, "a", 80, 80, "b25"),
                (PROJECTS, 2, None, WORK, 2, "Projects", 90, 90, "f11"),
                (26, 1, 106, PROJECTS, 0, "y", 100, 100, "b26"),
                (27, 1, 107, PROJECTS, 1, "x", 110, 110, "b27"),
                # toolbar: already sorted
                (NEWS, 2, None, TOOLBAR, 0, "News", 120, 120, "f12"),
                (28, 1, 108, TOOLBAR, 1, "Apple", 130, 130, "b28"),
                (29, 1, 109, TOOLBAR, 2, "Banana", 140, 140, "b29"),
                # unfiled: a query bookmark and a feed folder
                (31, 1, 111, UNFILED, 0, "Mozilla", 150, 150, "b31"),
                (30, 1, 110, UNFILED, 1, "Recent", 160, 160, "q30"),
                (FEEDS, 2, None, UNFILED, 2, "Feeds", 170, 170, "f13"),
                (32, 1, 112, FEEDS, 0, "z", 180, 180, "b32"),
                (33, 1, 113, FEEDS, 1, "a", 190, 190, "b33"),
                # tags root is never sorted
                (TAG_VIDEO, 2, None, TAGS, 0, "video", 200, 200, "t50"),
                (51, 1, 101, TAG_VIDEO, 0, None, 210, 210, "t51"),
            ],
        )
        conn.commit()
    finally:
        conn.close()


def child_ids(path: Path, parent: int):
    conn = sqlite3.connect(path)
    try:
        rows = conn.execute(
            "SELECT id FROM moz_bookmarks WHERE parent = ? ORDER BY position, id", (parent,)
        ).fetchall()
    finally:
        conn.close()
    return [int(r[0]) for r in rows]


@pytest.fixture
def places_path(tmp_path: Path) -> Path:
    path = tmp_path / "places.sqlite"
    make_places_db(path)
    return path


@pytest.fixture(autouse=True)
def _restore_collation_locale():
    from sortmarks.collation import set_collation_locale

    saved = locale.setlocale(locale.LC_COLLATE)
    yield
    set_collation_locale(saved)
