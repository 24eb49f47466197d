import sqlite3
from pathlib import Path

import pytest

from conftest import FEEDS, MENU, TAG_VIDEO, TOOLBAR, UNFILED, WORK, child_ids, make_places_db
from sortmarks.errors import StoreUnavailable
from sortmarks.model import ItemKind
from sortmarks.places_db import PlacesDB


def test_children_read_kinds_positions_and_metadata(places_path: Path):
    with PlacesDB(places_path, readonly=True) as db:
        items = db.children(MENU)
        assert [x.id for x in items] == [20, 21, 40, 22, 23, WORK]
        assert [x.kind for x in items] == [
            ItemKind.BOOKMARK,
            ItemKind.BOOKMARK,
            ItemKind.SEPARATOR,
            ItemKind.BOOKMARK,
            ItemKind.BOOKMARK,
            ItemKind.FOLDER,
        ]
        assert [x.index for x in items] == [0, 1, 2, 3, 4, 5]
        assert all(x.previous_index == x.index for x in items)

        alpha = items[1]
        assert alpha.title == "alpha"
        assert alpha.url == "https://alpha.example/"
        assert alpha.keyword == "al"
        assert alpha.description == "first letter"
        assert alpha.access_count == 1
        assert alpha.last_visited == 1000
        assert alpha.date_added == 20
        assert alpha.type_priority == 4
        assert not alpha.corrupted

        never_visited = items[3]
        assert never_visited.last_visited == 0
        assert not never_visited.corrupted

        assert items[2].type_priority == 0
        assert items[5].type_priority == 1


def test_children_use_custom_priorities(places_path: Path):
    with PlacesDB(places_path, readonly=True) as db:
        items = db.children(MENU, priorities={ItemKind.BOOKMARK: 9, ItemKind.FOLDER: 7})
        assert {x.type_priority for x in items if x.kind is ItemKind.BOOKMARK} == {9}
        assert items[-1].type_priority == 7


def test_query_and_feed_folder_detection(places_path: Path):
    with PlacesDB(places_path, readonly=True) as db:
        kinds = {x.id: x.kind for x in db.children(UNFILED)}
        assert kinds == {31: ItemKind.BOOKMARK, 30: ItemKind.QUERY, FEEDS: ItemKind.FEED_FOLDER}
        assert [(f.id, f.kind) for f in db.child_folders(UNFILED)] == [(FEEDS, ItemKind.FEED_FOLDER)]
        assert db.item_kind(30) is ItemKind.QUERY
        assert db.item_kind(40) is ItemKind.SEPARATOR
        assert db.item_kind(999) is None


def test_missing_mandatory_fields_mark_items_corrupted(places_path: Path):
    conn = sqlite3.connect(places_path)
    conn.execute(
        "INSERT INTO moz_bookmarks(id,type,fk,parent,position,title,dateAdded,lastModified) VALUES(60,1,999,?,2,'ghost',1,1)",
        (TOOLBAR,),
    )
    conn.commit()
    conn.close()
    with PlacesDB(places_path, readonly=True) as db:
        ghost = next(x for x in db.children(TOOLBAR) if x.id == 60)
        assert ghost.corrupted
        assert ghost.url == ""
        untitled = db.children(TAG_VIDEO)[0]
        assert untitled.corrupted
        assert untitled.title == ""


def test_tree_navigation_and_roots(places_path: Path):
    with PlacesDB(places_path, readonly=True) as db:
        assert db.places_root_id == 1
        assert db.is_places_root(1)
        assert not db.is_places_root(MENU)
        assert db.get_root_folder_id("menu") == MENU
        assert db.root_label(TOOLBAR) == "Bookmarks Toolbar"
        assert db.root_label(WORK) == ""
        assert db.parent_of(WORK) == MENU
        assert db.parent_of(1) is None
        assert db.exists(WORK)
        assert not db.exists(12345)
        assert [f.title for f in db.child_folders(MENU)] == ["Work"]


def test_root_guid_fallback_without_roots_table(tmp_path: Path):
    db_path = tmp_path / "places.sqlite"
    make_places_db(db_path, with_roots_table=False)
    with PlacesDB(db_path, readonly=True) as db:
        assert db.get_root_folder_id("toolbar") == TOOLBAR
        assert db.get_root_folder_id("menu") == MENU


def test_without_item_annotations_everything_is_plain(tmp_path: Path):
    db_path = tmp_path / "places.sqlite"
    make_places_db(db_path, with_annos=False)
    with PlacesDB(db_path, readonly=True) as db:
        kinds = {x.id: x.kind for x in db.children(UNFILED)}
        assert kinds[FEEDS] is ItemKind.FOLDER
        assert db.children(MENU)[1].description == ""


def test_set_positions_writes_batch_and_reports_stale_ids(places_path: Path):
    with PlacesDB(places_path) as db:
        failures = db.set_positions(TOOLBAR, [(29, 1), (28, 2), (999, 3)])
        assert [f.item_id for f in failures] == [999]
    assert child_ids(places_path, TOOLBAR)[1:] == [29, 28]
    conn = sqlite3.connect(places_path)
    counters = dict(conn.execute("SELECT id, syncChangeCounter FROM moz_bookmarks WHERE id IN (28, 29)").fetchall())
    conn.close()
    assert counters == {28: 2, 29: 2}


def test_readonly_store_refuses_writes(places_path: Path):
    with PlacesDB(places_path, readonly=True) as db:
        with pytest.raises(RuntimeError):
            db.set_positions(TOOLBAR, [(28, 1)])


def test_missing_database_is_unavailable(tmp_path: Path):
    with pytest.raises(StoreUnavailable):
        PlacesDB(tmp_path / "nope.sqlite").open()


def test_data_version_tracks_other_connections(places_path: Path):
    with PlacesDB(places_path, readonly=True) as db:
        before = db.data_version()
        conn = sqlite3.connect(places_path)
        conn.execute("UPDATE moz_bookmarks SET title = 'Bananas' WHERE id = 29")
        conn.commit()
        conn.close()
        assert db.data_version() != before
        db.validate_integrity()
