from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List


class ItemKind(enum.Enum):
    BOOKMARK = "bookmark"
    SEPARATOR = "separator"
    FOLDER = "folder"
    FEED_FOLDER = "feed_folder"
    QUERY = "query"


DEFAULT_TYPE_PRIORITIES = {
    ItemKind.FOLDER: 1,
    ItemKind.FEED_FOLDER: 2,
    ItemKind.QUERY: 3,
    ItemKind.BOOKMARK: 4,
    ItemKind.SEPARATOR: 0,
}


@dataclass
class Item:
    """One node of the bookmark tree, built fresh from the store for each pass.

    ``previous_index`` is the position reported by the store when the item was
    built. The sorter only ever assigns ``index``; comparing the two tells
    whether a write-back is needed.
    """

    id: int
    parent_id: int
    kind: ItemKind
    index: int
    previous_index: int = -1

    title: str = ""
    url: str = ""
    description: str = ""
    keyword: str = ""
    date_added: int = 0
    last_modified: int = 0
    last_visited: int = 0
    access_count: int = 0

    type_priority: int = 0
    corrupted: bool = False

    def __post_init__(self) -> None:
        if self.previous_index < 0:
            self.previous_index = self.index

    @property
    def is_separator(self) -> bool:
        return self.kind is ItemKind.SEPARATOR

    @property
    def is_folder(self) -> bool:
        return self.kind is ItemKind.FOLDER

    @property
    def moved(self) -> bool:
        return self.index != self.previous_index

    def set_index(self, index: int) -> None:
        self.index = index


@dataclass
class SortResult:
    folder_id: int
    moved: bool = False
    written: int = 0
    failed_writes: List[int] = field(default_factory=list)


@dataclass
class FolderFlags:
    id: int
    title: str
    do_not_sort: bool = False
    recursive: bool = False


@dataclass
class PassStats:
    folders: int = 0
    moved_folders: int = 0
    written: int = 0
    failed_folders: int = 0
    failed_writes: int = 0
    elapsed_ms: int = 0
