from __future__ import annotations

from typing import Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .collation import compare_text
from .model import Item
from .url_keys import domain_reversed

Comparator = Callable[[Item, Item], int]

STRING_KEYS = ("title", "url", "domain_reversed", "description", "keyword")
NUMERIC_KEYS = ("date_added", "last_modified", "last_visited", "access_count")

SortKey = Literal[
    "title",
    "url",
    "domain_reversed",
    "description",
    "keyword",
    "date_added",
    "last_modified",
    "last_visited",
    "access_count",
]

# Names used by older preference files.
_KEY_ALIASES = {
    "revurl": "domain_reversed",
    "domainreversed": "domain_reversed",
    "dateadded": "date_added",
    "lastmodified": "last_modified",
    "lastvisited": "last_visited",
    "accesscount": "access_count",
}


def _canonical_key(value):
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    name = value.strip()
    if not name:
        return None
    return _KEY_ALIASES.get(name.lower().replace("_", ""), name.lower())


class SortConfig(BaseModel):
    """Ordering rules for sibling items. Immutable; build a new one to change it."""

    model_config = ConfigDict(frozen=True)

    primary_key: SortKey = Field("title", description="Main criterion for every item kind.")
    primary_reverse: bool = False
    secondary_key: Optional[SortKey] = Field(None, description="Tie-break for the main criterion.")
    secondary_reverse: bool = False
    distinct_folder_order: bool = Field(False, description="Order folders among themselves by folder_key.")
    folder_key: Optional[SortKey] = Field(None, description="Folder criterion; unset keeps folders in input order.")
    folder_reverse: bool = False
    case_insensitive: bool = False

    @field_validator("secondary_key", "folder_key", mode="before")
    @classmethod
    def _optional_key(cls, value):
        return _canonical_key(value)

    @field_validator("primary_key", mode="before")
    @classmethod
    def _primary_key(cls, value):
        key = _canonical_key(value)
        if key is None:
            raise ValueError("primary_key is required")
        return key


def _key_comparator(key: str, reverse: bool, case_insensitive: bool) -> Comparator:
    sign = -1 if reverse else 1

    if key in STRING_KEYS:
        if key == "domain_reversed":
            def value(item: Item) -> str:
                return domain_reversed(item.url)
        else:
            def value(item: Item) -> str:
                return getattr(item, key) or ""

        def compare_strings(a: Item, b: Item) -> int:
            return compare_text(value(a), value(b), case_insensitive=case_insensitive) * sign

        return compare_strings

    def compare_numbers(a: Item, b: Item) -> int:
        return (getattr(a, key) - getattr(b, key)) * sign

    return compare_numbers


def _never_decides(_a: Item, _b: Item) -> int:
    return 0


def build_comparator(config: SortConfig) -> Comparator:
    """Compile ``config`` into a cmp-style function for ``functools.cmp_to_key``."""
    first = _key_comparator(config.primary_key, config.primary_reverse, config.case_insensitive)
    if config.secondary_key is not None:
        second = _key_comparator(config.secondary_key, config.secondary_reverse, config.case_insensitive)
    else:
        second = _never_decides

    if config.folder_key is not None:
        folders = _key_comparator(config.folder_key, config.folder_reverse, config.case_insensitive)
    else:
        folders = _never_decides
    distinct_folders = config.distinct_folder_order

    def compare(a: Item, b: Item) -> int:
        if a.corrupted or b.corrupted:
            return int(a.corrupted) - int(b.corrupted)
        if a.type_priority != b.type_priority:
            return a.type_priority - b.type_priority
        if distinct_folders and a.is_folder and b.is_folder:
            return folders(a, b)
        return first(a, b) or second(a, b)

    return compare
