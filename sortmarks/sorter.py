from __future__ import annotations

from functools import cmp_to_key
from typing import List, Mapping, Optional

from .comparator import Comparator
from .exclusion import ExclusionResolver
from .log import get_logger
from .model import Item, ItemKind, SortResult
from .places_db import PlacesDB

log = get_logger(__name__)


def split_groups(children: List[Item]) -> List[List[Item]]:
    """Split siblings into runs delimited by separators. Separators are dropped."""
    groups: List[List[Item]] = [[]]
    for item in children:
        if item.is_separator:
            groups.append([])
        else:
            groups[-1].append(item)
    return groups


def sort_groups(groups: List[List[Item]], compare: Comparator) -> List[List[Item]]:
    """Stable-sort each group and renumber positions around the separators.

    Each separator keeps its slot: after a group of ``n`` items the next group
    starts ``n + 1`` further on.
    """
    key = cmp_to_key(compare)
    out: List[List[Item]] = []
    offset = 0
    for group in groups:
        ordered = sorted(group, key=key)
        for rank, item in enumerate(ordered):
            item.set_index(offset + rank)
        out.append(ordered)
        offset += len(ordered) + 1
    return out


class FolderSorter:
    def __init__(
        self,
        db: PlacesDB,
        compare: Comparator,
        *,
        resolver: Optional[ExclusionResolver] = None,
        priorities: Optional[Mapping[ItemKind, int]] = None,
    ):
        self.db = db
        self.compare = compare
        self.resolver = resolver
        self.priorities = priorities

    def sort_folder(self, folder_id: int) -> SortResult:
        children = self.db.children(folder_id, priorities=self.priorities)
        groups = sort_groups(split_groups(children), self.compare)
        items = [item for group in groups for item in group]

        result = SortResult(folder_id=folder_id)
        if not any(item.moved for item in items):
            return result

        result.moved = True
        # Every position in the folder is rewritten once anything moved.
        failures = self.db.set_positions(folder_id, [(item.id, item.index) for item in items])
        for failure in failures:
            log.warning("%s", failure)
            result.failed_writes.append(failure.item_id)
        result.written = len(items) - len(failures)
        log.debug("Sorted folder %d: %d items written", folder_id, result.written)
        return result

    def sort_and_save(self, folder_id: int) -> SortResult:
        if self.resolver is not None and not self.resolver.is_sortable(folder_id):
            log.debug("Folder %d is excluded from sorting", folder_id)
            return SortResult(folder_id=folder_id)
        return self.sort_folder(folder_id)
