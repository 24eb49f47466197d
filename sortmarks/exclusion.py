from __future__ import annotations

from typing import Iterable, Iterator, Optional

from .annotations import DO_NOT_SORT, RECURSIVE, AnnotationStore
from .errors import AnnotationReadFailure
from .log import get_logger
from .model import ItemKind
from .places_db import PlacesDB

log = get_logger(__name__)


class ExclusionResolver:
    """Decides which folders take part in a sort pass.

    ``donotsort`` alone skips one folder; together with ``recursive`` it skips
    the folder and everything below it, and that subtree is never read.
    """

    def __init__(self, db: PlacesDB, annotations: AnnotationStore):
        self.db = db
        self.annotations = annotations

    def has_flag(self, folder_id: int, name: str) -> bool:
        try:
            return self.annotations.has_flag(folder_id, name)
        except AnnotationReadFailure as e:
            log.debug("%s; treating as unset", e)
            return False

    def is_recursively_excluded(self, folder_id: int) -> bool:
        return self.has_flag(folder_id, DO_NOT_SORT) and self.has_flag(folder_id, RECURSIVE)

    def has_excluded_ancestor(self, folder_id: int) -> bool:
        current: Optional[int] = folder_id
        seen = set()
        while current and current not in seen:
            if self.is_recursively_excluded(current):
                return True
            seen.add(current)
            current = self.db.parent_of(current)
        return False

    def is_sortable(self, folder_id: int) -> bool:
        if self.db.is_places_root(folder_id):
            return False
        if self.has_flag(folder_id, DO_NOT_SORT):
            return False
        return not self.has_excluded_ancestor(folder_id)

    def iter_sortable_folders(self, root_id: int) -> Iterator[int]:
        """Pre-order walk below ``root_id`` (inclusive), yielding folders to sort.

        Not restartable across store mutations: child lists are read lazily
        as the walk reaches each folder.
        """
        if self.is_recursively_excluded(root_id):
            log.debug("Root %d is recursively excluded", root_id)
            return
        if self.is_sortable(root_id):
            yield root_id
        yield from self._iter_descendants(root_id)

    def _iter_descendants(self, folder_id: int) -> Iterator[int]:
        for child in self.db.child_folders(folder_id):
            if child.kind is not ItemKind.FOLDER:
                continue
            if self.is_recursively_excluded(child.id):
                log.debug("Skipping subtree of %d (%s)", child.id, child.title)
                continue
            if not self.has_flag(child.id, DO_NOT_SORT):
                yield child.id
            yield from self._iter_descendants(child.id)

    def iter_pass_folders(self, root_ids: Iterable[int]) -> Iterator[int]:
        for root_id in root_ids:
            yield from self.iter_sortable_folders(root_id)
