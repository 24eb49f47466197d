from __future__ import annotations


class SortmarksError(Exception):
    """Base class for errors raised by sortmarks."""


class StoreUnavailable(SortmarksError):
    """The bookmark database cannot be opened or is locked by Firefox."""


class StoreWriteFailure(SortmarksError):
    """A position write for one item was rejected (stale id, constraint, lock)."""

    def __init__(self, item_id: int, message: str):
        super().__init__(f"failed to move item {item_id}: {message}")
        self.item_id = item_id


class AnnotationReadFailure(SortmarksError):
    """A flag lookup failed; callers treat the flag as absent."""
