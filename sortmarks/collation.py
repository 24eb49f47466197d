"""String collation used by the comparator.

Keys are built once per distinct string and compared as tuples, so the
resulting order is total and transitive by construction. Embedded digit runs
compare by numeric value ("Item 9" < "Item 10"), accents are ignored at the
primary level, and in case-sensitive mode a primary tie is broken with
upper case first.
"""

from __future__ import annotations

import locale
import re
import unicodedata
from functools import lru_cache
from typing import Optional, Tuple

from .log import get_logger

log = get_logger(__name__)

_DIGIT_RUN_RE = re.compile(r"(\d+)")


def set_collation_locale(name: str = "") -> Optional[str]:
    """Switch ``LC_COLLATE`` (``""`` means the user environment) and drop cached keys.

    Python starts every process in the "C" locale, where ``strxfrm`` is a
    no-op, so front ends call this once before sorting. Returns the locale now
    in effect, or None when ``name`` is not installed.
    """
    try:
        current = locale.setlocale(locale.LC_COLLATE, name)
    except locale.Error as e:
        log.debug("Collation locale %r unavailable: %s", name, e)
        return None
    collation_key.cache_clear()
    return current


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _run_key(run: str) -> Tuple[int, int, str]:
    if run.isdecimal():
        return (0, int(run), "")
    try:
        return (1, 0, locale.strxfrm(run))
    except (ValueError, OSError):
        # strxfrm rejects embedded NULs on some platforms.
        return (1, 0, run)


@lru_cache(maxsize=8192)
def collation_key(text: str, case_insensitive: bool = False) -> tuple:
    base = _strip_accents(text or "")
    primary = tuple(_run_key(run) for run in _DIGIT_RUN_RE.split(base.casefold()) if run)
    if case_insensitive:
        return (primary,)
    case_level = tuple(0 if ch.isupper() else 1 for ch in base if ch.isalpha())
    return (primary, case_level)


def compare_text(a: str, b: str, *, case_insensitive: bool = False) -> int:
    ka = collation_key(a, case_insensitive)
    kb = collation_key(b, case_insensitive)
    return (ka > kb) - (ka < kb)
