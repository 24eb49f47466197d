from __future__ import annotations

import re

_SCHEME_RE = re.compile(r"^\S+?://")
_HOST_RE = re.compile(r"^[^/?#]+")


def domain_reversed(url: str) -> str:
    """Host of ``url`` with its labels reversed: ``mail.google.com`` -> ``com.google.mail``.

    Sorting on this key groups siblings by top-level and second-level domain
    instead of by whatever subdomain happens to come first.
    """
    if not url:
        return ""
    rest = _SCHEME_RE.sub("", url.strip(), count=1)
    m = _HOST_RE.match(rest)
    if not m:
        return ""
    return ".".join(reversed(m.group(0).split(".")))
