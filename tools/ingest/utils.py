from __future__ import annotations

import re
import unicodedata
from functools import cmp_to_key
from typing import Callable, Iterable, List, TypeVar

from .config import (
    DIGIT_RUN_RE,
    SLUG_RE,
    SLUG_SEPARATORS_RE,
    SORT_PREFIX_RE,
)

T = TypeVar("T")


def _require_name(name: str, what: str = "name") -> str:
    if name is None or not str(name).strip():
        raise ValueError(f"{what} must be a non-empty string")
    return name


def natural_key(s: str):
    """Sort key treating digit runs as numbers: item2 < item10."""
    _require_name(s)
    return [
        (0, int(t), t) if t.isdigit() else (1, 0, t)
        for t in DIGIT_RUN_RE.split(s.casefold())
        if t
    ]


def natural_compare(a: str, b: str) -> int:
    ka, kb = natural_key(a), natural_key(b)
    if ka == kb:
        # identical ignoring case, fall back to ordinal for a total order
        return (a > b) - (a < b)
    return -1 if ka < kb else 1


def sort_natural(
    items: Iterable[T],
    key: Callable[[T], str] = lambda x: x,
    descending: bool = False,
) -> List[T]:
    return sorted(
        items,
        key=cmp_to_key(lambda x, y: natural_compare(key(x), key(y))),
        reverse=descending,
    )


def extract_display_name(name: str) -> str:
    """
    Strip a 1-2 digit ordering prefix: "01 Events" -> "Events".

    Longer numeric prefixes ("2024 Summer", "123 Test") are kept.
    """
    _require_name(name, "folder name")
    m = SORT_PREFIX_RE.match(name)
    return m.group(2) if m else name


def to_title(name: str) -> str:
    return extract_display_name(name)


def _strip_diacritics(s: str) -> str:
    decomposed = unicodedata.normalize("NFKD", s)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def slugify(s: str) -> str:
    _require_name(s)
    s = _strip_diacritics(extract_display_name(s)).lower()
    s = SLUG_SEPARATORS_RE.sub("-", s)
    return re.sub(r"-{2,}", "-", SLUG_RE.sub("", s)).strip("-")


def build_path(*segments: str) -> str:
    """Join slugified segments: ("01 Events", "2024 Wedding") -> "events/2024-wedding/"."""
    slugs = [slugify(s) for s in segments if s and s.strip()]
    slugs = [s for s in slugs if s]
    return "/".join(slugs) + "/" if slugs else ""


def calculate_base_path(path: str) -> str:
    """Relative path back to the site root: "events/2024/" -> "../../"."""
    trimmed = (path or "").strip("/")
    if not trimmed:
        return ""
    return "../" * (trimmed.count("/") + 1)


def normalize_rel_path(p: str) -> str:
    return p.replace("\\", "/").strip("/")


def parent_rel_path(p: str) -> str:
    p = normalize_rel_path(p)
    return p.rsplit("/", 1)[0] if "/" in p else ""


def _norm_text(s: str) -> str:
    return s.replace('\r\n', '\n').replace('\r', '\n').lstrip('\ufeff')
