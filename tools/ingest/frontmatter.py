"""
Reader for the ``_index.md`` front-matter dialect.

    ---
    title: Hochzeiten
    slug: weddings
    description: "Selected work"
    hidden: yes
    template: statistics/overview
    data:
      statistics: statistics.json
      galleries: $galleries
    ---
    Optional body in Markdown.

Only a handful of flat keys and one nested ``data`` block are understood, so
a plain line reader is enough; YAML is not involved. Unknown keys (and any
indented lines under them) are skipped so new fields never break old builds.
"""

from __future__ import annotations

import logging
import pathlib
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from nbconvert.filters.markdown_mistune import markdown2html_mistune

from .config import (
    FRONT_MATTER_DELIMITER,
    LEGACY_DATA_SOURCE_NAME,
    TRUE_LITERALS,
)
from .utils import _norm_text

logger = logging.getLogger(__name__)

Renderer = Callable[[str], str]

_LEADING_BLANK_LINES = re.compile(r"\A(?:[ \t]*\n)+")


def render_markdown(text: str) -> str:
    return markdown2html_mistune(text).strip()


@dataclass(frozen=True)
class DirectoryMetadata:
    title: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    hidden: bool = False
    template: Optional[str] = None
    data_sources: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )
    raw_body: Optional[str] = None
    body: Optional[str] = None
    sort: Optional[str] = None
    filter: Optional[str] = None
    cover: Optional[str] = None
    featured: bool = False
    date: Optional[date] = None

    @property
    def has_metadata(self) -> bool:
        return (
            self.title is not None
            or self.slug is not None
            or self.description is not None
            or self.hidden
            or self.template is not None
            or bool(self.data_sources)
            or self.raw_body is not None
            or self.sort is not None
            or self.filter is not None
            or self.cover is not None
            or self.featured
            or self.date is not None
        )


EMPTY_METADATA = DirectoryMetadata()


def _remove_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_LITERALS


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        logger.debug("Ignoring unparseable front matter date %r", value)
        return None


def _split_key_value(line: str) -> Optional[Tuple[str, str]]:
    idx = line.find(":")
    if idx <= 0:
        return None
    key = line[:idx].strip()
    if not key:
        return None
    return key.lower(), _remove_quotes(line[idx + 1 :].strip())


def _split_front_matter(text: str) -> Tuple[Optional[List[str]], str]:
    """
    Returns (front matter lines, body text).

    Lines is None when the text has no front matter block at all.
    Raises ValueError when the block is opened but never closed.
    """
    lines = text.split("\n")
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    if start >= len(lines) or lines[start].strip() != FRONT_MATTER_DELIMITER:
        return None, text
    for i in range(start + 1, len(lines)):
        if lines[i].strip() == FRONT_MATTER_DELIMITER:
            return lines[start + 1 : i], "\n".join(lines[i + 1 :])
    raise ValueError("front matter block is not closed")


_ROOT, _DATA = "root", "data"


def _read_fields(lines: List[str]) -> Tuple[Dict[str, str], Dict[str, str]]:
    scalars: Dict[str, str] = {}
    data: Dict[str, str] = {}
    mode = _ROOT

    for raw in lines:
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue
        indented = raw[:1] in (" ", "\t")

        if mode == _DATA:
            if indented:
                kv = _split_key_value(raw)
                if kv and kv[1]:
                    # keep the original case of variable names
                    name = raw[: raw.index(":")].strip()
                    data[name] = kv[1]
                continue
            mode = _ROOT

        if indented:
            # nested lines of a key we don't know
            continue
        kv = _split_key_value(raw)
        if kv is None:
            continue
        key, value = kv
        if key == "data":
            if value:
                data[LEGACY_DATA_SOURCE_NAME] = value
            else:
                mode = _DATA
            continue
        if value:
            scalars[key] = value
    return scalars, data


def parse(text: str, renderer: Optional[Renderer] = None) -> DirectoryMetadata:
    if text is None or not text.strip():
        return EMPTY_METADATA

    text = _norm_text(text)
    try:
        fm_lines, body_text = _split_front_matter(text)
    except ValueError as exc:
        logger.debug("Malformed front matter: %s", exc)
        return EMPTY_METADATA

    scalars, data = _read_fields(fm_lines or [])

    raw_body: Optional[str] = _LEADING_BLANK_LINES.sub("", body_text)
    if not raw_body.strip():
        raw_body = None

    template = scalars.get("template")
    meta = DirectoryMetadata(
        title=scalars.get("title"),
        slug=scalars.get("slug"),
        description=scalars.get("description"),
        hidden=_parse_bool(scalars.get("hidden", "")),
        template=template,
        data_sources=MappingProxyType(dict(data)),
        raw_body=raw_body,
        sort=scalars.get("sort"),
        filter=scalars.get("filter"),
        cover=scalars.get("cover"),
        featured=_parse_bool(scalars.get("featured", "")),
        date=_parse_date(scalars["date"]) if "date" in scalars else None,
    )
    if not meta.has_metadata:
        return EMPTY_METADATA

    if raw_body is not None and template is None:
        render = renderer or render_markdown
        try:
            html = render(raw_body)
        except Exception:
            logger.warning("Failed to render front matter body", exc_info=True)
            html = None
        meta = replace(meta, body=html or None)
    return meta


def load_metadata(
    path: pathlib.Path, renderer: Optional[Renderer] = None
) -> Tuple[DirectoryMetadata, Optional[str]]:
    """Parse a metadata file; returns (metadata, error message or None)."""
    path = pathlib.Path(path)
    if not path.is_file():
        logger.debug("Index file not found: %s", path)
        return EMPTY_METADATA, None
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Error reading index file %s: %s", path, exc)
        return EMPTY_METADATA, f"{path}: {exc}"

    normalized = _norm_text(text)
    if normalized.lstrip().startswith(FRONT_MATTER_DELIMITER):
        try:
            _split_front_matter(normalized)
        except ValueError as exc:
            logger.warning("Malformed front matter in %s: %s", path, exc)
            return EMPTY_METADATA, f"{path}: {exc}"

    meta = parse(text, renderer=renderer)
    logger.debug("Parsed %s, has_metadata: %s", path, meta.has_metadata)
    return meta, None


def parse_file(
    path: pathlib.Path, renderer: Optional[Renderer] = None
) -> DirectoryMetadata:
    return load_metadata(path, renderer=renderer)[0]
