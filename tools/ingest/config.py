#!/usr/bin/env python3
from __future__ import annotations

import os
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

# ---------- Project layout

SOURCE_DIR_NAME = "source"
CACHE_DIR_NAME = ".cache"
MANIFEST_FILE_NAME = "manifest.json"
SITE_CONFIG_FILE_NAME = "site.yml"

# ---------- Content conventions

INDEX_FILE_NAME = "_index.md"
SHARED_IMAGES_DIR = "_images"
FRONT_MATTER_DELIMITER = "---"
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")
MARKDOWN_EXTENSION = ".md"
HOME_TITLE = "Home"

# Legacy `data: file.json` is stored under this name
LEGACY_DATA_SOURCE_NAME = "statistics"

# ---------- Hashing

CHUNK_SIZE = 64 * 1024
HASH_LENGTH = 12

# ---------- Manifest

MANIFEST_VERSION = 4

# Some shared regexes

SORT_PREFIX_RE = re.compile(r"^(\d{1,2})\s+(.+)$")
DIGIT_RUN_RE = re.compile(r"(\d+)")
SLUG_SEPARATORS_RE = re.compile(r"[\s_]+")
SLUG_RE = re.compile(r"[^a-z0-9-]+")
TRUE_LITERALS = ("true", "yes", "1")


@dataclass
class SortSpec:
    field: str = "filename"
    direction: str = "asc"
    fallback: str = "filename"


@dataclass
class ImageSettings:
    sizes: List[int] = field(default_factory=lambda: [640, 1024, 1920])
    formats: Dict[str, int] = field(default_factory=lambda: {"jpg": 90})
    min_width: int = 0
    min_height: int = 0
    placeholder: bool = True


@dataclass
class SiteConfig:
    """Settings read from ``site.yml`` at the project root."""

    source: str = SOURCE_DIR_NAME
    cache: str = CACHE_DIR_NAME
    workers: int = 0
    images: ImageSettings = field(default_factory=ImageSettings)
    gallery_order: str = "asc"
    image_sort: SortSpec = field(default_factory=SortSpec)

    @property
    def max_workers(self) -> int:
        return self.workers if self.workers > 0 else (os.cpu_count() or 1)

    def source_dir(self, project_dir: pathlib.Path) -> pathlib.Path:
        return project_dir / self.source

    def cache_dir(self, project_dir: pathlib.Path) -> pathlib.Path:
        return project_dir / self.cache


class ImageSizesProvider:
    """Supplies the configured responsive widths."""

    def __init__(self, config: SiteConfig):
        self._config = config

    def get_sizes(self) -> List[int]:
        sizes = sorted(set(self._config.images.sizes))
        if not sizes:
            raise ConfigError("No image sizes configured (images.sizes is empty)")
        return sizes


def _expect(value: Any, kind, key: str):
    if not isinstance(value, kind) or isinstance(value, bool) and kind is int:
        raise ConfigError(f"site config: '{key}' has invalid value {value!r}")
    return value


def _direction(value: Any, key: str) -> str:
    s = str(value).strip().lower()
    if s not in ("asc", "desc"):
        raise ConfigError(f"site config: '{key}' must be 'asc' or 'desc', got {value!r}")
    return s


def config_from_dict(raw: Dict[str, Any]) -> SiteConfig:
    cfg = SiteConfig()
    if "source" in raw:
        cfg.source = _expect(raw["source"], str, "source")
    if "cache" in raw:
        cfg.cache = _expect(raw["cache"], str, "cache")
    if "workers" in raw:
        cfg.workers = _expect(raw["workers"], int, "workers")

    images = raw.get("images") or {}
    _expect(images, dict, "images")
    if "sizes" in images:
        sizes = _expect(images["sizes"], list, "images.sizes")
        cfg.images.sizes = [_expect(s, int, "images.sizes[]") for s in sizes]
    if "formats" in images:
        formats = _expect(images["formats"], dict, "images.formats")
        cfg.images.formats = {
            str(k): _expect(v, int, f"images.formats.{k}") for k, v in formats.items()
        }
    for key in ("min_width", "min_height"):
        if key in images:
            setattr(cfg.images, key, _expect(images[key], int, f"images.{key}"))
    if "placeholder" in images:
        cfg.images.placeholder = bool(images["placeholder"])

    sorting = raw.get("sorting") or {}
    _expect(sorting, dict, "sorting")
    if "galleries" in sorting:
        cfg.gallery_order = _direction(sorting["galleries"], "sorting.galleries")
    img_sort = sorting.get("images") or {}
    _expect(img_sort, dict, "sorting.images")
    if "field" in img_sort:
        cfg.image_sort.field = _expect(img_sort["field"], str, "sorting.images.field")
    if "direction" in img_sort:
        cfg.image_sort.direction = _direction(
            img_sort["direction"], "sorting.images.direction"
        )
    if "fallback" in img_sort:
        cfg.image_sort.fallback = _expect(
            img_sort["fallback"], str, "sorting.images.fallback"
        )
    return cfg


def load_site_config(path: Optional[pathlib.Path]) -> SiteConfig:
    if path is None or not path.exists():
        return SiteConfig()
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"site config {path} is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"site config {path} must be a mapping")
    return config_from_dict(raw)
