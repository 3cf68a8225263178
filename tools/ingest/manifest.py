"""
Persisted manifest model.

The manifest is one JSON document::

    {"_meta": {...}, "root": {...ManifestEntry...}}

Every entry carries its content items (images and markdown files) and its
children. Content items are a tagged union; each serialized item has a
``"type"`` of ``"image"`` or ``"markdown"`` so readers can pick the right
shape without outside schema knowledge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Union

from .config import MANIFEST_VERSION

logger = logging.getLogger(__name__)


# ---------- value helpers


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(v: Optional[Union[date, datetime]]) -> Optional[str]:
    return v.isoformat() if v is not None else None


def _parse_datetime(v: Any) -> Optional[datetime]:
    if not v:
        return None
    if isinstance(v, datetime):
        return v
    try:
        return datetime.fromisoformat(str(v))
    except ValueError:
        logger.debug("Ignoring invalid timestamp %r in manifest", v)
        return None


def _parse_date(v: Any) -> Optional[date]:
    if not v:
        return None
    try:
        return date.fromisoformat(str(v)[:10])
    except ValueError:
        logger.debug("Ignoring invalid date %r in manifest", v)
        return None


# ---------- content items


@dataclass
class ExifData:
    make: Optional[str] = None
    model: Optional[str] = None
    lens_model: Optional[str] = None
    date_taken: Optional[datetime] = None
    f_number: Optional[float] = None
    exposure_time: Optional[float] = None
    iso: Optional[int] = None
    focal_length: Optional[float] = None
    gps_latitude: Optional[float] = None
    gps_longitude: Optional[float] = None
    raw: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "make": self.make,
            "model": self.model,
            "lensModel": self.lens_model,
            "dateTaken": _iso(self.date_taken),
            "fNumber": self.f_number,
            "exposureTime": self.exposure_time,
            "iso": self.iso,
            "focalLength": self.focal_length,
            "gpsLatitude": self.gps_latitude,
            "gpsLongitude": self.gps_longitude,
            "raw": dict(self.raw),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExifData":
        return cls(
            make=d.get("make"),
            model=d.get("model"),
            lens_model=d.get("lensModel"),
            date_taken=_parse_datetime(d.get("dateTaken")),
            f_number=d.get("fNumber"),
            exposure_time=d.get("exposureTime"),
            iso=d.get("iso"),
            focal_length=d.get("focalLength"),
            gps_latitude=d.get("gpsLatitude"),
            gps_longitude=d.get("gpsLongitude"),
            raw={str(k): str(v) for k, v in (d.get("raw") or {}).items()},
        )


@dataclass
class ImageContent:
    type: ClassVar[str] = "image"

    filename: str
    source_path: str
    file_size: int = 0
    hash: str = ""
    width: int = 0
    height: int = 0
    sizes: List[int] = field(default_factory=list)
    date_taken: Optional[datetime] = None
    exif: Optional[ExifData] = None
    processed_at: Optional[datetime] = None
    placeholder: Optional[str] = None


@dataclass
class MarkdownContent:
    type: ClassVar[str] = "markdown"

    filename: str
    source_path: str
    file_size: int = 0
    hash: str = ""


GalleryContent = Union[ImageContent, MarkdownContent]


def content_to_dict(item: GalleryContent) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "type": item.type,
        "filename": item.filename,
        "sourcePath": item.source_path,
        "fileSize": item.file_size,
        "hash": item.hash,
    }
    if item.type == ImageContent.type:
        d.update(
            {
                "width": item.width,
                "height": item.height,
                "sizes": list(item.sizes),
                "dateTaken": _iso(item.date_taken),
                "exif": item.exif.to_dict() if item.exif else None,
                "processedAt": _iso(item.processed_at),
                "placeholder": item.placeholder,
            }
        )
    return d


def content_from_dict(d: Dict[str, Any]) -> Optional[GalleryContent]:
    kind = d.get("type")
    common = dict(
        filename=d.get("filename") or "",
        source_path=d.get("sourcePath") or "",
        file_size=int(d.get("fileSize") or 0),
        hash=d.get("hash") or "",
    )
    if kind == ImageContent.type:
        exif = d.get("exif")
        return ImageContent(
            **common,
            width=int(d.get("width") or 0),
            height=int(d.get("height") or 0),
            sizes=[int(s) for s in d.get("sizes") or []],
            date_taken=_parse_datetime(d.get("dateTaken")),
            exif=ExifData.from_dict(exif) if isinstance(exif, dict) else None,
            processed_at=_parse_datetime(d.get("processedAt")),
            placeholder=d.get("placeholder"),
        )
    if kind == MarkdownContent.type:
        return MarkdownContent(**common)
    logger.warning("Skipping manifest content item with unknown type %r", kind)
    return None


# ---------- tree


@dataclass
class ManifestEntry:
    text: str
    path: str
    slug: Optional[str] = None
    description: Optional[str] = None
    cover: Optional[str] = None
    date: Optional[date] = None
    featured: bool = False
    hidden: bool = False
    template: Optional[str] = None
    filter: Optional[str] = None
    data_sources: Dict[str, str] = field(default_factory=dict)
    content: List[GalleryContent] = field(default_factory=list)
    children: List["ManifestEntry"] = field(default_factory=list)

    @property
    def is_gallery(self) -> bool:
        return self.slug is not None

    def images(self) -> List[ImageContent]:
        return [c for c in self.content if c.type == ImageContent.type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "slug": self.slug,
            "path": self.path,
            "description": self.description,
            "cover": self.cover,
            "date": _iso(self.date),
            "featured": self.featured,
            "hidden": self.hidden,
            "template": self.template,
            "filter": self.filter,
            "dataSources": dict(self.data_sources),
            "content": [content_to_dict(c) for c in self.content],
            "children": [c.to_dict() for c in self.children],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ManifestEntry":
        content = [content_from_dict(c) for c in d.get("content") or []]
        return cls(
            text=d.get("text") or "",
            slug=d.get("slug"),
            path=d.get("path") or "",
            description=d.get("description"),
            cover=d.get("cover"),
            date=_parse_date(d.get("date")),
            featured=bool(d.get("featured", False)),
            hidden=bool(d.get("hidden", False)),
            template=d.get("template"),
            filter=d.get("filter"),
            data_sources={
                str(k): str(v) for k, v in (d.get("dataSources") or {}).items()
            },
            content=[c for c in content if c is not None],
            children=[cls.from_dict(c) for c in d.get("children") or []],
        )


def iter_entries(entry: ManifestEntry) -> Iterator[ManifestEntry]:
    """Depth-first, parents before children."""
    yield entry
    for child in entry.children:
        yield from iter_entries(child)


def count_entries(entry: ManifestEntry) -> int:
    return sum(1 for _ in iter_entries(entry))


# ---------- document


@dataclass
class ManifestMeta:
    version: int = MANIFEST_VERSION
    config_hash: str = ""
    scan_config_hash: str = ""
    format_qualities: Dict[str, int] = field(default_factory=dict)
    last_scanned: Optional[datetime] = None
    # written by the image processing stage
    last_images_processed: Optional[datetime] = None
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "configHash": self.config_hash,
            "scanConfigHash": self.scan_config_hash,
            "formatQualities": dict(self.format_qualities),
            "lastScanned": _iso(self.last_scanned),
            "lastImagesProcessed": _iso(self.last_images_processed),
            "lastUpdated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ManifestMeta":
        return cls(
            version=int(d.get("version") or 0),
            config_hash=d.get("configHash") or "",
            scan_config_hash=d.get("scanConfigHash") or "",
            format_qualities={
                str(k): int(v) for k, v in (d.get("formatQualities") or {}).items()
            },
            last_scanned=_parse_datetime(d.get("lastScanned")),
            last_images_processed=_parse_datetime(d.get("lastImagesProcessed")),
            last_updated=_parse_datetime(d.get("lastUpdated")) or utcnow(),
        )


@dataclass
class ImageManifest:
    meta: ManifestMeta = field(default_factory=ManifestMeta)
    root: Optional[ManifestEntry] = None


def manifest_to_dict(manifest: ImageManifest) -> Dict[str, Any]:
    return {
        "_meta": manifest.meta.to_dict(),
        "root": manifest.root.to_dict() if manifest.root else None,
    }


def manifest_from_dict(d: Dict[str, Any]) -> ImageManifest:
    if not isinstance(d, dict):
        raise ValueError("manifest document must be a JSON object")
    meta = d.get("_meta")
    root = d.get("root")
    return ImageManifest(
        meta=ManifestMeta.from_dict(meta) if isinstance(meta, dict) else ManifestMeta(version=0),
        root=ManifestEntry.from_dict(root) if isinstance(root, dict) else None,
    )
