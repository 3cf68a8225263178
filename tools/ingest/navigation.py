"""
Turns the flat scan result into the nested manifest tree.

Every gallery becomes a node. Directories between galleries that produced
nothing themselves become branch nodes (no slug) so the tree mirrors the
source layout. Pool images hang off one hidden node appended after the
regular children of the root.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import HOME_TITLE, SHARED_IMAGES_DIR, ImageSizesProvider, SortSpec
from .errors import ScanCancelled
from .hashing import compute_hash
from .images import ImageMetadata, calculate_sizes, read_metadata
from .manifest import (
    GalleryContent,
    ImageContent,
    ManifestEntry,
    MarkdownContent,
    count_entries,
    iter_entries,
)
from .models import ContentTree, Gallery, SourceImage, SourceMarkdown
from .scanner import FALLBACK_SEGMENT
from .utils import natural_compare, parent_rel_path, slugify, sort_natural, to_title

logger = logging.getLogger(__name__)

MetadataReader = Callable[..., ImageMetadata]


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def _segment_for(name: str) -> str:
    seg = slugify(name) if name.strip() else ""
    return seg or FALLBACK_SEGMENT


def _unique(segment: str, used: set) -> str:
    # same scheme as heading anchors: foo, foo-1, foo-2, ...
    candidate, n = segment, 0
    while candidate in used:
        n += 1
        candidate = f"{segment}-{n}"
    used.add(candidate)
    return candidate


# ---------- content sorting


def parse_sort(value: Optional[str], default: SortSpec) -> SortSpec:
    """``"dateTaken:desc"`` -> SortSpec; falls back to *default* when unset."""
    if not value or not value.strip():
        return default
    field, _, direction = value.strip().partition(":")
    direction = direction.strip().lower()
    if direction not in ("asc", "desc"):
        direction = "asc"
    return SortSpec(field=field.strip() or default.field, direction=direction, fallback=default.fallback)


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _field_value(item: GalleryContent, field: str) -> Any:
    if field == "filename":
        return item.filename
    if not isinstance(item, ImageContent):
        return None
    if field == "dateTaken":
        return item.date_taken or (item.exif.date_taken if item.exif else None)
    if field.startswith("exif.raw."):
        return item.exif.raw.get(field[len("exif.raw.") :]) if item.exif else None
    if field.startswith("exif."):
        attr = field[len("exif.") :]
        # camelCase in config, snake_case on the dataclass
        attr = "".join("_" + c.lower() if c.isupper() else c for c in attr)
        return getattr(item.exif, attr, None) if item.exif else None
    return None


def _compare_field(a: GalleryContent, b: GalleryContent, field: str, descending: bool) -> int:
    va = _blank_to_none(_field_value(a, field))
    vb = _blank_to_none(_field_value(b, field))
    if va is None or vb is None:
        # missing and blank values always last
        return (va is None) - (vb is None)
    if isinstance(va, str) and isinstance(vb, str):
        c = natural_compare(va, vb)
    else:
        try:
            c = (va > vb) - (va < vb)
        except TypeError:
            c = 0
    return -c if descending else c


def sort_content(items: Sequence[GalleryContent], sort: SortSpec) -> List[GalleryContent]:
    """
    Images ordered by *sort* (then its fallback, then filename); markdown
    files follow in natural filename order.
    """
    descending = sort.direction == "desc"

    def cmp(a, b):
        return (
            _compare_field(a, b, sort.field, descending)
            or _compare_field(a, b, sort.fallback, False)
            or natural_compare(a.filename, b.filename)
        )

    images = [i for i in items if i.type == ImageContent.type]
    others = [i for i in items if i.type != ImageContent.type]
    return sorted(images, key=cmp_to_key(cmp)) + sort_natural(others, key=lambda i: i.filename)


# ---------- builder


class NavigationBuilder:
    def __init__(
        self,
        sizes_provider: Optional[ImageSizesProvider] = None,
        metadata_reader: MetadataReader = read_metadata,
        workers: Optional[int] = None,
        min_width: int = 0,
        min_height: int = 0,
        gallery_order: str = "asc",
        image_sort: Optional[SortSpec] = None,
        placeholder: bool = True,
    ):
        self.sizes_provider = sizes_provider
        self.metadata_reader = metadata_reader
        self.workers = workers if workers and workers > 0 else (os.cpu_count() or 1)
        self.min_width = min_width
        self.min_height = min_height
        self.gallery_order = gallery_order
        self.image_sort = image_sort or SortSpec()
        self.placeholder = placeholder

    @classmethod
    def from_config(cls, config, metadata_reader: MetadataReader = read_metadata):
        return cls(
            sizes_provider=ImageSizesProvider(config),
            metadata_reader=metadata_reader,
            workers=config.max_workers,
            min_width=config.images.min_width,
            min_height=config.images.min_height,
            gallery_order=config.gallery_order,
            image_sort=config.image_sort,
            placeholder=config.images.placeholder,
        )

    # ---------- content items

    def _image_item(
        self,
        src: SourceImage,
        sizes: List[int],
        previous: Dict[str, ImageContent],
        cancel: threading.Event,
    ) -> Optional[ImageContent]:
        if cancel.is_set():
            raise ScanCancelled("scan cancelled")
        digest = compute_hash(src.source_path)
        item = ImageContent(
            filename=src.filename,
            source_path=src.relative_path,
            file_size=src.file_size,
            hash=digest,
        )
        try:
            meta = self.metadata_reader(src.source_path, placeholder=self.placeholder)
        except (OSError, ValueError, SyntaxError) as exc:
            logger.warning("Cannot read image metadata for %s: %s", src.relative_path, exc)
            meta = None

        if meta is not None:
            if meta.width < self.min_width or meta.height < self.min_height:
                logger.info(
                    "Skipping %s: %dx%d is below the minimum size",
                    src.relative_path,
                    meta.width,
                    meta.height,
                )
                return None
            item.width = meta.width
            item.height = meta.height
            item.sizes = calculate_sizes(sizes, meta.width)
            item.placeholder = meta.placeholder
            item.date_taken = meta.date_taken
            item.exif = meta.exif

        prev = previous.get(src.relative_path)
        if prev is not None and prev.hash == digest:
            item.processed_at = prev.processed_at
        return item

    def _markdown_item(self, src: SourceMarkdown, cancel: threading.Event) -> MarkdownContent:
        if cancel.is_set():
            raise ScanCancelled("scan cancelled")
        return MarkdownContent(
            filename=src.filename,
            source_path=src.relative_path,
            file_size=src.file_size,
            hash=compute_hash(src.source_path),
        )

    def _build_items(self, tree: ContentTree, previous, cancel) -> Dict[str, List[GalleryContent]]:
        """Hash and inspect every file; returns content grouped by gallery path."""
        sizes = self.sizes_provider.get_sizes() if (tree.images and self.sizes_provider) else []

        def image_job(src):
            return src.gallery, self._image_item(src, sizes, previous, cancel)

        def markdown_job(src):
            return src.gallery, self._markdown_item(src, cancel)

        jobs: List[Tuple[Callable, Any]] = [(image_job, s) for s in tree.images]
        jobs += [(markdown_job, s) for s in tree.markdowns]

        if self.workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="ingest-hash"
            ) as pool:
                futures = [pool.submit(fn, src) for fn, src in jobs]
                try:
                    results = [f.result() for f in futures]
                except BaseException:
                    for f in futures:
                        f.cancel()
                    raise
        else:
            results = [fn(src) for fn, src in jobs]

        grouped: Dict[str, List[GalleryContent]] = {}
        for gallery, item in results:
            if item is not None:
                grouped.setdefault(gallery, []).append(item)
        return grouped

    # ---------- tree

    def _gallery_node(self, gallery: Gallery) -> ManifestEntry:
        return ManifestEntry(
            text=gallery.title,
            path=gallery.path,
            slug=gallery.slug,
            description=gallery.description,
            cover=gallery.cover,
            date=gallery.date,
            featured=gallery.featured,
            hidden=gallery.hidden,
            template=gallery.template,
            filter=gallery.filter,
            data_sources=dict(gallery.data_sources),
        )

    def _root_node(self, tree: ContentTree) -> ManifestEntry:
        meta = tree.root_metadata
        return ManifestEntry(
            text=meta.title or HOME_TITLE,
            path="",
            slug="",
            description=meta.description,
            cover=meta.cover,
            date=meta.date,
            featured=meta.featured,
            template=meta.template,
            filter=meta.filter,
            data_sources=dict(meta.data_sources),
        )

    def _assign_slugs(self, node: ManifestEntry, base: str, segments: Dict[str, str]):
        used: set = set()
        for child in node.children:
            seg = _unique(segments[child.path], used)
            child_base = f"{base}{seg}/"
            if child.slug is not None:
                child.slug = child_base
            self._assign_slugs(child, child_base, segments)

    def build_root(
        self,
        tree: ContentTree,
        previous: Optional[ManifestEntry] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ManifestEntry:
        cancel = cancel_event or threading.Event()
        prev_images: Dict[str, ImageContent] = {}
        if previous is not None:
            for entry in iter_entries(previous):
                for img in entry.images():
                    prev_images[img.source_path] = img

        items = self._build_items(tree, prev_images, cancel)
        root = self._root_node(tree)
        nodes: Dict[str, ManifestEntry] = {"": root}
        segments: Dict[str, str] = {}
        sorts: Dict[str, SortSpec] = {"": parse_sort(tree.root_metadata.sort, self.image_sort)}

        for gallery in tree.galleries:
            if not gallery.path:
                continue
            nodes[gallery.path] = self._gallery_node(gallery)
            segments[gallery.path] = gallery.segment or _segment_for(gallery.name)
            sorts[gallery.path] = parse_sort(gallery.sort, self.image_sort)

        # branch nodes for every missing ancestor
        for path in list(nodes):
            parent = parent_rel_path(path) if path else None
            while parent and parent not in nodes:
                name = _basename(parent)
                nodes[parent] = ManifestEntry(text=to_title(name), path=parent, slug=None)
                segments[parent] = _segment_for(name)
                parent = parent_rel_path(parent)

        for path, node in nodes.items():
            if path:
                nodes[parent_rel_path(path)].children.append(node)
            node.content = sort_content(items.get(path, []), sorts.get(path, self.image_sort))

        descending = self.gallery_order == "desc"
        for node in nodes.values():
            node.children = sort_natural(
                node.children, key=lambda n: _basename(n.path), descending=descending
            )
        self._assign_slugs(root, "", segments)

        pool = items.get(SHARED_IMAGES_DIR)
        if pool:
            root.children.append(
                ManifestEntry(
                    text=SHARED_IMAGES_DIR,
                    path=SHARED_IMAGES_DIR,
                    slug=None,
                    hidden=True,
                    content=sort_content(pool, SortSpec()),
                )
            )

        logger.info("Navigation complete: %d entries", count_entries(root))
        return root
