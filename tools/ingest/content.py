from __future__ import annotations

import logging
import pathlib
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import SiteConfig
from .errors import ScanCancelled
from .hashing import compute_config_hash, compute_scan_config_hash, needs_processing
from .images import read_metadata
from .manifest import ManifestEntry, count_entries, iter_entries, utcnow
from .navigation import MetadataReader, NavigationBuilder
from .repository import ManifestRepository
from .scanner import ContentScanner

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    success: bool
    gallery_count: int = 0
    image_count: int = 0
    markdown_count: int = 0
    entry_count: int = 0
    changed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration: float = 0.0
    error_message: Optional[str] = None
    config_changed: bool = False

    @property
    def unchanged(self) -> bool:
        """True when downstream processing can be skipped entirely."""
        return self.success and not (self.changed or self.removed or self.config_changed)


def _content_hashes(root: Optional[ManifestEntry]) -> Dict[str, str]:
    if root is None:
        return {}
    return {c.source_path: c.hash for e in iter_entries(root) for c in e.content}


class ContentService:
    """Scan the source tree and bring ``.cache/manifest.json`` up to date."""

    def __init__(
        self,
        project_dir: pathlib.Path,
        config: Optional[SiteConfig] = None,
        scanner: Optional[ContentScanner] = None,
        metadata_reader: Optional[MetadataReader] = None,
        repository: Optional[ManifestRepository] = None,
    ):
        self.project_dir = pathlib.Path(project_dir)
        self.config = config or SiteConfig()
        self.scanner = scanner or ContentScanner(workers=self.config.max_workers)
        self.navigation = NavigationBuilder.from_config(
            self.config, metadata_reader=metadata_reader or read_metadata
        )
        self.repository = repository or ManifestRepository(
            self.config.cache_dir(self.project_dir)
        )

    def scan(self, cancel_event: Optional[threading.Event] = None) -> ScanResult:
        started = time.monotonic()
        source = self.config.source_dir(self.project_dir)
        if not source.is_dir():
            return ScanResult(
                success=False,
                error_message=f"Source directory not found: {source}",
                duration=time.monotonic() - started,
            )

        try:
            previous = self.repository.load()
            images = self.config.images
            config_hash = compute_config_hash(images.sizes, images.formats)
            config_changed = bool(previous.meta.config_hash) and previous.meta.config_hash != config_hash
            if config_changed:
                logger.info("Image settings changed, all images will be reprocessed")
                for entry in iter_entries(previous.root) if previous.root else ():
                    for img in entry.images():
                        img.processed_at = None
            old_hashes = _content_hashes(previous.root)

            tree = self.scanner.scan(source, cancel_event=cancel_event)
            root = self.navigation.build_root(tree, previous=previous.root, cancel_event=cancel_event)

            new_hashes = _content_hashes(root)
            changed = sorted(p for p, h in new_hashes.items() if needs_processing(old_hashes.get(p), h))
            removed = sorted(p for p in old_hashes if p not in new_hashes)

            self.repository.set_root(root)
            meta = self.repository.manifest.meta
            meta.config_hash = config_hash
            meta.scan_config_hash = compute_scan_config_hash(
                self.config.gallery_order,
                self.config.image_sort,
                images.min_width,
                images.min_height,
            )
            meta.format_qualities = dict(images.formats)
            meta.last_scanned = utcnow()
            self.repository.save()
        except ScanCancelled:
            logger.info("Scan cancelled")
            raise
        except Exception as exc:
            logger.exception("Scan failed")
            return ScanResult(
                success=False,
                error_message=str(exc),
                duration=time.monotonic() - started,
            )

        return ScanResult(
            success=True,
            gallery_count=len(tree.galleries),
            image_count=len(tree.images),
            markdown_count=len(tree.markdowns),
            entry_count=count_entries(root),
            changed=changed,
            removed=removed,
            warnings=list(tree.warnings),
            duration=time.monotonic() - started,
            config_changed=config_changed,
        )
