"""
Manifest persistence.

The manifest lives in ``<project>/.cache/manifest.json``. Nodes are addressed
by their source-relative path, images by their source path, so later build
phases can patch single entries without walking the tree.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Dict, Iterable, List, Optional

from .config import MANIFEST_FILE_NAME, MANIFEST_VERSION, SHARED_IMAGES_DIR
from .manifest import (
    ImageContent,
    ImageManifest,
    ManifestEntry,
    iter_entries,
    manifest_from_dict,
    manifest_to_dict,
    utcnow,
)
from .utils import normalize_rel_path, parent_rel_path

logger = logging.getLogger(__name__)


class ManifestRepository:
    def __init__(self, cache_dir: pathlib.Path):
        self.cache_dir = pathlib.Path(cache_dir)
        self.path = self.cache_dir / MANIFEST_FILE_NAME
        self.manifest = ImageManifest()
        self._nodes: Dict[str, ManifestEntry] = {}
        self._images: Dict[str, ImageContent] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    # ---------- persistence

    def load(self) -> ImageManifest:
        if not self.path.exists():
            logger.debug("No manifest at %s, starting empty", self.path)
            return self._reset()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            manifest = manifest_from_dict(data)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Ignoring unreadable manifest %s: %s", self.path, exc)
            return self._reset()
        if manifest.meta.version != MANIFEST_VERSION:
            logger.warning(
                "Manifest version %s does not match %s, starting empty",
                manifest.meta.version,
                MANIFEST_VERSION,
            )
            return self._reset()
        self.manifest = manifest
        self._reindex()
        logger.debug("Loaded manifest with %d images", len(self._images))
        return manifest

    def save(self) -> None:
        self.manifest.meta.last_updated = utcnow()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(manifest_to_dict(self.manifest), indent=2, ensure_ascii=False)

        fd, tmp = tempfile.mkstemp(
            prefix=f".{MANIFEST_FILE_NAME}.", suffix=".tmp", dir=self.cache_dir
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Saved manifest to %s", self.path)

    def clear(self) -> None:
        self._reset()
        if self.path.exists():
            self.path.unlink()

    def _reset(self) -> ImageManifest:
        self.manifest = ImageManifest()
        self._reindex()
        return self.manifest

    def _reindex(self) -> None:
        self._nodes.clear()
        self._images.clear()
        if self.manifest.root is None:
            return
        for entry in iter_entries(self.manifest.root):
            self._nodes[entry.path] = entry
            for img in entry.images():
                self._images[img.source_path] = img

    # ---------- tree

    @property
    def root(self) -> Optional[ManifestEntry]:
        return self.manifest.root

    def set_root(self, root: ManifestEntry) -> None:
        self.manifest.root = root
        self._reindex()

    def find_entry(self, path: str) -> Optional[ManifestEntry]:
        return self._nodes.get(normalize_rel_path(path))

    def node_lock(self, path: str) -> threading.Lock:
        """One lock per node; hold it while mutating that node's content."""
        path = normalize_rel_path(path)
        with self._guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    # ---------- images

    @property
    def images(self) -> Dict[str, ImageContent]:
        return dict(self._images)

    def get_image(self, source_path: str) -> Optional[ImageContent]:
        return self._images.get(normalize_rel_path(source_path))

    def _owner_path(self, source_path: str) -> str:
        if source_path.split("/", 1)[0] == SHARED_IMAGES_DIR:
            return SHARED_IMAGES_DIR
        return parent_rel_path(source_path)

    def _owner(self, source_path: str) -> ManifestEntry:
        if self.manifest.root is None:
            raise ValueError("manifest has no root; scan first")
        path = self._owner_path(source_path)
        node = self._nodes.get(path)
        if node is None and path == SHARED_IMAGES_DIR:
            with self.node_lock(""):
                node = self._nodes.get(path)
                if node is None:
                    node = ManifestEntry(
                        text=SHARED_IMAGES_DIR, path=SHARED_IMAGES_DIR, slug=None, hidden=True
                    )
                    self.manifest.root.children.append(node)
                    self._nodes[path] = node
        if node is None:
            raise ValueError(f"no manifest entry owns {source_path}")
        return node

    def set_image(self, source_path: str, image: ImageContent) -> None:
        source_path = normalize_rel_path(source_path)
        image.source_path = source_path
        node = self._owner(source_path)
        with self.node_lock(node.path):
            for i, item in enumerate(node.content):
                if item.type == ImageContent.type and item.source_path == source_path:
                    node.content[i] = image
                    break
            else:
                node.content.append(image)
            self._images[source_path] = image

    def remove_image(self, source_path: str) -> bool:
        source_path = normalize_rel_path(source_path)
        if source_path not in self._images:
            return False
        node = self._nodes.get(self._owner_path(source_path))
        if node is not None:
            with self.node_lock(node.path):
                node.content = [
                    c
                    for c in node.content
                    if not (c.type == ImageContent.type and c.source_path == source_path)
                ]
        del self._images[source_path]
        return True

    def remove_orphans(self, existing: Iterable[str]) -> List[str]:
        keep = {normalize_rel_path(p) for p in existing}
        orphans = sorted(p for p in self._images if p not in keep)
        for p in orphans:
            self.remove_image(p)
        if orphans:
            logger.info("Removed %d orphaned images from manifest", len(orphans))
        return orphans
