"""
Content discovery.

Walks the source directory once and classifies every directory:

- gallery: has images, or has an ``_index.md`` and is not the root
- branch: neither, but may have galleries below it (built later by
  the navigation builder from path prefixes)
- shared pool: the top-level ``_images`` directory, scanned recursively
  for images only

Directories starting with ``_`` or ``.`` are not descended into, except for
the shared pool.

Every directory is one unit of work. With more than one worker the walk runs
breadth-first on a thread pool; each task returns its own collector and the
collectors are merged in natural path order afterwards, so the result does
not depend on scheduling.
"""

from __future__ import annotations

import logging
import os
import pathlib
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .config import (
    HOME_TITLE,
    IMAGE_EXTENSIONS,
    INDEX_FILE_NAME,
    MARKDOWN_EXTENSION,
    SHARED_IMAGES_DIR,
)
from .errors import ScanCancelled, ScanError
from .frontmatter import EMPTY_METADATA, DirectoryMetadata, Renderer, load_metadata
from .models import ContentTree, Gallery, SourceImage, SourceMarkdown
from .utils import slugify, sort_natural, to_title

logger = logging.getLogger(__name__)

FALLBACK_SEGMENT = "gallery"


@dataclass(frozen=True)
class _DirectoryTask:
    rel_path: str
    segments: Tuple[str, ...] = ()
    pool: bool = False


@dataclass
class _DirectoryResult:
    task: _DirectoryTask
    gallery: Optional[Gallery] = None
    images: List[SourceImage] = field(default_factory=list)
    markdowns: List[SourceMarkdown] = field(default_factory=list)
    subdirs: List[_DirectoryTask] = field(default_factory=list)
    metadata: DirectoryMetadata = EMPTY_METADATA
    warnings: List[str] = field(default_factory=list)


def is_image_file(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in IMAGE_EXTENSIONS


def is_markdown_file(name: str) -> bool:
    return (
        name.lower().endswith(MARKDOWN_EXTENSION)
        and name.lower() != INDEX_FILE_NAME.lower()
    )


def _join(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def _slug_path(segments: Tuple[str, ...]) -> str:
    return "/".join(segments) + "/" if segments else ""


class ContentScanner:
    def __init__(self, workers: Optional[int] = None, renderer: Optional[Renderer] = None):
        self.workers = workers if workers and workers > 0 else (os.cpu_count() or 1)
        self.renderer = renderer

    # ---------- public

    def scan(
        self,
        source_root: pathlib.Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> ContentTree:
        root = pathlib.Path(source_root)
        cancel = cancel_event or threading.Event()
        logger.info("Scanning content directory: %s", root)
        if not root.is_dir():
            raise ScanError(root, FileNotFoundError("source directory not found"))

        root_task = _DirectoryTask(rel_path="")
        if self.workers > 1:
            results, warnings = self._walk_parallel(root, root_task, cancel)
        else:
            results, warnings = self._walk_sequential(root, root_task, cancel)

        tree = self._merge(results, root_task, warnings)
        logger.info(
            "Scan complete: %d images, %d galleries",
            len(tree.images),
            len(tree.galleries),
        )
        return tree

    # ---------- walking

    def _walk_sequential(self, root, root_task, cancel):
        results: Dict[str, _DirectoryResult] = {}
        stack = [root_task]
        while stack:
            task = stack.pop()
            result = self._scan_directory(root, task, cancel)
            results[task.rel_path] = result
            stack.extend(reversed(result.subdirs))
        return results, []

    def _walk_parallel(self, root, root_task, cancel):
        results: Dict[str, _DirectoryResult] = {}
        warnings: List[str] = []
        with ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="ingest-scan"
        ) as pool:
            pending: Dict[Future, _DirectoryTask] = {
                pool.submit(self._scan_directory, root, root_task, cancel): root_task
            }
            try:
                while pending:
                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                    for fut in done:
                        task = pending.pop(fut)
                        try:
                            result = fut.result()
                        except ScanError as exc:
                            if not task.rel_path:
                                raise
                            logger.error("Skipping unreadable subtree %s: %s", task.rel_path, exc)
                            warnings.append(f"skipped unreadable directory {exc.path}")
                            continue
                        results[task.rel_path] = result
                        for sub in result.subdirs:
                            pending[pool.submit(self._scan_directory, root, sub, cancel)] = sub
                    if cancel.is_set():
                        raise ScanCancelled("scan cancelled")
            except BaseException:
                for fut in pending:
                    fut.cancel()
                raise
        return results, warnings

    def _merge(self, results, root_task, warnings) -> ContentTree:
        tree = ContentTree(warnings=list(warnings))
        stack = [root_task]
        while stack:
            task = stack.pop()
            result = results.get(task.rel_path)
            if result is None:
                continue
            if not task.rel_path:
                tree.root_metadata = result.metadata
            if result.gallery is not None:
                tree.galleries.append(result.gallery)
            tree.images.extend(result.images)
            tree.markdowns.extend(result.markdowns)
            tree.warnings.extend(result.warnings)
            stack.extend(reversed(result.subdirs))
        return tree

    # ---------- one directory

    def _list(self, current: pathlib.Path, cancel) -> Tuple[List[os.DirEntry], List[os.DirEntry]]:
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as exc:
            raise ScanError(current, exc) from exc
        files, dirs = [], []
        for entry in entries:
            if cancel.is_set():
                raise ScanCancelled("scan cancelled")
            try:
                if entry.is_dir():
                    dirs.append(entry)
                elif entry.is_file():
                    files.append(entry)
            except OSError:
                logger.debug("Cannot stat %s, skipping", entry.path)
        key = lambda e: e.name  # noqa: E731
        return sort_natural(files, key), sort_natural(dirs, key)

    def _source_file(self, entry: os.DirEntry, rel_path: str, gallery: str, cls):
        try:
            st = entry.stat()
        except FileNotFoundError:
            logger.debug("File vanished during scan: %s", entry.path)
            return None
        return cls(
            source_path=pathlib.Path(entry.path),
            relative_path=rel_path,
            filename=entry.name,
            file_size=st.st_size,
            last_modified=datetime.fromtimestamp(st.st_mtime, timezone.utc),
            gallery=gallery,
        )

    def _scan_directory(
        self, root: pathlib.Path, task: _DirectoryTask, cancel: threading.Event
    ) -> _DirectoryResult:
        if cancel.is_set():
            raise ScanCancelled("scan cancelled")
        current = root / task.rel_path if task.rel_path else root
        files, dirs = self._list(current, cancel)
        if task.pool:
            return self._scan_pool_directory(task, files, dirs, cancel)

        result = _DirectoryResult(task=task)
        is_root = not task.rel_path
        name = current.name if not is_root else HOME_TITLE

        image_files = [f for f in files if is_image_file(f.name)]
        markdown_files = [f for f in files if is_markdown_file(f.name)]
        has_index = any(f.name == INDEX_FILE_NAME for f in files)

        if has_index:
            meta, error = load_metadata(current / INDEX_FILE_NAME, renderer=self.renderer)
            result.metadata = meta
            if error:
                result.warnings.append(error)
        meta = result.metadata

        segment = ""
        if not is_root:
            segment = slugify(meta.slug or name) if (meta.slug or name).strip() else ""
            segment = segment or FALLBACK_SEGMENT
        segments = task.segments + ((segment,) if segment else ())

        emits_gallery = bool(image_files) or (has_index and not is_root)
        if emits_gallery:
            result.gallery = Gallery(
                name=name,
                path=task.rel_path,
                slug=_slug_path(segments),
                segment=segment,
                title=meta.title or (HOME_TITLE if is_root else to_title(name)),
                description=meta.description,
                template=meta.template,
                sort=meta.sort,
                filter=meta.filter,
                cover=meta.cover,
                featured=meta.featured,
                date=meta.date,
                hidden=meta.hidden,
                data_sources=dict(meta.data_sources),
                raw_body=meta.raw_body,
                body=meta.body,
            )

        if emits_gallery or is_root:
            for f in image_files:
                if cancel.is_set():
                    raise ScanCancelled("scan cancelled")
                img = self._source_file(f, _join(task.rel_path, f.name), task.rel_path, SourceImage)
                if img is not None:
                    result.images.append(img)
            for f in markdown_files:
                if cancel.is_set():
                    raise ScanCancelled("scan cancelled")
                md = self._source_file(f, _join(task.rel_path, f.name), task.rel_path, SourceMarkdown)
                if md is not None:
                    result.markdowns.append(md)
            if result.gallery is not None:
                result.gallery.images = list(result.images)

        for d in dirs:
            if is_root and d.name == SHARED_IMAGES_DIR:
                result.subdirs.append(_DirectoryTask(rel_path=d.name, pool=True))
            elif d.name.startswith(("_", ".")):
                logger.debug("Skipping directory %s", d.path)
            else:
                result.subdirs.append(
                    _DirectoryTask(rel_path=_join(task.rel_path, d.name), segments=segments)
                )
        return result

    def _scan_pool_directory(self, task, files, dirs, cancel) -> _DirectoryResult:
        result = _DirectoryResult(task=task)
        for f in files:
            if cancel.is_set():
                raise ScanCancelled("scan cancelled")
            if not is_image_file(f.name):
                continue
            img = self._source_file(f, _join(task.rel_path, f.name), SHARED_IMAGES_DIR, SourceImage)
            if img is not None:
                result.images.append(img)
        for d in dirs:
            if not d.name.startswith("."):
                result.subdirs.append(
                    _DirectoryTask(rel_path=_join(task.rel_path, d.name), pool=True)
                )
        return result
