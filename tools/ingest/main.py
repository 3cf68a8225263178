#!/usr/bin/env python3
"""
Content ingestion for the photo portfolio.

- scan: walk source/, fingerprint every image and markdown file, write
  .cache/manifest.json
- show: print the manifest tree

Directory rules:
- a directory with images (or an _index.md) is a gallery
- folders between galleries become branch nodes
- _images/ is a shared pool, hidden from navigation
- other _ and . folders are ignored
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
import threading
from typing import List, Optional

from .config import SITE_CONFIG_FILE_NAME, load_site_config
from .content import ContentService, ScanResult
from .errors import IngestError, ScanCancelled
from .manifest import ManifestEntry
from .repository import ManifestRepository

EXIT_CANCELLED = 130
MAX_LISTED = 20


def _print_list(marker: str, label: str, items: List[str]) -> None:
    for p in items[:MAX_LISTED]:
        print(f"{marker} {label} {p}")
    if len(items) > MAX_LISTED:
        print(f"{marker} ... and {len(items) - MAX_LISTED} more")


def report(result: ScanResult) -> None:
    print(
        f"✓ {result.gallery_count} galleries, {result.image_count} images, "
        f"{result.markdown_count} markdown files, {result.entry_count} entries "
        f"in {result.duration:.2f}s"
    )
    if result.unchanged:
        print("= no changes, skip processing")
    else:
        if result.config_changed:
            print("! image settings changed, all images need processing")
        _print_list("✓", "changed", result.changed)
        _print_list("-", "removed", result.removed)
    for w in result.warnings:
        print(f"! {w}")


def print_tree(entry: ManifestEntry, depth: int = 0) -> None:
    slug = entry.slug if entry.slug is not None else "(no slug)"
    flags = " [hidden]" if entry.hidden else ""
    print(f"{'  ' * depth}{entry.text}  /{slug}  {len(entry.content)} items{flags}")
    for child in entry.children:
        print_tree(child, depth + 1)


def cmd_scan(args) -> int:
    project = pathlib.Path(args.project).resolve()
    config = load_site_config(args.config or project / SITE_CONFIG_FILE_NAME)
    if args.workers is not None:
        config.workers = args.workers

    cancel = threading.Event()
    service = ContentService(project, config)
    try:
        result = service.scan(cancel_event=cancel)
    except KeyboardInterrupt:
        cancel.set()
        print("! cancelled", file=sys.stderr)
        return EXIT_CANCELLED
    except ScanCancelled:
        print("! cancelled", file=sys.stderr)
        return EXIT_CANCELLED

    if not result.success:
        print(f"! {result.error_message}", file=sys.stderr)
        return 1
    report(result)
    return 0


def cmd_show(args) -> int:
    project = pathlib.Path(args.project).resolve()
    config = load_site_config(args.config or project / SITE_CONFIG_FILE_NAME)
    repo = ManifestRepository(config.cache_dir(project))
    repo.load()
    if repo.root is None:
        print(f"- no manifest in {repo.path}")
        return 1
    print_tree(repo.root)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfolio-ingest", description="Scan portfolio sources into a manifest."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="scan the source tree and update the manifest")
    scan.add_argument("project", nargs="?", default=".", help="project directory")
    scan.add_argument("--config", type=pathlib.Path, help=f"path to {SITE_CONFIG_FILE_NAME}")
    scan.add_argument("--workers", type=int, help="worker threads (default: CPU count)")
    scan.set_defaults(func=cmd_scan)

    show = sub.add_parser("show", help="print the manifest tree")
    show.add_argument("project", nargs="?", default=".", help="project directory")
    show.add_argument("--config", type=pathlib.Path, help=f"path to {SITE_CONFIG_FILE_NAME}")
    show.set_defaults(func=cmd_show)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except IngestError as exc:
        print(f"! {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
