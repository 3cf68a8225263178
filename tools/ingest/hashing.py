"""
Fast change-detection fingerprints for source files.

Algorithm: SHA-256 over the 8-byte little-endian file size followed by
the content, truncated to 12 hex characters.

- Files up to 128 KiB are hashed in full.
- Larger files contribute only their first and last 64 KiB.

A change confined to the interior of a large file (the byte range
[64 KiB, size - 64 KiB)) leaves the fingerprint unchanged. Edits that
change the size, the header (EXIF, format) or the trailer are detected.
This is a cache-freshness signal, not an integrity check.
"""

from __future__ import annotations

import hashlib
import pathlib
from typing import Iterable, Mapping, Optional

from .config import CHUNK_SIZE, HASH_LENGTH


def _digest(size: int, *chunks: bytes) -> str:
    h = hashlib.sha256()
    h.update(size.to_bytes(8, "little"))
    for chunk in chunks:
        h.update(chunk)
    return h.hexdigest()[:HASH_LENGTH]


def compute_hash(path: pathlib.Path) -> str:
    path = pathlib.Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found for hashing: {path}")

    with path.open("rb") as f:
        size = path.stat().st_size
        if size <= CHUNK_SIZE * 2:
            return _digest(size, f.read())
        first = f.read(CHUNK_SIZE)
        f.seek(-CHUNK_SIZE, 2)
        last = f.read(CHUNK_SIZE)
    return _digest(size, first, last)


def compute_config_hash(
    sizes: Iterable[int],
    formats: Mapping[str, int] | Iterable[str],
    quality: Optional[int] = None,
) -> str:
    """Fingerprint of the image-processing settings stored in ``_meta``."""
    sizes_str = ",".join(str(s) for s in sorted(sizes))
    if isinstance(formats, Mapping):
        formats_str = ",".join(f"{k}:{formats[k]}" for k in sorted(formats))
    else:
        formats_str = ",".join(sorted(formats))
    text = f"sizes:{sizes_str}|formats:{formats_str}"
    if quality is not None:
        text += f"|quality:{quality}"
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def compute_scan_config_hash(gallery_order: str, image_sort, min_width: int = 0, min_height: int = 0) -> str:
    """Fingerprint of the settings that shape the manifest tree itself."""
    text = (
        f"galleries:{gallery_order}"
        f"|images:{image_sort.field}:{image_sort.direction}:{image_sort.fallback}"
        f"|min:{min_width}x{min_height}"
    )
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def needs_processing(existing_hash: Optional[str], new_hash: str) -> bool:
    return not existing_hash or existing_hash != new_hash
