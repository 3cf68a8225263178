"""Header-level image metadata: dimensions, EXIF and a tiny placeholder."""

from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from PIL import ExifTags, Image

from .manifest import ExifData

logger = logging.getLogger(__name__)

EXIF_IFD = 0x8769
GPS_IFD = 0x8825
ORIENTATION_TAG = 0x0112
# orientations 5..8 are rotated by 90 degrees
_SWAPPED_ORIENTATIONS = {5, 6, 7, 8}
PLACEHOLDER_GRID = (3, 2)


@dataclass
class ImageMetadata:
    width: int
    height: int
    file_size: int
    placeholder: Optional[str] = None
    date_taken: Optional[datetime] = None
    exif: Optional[ExifData] = None


def calculate_sizes(configured: Iterable[int], width: int) -> List[int]:
    """
    Widths to generate for an image of the given native width.

    Configured widths smaller than the original plus the original width
    itself (full-resolution lightbox); never anything wider than the source.
    """
    if width <= 0:
        return []
    return sorted({s for s in configured if 0 < s < width} | {width})


def _as_float(v: Any) -> Optional[float]:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _as_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, bytes):
        v = v.decode("utf-8", "ignore")
    s = str(v).strip("\x00 ").strip()
    return s or None


def _parse_exif_datetime(v: Any) -> Optional[datetime]:
    s = _as_str(v)
    if not s:
        return None
    try:
        return datetime.strptime(s[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def _gps_degrees(value: Any, ref: Any) -> Optional[float]:
    try:
        d, m, s = (float(x) for x in value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    deg = d + m / 60.0 + s / 3600.0
    if _as_str(ref) in ("S", "W"):
        deg = -deg
    return round(deg, 6)


def read_exif(img: Image.Image) -> Optional[ExifData]:
    exif = img.getexif()
    if not exif:
        return None
    sub = exif.get_ifd(EXIF_IFD)
    gps = exif.get_ifd(GPS_IFD)

    raw: Dict[str, str] = {}
    for tags in (exif, sub):
        for tag, value in tags.items():
            if tag in (EXIF_IFD, GPS_IFD) or isinstance(value, bytes):
                continue
            name = ExifTags.TAGS.get(tag)
            text = _as_str(value)
            if name and text:
                raw[name] = text

    iso = sub.get(0x8827)
    if isinstance(iso, tuple):
        iso = iso[0] if iso else None
    return ExifData(
        make=_as_str(exif.get(0x010F)),
        model=_as_str(exif.get(0x0110)),
        lens_model=_as_str(sub.get(0xA434)),
        date_taken=_parse_exif_datetime(sub.get(0x9003) or exif.get(0x0132)),
        f_number=_as_float(sub.get(0x829D)),
        exposure_time=_as_float(sub.get(0x829A)),
        iso=int(iso) if isinstance(iso, (int, float)) else None,
        focal_length=_as_float(sub.get(0x920A)),
        gps_latitude=_gps_degrees(gps.get(2), gps.get(1)) if gps else None,
        gps_longitude=_gps_degrees(gps.get(4), gps.get(3)) if gps else None,
        raw=raw,
    )


def compute_placeholder(img: Image.Image) -> str:
    """
    12 hex chars: average colour (6) followed by one brightness nibble per
    cell of a 3x2 grid (6). Templates turn it into CSS gradients.
    """
    if img.format == "JPEG":
        img.draft("RGB", (64, 64))
    rgb = img.convert("RGB")
    r, g, b = rgb.resize((1, 1), Image.Resampling.BOX).getpixel((0, 0))
    cells = rgb.convert("L").resize(PLACEHOLDER_GRID, Image.Resampling.BOX)
    nibbles = "".join(f"{v >> 4:x}" for v in cells.tobytes())
    return f"{r:02x}{g:02x}{b:02x}{nibbles}"


def read_metadata(path: pathlib.Path, placeholder: bool = True) -> ImageMetadata:
    path = pathlib.Path(path)
    file_size = path.stat().st_size
    try:
        img = Image.open(path)
    except Image.DecompressionBombError as exc:
        raise ValueError(str(exc)) from exc
    with img:
        width, height = img.size
        exif = read_exif(img)
        orientation = img.getexif().get(ORIENTATION_TAG)
        if orientation in _SWAPPED_ORIENTATIONS:
            width, height = height, width
        token = compute_placeholder(img) if placeholder else None
    return ImageMetadata(
        width=width,
        height=height,
        file_size=file_size,
        placeholder=token,
        date_taken=exif.date_taken if exif else None,
        exif=exif,
    )
