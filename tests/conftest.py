from __future__ import annotations

from pathlib import Path
from typing import Tuple

import pytest
from PIL import Image

from ingest.images import ImageMetadata


def _write_image(path: Path, size: Tuple[int, int] = (32, 24), color=(200, 80, 40)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


def _write_text(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def make_image():
    return _write_image


@pytest.fixture
def write_text():
    return _write_text


@pytest.fixture
def fake_reader():
    """Metadata reader that never decodes pixels: every image is 800x600."""

    def read(path, placeholder=True):
        return ImageMetadata(width=800, height=600, file_size=Path(path).stat().st_size, placeholder="abcdef012345")

    return read


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """
    source/
      _index.md             title: My Portfolio
      intro.md
      01 Events/            branch (no images, no _index.md)
        readme.md           ignored, not a gallery
        2024 Wedding/       _index.md with title + slug override
        Concerts/
      02 Portraits/
      About/                _index.md only (text page)
      Landscapes/
      _drafts/              ignored
      .git/                 ignored
      _images/              shared pool
    """
    src = tmp_path / "source"
    _write_text(src / "_index.md", "---\ntitle: My Portfolio\ndescription: Photos\n---\n")
    _write_text(src / "intro.md", "# Hello\n")

    events = src / "01 Events"
    _write_text(events / "readme.md", "not collected\n")
    wedding = events / "2024 Wedding"
    _write_text(wedding / "_index.md", "---\ntitle: Hochzeit\nslug: wedding\n---\n")
    _write_image(wedding / "b.jpg", color=(10, 20, 30))
    _write_image(wedding / "a.jpg", color=(30, 20, 10))
    _write_text(wedding / "notes.md", "Some *notes*\n")

    concerts = events / "Concerts"
    for i, name in enumerate(("img10.jpg", "img2.jpg", "img1.jpg")):
        _write_image(concerts / name, color=(i * 40, 100, 100))

    _write_text(src / "02 Portraits" / "_index.md", "---\ndescription: Faces\n---\n")
    _write_image(src / "02 Portraits" / "p.png", color=(0, 0, 255))

    _write_text(src / "About" / "_index.md", "---\ntitle: About me\ntemplate: about\n---\nHi.\n")
    _write_text(src / "About" / "about.md", "about\n")

    _write_image(src / "Landscapes" / "l.jpg", color=(0, 255, 0))

    _write_image(src / "_drafts" / "x.jpg")
    _write_image(src / ".git" / "y.jpg")

    _write_image(src / "_images" / "logo.png", color=(255, 255, 255))
    _write_image(src / "_images" / "screenshots" / "wizard.jpg")
    return src
