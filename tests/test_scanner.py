from __future__ import annotations

import threading
from pathlib import Path

import pytest

from ingest.errors import ScanCancelled, ScanError
from ingest.scanner import ContentScanner


def _scan(root: Path, workers: int = 1):
    return ContentScanner(workers=workers, renderer=lambda s: s).scan(root)


def test_galleries_in_natural_order(source_tree: Path):
    tree = _scan(source_tree)
    assert [g.path for g in tree.galleries] == [
        "01 Events/2024 Wedding",
        "01 Events/Concerts",
        "02 Portraits",
        "About",
        "Landscapes",
    ]


def test_gallery_titles_and_slugs(source_tree: Path):
    tree = _scan(source_tree)
    wedding = tree.gallery_for("01 Events/2024 Wedding")
    assert wedding.title == "Hochzeit"
    assert wedding.segment == "wedding"
    assert wedding.slug == "events/wedding/"
    assert tree.gallery_for("01 Events/Concerts").slug == "events/concerts/"
    portraits = tree.gallery_for("02 Portraits")
    assert portraits.title == "Portraits"
    assert portraits.slug == "portraits/"
    assert portraits.description == "Faces"


def test_index_only_directory_is_a_gallery(source_tree: Path):
    about = _scan(source_tree).gallery_for("About")
    assert about.images == []
    assert about.template == "about"
    assert about.title == "About me"
    # body is only rendered without a template
    assert about.raw_body == "Hi.\n"
    assert about.body is None


def test_root_metadata_without_root_gallery(source_tree: Path):
    tree = _scan(source_tree)
    assert tree.gallery_for("") is None
    assert tree.root_metadata.title == "My Portfolio"
    assert tree.root_metadata.description == "Photos"


def test_images_are_naturally_ordered_per_gallery(source_tree: Path):
    concerts = _scan(source_tree).gallery_for("01 Events/Concerts")
    assert [i.filename for i in concerts.images] == ["img1.jpg", "img2.jpg", "img10.jpg"]
    img = concerts.images[0]
    assert img.relative_path == "01 Events/Concerts/img1.jpg"
    assert img.gallery == "01 Events/Concerts"
    assert img.file_size > 0
    assert img.last_modified.tzinfo is not None


def test_markdown_only_collected_from_galleries_and_root(source_tree: Path):
    tree = _scan(source_tree)
    paths = [m.relative_path for m in tree.markdowns]
    assert "intro.md" in paths
    assert "01 Events/2024 Wedding/notes.md" in paths
    assert "About/about.md" in paths
    assert "01 Events/readme.md" not in paths
    assert not any(p.endswith("_index.md") for p in paths)


def test_underscore_and_dot_directories_are_skipped(source_tree: Path):
    paths = [i.relative_path for i in _scan(source_tree).images]
    assert not any(p.startswith(("_drafts", ".git")) for p in paths)


def test_shared_pool_images(source_tree: Path):
    tree = _scan(source_tree)
    pool = [i for i in tree.images if i.gallery == "_images"]
    assert [i.relative_path for i in pool] == ["_images/logo.png", "_images/screenshots/wizard.jpg"]
    assert all(g.path != "_images" for g in tree.galleries)


def test_slug_override_is_inherited(tmp_path: Path, make_image, write_text):
    src = tmp_path / "source"
    write_text(src / "01 Reisen" / "_index.md", "---\nslug: travel\n---\n")
    make_image(src / "01 Reisen" / "cover.jpg")
    make_image(src / "01 Reisen" / "02 Italien" / "rom.jpg")
    tree = _scan(src)
    assert tree.gallery_for("01 Reisen").slug == "travel/"
    assert tree.gallery_for("01 Reisen/02 Italien").slug == "travel/italien/"
    assert tree.gallery_for("01 Reisen/02 Italien").title == "Italien"


def test_root_with_images_is_a_gallery(tmp_path: Path, make_image):
    src = tmp_path / "source"
    make_image(src / "hero.jpg")
    root = _scan(src).gallery_for("")
    assert root is not None
    assert root.slug == ""
    assert root.title == "Home"
    assert [i.relative_path for i in root.images] == ["hero.jpg"]


def test_image_extensions_are_case_insensitive(tmp_path: Path, make_image, write_text):
    src = tmp_path / "source"
    make_image(src / "g" / "A.JPG")
    make_image(src / "g" / "b.Png")
    write_text(src / "g" / "c.txt", "no")
    assert [i.filename for i in _scan(src).images] == ["A.JPG", "b.Png"]


def test_parallel_scan_matches_sequential(source_tree: Path):
    seq = _scan(source_tree, workers=1)
    par = _scan(source_tree, workers=4)
    assert par.galleries == seq.galleries
    assert par.images == seq.images
    assert par.markdowns == seq.markdowns
    assert par.root_metadata == seq.root_metadata


def test_broken_metadata_is_a_warning(tmp_path: Path, make_image):
    src = tmp_path / "source"
    make_image(src / "Broken" / "a.jpg")
    (src / "Broken" / "_index.md").write_bytes(b"---\ntitle: \xff\n---\n")
    tree = _scan(src)
    gallery = tree.gallery_for("Broken")
    assert gallery.title == "Broken"
    assert len(tree.warnings) == 1
    assert "_index.md" in tree.warnings[0]


def test_missing_root_raises(tmp_path: Path):
    with pytest.raises(ScanError):
        _scan(tmp_path / "missing")


@pytest.mark.parametrize("workers", [1, 4])
def test_cancelled_scan_raises(source_tree: Path, workers):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScanCancelled):
        ContentScanner(workers=workers).scan(source_tree, cancel_event=cancel)


def _fail_on(monkeypatch, name: str):
    original = ContentScanner._list

    def _list(self, current, cancel):
        if current.name == name:
            raise ScanError(current, PermissionError("denied"))
        return original(self, current, cancel)

    monkeypatch.setattr(ContentScanner, "_list", _list)


def test_unreadable_subdirectory_fails_sequential_scan(source_tree: Path, monkeypatch):
    _fail_on(monkeypatch, "Concerts")
    with pytest.raises(ScanError):
        _scan(source_tree, workers=1)


def test_unreadable_subdirectory_is_dropped_in_parallel_scan(source_tree: Path, monkeypatch):
    _fail_on(monkeypatch, "Concerts")
    tree = _scan(source_tree, workers=4)
    assert tree.gallery_for("01 Events/Concerts") is None
    assert tree.gallery_for("Landscapes") is not None
    assert any("Concerts" in w for w in tree.warnings)
