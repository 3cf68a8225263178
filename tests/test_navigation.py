from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from PIL import Image

from ingest.config import ImageSizesProvider, SiteConfig, SortSpec
from ingest.images import ImageMetadata, read_metadata
from ingest.manifest import ImageContent, iter_entries
from ingest.navigation import NavigationBuilder, parse_sort, sort_content
from ingest.scanner import ContentScanner


def _tree(root: Path):
    return ContentScanner(workers=1, renderer=lambda s: s).scan(root)


def _builder(reader, **kwargs) -> NavigationBuilder:
    return NavigationBuilder(
        sizes_provider=ImageSizesProvider(SiteConfig()),
        metadata_reader=reader,
        workers=kwargs.pop("workers", 1),
        **kwargs,
    )


def _by_path(root):
    return {e.path: e for e in iter_entries(root)}


def test_root_and_branch_nodes(source_tree: Path, fake_reader):
    root = _builder(fake_reader).build_root(_tree(source_tree))
    assert root.slug == ""
    assert root.path == ""
    assert root.text == "My Portfolio"
    assert [c.text for c in root.children] == ["Events", "Portraits", "About me", "Landscapes", "_images"]

    events = root.children[0]
    assert events.path == "01 Events"
    assert events.slug is None
    assert events.content == []
    assert [c.text for c in events.children] == ["Hochzeit", "Concerts"]
    assert [c.slug for c in events.children] == ["events/wedding/", "events/concerts/"]


def test_metadata_fields_are_copied(source_tree: Path, fake_reader):
    nodes = _by_path(_builder(fake_reader).build_root(_tree(source_tree)))
    about = nodes["About"]
    assert about.template == "about"
    assert about.slug == "about/"
    assert [c.filename for c in about.content] == ["about.md"]
    assert nodes["02 Portraits"].description == "Faces"


def test_pool_node_is_last_hidden_and_slugless(source_tree: Path, fake_reader):
    root = _builder(fake_reader).build_root(_tree(source_tree))
    pool = root.children[-1]
    assert pool.text == "_images"
    assert pool.path == "_images"
    assert pool.slug is None
    assert pool.hidden is True
    assert [c.source_path for c in pool.content] == ["_images/logo.png", "_images/screenshots/wizard.jpg"]
    assert all(c.type == "markdown" for c in root.content)


def test_only_pool_tree(tmp_path: Path, make_image, fake_reader):
    src = tmp_path / "source"
    make_image(src / "_images" / "a.jpg")
    make_image(src / "_images" / "b.jpg")
    root = _builder(fake_reader).build_root(_tree(src))
    assert len(root.children) == 1
    pool = root.children[0]
    assert pool.hidden and pool.slug is None
    assert len(pool.content) == 2
    assert root.images() == []


def test_empty_pool_is_omitted(tmp_path: Path, make_image, fake_reader):
    src = tmp_path / "source"
    make_image(src / "Gallery" / "a.jpg")
    (src / "_images").mkdir()
    root = _builder(fake_reader).build_root(_tree(src))
    assert [c.path for c in root.children] == ["Gallery"]


def test_image_fields_and_sizes(source_tree: Path, fake_reader):
    nodes = _by_path(_builder(fake_reader).build_root(_tree(source_tree)))
    img = nodes["Landscapes"].content[0]
    assert img.type == "image"
    assert img.source_path == "Landscapes/l.jpg"
    assert len(img.hash) == 12
    assert (img.width, img.height) == (800, 600)
    assert img.sizes == [640, 800]
    assert img.placeholder == "abcdef012345"


def test_real_metadata_reader(source_tree: Path):
    nodes = _by_path(NavigationBuilder(workers=2).build_root(_tree(source_tree)))
    img = nodes["Landscapes"].content[0]
    assert (img.width, img.height) == (32, 24)
    assert img.sizes == [32]
    assert len(img.placeholder) == 12


def test_markdown_gets_hash(source_tree: Path, fake_reader):
    root = _builder(fake_reader).build_root(_tree(source_tree))
    md = [c for c in root.content if c.filename == "intro.md"][0]
    assert md.type == "markdown"
    assert len(md.hash) == 12


def test_every_image_gallery_has_unique_slug(tmp_path: Path, make_image, fake_reader):
    src = tmp_path / "source"
    make_image(src / "01 Events" / "a.jpg")
    make_image(src / "Events" / "b.jpg")
    make_image(src / "Events" / "Sub" / "c.jpg")
    make_image(src / "01 Events" / "Sub" / "d.jpg")
    root = _builder(fake_reader).build_root(_tree(src))
    slugs = [e.slug for e in iter_entries(root) if e.images()]
    assert None not in slugs
    assert len(slugs) == len(set(slugs))
    assert sorted(slugs) == ["events-1/", "events-1/sub/", "events/", "events/sub/"]


def test_content_order_is_natural(source_tree: Path, fake_reader):
    nodes = _by_path(_builder(fake_reader).build_root(_tree(source_tree)))
    assert [c.filename for c in nodes["01 Events/Concerts"].content] == ["img1.jpg", "img2.jpg", "img10.jpg"]
    wedding = nodes["01 Events/2024 Wedding"].content
    assert [c.filename for c in wedding] == ["a.jpg", "b.jpg", "notes.md"]


def test_descending_gallery_order(source_tree: Path, fake_reader):
    root = _builder(fake_reader, gallery_order="desc").build_root(_tree(source_tree))
    assert [c.text for c in root.children] == ["Landscapes", "About me", "Portraits", "Events", "_images"]


def test_min_size_filter(source_tree: Path, fake_reader):
    root = _builder(fake_reader, min_width=1000).build_root(_tree(source_tree))
    assert all(e.images() == [] for e in iter_entries(root))


def test_unreadable_metadata_keeps_image(source_tree: Path):
    def broken(path, placeholder=True):
        raise OSError("cannot identify image file")

    nodes = _by_path(_builder(broken).build_root(_tree(source_tree)))
    img = nodes["Landscapes"].content[0]
    assert (img.width, img.height, img.sizes) == (0, 0, [])
    assert len(img.hash) == 12


def test_sort_by_date_taken(tmp_path: Path, make_image):
    src = tmp_path / "source"
    dates = {"a.jpg": datetime(2024, 1, 3), "b.jpg": datetime(2024, 1, 1), "c.jpg": None}
    for name in dates:
        make_image(src / "G" / name)

    def reader(path, placeholder=True):
        return ImageMetadata(width=100, height=100, file_size=1, date_taken=dates[Path(path).name])

    builder = _builder(reader, image_sort=SortSpec(field="dateTaken", direction="asc"))
    content = builder.build_root(_tree(src)).children[0].content
    assert [c.filename for c in content] == ["b.jpg", "a.jpg", "c.jpg"]

    builder = _builder(reader, image_sort=SortSpec(field="dateTaken", direction="desc"))
    content = builder.build_root(_tree(src)).children[0].content
    assert [c.filename for c in content] == ["a.jpg", "b.jpg", "c.jpg"]


def test_gallery_sort_directive_overrides_default(tmp_path: Path, make_image, write_text, fake_reader):
    src = tmp_path / "source"
    write_text(src / "G" / "_index.md", "---\nsort: filename:desc\n---\n")
    for name in ("x1.jpg", "x2.jpg", "x10.jpg"):
        make_image(src / "G" / name)
    content = _builder(fake_reader).build_root(_tree(src)).children[0].content
    assert [c.filename for c in content] == ["x10.jpg", "x2.jpg", "x1.jpg"]


def test_parse_sort():
    default = SortSpec()
    assert parse_sort(None, default) is default
    spec = parse_sort("exif.fNumber:DESC", default)
    assert (spec.field, spec.direction) == ("exif.fNumber", "desc")
    assert parse_sort("dateTaken", default).direction == "asc"


def test_sort_content_by_exif_raw():
    from ingest.manifest import ExifData

    items = [
        ImageContent(filename="a.jpg", source_path="a.jpg", exif=ExifData(raw={"Software": "Zeta"})),
        ImageContent(filename="b.jpg", source_path="b.jpg", exif=ExifData(raw={"Software": "Alpha"})),
        ImageContent(filename="c.jpg", source_path="c.jpg"),
    ]
    out = sort_content(items, SortSpec(field="exif.raw.Software"))
    assert [i.filename for i in out] == ["b.jpg", "a.jpg", "c.jpg"]



def test_blank_sort_values_sort_last():
    from ingest.manifest import ExifData

    items = [
        ImageContent(filename="a.jpg", source_path="a.jpg", exif=ExifData(raw={"ImageDescription": "   "})),
        ImageContent(filename="b.jpg", source_path="b.jpg", exif=ExifData(raw={"ImageDescription": "Zeta"})),
        ImageContent(filename="c.jpg", source_path="c.jpg", exif=ExifData(raw={"ImageDescription": ""})),
        ImageContent(filename="d.jpg", source_path="d.jpg", exif=ExifData(raw={"ImageDescription": "Alpha"})),
    ]
    out = sort_content(items, SortSpec(field="exif.raw.ImageDescription"))
    assert [i.filename for i in out] == ["d.jpg", "b.jpg", "a.jpg", "c.jpg"]
    out = sort_content(items, SortSpec(field="exif.raw.ImageDescription", direction="desc"))
    assert [i.filename for i in out] == ["b.jpg", "d.jpg", "a.jpg", "c.jpg"]


def test_blank_exif_tags_are_dropped(tmp_path: Path):
    path = tmp_path / "padded.jpg"
    exif = Image.Exif()
    exif[0x010E] = "    "
    exif[0x010F] = "Canon"
    Image.new("RGB", (16, 16)).save(path, exif=exif)
    meta = read_metadata(path)
    assert meta.exif.make == "Canon"
    assert meta.exif.raw["Make"] == "Canon"
    assert "ImageDescription" not in meta.exif.raw


def test_oversized_image_is_kept_without_metadata(tmp_path: Path, make_image, monkeypatch):
    src = tmp_path / "source"
    make_image(src / "G" / "big.jpg", size=(100, 100))
    make_image(src / "G" / "ok.jpg", size=(10, 10))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    root = NavigationBuilder(sizes_provider=ImageSizesProvider(SiteConfig()), workers=1).build_root(_tree(src))
    content = root.children[0].content
    assert [c.filename for c in content] == ["big.jpg", "ok.jpg"]
    assert (content[0].width, content[0].sizes) == (0, [])
    assert len(content[0].hash) == 12
    assert (content[1].width, content[1].height) == (10, 10)

def test_processed_at_is_carried_over_for_unchanged_files(source_tree: Path, fake_reader):
    builder = _builder(fake_reader)
    first = builder.build_root(_tree(source_tree))
    stamp = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for e in iter_entries(first):
        for img in e.images():
            img.processed_at = stamp

    (source_tree / "Landscapes" / "l.jpg").write_bytes(b"changed")
    second = _by_path(builder.build_root(_tree(source_tree), previous=first))
    assert second["Landscapes"].content[0].processed_at is None
    assert second["02 Portraits"].content[0].processed_at == stamp


def test_parallel_build_matches_sequential(source_tree: Path, fake_reader):
    tree = _tree(source_tree)
    seq = _builder(fake_reader, workers=1).build_root(tree)
    par = _builder(fake_reader, workers=4).build_root(tree)
    assert par == seq
