"""Records produced by a single content scan."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Mapping, Optional

from .frontmatter import EMPTY_METADATA, DirectoryMetadata


@dataclass(frozen=True)
class SourceImage:
    source_path: pathlib.Path
    relative_path: str
    filename: str
    file_size: int
    last_modified: datetime
    gallery: str


@dataclass(frozen=True)
class SourceMarkdown:
    source_path: pathlib.Path
    relative_path: str
    filename: str
    file_size: int
    last_modified: datetime
    gallery: str


@dataclass
class Gallery:
    """A source directory that yields a page of its own."""

    name: str
    path: str
    slug: str
    segment: str
    title: str
    description: Optional[str] = None
    template: Optional[str] = None
    sort: Optional[str] = None
    filter: Optional[str] = None
    cover: Optional[str] = None
    featured: bool = False
    date: Optional[date] = None
    hidden: bool = False
    data_sources: Mapping[str, str] = field(default_factory=dict)
    raw_body: Optional[str] = None
    body: Optional[str] = None
    images: List[SourceImage] = field(default_factory=list)


@dataclass
class ContentTree:
    images: List[SourceImage] = field(default_factory=list)
    markdowns: List[SourceMarkdown] = field(default_factory=list)
    galleries: List[Gallery] = field(default_factory=list)
    root_metadata: DirectoryMetadata = EMPTY_METADATA
    warnings: List[str] = field(default_factory=list)

    def gallery_for(self, path: str) -> Optional[Gallery]:
        for g in self.galleries:
            if g.path == path:
                return g
        return None
