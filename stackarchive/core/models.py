"""Data models passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Publication:
    """A publication being archived, created once per run."""

    identifier: str
    name: str
    url: str
    base_url: str
    description: str = ""
    author: str = ""
    has_paid_content: bool = False


@dataclass(frozen=True)
class PostReference:
    """Lightweight listing entry produced by discovery."""

    slug: str
    title: str
    url: str
    published_at: Optional[datetime] = None
    is_paid: bool = False


@dataclass
class ImageReference:
    """An image referenced by a post body."""

    original_url: str
    alt_text: str = ""
    local_filename: str = ""
    data: Optional[bytes] = None


@dataclass
class RawPost:
    """Full post content as retrieved from the source."""

    slug: str
    title: str
    author: str
    published_at: datetime
    url: str
    content: str
    subtitle: str = ""
    images: List[ImageReference] = field(default_factory=list)
    is_paid: bool = False


@dataclass
class Frontmatter:
    title: str
    author: str
    publication: str
    date: str
    url: str
    subtitle: str = ""


@dataclass
class ProcessedDocument:
    """Converted document ready for packaging."""

    filename: str
    text: str
    frontmatter: Frontmatter
    images: List[ImageReference] = field(default_factory=list)


@dataclass
class ArchiveBundle:
    """Everything the assembler needs."""

    publication: Publication
    documents: List[ProcessedDocument]
    images: Dict[str, bytes] = field(default_factory=dict)
