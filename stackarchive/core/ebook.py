"""
E-book Assembly

This module builds a single EPUB from converted documents. Each document
becomes one chapter, oldest first, with its images embedded as data URIs.
"""

import io
import re
import base64
import logging
from datetime import datetime, timezone
from typing import Dict, List

import markdown
from bs4 import BeautifulSoup
from ebooklib import epub

from ..utils.file_manager import IMAGES_DIR
from .discovery import parse_timestamp
from .errors import ConversionError
from .models import ProcessedDocument, Publication


logger = logging.getLogger(__name__)

FRONTMATTER = re.compile(r'^---\n[\s\S]*?\n---\n')

MIME_TYPES = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'svg': 'image/svg+xml',
}

CHAPTER_CSS = """
body { font-family: serif; line-height: 1.5; }
img { max-width: 100%; height: auto; }
blockquote { margin-left: 1em; padding-left: 0.8em; border-left: 3px solid #ccc; color: #444; }
pre { background: #f4f4f4; padding: 0.6em; overflow-x: auto; font-size: 0.9em; }
"""

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def strip_frontmatter(text: str) -> str:
    return FRONTMATTER.sub('', text, count=1).strip()


def human_date(value: str) -> str:
    """``Jan 5, 2024`` style date, or the raw value when unparseable."""
    moment = parse_timestamp(value)
    if moment is None:
        return value[:10]
    return f"{moment:%b} {moment.day}, {moment.year}"


def embed_images(html: str, images: Dict[str, bytes]) -> str:
    """
    Inline archive-local images as data URIs.

    References to images that were not retrieved are removed, as is any
    image that still points outside the book.
    """
    soup = BeautifulSoup(html, 'lxml')
    for img in soup.find_all('img'):
        src = img.get('src') or ''
        if src.startswith('data:'):
            continue
        local = re.sub(r'^\./', '', src)
        prefix = f"{IMAGES_DIR}/"
        payload = images.get(local[len(prefix):]) if local.startswith(prefix) else None
        if payload is None:
            logger.debug(f"Dropping unresolved image {src}")
            img.decompose()
            continue
        extension = local.rsplit('.', 1)[-1].lower()
        encoded = base64.b64encode(payload).decode('ascii')
        img['src'] = f"data:{MIME_TYPES.get(extension, 'image/png')};base64,{encoded}"

    body = soup.body
    return body.decode_contents() if body else str(soup)


def document_to_html(document: ProcessedDocument, images: Dict[str, bytes]) -> str:
    text = strip_frontmatter(document.text)
    html = markdown.markdown(text, extensions=['fenced_code', 'tables'])
    return embed_images(html, images)


def assemble_ebook(publication: Publication,
                   documents: List[ProcessedDocument],
                   images: Dict[str, bytes]) -> bytes:
    """
    Build an EPUB 3 book.

    Args:
        publication: The archived publication
        documents: Converted documents in any order
        images: Local image filename to bytes

    Returns:
        EPUB bytes

    Raises:
        ConversionError: If no document could be turned into a chapter
    """
    logger.info(f"Building EPUB for {publication.name} with {len(documents)} posts")
    ordered = sorted(documents, key=lambda d: parse_timestamp(d.frontmatter.date) or _EPOCH)

    book = epub.EpubBook()
    book.set_identifier(f"stackarchive-{publication.identifier}-{datetime.now(timezone.utc):%Y%m%d}")
    book.set_title(publication.name)
    book.set_language('en')
    book.add_author(publication.author or 'Unknown Author')
    book.add_metadata('DC', 'publisher', 'Substack')
    book.add_metadata('DC', 'description', publication.description or f"Archive of {publication.name}")

    css_item = epub.EpubItem(uid='style_default', file_name='style/default.css',
                             media_type='text/css', content=CHAPTER_CSS)
    book.add_item(css_item)

    chapters = []
    for document in ordered:
        try:
            content = document_to_html(document, images)
        except Exception:
            logger.exception(f"Could not convert {document.filename} to a chapter")
            continue
        title = f"{document.frontmatter.title} ({human_date(document.frontmatter.date)})"
        chapter = epub.EpubHtml(title=title,
                                file_name=f"chapter_{len(chapters) + 1:04d}.xhtml",
                                lang='en')
        chapter.content = content
        chapter.add_item(css_item)
        book.add_item(chapter)
        chapters.append(chapter)

    if not chapters:
        raise ConversionError("No posts could be converted to EPUB format")

    book.toc = tuple(chapters)
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ['nav'] + chapters

    buffer = io.BytesIO()
    epub.write_epub(buffer, book, {'raise_exceptions': True})
    data = buffer.getvalue()
    logger.info(f"EPUB generated: {len(chapters)} chapters, {len(data)} bytes")
    return data
