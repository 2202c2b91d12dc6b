"""
Document Bundle Assembly

This module packages converted documents, downloaded images, a README index
and a metadata description into a single ZIP archive.
"""

import io
import json
import logging
import zipfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..utils.file_manager import IMAGES_DIR, day_string
from .discovery import parse_timestamp
from .models import ProcessedDocument, Publication


logger = logging.getLogger(__name__)

README_NAME = 'README.md'
METADATA_NAME = 'metadata.json'

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_key(document: ProcessedDocument) -> datetime:
    return parse_timestamp(document.frontmatter.date) or _EPOCH


def generate_readme(publication: Publication,
                    documents: List[ProcessedDocument],
                    generated_at: Optional[datetime] = None) -> str:
    """Human-readable index with a newest-first table of contents."""
    generated_at = generated_at or datetime.now(timezone.utc)
    total_images = sum(len(d.images) for d in documents)

    lines = [
        f"# {publication.name} Archive",
        "",
        f"> Downloaded on {generated_at:%Y-%m-%d}",
        "",
    ]
    if publication.description:
        lines += [publication.description, ""]

    lines += [
        "## Archive Information",
        "",
        f"- **Publication URL:** {publication.url}",
    ]
    if publication.author:
        lines.append(f"- **Author:** {publication.author}")
    lines += [
        f"- **Total Posts:** {len(documents)}",
        f"- **Total Images:** {total_images}",
        "",
        "## Table of Contents",
        "",
        "| Date | Title |",
        "|------|-------|",
    ]

    for document in sorted(documents, key=_sort_key, reverse=True):
        title = document.frontmatter.title.replace('|', '\\|')
        lines.append(f"| {day_string(document.frontmatter.date)} | [{title}](./{document.filename}) |")

    lines += [
        "",
        "---",
        "",
        "*This archive was created with StackArchive.*",
        "",
    ]
    return '\n'.join(lines)


def generate_metadata(publication: Publication,
                      documents: List[ProcessedDocument],
                      generated_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Structured description of the publication and its posts."""
    generated_at = generated_at or datetime.now(timezone.utc)
    return {
        'publication': {
            'name': publication.name,
            'identifier': publication.identifier,
            'url': publication.url,
            'description': publication.description,
            'author': publication.author,
        },
        'archive': {
            'downloadDate': generated_at.isoformat(),
            'totalPosts': len(documents),
            'totalImages': sum(len(d.images) for d in documents),
            'posts': [
                {
                    'filename': d.filename,
                    'title': d.frontmatter.title,
                    'date': d.frontmatter.date,
                    'url': d.frontmatter.url,
                }
                for d in documents
            ],
        },
    }


def assemble_document_bundle(publication: Publication,
                             documents: List[ProcessedDocument],
                             images: Dict[str, bytes]) -> bytes:
    """
    Build the ZIP archive.

    Layout: ``README.md`` and ``metadata.json`` at the root, one Markdown
    file per document, images under ``images/``. Documents whose images
    failed to download keep their references; the files are simply absent.

    Returns:
        ZIP archive bytes
    """
    generated_at = datetime.now(timezone.utc)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED, compresslevel=6) as archive:
        archive.writestr(README_NAME, generate_readme(publication, documents, generated_at))
        archive.writestr(METADATA_NAME,
                         json.dumps(generate_metadata(publication, documents, generated_at),
                                    indent=2, ensure_ascii=False))
        for filename, data in images.items():
            archive.writestr(f"{IMAGES_DIR}/{filename}", data)
        for document in documents:
            archive.writestr(document.filename, document.text)

    data = buffer.getvalue()
    logger.info(f"Bundle assembled: {len(documents)} documents, {len(images)} images, {len(data)} bytes")
    return data
