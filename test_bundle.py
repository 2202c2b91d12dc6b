#!/usr/bin/env python3
"""
Tests for the ZIP document bundle and the EPUB assembler.
"""

import io
import sys
import json
import zipfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from stackarchive.core.bundle import assemble_document_bundle, generate_metadata, generate_readme
from stackarchive.core.ebook import assemble_ebook, human_date, strip_frontmatter
from stackarchive.core.errors import ConversionError
from stackarchive.core.models import Frontmatter, ImageReference, ProcessedDocument, Publication


PUBLICATION = Publication(
    identifier="foo",
    name="Foo Weekly",
    url="https://foo.substack.com",
    base_url="https://foo.substack.com",
    description="Notes about foo",
    author="Jane Doe",
)

PNG = b"\x89PNG\r\n\x1a\nfake"


def document(slug, title, date, body="Hello", images=()):
    frontmatter = Frontmatter(title=title, author="Jane Doe", publication="Foo Weekly",
                              date=date, url=f"https://foo.substack.com/p/{slug}")
    filename = f"{date[:10]}-{slug}.md"
    text = f'---\ntitle: "{title}"\n---\n\n# {title}\n\n{body}\n'
    refs = [ImageReference(original_url=f"https://cdn.test/{name}", local_filename=name) for name in images]
    return ProcessedDocument(filename=filename, text=text, frontmatter=frontmatter, images=refs)


def sample_documents():
    return [
        document("older", "Older Post", "2024-01-15T10:00:00+00:00",
                 body="![pic](images/older-1.png)", images=["older-1.png"]),
        document("newer", "Pipes | and more", "2024-02-01T08:00:00+00:00"),
    ]


# README and metadata

def test_readme_lists_newest_first_and_escapes_pipes():
    readme = generate_readme(PUBLICATION, sample_documents(), datetime(2024, 3, 1, tzinfo=timezone.utc))

    assert readme.startswith("# Foo Weekly Archive\n\n> Downloaded on 2024-03-01\n")
    assert "- **Total Posts:** 2" in readme
    assert "- **Total Images:** 1" in readme
    newer = readme.index("| 2024-02-01 | [Pipes \\| and more](./2024-02-01-newer.md) |")
    older = readme.index("| 2024-01-15 | [Older Post](./2024-01-15-older.md) |")
    assert newer < older


def test_metadata_totals_and_posts():
    metadata = generate_metadata(PUBLICATION, sample_documents())

    assert metadata["publication"]["identifier"] == "foo"
    assert metadata["archive"]["totalPosts"] == 2
    assert metadata["archive"]["totalImages"] == 1
    assert [p["filename"] for p in metadata["archive"]["posts"]] == ["2024-01-15-older.md", "2024-02-01-newer.md"]


# ZIP bundle

def test_bundle_layout():
    data = assemble_document_bundle(PUBLICATION, sample_documents(), {"older-1.png": PNG})

    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        names = set(archive.namelist())
        assert names == {
            "README.md",
            "metadata.json",
            "images/older-1.png",
            "2024-01-15-older.md",
            "2024-02-01-newer.md",
        }
        assert archive.read("images/older-1.png") == PNG
        assert json.loads(archive.read("metadata.json"))["archive"]["totalPosts"] == 2
        assert archive.getinfo("README.md").compress_type == zipfile.ZIP_DEFLATED


def test_bundle_keeps_references_to_missing_images():
    data = assemble_document_bundle(PUBLICATION, sample_documents(), {})

    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert not any(name.startswith("images/") for name in archive.namelist())
        assert "](images/older-1.png)" in archive.read("2024-01-15-older.md").decode("utf-8")


# EPUB

def read_epub(data):
    archive = zipfile.ZipFile(io.BytesIO(data))
    return {name: archive.read(name).decode("utf-8", errors="replace") for name in archive.namelist()}


def test_strip_frontmatter_and_human_date():
    assert strip_frontmatter('---\ntitle: "x"\n---\n\n# x\n') == "# x"
    assert human_date("2024-01-05T10:00:00+00:00") == "Jan 5, 2024"


def test_ebook_chapters_are_oldest_first_with_embedded_images():
    documents = list(reversed(sample_documents()))

    files = read_epub(assemble_ebook(PUBLICATION, documents, {"older-1.png": PNG}))

    assert files["mimetype"] == "application/epub+zip"
    first = files["EPUB/chapter_0001.xhtml"]
    second = files["EPUB/chapter_0002.xhtml"]
    assert "Older Post" in first
    assert "data:image/png;base64," in first
    assert "Pipes | and more" in second
    assert "Older Post (Jan 15, 2024)" in files["EPUB/nav.xhtml"]


def test_ebook_drops_images_that_were_not_retrieved():
    files = read_epub(assemble_ebook(PUBLICATION, sample_documents(), {}))

    chapter = files["EPUB/chapter_0001.xhtml"]
    assert "<img" not in chapter
    assert "images/older-1.png" not in chapter


def test_ebook_without_documents_is_an_error():
    with pytest.raises(ConversionError):
        assemble_ebook(PUBLICATION, [], {})


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✓ {name}")
