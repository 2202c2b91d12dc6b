"""
Post Markdown Conversion

This module turns fetched post markup into Markdown documents with a YAML
frontmatter block, rewriting image references to their archive-local paths.
Conversion is pure: no network or filesystem access happens here.
"""

import re
import logging
from datetime import date
from typing import List

import yaml
from bs4 import NavigableString
from markdownify import ATX, MarkdownConverter

from ..utils.file_manager import (
    IMAGES_DIR, day_string, document_filename, extension_from_url, image_filename,
)
from .models import Frontmatter, ImageReference, ProcessedDocument, RawPost


logger = logging.getLogger(__name__)

EMBED_CLASSES = {'tweet', 'youtube', 'embedded'}
EMBED_PLACEHOLDER = 'Embedded content'

LANGUAGE_CLASS = re.compile(r'language-(\w+)')

FENCED_BLOCK = re.compile(r'(^```[^\n]*\n[\s\S]*?\n```$)', re.MULTILINE)


class PostMarkdownConverter(MarkdownConverter):
    """
    Markdown converter with rules for publication markup.

    - ``figure``: the contained image, alt text falling back to the caption
    - embed ``div`` (tweet/youtube/embedded): a single link, or a placeholder
    - ``blockquote``: ``> `` on every line
    - ``pre > code``: fenced block tagged with the ``language-*`` class
    """

    def __init__(self, **options):
        options.setdefault('heading_style', ATX)
        options.setdefault('bullets', '-')
        options.setdefault('strong_em_symbol', '*')
        super().__init__(**options)

    def convert_figure(self, el, text, parent_tags):
        img = el.find('img')
        if img is None:
            return text
        caption = el.find('figcaption')
        alt = img.get('alt') or (caption.get_text(strip=True) if caption else '')
        return f"\n\n![{alt}]({img.get('src') or ''})\n\n"

    def convert_div(self, el, text, parent_tags):
        if EMBED_CLASSES.intersection(el.get('class') or []):
            link = el.find('a')
            if link is not None:
                label = link.get_text(strip=True) or EMBED_PLACEHOLDER
                return f"\n\n[{label}]({link.get('href') or ''})\n\n"
            return f"\n\n[{EMBED_PLACEHOLDER}]\n\n"
        return super().convert_div(el, text, parent_tags)

    def convert_blockquote(self, el, text, parent_tags):
        text = (text or '').strip()
        if '_inline' in parent_tags:
            return f" {text} "
        if not text:
            return '\n'
        quoted = '\n'.join(f"> {line}".rstrip() for line in text.split('\n'))
        return f"\n\n{quoted}\n\n"

    def convert_pre(self, el, text, parent_tags):
        children = [child for child in el.contents
                    if not (isinstance(child, NavigableString) and not child.strip())]
        if not children or getattr(children[0], 'name', None) != 'code':
            return super().convert_pre(el, text, parent_tags)

        code = children[0]
        match = LANGUAGE_CLASS.search(' '.join(code.get('class') or []))
        language = match.group(1) if match else ''
        body = code.get_text().strip('\n')
        return f"\n\n```{language}\n{body}\n```\n\n"


def html_to_markdown(html: str) -> str:
    """Convert a post body to Markdown."""
    if not html:
        return ''
    markdown = PostMarkdownConverter().convert(html)
    return collapse_blank_lines(markdown).strip()


def collapse_blank_lines(markdown: str) -> str:
    """Squeeze runs of blank lines to one, leaving fenced code blocks untouched."""
    parts = FENCED_BLOCK.split(markdown)
    # Odd indices are the captured fences
    return ''.join(part if i % 2 else re.sub(r'\n{3,}', '\n\n', part)
                   for i, part in enumerate(parts))


def _calendar_day(value: str):
    day = day_string(value)
    try:
        return date.fromisoformat(day)
    except ValueError:
        return day


def render_frontmatter(frontmatter: Frontmatter) -> str:
    """Fixed-order YAML block; ``date`` is cut to the calendar day."""
    fields = {
        'title': frontmatter.title,
        'author': frontmatter.author,
        'publication': frontmatter.publication,
        'date': _calendar_day(frontmatter.date),
        'url': frontmatter.url,
    }
    if frontmatter.subtitle:
        fields['subtitle'] = frontmatter.subtitle

    dumped = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True)
    return f"---\n{dumped}---"


def process_post(post: RawPost, publication_name: str) -> ProcessedDocument:
    """
    Convert one post into a document.

    The post itself is left untouched; its image references are copied with
    their local filenames assigned.
    """
    frontmatter = Frontmatter(
        title=post.title,
        author=post.author,
        publication=publication_name,
        date=post.published_at.isoformat(),
        url=post.url,
        subtitle=post.subtitle,
    )

    markdown = html_to_markdown(post.content)

    images: List[ImageReference] = []
    for index, image in enumerate(post.images, 1):
        filename = image_filename(post.published_at, post.slug, index,
                                  extension_from_url(image.original_url))
        markdown = markdown.replace(image.original_url, f"{IMAGES_DIR}/{filename}")
        images.append(ImageReference(original_url=image.original_url,
                                     alt_text=image.alt_text,
                                     local_filename=filename))

    text = f"{render_frontmatter(frontmatter)}\n\n# {post.title}\n\n{markdown}\n"
    return ProcessedDocument(
        filename=document_filename(post.published_at, post.slug),
        text=text,
        frontmatter=frontmatter,
        images=images,
    )


def transform(posts: List[RawPost], publication_name: str) -> List[ProcessedDocument]:
    """Convert every post, preserving order."""
    documents = [process_post(post, publication_name) for post in posts]
    logger.info(f"Converted {len(documents)} posts "
                f"({sum(len(d.images) for d in documents)} images referenced)")
    return documents
