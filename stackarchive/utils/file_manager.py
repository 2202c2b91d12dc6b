"""
File Naming & Output Utilities

This module derives every filename the archive uses (documents, images and
the final bundle) and writes finished bundles into the output directory.
"""

import os
import re
import logging
from datetime import datetime, date, timezone
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse


SUPPORTED_IMAGE_EXTENSIONS = ('jpg', 'jpeg', 'png', 'gif', 'webp')
DEFAULT_IMAGE_EXTENSION = 'jpg'
DOCUMENT_EXTENSION = 'md'
IMAGES_DIR = 'images'


def slugify(text: str) -> str:
    """Lowercase, strip punctuation, and hyphenate whitespace."""
    text = (text or '').lower().strip()
    text = re.sub(r'[^\w\s-]', '', text)
    text = re.sub(r'\s+', '-', text)
    text = re.sub(r'-+', '-', text)
    return text.strip('-')


def day_string(value: Union[datetime, date, str]) -> str:
    """Calendar-day (YYYY-MM-DD) form of a timestamp."""
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')
    return str(value)[:10]


def document_filename(published_at: Union[datetime, str], slug: str) -> str:
    return f"{day_string(published_at)}-{slug}.{DOCUMENT_EXTENSION}"


def extension_from_url(url: str) -> str:
    """
    Sniff an image extension from the URL path.

    Args:
        url: Remote image URL

    Returns:
        A supported extension, or the default when the path has none we know
    """
    try:
        path = urlparse(url).path
    except ValueError:
        return DEFAULT_IMAGE_EXTENSION
    match = re.search(r'\.([a-zA-Z0-9]+)$', path)
    if match:
        ext = match.group(1).lower()
        if ext in SUPPORTED_IMAGE_EXTENSIONS:
            return ext
    return DEFAULT_IMAGE_EXTENSION


def image_filename(published_at: Union[datetime, str], slug: str, index: int, extension: str) -> str:
    """
    Build the local filename of an image.

    Args:
        published_at: Post timestamp (truncated to the day)
        slug: Post slug
        index: 1-based position of the image within the post
        extension: File extension without the dot
    """
    return f"{day_string(published_at)}-{slug}-image-{index}.{extension}"


def archive_filename(identifier: str, extension: str, run_date: Optional[date] = None) -> str:
    """``<identifier>-archive-<YYYY-MM-DD>.<ext>`` using the run date."""
    run_date = run_date or datetime.now(timezone.utc).date()
    return f"{identifier}-archive-{run_date.strftime('%Y-%m-%d')}.{extension}"


class FileManager:
    """
    Writes finished bundles into the output directory.
    """

    def __init__(self, base_output_dir: str = "output"):
        """
        Args:
            base_output_dir: Directory receiving archive files
        """
        self.base_output_dir = Path(base_output_dir)
        self.logger = logging.getLogger(__name__)

    def save_bundle(self, filename: str, data: bytes) -> str:
        """
        Save a bundle to disk.

        Args:
            filename: Bundle filename (see ``archive_filename``)
            data: Bundle bytes

        Returns:
            Path to the saved file
        """
        self.base_output_dir.mkdir(parents=True, exist_ok=True)
        path = self.base_output_dir / filename
        with open(path, 'wb') as f:
            f.write(data)
        self.logger.info(f"Saved bundle ({os.path.getsize(path)} bytes): {path.name}")
        return str(path)

