"""
URL Validation Utilities

This module validates publication URLs typed by a user and extracts the
publication identifier the pipeline works with.
"""

import re
from datetime import date
from urllib.parse import urlparse
from typing import Tuple, Optional


# subdomain.substack.com OR substack.com/@username
SUBSTACK_URL_PATTERN = re.compile(
    r'^https?://(?:([a-zA-Z0-9-]+)\.substack\.com|substack\.com/@([a-zA-Z0-9_]+))/?(?:\?.*)?$'
)

DOMAIN_PATTERN = re.compile(
    r'^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)+$'
)


def normalize_url(url: str) -> str:
    """Trim, drop trailing slashes, and upgrade http to https."""
    normalized = (url or '').strip().rstrip('/')
    if normalized.startswith('http://'):
        normalized = 'https://' + normalized[len('http://'):]
    elif normalized and not normalized.startswith('https://'):
        normalized = 'https://' + normalized
    return normalized


def extract_identifier(url: str) -> Optional[str]:
    """
    Extract the publication identifier from a URL.

    ``https://name.substack.com`` and ``https://substack.com/@name`` yield
    ``name``; any other https URL yields its hostname without ``www.``.
    """
    match = SUBSTACK_URL_PATTERN.match(url)
    if match:
        return match.group(1) or match.group(2)
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or '').lower()
    if not host:
        return None
    if host.endswith('.substack.com') and host.count('.') == 2:
        # Post or archive page under a subdomain
        return host.split('.')[0]
    return host[4:] if host.startswith('www.') else host


def validate_publication_url(url: str) -> Tuple[bool, str, str]:
    """
    Validate a publication URL and extract its identifier.

    Args:
        url: URL typed by the user (scheme optional)

    Returns:
        Tuple of (is_valid, identifier, error_message)
    """
    if not url or not isinstance(url, str):
        return False, "", "URL cannot be empty"

    raw = url.strip()
    scheme = urlparse(raw).scheme
    if scheme and scheme not in ('http', 'https'):
        return False, "", "URL must use HTTP or HTTPS protocol"

    normalized = normalize_url(raw)
    parsed = urlparse(normalized)
    host = (parsed.hostname or '').lower()
    if not host:
        return False, "", "URL must have a valid domain"
    if not DOMAIN_PATTERN.match(host):
        return False, "", "Invalid domain format"

    identifier = extract_identifier(normalized)
    if not identifier:
        return False, "", "Could not extract a publication identifier from URL"
    return True, identifier, ""


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a YYYY-MM-DD date argument.

    Raises:
        ValueError: If the value is not a calendar date
    """
    if not value:
        return None
    return date.fromisoformat(value.strip())
