"""
Archive Discovery

This module enumerates a publication's posts. The paginated JSON listing is
tried first; when its first page is unusable the human-facing archive page
is scraped instead.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..utils.file_manager import slugify
from .errors import DiscoveryError, NetworkError
from .http_client import PacedClient, build_headers, is_json_response
from .models import PostReference


PAGE_SIZE = 12

PAYWALL_MARKERS = '[data-testid="paywall-indicator"], .audience-lock'


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC; unparseable values yield ``None``.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def slug_from_href(href: str) -> str:
    """Path segment after ``/p/`` with any query stripped, or ``""``."""
    if '/p/' not in href:
        return ''
    return href.split('/p/', 1)[1].split('?')[0].split('#')[0].strip('/')


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive publish-date window.

    ``start`` is taken from midnight UTC; ``end`` covers its whole day, so a
    post at ``end`` 23:59:59 is inside and one second later is outside.
    """

    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"Start date {self.start} is after end date {self.end}")

    @property
    def is_open(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, moment: Optional[datetime]) -> bool:
        """Undated moments always pass; they are re-checked once fetched."""
        if moment is None:
            return True
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        if self.start and moment < datetime.combine(self.start, time.min, tzinfo=timezone.utc):
            return False
        if self.end and moment >= datetime.combine(self.end + timedelta(days=1), time.min,
                                                   tzinfo=timezone.utc):
            return False
        return True

    def filter(self, references: List[PostReference]) -> List[PostReference]:
        return [ref for ref in references if self.contains(ref.published_at)]


class ArchiveDiscovery:
    """
    Lists the posts of a publication, newest first.

    ``strategies`` is the ordered fallback chain. Each strategy takes
    ``(base_url, cookie)`` and returns a list of references, or ``None`` when
    its source could not be used at all.
    """

    def __init__(self, client: PacedClient, page_size: int = PAGE_SIZE):
        self.client = client
        self.page_size = page_size
        self.logger = logging.getLogger(__name__)
        self.strategies: List[Callable[[str, Optional[str]], Optional[List[PostReference]]]] = [
            self.from_listing_api,
            self.from_archive_page,
        ]

    def discover(self,
                 base_url: str,
                 credential: Optional[str] = None,
                 date_range: Optional[DateRange] = None) -> List[PostReference]:
        """
        Discover post references for a publication.

        Args:
            base_url: Resolved base endpoint
            credential: Optional raw cookie string
            date_range: Optional inclusive date window

        Returns:
            Ordered list of references (an empty list is a valid outcome)

        Raises:
            DiscoveryError: If no strategy could obtain a listing
        """
        self.logger.info(f"Discovering posts at {base_url}")
        references: Optional[List[PostReference]] = None
        for strategy in self.strategies:
            references = strategy(base_url, credential)
            if references is not None:
                break
            self.logger.warning(f"{strategy.__name__} gave no listing for {base_url}")

        if references is None:
            raise DiscoveryError(f"Could not obtain a post listing for {base_url}")

        self.logger.info(f"Discovered {len(references)} posts")
        if date_range and not date_range.is_open:
            references = date_range.filter(references)
            self.logger.info(f"{len(references)} posts within {date_range.start or '...'} - {date_range.end or '...'}")
        return references

    def from_listing_api(self, base_url: str, credential: Optional[str] = None) -> Optional[List[PostReference]]:
        """
        Page through the JSON listing.

        Returns ``None`` when the first page fails; a failure on a later page
        stops paging and keeps what was collected.
        """
        references: List[PostReference] = []
        offset = 0
        headers = build_headers(credential, for_api=True)

        while True:
            url = f"{base_url}/api/v1/archive?sort=new&search=&offset={offset}&limit={self.page_size}"
            try:
                response = self.client.request(url, headers=headers)
                items = response.json() if is_json_response(response) else None
            except (NetworkError, ValueError) as e:
                self.logger.warning(f"Listing page at offset {offset} failed: {e}")
                items = None

            if not isinstance(items, list):
                if offset == 0:
                    return None
                self.logger.warning(f"Stopping pagination at offset {offset}; keeping {len(references)} posts")
                break

            for item in items:
                reference = self._reference_from_item(base_url, item)
                if reference:
                    references.append(reference)

            self.logger.debug(f"Listing offset {offset}: {len(items)} items")
            if len(items) < self.page_size:
                break
            offset += self.page_size

        return references

    def from_archive_page(self, base_url: str, credential: Optional[str] = None) -> Optional[List[PostReference]]:
        """Scrape ``<base>/archive``; references carry no publish date."""
        url = f"{base_url}/archive"
        try:
            response = self.client.request(url, headers=build_headers(credential))
        except NetworkError as e:
            self.logger.error(f"Archive page fetch failed: {e}")
            return None

        soup = BeautifulSoup(response.text, 'lxml')
        references: List[PostReference] = []

        for link in soup.select('a[data-testid="post-preview-title"]'):
            container = link.find_parent(class_='post-preview') or link.parent
            reference = self._reference_from_link(base_url, link, container)
            if reference:
                references.append(reference)

        # Alternative page structure
        if not references:
            for preview in soup.select('.post-preview'):
                link = preview.find('a')
                if link is None:
                    continue
                reference = self._reference_from_link(base_url, link, preview)
                if reference:
                    references.append(reference)

        self.logger.info(f"Archive page yielded {len(references)} posts")
        return references

    def _reference_from_item(self, base_url: str, item) -> Optional[PostReference]:
        if not isinstance(item, dict) or not item.get('slug'):
            return None
        slug = item['slug']
        return PostReference(
            slug=slug,
            title=item.get('title') or 'Untitled',
            url=item.get('canonical_url') or f"{base_url}/p/{slug}",
            published_at=parse_timestamp(item.get('post_date')),
            is_paid=item.get('audience') == 'only_paid' or bool(item.get('is_paid')),
        )

    def _reference_from_link(self, base_url: str, link, container) -> Optional[PostReference]:
        href = link.get('href')
        title = link.get_text(strip=True)
        if not href or not title:
            return None
        is_paid = container is not None and container.select_one(PAYWALL_MARKERS) is not None
        return PostReference(
            slug=slug_from_href(href) or slugify(title),
            title=title,
            url=href if href.startswith('http') else urljoin(base_url + '/', href),
            published_at=None,
            is_paid=is_paid,
        )
