"""
Base-Endpoint Resolution

This module works out which origin actually serves a publication's API and
pages. Most publications answer on ``<identifier>.substack.com``; some
redirect to a custom domain or to a bare ``substack.com/@user`` profile.
"""

import re
import logging
from typing import Callable, List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from .errors import FetchError, NetworkError
from .http_client import PacedClient, build_headers, is_json_response
from .models import Publication


PROBE_PATH = '/api/v1/archive?limit=1'


def default_endpoint(identifier: str) -> str:
    """Canonical endpoint for an identifier (custom-domain identifiers contain a dot)."""
    if '.' in identifier:
        return f"https://{identifier}"
    return f"https://{identifier}.substack.com"


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def is_profile_url(url: str) -> bool:
    """True for ``https://substack.com/@user`` style landing pages."""
    parsed = urlparse(url)
    return parsed.netloc.lower() == 'substack.com' and parsed.path.startswith('/@')


class EndpointResolver:
    """
    Resolves the base endpoint of a publication.

    The fallback chain for profile landings is an ordered list of strategies.
    Each strategy receives the identifier, the default endpoint and the landing
    response, and returns a base URL or ``None`` to pass to the next one.
    """

    def __init__(self, client: PacedClient):
        self.client = client
        self.logger = logging.getLogger(__name__)
        self.strategies: List[Callable[..., Optional[str]]] = [
            self._custom_domain_strategy,
            self._default_listing_strategy,
            self._profile_origin_strategy,
        ]
        self._cookie: Optional[str] = None

    def resolve(self, identifier: str, credential: Optional[str] = None) -> str:
        """
        Resolve the base endpoint for a publication.

        Args:
            identifier: Publication subdomain or custom domain
            credential: Optional raw cookie string

        Returns:
            Base endpoint URL (``scheme://host``); the default endpoint when
            anything goes wrong
        """
        default = default_endpoint(identifier)
        self._cookie = credential
        try:
            response = self.client.request(default,
                                           headers=build_headers(credential),
                                           allow_error_status=True)
            landing = response.url or default

            if not is_profile_url(landing):
                base = origin_of(landing)
                if base != default:
                    self.logger.info(f"{default} redirected to {base}")
                return base

            self.logger.info(f"{default} landed on profile page {landing}; probing alternates")
            for strategy in self.strategies:
                base = strategy(identifier, default, response)
                if base:
                    self.logger.info(f"Resolved {identifier} via {strategy.__name__.strip('_')}: {base}")
                    return base
            return default
        except Exception as e:
            self.logger.warning(f"Endpoint resolution failed for {identifier}, using {default}: {e}")
            return default

    def describe(self, identifier: str, base_url: str, credential: Optional[str] = None) -> Publication:
        """
        Fetch the publication landing page and read its metadata.

        Raises:
            FetchError: If the landing page cannot be retrieved
        """
        try:
            response = self.client.request(base_url, headers=build_headers(credential))
        except NetworkError as e:
            raise FetchError(f"Failed to fetch publication {identifier}: {e}",
                             url=base_url, status_code=e.status_code) from e

        html = response.text
        soup = BeautifulSoup(html, 'lxml')

        name = _meta_content(soup, property='og:site_name')
        if not name and soup.title and soup.title.string:
            name = soup.title.string.split('|')[0].strip()
        description = (_meta_content(soup, property='og:description')
                       or _meta_content(soup, name='description'))
        author = _meta_content(soup, name='author')
        has_paid = ('subscription' in html or 'subscribe' in html
                    or soup.select_one('[data-component-name="SubscribeWidget"]') is not None)

        publication = Publication(
            identifier=identifier,
            name=name or identifier,
            url=default_endpoint(identifier),
            base_url=base_url,
            description=description,
            author=author,
            has_paid_content=has_paid,
        )
        self.logger.info(f"Publication: {publication.name} ({publication.base_url})")
        return publication

    # Strategies

    def _custom_domain_strategy(self, identifier: str, default: str,
                                response: requests.Response) -> Optional[str]:
        pattern = re.compile(
            rf'https?://(www\.)?([a-zA-Z0-9-]*{re.escape(identifier)}[a-zA-Z0-9-]*\.[a-z]{{2,}})',
            re.IGNORECASE,
        )
        match = pattern.search(response.text or '')
        if not match:
            return None
        candidate = f"https://{match.group(1) or ''}{match.group(2)}"
        self.logger.debug(f"Custom domain candidate: {candidate}")
        return candidate if self._listing_responds(candidate) else None

    def _default_listing_strategy(self, identifier: str, default: str,
                                  response: requests.Response) -> Optional[str]:
        return default if self._listing_responds(default) else None

    def _profile_origin_strategy(self, identifier: str, default: str,
                                 response: requests.Response) -> Optional[str]:
        return origin_of(response.url)

    def _listing_responds(self, base_url: str) -> bool:
        """Probe the listing API; success means a 2xx JSON response."""
        try:
            response = self.client.request(f"{base_url}{PROBE_PATH}",
                                           headers=build_headers(self._cookie))
        except NetworkError as e:
            self.logger.debug(f"Listing check failed for {base_url}: {e}")
            return False
        return is_json_response(response)


def _meta_content(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find('meta', attrs=attrs)
    if tag and tag.get('content'):
        return tag['content'].strip()
    return ''
