"""
Authenticated Content Fetcher

This module retrieves full post content one post at a time. Each post is
tried against the JSON post API first and the rendered post page second.
A session cookie, when supplied, is classified to decide which origin the
API calls go to.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup

from ..utils.file_manager import slugify
from .discovery import DateRange, parse_timestamp, slug_from_href
from .errors import AuthenticationError, NetworkError
from .http_client import PacedClient, build_headers, is_json_response
from .logger import ErrorTracker
from .models import ImageReference, PostReference, Publication, RawPost
from .resolver import default_endpoint, origin_of


# Paid bodies shorter than this (with a credential) are treated as previews
SHORT_BODY_THRESHOLD = 1000

CONTENT_SELECTORS = (
    '.body.markup',
    '.post-content',
    '.available-content',
    '.post-content-final',
    '[data-component-name="PostBody"]',
)

RESIZED_IMAGE_MARKER = 'substackcdn.com/image/fetch/w_'

ProgressCallback = Callable[[int, int, str], None]


class CredentialKind(enum.Enum):
    """Which origin a session cookie belongs to."""

    CUSTOM_DOMAIN = 'connect.sid'
    DEFAULT_ORIGIN = 'substack.sid'

    def api_origin(self, publication: Publication, post_url: Optional[str] = None) -> str:
        """
        Origin the API calls must target for this kind of cookie.

        Custom-domain cookies only work on the post's own domain; default-origin
        cookies only work on ``<identifier>.substack.com``.
        """
        if self is CredentialKind.CUSTOM_DOMAIN:
            return origin_of(post_url) if post_url else publication.base_url
        return default_endpoint(publication.identifier)


@dataclass(frozen=True)
class Credential:
    """A session cookie string supplied by the caller."""

    cookie: str
    kind: CredentialKind

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional['Credential']:
        """
        Classify a raw cookie string; blank input gives ``None``.

        The cookie is kept as supplied. ``build_headers`` percent-decodes it
        exactly once when it is sent.
        """
        if not raw or not raw.strip():
            return None
        cookie = raw.strip()
        kind = CredentialKind.CUSTOM_DOMAIN if 'connect.sid=' in unquote(cookie) else CredentialKind.DEFAULT_ORIGIN
        return cls(cookie=cookie, kind=kind)


def extract_images(body_html: str) -> List[ImageReference]:
    """Images referenced by a post body, skipping resized CDN duplicates."""
    if not body_html:
        return []
    soup = BeautifulSoup(body_html, 'lxml')
    images: List[ImageReference] = []
    for img in soup.find_all('img'):
        src = img.get('src')
        if src and RESIZED_IMAGE_MARKER not in src:
            images.append(ImageReference(original_url=src, alt_text=img.get('alt') or ''))
    return images


def _api_identifier(identifier: str) -> Optional[str]:
    # Origin/Referer headers only make sense for subdomain identifiers
    return None if '.' in identifier else identifier


class PostFetcher:
    """
    Fetches posts sequentially through the run's paced client.

    ``strategies`` is the ordered fallback chain for one post. A strategy
    returns a ``RawPost`` or ``None`` to hand over to the next one; the last
    strategy raises instead of returning ``None``.
    """

    def __init__(self,
                 client: PacedClient,
                 publication: Publication,
                 credential: Optional[Credential] = None,
                 tracker: Optional[ErrorTracker] = None,
                 should_stop: Optional[Callable[[], bool]] = None):
        self.client = client
        self.publication = publication
        self.credential = credential
        self.tracker = tracker
        self.should_stop = should_stop or (lambda: False)
        self.logger = logging.getLogger(__name__)
        self.strategies = [self.from_post_api, self.from_rendered_page]

    @property
    def cookie(self) -> Optional[str]:
        return self.credential.cookie if self.credential else None

    def verify_credential(self) -> bool:
        """
        Check whether the source honours the credential.

        The listing API is requested once with and once without the cookie;
        byte-identical bodies mean the cookie is being ignored. Problems are
        recorded as warnings and never stop the run.

        Returns:
            True when the responses differ (or there is nothing to verify)
        """
        if not self.credential:
            return True

        if self.credential.kind is CredentialKind.CUSTOM_DOMAIN:
            target = self.publication.base_url
        else:
            target = default_endpoint(self.publication.identifier)
        url = f"{target}/api/v1/archive?limit=1"
        self.logger.info(f"Verifying {self.credential.kind.value} credential against {target}")

        try:
            # Neither request may carry cookies the session collected earlier
            with_cookie = self.client.request(url, headers=build_headers(self.cookie, for_api=True),
                                              allow_error_status=True, session_cookies=False)
            without_cookie = self.client.request(url, headers=build_headers(None, for_api=True),
                                                 allow_error_status=True, session_cookies=False)
        except NetworkError as e:
            self._warn(f"Could not verify credential: {e}", url)
            return False

        if not with_cookie.ok or not without_cookie.ok:
            self._warn(f"Could not verify credential (HTTP {with_cookie.status_code}/"
                       f"{without_cookie.status_code})", url)
            return False

        if with_cookie.content == without_cookie.content:
            self._warn("Credential not recognised: responses with and without it are identical; "
                       "it may be expired or for a different domain", url)
            return False

        self.logger.info("Credential accepted")
        return True

    def fetch_post(self, reference: PostReference) -> RawPost:
        """
        Fetch one post through the strategy chain.

        Raises:
            AuthenticationError: The rendered page answered 401/403
            NetworkError: The rendered page could not be retrieved
        """
        for strategy in self.strategies:
            post = strategy(reference)
            if post is not None:
                return post
        raise NetworkError(f"No strategy produced content for {reference.url}", url=reference.url)

    def fetch_all(self,
                  references: List[PostReference],
                  on_progress: Optional[ProgressCallback] = None,
                  date_range: Optional[DateRange] = None) -> List[RawPost]:
        """
        Fetch every referenced post in order.

        A failing post is logged and skipped. ``on_progress(current, total,
        title)`` fires once per attempt.

        Args:
            references: Posts to fetch
            on_progress: Optional progress callback
            date_range: Re-applied to posts whose reference carried no date

        Returns:
            Successfully fetched posts, in reference order
        """
        posts: List[RawPost] = []
        total = len(references)

        for index, reference in enumerate(references, 1):
            if self.should_stop():
                self.logger.info(f"Stop requested; fetched {len(posts)} of {total} posts")
                break

            self.logger.info(f"Fetching post {index}/{total}: {reference.title}")
            try:
                post = self.fetch_post(reference)
            except AuthenticationError as e:
                self.logger.error(f"Authentication failed for {reference.url}; the cookie may be invalid or expired")
                self._record(e, reference.url)
                post = None
            except Exception as e:
                self.logger.exception(f"Failed to fetch {reference.url}")
                self._record(e, reference.url)
                post = None

            if on_progress:
                on_progress(index, total, reference.title)

            if post is None:
                continue
            if reference.published_at is None and date_range and not date_range.contains(post.published_at):
                self.logger.info(f"Dropping {post.slug}: {post.published_at:%Y-%m-%d} outside date range")
                continue
            posts.append(post)

        self.logger.info(f"Fetched {len(posts)} of {total} posts")
        return posts

    # Strategies

    def from_post_api(self, reference: PostReference) -> Optional[RawPost]:
        slug = slug_from_href(urlparse(reference.url).path)
        if not slug:
            self.logger.debug(f"No /p/ slug in {reference.url}; skipping post API")
            return None

        if self.credential:
            api_origin = self.credential.kind.api_origin(self.publication, reference.url)
        else:
            api_origin = origin_of(reference.url)
        api_url = f"{api_origin}/api/v1/posts/{slug}"

        try:
            response = self.client.request(
                api_url,
                headers=build_headers(self.cookie, for_api=True,
                                      identifier=_api_identifier(self.publication.identifier)),
            )
            data = response.json() if is_json_response(response) else None
        except (NetworkError, ValueError) as e:
            self.logger.info(f"Post API unavailable for {slug}: {e}")
            return None
        if not isinstance(data, dict):
            self.logger.info(f"Post API returned no JSON for {slug}")
            return None

        title = data.get('title') or 'Untitled'
        bylines = data.get('publishedBylines') or []
        author = ((bylines[0].get('name') if bylines and isinstance(bylines[0], dict) else None)
                  or (data.get('author') or {}).get('name')
                  or 'Unknown')
        content = data.get('body_html') or ''
        is_paid = data.get('audience') == 'only_paid'

        if is_paid and self.credential and len(content) < SHORT_BODY_THRESHOLD:
            self.logger.info(f"Paid post {slug} returned a {len(content)}-char body; trying rendered page")
            try:
                rendered = self.from_rendered_page(reference)
            except NetworkError as e:
                self.logger.warning(f"Rendered page fallback failed for {slug}: {e}")
            else:
                if len(rendered.content) > len(content):
                    return rendered

        return RawPost(
            slug=slug,
            title=title,
            subtitle=data.get('subtitle') or '',
            author=author,
            published_at=self._resolve_date(reference, data.get('post_date')),
            url=data.get('canonical_url') or reference.url,
            content=content,
            images=extract_images(content),
            is_paid=is_paid,
        )

    def from_rendered_page(self, reference: PostReference) -> RawPost:
        """Scrape the post page; the longest known content region wins."""
        response = self.client.request(reference.url, headers=build_headers(self.cookie),
                                       allow_error_status=True)
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {reference.url} (HTTP {response.status_code})",
                url=reference.url, status_code=response.status_code,
            )
        if not response.ok:
            raise NetworkError(f"Failed to fetch post: HTTP {response.status_code}",
                               url=reference.url, status_code=response.status_code)

        html = response.text
        soup = BeautifulSoup(html, 'lxml')

        title = (_text(soup, 'h1.post-title') or _meta(soup, property='og:title') or 'Untitled')
        subtitle = _text(soup, '.subtitle') or _meta(soup, property='og:description')
        author = _meta(soup, name='author') or _text(soup, '.author-name') or 'Unknown'

        page_date = None
        time_tag = soup.find('time', attrs={'datetime': True})
        if time_tag:
            page_date = time_tag['datetime']
        page_date = page_date or _meta(soup, property='article:published_time')

        content = select_content(soup)
        is_paid = 'paywall' in html or soup.select_one('.subscribe-widget') is not None

        return RawPost(
            slug=slug_from_href(reference.url) or reference.slug or slugify(title),
            title=title,
            subtitle=subtitle,
            author=author,
            published_at=self._resolve_date(reference, page_date),
            url=reference.url,
            content=content,
            images=extract_images(content),
            is_paid=is_paid,
        )

    def _resolve_date(self, reference: PostReference, fallback: Optional[str]) -> datetime:
        if reference.published_at:
            return reference.published_at
        parsed = parse_timestamp(fallback)
        if parsed:
            return parsed
        self.logger.warning(f"No publish date for {reference.url}; using the current time")
        return datetime.now(timezone.utc)

    def _warn(self, message: str, url: str):
        if self.tracker:
            self.tracker.log_warning(message, context='credential', url=url)
        else:
            self.logger.warning(message)

    def _record(self, error: Exception, url: str):
        if self.tracker:
            self.tracker.log_error(error, context='fetch', url=url)


def select_content(soup: BeautifulSoup) -> str:
    """
    Pick the post body markup.

    Every known region is measured and the longest wins; on a tie the earlier
    selector is kept. ``article`` is used only when no region matched.
    """
    content = ''
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        markup = element.decode_contents()
        if len(markup) > len(content):
            content = markup
    if not content:
        article = soup.find('article')
        content = article.decode_contents() if article else ''
    return content


def _text(soup: BeautifulSoup, selector: str) -> str:
    element = soup.select_one(selector)
    return element.get_text(strip=True) if element else ''


def _meta(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find('meta', attrs=attrs)
    if tag and tag.get('content'):
        return tag['content'].strip()
    return ''
