"""
Rate-Paced HTTP Client

This module issues every discovery and content request of a run through a
single shared session, spacing request starts by a minimum interval and
turning transport/status failures into ``NetworkError``.
"""

import time
import logging
from typing import Optional, Dict
from urllib.parse import unquote

import requests
from requests.cookies import RequestsCookieJar

from ..utils.rate_limiter import RequestPacer
from .errors import NetworkError


USER_AGENT = ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')

DEFAULT_MIN_INTERVAL = 1.0


def is_json_response(response: requests.Response) -> bool:
    """True when the response declares a JSON body."""
    content_type = response.headers.get('content-type', '') or ''
    return 'application/json' in content_type.lower()


def build_headers(cookie: Optional[str] = None,
                  for_api: bool = False,
                  identifier: Optional[str] = None) -> Dict[str, str]:
    """
    Build per-request headers.

    Args:
        cookie: Raw session cookie string (e.g. "substack.sid=...; substack.lli=...")
        for_api: Ask for JSON and send browser-like fetch headers
        identifier: Publication subdomain used for Origin/Referer on API calls

    Returns:
        Header dictionary to merge over the session defaults
    """
    headers: Dict[str, str] = {}
    if for_api:
        headers['Accept'] = 'application/json'
        headers['Content-Type'] = 'application/json'
        if identifier:
            origin = f"https://{identifier}.substack.com"
            headers['Origin'] = origin
            headers['Referer'] = f"{origin}/"
            headers['Sec-Fetch-Dest'] = 'empty'
            headers['Sec-Fetch-Mode'] = 'cors'
            headers['Sec-Fetch-Site'] = 'same-origin'
    if cookie:
        # Cookies copied from devtools are often percent-encoded ("s%3A..." -> "s:...")
        headers['Cookie'] = unquote(cookie)
    return headers


class PacedClient:
    """
    Sequential HTTP client with start-time pacing.

    One instance is owned by one run. It never parallelises calls: the pacer
    lock serialises request starts and each start is at least
    ``min_interval`` seconds after the previous one.
    """

    def __init__(self,
                 min_interval: float = DEFAULT_MIN_INTERVAL,
                 timeout: float = 30.0,
                 max_retries: int = 2,
                 session: Optional[requests.Session] = None,
                 pacer: Optional[RequestPacer] = None):
        """
        Initialize the client.

        Args:
            min_interval: Minimum seconds between request starts
            timeout: Per-request timeout in seconds
            max_retries: Retries for transport errors (HTTP statuses are never retried)
            session: Optional pre-built session (tests inject fakes here)
            pacer: Optional pacer; a fresh one is created per client otherwise
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.pacer = pacer or RequestPacer(min_interval=min_interval)
        self.logger = logging.getLogger(__name__)

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': USER_AGENT,
            'Accept-Language': 'en-US,en;q=0.9',
        })

    def request(self,
                url: str,
                method: str = 'GET',
                headers: Optional[Dict[str, str]] = None,
                allow_error_status: bool = False,
                allow_redirects: bool = True,
                session_cookies: bool = True) -> requests.Response:
        """
        Issue one paced request.

        Args:
            url: Target URL
            method: HTTP method
            headers: Extra headers for this request only
            allow_error_status: Return non-2xx responses instead of raising
            allow_redirects: Follow redirects (the final URL is ``response.url``)
            session_cookies: Send cookies the session picked up from earlier
                responses; when False the request goes out with an empty jar

        Returns:
            The response object

        Raises:
            NetworkError: On transport failure, or on non-2xx unless tolerated
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                backoff = self.pacer.min_interval * (2 ** attempt)
                self.logger.info(f"Retry {attempt} for {url} after {backoff:.1f}s")
                time.sleep(backoff)

            self.pacer.wait()
            self.logger.debug(f"{method} {url}")
            try:
                response = self._send(method, url, headers, allow_redirects, session_cookies)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                self.logger.warning(f"Transport error for {url} (attempt {attempt + 1}): {e}")
                last_error = e
                continue
            except requests.exceptions.RequestException as e:
                raise NetworkError(f"Request failed for {url}: {e}", url=url) from e

            if not allow_error_status and not (200 <= response.status_code < 300):
                raise NetworkError(f"HTTP {response.status_code} for {url}",
                                   url=url, status_code=response.status_code)
            return response

        raise NetworkError(
            f"Failed to reach {url} after {self.max_retries + 1} attempts: {last_error}",
            url=url,
        ) from last_error

    def _send(self, method, url, headers, allow_redirects, session_cookies):
        if session_cookies:
            return self.session.request(method, url, headers=headers or {},
                                        timeout=self.timeout, allow_redirects=allow_redirects)
        saved = self.session.cookies
        self.session.cookies = RequestsCookieJar()
        try:
            return self.session.request(method, url, headers=headers or {},
                                        timeout=self.timeout, allow_redirects=allow_redirects)
        finally:
            self.session.cookies = saved

    def close(self):
        """Close the HTTP session."""
        self.session.close()
        self.logger.debug("HTTP session closed")
