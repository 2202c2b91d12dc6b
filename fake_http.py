"""
In-memory HTTP fakes for the test scripts.

``FakeSession`` stands in for ``requests.Session``: it maps URLs to real
``requests.Response`` objects built by ``make_response`` and records every
call. Unknown URLs raise ``requests.ConnectionError`` like an unreachable host.
"""

import json
import threading
from http.client import HTTPMessage
from types import SimpleNamespace

import requests
from requests.adapters import BaseAdapter
from requests.cookies import RequestsCookieJar


def make_response(status=200, body=b"", content_type="text/html; charset=utf-8", url="", json_body=None):
    if json_body is not None:
        body = json.dumps(json_body)
        content_type = "application/json; charset=utf-8"
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response._content = body.encode("utf-8") if isinstance(body, str) else body
    response.headers["Content-Type"] = content_type
    response.url = url
    response.encoding = "utf-8"
    return response


def html_response(body, url="", status=200):
    return make_response(status=status, body=body, url=url)


def json_response(data, url="", status=200):
    return make_response(status=status, json_body=data, url=url)


class FakeSession:
    """
    Route table keyed by exact URL.

    A route value may be a Response, an exception instance (raised), a
    callable ``(url, headers) -> Response`` or a list consumed front to back
    (its last entry is reused once the others are used up).
    """

    def __init__(self, routes=None):
        self.headers = {}
        self.cookies = RequestsCookieJar()
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def add(self, url, response):
        self.routes[url] = response

    def request(self, method, url, headers=None, timeout=None, allow_redirects=True, **kwargs):
        with self._lock:
            self.calls.append((method, url, dict(headers or {})))
            route = self.routes.get(url)
            if isinstance(route, list):
                route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            raise requests.ConnectionError(f"No route for {url}")
        if callable(route) and not isinstance(route, requests.Response):
            route = route(url, headers or {})
        if isinstance(route, Exception):
            raise route
        return route

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self):
        self.closed = True

    def urls(self):
        return [url for _, url, _ in self.calls]

    def count(self, url):
        return self.urls().count(url)


class CookieSettingAdapter(BaseAdapter):
    """
    Transport adapter for a real ``requests.Session``.

    Every response sets ``set_cookie`` so the session's jar fills up the way
    it does against a live server. ``body_for(cookie_header)`` picks the body;
    the Cookie header of each request is recorded in ``sent_cookies``.
    """

    def __init__(self, set_cookie, body_for):
        super().__init__()
        self.set_cookie = set_cookie
        self.body_for = body_for
        self.sent_cookies = []

    def send(self, request, **kwargs):
        cookie = request.headers.get("Cookie")
        self.sent_cookies.append(cookie)
        response = make_response(json_body=self.body_for(cookie), url=request.url)
        response.request = request
        message = HTTPMessage()
        message["Set-Cookie"] = self.set_cookie
        response.raw = SimpleNamespace(_original_response=SimpleNamespace(msg=message))
        return response

    def close(self):
        pass
