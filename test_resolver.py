#!/usr/bin/env python3
"""
Tests for base-endpoint resolution and publication metadata.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from fake_http import FakeSession, html_response, json_response, make_response
from stackarchive.core.errors import FetchError
from stackarchive.core.http_client import PacedClient
from stackarchive.core.resolver import EndpointResolver, default_endpoint, is_profile_url


PROFILE_URL = "https://substack.com/@foo"
PROFILE_PAGE = """
<html><body>
  <h1>Foo</h1>
  <a href="https://foonews.com/about">My newsletter</a>
</body></html>
"""


def make_resolver(routes):
    session = FakeSession(routes)
    return EndpointResolver(PacedClient(min_interval=0, max_retries=0, session=session)), session


def test_default_endpoint():
    assert default_endpoint("foo") == "https://foo.substack.com"
    assert default_endpoint("www.foo.com") == "https://www.foo.com"


def test_is_profile_url():
    assert is_profile_url("https://substack.com/@foo")
    assert not is_profile_url("https://foo.substack.com/")
    assert not is_profile_url("https://substack.com/home")


def test_plain_subdomain_resolves_to_itself():
    resolver, _ = make_resolver({
        "https://foo.substack.com": html_response("<html></html>", url="https://foo.substack.com/"),
    })
    assert resolver.resolve("foo") == "https://foo.substack.com"


def test_redirect_to_custom_domain_adopts_landing_origin():
    resolver, _ = make_resolver({
        "https://foo.substack.com": html_response("<html></html>", url="https://www.foo.com/"),
    })
    assert resolver.resolve("foo") == "https://www.foo.com"


def test_profile_landing_uses_custom_domain_with_json_listing():
    resolver, session = make_resolver({
        "https://foo.substack.com": html_response(PROFILE_PAGE, url=PROFILE_URL),
        "https://foonews.com/api/v1/archive?limit=1": json_response([]),
    })

    assert resolver.resolve("foo") == "https://foonews.com"
    assert "https://foo.substack.com/api/v1/archive?limit=1" not in session.urls()


def test_profile_landing_falls_back_to_default_listing():
    resolver, session = make_resolver({
        "https://foo.substack.com": html_response(PROFILE_PAGE, url=PROFILE_URL),
        "https://foonews.com/api/v1/archive?limit=1": html_response("<html>not json</html>"),
        "https://foo.substack.com/api/v1/archive?limit=1": json_response([]),
    })

    assert resolver.resolve("foo") == "https://foo.substack.com"
    assert session.urls().index("https://foonews.com/api/v1/archive?limit=1") < \
        session.urls().index("https://foo.substack.com/api/v1/archive?limit=1")


def test_profile_landing_falls_back_to_profile_origin():
    resolver, _ = make_resolver({
        "https://foo.substack.com": html_response("<html>no links</html>", url=PROFILE_URL),
        "https://foo.substack.com/api/v1/archive?limit=1": make_response(status=404),
    })
    assert resolver.resolve("foo") == "https://substack.com"


def test_unreachable_landing_fails_open_to_default():
    resolver, _ = make_resolver({})
    assert resolver.resolve("foo") == "https://foo.substack.com"


def test_describe_reads_publication_metadata():
    page = """
    <html><head>
      <title>Ignored | Substack</title>
      <meta property="og:site_name" content="Foo Weekly">
      <meta property="og:description" content="Notes about foo">
      <meta name="author" content="Jane Doe">
    </head><body><a href="/subscribe">subscribe</a></body></html>
    """
    resolver, _ = make_resolver({"https://foo.substack.com": html_response(page)})

    publication = resolver.describe("foo", "https://foo.substack.com")

    assert publication.name == "Foo Weekly"
    assert publication.description == "Notes about foo"
    assert publication.author == "Jane Doe"
    assert publication.url == "https://foo.substack.com"
    assert publication.base_url == "https://foo.substack.com"
    assert publication.has_paid_content


def test_describe_falls_back_to_title_then_identifier():
    resolver, _ = make_resolver({
        "https://a.substack.com": html_response("<html><head><title>Alpha | Substack</title></head></html>"),
        "https://b.substack.com": html_response("<html><body></body></html>"),
    })
    assert resolver.describe("a", "https://a.substack.com").name == "Alpha"
    assert resolver.describe("b", "https://b.substack.com").name == "b"


def test_describe_raises_fetch_error_when_unreachable():
    resolver, _ = make_resolver({"https://foo.substack.com": make_response(status=404)})
    with pytest.raises(FetchError) as info:
        resolver.describe("foo", "https://foo.substack.com")
    assert info.value.status_code == 404


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✓ {name}")
