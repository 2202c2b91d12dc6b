#!/usr/bin/env python3
"""
Tests for request pacing and the paced HTTP client.
"""

import sys
from pathlib import Path

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent))

from fake_http import CookieSettingAdapter, FakeSession, html_response, json_response, make_response
from stackarchive.core.errors import NetworkError
from stackarchive.core.http_client import PacedClient, build_headers, is_json_response
from stackarchive.utils.rate_limiter import RequestPacer


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_pacer_spaces_request_starts():
    clock = FakeClock()
    pacer = RequestPacer(min_interval=1.0, clock=clock, sleep=clock.sleep)

    assert pacer.wait() == 0.0
    assert pacer.wait() == pytest.approx(1.0)

    # Time spent on the previous request counts towards the interval
    clock.now += 0.4
    assert pacer.wait() == pytest.approx(0.6)

    clock.now += 5
    assert pacer.wait() == 0.0
    assert clock.sleeps == [pytest.approx(1.0), pytest.approx(0.6)]


def test_pacer_reset_forgets_last_start():
    clock = FakeClock()
    pacer = RequestPacer(min_interval=2.0, clock=clock, sleep=clock.sleep)
    pacer.wait()
    pacer.reset()
    assert pacer.wait() == 0.0


def test_pacer_instances_do_not_share_state():
    clock = FakeClock()
    first = RequestPacer(min_interval=1.0, clock=clock, sleep=clock.sleep)
    second = RequestPacer(min_interval=1.0, clock=clock, sleep=clock.sleep)
    first.wait()
    assert second.wait() == 0.0


def test_build_headers_decodes_cookie_and_adds_api_headers():
    headers = build_headers("substack.sid=s%3Aabc.def", for_api=True, identifier="foo")
    assert headers["Cookie"] == "substack.sid=s:abc.def"
    assert headers["Accept"] == "application/json"
    assert headers["Origin"] == "https://foo.substack.com"
    assert headers["Referer"] == "https://foo.substack.com/"
    assert headers["Sec-Fetch-Mode"] == "cors"

    plain = build_headers()
    assert plain == {}


def test_is_json_response():
    assert is_json_response(json_response({"a": 1}))
    assert not is_json_response(html_response("<html></html>"))


def test_client_returns_successful_response():
    session = FakeSession({"https://a.test/x": html_response("ok")})
    client = PacedClient(min_interval=0, session=session)

    response = client.request("https://a.test/x", headers={"X-Test": "1"})

    assert response.text == "ok"
    assert session.calls == [("GET", "https://a.test/x", {"X-Test": "1"})]
    assert "Mozilla" in session.headers["User-Agent"]


def test_client_raises_network_error_on_error_status():
    session = FakeSession({"https://a.test/x": make_response(status=500, body="boom")})
    client = PacedClient(min_interval=0, session=session)

    with pytest.raises(NetworkError) as info:
        client.request("https://a.test/x")

    assert info.value.status_code == 500
    # HTTP statuses are never retried
    assert session.count("https://a.test/x") == 1


def test_client_tolerates_error_status_when_asked():
    session = FakeSession({"https://a.test/x": make_response(status=404, body="missing")})
    client = PacedClient(min_interval=0, session=session)

    response = client.request("https://a.test/x", allow_error_status=True)
    assert response.status_code == 404


def test_client_retries_transport_errors():
    session = FakeSession({
        "https://a.test/x": [requests.ConnectionError("reset"), html_response("second time")],
    })
    client = PacedClient(min_interval=0, max_retries=2, session=session)

    response = client.request("https://a.test/x")

    assert response.text == "second time"
    assert session.count("https://a.test/x") == 2


def test_client_gives_up_after_retries():
    session = FakeSession({"https://a.test/x": requests.Timeout("slow")})
    client = PacedClient(min_interval=0, max_retries=2, session=session)

    with pytest.raises(NetworkError):
        client.request("https://a.test/x")
    assert session.count("https://a.test/x") == 3


def test_request_can_skip_session_cookies():
    adapter = CookieSettingAdapter("sid=from-server; Path=/", lambda cookie: {"cookie": cookie})
    session = requests.Session()
    session.mount("https://", adapter)
    client = PacedClient(min_interval=0, session=session)

    client.request("https://a.test/first")
    client.request("https://a.test/second")
    client.request("https://a.test/third", session_cookies=False)

    assert adapter.sent_cookies == [None, "sid=from-server", None]
    assert session.cookies.get("sid") == "from-server"


def test_every_attempt_passes_through_the_pacer():
    clock = FakeClock()
    pacer = RequestPacer(min_interval=0, clock=clock, sleep=clock.sleep)
    waits = []
    original_wait = pacer.wait

    def counting_wait():
        waits.append(1)
        return original_wait()

    pacer.wait = counting_wait
    session = FakeSession({"https://a.test/x": [requests.ConnectionError("x"), html_response("ok")],
                           "https://a.test/y": html_response("ok")})
    client = PacedClient(session=session, pacer=pacer)

    client.request("https://a.test/x")
    client.request("https://a.test/y")
    assert len(waits) == 3


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"✓ {name}")
