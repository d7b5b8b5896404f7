import logging
from types import SimpleNamespace

import pytest
import requests

from page_mirror import fetch
from page_mirror.fetch import (
    DEFAULT_HEADERS,
    FetchResponse,
    RequestsFetcher,
    TooLarge,
    apply_auth_to_session,
    build_session,
)
from page_mirror.settings import Settings


class StubResponse:
    def __init__(self, url, status_code=200, headers=None, chunks=()):
        self.url = url
        self.status_code = status_code
        self.headers = headers or {}
        self.chunks = list(chunks)
        self.closed = False

    def iter_content(self, chunk_size=1):
        return iter(self.chunks)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class StubSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.response

    def close(self):
        pass


def test_fetch_streams_body_without_following_redirects():
    resp = StubResponse("https://example.com/a.css", headers={"Content-Type": "text/css"}, chunks=[b"a{", b"", b"}"])
    session = StubSession(resp)
    out = RequestsFetcher(session, timeout=3, max_bytes=100).fetch("https://example.com/a.css")
    assert out.body == b"a{}"
    assert out.content_type == "text/css"
    url, kwargs = session.calls[0]
    assert kwargs["allow_redirects"] is False
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == 3
    assert resp.closed


def test_redirect_returned_as_is():
    resp = StubResponse("https://example.com/a", 302, {"Location": "/b"}, [b"ignored"])
    out = RequestsFetcher(StubSession(resp), timeout=3, max_bytes=100).fetch("https://example.com/a")
    assert out.is_redirect
    assert out.location == "/b"
    assert out.body == b""


def test_content_length_over_limit():
    resp = StubResponse("https://example.com/big", headers={"Content-Length": "5000"}, chunks=[b"x"])
    with pytest.raises(TooLarge):
        RequestsFetcher(StubSession(resp), timeout=3, max_bytes=100).fetch("https://example.com/big")


def test_streamed_body_over_limit():
    resp = StubResponse("https://example.com/big", chunks=[b"x" * 60, b"x" * 60])
    with pytest.raises(TooLarge):
        RequestsFetcher(StubSession(resp), timeout=3, max_bytes=100).fetch("https://example.com/big")


def test_redirect_needs_location():
    assert not FetchResponse("https://x", 302, {}).is_redirect
    assert FetchResponse("https://x", 307, {"location": "/y"}).is_redirect


def test_build_session_disables_retries():
    s = build_session()
    adapter = s.get_adapter("https://example.com/")
    assert adapter.max_retries.total == 0
    assert s.headers["User-Agent"] == DEFAULT_HEADERS["User-Agent"]


def test_apply_auth_to_session(caplog):
    s = build_session()
    settings = Settings(
        extra_headers=["X-Token: abc", "broken"],
        auth_bearer="tkn",
        auth_basic="user:pw",
    )
    with caplog.at_level(logging.WARNING):
        apply_auth_to_session(s, settings)
    assert s.headers["X-Token"] == "abc"
    assert s.headers["Authorization"] == "Bearer tkn"
    assert s.auth == ("user", "pw")
    assert "invalid header" in caplog.text


def test_missing_cookie_file_is_logged(tmp_path, caplog):
    s = build_session()
    with caplog.at_level(logging.ERROR):
        apply_auth_to_session(s, Settings(cookies_file=str(tmp_path / "nope.txt")))
    assert "failed to load cookies" in caplog.text


def test_trickling_body_hits_total_deadline(monkeypatch):
    clock = iter([0.0, 1.0, 10.0, 20.0])
    monkeypatch.setattr(fetch, "time", SimpleNamespace(monotonic=lambda: next(clock)))
    resp = StubResponse("https://example.com/slow.js", chunks=[b"a", b"b", b"c"])
    fetcher = RequestsFetcher(StubSession(resp), timeout=3, max_bytes=100)
    with pytest.raises(requests.Timeout):
        fetcher.fetch("https://example.com/slow.js")
    assert resp.closed
