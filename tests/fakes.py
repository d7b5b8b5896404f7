import threading
from typing import Callable, Dict, List, Optional, Union

from page_mirror.fetch import Fetcher, FetchResponse
from page_mirror.models import DomSnapshot

PAGE_URL = "https://example.com/"

Route = Union[FetchResponse, Exception, Callable[[str], FetchResponse]]


def ok(url: str, body: bytes = b"data", content_type: str = "application/octet-stream") -> FetchResponse:
    return FetchResponse(url, 200, {"Content-Type": content_type}, body)


def redirect(url: str, location: str, status: int = 302) -> FetchResponse:
    return FetchResponse(url, status, {"Location": location})


class FakeFetcher(Fetcher):
    """Serves canned responses; unknown URLs are 404s."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, url: str) -> FetchResponse:
        with self._lock:
            self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return FetchResponse(url, 404, {})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(url)
        return route

    def close(self) -> None:
        self.closed = True


def snapshot(body: str, head: str = "", url: str = PAGE_URL) -> DomSnapshot:
    return DomSnapshot(f"<!DOCTYPE html><html><head>{head}</head><body>{body}</body></html>", url)
