import logging
import time
from dataclasses import dataclass, field
from http.cookiejar import LoadError, MozillaCookieJar
from typing import Dict, List, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .settings import Settings

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

REDIRECT_STATUSES = {301, 302, 303, 307, 308}


@dataclass
class FetchResponse:
    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def is_redirect(self) -> bool:
        return self.status_code in REDIRECT_STATUSES and bool(self.location)

    @property
    def location(self) -> Optional[str]:
        for k, v in self.headers.items():
            if k.lower() == "location":
                return v
        return None

    @property
    def content_type(self) -> Optional[str]:
        for k, v in self.headers.items():
            if k.lower() == "content-type":
                return v
        return None


class Fetcher:
    """Byte-fetch capability handed to the pipeline by a page source.

    Implementations return redirects as-is (3xx plus ``Location``); the
    materializer decides how far to follow them. Transport problems raise
    ``requests.Timeout`` / ``requests.RequestException`` (or subclasses).
    """

    def fetch(self, url: str) -> FetchResponse:
        raise NotImplementedError

    def close(self) -> None:
        pass


class TooLarge(Exception):
    def __init__(self, size: int):
        self.size = size
        super().__init__(f"{size} bytes")


class RequestsFetcher(Fetcher):
    def __init__(self, session: requests.Session, *, timeout: float, max_bytes: int):
        self.session = session
        self.timeout = timeout
        self.max_bytes = max_bytes

    def fetch(self, url: str) -> FetchResponse:
        # the session timeout is per socket read; bound the whole response too
        deadline = time.monotonic() + self.timeout
        with self.session.get(
            url, timeout=self.timeout, stream=True, allow_redirects=False
        ) as resp:
            headers = {k: str(v) for k, v in resp.headers.items()}
            if resp.status_code in REDIRECT_STATUSES or resp.status_code >= 400:
                return FetchResponse(str(resp.url), resp.status_code, headers)
            cl = headers.get("Content-Length")
            if cl and cl.isdigit() and int(cl) > self.max_bytes:
                raise TooLarge(int(cl))
            chunks: List[bytes] = []
            written = 0
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if time.monotonic() > deadline:
                    raise requests.Timeout(f"download exceeded {self.timeout}s: {url}")
                if not chunk:
                    continue
                written += len(chunk)
                if written > self.max_bytes:
                    raise TooLarge(written)
                chunks.append(chunk)
            return FetchResponse(str(resp.url), resp.status_code, headers, b"".join(chunks))

    def close(self) -> None:
        self.session.close()


def build_session(
    headers: Optional[Mapping[str, str]] = None, *, pool_size: int = 32
) -> requests.Session:
    s = requests.Session()
    # no automatic retries; redirects are followed by the materializer
    retry = Retry(total=0, redirect=0, raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def apply_auth_to_session(session: requests.Session, settings: Settings) -> None:
    for h in settings.extra_headers:
        if ":" not in h:
            logging.warning("invalid header (no colon): %s", h)
            continue
        k, v = h.split(":", 1)
        session.headers[k.strip()] = v.strip()
    if settings.auth_bearer:
        session.headers["Authorization"] = f"Bearer {settings.auth_bearer}"
    if settings.auth_basic:
        if ":" not in settings.auth_basic:
            logging.error("--auth-basic requires user:pass")
        else:
            u, p = settings.auth_basic.split(":", 1)
            session.auth = (u, p)
    if settings.cookies_file:
        jar = MozillaCookieJar()
        try:
            jar.load(settings.cookies_file, ignore_discard=True, ignore_expires=True)
        except (OSError, LoadError) as e:
            logging.error("failed to load cookies: %s", e)
            return
        session.cookies.update(jar)
        logging.info("loaded cookies: %s", settings.cookies_file)
