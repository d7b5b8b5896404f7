import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import requests

from .errors import SourceError
from .fetch import Fetcher, RequestsFetcher, build_session
from .models import DomSnapshot
from .settings import Settings

# scrolls in steps until the bottom so lazy loaders fire, then back to the top
SCROLL_SCRIPT = """
async () => {
  await new Promise((resolve) => {
    let total = 0;
    const step = 400;
    const timer = setInterval(() => {
      window.scrollBy(0, step);
      total += step;
      if (total >= document.body.scrollHeight) {
        clearInterval(timer);
        window.scrollTo(0, 0);
        resolve();
      }
    }, 100);
  });
}
"""


class PageSource:
    """Hands the pipeline a finished DOM snapshot and a byte fetcher."""

    fetcher: Fetcher

    def snapshot(self) -> DomSnapshot:
        raise NotImplementedError

    def close(self) -> None:
        self.fetcher.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def default_fetcher(settings: Settings, session: Optional[requests.Session] = None) -> Fetcher:
    return RequestsFetcher(
        session or build_session(pool_size=max(10, settings.workers)),
        timeout=settings.timeout,
        max_bytes=settings.max_bytes,
    )


class StaticPageSource(PageSource):
    """Already-rendered HTML (a saved file or a string) with its page URL."""

    def __init__(self, html: str, url: str, fetcher: Fetcher):
        self.html = html
        self.url = url
        self.fetcher = fetcher

    @classmethod
    def from_file(cls, path: str, url: str, fetcher: Fetcher) -> "StaticPageSource":
        try:
            html = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise SourceError(f"cannot read {path}: {e}") from e
        return cls(html, url, fetcher)

    def snapshot(self) -> DomSnapshot:
        return DomSnapshot(self.html, self.url)


class RequestsPageSource(PageSource):
    def __init__(self, url: str, session: requests.Session, settings: Settings):
        self.url = url
        self.session = session
        self.settings = settings
        self.fetcher = default_fetcher(settings, session)

    def snapshot(self) -> DomSnapshot:
        logging.info("GET %s", self.url)
        try:
            r = self.session.get(self.url, timeout=self.settings.timeout)
        except requests.RequestException as e:
            raise SourceError(f"failed to fetch HTML for {self.url}: {e}") from e
        if r.status_code >= 400:
            raise SourceError(f"failed to fetch HTML for {self.url}: HTTP {r.status_code}")
        ct = (r.headers.get("Content-Type") or "").lower()
        if ct and "text/html" not in ct and "application/xhtml+xml" not in ct:
            raise SourceError(f"not an HTML page: {self.url} ({ct})")
        if not r.encoding:
            r.encoding = r.apparent_encoding or "utf-8"
        return DomSnapshot(r.text, str(r.url))


class PlaywrightPageSource(PageSource):
    """Headless Chromium render; ``playwright`` is only needed when used."""

    def __init__(self, url: str, session: requests.Session, settings: Settings):
        self.url = url
        self.session = session
        self.settings = settings
        self.fetcher = default_fetcher(settings, session)
        self._pl = None
        self._browser = None

    def _cookies_for_url(self, url: str) -> List[dict]:
        out = []
        u = urlparse(url)
        host = u.hostname or ""
        path = u.path or "/"
        secure = u.scheme == "https"
        for c in self.session.cookies:
            dom = (c.domain or "").lstrip(".")
            host_ok = (host == dom) or (dom and host.endswith("." + dom))
            path_ok = path.startswith(c.path or "/")
            sec_ok = (not c.secure) or secure
            if host_ok and path_ok and sec_ok:
                out.append(
                    {
                        "name": c.name,
                        "value": c.value,
                        "domain": c.domain or host,
                        "path": c.path or "/",
                        "secure": bool(c.secure),
                        "httpOnly": False,
                    }
                )
        return out

    def _ensure_browser(self) -> None:
        if self._pl is not None and self._browser is not None:
            return
        try:
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            raise SourceError(
                "Playwright not installed. Run: pip install playwright && playwright install"
            ) from e
        self._pl = sync_playwright().start()
        self._browser = self._pl.chromium.launch(headless=True)

    def snapshot(self) -> DomSnapshot:
        self._ensure_browser()
        logging.info("render %s", self.url)
        ua = self.session.headers.get("User-Agent")
        locale = (self.session.headers.get("Accept-Language") or "en-US").split(",")[0]
        context = self._browser.new_context(user_agent=ua, locale=locale)
        try:
            cookies = self._cookies_for_url(self.url)
            if cookies:
                context.add_cookies(cookies)
            page = context.new_page()
            page.goto(
                self.url,
                wait_until=self.settings.wait_until,
                timeout=self.settings.render_timeout_ms,
            )
            if self.settings.scroll:
                page.evaluate(SCROLL_SCRIPT)
                page.wait_for_timeout(500)
            return DomSnapshot(page.content(), page.url)
        except Exception as e:
            raise SourceError(f"render failed for {self.url}: {e}") from e
        finally:
            context.close()

    def close(self) -> None:
        super().close()
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._pl is not None:
            self._pl.stop()
            self._pl = None


def get_page_source(
    url: str,
    settings: Settings,
    session: requests.Session,
    html_file: Optional[str] = None,
) -> PageSource:
    if html_file:
        return StaticPageSource.from_file(html_file, url, default_fetcher(settings, session))
    if settings.render_js:
        return PlaywrightPageSource(url, session, settings)
    return RequestsPageSource(url, session, settings)
