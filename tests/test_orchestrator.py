import json

import pytest
from bs4 import BeautifulSoup

from fakes import PAGE_URL, FakeFetcher, ok
from page_mirror.errors import RunCancelled
from page_mirror.models import FetchState
from page_mirror.orchestrator import Orchestrator
from page_mirror.settings import Settings
from page_mirror.sources import StaticPageSource

PAGE = """<!DOCTYPE html>
<html>
<head>
<title>Demo</title>
<link rel="stylesheet" href="/css/site.css">
<style>.hero{background:url(/img/hero.jpg)}</style>
</head>
<body>
<div id="__next">
<img id="logo" src="/img/logo.png" data-src="/img/logo.png" srcset="/img/logo.png 1x, /img/logo@2x.png 2x">
<img id="missing" src="/img/missing.png">
<a id="about" href="/about">About</a>
</div>
<script src="/_next/static/chunks/app.js"></script>
</body>
</html>
"""

ROUTES = {
    "https://example.com/css/site.css": ok(
        "https://example.com/css/site.css", b"body{background:url(../img/bg.png)}", "text/css"
    ),
    "https://example.com/img/bg.png": ok("https://example.com/img/bg.png", b"BG"),
    "https://example.com/img/hero.jpg": ok("https://example.com/img/hero.jpg", b"HERO"),
    "https://example.com/img/logo.png": ok("https://example.com/img/logo.png", b"LOGO"),
    "https://example.com/img/logo@2x.png": ok("https://example.com/img/logo@2x.png", b"LOGO2"),
    "https://example.com/_next/static/chunks/app.js": ok(
        "https://example.com/_next/static/chunks/app.js", b"console.log(1)"
    ),
}


def source(fetcher=None):
    return StaticPageSource(PAGE, PAGE_URL, fetcher or FakeFetcher(ROUTES))


def leftover_staging(tmp_path):
    return [p for p in tmp_path.iterdir() if p.name.startswith(".page-mirror-")]


def test_end_to_end_mirror(tmp_path):
    out = tmp_path / "site"
    report = Orchestrator(Settings(workers=3)).run(source(), out)

    assert report.failed == 1
    assert report.failures[("image", "http-status")] == 1
    assert report.rewrite_warnings == 0
    assert report.detection.primary_framework.key == "nextjs"
    assert report.counts_by_category["image"] == 5
    assert all(r.fetch_state is not FetchState.PENDING for r in report.records)

    soup = BeautifulSoup((out / "index.html").read_text(encoding="utf-8"), "html.parser")
    logo = soup.find(id="logo")
    assert logo["src"].startswith("assets/images/logo_")
    assert logo["data-src"] == logo["src"]
    assert (out / logo["src"]).read_bytes() == b"LOGO"
    assert soup.find(id="missing")["src"] == "https://example.com/img/missing.png"
    assert soup.find(id="about")["href"] == "https://example.com/about"

    css = (out / "styles.css").read_text(encoding="utf-8")
    assert "url(assets/images/bg_" in css
    assert "url(assets/images/hero_" in css
    staged_sheets = list((out / "assets" / "styles").glob("site_*.css"))
    assert len(staged_sheets) == 1
    assert "url(../images/bg_" in staged_sheets[0].read_text(encoding="utf-8")

    manifest = json.loads((out / "manifest.json").read_text(encoding="utf-8"))
    assert len(manifest["assets"]) == len(report.records)
    assert manifest["framework"]["primary_framework"] == "Next.js"
    assert leftover_staging(tmp_path) == []
    assert any("failed image: http-status x1" in line for line in report.summary_lines())


def test_css_passes_zero_leaves_stylesheet_assets_remote(tmp_path):
    out = tmp_path / "site"
    report = Orchestrator(Settings(css_passes=0)).run(source(), out)
    assert "https://example.com/img/bg.png" not in {r.canonical_url for r in report.records}
    css = (out / "styles.css").read_text(encoding="utf-8")
    assert "url(https://example.com/img/bg.png)" in css


def test_cancelled_run_emits_nothing(tmp_path):
    out = tmp_path / "site"
    orchestrator = Orchestrator(Settings(workers=1))
    fetcher = FakeFetcher(ROUTES)

    def cancel_on_first(url):
        orchestrator.cancel()
        return ok(url)

    for url in list(fetcher.routes):
        fetcher.routes[url] = cancel_on_first
    with pytest.raises(RunCancelled):
        orchestrator.run(source(fetcher), out)
    assert len(fetcher.calls) == 1
    assert not out.exists()
    assert leftover_staging(tmp_path) == []


def test_cancel_before_run(tmp_path):
    orchestrator = Orchestrator()
    orchestrator.cancel()
    fetcher = FakeFetcher(ROUTES)
    with pytest.raises(RunCancelled):
        orchestrator.run(source(fetcher), tmp_path / "site")
    assert fetcher.calls == []


def test_ai_analysis_fallback_and_success(tmp_path):
    settings = Settings(ai=True, ai_timeout=5.0)
    report = Orchestrator(settings, completion=lambda prompt: "I cannot answer").run(source(), tmp_path / "a")
    assert report.analysis is not None and not report.analysis.enhanced

    answer = '{"framework": {"detected": "Next.js"}, "reasoning": "ok"}'
    report = Orchestrator(settings, completion=lambda prompt: answer).run(source(), tmp_path / "b")
    assert report.analysis.enhanced
    manifest = json.loads((tmp_path / "b" / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["analysis"]["enhanced"] is True


def test_detector_failure_does_not_gate_pipeline(tmp_path):
    class BrokenDetector:
        def analyze(self, snapshot):
            raise RuntimeError("boom")

    report = Orchestrator(detector=BrokenDetector()).run(source(), tmp_path / "site")
    assert report.detection is None
    assert (tmp_path / "site" / "index.html").is_file()


def test_clean_mode_skips_tracking_fetches(tmp_path):
    page = PAGE.replace(
        "</body>", '<script src="https://www.googletagmanager.com/gtm.js?id=GTM-1"></script></body>'
    )
    fetcher = FakeFetcher(ROUTES)
    Orchestrator(Settings(clean=True)).run(StaticPageSource(page, PAGE_URL, fetcher), tmp_path / "site")
    assert not any("googletagmanager" in u for u in fetcher.calls)
    html = (tmp_path / "site" / "index.html").read_text(encoding="utf-8")
    assert "googletagmanager" not in html


def test_minified_stylesheet_with_charset_survives_consolidation(tmp_path):
    css_url = "https://example.com/css/min.css"
    page = '<html><head><link rel="stylesheet" href="/css/min.css"></head><body><p>x</p></body></html>'
    fetcher = FakeFetcher({css_url: ok(css_url, b'@charset "UTF-8";body{color:red}', "text/css")})
    Orchestrator().run(StaticPageSource(page, PAGE_URL, fetcher), tmp_path / "site")
    css = (tmp_path / "site" / "styles.css").read_text(encoding="utf-8")
    assert "body{color:red}" in css
    assert "@charset" not in css
