import logging

from bs4 import BeautifulSoup

from fakes import snapshot
from page_mirror.catalog import AssetCatalog
from page_mirror.models import FetchState
from page_mirror.rewriter import ReferenceRewriter

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="


def settle(catalog, failed=()):
    for r in catalog:
        if r.fetch_state is not FetchState.PENDING:
            continue
        if r.canonical_url in failed:
            r.mark_failed("http-status", "HTTP 404")
        else:
            r.mark_fetched(size=1, final_url=r.canonical_url)


def rewrite(snap, failed=()):
    catalog = AssetCatalog()
    catalog.discover(snap)
    settle(catalog, failed)
    rewriter = ReferenceRewriter()
    out = rewriter.rewrite(snap, catalog)
    return BeautifulSoup(out.html, "html.parser"), catalog, rewriter


def test_fetched_failed_and_embedded_references():
    snap = snapshot(
        '<img id="ok" src="/img/a.png">'
        '<img id="bad" src="img/missing.png">'
        f'<img id="inline" src="{PNG_DATA_URL}">'
    )
    soup, catalog, rewriter = rewrite(snap, failed={"https://example.com/img/missing.png"})
    assert soup.find(id="ok")["src"] == catalog.get("https://example.com/img/a.png").local_path
    assert soup.find(id="bad")["src"] == "https://example.com/img/missing.png"
    assert soup.find(id="inline")["src"] == PNG_DATA_URL
    assert rewriter.warnings == 0


def test_all_references_of_a_record_rewritten():
    snap = snapshot('<img src="a.png" data-src="a.png" srcset="a.png 1x, b.png 2x">')
    soup, catalog, _ = rewrite(snap, failed={"https://example.com/b.png"})
    img = soup.find("img")
    local = catalog.get("https://example.com/a.png").local_path
    assert img["src"] == local
    assert img["data-src"] == local
    assert img["srcset"] == f"{local} 1x, https://example.com/b.png 2x"


def test_integrity_dropped_only_when_localized():
    snap = snapshot(
        '<script id="l" src="/app.js" integrity="sha384-x" crossorigin="anonymous"></script>'
        '<script id="r" src="/gone.js" integrity="sha384-y" crossorigin="anonymous"></script>'
    )
    soup, _, _ = rewrite(snap, failed={"https://example.com/gone.js"})
    assert "integrity" not in soup.find(id="l").attrs
    assert "crossorigin" not in soup.find(id="l").attrs
    assert soup.find(id="r")["integrity"] == "sha384-y"


def test_inline_style_and_style_block():
    snap = snapshot(
        '<div id="hero" style="background:url(/hero.jpg)"></div>',
        "<style>.a{background:url('/bg.png')}</style>",
    )
    soup, catalog, _ = rewrite(snap)
    hero = catalog.get("https://example.com/hero.jpg").local_path
    bg = catalog.get("https://example.com/bg.png").local_path
    assert soup.find(id="hero")["style"] == f"background:url({hero})"
    assert soup.find("style").string == f".a{{background:url('{bg}')}}"


def test_links_forms_and_base():
    snap = snapshot(
        '<a id="same" href="/about">About</a>'
        '<a id="ext" href="https://other.org/x" rel="nofollow">Other</a>'
        '<a id="frag" href="#top">Top</a>'
        '<a id="js" href="javascript:void(0)">JS</a>'
        '<form id="f" action="/search"></form>',
        '<base href="https://example.com/">',
    )
    soup, _, _ = rewrite(snap)
    assert soup.find(id="same")["href"] == "https://example.com/about"
    assert "target" not in soup.find(id="same").attrs
    ext = soup.find(id="ext")
    assert ext["target"] == "_blank"
    assert ext["rel"] == ["nofollow", "noopener", "noreferrer"]
    assert soup.find(id="frag")["href"] == "#top"
    assert soup.find(id="js")["href"] == "javascript:void(0)"
    assert soup.find(id="f")["action"] == "https://example.com/search"
    assert soup.find("base") is None


def test_unknown_reference_warns_and_falls_back(caplog):
    rewriter = ReferenceRewriter()
    with caplog.at_level(logging.WARNING):
        new, localized = rewriter.map_url("/nowhere.png", "https://example.com/", AssetCatalog())
    assert new == "https://example.com/nowhere.png"
    assert not localized
    assert rewriter.warnings == 1
    assert "no catalog record" in caplog.text


def test_rewrite_stylesheets_relative_to_own_directory(tmp_path):
    snap = snapshot("", '<link rel="stylesheet" href="/css/site.css">')
    catalog = AssetCatalog()
    catalog.discover(snap)
    sheet = catalog.get("https://example.com/css/site.css")
    sheet.mark_fetched(size=1, final_url=sheet.canonical_url)
    css = "body{background:url(../img/bg.png)} .x{background:url(../img/gone.png)}"
    staged = tmp_path / sheet.local_path
    staged.parent.mkdir(parents=True)
    staged.write_text(css, encoding="utf-8")
    catalog.discover_stylesheet(sheet, css)
    catalog.get("https://example.com/img/bg.png").mark_fetched(size=1, final_url="https://example.com/img/bg.png")
    catalog.get("https://example.com/img/gone.png").mark_failed("timeout")

    rewriter = ReferenceRewriter(tmp_path)
    out = rewriter.rewrite_stylesheets(catalog)
    bg = catalog.get("https://example.com/img/bg.png")

    assert f"url(../images/{bg.local_filename})" in staged.read_text(encoding="utf-8")
    root_text = out[sheet.canonical_url]
    assert f"url({bg.local_path})" in root_text
    assert "url(https://example.com/img/gone.png)" in root_text
    assert rewriter.warnings == 0
