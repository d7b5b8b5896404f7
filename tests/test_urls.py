from collections import Counter

import pytest

from page_mirror.urls import (
    can_fetch_url,
    canonicalize,
    iter_css_refs,
    join_srcset,
    proxy_target,
    rewrite_css_urls,
    split_srcset,
)

BASE = "https://example.com/blog/post.html"


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("//cdn.example.net/a.png", "https://cdn.example.net/a.png"),
        ("/img/a.png", "https://example.com/img/a.png"),
        ("img/a.png", "https://example.com/blog/img/a.png"),
        ("../a.png", "https://example.com/a.png"),
        ("HTTP://Example.com/A.png?b=1", "HTTP://Example.com/A.png?b=1"),
        ("  /padded.png ", "https://example.com/padded.png"),
    ],
)
def test_canonicalize(ref, expected):
    assert canonicalize(ref, BASE) == expected


@pytest.mark.parametrize(
    "ref", ["#top", "mailto:a@b.c", "tel:123", "javascript:void(0)", "data:text/plain,x", "blob:abc", "about:blank", "", "   ", None]
)
def test_non_fetchable(ref):
    assert not can_fetch_url(ref)


def test_fetchable():
    assert can_fetch_url("/a.png")
    assert can_fetch_url("https://x.com/a.png")


def test_split_srcset_keeps_descriptors():
    assert split_srcset("a.png 1x, b.png 2x,c.png") == [("a.png", "1x"), ("b.png", "2x"), ("c.png", "")]
    assert join_srcset([("a.png", "1x"), ("c.png", "")]) == "a.png 1x, c.png"


def test_proxy_target():
    assert proxy_target("https://example.com/_next/image?url=%2Fimg%2Fa.png&w=64") == "/img/a.png"
    assert proxy_target("https://example.com/_ipx/w_200/photo?url=https%3A%2F%2Fcdn.x%2Fp.jpg") == "https://cdn.x/p.jpg"
    assert proxy_target("https://example.com/img/a.png?url=x") is None


def test_iter_css_refs_roles():
    css = """
    @import url("theme.css") screen;
    @font-face { font-family: X; src: url(fonts/x.woff2) format("woff2"); }
    .hero { background: url('img/hero.jpg'); }
    """
    assert list(iter_css_refs(css)) == [
        ("theme.css", "import"),
        ("fonts/x.woff2", "font"),
        ("img/hero.jpg", "url"),
    ]


def test_rewrite_css_maps_each_reference_once():
    seen = Counter()

    def map_url(u):
        seen[u] += 1
        return "local/" + u

    css = '@import url("a.css");\n@import "b.css" print;\n.x{background:url(c.png)}'
    out = rewrite_css_urls(css, map_url)
    assert seen == Counter({"a.css": 1, "b.css": 1, "c.png": 1})
    assert '@import url("local/a.css");' in out
    assert '@import url("local/b.css") print;' in out
    assert "url(local/c.png)" in out


def test_rewrite_css_unchanged_returns_same_text():
    css = ".x{background:url(c.png)}"
    assert rewrite_css_urls(css, lambda u: u) is css
