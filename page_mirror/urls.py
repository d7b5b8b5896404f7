import re
from typing import Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(
    r"@import\s+(?:url\()?\s*([\"']?)([^\)\"';]+)\1\s*\)?\s*([^;]*);",
    re.IGNORECASE,
)
FONT_FACE_RE = re.compile(r"@font-face\s*\{[^}]*\}", re.IGNORECASE)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")
SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")

NON_FETCHABLE_PREFIXES = (
    "#",
    "mailto:",
    "tel:",
    "javascript:",
    "data:",
    "blob:",
    "about:",
)

# optimizer endpoints that carry the real image in a query parameter
PROXY_PATH_MARKERS = ("/_next/image", "/_vercel/image", "/_ipx/")
PROXY_TARGET_PARAMS = ("url",)


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u:
        return False
    return not u.lower().startswith(NON_FETCHABLE_PREFIXES)


def is_data_image(u: Optional[str]) -> bool:
    return bool(u) and u.strip().lower().startswith("data:image/")


def canonicalize(ref: str, base_url: str) -> str:
    """Resolve ``ref`` against ``base_url``.

    Absolute references are returned untouched; the resulting string is the
    deduplication key, so no further normalization is applied.
    """
    ref = ref.strip()
    if SCHEME_RE.match(ref):
        return ref
    base = urlparse(base_url)
    if ref.startswith("//"):
        return f"{base.scheme}:{ref}"
    if ref.startswith("/"):
        return f"{base.scheme}://{base.netloc}{ref}"
    return urljoin(base_url, ref)


def origin_of(url: str) -> Tuple[str, str]:
    p = urlparse(url)
    return p.scheme.lower(), p.netloc.lower()


def is_same_origin(base: str, other: str) -> bool:
    return origin_of(base) == origin_of(other)


def proxy_target(url: str) -> Optional[str]:
    p = urlparse(url)
    if not any(marker in p.path for marker in PROXY_PATH_MARKERS):
        return None
    params = parse_qs(p.query)
    for name in PROXY_TARGET_PARAMS:
        values = params.get(name)
        if values and values[0].strip():
            return values[0].strip()
    return None


def url_extension(url: str) -> str:
    last = last_path_segment(url)
    idx = last.rfind(".")
    if 0 < idx < len(last) - 1:
        return last[idx + 1 :].lower()
    return ""


def last_path_segment(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    segs = [s for s in path.split("/") if s]
    return segs[-1] if segs else ""


# -------------------- srcset --------------------


def parse_srcset(v: str) -> List[str]:
    return [u for u, _ in split_srcset(v)]


def split_srcset(v: str) -> List[Tuple[str, str]]:
    """Return ``(url, descriptor)`` pairs of a srcset attribute."""
    out: List[Tuple[str, str]] = []
    if not v:
        return out
    for cand in SRCSET_SPLIT_RE.split(v.strip()):
        if not cand:
            continue
        parts = WS_RE.split(cand.strip())
        if parts and parts[0]:
            out.append((parts[0], " ".join(parts[1:])))
    return out


def join_srcset(pairs: List[Tuple[str, str]]) -> str:
    return ", ".join(f"{u} {d}".strip() for u, d in pairs if u)


# -------------------- CSS --------------------


def iter_css_refs(text: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(raw_url, role)`` for every reference in a CSS text.

    ``role`` is ``import`` for @import targets, ``font`` for url() tokens
    inside @font-face rules and ``url`` for everything else.
    """
    import_spans = []
    for m in CSS_IMPORT_RE.finditer(text):
        import_spans.append(m.span())
        u = m.group(2).strip()
        if u:
            yield u, "import"
    font_spans = [m.span() for m in FONT_FACE_RE.finditer(text)]
    for m in CSS_URL_RE.finditer(text):
        pos = m.start()
        if any(a <= pos < b for a, b in import_spans):
            continue
        u = m.group(2).strip()
        if not u:
            continue
        if any(a <= pos < b for a, b in font_spans):
            yield u, "font"
        else:
            yield u, "url"


def rewrite_css_urls(text: str, map_url) -> str:
    """Apply ``map_url(raw) -> str`` to every url() and @import target.

    Each reference is visited exactly once, so ``@import url(...)`` is not
    mapped twice.
    """
    edits: List[Tuple[int, int, str]] = []
    import_spans = []
    for m in CSS_IMPORT_RE.finditer(text):
        import_spans.append(m.span())
        u = m.group(2).strip()
        nu = map_url(u)
        if nu == u:
            continue
        q = m.group(1) or '"'
        media = m.group(3).strip()
        tail = f" {media}" if media else ""
        edits.append((m.start(), m.end(), f"@import url({q}{nu}{q}){tail};"))
    for m in CSS_URL_RE.finditer(text):
        if any(a <= m.start() < b for a, b in import_spans):
            continue
        u = m.group(2).strip()
        nu = map_url(u)
        if nu == u:
            continue
        q = m.group(1) or ""
        edits.append((m.start(), m.end(), f"url({q}{nu}{q})"))
    if not edits:
        return text
    edits.sort()
    out = []
    pos = 0
    for start, end, repl in edits:
        out.append(text[pos:start])
        out.append(repl)
        pos = end
    out.append(text[pos:])
    return "".join(out)
