import base64
import binascii
import logging
import re
from typing import Dict, Iterator, List, Optional, Set, Tuple
from urllib.parse import unquote_to_bytes

from .errors import DiscoveryError
from .filenames import make_asset_filename, make_embedded_filename
from .html import effective_base_url, rel_tokens
from .models import (
    AssetRecord,
    Category,
    DomSnapshot,
    Origin,
    Reference,
    ReferenceKind,
)
from .tracking import is_tracking_script
from .urls import (
    can_fetch_url,
    canonicalize,
    is_data_image,
    iter_css_refs,
    proxy_target,
    split_srcset,
    url_extension,
)

__all__ = ["AssetCatalog", "make_asset_filename"]

DATA_IMAGE_RE = re.compile(
    r"^data:image/([^;,]+)((?:;[^;,]*)*),(.*)$", re.IGNORECASE | re.DOTALL
)

LAZY_ATTRS = ("data-src", "data-lazy-src", "data-original")
SRCSET_ATTRS = ("srcset", "data-srcset")
FONT_EXTS = {"woff", "woff2", "ttf", "otf", "eot"}
ICON_RELS = {"icon", "apple-touch-icon", "apple-touch-icon-precomposed", "mask-icon"}
PRELOAD_AS = {
    "style": Category.STYLE,
    "script": Category.SCRIPT,
    "font": Category.FONT,
    "image": Category.IMAGE,
}

# tag -> [(attribute, category)]
ATTRIBUTE_RULES: Dict[str, List[Tuple[str, Category]]] = {
    "img": [("src", Category.IMAGE)] + [(a, Category.IMAGE) for a in LAZY_ATTRS],
    "video": [("src", Category.MEDIA), ("poster", Category.IMAGE)]
    + [(a, Category.MEDIA) for a in LAZY_ATTRS],
    "audio": [("src", Category.MEDIA)] + [(a, Category.MEDIA) for a in LAZY_ATTRS],
    "track": [("src", Category.MEDIA)],
    "script": [("src", Category.SCRIPT)],
    "image": [("href", Category.IMAGE), ("xlink:href", Category.IMAGE)],
    "use": [("href", Category.IMAGE), ("xlink:href", Category.IMAGE)],
}


def css_category(raw: str, role: str) -> Category:
    if role == "import":
        return Category.STYLE
    if role == "font" or url_extension(raw) in FONT_EXTS:
        return Category.FONT
    return Category.IMAGE


def link_category(tag) -> Optional[Category]:
    rels = rel_tokens(tag)
    if "stylesheet" in rels:
        return Category.STYLE
    if rels & ICON_RELS:
        return Category.ICON
    if "modulepreload" in rels:
        return Category.SCRIPT
    if "preload" in rels:
        return PRELOAD_AS.get((tag.get("as") or "").strip().lower())
    return None


def stylesheet_base(record: AssetRecord) -> str:
    return record.final_url or record.canonical_url


class AssetCatalog:
    """Discovers, deduplicates and names every asset a page references.

    Records are keyed by canonical URL; each keeps the ordered set of
    locations that cite it, so a single fetch outcome patches them all.
    """

    def __init__(self, *, skip_tracking_scripts: bool = False):
        self.skip_tracking_scripts = skip_tracking_scripts
        self._records: Dict[str, AssetRecord] = {}
        self._scanned_stylesheets: Set[str] = set()
        self.discovery_errors = 0

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AssetRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, url: str) -> bool:
        return url in self._records

    def get(self, canonical_url: str) -> Optional[AssetRecord]:
        return self._records.get(canonical_url)

    def records(self) -> List[AssetRecord]:
        return list(self._records.values())

    def by_category(self, category: Category) -> List[AssetRecord]:
        return [r for r in self._records.values() if r.category is category]

    def is_scanned(self, stylesheet_url: str) -> bool:
        return stylesheet_url in self._scanned_stylesheets

    # -------------------- DOM discovery --------------------

    def discover(
        self, snapshot: DomSnapshot, base_url: Optional[str] = None
    ) -> List[AssetRecord]:
        soup = snapshot.parse()
        base = effective_base_url(soup, base_url or snapshot.url)
        for i, el in enumerate(soup.find_all(True)):
            try:
                self._discover_element(i, el, base)
            except DiscoveryError as e:
                self.discovery_errors += 1
                logging.debug("skipping <%s> #%d: %s", el.name, i, e)
        return self.records()

    def _discover_element(self, i: int, el, base: str) -> None:
        tag = (el.name or "").lower()

        if tag == "link":
            cat = link_category(el)
            if cat is not None:
                self._add(el.get("href"), cat, Reference(ReferenceKind.ATTRIBUTE, i, tag, "href"), base)
        elif tag == "input":
            if (el.get("type") or "").lower() == "image":
                self._add(el.get("src"), Category.IMAGE, Reference(ReferenceKind.ATTRIBUTE, i, tag, "src"), base)
        elif tag == "source":
            in_picture = el.parent is not None and el.parent.name == "picture"
            cat = Category.IMAGE if in_picture else Category.MEDIA
            for attr in ("src",) + LAZY_ATTRS:
                self._add(el.get(attr), cat, Reference(ReferenceKind.ATTRIBUTE, i, tag, attr), base)
        elif tag == "script":
            src = el.get("src")
            if not (self.skip_tracking_scripts and is_tracking_script(src)):
                self._add(src, Category.SCRIPT, Reference(ReferenceKind.ATTRIBUTE, i, tag, "src"), base)
        else:
            for attr, cat in ATTRIBUTE_RULES.get(tag, ()):
                self._add(el.get(attr), cat, Reference(ReferenceKind.ATTRIBUTE, i, tag, attr), base)

        if tag in ("img", "source"):
            for attr in SRCSET_ATTRS:
                value = el.get(attr)
                if not value:
                    continue
                ref = Reference(ReferenceKind.SRCSET, i, tag, attr)
                for u, _ in split_srcset(value):
                    self._add(u, Category.IMAGE, ref, base)

        style = el.get("style")
        if style:
            ref = Reference(ReferenceKind.INLINE_STYLE, i, tag, "style")
            self._add_css(style, ref, base)

        if tag == "style":
            text = el.string or ""
            if text:
                self._add_css(text, Reference(ReferenceKind.STYLE_BLOCK, i, tag), base)

    def _add_css(self, text: str, ref: Reference, base: str) -> None:
        for raw, role in iter_css_refs(text):
            self._add(raw, css_category(raw, role), ref, base)

    # -------------------- stylesheet discovery --------------------

    def discover_stylesheet(self, record: AssetRecord, css_text: str) -> List[AssetRecord]:
        """Catalog references found inside a fetched external stylesheet.

        Returns only the records this call created.
        """
        if record.canonical_url in self._scanned_stylesheets:
            return []
        self._scanned_stylesheets.add(record.canonical_url)
        before = set(self._records)
        ref = Reference(ReferenceKind.STYLESHEET, stylesheet=record.canonical_url)
        base = stylesheet_base(record)
        for raw, role in iter_css_refs(css_text):
            try:
                self._add(raw, css_category(raw, role), ref, base)
            except DiscoveryError as e:
                self.discovery_errors += 1
                logging.debug("skipping reference in %s: %s", record.canonical_url, e)
        return [r for u, r in self._records.items() if u not in before]

    # -------------------- records --------------------

    def _add(self, raw: Optional[str], category: Category, ref: Reference, base: str) -> None:
        if not raw:
            return
        if is_data_image(raw):
            self._add_embedded(raw.strip(), ref)
            return
        if not can_fetch_url(raw):
            return
        try:
            canonical = canonicalize(raw, base)
            target = proxy_target(canonical) if category is Category.IMAGE else None
            if target is not None:
                self._ensure(canonicalize(target, base), category)
        except ValueError as e:
            raise DiscoveryError(f"bad URL {raw!r}: {e}") from e
        self._ensure(canonical, category).add_reference(ref)

    def _ensure(self, canonical: str, category: Category) -> AssetRecord:
        record = self._records.get(canonical)
        if record is None:
            record = AssetRecord(
                canonical_url=canonical,
                category=category,
                local_filename=make_asset_filename(canonical, category),
            )
            self._records[canonical] = record
        return record

    def _add_embedded(self, data_url: str, ref: Reference) -> None:
        record = self._records.get(data_url)
        if record is None:
            subtype, payload = decode_data_image(data_url)
            record = AssetRecord(
                canonical_url=data_url,
                category=Category.IMAGE,
                local_filename=make_embedded_filename(subtype),
                origin=Origin.EMBEDDED_DATA,
                payload=payload,
            )
            record.mark_fetched(size=len(payload), final_url=data_url)
            self._records[data_url] = record
        record.add_reference(ref)


def decode_data_image(data_url: str) -> Tuple[str, bytes]:
    m = DATA_IMAGE_RE.match(data_url)
    if not m:
        raise DiscoveryError("malformed data URL")
    subtype, params, data = m.group(1), m.group(2).lower(), m.group(3)
    if ";base64" in params:
        try:
            payload = base64.b64decode(re.sub(r"\s+", "", data), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DiscoveryError(f"bad base64 payload: {e}") from e
    else:
        payload = unquote_to_bytes(data)
    return subtype, payload
