import logging
import posixpath
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Optional, Tuple

from .catalog import AssetCatalog, stylesheet_base
from .errors import RewriteError
from .html import effective_base_url, serialize_html
from .models import AssetRecord, Category, DomSnapshot, FetchState, ReferenceKind
from .urls import (
    can_fetch_url,
    canonicalize,
    is_same_origin,
    join_srcset,
    rewrite_css_urls,
    split_srcset,
)

LOCALIZED_DROP_ATTRS = ("integrity", "crossorigin", "referrerpolicy")
NEW_TAB_RELS = ("noopener", "noreferrer")


class ReferenceRewriter:
    """Points every cited location at the settled outcome of its record.

    Fetched assets become local relative paths, failed ones their original
    absolute URL; embedded data URLs stay inline.
    """

    def __init__(self, staging_dir: Optional[Path] = None):
        self.staging_dir = Path(staging_dir) if staging_dir is not None else None
        self.warnings = 0

    # -------------------- URL mapping --------------------

    def map_url(
        self,
        raw: str,
        base: str,
        catalog: AssetCatalog,
        rel_dir: str = "",
        *,
        warn: bool = True,
    ) -> Tuple[str, bool]:
        """Return ``(new_value, localized)`` for one reference."""
        if not can_fetch_url(raw):
            return raw, False
        try:
            canonical = canonicalize(raw, base)
        except ValueError:
            return raw, False
        record = catalog.get(canonical)
        if record is None:
            if warn:
                self._warn(RewriteError(f"no catalog record for {canonical}"))
            return canonical, False
        if record.is_embedded:
            return raw, False
        if record.fetch_state is FetchState.FETCHED:
            return local_ref(record, rel_dir), True
        if record.fetch_state is FetchState.PENDING and warn:
            self._warn(RewriteError(f"unsettled record rewritten: {canonical}"))
        return canonical, False

    def _warn(self, err: RewriteError) -> None:
        self.warnings += 1
        logging.warning("unresolved reference: %s", err)

    # -------------------- DOM --------------------

    def rewrite(
        self,
        snapshot: DomSnapshot,
        catalog: AssetCatalog,
        base_url: Optional[str] = None,
    ) -> DomSnapshot:
        soup = snapshot.parse()
        base = effective_base_url(soup, base_url or snapshot.url)
        elements = soup.find_all(True)

        locations: "OrderedDict[Tuple[int, str, ReferenceKind], None]" = OrderedDict()
        for record in catalog:
            for ref in record.references:
                if ref.kind is not ReferenceKind.STYLESHEET:
                    locations[(ref.node, ref.attribute, ref.kind)] = None

        for node, attr, kind in locations:
            if not 0 <= node < len(elements):
                self._warn(RewriteError(f"reference to missing element #{node}"))
                continue
            el = elements[node]
            if kind is ReferenceKind.ATTRIBUTE:
                value = el.get(attr)
                if not value:
                    continue
                new, localized = self.map_url(value, base, catalog)
                if new != value:
                    el[attr] = new
                if localized:
                    for rm in LOCALIZED_DROP_ATTRS:
                        if rm in el.attrs:
                            del el.attrs[rm]
            elif kind is ReferenceKind.SRCSET:
                pairs = split_srcset(el.get(attr) or "")
                el[attr] = join_srcset(
                    [(self.map_url(u, base, catalog)[0], d) for u, d in pairs]
                )
            elif kind is ReferenceKind.INLINE_STYLE:
                css = el.get("style") or ""
                el["style"] = rewrite_css_urls(
                    css, lambda u: self.map_url(u, base, catalog)[0]
                )
            elif kind is ReferenceKind.STYLE_BLOCK:
                text = el.string or ""
                new_text = rewrite_css_urls(
                    text, lambda u: self.map_url(u, base, catalog)[0]
                )
                if new_text != text:
                    el.string = new_text

        self._rewrite_links(soup, snapshot.url, base)
        for tag in soup.find_all("base"):
            tag.decompose()
        return DomSnapshot(serialize_html(soup), snapshot.url)

    def _rewrite_links(self, soup, page_url: str, base: str) -> None:
        for a in soup.find_all(["a", "area"], href=True):
            href = a.get("href") or ""
            if not can_fetch_url(href):
                continue
            try:
                absu = canonicalize(href, base)
            except ValueError:
                continue
            if is_same_origin(page_url, absu):
                a["href"] = absu
                continue
            a["target"] = "_blank"
            rels = a.get("rel") or []
            if isinstance(rels, str):
                rels = rels.split()
            a["rel"] = list(rels) + [r for r in NEW_TAB_RELS if r not in rels]
        for form in soup.find_all("form", action=True):
            action = form.get("action") or ""
            if can_fetch_url(action):
                try:
                    form["action"] = canonicalize(action, base)
                except ValueError:
                    continue

    # -------------------- stylesheets --------------------

    def rewrite_stylesheets(self, catalog: AssetCatalog) -> Dict[str, str]:
        """Rewrite fetched external stylesheets.

        The staged copy is rewritten relative to its own directory; the
        returned texts (keyed by canonical URL) are relative to the bundle
        root, ready for consolidation.
        """
        out: Dict[str, str] = {}
        if self.staging_dir is None:
            return out
        own_dir = f"assets/{Category.STYLE.directory}"
        for record in catalog.by_category(Category.STYLE):
            if record.fetch_state is not FetchState.FETCHED or record.is_embedded:
                continue
            path = self.staging_dir / record.local_path
            text = path.read_bytes().decode("utf-8", errors="replace")
            base = stylesheet_base(record)
            warn = catalog.is_scanned(record.canonical_url)
            local_text = rewrite_css_urls(
                text, lambda u: self.map_url(u, base, catalog, own_dir, warn=warn)[0]
            )
            path.write_text(local_text, encoding="utf-8")
            out[record.canonical_url] = rewrite_css_urls(
                text, lambda u: self.map_url(u, base, catalog, warn=False)[0]
            )
        return out


def local_ref(record: AssetRecord, rel_dir: str = "") -> str:
    if not rel_dir:
        return record.local_path
    return posixpath.relpath(record.local_path, rel_dir)
