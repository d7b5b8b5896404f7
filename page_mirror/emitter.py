import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from .analysis import AnalysisResult
from .catalog import AssetCatalog
from .detector import DetectionResult
from .errors import EmitError
from .html import rel_tokens, serialize_html
from .models import Category, DomSnapshot, FetchState
from .tracking import TRACKING_ATTRS, is_tracking_script
from .urls import CSS_IMPORT_RE

GENERATOR = "page-mirror"
INDEX_FILE = "index.html"
STYLES_FILE = "styles.css"
SCRIPT_FILE = "script.js"
MANIFEST_FILE = "manifest.json"

CSS_CHARSET_RE = re.compile(r"""@charset\s+["'][^"']*["']\s*;""", re.IGNORECASE)

BOOTSTRAP_JS = """/* offline bootstrap */
(function () {
  function promote(img) {
    if (img.dataset.src) {
      img.src = img.dataset.src;
      img.removeAttribute('data-src');
    }
    if (img.dataset.srcset) {
      img.srcset = img.dataset.srcset;
      img.removeAttribute('data-srcset');
    }
  }

  function run() {
    var lazy = document.querySelectorAll('img[data-src], img[data-srcset], source[data-srcset]');
    if ('IntersectionObserver' in window) {
      var observer = new IntersectionObserver(function (entries) {
        entries.forEach(function (entry) {
          if (entry.isIntersecting) {
            promote(entry.target);
            observer.unobserve(entry.target);
          }
        });
      });
      lazy.forEach(function (el) { observer.observe(el); });
    } else {
      lazy.forEach(promote);
    }
  }

  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', run);
  } else {
    run();
  }
})();
"""


def utc_timestamp() -> str:
    # RFC3339 UTC timestamp without microseconds
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def wrap_media(css: str, media: Optional[str]) -> str:
    media = (media or "").strip()
    if not media or media.lower() == "all":
        return css
    return f"@media {media} {{\n{css}\n}}"


def hoist_at_rules(css: str, media: Optional[str]) -> Tuple[str, List[str]]:
    """Split ``@import`` rules out of ``css`` and drop ``@charset``.

    Both are only valid at the top of a stylesheet, which a consolidated
    file no longer is for anything but the first source.
    """
    imports: List[str] = []
    media = (media or "").strip()

    def take(m) -> str:
        rule = m.group(0).strip()
        if media and media.lower() != "all" and not m.group(3).strip():
            rule = rule[:-1].rstrip() + f" {media};"
        imports.append(rule)
        return ""

    body = CSS_IMPORT_RE.sub(take, css)
    body = CSS_CHARSET_RE.sub("", body)
    return body.strip(), imports


class ProjectEmitter:
    """Consolidates styles and writes the final offline bundle.

    Everything is written into a staging directory first and moved into
    place only once the whole tree exists.
    """

    def __init__(self, settings):
        self.settings = settings

    # -------------------- HTML passes --------------------

    def clean(self, soup: BeautifulSoup) -> int:
        removed = 0
        for script in soup.find_all("script"):
            if is_tracking_script(script.get("src")) or is_tracking_script(script.string):
                script.decompose()
                removed += 1
        for el in soup.find_all(True):
            for attr in TRACKING_ATTRS:
                if attr in el.attrs:
                    del el.attrs[attr]
        for el in soup.find_all("noscript"):
            el.decompose()
            removed += 1
        return removed

    def consolidate_styles(
        self,
        soup: BeautifulSoup,
        catalog: AssetCatalog,
        stylesheets: Dict[str, str],
        utility_css: str = "",
    ) -> str:
        """Fold localized stylesheets and ``<style>`` blocks into one file.

        Returns the consolidated CSS; the first consolidated element is
        replaced by a single link, the rest are removed. Stylesheets that
        failed to download keep their remote ``<link>``.
        """
        local_to_url = {
            r.local_path: r.canonical_url
            for r in catalog.by_category(Category.STYLE)
            if r.fetch_state is FetchState.FETCHED and not r.is_embedded
        }
        chunks: List[str] = []
        imports: List[str] = []
        if utility_css.strip():
            chunks.append(f"/* utility */\n{utility_css.strip()}")

        consumed = []
        for el in soup.find_all(["link", "style"]):
            if el.name == "link":
                if "stylesheet" not in rel_tokens(el):
                    continue
                url = local_to_url.get((el.get("href") or "").strip())
                if url is None or url not in stylesheets:
                    continue
                css, hoisted = hoist_at_rules(stylesheets[url], el.get("media"))
                label = f"/* {url} */"
            else:
                if el.find_parent("noscript") is not None or el.find_parent("svg") is not None:
                    continue
                css, hoisted = hoist_at_rules(el.string or "", el.get("media"))
                label = "/* inline <style> */"
            imports.extend(hoisted)
            if css:
                chunks.append(f"{label}\n{wrap_media(css, el.get('media'))}")
            consumed.append(el)

        link = soup.new_tag("link", rel="stylesheet", href=STYLES_FILE)
        if consumed:
            consumed[0].replace_with(link)
            for el in consumed[1:]:
                el.decompose()
        else:
            head_of(soup).append(link)

        header = [f"/* {GENERATOR}: consolidated styles */"]
        return "\n\n".join(header + list(dict.fromkeys(imports)) + chunks) + "\n"

    def add_meta_tags(
        self,
        soup: BeautifulSoup,
        source_url: str,
        detection: Optional[DetectionResult] = None,
    ) -> None:
        head = head_of(soup)
        if soup.find("meta", attrs={"name": "viewport"}) is None:
            head.insert(0, soup.new_tag(
                "meta", attrs={"name": "viewport", "content": "width=device-width, initial-scale=1.0"}
            ))
        if soup.find("meta", charset=True) is None:
            head.insert(0, soup.new_tag("meta", charset="utf-8"))
        metas = [
            ("generator", GENERATOR),
            ("mirrored-from", source_url),
            ("mirrored-date", utc_timestamp()),
        ]
        if detection is not None:
            metas.append(("mirrored-framework", detection.framework_name))
        for name, content in metas:
            head.append(soup.new_tag("meta", attrs={"name": name, "content": content}))

    def add_bootstrap_script(self, soup: BeautifulSoup) -> None:
        tag = soup.new_tag("script", src=SCRIPT_FILE)
        tag["defer"] = ""
        (soup.body or soup).append(tag)

    # -------------------- output --------------------

    def build_manifest(
        self,
        catalog: AssetCatalog,
        source_url: str,
        detection: Optional[DetectionResult],
        analysis: Optional[AnalysisResult],
    ) -> dict:
        records = catalog.records()
        return {
            "source": source_url,
            "created_utc": utc_timestamp(),
            "generator": GENERATOR,
            "framework": detection.to_dict() if detection is not None else None,
            "analysis": analysis.to_dict() if analysis is not None else None,
            "files": [INDEX_FILE, STYLES_FILE, SCRIPT_FILE, MANIFEST_FILE],
            "assets": [r.to_dict() for r in records],
            "layout": {
                "assets_dir": "assets/",
                "categories": {c.value: f"assets/{c.directory}/" for c in Category},
            },
            "notes": "Failed assets keep their original absolute URL.",
        }

    def emit(
        self,
        snapshot: DomSnapshot,
        catalog: AssetCatalog,
        output_dir: Path,
        *,
        staging_dir: Path,
        stylesheets: Optional[Dict[str, str]] = None,
        detection: Optional[DetectionResult] = None,
        analysis: Optional[AnalysisResult] = None,
    ) -> List[Path]:
        output_dir = Path(output_dir)
        staging_dir = Path(staging_dir)
        source_url = snapshot.url

        soup = snapshot.parse()
        if self.settings.clean:
            removed = self.clean(soup)
            logging.debug("clean mode removed %d elements", removed)

        try:
            utility = ""
            if self.settings.utility_css:
                utility = Path(self.settings.utility_css).read_text(encoding="utf-8")
            css = self.consolidate_styles(soup, catalog, stylesheets or {}, utility)
            self.add_meta_tags(soup, source_url, detection)
            self.add_bootstrap_script(soup)

            staging_dir.mkdir(parents=True, exist_ok=True)
            for record in catalog:
                if record.is_embedded and record.payload is not None:
                    p = staging_dir / record.local_path
                    p.parent.mkdir(parents=True, exist_ok=True)
                    p.write_bytes(record.payload)
            (staging_dir / STYLES_FILE).write_text(css, encoding="utf-8")
            (staging_dir / SCRIPT_FILE).write_text(BOOTSTRAP_JS, encoding="utf-8")
            manifest = self.build_manifest(catalog, source_url, detection, analysis)
            (staging_dir / MANIFEST_FILE).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
            (staging_dir / INDEX_FILE).write_text(serialize_html(soup), encoding="utf-8")
            return publish(staging_dir, output_dir)
        except OSError as e:
            raise EmitError(f"failed to write output to {output_dir}: {e}") from e


def head_of(soup: BeautifulSoup):
    head = soup.head
    if head is not None:
        return head
    head = soup.new_tag("head")
    html = soup.html
    if html is not None:
        html.insert(0, head)
    else:
        soup.insert(0, head)
    return head


def publish(staging_dir: Path, output_dir: Path) -> List[Path]:
    """Move every staged file into ``output_dir``, keeping relative paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    published: List[Path] = []
    for src in sorted(p for p in staging_dir.rglob("*") if p.is_file()):
        dest = output_dir / src.relative_to(staging_dir)
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dest)
        published.append(dest)
    logging.debug("published %d files into %s", len(published), output_dir)
    return published
