import hashlib
import random
import re
import string
import time
from typing import Dict, FrozenSet

from .models import Category
from .urls import last_path_segment

UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9._-]")
EXT_TOKEN_RE = re.compile(r"^[a-z0-9]{1,6}$")
MAX_BASE_LEN = 40
HASH_LEN = 10

DEFAULT_EXTENSIONS: Dict[Category, str] = {
    Category.IMAGE: "png",
    Category.STYLE: "css",
    Category.SCRIPT: "js",
    Category.FONT: "woff2",
    Category.ICON: "ico",
    Category.MEDIA: "bin",
}

_IMAGE_EXTS = frozenset(
    {"png", "jpg", "jpeg", "gif", "webp", "svg", "bmp", "avif", "ico", "jxl", "tif", "tiff", "heic"}
)

COMPATIBLE_EXTENSIONS: Dict[Category, FrozenSet[str]] = {
    Category.IMAGE: _IMAGE_EXTS,
    Category.FONT: frozenset({"woff", "woff2", "ttf", "otf", "eot", "svg"}),
    Category.ICON: _IMAGE_EXTS,
    Category.MEDIA: frozenset(
        {"mp4", "webm", "ogg", "ogv", "mp3", "wav", "m4a", "m4v", "mov", "mkv", "aac", "flac", "vtt", "srt"}
    ),
}


def short_hash(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:HASH_LEN]


def sanitize(name: str) -> str:
    return UNSAFE_CHARS_RE.sub("_", name)


def split_name_and_ext(name: str):
    idx = name.rfind(".")
    if 0 < idx < len(name) - 1:
        return name[:idx], name[idx + 1 :].lower()
    return name, ""


def pick_extension(ext_from_url: str, category: Category) -> str:
    if category is Category.SCRIPT:
        return "js"
    if category is Category.STYLE:
        return "css"
    if ext_from_url and EXT_TOKEN_RE.match(ext_from_url):
        if ext_from_url in COMPATIBLE_EXTENSIONS.get(category, frozenset()):
            return ext_from_url
    return DEFAULT_EXTENSIONS[category]


def make_asset_filename(url: str, category: Category) -> str:
    """Build a short, stable, filesystem-safe name for ``url``.

    The hash of the full URL makes names collision-free without a lookup
    table; the readable prefix comes from the last path segment.
    """
    last = last_path_segment(url) or "asset"
    base, ext = split_name_and_ext(last)
    safe_base = sanitize(base)[:MAX_BASE_LEN] or "asset"
    return f"{safe_base}_{short_hash(url)}.{pick_extension(ext, category)}"


def make_embedded_filename(mime_subtype: str) -> str:
    ext = sanitize(mime_subtype.split("+", 1)[0].lower()) or "png"
    if ext == "jpeg":
        ext = "jpg"
    stamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"dataimg_{stamp}_{suffix}.{ext}"
