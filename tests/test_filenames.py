import hashlib
import re

from page_mirror.filenames import make_asset_filename, make_embedded_filename
from page_mirror.models import Category


def sha10(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:10]


def test_name_keeps_readable_base_and_hash():
    url = "https://cdn.example.com/img/photo.jpg"
    assert make_asset_filename(url, Category.IMAGE) == f"photo_{sha10(url)}.jpg"


def test_name_is_stable():
    url = "https://example.com/a/b/logo.svg?v=3"
    assert make_asset_filename(url, Category.IMAGE) == make_asset_filename(url, Category.IMAGE)


def test_query_variants_get_distinct_names():
    a = make_asset_filename("https://example.com/a.png?v=1", Category.IMAGE)
    b = make_asset_filename("https://example.com/a.png?v=2", Category.IMAGE)
    assert a != b
    assert a.startswith("a_") and b.startswith("a_")


def test_scripts_and_styles_force_extension():
    assert make_asset_filename("https://x.com/loader.php?v=1", Category.SCRIPT).endswith(".js")
    assert make_asset_filename("https://x.com/theme", Category.STYLE).endswith(".css")


def test_incompatible_extension_falls_back_to_category_default():
    assert make_asset_filename("https://x.com/pixel.js", Category.IMAGE).endswith(".png")
    assert make_asset_filename("https://x.com/font", Category.FONT).endswith(".woff2")
    assert make_asset_filename("https://x.com/favicon", Category.ICON).endswith(".ico")
    assert make_asset_filename("https://x.com/clip", Category.MEDIA).endswith(".bin")


def test_compatible_extension_is_kept():
    assert make_asset_filename("https://x.com/f/Inter.woff", Category.FONT).endswith(".woff")
    assert make_asset_filename("https://x.com/v/intro.mp4", Category.MEDIA).endswith(".mp4")


def test_root_url_uses_fallback_base():
    url = "https://example.com/"
    assert make_asset_filename(url, Category.IMAGE) == f"asset_{sha10(url)}.png"


def test_unsafe_characters_replaced():
    name = make_asset_filename("https://x.com/a/b@c!d.png", Category.IMAGE)
    assert name.startswith("b_c_d_")
    assert re.match(r"^[A-Za-z0-9._-]+$", name)


def test_long_base_truncated():
    url = "https://x.com/" + "n" * 120 + ".png"
    name = make_asset_filename(url, Category.IMAGE)
    assert name == "n" * 40 + f"_{sha10(url)}.png"


def test_embedded_filename_shape():
    assert re.match(r"^dataimg_\d+_[a-z0-9]{4}\.jpg$", make_embedded_filename("jpeg"))
    assert make_embedded_filename("svg+xml").endswith(".svg")
