import re
from typing import Optional

TRACKING_PATTERNS = (
    re.compile(r"google-analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"\bgtag\b", re.IGNORECASE),
    re.compile(r"connect\.facebook\.net", re.IGNORECASE),
    re.compile(r"\bfbq\(", re.IGNORECASE),
    re.compile(r"hotjar", re.IGNORECASE),
    re.compile(r"mixpanel", re.IGNORECASE),
    re.compile(r"segment\.(?:com|io)", re.IGNORECASE),
    re.compile(r"\bdataLayer\b"),
    re.compile(r"\banalytics\b", re.IGNORECASE),
    re.compile(r"\btracking\b", re.IGNORECASE),
)

TRACKING_ATTRS = ("data-gtm", "data-ga", "data-fb")


def is_tracking_script(text: Optional[str]) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in TRACKING_PATTERNS)
