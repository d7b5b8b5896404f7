from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from bs4 import BeautifulSoup

from .html import bs4_parse


class Category(str, Enum):
    IMAGE = "image"
    STYLE = "style"
    SCRIPT = "script"
    FONT = "font"
    ICON = "icon"
    MEDIA = "media"

    @property
    def directory(self) -> str:
        return _CATEGORY_DIRS[self]


_CATEGORY_DIRS = {
    Category.IMAGE: "images",
    Category.STYLE: "styles",
    Category.SCRIPT: "scripts",
    Category.FONT: "fonts",
    Category.ICON: "icons",
    Category.MEDIA: "media",
}


class Origin(str, Enum):
    EMBEDDED_DATA = "embedded-data"
    REMOTE_FETCH = "remote-fetch"


class FetchState(str, Enum):
    PENDING = "pending"
    FETCHED = "fetched"
    FAILED = "failed"


class ReferenceKind(str, Enum):
    ATTRIBUTE = "attribute"
    SRCSET = "srcset"
    INLINE_STYLE = "inline-style"
    STYLE_BLOCK = "style-block"
    STYLESHEET = "stylesheet"


@dataclass(frozen=True)
class Reference:
    kind: ReferenceKind
    # position of the element in document order (soup.find_all(True))
    node: int = -1
    tag: str = ""
    attribute: str = ""
    # canonical URL of the external stylesheet, for STYLESHEET references
    stylesheet: str = ""


@dataclass(frozen=True)
class Failure:
    reason: str
    detail: str = ""


@dataclass
class DomSnapshot:
    html: str
    url: str

    def parse(self) -> BeautifulSoup:
        return bs4_parse(self.html)


@dataclass
class AssetRecord:
    canonical_url: str
    category: Category
    local_filename: str
    origin: Origin = Origin.REMOTE_FETCH
    fetch_state: FetchState = FetchState.PENDING
    references: List[Reference] = field(default_factory=list)
    failure: Optional[Failure] = None
    final_url: Optional[str] = None
    content_type: Optional[str] = None
    size: int = 0
    payload: Optional[bytes] = field(default=None, repr=False)

    @property
    def local_path(self) -> str:
        return f"assets/{self.category.directory}/{self.local_filename}"

    @property
    def is_embedded(self) -> bool:
        return self.origin is Origin.EMBEDDED_DATA

    def add_reference(self, ref: Reference) -> None:
        if ref not in self.references:
            self.references.append(ref)

    def _settle(self, state: FetchState) -> None:
        if self.fetch_state is not FetchState.PENDING:
            raise ValueError(
                f"{self.canonical_url}: fetch state already {self.fetch_state.value}"
            )
        self.fetch_state = state

    def mark_fetched(
        self, *, size: int, final_url: str, content_type: Optional[str] = None
    ) -> None:
        self._settle(FetchState.FETCHED)
        self.size = size
        self.final_url = final_url
        self.content_type = content_type

    def mark_failed(self, reason: str, detail: str = "") -> None:
        self._settle(FetchState.FAILED)
        self.failure = Failure(reason, detail)

    def to_dict(self) -> dict:
        data = {
            "url": self.canonical_url if not self.is_embedded else None,
            "category": self.category.value,
            "origin": self.origin.value,
            "state": self.fetch_state.value,
            "path": self.local_path,
            "references": len(self.references),
        }
        if self.final_url and self.final_url != self.canonical_url:
            data["final_url"] = self.final_url
        if self.failure is not None:
            data["failure"] = self.failure.reason
        return data
