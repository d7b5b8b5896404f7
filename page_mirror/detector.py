import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup

from .models import DomSnapshot


class Weight(float, Enum):
    HIGH = 0.9
    MEDIUM = 0.6
    LOW = 0.3


class ComplexityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


DETECTION_THRESHOLD = 0.3
SECONDARY_FACTOR = 0.1
HIGH_TIER_SCORE = 8
MEDIUM_TIER_SCORE = 4

# -------------------- Rules --------------------


@dataclass(frozen=True)
class ScriptSource:
    pattern: "re.Pattern[str]"
    weight: Weight = Weight.HIGH


@dataclass(frozen=True)
class LinkHref:
    pattern: "re.Pattern[str]"
    weight: Weight = Weight.HIGH


@dataclass(frozen=True)
class ElementPresent:
    selector: str
    weight: Weight = Weight.HIGH


@dataclass(frozen=True)
class MetaContent:
    name: str
    pattern: "re.Pattern[str]"
    weight: Weight = Weight.HIGH


@dataclass(frozen=True)
class InlineScript:
    pattern: "re.Pattern[str]"
    weight: Weight = Weight.MEDIUM


@dataclass(frozen=True)
class ClassPattern:
    pattern: "re.Pattern[str]"
    weight: Weight = Weight.MEDIUM


@dataclass(frozen=True)
class AttributePattern:
    """Matches attribute names or values."""

    pattern: "re.Pattern[str]"
    weight: Weight = Weight.MEDIUM


Rule = Union[
    ScriptSource,
    LinkHref,
    ElementPresent,
    MetaContent,
    InlineScript,
    ClassPattern,
    AttributePattern,
]


@dataclass(frozen=True)
class FrameworkSignature:
    key: str
    display_name: str
    category: str
    rules: Tuple[Rule, ...]
    complexity_weight: int = 1
    strategy: str = "HTML/CSS/JS static files"


def _re(p: str, flags: int = 0) -> "re.Pattern[str]":
    return re.compile(p, flags)


_DOM_PRESERVING = "Preserve DOM; localize assets for exact UI"

DEFAULT_SIGNATURES: Tuple[FrameworkSignature, ...] = (
    # Next.js and Gatsby come before React so ties resolve to them
    FrameworkSignature(
        "nextjs",
        "Next.js",
        "ssg",
        (
            ScriptSource(_re(r"/_next/static/")),
            ElementPresent("#__next"),
            ElementPresent("script#__NEXT_DATA__"),
            InlineScript(_re(r"__NEXT_DATA__"), Weight.HIGH),
            MetaContent("generator", _re(r"next\.js", re.I)),
            LinkHref(_re(r"/_next/static/")),
        ),
        complexity_weight=3,
        strategy="Preserve DOM; localize assets for exact Next.js look",
    ),
    FrameworkSignature(
        "gatsby",
        "Gatsby",
        "ssg",
        (
            ScriptSource(_re(r"gatsby")),
            ElementPresent("#___gatsby"),
            MetaContent("generator", _re(r"gatsby", re.I)),
        ),
        complexity_weight=3,
        strategy="Gatsby static DOM with localized assets",
    ),
    FrameworkSignature(
        "react",
        "React",
        "frontend",
        (
            ScriptSource(_re(r"react[.-]?dom|react[.-]?\.js")),
            ElementPresent("[data-reactroot]"),
            ElementPresent("[data-react-helmet]"),
            MetaContent("generator", _re(r"react", re.I)),
            InlineScript(_re(r"React\.createElement|ReactDOM\.render")),
            ClassPattern(_re(r"react-|jsx-")),
            AttributePattern(_re(r"data-react|_jsx")),
        ),
        complexity_weight=3,
        strategy=_DOM_PRESERVING,
    ),
    FrameworkSignature(
        "vue",
        "Vue.js",
        "frontend",
        (
            ScriptSource(_re(r"vue[.-]?js|vue[.-]?\d")),
            ScriptSource(_re(r"nuxt[.-]")),
            ScriptSource(_re(r"quasar[.-]")),
            ElementPresent('[data-server-rendered="true"]'),
            ElementPresent("#__nuxt"),
            ElementPresent("[v-cloak]", Weight.MEDIUM),
            MetaContent("generator", _re(r"nuxt\.js|vue", re.I)),
            InlineScript(_re(r"__NUXT__"), Weight.HIGH),
            InlineScript(_re(r"Vue\.component|new Vue")),
            AttributePattern(_re(r"^(?:v-if|v-for|v-model|v-show)$"), Weight.HIGH),
            ClassPattern(_re(r"vue-")),
        ),
        complexity_weight=3,
        strategy=_DOM_PRESERVING,
    ),
    FrameworkSignature(
        "angular",
        "Angular",
        "frontend",
        (
            ScriptSource(_re(r"angular[.-]?js|@angular")),
            ScriptSource(_re(r"zone\.js"), Weight.MEDIUM),
            ElementPresent("[ng-app]"),
            ElementPresent("[ng-controller]"),
            ElementPresent("app-root"),
            InlineScript(_re(r"angular\.module|ng-app"), Weight.HIGH),
            InlineScript(_re(r"platformBrowserDynamic"), Weight.HIGH),
            AttributePattern(_re(r"^(?:ng-if|ng-for|\*ngFor|\*ngIf)$"), Weight.HIGH),
            ClassPattern(_re(r"\bng-")),
        ),
        complexity_weight=3,
        strategy=_DOM_PRESERVING,
    ),
    FrameworkSignature(
        "svelte",
        "Svelte",
        "frontend",
        (
            ScriptSource(_re(r"svelte")),
            MetaContent("generator", _re(r"svelte|sveltekit", re.I)),
            InlineScript(_re(r"svelte|SvelteComponent")),
            ClassPattern(_re(r"svelte-")),
        ),
        complexity_weight=2,
    ),
    FrameworkSignature(
        "wordpress",
        "WordPress",
        "cms",
        (
            ScriptSource(_re(r"wp-content|wp-includes")),
            LinkHref(_re(r"wp-content")),
            MetaContent("generator", _re(r"wordpress", re.I)),
            InlineScript(_re(r"wp-admin|wp_localize_script")),
            ClassPattern(_re(r"\bwp-|wordpress")),
            ElementPresent('[class*="wp-block-"]', Weight.MEDIUM),
        ),
        complexity_weight=2,
    ),
    FrameworkSignature(
        "shopify",
        "Shopify",
        "ecommerce",
        (
            ScriptSource(_re(r"shopify|myshopify")),
            LinkHref(_re(r"shopify|myshopify")),
            MetaContent("generator", _re(r"shopify", re.I)),
            InlineScript(_re(r"Shopify\.theme|ShopifyAPI"), Weight.HIGH),
            ElementPresent("[data-shopify]", Weight.MEDIUM),
        ),
    ),
    FrameworkSignature(
        "jquery",
        "jQuery",
        "library",
        (
            ScriptSource(_re(r"jquery[.-]?\d|jquery[.-]?min")),
            InlineScript(_re(r"\$\(document\)\.ready|\$\(function")),
        ),
    ),
    FrameworkSignature(
        "bootstrap",
        "Bootstrap",
        "css",
        (
            LinkHref(_re(r"bootstrap")),
            ScriptSource(_re(r"bootstrap")),
            ClassPattern(
                _re(r"\bbtn-(?:primary|secondary|outline-\w+)\b|\bnavbar-expand|\bcol-(?:sm|md|lg|xl|xxl)-\d"),
                Weight.LOW,
            ),
        ),
    ),
)

# -------------------- Results --------------------


@dataclass
class Detection:
    key: str
    name: str
    category: str
    confidence: float
    matched: List[Rule] = field(default_factory=list)
    strategy: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "category": self.category,
            "confidence": round(self.confidence, 3),
            "matched_rules": len(self.matched),
        }


@dataclass
class DetectionResult:
    detected: List[Detection]
    complexity_tier: ComplexityTier
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def primary_framework(self) -> Optional[Detection]:
        return self.detected[0] if self.detected else None

    @property
    def confidences(self) -> Dict[str, float]:
        return {d.key: d.confidence for d in self.detected}

    @property
    def framework_name(self) -> str:
        primary = self.primary_framework
        return primary.name if primary else "Vanilla HTML"

    @property
    def strategy(self) -> str:
        primary = self.primary_framework
        return primary.strategy if primary else "HTML/CSS/JS static files"

    def to_dict(self) -> dict:
        primary = self.primary_framework
        return {
            "primary_framework": primary.name if primary else None,
            "complexity": self.complexity_tier.value,
            "strategy": self.strategy,
            "detected": [d.to_dict() for d in self.detected],
            "metadata": dict(self.metadata),
        }


# -------------------- Page facts --------------------


class _PageFacts:
    """Everything the rules look at, extracted once per snapshot."""

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self.script_srcs = [s.get("src") or "" for s in soup.find_all("script", src=True)]
        self.inline_scripts = [
            s.string or "" for s in soup.find_all("script") if not s.get("src")
        ]
        self.link_hrefs = [l.get("href") or "" for l in soup.find_all("link", href=True)]
        self.classes: List[str] = []
        self.attributes: List[Tuple[str, str]] = []
        for el in soup.find_all(True):
            for k, v in el.attrs.items():
                value = " ".join(v) if isinstance(v, list) else str(v)
                if k == "class":
                    self.classes.append(value)
                self.attributes.append((k, value))

    def meta_contents(self, name: str) -> List[str]:
        return [
            m.get("content") or ""
            for m in self.soup.find_all("meta")
            if (m.get("name") or "").lower() == name.lower()
        ]


def rule_matches(rule: Rule, facts: _PageFacts) -> bool:
    if isinstance(rule, ScriptSource):
        return any(rule.pattern.search(s) for s in facts.script_srcs)
    if isinstance(rule, LinkHref):
        return any(rule.pattern.search(h) for h in facts.link_hrefs)
    if isinstance(rule, ElementPresent):
        return facts.soup.select_one(rule.selector) is not None
    if isinstance(rule, MetaContent):
        return any(rule.pattern.search(c) for c in facts.meta_contents(rule.name))
    if isinstance(rule, InlineScript):
        return any(rule.pattern.search(s) for s in facts.inline_scripts)
    if isinstance(rule, ClassPattern):
        return any(rule.pattern.search(c) for c in facts.classes)
    if isinstance(rule, AttributePattern):
        return any(
            rule.pattern.search(k) or rule.pattern.search(v) for k, v in facts.attributes
        )
    raise TypeError(f"unknown rule kind: {type(rule).__name__}")


def score(weights: Sequence[float]) -> float:
    """Strongest signal plus a tenth of the rest, capped at 1.0."""
    if not weights:
        return 0.0
    strongest = max(weights)
    return min(strongest + SECONDARY_FACTOR * (sum(weights) - strongest), 1.0)


class FrameworkSignatureDetector:
    def __init__(self, signatures: Optional[Sequence[FrameworkSignature]] = None):
        self.signatures: List[FrameworkSignature] = list(
            DEFAULT_SIGNATURES if signatures is None else signatures
        )

    def add_signature(self, signature: FrameworkSignature) -> None:
        self.signatures.append(signature)

    def analyze(self, snapshot: DomSnapshot) -> DetectionResult:
        soup = snapshot.parse()
        facts = _PageFacts(soup)
        detected: List[Detection] = []
        weights_by_key: Dict[str, int] = {}
        for sig in self.signatures:
            matched = [r for r in sig.rules if rule_matches(r, facts)]
            confidence = score([float(r.weight) for r in matched])
            if confidence < DETECTION_THRESHOLD:
                continue
            detected.append(
                Detection(sig.key, sig.display_name, sig.category, confidence, matched, sig.strategy)
            )
            weights_by_key[sig.key] = sig.complexity_weight
        # stable: ties keep declaration order
        detected.sort(key=lambda d: -d.confidence)
        tier = assess_complexity(soup, [weights_by_key[d.key] for d in detected])
        return DetectionResult(detected, tier, extract_metadata(soup))


def assess_complexity(soup: BeautifulSoup, framework_weights: Sequence[int]) -> ComplexityTier:
    points = sum(framework_weights)
    if len(soup.find_all("script")) > 10:
        points += 2
    if len(soup.select('link[rel~="stylesheet"]')) > 5:
        points += 1
    if len(soup.find_all("img")) > 20:
        points += 1
    if soup.select_one("[data-react], [data-vue], [ng-app]") is not None:
        points += 2
    if len(soup.find_all(["canvas", "svg"])) > 3:
        points += 1
    if points >= HIGH_TIER_SCORE:
        return ComplexityTier.HIGH
    if points >= MEDIUM_TIER_SCORE:
        return ComplexityTier.MEDIUM
    return ComplexityTier.LOW


def extract_metadata(soup: BeautifulSoup) -> Dict[str, object]:
    def meta(name: str) -> str:
        tag = soup.find("meta", attrs={"name": name})
        return (tag.get("content") or "") if tag else ""

    charset = soup.find("meta", charset=True)
    return {
        "title": soup.title.get_text(strip=True) if soup.title else "",
        "description": meta("description"),
        "generator": meta("generator"),
        "viewport": meta("viewport"),
        "charset": charset.get("charset") if charset else "",
        "script_count": len(soup.find_all("script")),
        "stylesheet_count": len(soup.select('link[rel~="stylesheet"]')),
        "image_count": len(soup.find_all("img")),
    }
