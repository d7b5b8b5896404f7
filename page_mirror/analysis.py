"""Optional language-model review of a mirrored page.

Always best effort: any absence, timeout, error or malformed answer yields
the detector's own result with ``enhanced=False``.
"""

import json
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .detector import DetectionResult

Completion = Callable[[str], str]

JSON_BLOCK_RE = re.compile(r"\{.*\}", re.DOTALL)
HTML_SNIPPET_CHARS = 5000
INSIGHT_KEYS = ("framework", "assets", "replication", "improvements")

SYSTEM_PROMPT = (
    "You are an expert web developer specializing in website mirroring and "
    "exact replica generation. Analyze websites and provide actionable "
    "insights for creating faithful offline replicas."
)

PROMPT_TEMPLATE = """WEBSITE MIRRORING ANALYSIS

URL: {url}
Detected Framework: {framework}
Complexity: {complexity}
Assets Cataloged: {asset_count}

HTML STRUCTURE (first {snippet_chars} characters):
{html}

1. Confirm the framework detection and assess complexity.
2. Identify critical assets for offline use and what can be combined.
3. Recommend an approach for dynamic content and list likely issues.
4. Suggest performance, accessibility and offline improvements.

Answer with a single JSON object:
{{
  "framework": {{"detected": "name", "confidence": 0.95, "complexity": "medium"}},
  "assets": {{"critical": [], "optimizable": [], "strategy": ""}},
  "replication": {{"approach": "", "challenges": [], "solutions": []}},
  "improvements": {{"performance": [], "accessibility": [], "offline": []}},
  "reasoning": ""
}}"""


@dataclass
class AnalysisResult:
    detection: DetectionResult
    insights: Dict[str, object] = field(default_factory=dict)
    enhanced: bool = False

    @property
    def reasoning(self) -> str:
        return str(self.insights.get("reasoning", ""))

    def to_dict(self) -> dict:
        return {"enhanced": self.enhanced, "insights": dict(self.insights)}


def fallback(detection: DetectionResult, reasoning: str) -> AnalysisResult:
    return AnalysisResult(detection, {"reasoning": reasoning}, enhanced=False)


def build_prompt(url: str, html: str, detection: DetectionResult, asset_count: int) -> str:
    return PROMPT_TEMPLATE.format(
        url=url,
        framework=detection.framework_name,
        complexity=detection.complexity_tier.value,
        asset_count=asset_count,
        snippet_chars=HTML_SNIPPET_CHARS,
        html=html[:HTML_SNIPPET_CHARS],
    )


def parse_response(text: str, detection: DetectionResult) -> AnalysisResult:
    m = JSON_BLOCK_RE.search(text or "")
    if not m:
        logging.warning("model answer contained no JSON object")
        return fallback(detection, "AI analysis was performed but response parsing failed")
    try:
        data = json.loads(m.group(0))
    except ValueError as e:
        logging.warning("failed to parse model answer: %s", e)
        return fallback(detection, "AI analysis was performed but response parsing failed")
    if not isinstance(data, dict):
        logging.warning("model answer is not a JSON object")
        return fallback(detection, "AI analysis was performed but response parsing failed")
    insights: Dict[str, object] = {k: data.get(k) or {} for k in INSIGHT_KEYS}
    insights["reasoning"] = data.get("reasoning") or "AI analysis completed"
    return AnalysisResult(detection, insights, enhanced=True)


def analyze_with_model(
    complete: Optional[Completion],
    *,
    url: str,
    html: str,
    detection: DetectionResult,
    asset_count: int,
    timeout: float = 30.0,
) -> AnalysisResult:
    if complete is None:
        return fallback(detection, "AI analysis not available - using framework detection only")
    prompt = build_prompt(url, html, detection, asset_count)
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        text = pool.submit(complete, prompt).result(timeout=timeout)
    except FuturesTimeout:
        logging.warning("AI analysis timed out after %.0fs", timeout)
        return fallback(detection, "AI analysis timed out - using framework detection only")
    except Exception as e:
        logging.warning("AI analysis failed: %s", e)
        return fallback(detection, "AI analysis failed - using framework detection only")
    finally:
        pool.shutdown(wait=False)
    return parse_response(text, detection)


def openai_completion(model: str, api_key: Optional[str] = None) -> Optional[Completion]:
    key = api_key or os.environ.get("OPENAI_API_KEY")
    if not key:
        logging.warning("OPENAI_API_KEY not set; AI analysis disabled")
        return None
    try:
        from openai import OpenAI
    except ImportError:
        logging.warning("AI analysis requires 'openai' (pip install page-mirror[ai])")
        return None
    client = OpenAI(api_key=key)

    def complete(prompt: str) -> str:
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.1,
            max_tokens=2000,
        )
        return resp.choices[0].message.content or ""

    return complete
