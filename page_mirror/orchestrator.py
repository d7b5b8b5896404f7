import logging
import shutil
import tempfile
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .analysis import AnalysisResult, Completion, analyze_with_model
from .catalog import AssetCatalog
from .detector import DetectionResult, FrameworkSignatureDetector
from .emitter import ProjectEmitter
from .errors import RunCancelled
from .materializer import AssetMaterializer
from .models import AssetRecord, Category, FetchState
from .rewriter import ReferenceRewriter
from .settings import Settings
from .sources import PageSource


@dataclass
class RunReport:
    source_url: str
    output_dir: Path
    records: List[AssetRecord] = field(default_factory=list)
    failures: Counter = field(default_factory=Counter)  # (category, reason) -> n
    discovery_errors: int = 0
    rewrite_warnings: int = 0
    detection: Optional[DetectionResult] = None
    analysis: Optional[AnalysisResult] = None
    files: List[Path] = field(default_factory=list)

    @property
    def counts_by_category(self) -> Dict[str, int]:
        counts: Counter = Counter(r.category.value for r in self.records)
        return {c.value: counts.get(c.value, 0) for c in Category}

    @property
    def fetched(self) -> int:
        return sum(1 for r in self.records if r.fetch_state is FetchState.FETCHED)

    @property
    def failed(self) -> int:
        return sum(self.failures.values())

    def summary_lines(self) -> List[str]:
        lines = [
            f"Source: {self.source_url}",
            f"Saved to: {self.output_dir}",
            f"Assets: {len(self.records)} cataloged, {self.fetched} local, {self.failed} failed",
        ]
        cats = ", ".join(f"{k}={v}" for k, v in self.counts_by_category.items() if v)
        if cats:
            lines.append(f"By category: {cats}")
        if self.detection is not None:
            lines.append(
                f"Framework: {self.detection.framework_name} "
                f"(complexity {self.detection.complexity_tier.value})"
            )
        for (category, reason), n in sorted(self.failures.items()):
            lines.append(f"  failed {category}: {reason} x{n}")
        if self.discovery_errors:
            lines.append(f"Skipped unreadable references: {self.discovery_errors}")
        if self.rewrite_warnings:
            lines.append(f"Rewrite warnings: {self.rewrite_warnings}")
        return lines

    def to_dict(self) -> dict:
        return {
            "source": self.source_url,
            "output_dir": str(self.output_dir),
            "counts": self.counts_by_category,
            "fetched": self.fetched,
            "failures": [
                {"category": c, "reason": r, "count": n}
                for (c, r), n in sorted(self.failures.items())
            ],
            "discovery_errors": self.discovery_errors,
            "rewrite_warnings": self.rewrite_warnings,
            "framework": self.detection.to_dict() if self.detection else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
        }


class Orchestrator:
    """Runs one mirror: detect, discover, materialize, rewrite, emit."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        detector: Optional[FrameworkSignatureDetector] = None,
        completion: Optional[Completion] = None,
    ):
        self.settings = settings or Settings()
        self.detector = detector or FrameworkSignatureDetector()
        self.completion = completion
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise RunCancelled("run cancelled")

    def run(self, source: PageSource, output_dir) -> RunReport:
        output_dir = Path(output_dir).resolve()
        output_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".page-mirror-", dir=output_dir.parent))
        try:
            return self._run(source, output_dir, staging)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _run(self, source: PageSource, output_dir: Path, staging: Path) -> RunReport:
        s = self.settings
        snapshot = source.snapshot()
        report = RunReport(snapshot.url, output_dir)
        self._check_cancelled()

        with ThreadPoolExecutor(max_workers=1) as side:
            detect_future = side.submit(self.detector.analyze, snapshot)

            catalog = AssetCatalog(skip_tracking_scripts=s.clean)
            catalog.discover(snapshot)
            logging.info("cataloged %d assets", len(catalog))

            materializer = AssetMaterializer(
                source.fetcher,
                staging,
                workers=s.workers,
                max_redirects=s.max_redirects,
                cancel_event=self._cancel,
            )
            materializer.materialize_all(catalog.records())
            self._check_cancelled()
            self._expand_stylesheets(catalog, materializer)
            self._check_cancelled()

            report.detection = self._collect_detection(detect_future)

        report.records = catalog.records()
        report.discovery_errors = catalog.discovery_errors
        for r in report.records:
            if r.fetch_state is FetchState.FAILED:
                report.failures[(r.category.value, r.failure.reason)] += 1

        if s.ai and report.detection is not None:
            report.analysis = analyze_with_model(
                self.completion,
                url=snapshot.url,
                html=snapshot.html,
                detection=report.detection,
                asset_count=len(catalog),
                timeout=s.ai_timeout,
            )
        self._check_cancelled()

        rewriter = ReferenceRewriter(staging)
        rewritten = rewriter.rewrite(snapshot, catalog)
        stylesheets = rewriter.rewrite_stylesheets(catalog)
        report.rewrite_warnings = rewriter.warnings
        self._check_cancelled()

        emitter = ProjectEmitter(s)
        report.files = emitter.emit(
            rewritten,
            catalog,
            output_dir,
            staging_dir=staging,
            stylesheets=stylesheets,
            detection=report.detection,
            analysis=report.analysis,
        )
        if report.failed:
            logging.warning("%d assets could not be downloaded; kept their remote URLs", report.failed)
        return report

    def _expand_stylesheets(self, catalog: AssetCatalog, materializer: AssetMaterializer) -> None:
        for depth in range(max(0, self.settings.css_passes)):
            found: List[AssetRecord] = []
            for record in catalog.by_category(Category.STYLE):
                if record.fetch_state is not FetchState.FETCHED or record.is_embedded:
                    continue
                if catalog.is_scanned(record.canonical_url):
                    continue
                path = materializer.staged_path(record)
                text = path.read_bytes().decode("utf-8", errors="replace")
                found.extend(catalog.discover_stylesheet(record, text))
            if not found:
                return
            logging.debug("stylesheet pass %d: %d new assets", depth + 1, len(found))
            materializer.materialize_all(found)
            if self._cancel.is_set():
                return

    def _collect_detection(self, future) -> Optional[DetectionResult]:
        try:
            return future.result()
        except Exception as e:
            logging.warning("framework detection failed: %s", e)
            return None

