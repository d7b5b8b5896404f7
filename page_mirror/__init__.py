"""Mirror a single rendered page into an offline-runnable bundle."""

from .catalog import AssetCatalog, make_asset_filename
from .detector import FrameworkSignatureDetector
from .emitter import ProjectEmitter
from .errors import (
    ConfigError,
    DiscoveryError,
    EmitError,
    FetchError,
    PageMirrorError,
    RewriteError,
    RunCancelled,
    SourceError,
)
from .materializer import AssetMaterializer
from .models import AssetRecord, Category, DomSnapshot, FetchState, Origin
from .orchestrator import Orchestrator, RunReport
from .rewriter import ReferenceRewriter
from .settings import Settings

__version__ = "0.1.0"

__all__ = [
    "AssetCatalog",
    "AssetMaterializer",
    "AssetRecord",
    "Category",
    "ConfigError",
    "DiscoveryError",
    "DomSnapshot",
    "EmitError",
    "FetchError",
    "FetchState",
    "FrameworkSignatureDetector",
    "Orchestrator",
    "Origin",
    "PageMirrorError",
    "ProjectEmitter",
    "ReferenceRewriter",
    "RewriteError",
    "RunCancelled",
    "RunReport",
    "Settings",
    "SourceError",
    "make_asset_filename",
    "__version__",
]
