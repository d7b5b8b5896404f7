from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import ConfigError

# -------------------- Settings --------------------


@dataclass
class Settings:
    timeout: float = 15.0
    workers: int = 8
    max_bytes: int = 50_000_000
    max_redirects: int = 5
    css_passes: int = 2

    # Output
    clean: bool = False
    utility_css: Optional[str] = None

    # Rendering
    render_js: bool = False
    render_timeout_ms: int = 10000
    wait_until: str = "networkidle"
    scroll: bool = True

    # Language-model analysis
    ai: bool = False
    ai_model: str = "gpt-4o-mini"
    ai_timeout: float = 30.0

    # Auth / session
    cookies_file: Optional[str] = None
    extra_headers: List[str] = field(default_factory=list)  # "Name: value"
    auth_basic: Optional[str] = None  # "user:pass"
    auth_bearer: Optional[str] = None


# -------------------- Config loader --------------------

CONFIG_GROUPS = ("fetch", "render", "output", "ai", "auth", "general")


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    try:
        if suf in {".toml", ".tml"}:
            try:
                import tomllib  # py311+
            except ImportError:
                import tomli as tomllib  # backport
            with open(p, "rb") as f:
                data = tomllib.load(f) or {}
        elif suf in {".yaml", ".yml"}:
            import yaml

            with open(p, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        else:
            raise ConfigError("Unsupported config format. Use .toml or .yaml")
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level config must be a mapping")
    return data


def flatten_config(cfg: Dict) -> Dict:
    """Merge the known groups into one flat mapping of parser defaults."""
    flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
    for g in CONFIG_GROUPS:
        if isinstance(cfg.get(g), dict):
            flat.update(cfg[g])
    return {k.replace("-", "_"): v for k, v in flat.items()}
