from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Final, Optional, Tuple

import yaml

from .validate import validate_settings

logger: Final = logging.getLogger(__name__)

GRAPH_API_BASE: Final[str] = "https://graph.facebook.com"
DEFAULT_API_VERSION: Final[str] = "v23.0"
AD_PREVIEW_URL: Final[str] = "https://www.facebook.com/ads/preview"

MIN_REQUEST_INTERVAL_SEC: Final[float] = 0.2
DEFAULT_TIMEOUT_SEC: Final[float] = 30.0
DEFAULT_MAX_ATTEMPTS: Final[int] = 3

# Graph error codes
TOKEN_INVALID_CODE: Final[int] = 190
THROTTLE_CODES: Final[Tuple[int, ...]] = (4, 17)

MINOR_UNITS_PER_MAJOR: Final[int] = 100
MAX_CAMPAIGNS_PER_PAGE: Final[int] = 100
ENRICHMENT_WORKERS: Final[int] = 3

DEFAULT_ACCOUNT_TIMEZONE: Final[str] = "UTC"
ACCESS_TOKEN_ENV: Final[str] = "FB_ACCESS_TOKEN"

SCHEMA_PATH_DEFAULT: Final[Path] = Path(__file__).with_name("schema.settings.yaml")


def getenv_f(name: str, default: float) -> float:
    try: return float(os.getenv(name) or default)
    except ValueError: return default


def getenv_i(name: str, default: int) -> int:
    try: return int(os.getenv(name) or default)
    except ValueError: return default


@dataclass(frozen=True)
class Settings:
    api_version: str = DEFAULT_API_VERSION
    request_interval: float = MIN_REQUEST_INTERVAL_SEC
    timeout: float = DEFAULT_TIMEOUT_SEC
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    enrichment_workers: int = ENRICHMENT_WORKERS
    account_timezone: str = DEFAULT_ACCOUNT_TIMEZONE

    @property
    def graph_base(self) -> str:
        return f"{GRAPH_API_BASE}/{self.api_version}"

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            api_version=os.getenv("META_API_VERSION") or DEFAULT_API_VERSION,
            request_interval=getenv_f("META_REQUEST_INTERVAL", MIN_REQUEST_INTERVAL_SEC),
            timeout=getenv_f("META_TIMEOUT", DEFAULT_TIMEOUT_SEC),
            max_attempts=getenv_i("META_RETRY_MAX", DEFAULT_MAX_ATTEMPTS),
            enrichment_workers=getenv_i("META_ENRICHMENT_WORKERS", ENRICHMENT_WORKERS),
            account_timezone=os.getenv("ACCOUNT_TIMEZONE") or DEFAULT_ACCOUNT_TIMEZONE,
        )


def load_yaml(path: Optional[str | Path]) -> Dict[str, Any]:
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (FileNotFoundError, yaml.YAMLError, IOError, OSError):
        logger.debug("Settings file %s could not be read", path, exc_info=True)
        return {}


def load_settings(path: Optional[str | Path] = None, schema_path: Optional[str | Path] = None) -> Settings:
    """
    Build Settings from the environment, then overlay the ``meta:`` section of a
    YAML settings file. The file is validated against the bundled schema first;
    a schema violation raises ValueError.
    """
    base = Settings.from_env()
    raw = load_yaml(path)
    if not raw:
        return base

    schema = load_yaml(schema_path or SCHEMA_PATH_DEFAULT)
    validate_settings(raw, schema)

    meta_cfg = raw.get("meta") or {}
    overrides = {k: v for k, v in meta_cfg.items() if k in Settings.__dataclass_fields__}
    if "timezone" in raw:
        overrides["account_timezone"] = raw["timezone"]
    return replace(base, **overrides)


__all__ = [
    "GRAPH_API_BASE", "DEFAULT_API_VERSION", "AD_PREVIEW_URL",
    "MIN_REQUEST_INTERVAL_SEC", "DEFAULT_TIMEOUT_SEC", "DEFAULT_MAX_ATTEMPTS",
    "TOKEN_INVALID_CODE", "THROTTLE_CODES", "MINOR_UNITS_PER_MAJOR",
    "MAX_CAMPAIGNS_PER_PAGE", "ENRICHMENT_WORKERS", "DEFAULT_ACCOUNT_TIMEZONE",
    "ACCESS_TOKEN_ENV", "SCHEMA_PATH_DEFAULT",
    "Settings", "load_yaml", "load_settings", "validate_settings",
    "getenv_f", "getenv_i",
]
