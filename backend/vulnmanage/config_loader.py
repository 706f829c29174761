# backend/vulnmanage/config_loader.py
from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

log = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = REPO_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "appconfig.json"
BACKEND_ENV = REPO_ROOT / "backend" / ".env"

_ROWS_PER_PAGE_KEY = "rows_per_page"
_MAX_ROWS_PER_PAGE_KEY = "max_rows_per_page"
_STRICT_COLUMNS_KEY = "strict_filter_columns"
_TABLE_ORDER_KEY = "table_order_if_sort_not_specified"

_ENV_PREFIX = "VULNMANAGE_"

_ROWS_PER_PAGE_DEFAULT = 10
_MAX_ROWS_PER_PAGE_DEFAULT = 1000

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class FilterSettings:
    """
    Read-only settings consulted while compiling filters.

    ``max_rows_per_page`` of 0 disables the row cap.  When
    ``table_order_if_sort_not_specified`` is set no default ``sort=name`` is
    injected, so rows come back in table order.
    """

    rows_per_page: int = _ROWS_PER_PAGE_DEFAULT
    max_rows_per_page: int = _MAX_ROWS_PER_PAGE_DEFAULT
    strict_filter_columns: bool = False
    table_order_if_sort_not_specified: bool = False

    @property
    def default_sort(self) -> Optional[str]:
        return None if self.table_order_if_sort_not_specified else "name"


DEFAULT_SETTINGS = FilterSettings()


def _read_json_file(path: Path) -> dict:
    """Read JSON from disk, returning an empty mapping on failure."""
    if not path.exists():
        log.debug("%s not present; using defaults", path)
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        log.warning("Could not read %s; falling back to defaults", path, exc_info=True)
        return {}


def load_app_config() -> dict:
    """Return the raw JSON configuration for the application."""
    if BACKEND_ENV.exists():
        load_dotenv(BACKEND_ENV, override=False)
    cfg = _read_json_file(CONFIG_PATH)
    return cfg if isinstance(cfg, dict) else {}


def _coerce_int(value: Any, fallback: int, setting_name: str, minimum: int = 0) -> int:
    """Convert unknown input into an integer no smaller than ``minimum``."""
    if value is None:
        return fallback
    try:
        numeric = int(str(value).strip())
    except (TypeError, ValueError):
        log.warning("%s=%r is not an integer; using %s", setting_name, value, fallback)
        return fallback
    if numeric < minimum:
        log.warning("%s=%r is below %s; using %s", setting_name, value, minimum, fallback)
        return fallback
    return numeric


def _coerce_bool(value: Any, fallback: bool, setting_name: str) -> bool:
    if value is None:
        return fallback
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    lowered = str(value).strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    log.warning("%s=%r is not a boolean; using %s", setting_name, value, fallback)
    return fallback


def _setting(cfg: Optional[Mapping[str, Any]], key: str) -> Any:
    env_value = os.getenv(_ENV_PREFIX + key.upper())
    if env_value is not None:
        return env_value
    if isinstance(cfg, Mapping):
        section = cfg.get("filters")
        if isinstance(section, Mapping) and key in section:
            return section.get(key)
        return cfg.get(key)
    return None


def get_filter_settings(cfg: Optional[Mapping[str, Any]] = None) -> FilterSettings:
    """
    Resolve filter settings: environment first, then appconfig.json (either a
    ``filters`` section or top-level keys), then defaults.
    """
    if cfg is None:
        cfg = load_app_config()
    rows = _coerce_int(_setting(cfg, _ROWS_PER_PAGE_KEY), _ROWS_PER_PAGE_DEFAULT, _ROWS_PER_PAGE_KEY, minimum=1)
    cap = _coerce_int(
        _setting(cfg, _MAX_ROWS_PER_PAGE_KEY), _MAX_ROWS_PER_PAGE_DEFAULT, _MAX_ROWS_PER_PAGE_KEY, minimum=0
    )
    strict = _coerce_bool(_setting(cfg, _STRICT_COLUMNS_KEY), False, _STRICT_COLUMNS_KEY)
    table_order = _coerce_bool(_setting(cfg, _TABLE_ORDER_KEY), False, _TABLE_ORDER_KEY)
    return FilterSettings(
        rows_per_page=rows,
        max_rows_per_page=cap,
        strict_filter_columns=strict,
        table_order_if_sort_not_specified=table_order,
    )


def initialize_app_config(app: Any) -> FilterSettings:
    """Populate a Flask app instance with values derived from appconfig.json."""
    cfg = load_app_config()
    if isinstance(cfg, Mapping):
        app.config.update(cfg)
    settings = get_filter_settings(cfg)
    app.config["FILTER_SETTINGS"] = settings
    app.config["ROWS_PER_PAGE"] = settings.rows_per_page
    app.config["MAX_ROWS_PER_PAGE"] = settings.max_rows_per_page
    log.info(
        "Filter settings: rows_per_page=%s max_rows_per_page=%s strict=%s",
        settings.rows_per_page,
        settings.max_rows_per_page,
        settings.strict_filter_columns,
    )
    return settings
