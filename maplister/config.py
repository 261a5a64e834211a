"""Configuration loading for the crawl engine."""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from maplister.errors import ConfigError
from maplister.logging_config import get_logger

LOGGER = get_logger(__name__)

PACKAGE_CONFIG = Path(__file__).with_name("config.yml")
ENDPOINT_NAMES = ("count", "main", "maps_page", "map_details", "download_details")
BACKOFF_POLICIES = ("fixed", "exponential")

DEFAULT_CONFIG: dict[str, Any] = {
    "game": 1,
    "games": [],
    "api": {
        "base_url": "https://api.gamebanana.com",
        "endpoints": {
            "count": "{base_url}/games/{game_id}/maps/count",
            "main": "{base_url}/games/{game_id}/categories",
            "maps_page": "{base_url}/games/{game_id}/categories/{category_id}/maps?page={page}&perpage={page_size}",
            "map_details": "{base_url}/maps/{map_id}",
            "download_details": "{base_url}/maps/{map_id}/download",
        },
        "bodies": {},
        "timeout": 30,
        "user_agent": "maplister/1.0",
    },
    "crawl": {
        "page_size": 50,
        "max_attempts": 5,
        "retry_delay": 2.0,
        "retry_backoff": "fixed",
        "retry_max_delay": 30.0,
        "workers": 8,
        "progress_every": 25,
    },
    "output": {"sqlite_path": "maplister.sqlite"},
    "schedule": {"minutes": 0},
}


@dataclass
class CrawlSettings:
    """Values the crawl engine reads from the merged configuration."""

    base_url: str
    endpoints: dict[str, str]
    bodies: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    user_agent: str | None = None
    page_size: int = 50
    max_attempts: int = 5
    retry_delay: float = 2.0
    retry_backoff: str = "fixed"
    retry_max_delay: float = 30.0
    workers: int = 8
    progress_every: int = 25

    def url_for(self, endpoint: str, **params: Any) -> str:
        template = self.endpoints[endpoint]
        return template.format(base_url=self.base_url.rstrip("/"), page_size=self.page_size, **params)

    def body_for(self, endpoint: str, **params: Any) -> str | None:
        template = self.bodies.get(endpoint)
        if not template:
            return None
        return template.format(page_size=self.page_size, **params)


def _deep_merge(default: Any, override: Any) -> Any:
    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {path}")
    return data


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Merge the packaged defaults with the user configuration at *path*.

    *path* falls back to ``MAPLISTER_CONFIG``; a missing file is not an error.
    """

    merged = deepcopy(DEFAULT_CONFIG)
    if PACKAGE_CONFIG.exists():
        merged = _deep_merge(merged, _read_yaml(PACKAGE_CONFIG))

    path_value = path or os.getenv("MAPLISTER_CONFIG")
    if path_value:
        user_path = Path(path_value)
        if user_path.exists():
            merged = _deep_merge(merged, _read_yaml(user_path))
        else:
            LOGGER.warning("Configuration file %s not found; using defaults", user_path)

    db_override = os.getenv("MAPLISTER_DB")
    if db_override:
        merged.setdefault("output", {})["sqlite_path"] = db_override
    return merged


def _positive_int(section: dict[str, Any], key: str) -> int:
    try:
        value = int(section[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"crawl.{key} must be an integer") from exc
    if value <= 0:
        raise ConfigError(f"crawl.{key} must be a positive integer")
    return value


def _non_negative_float(section: dict[str, Any], key: str) -> float:
    try:
        value = float(section[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"crawl.{key} must be a number") from exc
    if value < 0:
        raise ConfigError(f"crawl.{key} must not be negative")
    return value


def settings_from_config(config: dict[str, Any]) -> CrawlSettings:
    api = config.get("api") or {}
    crawl = config.get("crawl") or {}

    endpoints = {str(key): str(value) for key, value in (api.get("endpoints") or {}).items()}
    missing = [name for name in ENDPOINT_NAMES if not endpoints.get(name)]
    if missing:
        raise ConfigError(f"api.endpoints is missing: {', '.join(missing)}")

    backoff = str(crawl.get("retry_backoff", "fixed")).strip().lower()
    if backoff not in BACKOFF_POLICIES:
        raise ConfigError(f"crawl.retry_backoff must be one of {', '.join(BACKOFF_POLICIES)}")

    base_url = str(api.get("base_url") or "").strip()
    if not base_url:
        raise ConfigError("api.base_url is missing")

    return CrawlSettings(
        base_url=base_url,
        endpoints=endpoints,
        bodies={str(key): str(value) for key, value in (api.get("bodies") or {}).items() if value},
        timeout=float(api.get("timeout") or 30),
        user_agent=str(api.get("user_agent") or "").strip() or None,
        page_size=_positive_int(crawl, "page_size"),
        max_attempts=_positive_int(crawl, "max_attempts"),
        retry_delay=_non_negative_float(crawl, "retry_delay"),
        retry_backoff=backoff,
        retry_max_delay=_non_negative_float(crawl, "retry_max_delay"),
        workers=_positive_int(crawl, "workers"),
        progress_every=_positive_int(crawl, "progress_every"),
    )
