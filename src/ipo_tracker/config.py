"""Runtime settings assembled from the environment and an optional YAML file."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ipo_tracker.common.logging import log

DEFAULT_PUSHPLUS_TOPIC = "ipo_team"
DEFAULT_PAGE_PATH = "index.html"
DEFAULT_BACKUP_DIR = "data"
DEFAULT_SITE_URL = "https://raistlin1314-byte.github.io/A-stock-ipo-tracker/"

# setting name -> (environment variable, YAML key)
_SOURCES = {
    "tushare_token": ("TUSHARE_TOKEN", "tushare_token"),
    "pushplus_token": ("PUSHPLUS_TOKEN", "pushplus_token"),
    "pushplus_topic": ("PUSHPLUS_TOPIC", "pushplus_topic"),
    "page_path": ("IPO_PAGE_PATH", "page_path"),
    "backup_dir": ("IPO_BACKUP_DIR", "backup_dir"),
    "site_url": ("IPO_SITE_URL", "site_url"),
}


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing or unreadable."""


@dataclass
class Settings:
    tushare_token: Optional[str] = None
    pushplus_token: Optional[str] = None
    pushplus_topic: str = DEFAULT_PUSHPLUS_TOPIC
    page_path: Path = Path(DEFAULT_PAGE_PATH)
    backup_dir: Path = Path(DEFAULT_BACKUP_DIR)
    site_url: str = DEFAULT_SITE_URL

    def require_tushare_token(self) -> str:
        if not self.tushare_token:
            raise ConfigurationError("Tushare Token未配置：请设置环境变量 TUSHARE_TOKEN")
        return self.tushare_token


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _load_yaml(path_hint: str, logger: logging.Logger | None) -> Dict[str, Any]:
    path = Path(path_hint).expanduser()
    if not path.exists():
        raise ConfigurationError(f"配置文件不存在: {path}")
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"配置文件解析失败: {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"配置文件顶层必须是映射: {path}")
    if logger:
        log(logger, logging.INFO, "config_file_loaded", path=str(path), keys=sorted(payload))
    return payload


def load_settings(logger: logging.Logger | None = None) -> Settings:
    """Resolve settings; environment variables override the YAML file.

    The YAML file is only read when ``IPO_CONFIG_PATH`` is set. Missing
    credentials are not an error here; steps that need the provider token
    call :meth:`Settings.require_tushare_token`.
    """

    file_values: Dict[str, Any] = {}
    path_hint = os.getenv("IPO_CONFIG_PATH")
    if path_hint:
        file_values = _load_yaml(path_hint, logger)

    resolved: Dict[str, Optional[str]] = {}
    for name, (env_key, yaml_key) in _SOURCES.items():
        resolved[name] = _clean(os.getenv(env_key)) or _clean(file_values.get(yaml_key))

    return Settings(
        tushare_token=resolved["tushare_token"],
        pushplus_token=resolved["pushplus_token"],
        pushplus_topic=resolved["pushplus_topic"] or DEFAULT_PUSHPLUS_TOPIC,
        page_path=Path(resolved["page_path"] or DEFAULT_PAGE_PATH),
        backup_dir=Path(resolved["backup_dir"] or DEFAULT_BACKUP_DIR),
        site_url=resolved["site_url"] or DEFAULT_SITE_URL,
    )
