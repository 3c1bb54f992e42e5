"""
Configuration for the wallpaper service.

Priority (high -> low):
  1. Environment variables (PORT, LOG_LEVEL, WALLPAPER_SOURCE_DIR, WALLPAPER_CACHE_DIR)
  2. config/params.yaml (or the file named by WALLPAPER_CONFIG)
  3. Hardcoded defaults below

All YAML reads use yaml.safe_load().
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"


class ConfigError(ValueError):
    """Raised when the config file contains an invalid value."""


@dataclass
class ProviderCfg:
    base_url: str = "https://cn.bing.com"
    mkt: str = "zh-CN"
    idx: int = 0
    n: int = 1
    timeout_s: float = 30.0
    image_suffix: str = "_UHD.jpg"


@dataclass
class StorageCfg:
    source_dir: str = "images"
    cache_dir: str = "processed"
    placeholder: str = ".gitkeep"


@dataclass
class TransformCfg:
    quality: int = 90
    max_workers: int = 2


@dataclass
class CacheCfg:
    invalidate_on_rotation: bool = True
    wait_timeout_s: Optional[float] = 120.0


@dataclass
class SchedulerCfg:
    refresh_interval_s: float = 12 * 3600.0
    purge_interval_s: float = 6 * 3600.0
    refresh_on_start: bool = True


@dataclass
class ServerCfg:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class LoggingCfg:
    level: str = "INFO"


@dataclass
class Settings:
    provider: ProviderCfg = field(default_factory=ProviderCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    transform: TransformCfg = field(default_factory=TransformCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    scheduler: SchedulerCfg = field(default_factory=SchedulerCfg)
    server: ServerCfg = field(default_factory=ServerCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Settings":
        s = cls()
        for section in fields(cls):
            values = raw.get(section.name) or {}
            if not isinstance(values, dict):
                raise ConfigError(f"section '{section.name}' must be a mapping")
            target = getattr(s, section.name)
            known = {f.name: f for f in fields(target)}
            for k, v in values.items():
                if k not in known:
                    raise ConfigError(f"unknown key '{section.name}.{k}'")
                nullable = "Optional" in str(known[k].type)
                setattr(target, k, _coerce(f"{section.name}.{k}", getattr(target, k), v, nullable=nullable))
        s._validate()
        return s

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "Settings":
        """
        Load settings from YAML, then apply env overrides.
        A missing file is not an error: defaults are used.
        """
        path = path or os.environ.get("WALLPAPER_CONFIG") or DEFAULT_CONFIG_PATH
        raw: Dict[str, Any] = {}
        if Path(path).exists():
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ConfigError(f"{path}: top level must be a mapping")
        s = cls.from_dict(raw)
        s.apply_env()
        return s

    def apply_env(self) -> None:
        if os.environ.get("PORT"):
            self.server.port = _coerce("PORT", self.server.port, os.environ["PORT"])
        if os.environ.get("LOG_LEVEL"):
            self.logging.level = os.environ["LOG_LEVEL"]
        if os.environ.get("WALLPAPER_SOURCE_DIR"):
            self.storage.source_dir = os.environ["WALLPAPER_SOURCE_DIR"]
        if os.environ.get("WALLPAPER_CACHE_DIR"):
            self.storage.cache_dir = os.environ["WALLPAPER_CACHE_DIR"]
        self._validate()

    def _validate(self) -> None:
        if not 1 <= self.transform.quality <= 100:
            raise ConfigError("transform.quality must be within 1..100")
        if self.transform.max_workers < 1:
            raise ConfigError("transform.max_workers must be >= 1")
        if self.scheduler.refresh_interval_s <= 0 or self.scheduler.purge_interval_s <= 0:
            raise ConfigError("scheduler intervals must be > 0")
        if Path(self.storage.source_dir).resolve() == Path(self.storage.cache_dir).resolve():
            raise ConfigError("storage.source_dir and storage.cache_dir must differ")


def _coerce(name: str, current: Any, value: Any, *, nullable: bool = False) -> Any:
    """Convert `value` to the type of the default it replaces; None only for Optional fields."""
    if value is None:
        if nullable:
            return None
        raise ConfigError(f"{name} must not be empty")
    try:
        if isinstance(current, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if current is None:
            return float(value)
        return str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {name}: {value!r}") from exc
