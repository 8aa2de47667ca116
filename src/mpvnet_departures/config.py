from __future__ import annotations

import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, field_validator

from .models import Region


class Settings(BaseModel):
    region: Region = Region.ZLIN
    cache_dir: Optional[Path] = Path("./data/cache")
    base_url: str = "https://mpvnet.cz"
    request_timeout_seconds: float = 10.0
    http_retries: int = 0
    timezone: str = "Europe/Prague"
    max_workers: int = 3
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()

    @field_validator("region", mode="before")
    @classmethod
    def _lower_region(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _load_yaml(path: Optional[Path]) -> dict:
    if not path:
        return {}
    if not Path(path).exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")
    return raw


def _env_override(config: dict) -> dict:
    # Environment variables take precedence; prefix MPV_
    # Supported:
    # MPV_REGION, MPV_CACHE_DIR (empty disables caching), MPV_BASE_URL,
    # MPV_REQUEST_TIMEOUT_SECONDS, MPV_TIMEZONE, MPV_LOG_LEVEL
    out = dict(config)
    region = os.environ.get("MPV_REGION")
    if region:
        out["region"] = region
    if "MPV_CACHE_DIR" in os.environ:
        out["cache_dir"] = os.environ["MPV_CACHE_DIR"] or None
    base_url = os.environ.get("MPV_BASE_URL")
    if base_url:
        out["base_url"] = base_url
    timeout = os.environ.get("MPV_REQUEST_TIMEOUT_SECONDS")
    if timeout and timeout.replace(".", "", 1).isdigit():
        out["request_timeout_seconds"] = float(timeout)
    tz = os.environ.get("MPV_TIMEZONE")
    if tz:
        out["timezone"] = tz
    log = os.environ.get("MPV_LOG_LEVEL")
    if log:
        out["log_level"] = log
    return out


def load_settings(config_path: Optional[Path] = None) -> Settings:
    base = _load_yaml(config_path)
    merged = _env_override(base)
    return Settings(**merged)
