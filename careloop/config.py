"""Settings file, timezone, and logging setup for careloop."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from careloop.fileio import load_mapping

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3000"
DEFAULT_TIMEOUT = 15.0
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class Settings:
    api_url: str = DEFAULT_API_URL
    timezone: str = "UTC"
    request_timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Settings:
        if not d or not isinstance(d, dict):
            return cls()
        return cls(
            api_url=str(d.get("api_url", DEFAULT_API_URL)).rstrip("/"),
            timezone=str(d.get("timezone", "UTC")),
            request_timeout=float(d.get("request_timeout", DEFAULT_TIMEOUT)),
            log_level=str(d.get("log_level", "INFO")).upper(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_url": self.api_url,
            "timezone": self.timezone,
            "request_timeout": self.request_timeout,
            "log_level": self.log_level,
        }


def config_path() -> Path:
    """Settings file location (``CARELOOP_CONFIG`` or ~/.careloop/config.yaml)."""
    return Path(
        os.environ.get("CARELOOP_CONFIG", str(Path.home() / ".careloop" / "config.yaml"))
    ).expanduser().resolve()


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from YAML (or JSON by suffix), then apply env overrides."""
    if path is None:
        path = config_path()
    data = load_mapping(path)
    settings = Settings.from_dict(data)

    api_url = os.environ.get("CARELOOP_API_URL")
    if api_url:
        settings.api_url = api_url.rstrip("/")
    log_level = os.environ.get("CARELOOP_LOG_LEVEL")
    if log_level:
        settings.log_level = log_level.upper()
    return settings


def get_user_timezone(settings: Settings | None = None) -> ZoneInfo:
    """Get the configured timezone, defaulting to UTC."""
    if settings is None:
        settings = load_settings()
    try:
        return ZoneInfo(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", settings.timezone)
        return ZoneInfo("UTC")


def now_local(settings: Settings | None = None) -> datetime:
    """Get current datetime in the configured timezone."""
    return datetime.now(get_user_timezone(settings))


def today_str(settings: Settings | None = None) -> str:
    """Get today's date string (YYYY-MM-DD) in the configured timezone."""
    return now_local(settings).date().isoformat()


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
