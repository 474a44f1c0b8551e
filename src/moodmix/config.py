"""
Configuration loading for moodmix.

All settings come from environment variables (optionally via a .env file).
Spotify credentials are not validated here; the routes that need them
surface a friendly error instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from platformdirs import user_config_dir
from dotenv import load_dotenv
import os
import logging
from logging.handlers import RotatingFileHandler


APP_NAME = "moodmix"
APP_AUTHOR = "moodmix"

DEFAULT_REDIRECT_URI = "http://localhost:3000/callback"


@dataclass
class SpotifyConfig:
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI


@dataclass
class SessionConfig:
    backend: str = "memory"  # "memory" or "file"
    cookie_name: str = "moodmix_session"
    max_age: int = 86400 * 30


@dataclass
class AdmissionConfig:
    mode: str = "LIVE"  # "LIVE" blocks, "DRY_RUN" only logs
    rate_limit: str = "1/minute"
    rate_limit_path: str = "/generate-playlist"
    allowed_agents: List[str] = field(default_factory=lambda: ["^curl"])


@dataclass
class AppConfig:
    spotify: SpotifyConfig
    session: SessionConfig = field(default_factory=SessionConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    port: int = 3000


def get_default_config_dir() -> Path:
    """
    Returns the platform-appropriate directory for persistent moodmix state.
    """
    return Path(user_config_dir(APP_NAME, APP_AUTHOR))


def _split_list(raw: Optional[str], default: List[str]) -> List[str]:
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_config() -> AppConfig:
    """
    Load configuration from environment variables / .env file.
    """
    # Load from a .env file in the project root or current directory, if present.
    load_dotenv()

    client_id = os.getenv("MOODMIX_SPOTIFY_CLIENT_ID", "")
    client_secret = os.getenv("MOODMIX_SPOTIFY_CLIENT_SECRET", "")
    redirect_uri = os.getenv("MOODMIX_SPOTIFY_REDIRECT_URI") or DEFAULT_REDIRECT_URI

    spotify_cfg = SpotifyConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
    )

    session_cfg = SessionConfig(
        backend=os.getenv("MOODMIX_SESSION_BACKEND", "memory").lower(),
        cookie_name=os.getenv("MOODMIX_SESSION_COOKIE", "moodmix_session"),
    )

    admission_cfg = AdmissionConfig(
        mode=os.getenv("MOODMIX_ADMISSION_MODE", "LIVE").upper(),
        rate_limit=os.getenv("MOODMIX_RATE_LIMIT", "1/minute"),
        rate_limit_path=os.getenv("MOODMIX_RATE_LIMIT_PATH", "/generate-playlist"),
        allowed_agents=_split_list(os.getenv("MOODMIX_ALLOWED_AGENTS"), ["^curl"]),
    )

    try:
        port = int(os.getenv("MOODMIX_PORT", "3000"))
    except ValueError:
        port = 3000

    return AppConfig(
        spotify=spotify_cfg,
        session=session_cfg,
        admission=admission_cfg,
        port=port,
    )


def setup_logging() -> None:
    """
    Configure centralized logging for moodmix using Python's built-in logging module.

    - Logs to <config dir>/logs/moodmix.log
    - Uses RotatingFileHandler with 10MB max size and 5 backup files
    - Logs to both file and console
    - Default level: INFO (can be overridden via MOODMIX_LOG_LEVEL env var)
    """
    log_level_str = os.getenv("MOODMIX_LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_dir = get_default_config_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    log_format = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    file_handler = RotatingFileHandler(
        str(log_dir / "moodmix.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(log_format, date_format))
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format, date_format))
    root_logger.addHandler(console_handler)


# Initialize logging when module is imported (after get_default_config_dir is defined)
setup_logging()

__all__ = [
    "AdmissionConfig",
    "AppConfig",
    "SessionConfig",
    "SpotifyConfig",
    "get_default_config_dir",
    "load_config",
    "setup_logging",
]
