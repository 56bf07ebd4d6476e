"""User configuration for photo-atlas."""

import json
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from photo_atlas.catalog.config import (
    DEFAULT_EXTRACTION_TIMEOUT,
    DEFAULT_GEOCODE_BACKOFF,
    DEFAULT_GEOCODE_INTERVAL,
    DEFAULT_MAX_WORKERS,
    DEFAULT_WRITE_BATCH_SIZE,
)
from photo_atlas.catalog.geocode import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

# Default configuration for end-users
DEFAULT_DB_PATH = str(Path.home() / ".photo-atlas" / "catalog.db")
DEFAULT_PROXIMITY_WINDOW_MINUTES = 60
DEFAULT_GEOCODE_LANGUAGE = "en"

# Configuration file path
CONFIG_FILE_PATH = Path.home() / ".photo-atlas" / "config.json"

# Overrides the configured database location
ENV_DB_PATH = "PHOTO_ATLAS_DB"


class AtlasConfig:
    """Configuration shared by the CLI and the web API."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        max_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
        extraction_timeout: Optional[float] = None,
        proximity_window_minutes: Optional[int] = None,
        geocode_interval: Optional[float] = None,
        geocode_backoff: Optional[float] = None,
        geocode_user_agent: Optional[str] = None,
        geocode_language: Optional[str] = None,
    ):
        db_path = os.environ.get(ENV_DB_PATH) or db_path
        # Expand ~ in db_path if present
        if db_path:
            db_path = os.path.expanduser(db_path)
        self.db_path = db_path or DEFAULT_DB_PATH
        self.max_workers = max_workers or DEFAULT_MAX_WORKERS
        self.batch_size = batch_size or DEFAULT_WRITE_BATCH_SIZE
        self.extraction_timeout = extraction_timeout or DEFAULT_EXTRACTION_TIMEOUT
        self.proximity_window_minutes = (
            proximity_window_minutes if proximity_window_minutes is not None else DEFAULT_PROXIMITY_WINDOW_MINUTES
        )
        self.geocode_interval = geocode_interval if geocode_interval is not None else DEFAULT_GEOCODE_INTERVAL
        self.geocode_backoff = geocode_backoff if geocode_backoff is not None else DEFAULT_GEOCODE_BACKOFF
        self.geocode_user_agent = geocode_user_agent or DEFAULT_USER_AGENT
        self.geocode_language = geocode_language or DEFAULT_GEOCODE_LANGUAGE

    @property
    def proximity_window(self) -> timedelta:
        return timedelta(minutes=self.proximity_window_minutes)

    def ensure_db_dir(self) -> None:
        """Create the directory holding the database file."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load_from_file(cls, config_path: Optional[Path] = None) -> "AtlasConfig":
        """Load configuration from a JSON file; missing or invalid files give defaults."""
        if config_path is None:
            config_path = CONFIG_FILE_PATH

        if not config_path.exists():
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = json.load(f)
            if not isinstance(config_data, dict):
                raise ValueError("top-level value must be an object")
            return cls(**{key: config_data.get(key) for key in cls.field_names()})
        except (json.JSONDecodeError, OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load config file {config_path}: {e}")
            return cls()

    def save_to_file(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to a JSON file."""
        if config_path is None:
            config_path = CONFIG_FILE_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(config_path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error(f"Failed to save config file {config_path}: {e}")

    @staticmethod
    def field_names():
        return (
            "db_path",
            "max_workers",
            "batch_size",
            "extraction_timeout",
            "proximity_window_minutes",
            "geocode_interval",
            "geocode_backoff",
            "geocode_user_agent",
            "geocode_language",
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {name: getattr(self, name) for name in self.field_names()}


def get_default_config() -> AtlasConfig:
    """Load the user's configuration file."""
    return AtlasConfig.load_from_file()
