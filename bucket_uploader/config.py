"""Configuration management for bucket_uploader"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_API_PATH = "BUCKET_UPLOADER_API_PATH"
ENV_ENVIRONMENT = "BUCKET_UPLOADER_ENV"
ENV_MAX_CONCURRENT_UPLOADS = "BUCKET_UPLOADER_MAX_CONCURRENT_UPLOADS"
ENV_BUCKETS = "BUCKET_UPLOADER_BUCKETS"
ENV_LOG_DIRECTORY = "BUCKET_UPLOADER_LOG_DIRECTORY"

DEVELOPMENT = "development"
PRODUCTION = "production"


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"


class Settings:
    """Manages client settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        # Start with hardcoded defaults
        defaults: dict[str, Any] = {
            "api_path": "http://localhost:3000/api/edgestore",
            "environment": PRODUCTION,
            "max_concurrent_uploads": 5,
            "max_parallel_parts": 5,
            "max_part_retries": 10,
            "retry_delay_seconds": 5.0,
            "gate_poll_interval": 0.3,
            "request_timeout_seconds": 60.0,
            "buckets": [],
            "log_directory": "",
        }

        # Load from settings.default.json if it exists
        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        # Load from settings.json if it exists
        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        # Override with environment variables (highest priority)
        buckets_env = os.environ.get(ENV_BUCKETS)
        max_uploads_env = os.environ.get(ENV_MAX_CONCURRENT_UPLOADS)
        env_overrides = {
            "api_path": os.environ.get(ENV_API_PATH),
            "environment": os.environ.get(ENV_ENVIRONMENT),
            "max_concurrent_uploads": int(max_uploads_env) if max_uploads_env else None,
            "buckets": (
                [b.strip() for b in buckets_env.split(",") if b.strip()]
                if buckets_env is not None
                else None
            ),
            "log_directory": os.environ.get(ENV_LOG_DIRECTORY),
        }

        # Only apply non-None environment values
        for key, value in env_overrides.items():
            if value is not None:
                defaults[key] = value

        self._settings = defaults

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    @property
    def api_path(self) -> str:
        """Base URL of the control-plane API, without a trailing slash."""
        return str(self._settings.get("api_path", "")).rstrip("/")

    @property
    def environment(self) -> str:
        """Runtime environment ("production" or "development")."""
        return str(self._settings.get("environment", PRODUCTION)).lower()

    @property
    def is_development(self) -> bool:
        return self.environment == DEVELOPMENT

    @property
    def max_concurrent_uploads(self) -> int:
        """Maximum number of whole-file upload sessions running at once."""
        return int(self._settings.get("max_concurrent_uploads", 5))

    @property
    def max_parallel_parts(self) -> int:
        """Maximum number of parts uploaded at once within one file."""
        return int(self._settings.get("max_parallel_parts", 5))

    @property
    def max_part_retries(self) -> int:
        """Retry budget for each part of a multipart upload."""
        return int(self._settings.get("max_part_retries", 10))

    @property
    def retry_delay_seconds(self) -> float:
        return float(self._settings.get("retry_delay_seconds", 5.0))

    @property
    def gate_poll_interval(self) -> float:
        return float(self._settings.get("gate_poll_interval", 0.3))

    @property
    def request_timeout_seconds(self) -> float:
        return float(self._settings.get("request_timeout_seconds", 60.0))

    @property
    def buckets(self) -> list[str]:
        """Names of the buckets exposed by the control plane."""
        return [str(b) for b in self._settings.get("buckets", [])]

    @property
    def log_directory(self) -> Path | None:
        """Directory for the JSONL event log, or None when disabled."""
        value = str(self._settings.get("log_directory", "") or "")
        return Path(value).expanduser() if value else None


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
