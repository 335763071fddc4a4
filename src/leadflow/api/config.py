"""Environment-based configuration for the API service."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class Settings:
    """API configuration loaded from environment variables."""

    def __init__(self):
        self.api_secret = os.getenv("LEADFLOW_API_SECRET", "")
        if not self.api_secret:
            raise RuntimeError(
                "LEADFLOW_API_SECRET environment variable is required. "
                "Generate one with: openssl rand -hex 32"
            )
        self.host = os.getenv("LEADFLOW_API_HOST", "0.0.0.0")
        self.port = int(os.getenv("LEADFLOW_API_PORT", "8000"))
        self.db_path = os.getenv(
            "LEADFLOW_DATABASE_PATH",
            str(Path.home() / ".leadflow" / "leadflow.db"),
        )
        self.config_path = os.getenv("LEADFLOW_CONFIG_PATH")
        self.jobs_enabled = os.getenv("LEADFLOW_JOBS_ENABLED", "false").lower() == "true"
        self.debug = os.getenv("LEADFLOW_ENV", "production") != "production"


_settings = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Forget loaded settings so the next access re-reads the environment."""
    global _settings
    _settings = None


class _SettingsProxy:
    """Lazy proxy so settings aren't loaded until first access."""

    def __getattr__(self, name):
        return getattr(_get_settings(), name)


settings = _SettingsProxy()
