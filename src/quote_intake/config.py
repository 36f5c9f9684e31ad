"""
Environment-driven configuration for the Quote Intake pipeline.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .exceptions import ConfigurationError
from .log_utils import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.cloud.llamaindex.ai"


def _env_str(key: str, default: str = "") -> str:
    val = os.getenv(key)
    return val.strip() if val and val.strip() else default


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {raw!r}, using {default}")
        return default


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    try:
        return float(raw) if raw is not None else default
    except ValueError:
        logger.warning(f"Invalid number for {key}: {raw!r}, using {default}")
        return default


def mask_secret(value: str) -> str:
    """Render a secret for logs, keeping only its last four characters."""
    if not value:
        return "<unset>"
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


@dataclass(frozen=True)
class Settings:
    # document intelligence service
    llama_cloud_api_key: str
    llama_cloud_base_url: str

    # storage
    supabase_url: str
    supabase_service_key: str
    storage_bucket: str
    local_storage_root: Optional[str]

    # job polling
    poll_interval_seconds: float
    poll_max_attempts: int

    log_level: str

    def validate_for_pipeline(self) -> None:
        """Raise ConfigurationError unless the full pipeline can be built."""
        if not self.llama_cloud_api_key:
            raise ConfigurationError("LLAMA_CLOUD_API_KEY not configured")
        if not self.local_storage_root and not (self.supabase_url and self.supabase_service_key):
            raise ConfigurationError(
                "Storage configuration missing: set LOCAL_STORAGE_ROOT or "
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY"
            )


def load_settings() -> Settings:
    """Read settings from the environment (uncached)."""
    return Settings(
        llama_cloud_api_key=_env_str("LLAMA_CLOUD_API_KEY"),
        llama_cloud_base_url=_env_str("LLAMA_CLOUD_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        supabase_url=_env_str("SUPABASE_URL").rstrip("/"),
        supabase_service_key=_env_str("SUPABASE_SERVICE_ROLE_KEY"),
        storage_bucket=_env_str("STORAGE_BUCKET", "documents"),
        local_storage_root=_env_str("LOCAL_STORAGE_ROOT") or None,
        poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 10.0),
        poll_max_attempts=_env_int("POLL_MAX_ATTEMPTS", 30),
        log_level=_env_str("LOG_LEVEL", "INFO"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = load_settings()
    setup_logging(settings.log_level)
    logger.info(
        f"Loaded settings base_url={settings.llama_cloud_base_url} "
        f"api_key={mask_secret(settings.llama_cloud_api_key)} "
        f"storage={'local' if settings.local_storage_root else 'supabase'} "
        f"poll={settings.poll_max_attempts}x{settings.poll_interval_seconds:g}s"
    )
    return settings
