import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_STORAGE_PATH = "./storage"
DEFAULT_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
DEFAULT_CORS_ORIGIN = "http://localhost:5173"
BYTES_PER_MB = 1024 * 1024

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

config_logger = logging.getLogger("pinshare.config")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration handed to :func:`pinshare.app.create_app`."""

    storage_path: Path
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    cors_origin: str = DEFAULT_CORS_ORIGIN
    max_upload_size_mb: Optional[int] = None
    enforce_pin_format: bool = False
    logs_dir: Optional[Path] = None
    log_level: str = "INFO"

    @property
    def max_content_length(self) -> Optional[int]:
        if self.max_upload_size_mb is None:
            return None
        return self.max_upload_size_mb * BYTES_PER_MB


def _resolve_env_path(env: Mapping[str, str], env_key: str, default: Optional[str]) -> Optional[Path]:
    """Resolve an environment-provided path or fall back to *default*."""

    value = env.get(env_key) or default
    if not value:
        return None
    return Path(value).expanduser().resolve()


def _safe_int_env(env: Mapping[str, str], key: str, default: Optional[int], min_value: int = 1) -> Optional[int]:
    """Safely parse integer environment variable with error handling."""

    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        config_logger.warning(
            "Invalid value for %s: %s. Using default: %s", key, raw, default
        )
        return default
    if value < min_value:
        config_logger.warning(
            "Value for %s below minimum %d: %s. Using default: %s",
            key,
            min_value,
            raw,
            default,
        )
        return default
    return value


def _get_bool_env(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    config_logger.warning("Invalid boolean for %s: %s. Using default: %s", key, raw, default)
    return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from environment variables."""

    if env is None:
        env = os.environ

    return Settings(
        storage_path=_resolve_env_path(env, "STORAGE_PATH", DEFAULT_STORAGE_PATH),
        port=_safe_int_env(env, "PORT", DEFAULT_PORT),
        host=env.get("HOST") or DEFAULT_HOST,
        cors_origin=env.get("CORS_ALLOW_ORIGIN") or DEFAULT_CORS_ORIGIN,
        max_upload_size_mb=_safe_int_env(env, "MAX_UPLOAD_SIZE_MB", None),
        enforce_pin_format=_get_bool_env(env, "PINSHARE_ENFORCE_PIN_FORMAT", False),
        logs_dir=_resolve_env_path(env, "PINSHARE_LOGS_DIR", None),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )
