"""
Configuration management for radiobox.

Reads configuration from a .env file and environment variables with sensible defaults.
Real environment variables always win over values from the .env file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


# Default .env file location (relative to the working directory)
DEFAULT_ENV_FILE = Path(".env")

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("RADIO_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _get_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


def _get_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be a number)")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


def _parse_origins(origins_str: str) -> List[str]:
    """
    Parse allowed CORS origins from a comma-separated string.

    Trailing slashes are dropped so "http://a/" and "http://a" compare equal.

    Args:
        origins_str: Comma-separated origins (e.g., "http://localhost:3001,https://radio.example")

    Returns:
        List of normalized origins (may be empty)
    """
    return [o.strip().rstrip("/") for o in origins_str.split(",") if o.strip()]


@dataclass
class RadioConfig:
    """radiobox configuration loaded from .env file and environment variables."""

    # HTTP transport
    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origins: List[str] = field(default_factory=lambda: ["http://localhost:3001"])
    environment: str = "development"

    # Directories (owned by FileLifecycleManager)
    sound_dir: str = "./sound"
    temp_dir: str = "./temp"

    # Limits
    max_upload_bytes: int = 50 * 1024 * 1024
    relay_max_bytes: int = 5 * 1024 * 1024

    # Scheduler
    grace_period_sec: float = 2.0
    unknown_duration_sec: float = 180.0
    clear_stops_current: bool = True

    # External collaborator bounds
    probe_timeout_sec: float = 10.0
    relay_timeout_sec: float = 120.0
    relay_timeout_margin_sec: float = 15.0
    download_timeout_sec: float = 30.0

    # Broadcast ingest endpoint
    broadcast_protocol: str = "http"
    broadcast_host: str = "localhost"
    broadcast_port: int = 8005
    broadcast_mount: str = "voice"
    source_user: str = "source"
    source_password: str = "hackme"

    # Chat
    chat_capacity: int = 100

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Fixed output profile for the live relay (not configurable)
    output_codec: str = "libmp3lame"
    output_format: str = "mp3"
    output_bitrate: str = "128k"
    output_channels: int = 2
    output_sample_rate: int = 44100

    @property
    def broadcast_url(self) -> str:
        """Assemble the broadcast ingest URL from host, port, mount and source credentials."""
        mount = self.broadcast_mount.lstrip("/")
        return (
            f"{self.broadcast_protocol}://{self.source_user}:{self.source_password}"
            f"@{self.broadcast_host}:{self.broadcast_port}/{mount}"
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def load_config(cls) -> "RadioConfig":
        """
        Load configuration from environment variables.

        Returns:
            RadioConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        config = cls(
            host=os.getenv("RADIO_HOST", "0.0.0.0"),
            port=_get_int("RADIO_PORT", "3000"),
            allowed_origins=_parse_origins(os.getenv("FRONTEND_URL", "http://localhost:3001")),
            environment=os.getenv("RADIO_ENV", "development"),
            sound_dir=os.getenv("RADIO_SOUND_DIR", "./sound"),
            temp_dir=os.getenv("TEMP_DIR", "./temp"),
            max_upload_bytes=_get_int("RADIO_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)),
            relay_max_bytes=_get_int("RADIO_RELAY_MAX_BYTES", str(5 * 1024 * 1024)),
            grace_period_sec=_get_float("RADIO_GRACE_PERIOD_SEC", "2.0"),
            unknown_duration_sec=_get_float("RADIO_UNKNOWN_DURATION_SEC", "180"),
            clear_stops_current=_get_bool("RADIO_CLEAR_STOPS_CURRENT", "true"),
            probe_timeout_sec=_get_float("RADIO_PROBE_TIMEOUT_SEC", "10"),
            relay_timeout_sec=_get_float("RADIO_RELAY_TIMEOUT_SEC", "120"),
            relay_timeout_margin_sec=_get_float("RADIO_RELAY_TIMEOUT_MARGIN_SEC", "15"),
            download_timeout_sec=_get_float("RADIO_DOWNLOAD_TIMEOUT_SEC", "30"),
            broadcast_protocol=os.getenv("BROADCAST_PROTOCOL", "http").strip().lower(),
            broadcast_host=os.getenv("BROADCAST_HOST", os.getenv("HOST", "localhost")),
            broadcast_port=_get_int("BROADCAST_PORT", "8005"),
            broadcast_mount=os.getenv("BROADCAST_MOUNT", "voice"),
            source_user=os.getenv("ICECAST_SOURCE_USER", "source"),
            source_password=os.getenv("ICECAST_SOURCE_PASSWORD", "hackme"),
            chat_capacity=_get_int("RADIO_CHAT_CAPACITY", "100"),
            log_level=os.getenv("RADIO_LOG_LEVEL", "INFO"),
            log_file=os.getenv("RADIO_LOG_FILE") or None,
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.port < 0 or self.port > 65535:
            raise ValueError(f"Invalid port: {self.port} (must be 0-65535)")

        if self.broadcast_port < 1 or self.broadcast_port > 65535:
            raise ValueError(f"Invalid broadcast port: {self.broadcast_port} (must be 1-65535)")

        if self.broadcast_protocol not in ("http", "icecast"):
            raise ValueError(
                f"Invalid BROADCAST_PROTOCOL: {self.broadcast_protocol} (must be 'http' or 'icecast')"
            )

        if not self.sound_dir or not self.temp_dir:
            raise ValueError("RADIO_SOUND_DIR and TEMP_DIR cannot be empty")

        if self.max_upload_bytes <= 0:
            raise ValueError(f"Invalid max upload size: {self.max_upload_bytes} (must be > 0)")

        if self.relay_max_bytes <= 0:
            raise ValueError(f"Invalid relay max size: {self.relay_max_bytes} (must be > 0)")

        if self.grace_period_sec < 0:
            raise ValueError(f"Invalid grace period: {self.grace_period_sec} (must be >= 0)")

        if self.unknown_duration_sec <= 0:
            raise ValueError(f"Invalid unknown-duration wait: {self.unknown_duration_sec} (must be > 0)")

        for name in ("probe_timeout_sec", "relay_timeout_sec", "download_timeout_sec"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)} (must be > 0)")

        if self.relay_timeout_margin_sec < 0:
            raise ValueError(f"Invalid relay timeout margin: {self.relay_timeout_margin_sec} (must be >= 0)")

        if self.chat_capacity <= 0:
            raise ValueError(f"Invalid chat capacity: {self.chat_capacity} (must be > 0)")

        # Validate log level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> RadioConfig:
    """
    Load and validate configuration from environment variables.

    Returns:
        RadioConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return RadioConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise


_CONFIG: Optional[RadioConfig] = None


def get_global_config() -> RadioConfig:
    """
    Get or load the global config instance.

    Returns:
        RadioConfig instance
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG
