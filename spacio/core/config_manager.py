"""Configuration management for the spacio client."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def _default_state_dir() -> Path:
    return Path.home() / ".local" / "share" / "spacio"


@dataclass
class SpacioConfig:
    """Client configuration.

    Defaults match the reservation backend's deployment: PHP endpoints under
    ``/api`` and wall-clock time in Asia/Jakarta.
    """

    # Backend API settings
    api_base_url: str = "http://localhost/api"
    request_timeout: float = 30.0
    listing_timeout: float = 10.0  # minutes listing / delete
    upload_timeout: float = 30.0  # minutes upload / download

    # Refresh settings
    notification_poll_interval: float = 30.0

    # Time settings
    timezone: str = "Asia/Jakarta"

    # Local state (history, session, settings)
    state_dir: Path = field(default_factory=_default_state_dir)

    # Workflow settings
    auto_cancel_on_approve: bool = False
    max_history_entries: int = 200
    max_reason_length: int = 500

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.api_base_url = self.api_base_url.rstrip("/")
        self.state_dir = Path(self.state_dir).expanduser()
        self.log_level = self.log_level.upper()

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> SpacioConfig:
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            logger.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in values.items() if k in known})

    def get_api_endpoint(self, path: str) -> str:
        """Get full API endpoint URL.

        Args:
            path: API path (e.g., "cancel_requests.php")

        Returns:
            Full URL (e.g., "http://localhost/api/cancel_requests.php")
        """
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.api_base_url}{path}"


class ConfigManager:
    """Loads configuration from defaults, an optional YAML file and the environment.

    Precedence (lowest to highest): dataclass defaults, YAML file, environment.
    """

    # env var -> (config key, converter)
    ENV_KEYS: dict[str, tuple[str, str]] = {
        "SPACIO_API_URL": ("api_base_url", "str"),
        "SPACIO_REQUEST_TIMEOUT": ("request_timeout", "float"),
        "SPACIO_POLL_INTERVAL": ("notification_poll_interval", "float"),
        "SPACIO_TIMEZONE": ("timezone", "str"),
        "SPACIO_STATE_DIR": ("state_dir", "str"),
        "SPACIO_LOG_LEVEL": ("log_level", "str"),
        "SPACIO_AUTO_CANCEL_ON_APPROVE": ("auto_cancel_on_approve", "bool"),
    }

    def __init__(
        self,
        env_file_path: Optional[Path] = None,
        config_file_path: Optional[Path] = None,
    ) -> None:
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
            config_file_path: Optional YAML file; SPACIO_CONFIG_FILE is used when omitted
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"
        config_env = os.environ.get("SPACIO_CONFIG_FILE")
        self.config_file_path = config_file_path or (Path(config_env) if config_env else None)

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def load_yaml_file(self) -> dict[str, Any]:
        """Read the optional YAML config file.

        Returns:
            Mapping from the file, or an empty dict when absent or invalid
        """
        path = self.config_file_path
        if path is None or not path.exists():
            return {}

        try:
            with path.open("r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Failed to read config file %s: %s", path, exc)
            return {}

        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning("Config file %s must contain a mapping; ignoring", path)
            return {}
        return data

    def build_config_from_env(self) -> dict[str, Any]:
        """Collect configuration overrides from SPACIO_* environment variables.

        Invalid numeric or boolean values are logged and ignored.
        """
        cfg: dict[str, Any] = {}
        for env_key, (cfg_key, kind) in self.ENV_KEYS.items():
            raw = os.environ.get(env_key)
            if raw is None or raw == "":
                continue

            if kind == "float":
                try:
                    cfg[cfg_key] = float(raw)
                except ValueError:
                    logger.warning("Invalid %s=%r; ignoring", env_key, raw)
            elif kind == "bool":
                lowered = raw.strip().lower()
                if lowered in _TRUTHY:
                    cfg[cfg_key] = True
                elif lowered in _FALSY:
                    cfg[cfg_key] = False
                else:
                    logger.warning("Invalid %s=%r; ignoring", env_key, raw)
            else:
                cfg[cfg_key] = raw
        return cfg

    def build_config(self) -> SpacioConfig:
        """Load .env, YAML and environment into a SpacioConfig.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        values = self.load_yaml_file()
        values.update(self.build_config_from_env())
        config = SpacioConfig.from_mapping(values)
        logger.debug(
            "Resolved configuration: api_base_url=%s timezone=%s poll=%ss",
            config.api_base_url,
            config.timezone,
            config.notification_poll_interval,
        )
        return config
