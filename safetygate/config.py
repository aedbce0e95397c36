"""
Configuration Management
========================

Handles loading gate configuration from environment variables and config files.

Precedence (highest first):
1. Environment variables (SAFETYGATE_*, a local .env file is honoured)
2. Local config file (safetygate_config.json)
3. Default values
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Any
from dataclasses import dataclass, asdict, fields

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "safetygate_config.json"
ENV_PREFIX = "SAFETYGATE_"

DEFAULT_PORT = 8679


@dataclass
class SafetyConfig:
    """Safety gate configuration."""
    # Durable storage for enforcement tokens
    data_dir: str = ".safetygate-data"
    db_url: Optional[str] = None

    # Enforcement token lifetime
    session_ttl_hours: float = 2.0

    # Intent clarification
    intent_ready_threshold: int = 70
    intent_max_rounds: int = 5

    # Attempt tracking
    attempt_similarity_threshold: float = 0.7
    attempt_failure_limit: int = 2

    # Context loading
    context_read_timeout_seconds: float = 2.0
    context_max_bytes: int = 512_000
    state_file_name: str = ".safetygate.json"
    context_dir_name: str = ".safetygate"

    # Optional directory of guidance modules (00-core.md, 02-auth.md, ...)
    content_dir: Optional[str] = None

    # HTTP server
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_hours * 3600

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "SafetyConfig":
        """
        Load configuration from defaults, the config file and the environment.

        Args:
            config_path: Optional explicit config file (defaults to
                safetygate_config.json in the working directory)

        Returns:
            SafetyConfig with every source applied
        """
        load_dotenv()

        config: dict[str, Any] = {}

        path = config_path or Path(CONFIG_FILENAME)
        if path.exists():
            try:
                with open(path, "r") as f:
                    file_config = json.load(f)
                if isinstance(file_config, dict):
                    config.update(file_config)
                else:
                    logger.warning("Ignoring %s: top level must be an object", path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", path, e)

        for f in fields(cls):
            env_value = os.environ.get(ENV_PREFIX + f.name.upper())
            if env_value:
                config[f.name] = env_value

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, data: dict) -> "SafetyConfig":
        """Build a config, coercing values and falling back to defaults on bad input."""
        defaults = cls()
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            default = getattr(defaults, f.name)
            value = data[f.name]
            try:
                kwargs[f.name] = _coerce(value, default)
            except (TypeError, ValueError):
                logger.warning("Invalid value for %s: %r (using %r)", f.name, value, default)
        return cls(**kwargs)


def _coerce(value: Any, default: Any) -> Any:
    """Convert a raw config value to the type of its default."""
    if value is None:
        return None
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)
