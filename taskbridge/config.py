"""Bridge configuration from environment variables and an optional env file.

Reads from env vars first, then falls back to values in the file named by
TASKBRIDGE_ENV (same KEY=value format the deploy scripts write).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.devin.ai/v1"


@dataclass
class Config:
    """Bridge configuration."""

    # Credentials
    discord_bot_token: str = ""
    api_key: str = ""

    # Task API
    api_base: str = DEFAULT_API_BASE
    request_timeout: int = 10

    # Database
    db_path: str = "data/taskbridge.db"

    # Monitoring (seconds)
    poll_interval: int = 15
    reconnect_delay: int = 5
    resume_monitoring: bool = False

    # Env file path
    env_file: str = ""

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables, falling back to TASKBRIDGE_ENV."""
        config = cls()

        env_file = os.environ.get("TASKBRIDGE_ENV", "")
        file_values: dict[str, str] = {}
        if env_file and Path(env_file).exists():
            config.env_file = env_file
            file_values = read_env_file(env_file)
            logger.info("Loaded config from %s", env_file)

        # Environment variables win over the env file
        values = {**file_values, **os.environ}

        config.discord_bot_token = values.get("DISCORD_BOT_TOKEN", "")
        config.api_key = values.get("DEVIN_API_KEY", "")
        config.api_base = values.get("TASK_API_BASE") or config.api_base
        config.db_path = values.get("TASKBRIDGE_DB_PATH") or config.db_path

        config.poll_interval = _int_value(values, "POLL_INTERVAL", config.poll_interval)
        config.request_timeout = _int_value(values, "REQUEST_TIMEOUT", config.request_timeout)
        config.reconnect_delay = _int_value(values, "RECONNECT_DELAY", config.reconnect_delay)

        config.resume_monitoring = values.get("RESUME_MONITORING", "false").lower() == "true"

        return config

    def missing(self) -> list[str]:
        """Return the names of required settings that are not set."""
        missing: list[str] = []
        if not self.discord_bot_token:
            missing.append("DISCORD_BOT_TOKEN")
        if not self.api_key:
            missing.append("DEVIN_API_KEY")
        return missing


def _int_value(values: dict[str, str], name: str, default: int) -> int:
    try:
        return int(values.get(name, str(default)))
    except ValueError:
        logger.warning("Invalid %s, using default: %d", name, default)
        return default


def read_env_file(path: str) -> dict[str, str]:
    """Parse a KEY=value file, skipping blanks and # comments."""
    env: dict[str, str] = {}
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, val = line.split("=", 1)
                env[key.strip()] = val.strip().strip('"').strip("'")
    return env
