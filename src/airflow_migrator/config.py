"""
Runtime configuration.

Values come from the environment, optionally seeded from a ``.env`` file in
the working directory or the config directory (real environment variables
always win).

    AIRFLOW_MIGRATOR_CONFIG           config directory (default ~/.config/airflow-migrator)
    AIRFLOW_MIGRATOR_CONNECT_TIMEOUT  database connect timeout in seconds (default 10)
    AIRFLOW_MIGRATOR_LOG_LEVEL        level for module loggers (default INFO)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

CONFIG_DIR_ENV = "AIRFLOW_MIGRATOR_CONFIG"
CONNECT_TIMEOUT_ENV = "AIRFLOW_MIGRATOR_CONNECT_TIMEOUT"
LOG_LEVEL_ENV = "AIRFLOW_MIGRATOR_LOG_LEVEL"
PASSWORD_ENV = "AIRFLOW_MIGRATOR_PASSWORD"

DEFAULT_CONNECT_TIMEOUT = 10


@dataclass
class MigratorConfig:
    """Resolved configuration for one process."""
    config_dir: Path
    audit_log_dir: Path
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    log_level: str = "INFO"


def get_config_dir() -> Path:
    """Return the configuration directory (not created)."""
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "airflow-migrator"


def ensure_config_dir(config_dir: Optional[Path] = None) -> Path:
    """Create the config directory with owner-only permissions."""
    config_dir = Path(config_dir) if config_dir else get_config_dir()
    config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    return config_dir


def load_config() -> MigratorConfig:
    """Load ``.env`` files and build a ``MigratorConfig``."""
    load_dotenv(override=False)
    config_dir = get_config_dir()
    env_file = config_dir / ".env"
    if env_file.is_file():
        load_dotenv(env_file, override=False)
        # The config dir itself may be overridden by the file.
        config_dir = get_config_dir()

    try:
        connect_timeout = int(os.getenv(CONNECT_TIMEOUT_ENV, str(DEFAULT_CONNECT_TIMEOUT)))
    except ValueError:
        connect_timeout = DEFAULT_CONNECT_TIMEOUT

    return MigratorConfig(
        config_dir=config_dir,
        audit_log_dir=config_dir / "audit_logs",
        connect_timeout=connect_timeout,
        log_level=os.getenv(LOG_LEVEL_ENV, "INFO").upper(),
    )
