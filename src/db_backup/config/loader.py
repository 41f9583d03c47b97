"""TOML configuration loader with environment overrides.

Usage:
    from db_backup.config.loader import load_config

    config = load_config(Path("backup.toml"), env_prefix="DB_BACKUP_")
"""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from db_backup.config.models import PipelineConfig
from db_backup.errors import ConfigError

DEFAULT_CONFIG_FILE = "backup.toml"
DEFAULT_ENV_PREFIX = "DB_BACKUP_"

# Environment variable suffix -> top-level config key
_ENV_OVERRIDES: dict[str, str] = {
    "TOLERANCE_PCT": "tolerance_pct",
    "RETRY_COUNT": "retry_count",
    "RETRY_DELAY_SECONDS": "retry_delay_seconds",
    "RETENTION_DAYS": "retention_days",
    "REQUIRED_FREE_SPACE_MB": "required_free_space_mb",
    "TRANSFER_METHOD": "transfer_method",
}


def _apply_env_overrides(data: dict[str, Any], env_prefix: str) -> None:
    """Merge ``{env_prefix}<NAME>`` variables into the raw config dict."""
    for suffix, key in _ENV_OVERRIDES.items():
        value = os.environ.get(f"{env_prefix}{suffix}")
        if value is not None:
            data[key] = value

    webhook = os.environ.get(f"{env_prefix}WEBHOOK_URL")
    if webhook:
        data.setdefault("notifications", {})["webhook_url"] = webhook


def _resolve_passwords(node: Any) -> None:
    """Fill ``password`` from ``password_env`` wherever it appears."""
    if isinstance(node, dict):
        env_name = node.get("password_env")
        if env_name and not node.get("password"):
            password = os.environ.get(env_name)
            if password is None:
                raise ConfigError(
                    f"Environment variable '{env_name}' referenced by "
                    f"password_env is not set"
                )
            node["password"] = password
        for value in node.values():
            _resolve_passwords(value)
    elif isinstance(node, list):
        for item in node:
            _resolve_passwords(item)


def load_config(
    config_path: Path | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> PipelineConfig:
    """Load pipeline configuration from a TOML file.

    Args:
        config_path: Path to the TOML file (default: ``./backup.toml``).
        env_prefix: Prefix for environment overrides (e.g. ``DB_BACKUP_``
            reads ``DB_BACKUP_TOLERANCE_PCT``).

    Returns:
        Validated ``PipelineConfig``.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigError: If the TOML is malformed or fails validation.
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_FILE} with [[datasets]] and [verification] tables."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    _apply_env_overrides(data, env_prefix)
    _resolve_passwords(data)

    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e
