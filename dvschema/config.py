"""
Configuration management for dvschema.

Loads $DVSCHEMA_HOME/config.yaml (default ~/.config/dvschema) and the
optional env_file it names. The access token is never stored in the
YAML; it is read from the environment variable named by token_env.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from dvschema import constants
from dvschema.errors import ConfigError
from dvschema.retry import RetryPolicy
from dvschema.sources import ColumnMapping

HOME_ENV = "DVSCHEMA_HOME"
DEFAULT_HOME = "~/.config/dvschema"
DEFAULT_TOKEN_ENV = "DVSCHEMA_ACCESS_TOKEN"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS = ("pretty", "structured")


def get_dvschema_home() -> Path:
    """Config directory: $DVSCHEMA_HOME, else ~/.config/dvschema."""
    home = os.environ.get(HOME_ENV)
    if home:
        return Path(home).expanduser()
    return Path(DEFAULT_HOME).expanduser()


@dataclass
class DvSchemaConfig:
    """Complete dvschema configuration."""
    environment_url: Optional[str] = None
    solution: Optional[str] = None
    publisher_prefix: Optional[str] = None
    token_env: str = DEFAULT_TOKEN_ENV
    timeout_seconds: float = constants.DEFAULT_TIMEOUT_SECONDS
    max_retries: int = constants.MAX_RETRY_ATTEMPTS
    retry_base_delay: float = constants.RETRY_BASE_DELAY
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    output_csv: str = constants.DEFAULT_OUTPUT_CSV
    env_file: Optional[str] = None
    columns: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DvSchemaConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config key(s): {', '.join(unknown)}")
        config = cls(**{k: v for k, v in data.items() if v is not None})
        config.validate()
        return config

    def validate(self) -> None:
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got '{self.log_level}'")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {', '.join(LOG_FORMATS)}, got '{self.log_format}'")
        if self.max_retries < 0:
            raise ConfigError("max_retries cannot be negative")
        if self.retry_base_delay < 0:
            raise ConfigError("retry_base_delay cannot be negative")
        if self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be positive")
        if not isinstance(self.columns, dict):
            raise ConfigError("columns must be a mapping of column key to header name")
        # Raises ConfigError for unknown column keys
        self.column_mapping()

    def column_mapping(self) -> ColumnMapping:
        return ColumnMapping.from_dict(self.columns)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, base_delay=self.retry_base_delay)

    def access_token(self) -> Optional[str]:
        return os.environ.get(self.token_env)


def default_config_dict(home: Path) -> Dict[str, Any]:
    """Defaults written by `dvschema init`."""
    return {
        "environment_url": "https://yourorg.crm.dynamics.com",
        "solution": None,
        "publisher_prefix": None,
        "token_env": DEFAULT_TOKEN_ENV,
        "timeout_seconds": constants.DEFAULT_TIMEOUT_SECONDS,
        "max_retries": constants.MAX_RETRY_ATTEMPTS,
        "retry_base_delay": constants.RETRY_BASE_DELAY,
        "log_level": "INFO",
        "log_format": "pretty",
        "log_file": None,
        "output_csv": constants.DEFAULT_OUTPUT_CSV,
        "env_file": str(home / ".env"),
        "columns": {},
    }


def load_config(config_path: Optional[Path] = None) -> DvSchemaConfig:
    """
    Load dvschema configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $DVSCHEMA_HOME/config.yaml

    Returns:
        DvSchemaConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is malformed or invalid
    """
    if config_path is None:
        config_path = get_dvschema_home() / constants.DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"dvschema config.yaml not found at {config_path}. Run 'dvschema init' to create one."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")

    config = DvSchemaConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
