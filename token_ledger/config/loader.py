"""
Configuration management and loading.

Handles the YAML settings file and environment overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from token_ledger.core.grouping import DEFAULT_PROVIDERS
from token_ledger.core.periods import DEFAULT_WINDOW
from token_ledger.storage.db import DEFAULT_DB_PATH

CONFIG_ENV_VAR = "TOKEN_LEDGER_CONFIG"
DB_ENV_VAR = "TOKEN_LEDGER_DB"


def _default_providers() -> Dict[str, Tuple[str, ...]]:
    return {name: tuple(keywords) for name, keywords in DEFAULT_PROVIDERS.items()}


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""
    database: str = DEFAULT_DB_PATH
    window: int = DEFAULT_WINDOW
    providers: Dict[str, Tuple[str, ...]] = field(default_factory=_default_providers)

    def __post_init__(self):
        """Validate configuration values."""
        if not self.database:
            raise ValueError("database must not be empty")
        if self.window < 1:
            raise ValueError("window must be >= 1")


def default_config() -> LedgerConfig:
    return LedgerConfig()


def load_config(path: str) -> LedgerConfig:
    """Load and validate ledger configuration from a YAML file.

    Unknown keys are rejected so that typos do not silently fall back
    to defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'database', 'window', 'providers'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database = raw_config.get('database', DEFAULT_DB_PATH)
    if not isinstance(database, str) or not database.strip():
        raise ValueError("'database' must be a non-empty string")

    window = raw_config.get('window', DEFAULT_WINDOW)
    if isinstance(window, bool) or not isinstance(window, int) or window < 1:
        raise ValueError("'window' must be an integer >= 1")

    if 'providers' in raw_config:
        providers = _parse_providers(raw_config['providers'])
    else:
        providers = _default_providers()

    return LedgerConfig(database=database, window=window, providers=providers)


def _parse_providers(data) -> Dict[str, Tuple[str, ...]]:
    """Parse and validate the providers section.

    Args:
        data: Mapping of provider name to a list of keywords

    Returns:
        Provider keywords, lowercased, in file order

    Raises:
        ValueError: If the section is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("'providers' must be a dictionary")

    providers = {}
    for name, keywords in data.items():
        path = f"providers.{name}"
        if not isinstance(keywords, list) or not keywords:
            raise ValueError(f"'{path}' must be a non-empty list of keywords")
        for keyword in keywords:
            if not isinstance(keyword, str) or not keyword.strip():
                raise ValueError(f"Keywords in '{path}' must be non-empty strings")
        providers[str(name)] = tuple(k.strip().lower() for k in keywords)
    return providers


def resolve_config(path: Optional[str] = None) -> LedgerConfig:
    """Load the config the CLI should use.

    The explicit path wins, then $TOKEN_LEDGER_CONFIG, then defaults.
    $TOKEN_LEDGER_DB overrides the database path in every case.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    config = load_config(path) if path else default_config()

    db_override = os.environ.get(DB_ENV_VAR)
    if db_override:
        config = LedgerConfig(
            database=db_override,
            window=config.window,
            providers=config.providers
        )
    return config
