"""
Engine Configuration Schema.

Defines the settings the inventory kernel needs at runtime together with
sensible defaults. Values come from a YAML file, a dict, or the defaults,
with a small set of environment overrides applied last:

    INVENTORY_DATABASE_URL   -> database_url
    INVENTORY_LOG_LEVEL      -> log_level
    INVENTORY_MAX_RETRIES    -> max_retries
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Self

import yaml

from inventory_kernel.logging_config import get_logger

logger = get_logger("config")


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_DOCUMENT_PREFIXES = {
    "order": "ORD",
    "purchase_order": "PO",
    "goods_receipt": "GRN",
    "transfer": "TRF",
    "adjustment": "ADJ",
}

_ENV_OVERRIDES = {
    "INVENTORY_DATABASE_URL": ("database_url", str),
    "INVENTORY_LOG_LEVEL": ("log_level", str),
    "INVENTORY_MAX_RETRIES": ("max_retries", int),
}


@dataclass
class EngineConfig:
    """
    Configuration for the inventory engine.

    ``max_retries`` bounds the optimistic retry loop around stock-row
    contention; once exhausted the operation fails with ContentionError.
    ``lock_timeout_seconds`` bounds how long a PostgreSQL transaction waits
    on a row lock and ``sqlite_busy_timeout_seconds`` how long SQLite waits
    for the database write lock.
    """

    database_url: str = "sqlite:///inventory.db"
    echo: bool = False
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    lock_timeout_seconds: float = 5.0
    sqlite_busy_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    document_prefixes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_DOCUMENT_PREFIXES)
    )
    number_width: int = 6

    def __post_init__(self):
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds cannot be negative")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.sqlite_busy_timeout_seconds <= 0:
            raise ValueError("sqlite_busy_timeout_seconds must be positive")
        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, "
                f"got '{self.log_level}'"
            )
        unknown = set(self.document_prefixes) - set(DEFAULT_DOCUMENT_PREFIXES)
        if unknown:
            raise ValueError(f"Unknown document prefix keys: {sorted(unknown)}")
        self.document_prefixes = {**DEFAULT_DOCUMENT_PREFIXES, **self.document_prefixes}
        if self.number_width < 1:
            raise ValueError("number_width must be positive")

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def prefix_for(self, document: str) -> str:
        return self.document_prefixes[document]

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with default values."""
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Create config from a mapping (e.g. a parsed YAML document)."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        logger.info(
            "engine_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**dict(data))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """
    Build the active EngineConfig.

    The YAML file (when given) may hold the settings at top level or under an
    ``inventory`` key. Environment overrides win over file values.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}
    if path is not None:
        raw = load_yaml_file(Path(path))
        data = dict(raw.get("inventory", raw))

    for var, (key, cast) in _ENV_OVERRIDES.items():
        if var in env and env[var] != "":
            try:
                data[key] = cast(env[var])
            except ValueError as exc:
                raise ValueError(f"Invalid value for {var}: {env[var]!r}") from exc

    config = EngineConfig.from_dict(data)
    logger.info(
        "engine_config_loaded",
        extra={
            "source": str(path) if path else "defaults",
            "dialect": config.database_url.split(":", 1)[0],
            "max_retries": config.max_retries,
            "log_level": config.log_level,
        },
    )
    return config
