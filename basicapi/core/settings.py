# ==============================================================================
# SETTINGS CONFIGURATION - Environment & Command Line
# ==============================================================================
# Pydantic Settings for the bootstrap configuration surface
# Precedence: command line > environment > .env file > defaults
# ==============================================================================

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Optional, Sequence

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_SWITCH_PREFIXES = ("--", "/")


class Settings(BaseSettings):
    """
    Application Settings Configuration.

    ``Database`` and ``ConnectionString`` are the two options the benchmark
    harness passes in; they keep their external spelling and are matched
    case-insensitively, like every other option here. The remaining fields
    are operational knobs for the host process.

    Attributes:
        Database: Backend name (MySQL, PostgreSQL, SQLite, SqlServer)
        ConnectionString: Backend connection descriptor
        DISPLAY_SQL_SCRIPTS: Log the schema scripts before applying them

    Example:
        >>> settings = Settings(Database="postgresql", ConnectionString="Host=db")
        >>> settings.Database
        'postgresql'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # STORAGE BACKEND SELECTION
    # --------------------------------------------------------------------------
    Database: Optional[str] = Field(
        default=None,
        description="Storage backend: MySQL, PostgreSQL, SQLite or SqlServer"
    )
    ConnectionString: Optional[str] = Field(
        default=None,
        description="Connection descriptor, required for every backend but SQLite"
    )

    # --------------------------------------------------------------------------
    # APPLICATION SETTINGS
    # --------------------------------------------------------------------------
    APP_NAME: str = Field(
        default="BasicApi",
        description="Application display name"
    )
    HOST: str = Field(
        default="0.0.0.0",
        description="Listener bind address"
    )
    PORT: int = Field(
        default=5000,
        ge=1,
        le=65535,
        description="Listener port"
    )

    # --------------------------------------------------------------------------
    # CONNECTION POOL SETTINGS
    # --------------------------------------------------------------------------
    DB_POOL_SIZE: int = Field(
        default=10,
        ge=1,
        le=1024,
        description="Database connection pool size"
    )
    DB_MAX_OVERFLOW: int = Field(
        default=20,
        ge=0,
        le=1024,
        description="Maximum overflow connections beyond pool size"
    )
    DB_POOL_TIMEOUT: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connection pool timeout in seconds"
    )

    # --------------------------------------------------------------------------
    # DIAGNOSTICS & LOGGING
    # --------------------------------------------------------------------------
    DISPLAY_SQL_SCRIPTS: bool = Field(
        default=False,
        description="Log the create/delete schema scripts before running them"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    LOG_FORMAT: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string"
    )

    # --------------------------------------------------------------------------
    # VALIDATORS
    # --------------------------------------------------------------------------
    @field_validator("Database", "ConnectionString", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Treat empty or whitespace-only values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Upper-case the level name so ``debug`` and ``DEBUG`` both work."""
        return v.upper()


def parse_command_line(argv: Sequence[str]) -> Dict[str, str]:
    """
    Map command-line options onto settings fields.

    Accepts ``key=value``, ``--key=value``, ``/key=value`` and
    ``--key value``. Keys match field names case-insensitively. Unknown
    keys, positional arguments and a trailing switch without a value are
    ignored.

    Args:
        argv: Arguments without the program name

    Returns:
        Field name -> raw value
    """
    fields = {name.lower(): name for name in Settings.model_fields}
    values: Dict[str, str] = {}

    args = list(argv)
    while args:
        arg = args.pop(0)
        key = arg
        switch = False
        for prefix in _SWITCH_PREFIXES:
            if arg.startswith(prefix):
                key = arg[len(prefix):]
                switch = True
                break

        if "=" in key:
            key, _, value = key.partition("=")
        elif switch and args:
            value = args.pop(0)
        else:
            logger.debug(f"Ignoring command-line argument without a value '{arg}'")
            continue

        name = fields.get(key.strip().lower())
        if name is None:
            logger.debug(f"Ignoring unknown command-line option '{key}'")
            continue
        values[name] = value

    return values


def load_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """
    Build settings from the environment, overridden by command-line options.

    Args:
        argv: Command-line arguments such as ``["--Database=PostgreSQL"]``.
            ``None`` skips command-line parsing entirely.

    Returns:
        Settings: Freshly loaded settings instance
    """
    if argv is None:
        return Settings()
    # Init arguments outrank every other settings source
    return Settings(**parse_command_line(argv))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached Settings instance loaded from the environment only.

    Returns:
        Settings: Cached settings instance
    """
    return load_settings()
