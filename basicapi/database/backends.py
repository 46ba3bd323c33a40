# ==============================================================================
# BACKEND SELECTOR - Storage Backend Choice & Validation
# ==============================================================================
# Maps the ``Database`` setting to one of four backends and validates the
# connection descriptor for it. Pure: never opens a connection.
# ==============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.engine import URL

from basicapi.core.exceptions import ConfigurationError
from basicapi.database.descriptor import (
    ENLIST,
    NO_RESET_ON_CLOSE,
    ConnectionDescriptor,
    parse_connection_string,
)

logger = logging.getLogger(__name__)


# Fixed store for the embedded backend, relative to the working directory
SQLITE_DATABASE_FILE = "BasicApi.db"

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

# SQLAlchemy dialect -> drivers usable with the asyncio extension
ASYNC_DRIVERS: Dict[str, Tuple[str, ...]] = {
    "postgresql": ("asyncpg", "psycopg"),
    "mysql": ("aiomysql", "asyncmy"),
    "mssql": ("aioodbc",),
}


class DatabaseBackend(str, Enum):
    """
    Supported storage backends.

    Values are the canonical names accepted by the ``Database`` setting
    (matched case-insensitively).
    """
    SQLITE = "SQLite"
    MYSQL = "MySQL"
    POSTGRESQL = "PostgreSQL"
    SQLSERVER = "SqlServer"

    @classmethod
    def parse(cls, name: str) -> "DatabaseBackend":
        """
        Resolve a backend name.

        Raises:
            ConfigurationError: If the name is not a supported backend
        """
        wanted = name.strip().upper()
        for backend in cls:
            if backend.value.upper() == wanted:
                return backend
        raise ConfigurationError(
            f"Application does not support database type {name}.",
            setting="Database",
        )

    @property
    def is_embedded(self) -> bool:
        """The embedded backend owns its whole store."""
        return self is DatabaseBackend.SQLITE


@dataclass(frozen=True)
class BackendConfiguration:
    """
    Validated backend choice.

    Attributes:
        backend: Selected backend
        url: Async driver URL
        connection_string: Descriptor as configured (``None`` for SQLite)
        database_path: Store file for the embedded backend
    """
    backend: DatabaseBackend
    url: URL
    connection_string: Optional[str] = None
    database_path: Optional[Path] = None

    @property
    def is_embedded(self) -> bool:
        return self.backend.is_embedded


# ==============================================================================
# PER-BACKEND VALIDATION
# ==============================================================================

def _async_drivername(descriptor: ConnectionDescriptor, backend: DatabaseBackend, default: str) -> str:
    """
    Keep a URL descriptor's driver if async-capable, else use ``default``.

    Raises:
        ConfigurationError: Dialect differs from the backend, or the named
            driver has no asyncio support
    """
    if descriptor.drivername is None:
        return default

    dialect, _, driver = descriptor.drivername.partition("+")
    expected = default.partition("+")[0]
    if dialect != expected:
        raise ConfigurationError(
            f"Connection URL dialect '{dialect}' does not match database type {backend.value}.",
            setting="ConnectionString",
        )
    if not driver:
        return default
    if driver not in ASYNC_DRIVERS.get(dialect, ()):
        raise ConfigurationError(
            f"Driver '{driver}' cannot be used for {backend.value}; "
            f"use one of: {', '.join(ASYNC_DRIVERS.get(dialect, ()))}.",
            setting="ConnectionString",
        )
    return descriptor.drivername


def configure_sqlite(connection_string: Optional[str]) -> BackendConfiguration:
    """SQLite always uses the fixed local file; any descriptor is ignored."""
    path = Path.cwd() / SQLITE_DATABASE_FILE
    return BackendConfiguration(
        backend=DatabaseBackend.SQLITE,
        url=URL.create("sqlite+aiosqlite", database=str(path)),
        connection_string=None,
        database_path=path,
    )


def configure_mysql(connection_string: str) -> BackendConfiguration:
    descriptor = parse_connection_string(connection_string)
    drivername = _async_drivername(descriptor, DatabaseBackend.MYSQL, "mysql+aiomysql")
    return BackendConfiguration(
        backend=DatabaseBackend.MYSQL,
        url=descriptor.to_url(drivername, passthrough={"charset": "charset"}),
        connection_string=connection_string,
    )


def configure_postgresql(connection_string: str) -> BackendConfiguration:
    """
    PostgreSQL connections are pooled and reused across requests, so the
    descriptor must carry ``No Reset On Close=true`` and ``Enlist=false``.
    Absent flags take the driver defaults (false and true) and fail.
    """
    descriptor = parse_connection_string(connection_string)

    if not descriptor.flag(NO_RESET_ON_CLOSE, default=False):
        raise ConfigurationError(
            "No Reset On Close=true must be specified for PostgreSQL.",
            setting="ConnectionString",
        )
    if descriptor.flag(ENLIST, default=True):
        raise ConfigurationError(
            "Enlist=false must be specified for PostgreSQL.",
            setting="ConnectionString",
        )

    drivername = _async_drivername(descriptor, DatabaseBackend.POSTGRESQL, "postgresql+asyncpg")
    return BackendConfiguration(
        backend=DatabaseBackend.POSTGRESQL,
        url=descriptor.to_url(drivername),
        connection_string=connection_string,
    )


def configure_sqlserver(connection_string: str) -> BackendConfiguration:
    descriptor = parse_connection_string(connection_string)
    drivername = _async_drivername(descriptor, DatabaseBackend.SQLSERVER, "mssql+aioodbc")
    url = descriptor.to_url(
        drivername,
        passthrough={
            "driver": "driver",
            "encrypt": "Encrypt",
            "trustservercertificate": "TrustServerCertificate",
        },
        query={"driver": DEFAULT_ODBC_DRIVER},
    )
    return BackendConfiguration(
        backend=DatabaseBackend.SQLSERVER,
        url=url,
        connection_string=connection_string,
    )


_VALIDATORS: Dict[DatabaseBackend, Callable[[Optional[str]], BackendConfiguration]] = {
    DatabaseBackend.SQLITE: configure_sqlite,
    DatabaseBackend.MYSQL: configure_mysql,
    DatabaseBackend.POSTGRESQL: configure_postgresql,
    DatabaseBackend.SQLSERVER: configure_sqlserver,
}


def _check_validators(validators: Dict[DatabaseBackend, Callable]) -> None:
    """Every backend needs a validator; checked at import."""
    missing = set(DatabaseBackend) - set(validators)
    if missing:
        raise RuntimeError(f"No validator for backends: {sorted(b.value for b in missing)}")


_check_validators(_VALIDATORS)


# ==============================================================================
# SELECTION
# ==============================================================================

def select_backend(
    database: Optional[str],
    connection_string: Optional[str],
) -> BackendConfiguration:
    """
    Select and validate the storage backend.

    Args:
        database: Backend name; absent or empty selects SQLite
        connection_string: Connection descriptor, required whenever a
            backend name is given

    Returns:
        BackendConfiguration: Validated choice with its driver URL

    Raises:
        ConfigurationError: Missing descriptor, unsupported backend or
            violated backend-specific connection flags

    Example:
        >>> select_backend(None, None).backend
        <DatabaseBackend.SQLITE: 'SQLite'>
    """
    if not database or not database.strip():
        configuration = configure_sqlite(None)
    else:
        if not connection_string or not connection_string.strip():
            raise ConfigurationError(
                f"Connection string must be specified for {database}.",
                setting="ConnectionString",
            )
        backend = DatabaseBackend.parse(database)
        configuration = _VALIDATORS[backend](connection_string)

    logger.info(
        f"Selected database backend: {configuration.backend.value} "
        f"({configuration.url.render_as_string(hide_password=True)})"
    )
    return configuration
