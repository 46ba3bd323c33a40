# ==============================================================================
# BACKEND SELECTOR TESTS
# ==============================================================================
# Backend name resolution, connection descriptor validation and driver URLs
# ==============================================================================

from pathlib import Path

import pytest
from sqlalchemy.engine import URL

from basicapi.core.exceptions import ConfigurationError
from basicapi.core.settings import Settings
from basicapi.database.backends import (
    DEFAULT_ODBC_DRIVER,
    SQLITE_DATABASE_FILE,
    BackendConfiguration,
    DatabaseBackend,
    _VALIDATORS,
    _check_validators,
    configure_sqlite,
    select_backend,
)
from basicapi.database.descriptor import parse_connection_string
from basicapi.database.factory import create_storage

PG_CONNECTION_STRING = (
    "Host=db;Port=5432;Database=pets;Username=bench;Password=secret;"
    "No Reset On Close=true;Enlist=false"
)
MYSQL_CONNECTION_STRING = "Server=mysql;Port=3306;Database=pets;User Id=root;Pwd=pw"
SQLSERVER_CONNECTION_STRING = (
    "Server=tcp:sql,1433;Initial Catalog=pets;User Id=sa;Password=pw;"
    "TrustServerCertificate=True"
)


class TestBackendNames:
    """Backend name resolution."""

    @pytest.mark.parametrize("name,connection_string,expected", [
        ("MySQL", MYSQL_CONNECTION_STRING, DatabaseBackend.MYSQL),
        ("mysql", MYSQL_CONNECTION_STRING, DatabaseBackend.MYSQL),
        ("MYSQL", MYSQL_CONNECTION_STRING, DatabaseBackend.MYSQL),
        ("PostgreSQL", PG_CONNECTION_STRING, DatabaseBackend.POSTGRESQL),
        ("postgresql", PG_CONNECTION_STRING, DatabaseBackend.POSTGRESQL),
        ("POSTGRESQL", PG_CONNECTION_STRING, DatabaseBackend.POSTGRESQL),
        ("SqlServer", SQLSERVER_CONNECTION_STRING, DatabaseBackend.SQLSERVER),
        ("sqlserver", SQLSERVER_CONNECTION_STRING, DatabaseBackend.SQLSERVER),
        ("SQLite", "Data Source=ignored.db", DatabaseBackend.SQLITE),
        ("sqlite", "Data Source=ignored.db", DatabaseBackend.SQLITE),
    ])
    def test_names_match_case_insensitively(self, name, connection_string, expected):
        """Any casing of a supported name selects that backend."""
        configuration = select_backend(name, connection_string)
        assert configuration.backend is expected

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_missing_name_selects_sqlite(self, name, workdir: Path):
        """No backend name means the embedded store, descriptor or not."""
        configuration = select_backend(name, None)

        assert configuration.backend is DatabaseBackend.SQLITE
        assert configuration.is_embedded
        assert configuration.database_path == workdir / SQLITE_DATABASE_FILE
        assert configuration.url.drivername == "sqlite+aiosqlite"

    def test_sqlite_ignores_descriptor(self, workdir: Path):
        """The SQLite store is always the fixed local file."""
        configuration = select_backend("SQLite", "Data Source=/elsewhere/other.db")
        assert configuration.database_path == workdir / SQLITE_DATABASE_FILE
        assert configuration.connection_string is None

    def test_unsupported_name(self):
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend("Oracle", "Host=db")

        assert exc_info.value.message == "Application does not support database type Oracle."
        assert exc_info.value.details["setting"] == "Database"

    @pytest.mark.parametrize("name", ["MySQL", "PostgreSQL", "SqlServer", "SQLite", "Oracle"])
    @pytest.mark.parametrize("connection_string", [None, "", "  "])
    def test_name_without_connection_string(self, name, connection_string):
        """A named backend always needs a descriptor."""
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend(name, connection_string)

        assert exc_info.value.message == f"Connection string must be specified for {name}."

    def test_selection_never_connects(self):
        """Selecting an unreachable server still succeeds."""
        configuration = select_backend(
            "PostgreSQL",
            "Host=does-not-exist.invalid;Database=pets;No Reset On Close=true;Enlist=false",
        )
        assert configuration.url.host == "does-not-exist.invalid"


class TestPostgreSQLFlags:
    """Pooling flags required by PostgreSQL."""

    @pytest.mark.parametrize("connection_string", [
        "Host=db;Enlist=false",
        "Host=db;No Reset On Close=false;Enlist=false",
        "Host=db;NoResetOnClose=no;Enlist=false",
    ])
    def test_no_reset_on_close_required(self, connection_string):
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend("PostgreSQL", connection_string)

        assert exc_info.value.message == "No Reset On Close=true must be specified for PostgreSQL."

    @pytest.mark.parametrize("connection_string", [
        "Host=db;No Reset On Close=true",
        "Host=db;No Reset On Close=true;Enlist=true",
    ])
    def test_enlist_must_be_false(self, connection_string):
        """Enlist defaults to true, so leaving it out also fails."""
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend("PostgreSQL", connection_string)

        assert exc_info.value.message == "Enlist=false must be specified for PostgreSQL."

    def test_flag_keys_are_case_and_space_insensitive(self):
        configuration = select_backend("postgresql", "HOST=db;noresetonclose=TRUE;ENLIST=False")
        assert configuration.backend is DatabaseBackend.POSTGRESQL

    def test_flags_not_sent_to_driver(self):
        configuration = select_backend("PostgreSQL", PG_CONNECTION_STRING)
        url = configuration.url

        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db"
        assert url.port == 5432
        assert url.database == "pets"
        assert url.username == "bench"
        assert url.password == "secret"
        assert dict(url.query) == {}

    def test_url_form(self):
        configuration = select_backend(
            "PostgreSQL",
            "postgresql://bench:secret@db:5433/pets?no_reset_on_close=true&enlist=false",
        )

        assert configuration.url.drivername == "postgresql+asyncpg"
        assert configuration.url.port == 5433
        assert dict(configuration.url.query) == {}

    def test_url_form_flags_checked(self):
        with pytest.raises(ConfigurationError):
            select_backend("PostgreSQL", "postgresql://bench@db/pets?enlist=false")

    def test_invalid_flag_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend("PostgreSQL", "Host=db;No Reset On Close=maybe;Enlist=false")

        assert "must be true or false" in exc_info.value.message

    def test_unknown_options_are_dropped(self):
        configuration = select_backend(
            "PostgreSQL", PG_CONNECTION_STRING + ";Maximum Pool Size=100"
        )
        assert "maximumpoolsize" not in configuration.url.query


class TestDriverUrls:
    """Async driver URLs for the server backends."""

    def test_mysql(self):
        url = select_backend("MySQL", MYSQL_CONNECTION_STRING + ";CharSet=utf8mb4").url

        assert url.drivername == "mysql+aiomysql"
        assert url.host == "mysql"
        assert url.port == 3306
        assert url.username == "root"
        assert url.password == "pw"
        assert url.query["charset"] == "utf8mb4"

    def test_sqlserver(self):
        url = select_backend("SqlServer", SQLSERVER_CONNECTION_STRING).url

        assert url.drivername == "mssql+aioodbc"
        assert url.host == "sql"
        assert url.port == 1433
        assert url.database == "pets"
        assert url.query["driver"] == DEFAULT_ODBC_DRIVER
        assert url.query["TrustServerCertificate"] == "True"

    def test_url_dialect_must_match(self):
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend("MySQL", "postgresql://bench@db/pets")

        assert "does not match database type MySQL" in exc_info.value.message

    def test_url_driver_kept(self):
        url = select_backend("MySQL", "mysql+asyncmy://root:pw@mysql/pets").url
        assert url.drivername == "mysql+asyncmy"

    @pytest.mark.parametrize("database,connection_string", [
        ("PostgreSQL", "postgresql+psycopg2://u:p@h/db?no_reset_on_close=true&enlist=false"),
        ("MySQL", "mysql+pymysql://root:pw@mysql/pets"),
        ("SqlServer", "mssql+pyodbc://sa:pw@sql/pets"),
    ])
    def test_sync_driver_rejected(self, database, connection_string):
        """Only drivers with asyncio support pass selection."""
        with pytest.raises(ConfigurationError) as exc_info:
            select_backend(database, connection_string)

        assert "cannot be used for" in exc_info.value.message

    def test_storage_rejects_sync_driver(self, settings: Settings, workdir: Path):
        """A sync driver that bypasses selection still fails as configuration."""
        configuration = BackendConfiguration(
            backend=DatabaseBackend.SQLITE,
            url=URL.create("sqlite+pysqlite", database=str(workdir / "sync.db")),
            database_path=workdir / "sync.db",
        )

        with pytest.raises(ConfigurationError) as exc_info:
            create_storage(configuration, settings)

        assert exc_info.value.details["setting"] == "ConnectionString"

    def test_every_backend_has_a_validator(self):
        _check_validators(_VALIDATORS)

        with pytest.raises(RuntimeError, match="No validator"):
            _check_validators({DatabaseBackend.SQLITE: configure_sqlite})

    def test_password_hidden_in_log(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level("INFO", logger="basicapi.database.backends")

        select_backend("MySQL", MYSQL_CONNECTION_STRING)

        assert "Selected database backend: MySQL" in caplog.text
        assert ":pw@" not in caplog.text


class TestConnectionDescriptor:
    """Key=Value descriptor parsing."""

    def test_aliases_and_quotes(self):
        descriptor = parse_connection_string(
            "Data Source=db; Initial Catalog='pets'; UID=bench; PWD=\"sx\""
        )

        assert descriptor.host == "db"
        assert descriptor.database == "pets"
        assert descriptor.username == "bench"
        assert descriptor.password == "sx"

    def test_host_with_port(self):
        descriptor = parse_connection_string("Server=mysql:3307")
        assert (descriptor.host, descriptor.port) == ("mysql", 3307)

    def test_explicit_port_wins(self):
        descriptor = parse_connection_string("Server=tcp:sql,1433;Port=1500")
        assert (descriptor.host, descriptor.port) == ("sql", 1500)

    def test_trailing_separator(self):
        descriptor = parse_connection_string("Host=db;Port=5432;")
        assert descriptor.port == 5432

    def test_quoted_value_keeps_semicolon(self):
        descriptor = parse_connection_string(
            "Host=db;Password=\"a;b\";Username='x;y';Enlist=false"
        )

        assert descriptor.password == "a;b"
        assert descriptor.username == "x;y"
        assert descriptor.flag("enlist", True) is False

    def test_quote_inside_value_is_literal(self):
        descriptor = parse_connection_string("Host=db;Password=it's;Database=pets")
        assert (descriptor.password, descriptor.database) == ("it's", "pets")

    def test_quoted_password_reaches_url(self):
        url = select_backend(
            "PostgreSQL",
            "Host=db;Password=\"a;b\";No Reset On Close=true;Enlist=false",
        ).url
        assert url.password == "a;b"

    @pytest.mark.parametrize("value,host,port", [
        ("Host=::1", "::1", None),
        ("Host=::1;Port=5432", "::1", 5432),
        ("Host=[::1]:5433", "::1", 5433),
        ("Host=fe80::1,1433", "fe80::1", 1433),
    ])
    def test_ipv6_hosts(self, value, host, port):
        descriptor = parse_connection_string(value)
        assert (descriptor.host, descriptor.port) == (host, port)

    @pytest.mark.parametrize("value", [
        "Host=db;garbage",
        "=value",
        "Host=db;Port=abc",
        "Host=db;Password=\"unterminated",
    ])
    def test_malformed(self, value):
        with pytest.raises(ConfigurationError):
            parse_connection_string(value)
