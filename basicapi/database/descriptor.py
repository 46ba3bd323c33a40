# ==============================================================================
# CONNECTION DESCRIPTOR - Connection String Parsing
# ==============================================================================
# Accepts the ``Key=Value;Key=Value`` strings passed by the benchmark harness
# as well as SQLAlchemy URLs
# ==============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from basicapi.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# Normalized key -> descriptor attribute
_KEY_ALIASES: Dict[str, str] = {
    "host": "host",
    "server": "host",
    "datasource": "host",
    "address": "host",
    "port": "port",
    "database": "database",
    "initialcatalog": "database",
    "username": "username",
    "userid": "username",
    "user": "username",
    "uid": "username",
    "password": "password",
    "pwd": "password",
}

NO_RESET_ON_CLOSE = "noresetonclose"
ENLIST = "enlist"
_FLAG_KEYS = (NO_RESET_ON_CLOSE, ENLIST)

_TRUE_VALUES = {"true", "yes", "1", "on"}
_FALSE_VALUES = {"false", "no", "0", "off"}


def normalize_key(key: str) -> str:
    """``No Reset On Close``, ``no_reset_on_close`` -> ``noresetonclose``."""
    return "".join(ch for ch in key.lower() if ch not in " _-")


def parse_bool(value: str, key: str) -> bool:
    """Parse a connection-string boolean."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"Connection string option '{key}' must be true or false, got '{value}'.",
        setting="ConnectionString",
    )


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


@dataclass
class ConnectionDescriptor:
    """
    Parsed connection descriptor.

    Attributes:
        host: Server address (``Host``/``Server``/``Data Source``)
        port: Server port
        database: Database name
        username: Login name
        password: Login password
        options: Remaining options keyed by normalized name
        flags: Pooling flags (``noresetonclose``, ``enlist``) when present
        drivername: Dialect from a URL-form descriptor
    """
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    options: Dict[str, str] = field(default_factory=dict)
    flags: Dict[str, bool] = field(default_factory=dict)
    drivername: Optional[str] = None

    def flag(self, name: str, default: bool) -> bool:
        """Value of a pooling flag, or ``default`` when absent."""
        return self.flags.get(name, default)

    def to_url(
        self,
        drivername: str,
        passthrough: Optional[Mapping[str, str]] = None,
        query: Optional[Mapping[str, str]] = None,
    ) -> URL:
        """
        Build the async driver URL.

        Args:
            drivername: ``dialect+driver`` to connect with
            passthrough: Normalized option name -> driver query parameter
                for options the driver understands
            query: Default query parameters, overridden by passthrough

        Returns:
            sqlalchemy URL
        """
        params: Dict[str, str] = dict(query or {})
        for key, value in self.options.items():
            target = (passthrough or {}).get(normalize_key(key))
            if self.drivername is not None:
                # URL-form query options are explicit driver arguments
                params[key] = value
            elif target:
                params[target] = value
            else:
                logger.debug(f"Ignoring connection option '{key}' for {drivername}")

        return URL.create(
            drivername,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=params,
        )


# ==============================================================================
# PARSERS
# ==============================================================================

def parse_connection_string(value: str) -> ConnectionDescriptor:
    """
    Parse a connection descriptor in either supported syntax.

    Args:
        value: ``Key=Value;...`` string or ``dialect://`` URL

    Returns:
        ConnectionDescriptor

    Raises:
        ConfigurationError: If the descriptor is malformed

    Example:
        >>> d = parse_connection_string("Host=db;Port=5432;Enlist=false")
        >>> d.host, d.port, d.flag("enlist", True)
        ('db', 5432, False)
    """
    if "://" in value:
        return _parse_url(value)
    return _parse_key_values(value)


def _parse_port(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"Connection string port must be an integer, got '{value}'.",
            setting="ConnectionString",
        )


def _parse_key_values(value: str) -> ConnectionDescriptor:
    descriptor = ConnectionDescriptor()

    for segment in _split_segments(value):
        if not segment.strip():
            continue

        key, sep, raw = segment.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(
                f"Malformed connection string segment '{segment.strip()}'.",
                setting="ConnectionString",
            )

        name = normalize_key(key)
        item = _unquote(raw)

        if name in _FLAG_KEYS:
            descriptor.flags[name] = parse_bool(item, key.strip())
        elif name in _KEY_ALIASES:
            attribute = _KEY_ALIASES[name]
            if attribute == "port":
                descriptor.port = _parse_port(item)
            else:
                setattr(descriptor, attribute, item)
        else:
            descriptor.options[name] = item

    if descriptor.host:
        _split_host(descriptor)

    return descriptor


def _split_segments(value: str) -> List[str]:
    """
    Split on ``;`` except inside a quoted value.

    A quote only opens at the start of a value, so ``Password=it's`` stays
    literal while ``Password="a;b"`` keeps its semicolon.
    """
    segments: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    at_value_start = False

    for ch in value:
        if quote:
            if ch == quote:
                quote = None
        elif ch == ";":
            segments.append("".join(current))
            current = []
            at_value_start = False
            continue
        elif at_value_start and ch in "'\"":
            quote = ch
            at_value_start = False
        elif ch == "=" and "=" not in current:
            at_value_start = True
        elif not ch.isspace():
            at_value_start = False
        current.append(ch)

    if quote:
        raise ConfigurationError(
            "Connection string has an unterminated quoted value.",
            setting="ConnectionString",
        )
    segments.append("".join(current))
    return segments


def _split_host(descriptor: ConnectionDescriptor) -> None:
    """
    Handle ``tcp:host,1433`` (SQL Server), ``host:3306`` and ``[::1]:5432``.

    A bare IPv6 address such as ``::1`` is left as it is.
    """
    host = descriptor.host.strip()
    if host.lower().startswith("tcp:"):
        host = host[4:]

    port = None
    if "," in host:
        host, _, port = host.partition(",")
    elif host.startswith("["):
        host, _, rest = host[1:].partition("]")
        if rest.startswith(":"):
            port = rest[1:]
    elif host.count(":") == 1:
        host, _, port = host.partition(":")

    if port and port.strip() and descriptor.port is None:
        descriptor.port = _parse_port(port.strip())

    descriptor.host = host.strip()


def _parse_url(value: str) -> ConnectionDescriptor:
    try:
        url = make_url(value)
    except ArgumentError as e:
        raise ConfigurationError(
            f"Malformed connection URL: {e}",
            setting="ConnectionString",
        )

    descriptor = ConnectionDescriptor(
        host=url.host,
        port=url.port,
        database=url.database,
        username=url.username,
        password=url.password,
        drivername=url.drivername,
    )

    for key, raw in url.query.items():
        item = raw[-1] if isinstance(raw, tuple) else raw
        name = normalize_key(key)
        if name in _FLAG_KEYS:
            descriptor.flags[name] = parse_bool(item, key)
        else:
            descriptor.options[key] = item

    return descriptor
