"""Server configuration.

ServerConfig is a frozen dataclass — immutable after creation, passed
explicitly into ``start()``; there is no process-wide server state.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace

from perch.errors import ConfigurationError

ENV_PREFIX = "PERCH_"
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Server configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = ServerConfig(host="0.0.0.0", port=8080, grace_period=5.0)
    """

    # Bind address (port 0 picks a free port)
    host: str = "127.0.0.1"
    port: int = 8000
    backlog: int = 2048

    # Connections
    max_connections: int = 1000
    keep_alive_timeout: float = 5.0
    # Deadline for the first request head, and for every request body
    read_timeout: float = 30.0
    grace_period: float = 10.0

    # Limits
    max_header_size: int = 64 * 1024  # 64 KB for request line + headers
    max_body_size: int = 16 * 1024 * 1024  # 16 MB

    # Logging
    log_level: str = "info"
    log_format: str = "text"

    server_name: str = "perch"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            msg = f"Port {self.port} is out of range (0-65535)."
            raise ConfigurationError(msg)
        if not self.host:
            msg = "Bind host must not be empty."
            raise ConfigurationError(msg)
        if self.max_connections < 1:
            msg = "max_connections must be at least 1."
            raise ConfigurationError(msg)
        if self.keep_alive_timeout < 0 or self.grace_period < 0:
            msg = "Timeouts must not be negative."
            raise ConfigurationError(msg)
        if self.read_timeout <= 0:
            msg = "read_timeout must be positive."
            raise ConfigurationError(msg)
        if self.log_level.lower() not in LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(LOG_LEVELS)}, not {self.log_level!r}."
            raise ConfigurationError(msg)
        if self.log_format not in ("text", "json"):
            msg = f"log_format must be 'text' or 'json', not {self.log_format!r}."
            raise ConfigurationError(msg)

    @property
    def bind_address(self) -> str:
        """``host:port`` as configured (IPv6 hosts in brackets)."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    def with_address(self, address: str) -> "ServerConfig":
        """Return a copy bound to *address* (``host`` or ``host:port``)."""
        host, port = parse_bind_address(address, default_port=self.port)
        return replace(self, host=host, port=port)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> "ServerConfig":
        """Build a config from ``PERCH_*`` environment variables.

        Recognized: ``PERCH_ADDRESS`` (``host`` or ``host:port``),
        ``PERCH_PORT``, ``PERCH_KEEP_ALIVE_TIMEOUT``, ``PERCH_READ_TIMEOUT``,
        ``PERCH_GRACE_PERIOD``,
        ``PERCH_MAX_CONNECTIONS``, ``PERCH_MAX_BODY_SIZE``,
        ``PERCH_LOG_LEVEL``, ``PERCH_LOG_FORMAT``.
        Keyword *overrides* win over the environment.

        Raises ``ConfigurationError`` for unparseable values.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        address = env.get(f"{ENV_PREFIX}ADDRESS")
        if address:
            host, port = parse_bind_address(address, default_port=None)
            values["host"] = host
            if port is not None:
                values["port"] = port

        types = {f.name: f.type for f in fields(cls)}
        for name in (
            "port",
            "keep_alive_timeout",
            "read_timeout",
            "grace_period",
            "max_connections",
            "max_body_size",
            "log_level",
            "log_format",
        ):
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            values[name] = _coerce(name, raw, types[name])

        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]


def parse_bind_address(address: str, *, default_port: int | None) -> tuple[str, int | None]:
    """Split ``host``, ``host:port``, ``[v6]`` or ``[v6]:port``.

    Returns ``(host, port)``; port is *default_port* when absent.
    Raises ``ConfigurationError`` for malformed addresses.
    """
    address = address.strip()
    if not address:
        msg = "Bind address must not be empty."
        raise ConfigurationError(msg)

    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not host:
            msg = f"Malformed IPv6 bind address {address!r}."
            raise ConfigurationError(msg)
        if not rest:
            return host, default_port
        if not rest.startswith(":"):
            msg = f"Malformed bind address {address!r}."
            raise ConfigurationError(msg)
        return host, _parse_port(rest[1:], address)

    if address.count(":") > 1:
        # Bare IPv6 literal without a port
        return address, default_port

    host, sep, port = address.partition(":")
    if not host:
        msg = f"Bind address {address!r} has no host."
        raise ConfigurationError(msg)
    if not sep:
        return host, default_port
    return host, _parse_port(port, address)


def _parse_port(raw: str, address: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        msg = f"Bind address {address!r} has a non-numeric port."
        raise ConfigurationError(msg) from None
    if not 0 <= port <= 65535:
        msg = f"Bind address {address!r} has an out-of-range port."
        raise ConfigurationError(msg)
    return port


def _coerce(name: str, raw: str, annotation: object) -> object:
    target = {"int": int, "float": float, "str": str}.get(
        annotation if isinstance(annotation, str) else getattr(annotation, "__name__", ""),
        str,
    )
    try:
        return target(raw)
    except ValueError:
        msg = f"{ENV_PREFIX}{name.upper()}={raw!r} is not a valid {target.__name__}."
        raise ConfigurationError(msg) from None
