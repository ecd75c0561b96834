"""Turn raw session store options into one :class:`ConnectionDescriptor`.

Options can describe the connection four ways: a host framework connection
object, an already-open database handle, a connection URL, or discrete
host/port/db fields. Each way is a *source*. Sources are evaluated in
priority order and merged field by field: the first source to supply a field
wins, and evaluation stops at the first source reporting ``COMPLETE``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, unquote, urlsplit

from .errors import ConfigurationError
from .models import (
    DEFAULT_COLLECTION,
    DEFAULT_EXPIRATION_SECONDS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    ConnectionDescriptor,
    Credentials,
)
from .options import OptionsLike, SessionStoreOptions, coerce_options

logger = logging.getLogger(__name__)


class ResolutionStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    PARTIAL = "partial"
    COMPLETE = "complete"


@dataclass(slots=True)
class Resolution:
    status: ResolutionStatus
    fields: dict[str, Any] = field(default_factory=dict)


_NOT_APPLICABLE = Resolution(ResolutionStatus.NOT_APPLICABLE)

Source = Callable[[SessionStoreOptions], Resolution]


def _from_framework(options: SessionStoreOptions) -> Resolution:
    connection = options.framework
    if connection is None:
        return _NOT_APPLICABLE

    logger.debug("Extracting connection params from framework connection")
    if isinstance(connection, Mapping):
        get = connection.get
    else:
        def get(key: str, default: Any = None) -> Any:
            return getattr(connection, key, default)

    tls, transport = _split_tls(get("options") or {})
    user = get("user") or get("username")
    password = get("password") or get("pass")

    fields: dict[str, Any] = {
        "host": get("host"),
        "port": get("port"),
        "db_name": get("name") or get("db"),
        "tls": tls,
        "client_options": transport,
    }
    # Only a full pair counts as credentials.
    if user and password:
        fields["username"] = user
        fields["password"] = password
    return Resolution(ResolutionStatus.PARTIAL, fields)


def _from_handle(options: SessionStoreOptions) -> Resolution:
    handle = options.db
    # A framework connection replaces the handle entirely.
    if handle is None or isinstance(handle, str) or options.framework is not None:
        return _NOT_APPLICABLE
    if not (hasattr(handle, "client") and hasattr(handle, "name")):
        raise ConfigurationError(f"Unsupported db handle of type {type(handle).__name__}")

    logger.debug("Re-using open database handle %s", handle.name)
    fields: dict[str, Any] = {"db_name": handle.name, "handle": handle}
    fields.update(_seed_address(handle.client))
    return Resolution(ResolutionStatus.PARTIAL, fields)


def _seed_address(client: Any) -> dict[str, Any]:
    delegate = getattr(client, "delegate", client)
    try:
        servers = delegate.topology_description.server_descriptions()
    except AttributeError:
        return {}
    for host, port in servers:
        return {"host": host, "port": port}
    return {}


def _from_url(options: SessionStoreOptions) -> Resolution:
    if not options.url:
        return _NOT_APPLICABLE

    logger.debug("Extracting connection params from url")
    parts = urlsplit(options.url)
    try:
        port = parts.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in url: {exc}") from exc

    segments = parts.path.split("/")
    query = {key: _query_value(value) for key, value in parse_qsl(parts.query)}
    tls, transport = _split_tls(query)
    fields: dict[str, Any] = {
        "host": _url_host(parts.netloc),
        "port": port,
        "db_name": unquote(segments[1]) if len(segments) >= 2 and segments[1] else None,
        "collection": unquote(segments[2]) if len(segments) >= 3 and segments[2] else None,
        "username": unquote(parts.username) if parts.username else None,
        "password": unquote(parts.password) if parts.password else None,
        "tls": tls,
        "client_options": transport,
    }
    return Resolution(ResolutionStatus.PARTIAL, fields)


def _url_host(netloc: str) -> Optional[str]:
    """Host as written in the url; ``urlsplit().hostname`` lowercases it."""
    hostinfo = netloc.rpartition("@")[2]
    if hostinfo.startswith("["):
        host = hostinfo[1 : hostinfo.find("]")]
    else:
        host = hostinfo.partition(":")[0]
    return unquote(host) or None


def _query_value(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered.isdigit():
        return int(lowered)
    return value


def _split_tls(transport: Mapping[str, Any]) -> tuple[Optional[bool], dict[str, Any]]:
    """Pull ``tls``/``ssl`` out of driver options so only the ``tls`` field carries it."""
    rest = dict(transport)
    tls = rest.pop("tls", None)
    ssl = rest.pop("ssl", None)
    if tls is None:
        tls = ssl
    if isinstance(tls, str):
        tls = _query_value(tls)
        if not isinstance(tls, bool):
            raise ConfigurationError(f"Invalid tls option: {tls!r}")
    return tls, rest


def _from_fields(options: SessionStoreOptions) -> Resolution:
    tls, transport = _split_tls(options.client_options)
    fields: dict[str, Any] = {
        "host": options.host,
        "port": options.port,
        "db_name": options.db if isinstance(options.db, str) else None,
        "collection": options.collection,
        "username": options.username,
        "password": options.password,
        "tls": options.ssl if options.ssl is not None else tls,
        "auto_reconnect": options.auto_reconnect,
        "ttl_seconds": _ttl_seconds(options),
        "client_options": transport,
    }
    return Resolution(ResolutionStatus.PARTIAL, fields)


def _ttl_seconds(options: SessionStoreOptions) -> Optional[int]:
    if options.expiration_time is not None:
        return int(options.expiration_time)
    if options.default_expiration_time_ms is not None:
        return options.default_expiration_time_ms // 1000
    return None


def _defaults(_: SessionStoreOptions) -> Resolution:
    return Resolution(
        ResolutionStatus.COMPLETE,
        {
            "host": DEFAULT_HOST,
            "port": DEFAULT_PORT,
            "collection": DEFAULT_COLLECTION,
            "tls": False,
            "auto_reconnect": False,
            "ttl_seconds": DEFAULT_EXPIRATION_SECONDS,
        },
    )


SOURCES: tuple[tuple[str, Source], ...] = (
    ("framework", _from_framework),
    ("handle", _from_handle),
    ("url", _from_url),
    ("options", _from_fields),
    ("defaults", _defaults),
)


def merge(resolutions: Iterable[tuple[str, Resolution]]) -> tuple[dict[str, Any], list[str]]:
    """Merge resolutions in priority order. Returns the fields and the names of the sources used."""
    merged: dict[str, Any] = {}
    client_options: dict[str, Any] = {}
    used: list[str] = []
    for name, resolution in resolutions:
        if resolution.status is ResolutionStatus.NOT_APPLICABLE:
            continue
        used.append(name)
        for key, value in resolution.fields.items():
            if value is None:
                continue
            if key == "client_options":
                for option, option_value in value.items():
                    client_options.setdefault(option, option_value)
            else:
                merged.setdefault(key, value)
        if resolution.status is ResolutionStatus.COMPLETE:
            break
    merged["client_options"] = client_options
    return merged, used


def resolve(options: OptionsLike, sources: tuple[tuple[str, Source], ...] = SOURCES) -> ConnectionDescriptor:
    """Resolve options into a connection descriptor. Performs no I/O."""
    options = coerce_options(options)
    merged, used = merge((name, source(options)) for name, source in sources)

    if not merged.get("db_name"):
        raise ConfigurationError("Missing option: db")

    username = merged.get("username")
    password = merged.get("password")
    credentials = Credentials(username, password) if username and password else None

    descriptor = ConnectionDescriptor(
        host=merged["host"],
        port=int(merged["port"]),
        db_name=merged["db_name"],
        collection=merged["collection"],
        credentials=credentials,
        ttl_seconds=merged["ttl_seconds"],
        tls=bool(merged["tls"]),
        auto_reconnect=bool(merged["auto_reconnect"]),
        client_options=merged["client_options"],
        handle=merged.get("handle"),
        source=used[0],
    )
    logger.debug(
        "Resolved session store %s:%s/%s/%s from %s",
        descriptor.host,
        descriptor.port,
        descriptor.db_name,
        descriptor.collection,
        ", ".join(used),
    )
    return descriptor
