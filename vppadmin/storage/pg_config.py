"""Postgres connection settings loaded from the environment."""

from __future__ import annotations

import base64
import binascii
import hashlib
import ipaddress
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, Literal, Optional, Union

from psycopg.conninfo import make_conninfo

from vppadmin.config.env import load_credentials, read_env

logger = logging.getLogger(__name__)

SslMode = Literal["disable", "skip-verify", "verify-ca", "verify-full"]
SSL_MODES = ("disable", "skip-verify", "verify-ca", "verify-full")
DEFAULT_SSL_MODE: SslMode = "skip-verify"

# sslMode -> libpq sslmode
LIBPQ_SSL_MODES: Dict[str, str] = {
    "disable": "disable",
    "skip-verify": "require",
    "verify-ca": "verify-ca",
    "verify-full": "verify-full",
}

CREDENTIAL_FIELDS = {
    "host": "PG_HOST",
    "port": "PG_PORT",
    "user": "PG_USER",
    "password": "PG_PASSWORD",
    "database": "PG_DATABASE",
}

CONNECT_TIMEOUT_SECONDS = 15


@dataclass(frozen=True)
class DbCredentials:
    host: str
    port: int
    user: str
    password: str = field(repr=False)
    database: str = ""
    ssl_mode: SslMode = DEFAULT_SSL_MODE
    ca: Optional[str] = field(default=None, repr=False)
    server_name: Optional[str] = None


@dataclass(frozen=True)
class ProductMetricsConfig:
    table: str = "products"
    lastmod_column: str = "updated_at"
    where_clause: Optional[str] = None


def _parse_ssl_mode(value: Optional[str]) -> SslMode:
    if value is None:
        return DEFAULT_SSL_MODE
    normalized = value.lower()
    if normalized not in SSL_MODES:
        logger.warning(f"pg_ssl_mode_unrecognized value={value} fallback={DEFAULT_SSL_MODE}")
        return DEFAULT_SSL_MODE
    return normalized  # type: ignore[return-value]


def decode_certificate(value: Optional[str]) -> Optional[str]:
    """Accept a PEM with literal `\\n` escapes or a base64-encoded PEM."""
    if not value:
        return None
    if "BEGIN CERTIFICATE" in value:
        return value.replace("\\n", "\n")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value.replace("\\n", "\n")


def load_db_credentials() -> Optional[DbCredentials]:
    bundle = load_credentials(CREDENTIAL_FIELDS)
    if bundle is None:
        return None
    try:
        port = int(bundle["port"])
    except ValueError:
        logger.warning("pg_port_invalid PG_PORT is not an integer")
        return None
    return DbCredentials(
        host=bundle["host"],
        port=port,
        user=bundle["user"],
        password=bundle["password"],
        database=bundle["database"],
        ssl_mode=_parse_ssl_mode(read_env("PG_SSL_MODE")),
        ca=decode_certificate(read_env("PG_SSL_CA")),
        server_name=read_env("PG_SSL_SERVER_NAME"),
    )


def load_product_metrics_config() -> ProductMetricsConfig:
    return ProductMetricsConfig(
        table=read_env("DB_PRODUCTS_TABLE") or "products",
        lastmod_column=read_env("DB_PRODUCTS_LASTMOD_COLUMN") or "updated_at",
        where_clause=read_env("DB_PRODUCTS_PUBLISHED_WHERE"),
    )


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def write_ca_file(pem: str) -> str:
    """Materialize a CA bundle for libpq, which only reads certificates from disk."""
    digest = hashlib.sha256(pem.encode("utf-8")).hexdigest()[:16]
    path = os.path.join(tempfile.gettempdir(), f"vppadmin-pg-ca-{digest}.pem")
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        return path
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(pem)
    return path


def build_conninfo(credentials: DbCredentials, *, connect_timeout: int = CONNECT_TIMEOUT_SECONDS) -> str:
    params: Dict[str, Union[str, int]] = {
        "host": credentials.host,
        "port": credentials.port,
        "user": credentials.user,
        "password": credentials.password,
        "dbname": credentials.database,
        "connect_timeout": connect_timeout,
        "application_name": "vpp-admin",
        "sslmode": LIBPQ_SSL_MODES[credentials.ssl_mode],
    }
    if credentials.ssl_mode in ("verify-ca", "verify-full") and credentials.ca:
        params["sslrootcert"] = write_ca_file(credentials.ca)
    if credentials.ssl_mode == "verify-full" and credentials.server_name and credentials.server_name != credentials.host:
        # libpq verifies against `host`; dial the IP through `hostaddr` instead.
        if _is_ip(credentials.host):
            params["host"] = credentials.server_name
            params["hostaddr"] = credentials.host
        else:
            logger.warning("pg_ssl_server_name_ignored PG_SSL_SERVER_NAME needs PG_HOST to be an IP address")
    return make_conninfo(**params)
