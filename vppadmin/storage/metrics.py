"""Database connectivity probe with a small product metrics summary."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

from psycopg import sql

from vppadmin.net.responses import elapsed_ms
from vppadmin.storage.db_errors import to_db_error_info
from vppadmin.storage.pg_config import ProductMetricsConfig
from vppadmin.storage.pg_pool import Database
from vppadmin.storage.tables import InvalidIdentifierError, quote_identifier

logger = logging.getLogger(__name__)


@dataclass
class DbProbeResult:
    ok: bool
    latency_ms: int = 0
    published: Optional[int] = None
    lastmod: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": self.ok, "latency_ms": self.latency_ms, "ray_ids": []}
        if self.ok:
            body["published"] = self.published
            body["lastmod"] = self.lastmod
        else:
            body["error_code"] = self.error_code
            if self.details:
                body["details"] = self.details
        return body


def build_metrics_query(config: ProductMetricsConfig) -> sql.Composed:
    """COUNT/MAX over the products table; the WHERE clause is operator-supplied SQL."""
    query = sql.SQL("SELECT COUNT(*) AS published, MAX({lastmod}) AS lastmod FROM {table}").format(
        lastmod=quote_identifier(config.lastmod_column, "column"),
        table=quote_identifier(config.table, "table"),
    )
    where = (config.where_clause or "").strip()
    if where:
        query = sql.SQL("{} WHERE {}").format(query, sql.SQL(where))
    return query


def normalize_published(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"db_probe_unexpected_published_type type={type(value).__name__}")
        return 0


def normalize_lastmod(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value)).isoformat()
    except ValueError:
        logger.warning(f"db_probe_unexpected_lastmod_type type={type(value).__name__}")
        return None


def probe_database(db: Database, config: ProductMetricsConfig) -> DbProbeResult:
    started = time.monotonic()
    try:
        query = build_metrics_query(config)
    except InvalidIdentifierError as e:
        logger.error(f"db_metrics_config_error message={e}")
        return DbProbeResult(
            ok=False,
            latency_ms=elapsed_ms(started, time.monotonic()),
            error_code="invalid_config",
            details=str(e),
        )

    def _read(conn) -> Dict[str, Any]:
        conn.execute("SELECT 1")
        return conn.execute(query).fetchone() or {}

    try:
        aggregate = db.run_in_transaction(_read)
    except Exception as e:
        info = to_db_error_info(e)
        logger.error(f"db_connectivity_error kind={info.kind} sql_state={info.sql_state} message={info.message}")
        return DbProbeResult(
            ok=False,
            latency_ms=elapsed_ms(started, time.monotonic()),
            error_code=info.public_code,
            details=info.message,
        )

    result = DbProbeResult(
        ok=True,
        latency_ms=elapsed_ms(started, time.monotonic()),
        published=normalize_published(aggregate.get("published")),
        lastmod=normalize_lastmod(aggregate.get("lastmod")),
    )
    logger.info(
        f"db_connectivity_result ok=True latency_ms={result.latency_ms} "
        f"published={result.published} lastmod={result.lastmod}"
    )
    return result
