"""Generic "write only what changed" row updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import psycopg
from psycopg import sql

from vppadmin.storage.columns import ColumnSpec, ColumnTable, normalize_value, to_db_value, values_equal

logger = logging.getLogger(__name__)

TOUCH_COLUMN = "updated_at"

BeforeWrite = Callable[[psycopg.Connection, Dict[str, Any]], None]


@dataclass
class RowUpdateResult:
    found: bool
    rows_affected: int = 0
    row: Dict[str, Any] = field(default_factory=dict)
    previous: Dict[str, Any] = field(default_factory=dict)


def _response_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, memoryview):
        return value.tobytes().decode("utf-8", errors="replace")
    return value


def map_row(row: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """JSON-friendly copy of a database row."""
    if not row:
        return {}
    return {key: _response_value(value) for key, value in row.items()}


def stage_assignments(
    payload: Mapping[str, Any],
    existing: Mapping[str, Any],
    columns: ColumnTable,
) -> List[Tuple[ColumnSpec, Any]]:
    """Validate allow-listed fields and keep only those that differ from `existing`."""
    staged: List[Tuple[ColumnSpec, Any]] = []
    for key, spec in columns.items():
        if key not in payload:
            continue
        normalized = normalize_value(key, payload[key], spec)
        if values_equal(existing.get(spec.column), normalized, spec.kind):
            continue
        staged.append((spec, normalized))
    return staged


def select_row(
    conn: psycopg.Connection,
    table: sql.Identifier,
    key_column: str,
    key: Any,
    *,
    for_update: bool = False,
) -> Optional[Dict[str, Any]]:
    query = sql.SQL("SELECT * FROM {table} WHERE {key} = %s LIMIT 1").format(
        table=table, key=sql.Identifier(key_column)
    )
    if for_update:
        query = sql.SQL("{} FOR UPDATE").format(query)
    return conn.execute(query, (key,)).fetchone()


def update_row(
    conn: psycopg.Connection,
    table: sql.Identifier,
    key_column: str,
    key: Any,
    payload: Mapping[str, Any],
    columns: ColumnTable,
    *,
    before_write: Optional[BeforeWrite] = None,
    touch_column: str = TOUCH_COLUMN,
) -> RowUpdateResult:
    """Apply the changed fields of `payload` to the row identified by `key`.

    Must run inside a transaction: the existing row is locked with
    FOR UPDATE. Re-submitting identical values issues no UPDATE.
    """
    existing = select_row(conn, table, key_column, key, for_update=True)
    if existing is None:
        return RowUpdateResult(found=False)

    if before_write is not None:
        before_write(conn, existing)

    staged = stage_assignments(payload, existing, columns)
    if not staged:
        return RowUpdateResult(found=True, rows_affected=0, row=map_row(existing), previous=map_row(existing))

    assignments = sql.SQL(", ").join(
        sql.SQL("{} = %s").format(sql.Identifier(spec.column)) for spec, _ in staged
    )
    query = sql.SQL("UPDATE {table} SET {assignments}, {touch} = now() WHERE {key} = %s").format(
        table=table,
        assignments=assignments,
        touch=sql.Identifier(touch_column),
        key=sql.Identifier(key_column),
    )
    values = [to_db_value(value, spec) for spec, value in staged]
    cursor = conn.execute(query, (*values, key))
    rows_affected = max(cursor.rowcount, 0)

    reloaded = select_row(conn, table, key_column, key) or existing
    logger.debug(f"db_row_updated key={key} columns={[spec.column for spec, _ in staged]} rows={rows_affected}")
    return RowUpdateResult(found=True, rows_affected=rows_affected, row=map_row(reloaded), previous=map_row(existing))
