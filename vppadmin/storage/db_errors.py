"""Classify database and transport errors into a small, closed taxonomy.

Errors reach us in different shapes: psycopg exceptions carry a SQLSTATE,
pool and HTTP layers raise timeout classes, and some drivers only expose a
string `code`. The driver code table is consulted first; message sniffing is
the fallback when no code is available. Classification never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

import psycopg
import requests
from psycopg_pool import PoolTimeout


DbErrorKind = Literal["timeout", "auth_failed", "sql_error", "unknown"]

TIMEOUT_CODES = {
    "ETIMEDOUT",
    "PROTOCOL_SEQUENCE_TIMEOUT",
    "PROTOCOL_CONNECTION_LOST",
    "ECONNRESET",
    # query_canceled (statement_timeout), admin/crash shutdown, cannot_connect_now
    "57014",
    "57P01",
    "57P02",
    "57P03",
}
# SQLSTATE class 08: connection exception
TIMEOUT_CODE_PREFIXES = ("08",)

AUTH_CODES = {
    "ER_ACCESS_DENIED_ERROR",
    "ER_DBACCESS_DENIED_ERROR",
    "28000",
    "28P01",
    "42501",
}

TIMEOUT_MESSAGES = ("timeout", "timed out", "connection lost")
AUTH_MESSAGES = ("access denied", "permission", "authentication failed")

_TIMEOUT_TYPES = (PoolTimeout, requests.Timeout, TimeoutError)


@dataclass(frozen=True)
class DbErrorInfo:
    kind: DbErrorKind
    message: str
    sql_state: Optional[str] = None

    @property
    def public_code(self) -> str:
        """Error code reported to API clients (never the bare `unknown`)."""
        return "sql_error" if self.kind == "unknown" else self.kind


def _string_attr(error: Any, *names: str) -> Optional[str]:
    for name in names:
        value = getattr(error, name, None)
        if isinstance(value, str) and value:
            return value
    if isinstance(error, dict):
        for name in names:
            value = error.get(name)
            if isinstance(value, str) and value:
                return value
    return None


def _message_of(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown database error")
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(error)
    return text or type(error).__name__


def _classify_code(code: str) -> DbErrorKind:
    normalized = code.strip().upper()
    if normalized in TIMEOUT_CODES or (len(normalized) == 5 and normalized.startswith(TIMEOUT_CODE_PREFIXES)):
        return "timeout"
    if normalized in AUTH_CODES:
        return "auth_failed"
    return "sql_error"


def classify_message(message: str) -> DbErrorKind:
    lower = (message or "").lower()
    if any(token in lower for token in TIMEOUT_MESSAGES):
        return "timeout"
    if any(token in lower for token in AUTH_MESSAGES):
        return "auth_failed"
    return "unknown"


def to_db_error_info(error: Any) -> DbErrorInfo:
    """Map any raised value to exactly one DbErrorInfo."""
    if error is None:
        return DbErrorInfo(kind="unknown", message="Unknown database error")
    try:
        message = _message_of(error)
        if isinstance(error, _TIMEOUT_TYPES):
            return DbErrorInfo(kind="timeout", message=message)

        sql_state = None
        if isinstance(error, psycopg.Error):
            sql_state = error.sqlstate
        sql_state = sql_state or _string_attr(error, "sqlstate", "sqlState", "sql_state")
        code = _string_attr(error, "code") or sql_state
        if code:
            return DbErrorInfo(kind=_classify_code(code), message=message, sql_state=sql_state)

        return DbErrorInfo(kind=classify_message(message), message=message)
    except Exception:
        return DbErrorInfo(kind="unknown", message="Unclassifiable database error")


def classify_http_status(status: Optional[int]) -> Optional[DbErrorKind]:
    """Kind implied by an HTTP status alone, or None if it implies nothing."""
    if status in (401, 403):
        return "auth_failed"
    if status in (408, 504, 524):
        return "timeout"
    return None
