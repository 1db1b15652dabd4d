"""Declarative column specs driving validated, change-only row updates.

Each writable field maps to a ColumnSpec naming its column, kind and
limits. Request fields that have no spec are never written.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Literal, Mapping, Optional

from psycopg.types.json import Jsonb


ColumnKind = Literal["string", "text", "html", "url", "number", "string_array", "datetime", "boolean"]

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
SLUG_MAX_LENGTH = 191


class FieldValidationError(ValueError):
    """A request field failed validation; the message names the field."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


@dataclass(frozen=True)
class ColumnSpec:
    column: str
    kind: ColumnKind = "string"
    max_length: Optional[int] = None


ColumnTable = Mapping[str, ColumnSpec]


def normalize_slug(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise FieldValidationError("slug", "Field slug is required.")
    slug = value.strip()
    if len(slug) > SLUG_MAX_LENGTH:
        raise FieldValidationError("slug", f"Field slug exceeds maximum length of {SLUG_MAX_LENGTH} characters.")
    return slug


def _check_length(key: str, value: str, spec: ColumnSpec) -> None:
    if spec.max_length and len(value) > spec.max_length:
        raise FieldValidationError(key, f"Field {key} exceeds maximum length of {spec.max_length} characters.")


def _require_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise FieldValidationError(key, f"Field {key} must be a string.")
    return value


def _to_decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise FieldValidationError(key, f"Field {key} must be a number.")
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip()
    else:
        raise FieldValidationError(key, f"Field {key} must be a number.")
    try:
        number = Decimal(raw)
    except InvalidOperation:
        raise FieldValidationError(key, f"Field {key} must be a number.") from None
    if not number.is_finite():
        raise FieldValidationError(key, f"Field {key} must be a number.")
    return number


def _parse_datetime(key: str, value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise FieldValidationError(key, f"Field {key} must be an ISO date string.")
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise FieldValidationError(key, f"Field {key} must be an ISO date string.") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_string_array(key: str, value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise FieldValidationError(key, f"Field {key} must be an array of strings.")
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def normalize_value(key: str, value: Any, spec: ColumnSpec) -> Any:
    """Validate and normalize one incoming field; never truncates."""
    if spec.kind == "string_array":
        return normalize_string_array(key, value)
    if value is None:
        return None

    if spec.kind in ("string", "text"):
        trimmed = _require_str(key, value).strip()
        _check_length(key, trimmed, spec)
        return trimmed or None
    if spec.kind == "html":
        normalized = _require_str(key, value).replace("\r\n", "\n").strip()
        _check_length(key, normalized, spec)
        return normalized
    if spec.kind == "url":
        trimmed = _require_str(key, value).strip()
        if not trimmed:
            return None
        if not _URL_RE.match(trimmed):
            raise FieldValidationError(key, f"Field {key} must be a valid URL starting with http:// or https://.")
        _check_length(key, trimmed, spec)
        return trimmed
    if spec.kind == "number":
        return _to_decimal(key, value)
    if spec.kind == "datetime":
        return _parse_datetime(key, value)
    if spec.kind == "boolean":
        if not isinstance(value, bool):
            raise FieldValidationError(key, f"Field {key} must be a boolean.")
        return value
    return value


def _as_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            return _parse_datetime("value", value)
        except FieldValidationError:
            return None
    return None


def _as_structure(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def values_equal(current: Any, incoming: Any, kind: ColumnKind) -> bool:
    """Typed equality between the stored value and a normalized incoming one."""
    if current is None and incoming is None:
        return True
    if kind == "number":
        if current is None or incoming is None:
            return False
        try:
            return Decimal(str(current)) == Decimal(str(incoming))
        except InvalidOperation:
            return False
    if kind == "string_array":
        return _as_structure(current) == _as_structure(incoming)
    if kind == "boolean":
        return bool(current) == bool(incoming)
    if kind == "datetime":
        left, right = _as_utc(current), _as_utc(incoming)
        return left is not None and right is not None and left == right
    return current == incoming


def to_db_value(value: Any, spec: ColumnSpec) -> Any:
    if spec.kind == "string_array":
        return Jsonb(value)
    return value
