"""Helpers for shaping upstream HTTP responses."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

RAY_ID_HEADER = "cf-ray"


def safe_parse_json(response: requests.Response, *, context: str = "upstream") -> Optional[Any]:
    """Return the JSON body, or None for non-JSON or malformed payloads."""
    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        return None
    try:
        return response.json()
    except ValueError as e:
        logger.warning(f"{context}_parse_error status={response.status_code} error={e}")
        return None


def ray_id_of(response: Optional[requests.Response]) -> Optional[str]:
    if response is None:
        return None
    return response.headers.get(RAY_ID_HEADER) or None


def obfuscate_id(value: str) -> str:
    """Keep only the edges of an account/zone id for log lines."""
    if len(value) <= 6:
        return value
    return f"{value[:2]}…{value[-2:]}"


def elapsed_ms(started: float, finished: float) -> int:
    return max(0, int(round((finished - started) * 1000)))
