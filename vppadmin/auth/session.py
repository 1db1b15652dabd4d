"""Signed, time-limited admin session tokens.

Token layout (before base64url encoding, no padding):

    "{issued_at_ms}:{nonce_hex}:{hmac_sha256_hex}"

The signature covers "{issued_at_ms}:{nonce_hex}" and is keyed with the admin
password, so tokens are stateless: any process holding the password can
verify them, and changing the password invalidates every outstanding token.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from vppadmin.config.env import read_env


ADMIN_COOKIE_NAME = "vpp-admin-auth"
ADMIN_SESSION_TTL_SECONDS = 60 * 60 * 12
NONCE_BYTES = 16


@dataclass(frozen=True)
class AdminAuthConfig:
    password: str

    def __repr__(self) -> str:
        return "AdminAuthConfig(password='***')"


def load_admin_auth_config() -> Optional[AdminAuthConfig]:
    password = read_env("ADMIN_PASSWORD")
    if not password:
        return None
    return AdminAuthConfig(password=password)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_base64url(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def _from_base64url(value: str) -> str:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def timing_safe_equal(expected: str, provided: str) -> bool:
    """Constant-time string comparison; different lengths are never equal."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def issue_admin_session_token(secret: str, issued_at: Optional[int] = None) -> str:
    issued_at = _now_ms() if issued_at is None else int(issued_at)
    nonce = secrets.token_hex(NONCE_BYTES)
    payload = f"{issued_at}:{nonce}"
    return _to_base64url(f"{payload}:{_sign(payload, secret)}")


def verify_admin_session_token(token: str, secret: str, now: Optional[int] = None) -> bool:
    """Return True only for a well-formed, correctly signed, unexpired token."""
    try:
        parts = _from_base64url(token).split(":")
        if len(parts) != 3:
            return False
        issued_at_raw, nonce, signature = parts
        if not issued_at_raw or not nonce or not signature:
            return False

        expected = _sign(f"{issued_at_raw}:{nonce}", secret)
        if not timing_safe_equal(expected, signature):
            return False

        issued_at = int(issued_at_raw, 10)
        now = _now_ms() if now is None else int(now)
        age = now - issued_at
        return 0 <= age <= ADMIN_SESSION_TTL_SECONDS * 1000
    except Exception:
        return False


def admin_session_cookie(token: str, *, secure: bool) -> Dict[str, Any]:
    """Keyword arguments for `Response.set_cookie` carrying an admin session."""
    return {
        "key": ADMIN_COOKIE_NAME,
        "value": token,
        "max_age": ADMIN_SESSION_TTL_SECONDS,
        "path": "/",
        "secure": secure,
        "httponly": True,
        "samesite": "Lax",
    }
