"""Request gate for the admin console and admin API.

Precedence: session cookie, then `Authorization: Bearer <token>`, then
`Authorization: Basic admin:<password>` which mints a fresh session cookie.
Anything else is answered with 401 and a Basic challenge.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from flask import Flask, Response, g, jsonify, request

from vppadmin.auth.session import (
    ADMIN_COOKIE_NAME,
    AdminAuthConfig,
    admin_session_cookie,
    issue_admin_session_token,
    load_admin_auth_config,
    timing_safe_equal,
    verify_admin_session_token,
)

logger = logging.getLogger(__name__)

AUTH_REALM = "Virtual Product Pages Admin"
ADMIN_BASIC_USER = "admin"
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    via: Optional[str] = None
    issued_token: Optional[str] = None
    reason: Optional[str] = None


def needs_admin_auth(path: str, method: str = "GET") -> bool:
    if path == "/admin" or path.startswith("/admin/") or path.startswith("/api/admin"):
        return True
    return path.startswith("/api/blog/") and method.upper() in WRITE_METHODS


def parse_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


def parse_basic_credentials(header: Optional[str]) -> Optional[Tuple[str, str]]:
    if not header or not header.startswith("Basic "):
        return None
    encoded = header[len("Basic "):].strip()
    if not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, password = decoded.partition(":")
    if not sep:
        return None
    return user, password


def authenticate(
    config: AdminAuthConfig,
    *,
    cookie_token: Optional[str],
    authorization: Optional[str],
) -> AuthDecision:
    """Decide whether a request may proceed; pure apart from token minting."""
    if cookie_token and verify_admin_session_token(cookie_token, config.password):
        return AuthDecision(allowed=True, via="cookie")

    bearer = parse_bearer_token(authorization)
    if bearer and verify_admin_session_token(bearer, config.password):
        return AuthDecision(allowed=True, via="bearer")

    if authorization and authorization.startswith("Basic "):
        credentials = parse_basic_credentials(authorization)
        if not credentials:
            return AuthDecision(allowed=False, reason="Invalid credentials")
        user, password = credentials
        user_ok = timing_safe_equal(ADMIN_BASIC_USER, user)
        password_ok = timing_safe_equal(config.password, password)
        if not (user_ok and password_ok):
            return AuthDecision(allowed=False, reason="Invalid credentials")
        return AuthDecision(
            allowed=True,
            via="basic",
            issued_token=issue_admin_session_token(config.password),
        )

    return AuthDecision(allowed=False, reason="Authentication required")


def unauthorized_response(message: str, *, clear_cookie: bool = False) -> Response:
    response = jsonify({"ok": False, "error_code": "auth_required", "details": message})
    response.status_code = 401
    response.headers["WWW-Authenticate"] = f'Basic realm="{AUTH_REALM}", charset="UTF-8"'
    if clear_cookie:
        response.delete_cookie(ADMIN_COOKIE_NAME, path="/")
    return response


def install_admin_gate(app: Flask) -> None:
    """Register the before/after request hooks guarding admin routes."""

    @app.before_request
    def _admin_gate():
        if request.method == "OPTIONS" or not needs_admin_auth(request.path, request.method):
            return None

        config = load_admin_auth_config()
        if not config:
            logger.error("admin_auth_unconfigured ADMIN_PASSWORD is not set")
            return jsonify({"ok": False, "error_code": "missing_env", "details": "Admin password not configured"}), 503

        decision = authenticate(
            config,
            cookie_token=request.cookies.get(ADMIN_COOKIE_NAME),
            authorization=request.headers.get("Authorization"),
        )
        if not decision.allowed:
            logger.info(f"admin_auth_denied path={request.path} reason={decision.reason}")
            # A rejected Basic attempt keeps any existing cookie untouched.
            return unauthorized_response(
                decision.reason or "Authentication required",
                clear_cookie=decision.reason == "Authentication required",
            )

        g.admin_auth_via = decision.via
        g.admin_issued_token = decision.issued_token
        return None

    @app.after_request
    def _admin_issue_cookie(response: Response) -> Response:
        token = g.get("admin_issued_token")
        if token:
            response.set_cookie(**admin_session_cookie(token, secure=bool(app.config.get("ADMIN_COOKIE_SECURE"))))
            response.headers["Cache-Control"] = "no-store"
        return response
