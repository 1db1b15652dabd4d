# CORS configuration
import logging
import os

from flask import request
from flask_cors import CORS

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def allowed_origins():
    """ADMIN_CORS_ORIGINS is a comma-separated list; local dev origins otherwise."""
    raw = os.environ.get("ADMIN_CORS_ORIGINS", "")
    origins = [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return origins or list(DEFAULT_ORIGINS)


def configure_cors(app):
    # Credentials are required for the admin session cookie
    CORS(app, resources={
        r"/api/*": {
            "origins": allowed_origins(),
            "methods": ["GET", "POST", "OPTIONS", "PUT"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
        }
    }, supports_credentials=True)

    @app.after_request
    def log_cors(response):
        origin = request.headers.get("Origin")
        if origin:
            logger.debug(f"CORS origin={origin} method={request.method} status={response.status_code}")
        return response

    return app
