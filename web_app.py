#!/usr/bin/env python3
"""
Flask admin backend for the virtual product pages site.
Features: admin gate, connectivity checks, CDN purges, product/post updates, security headers.
"""

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix
import logging
import os
import secrets
from typing import Any, Mapping, Optional
from dotenv import load_dotenv

from admin_api import AdminServices, admin_bp, blog_bp, limiter
from cors_config import configure_cors
from vppadmin.auth.gate import install_admin_gate

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def add_security_headers(response):
    """Add security headers; admin responses are JSON only."""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'
    return response


def create_app(config: Optional[Mapping[str, Any]] = None, services: Optional[AdminServices] = None) -> Flask:
    app = Flask(__name__)
    # Configure app to trust proxy headers (nginx forwards X-Forwarded-Proto, etc.)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)
    app = configure_cors(app)
    app.config['SECRET_KEY'] = os.environ.get('FLASK_SECRET_KEY', secrets.token_hex(32))
    app.json.sort_keys = False

    # ProxyFix lets Flask see HTTPS from X-Forwarded-Proto
    app.config['ADMIN_COOKIE_SECURE'] = os.environ.get('FLASK_ENV') == 'production'
    if config:
        app.config.update(config)

    app.extensions['vpp_admin'] = services or AdminServices()
    limiter.init_app(app)
    install_admin_gate(app)

    app.register_blueprint(admin_bp)
    app.register_blueprint(blog_bp)
    app.after_request(add_security_headers)

    @app.route('/api/health')
    @limiter.exempt
    def health_check():
        """Liveness only; does not touch any integration."""
        return jsonify({'status': 'healthy'})

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'ok': False, 'error_code': 'not_found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'ok': False, 'error_code': 'method_not_allowed'}), 405

    @app.errorhandler(429)
    def rate_limit_handler(error):
        """Custom rate limit handler"""
        return jsonify({
            'ok': False,
            'error_code': 'rate_limited',
            'message': 'Too many requests, please slow down',
            'retry_after': 60
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        return jsonify({'ok': False, 'error_code': 'unexpected_error'}), 500

    return app


app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5002))
    debug = os.environ.get('FLASK_ENV') == 'development'

    logger.info(f"Starting admin backend on port {port}")
    logger.info(f"Debug mode: {debug}")

    try:
        app.run(host='0.0.0.0', port=port, debug=debug, threaded=True)
    finally:
        app.extensions['vpp_admin'].databases.close()
