"""
Admin API for the virtual product pages backend.
Connectivity checks, CDN purges and row updates, all behind the admin gate.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import requests
from flask import Blueprint, current_app, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from vppadmin.auth.session import load_admin_auth_config
from vppadmin.cdn.images import ImagesClient, load_images_config
from vppadmin.cdn.page_cache import PageCacheInvalidator
from vppadmin.cdn.purge import (
    MissingSiteUrlError,
    PurgeClient,
    build_purge_set,
    combine_purge_results,
    load_purge_config,
    resolve_site_url,
)
from vppadmin.cdn.purge_batches import NoPreviousBatchError, PurgeBatchStore
from vppadmin.net.responses import elapsed_ms
from vppadmin.search.index_check import SearchIndexClient, load_search_config
from vppadmin.storage.columns import FieldValidationError
from vppadmin.storage.db_errors import to_db_error_info
from vppadmin.storage.metrics import probe_database
from vppadmin.storage.pg_config import load_db_credentials, load_product_metrics_config
from vppadmin.storage.pg_pool import Database, DatabaseProvider
from vppadmin.storage.posts import POST_COLUMNS, InvalidCategoryError, SlugLockedError, update_post
from vppadmin.storage.products import PRODUCT_COLUMNS, WRITE_TEST_FIELDS, update_product
from vppadmin.storage.rows import RowUpdateResult
from vppadmin.storage.tables import InvalidIdentifierError

logger = logging.getLogger(__name__)

SITEMAP_PROBE_USER_AGENT = "vpp-connectivity-check"
SITEMAP_PROBE_TIMEOUT_SECONDS = 10

admin_bp = Blueprint("admin", __name__)
blog_bp = Blueprint("blog", __name__, url_prefix="/api/blog")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["2000 per day", "300 per hour"],
    storage_uri="memory://",
)


@dataclass
class AdminServices:
    """Process-wide collaborators shared by the admin endpoints."""

    purge_batches: PurgeBatchStore = field(default_factory=PurgeBatchStore)
    databases: DatabaseProvider = field(default_factory=DatabaseProvider)
    http: requests.Session = field(default_factory=requests.Session)
    purge_client_factory: Callable[..., PurgeClient] = PurgeClient
    images_client_factory: Callable[..., ImagesClient] = ImagesClient
    search_client_factory: Callable[..., SearchIndexClient] = SearchIndexClient

    def database(self) -> Optional[Database]:
        credentials = load_db_credentials()
        if credentials is None:
            return None
        return self.databases.get(credentials)


def services() -> AdminServices:
    return current_app.extensions["vpp_admin"]


def _error(code: str, status: int = 200, **extra: Any) -> Tuple[Any, int]:
    body: Dict[str, Any] = {"ok": False, "error_code": code, "ray_ids": []}
    body.update(extra)
    return jsonify(body), status


def _missing_env():
    return _error("missing_env", 503)


def _request_origin() -> str:
    # ProxyFix has already applied X-Forwarded-Host / X-Forwarded-Proto.
    return request.host_url.rstrip("/")


def _json_object() -> Optional[Dict[str, Any]]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None


def endpoint_guard(event: str):
    """Turn any unexpected exception into an `unexpected_error` envelope."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except Exception as e:
                logger.error(f"{event}_unexpected error={e}", exc_info=True)
                return _error("unexpected_error", 500)
        return decorated_function
    return decorator


def run_row_update(entity: str, run: Callable[[], RowUpdateResult], *, slug: str):
    """Run a product/post write, translating failures into error envelopes.

    Returns ``(result, None)`` on success and ``(None, response)`` otherwise.
    """
    try:
        result = run()
    except FieldValidationError as e:
        return None, _error("invalid_payload", 400, details=str(e))
    except InvalidCategoryError as e:
        return None, _error("invalid_category", 400, details=str(e))
    except SlugLockedError:
        return None, _error("slug_locked", 409)
    except InvalidIdentifierError as e:
        logger.error(f"{entity}_update_invalid_config error={e}")
        return None, _error("invalid_config", 500, details=str(e))
    except Exception as e:
        info = to_db_error_info(e)
        logger.error(
            f"{entity}_update_error slug={slug} kind={info.kind} sql_state={info.sql_state} message={info.message}",
            exc_info=info.kind == "unknown",
        )
        status = {"auth_failed": 401, "timeout": 504}.get(info.kind, 500)
        extra = {} if info.kind == "unknown" else {"details": info.message}
        return None, _error(info.public_code, status, **extra)

    if not result.found:
        return None, _error(f"{entity}_not_found", 404)
    logger.info(f"{entity}_update slug={slug} rows_affected={result.rows_affected}")
    return result, None


def _updated(entity: str, result: RowUpdateResult):
    return jsonify({"ok": True, "ray_ids": [], "rows_affected": result.rows_affected, entity: result.row})


def _invalidator() -> PageCacheInvalidator:
    return PageCacheInvalidator(batches=services().purge_batches, origin=_request_origin())


# ----------------------------
# Console
# ----------------------------

@admin_bp.route("/admin", methods=["GET"])
def admin_console():
    """Which integrations are configured, plus the replayable purge batch."""
    batch = services().purge_batches.last()
    return jsonify({
        "ok": True,
        "integrations": {
            "admin": load_admin_auth_config() is not None,
            "database": load_db_credentials() is not None,
            "purge": load_purge_config() is not None,
            "images": load_images_config() is not None,
            "search": load_search_config() is not None,
        },
        "last_purge_batch": None if batch is None else {
            "url_count": len(batch.urls),
            "created_at": batch.created_at.isoformat(),
        },
    })


# ----------------------------
# Database
# ----------------------------

@admin_bp.route("/api/admin/connectivity/db", methods=["GET"])
@endpoint_guard("db_connectivity")
def db_connectivity():
    db = services().database()
    if db is None:
        return _missing_env()
    result = probe_database(db, load_product_metrics_config())
    return jsonify(result.to_response())


@admin_bp.route("/api/admin/connectivity/db/update", methods=["POST"])
@limiter.limit("20 per minute")
@endpoint_guard("db_write_test")
def db_write_test():
    db = services().database()
    if db is None:
        return _missing_env()

    payload = _json_object()
    if payload is None:
        return _error("invalid_payload", 400)
    slug = payload.get("slug")
    if not isinstance(slug, str) or not slug.strip():
        return _error("missing_slug", 400)

    updates = {name: payload[name] for name in WRITE_TEST_FIELDS if name in payload}
    if not updates:
        return _error("no_updates", 400)
    updates["slug"] = slug.strip()

    result, failure = run_row_update("product", lambda: update_product(db, updates), slug=updates["slug"])
    if failure is not None:
        return failure
    if result.rows_affected == 0:
        return _error("no_updates", 200, product=result.row)
    return _updated("product", result)


# ----------------------------
# Row updates
# ----------------------------

@admin_bp.route("/api/admin/products", methods=["POST"])
@limiter.limit("60 per minute")
@endpoint_guard("product_update")
def product_update():
    db = services().database()
    if db is None:
        return _missing_env()

    payload = _json_object()
    if payload is None:
        return _error("invalid_payload", 400)
    slug = payload.get("slug")
    if not isinstance(slug, str) or not slug.strip():
        return _error("missing_slug", 400)

    updates: Dict[str, Any] = {name: payload[name] for name in PRODUCT_COLUMNS if name in payload}
    if not updates:
        return _error("no_updates", 400)
    updates["slug"] = slug.strip()

    invalidator = _invalidator()
    result, failure = run_row_update(
        "product",
        lambda: update_product(db, updates, invalidator=invalidator),
        slug=updates["slug"],
    )
    return failure if failure is not None else _updated("product", result)


@blog_bp.route("/posts/<slug>", methods=["PUT"])
@limiter.limit("60 per minute")
@endpoint_guard("post_update")
def post_update(slug: str):
    db = services().database()
    if db is None:
        return _missing_env()
    if not slug or not slug.strip():
        return _error("missing_slug", 400)

    payload = _json_object()
    if payload is None:
        return _error("invalid_payload", 400)
    updates: Dict[str, Any] = {name: payload[name] for name in POST_COLUMNS if name in payload}
    if "slug" in payload:
        updates["slug"] = payload["slug"]
    if not updates:
        return _error("no_updates", 400)

    invalidator = _invalidator()
    result, failure = run_row_update(
        "post",
        lambda: update_post(db, slug, updates, invalidator=invalidator),
        slug=slug.strip(),
    )
    return failure if failure is not None else _updated("post", result)


# ----------------------------
# CDN purge
# ----------------------------

def _string_list(value: Any):
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@admin_bp.route("/api/admin/connectivity/purge/sitemaps", methods=["POST"])
@limiter.limit("10 per minute")
@endpoint_guard("cdn_purge_sitemaps")
def purge_sitemaps():
    config = load_purge_config()
    if config is None:
        return _missing_env()
    try:
        site_url = resolve_site_url(_request_origin())
    except MissingSiteUrlError:
        return _error("missing_site_url", 503)

    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        payload = {}
    urls = build_purge_set(
        site_url,
        _string_list(payload.get("urls")),
        config.include_product_urls,
        _string_list(payload.get("productSlugs")),
    )
    svc = services()
    svc.purge_batches.record(urls)
    client = svc.purge_client_factory(config, session=svc.http)
    combined = combine_purge_results(client.purge(urls, retry_on_timeout=True))

    log = logger.info if combined.ok else logger.warning
    log(f"cdn_purge_endpoint ok={combined.ok} urls={len(urls)} rays={combined.ray_ids} attempts={combined.attempts}")
    return jsonify(combined.to_response())


@admin_bp.route("/api/admin/connectivity/purge/last-batch", methods=["POST"])
@limiter.limit("10 per minute")
@endpoint_guard("cdn_purge_last_batch")
def purge_last_batch():
    config = load_purge_config()
    if config is None:
        return _missing_env()
    svc = services()
    try:
        batch = svc.purge_batches.require_last()
    except NoPreviousBatchError:
        return _error("no_previous_batch", 409)

    client = svc.purge_client_factory(config, session=svc.http)
    combined = combine_purge_results(client.purge(batch.urls, retry_on_timeout=True))

    log = logger.info if combined.ok else logger.warning
    log(f"cdn_purge_last_batch ok={combined.ok} urls={len(batch.urls)} rays={combined.ray_ids} attempts={combined.attempts}")
    return jsonify(combined.to_response())


@admin_bp.route("/api/admin/connectivity/purge/everything", methods=["POST"])
@limiter.limit("5 per minute")
@endpoint_guard("cdn_purge_everything")
def purge_everything():
    config = load_purge_config()
    if config is None:
        return _missing_env()
    svc = services()
    client = svc.purge_client_factory(config, session=svc.http)
    combined = combine_purge_results([client.purge_everything()])

    log = logger.info if combined.ok else logger.warning
    log(f"cdn_purge_everything_endpoint ok={combined.ok} rays={combined.ray_ids} attempts={combined.attempts}")
    return jsonify(combined.to_response())


# ----------------------------
# Images, search, sitemap
# ----------------------------

@admin_bp.route("/api/admin/connectivity/images", methods=["GET"])
@endpoint_guard("cdn_images_test")
def images_connectivity():
    config = load_images_config()
    if config is None:
        return _missing_env()
    svc = services()
    result = svc.images_client_factory(config, session=svc.http).test()
    body: Dict[str, Any] = {"ok": result.ok, "latency_ms": result.latency_ms, "ray_ids": result.ray_ids}
    if not result.ok:
        body["error_code"] = "timeout" if result.timed_out else "http_error"
    return jsonify(body)


@admin_bp.route("/api/admin/connectivity/search", methods=["POST"])
@endpoint_guard("search_connectivity")
def search_connectivity():
    config = load_search_config()
    if config is None:
        return _missing_env()
    svc = services()
    result = svc.search_client_factory(config, session=svc.http).verify_index()
    return jsonify(result.to_response())


@admin_bp.route("/api/admin/connectivity/revalidate-sitemap", methods=["POST"])
@endpoint_guard("sitemap_probe")
def revalidate_sitemap():
    try:
        site_url = resolve_site_url(_request_origin())
    except MissingSiteUrlError:
        return _error("missing_site_url", 503)

    started = time.monotonic()
    try:
        response = services().http.get(
            f"{site_url}/sitemap.xml",
            headers={"User-Agent": SITEMAP_PROBE_USER_AGENT},
            timeout=SITEMAP_PROBE_TIMEOUT_SECONDS,
        )
    except requests.Timeout:
        return _error("timeout", 200, latency_ms=elapsed_ms(started, time.monotonic()))
    except requests.RequestException as e:
        logger.warning(f"sitemap_probe_failed site={site_url} error={e}")
        return _error("http_error", 200, latency_ms=elapsed_ms(started, time.monotonic()))

    latency = elapsed_ms(started, time.monotonic())
    if not response.ok:
        logger.warning(f"sitemap_probe_failed site={site_url} status={response.status_code}")
        return _error("http_error", 200, latency_ms=latency)
    logger.info(f"sitemap_probe_success site={site_url} latency_ms={latency}")
    return jsonify({"ok": True, "latency_ms": latency, "ray_ids": []})
