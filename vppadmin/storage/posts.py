"""Blog post row writes.

Posts are category-scoped: a referenced category must exist, and a published
post keeps its slug.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import psycopg
from psycopg import sql

from vppadmin.cdn.page_cache import PageCacheInvalidator
from vppadmin.storage.columns import ColumnSpec, FieldValidationError, normalize_slug
from vppadmin.storage.pg_pool import Database
from vppadmin.storage.rows import RowUpdateResult, update_row
from vppadmin.storage.tables import categories_table, posts_table


class SlugLockedError(Exception):
    def __init__(self):
        super().__init__("slug_locked")


class InvalidCategoryError(ValueError):
    def __init__(self, category_slug: str):
        self.category_slug = category_slug
        super().__init__(f"Category {category_slug} does not exist.")


POST_COLUMNS: Dict[str, ColumnSpec] = {
    "title": ColumnSpec("title", "string", 255),
    "title_h1": ColumnSpec("title_h1", "string", 255),
    "short_summary": ColumnSpec("short_summary", "text", 1024),
    "content_html": ColumnSpec("content_html", "html"),
    "seo_title": ColumnSpec("seo_title", "string", 255),
    "seo_description": ColumnSpec("seo_description", "text", 512),
    "primary_cta_label": ColumnSpec("primary_cta_label", "string", 120),
    "primary_cta_url": ColumnSpec("primary_cta_url", "url", 2048),
    "secondary_cta_label": ColumnSpec("secondary_cta_label", "string", 120),
    "secondary_cta_url": ColumnSpec("secondary_cta_url", "url", 2048),
    "category_slug": ColumnSpec("category_slug", "string", 191),
    "hero_image_url": ColumnSpec("hero_image_url", "url", 2048),
    "published_at": ColumnSpec("published_at", "datetime"),
    "is_published": ColumnSpec("is_published", "boolean"),
}


def category_exists(conn: psycopg.Connection, category_slug: str) -> bool:
    query = sql.SQL("SELECT slug FROM {table} WHERE slug = %s LIMIT 1").format(table=categories_table())
    return conn.execute(query, (category_slug.strip(),)).fetchone() is not None


def _guard_post_write(slug: str, payload: Mapping[str, Any]):
    def check(conn: psycopg.Connection, existing: Dict[str, Any]) -> None:
        requested = payload.get("slug")
        if isinstance(requested, str) and requested.strip() and requested.strip() != slug:
            if existing.get("is_published"):
                raise SlugLockedError()
            raise FieldValidationError("slug", "Slug changes are not allowed.")

        category = payload.get("category_slug")
        if isinstance(category, str) and category.strip() and not category_exists(conn, category):
            raise InvalidCategoryError(category.strip())

    return check


def update_post(
    db: Database,
    slug: str,
    payload: Mapping[str, Any],
    *,
    invalidator: Optional[PageCacheInvalidator] = None,
) -> RowUpdateResult:
    normalized = normalize_slug(slug)
    table = posts_table()
    result = db.run_in_transaction(
        lambda conn: update_row(
            conn,
            table,
            "slug",
            normalized,
            payload,
            POST_COLUMNS,
            before_write=_guard_post_write(normalized, payload),
        )
    )
    if result.rows_affected > 0 and invalidator is not None:
        invalidator.post_changed(
            normalized, [result.previous.get("category_slug"), result.row.get("category_slug")]
        )
    return result
