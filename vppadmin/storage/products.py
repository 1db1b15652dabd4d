"""Product row writes."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from vppadmin.cdn.page_cache import PageCacheInvalidator
from vppadmin.storage.columns import ColumnSpec, normalize_slug
from vppadmin.storage.pg_pool import Database
from vppadmin.storage.rows import RowUpdateResult, update_row
from vppadmin.storage.tables import products_table

PRODUCT_COLUMNS: Dict[str, ColumnSpec] = {
    "title_h1": ColumnSpec("title_h1", "string", 255),
    "short_summary": ColumnSpec("short_summary", "text", 512),
    "desc_html": ColumnSpec("desc_html", "html"),
    "primary_cta_label": ColumnSpec("primary_cta_label", "string", 120),
    "primary_cta_url": ColumnSpec("primary_cta_url", "url", 2048),
    "secondary_cta_label": ColumnSpec("secondary_cta_label", "string", 120),
    "secondary_cta_url": ColumnSpec("secondary_cta_url", "url", 2048),
    "price_display": ColumnSpec("price_display", "string", 120),
    "price_currency": ColumnSpec("price_currency", "string", 8),
    "price_amount": ColumnSpec("price_amount", "number"),
    "category_slug": ColumnSpec("category_slug", "string", 191),
    "hero_image_url": ColumnSpec("hero_image_url", "url", 2048),
    "gallery_image_urls": ColumnSpec("gallery_image_urls", "string_array"),
    "seo_title": ColumnSpec("seo_title", "string", 255),
    "seo_description": ColumnSpec("seo_description", "text", 512),
    "badge_label": ColumnSpec("badge_label", "string", 120),
    "availability_label": ColumnSpec("availability_label", "string", 255),
}

# Fields the connectivity write test is allowed to touch.
WRITE_TEST_FIELDS = ("title_h1", "short_summary", "desc_html")


def update_product(
    db: Database,
    payload: Mapping[str, Any],
    *,
    invalidator: Optional[PageCacheInvalidator] = None,
) -> RowUpdateResult:
    """Update one product by `payload["slug"]`; only changed columns are written."""
    slug = normalize_slug(payload.get("slug"))
    table = products_table()
    result = db.run_in_transaction(
        lambda conn: update_row(conn, table, "slug", slug, payload, PRODUCT_COLUMNS)
    )
    if result.rows_affected > 0 and invalidator is not None:
        invalidator.product_changed(
            slug, [result.previous.get("category_slug"), result.row.get("category_slug")]
        )
    return result

