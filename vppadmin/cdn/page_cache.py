"""Invalidate public page caches after admin writes."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional
from urllib.parse import quote

from vppadmin.cdn.purge import MissingSiteUrlError, combine_purge_results, purge_on_publish, resolve_site_url
from vppadmin.cdn.purge_batches import PurgeBatchStore

logger = logging.getLogger(__name__)


def _unique_categories(categories: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(c for c in categories if c))


def product_paths(slug: str, categories: Iterable[Optional[str]]) -> List[str]:
    return [f"/p/{quote(slug, safe='')}"] + [f"/c/{quote(c, safe='')}" for c in _unique_categories(categories)]


def post_paths(slug: str, categories: Iterable[Optional[str]]) -> List[str]:
    return [f"/b/{quote(slug, safe='')}"] + [f"/bc/{quote(c, safe='')}" for c in _unique_categories(categories)]


class PageCacheInvalidator:
    """Purges product/post pages through the CDN when purge-on-publish is on.

    Failures are logged; a write that already committed is never reported as
    failed because its cache could not be purged.
    """

    def __init__(self, *, batches: Optional[PurgeBatchStore] = None, origin: Optional[str] = None):
        self.batches = batches
        self.origin = origin

    def product_changed(self, slug: str, categories: Iterable[Optional[str]] = ()) -> None:
        self._invalidate(product_paths(slug, categories), product_slugs=[slug])

    def post_changed(self, slug: str, categories: Iterable[Optional[str]] = ()) -> None:
        self._invalidate(post_paths(slug, categories))

    def _invalidate(self, paths: List[str], product_slugs: Iterable[str] = ()) -> None:
        try:
            site_url = resolve_site_url(self.origin)
            results = purge_on_publish(
                site_url=site_url,
                batches=self.batches,
                product_slugs=product_slugs,
                additional_urls=[f"{site_url}{p}" for p in paths],
            )
        except MissingSiteUrlError:
            logger.warning(f"page_cache_invalidate_skipped reason=missing_site_url paths={paths}")
            return
        except Exception as e:
            logger.error(f"page_cache_invalidate_failed paths={paths} error={e}", exc_info=True)
            return
        if results is None:
            logger.debug(f"page_cache_invalidate_disabled paths={paths}")
            return
        combined = combine_purge_results(results)
        log = logger.info if combined.ok else logger.warning
        log(f"page_cache_invalidate ok={combined.ok} paths={paths} rays={combined.ray_ids}")
