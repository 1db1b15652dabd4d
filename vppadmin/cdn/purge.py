"""CDN edge-cache purging (Cloudflare zone purge API).

Selective purges are split into chunks of at most MAX_URLS_PER_REQUEST URLs
and issued one after another; each chunk gets its own retry budget and its
own PurgeResult, so one failing chunk does not hide the outcome of the rest.
Aggregating chunk results is left to `combine_purge_results`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from vppadmin.cdn.purge_batches import PurgeBatchStore, dedupe
from vppadmin.config.env import read_bool_env, read_env
from vppadmin.net.responses import obfuscate_id, safe_parse_json
from vppadmin.net.retry import RetryPolicy, RetryReport, call_with_retry

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.cloudflare.com/client/v4"
MAX_URLS_PER_REQUEST = 2000
DEFAULT_TIMEOUT_SECONDS = 25.0
MAX_ATTEMPTS = 2

PurgeMode = Literal["selective", "everything"]


class MissingSiteUrlError(Exception):
    def __init__(self):
        super().__init__("Unable to resolve site URL for purge operation")


@dataclass(frozen=True)
class PurgeConfig:
    zone_id: str
    api_token: str = field(repr=False)
    enable_purge_on_publish: bool = False
    include_product_urls: bool = False


def load_purge_config() -> Optional[PurgeConfig]:
    zone_id = read_env("CLOUDFLARE_ZONE_ID")
    api_token = read_env("CLOUDFLARE_API_TOKEN")
    if not zone_id or not api_token:
        return None
    return PurgeConfig(
        zone_id=zone_id,
        api_token=api_token,
        enable_purge_on_publish=read_bool_env("CLOUDFLARE_ENABLE_PURGE_ON_PUBLISH") or False,
        include_product_urls=read_bool_env("CLOUDFLARE_INCLUDE_PRODUCT_URLS") or False,
    )


def resolve_site_url(origin: Optional[str] = None) -> str:
    """Public site origin: the inbound request origin first, then SITE_URL."""
    if origin and origin.strip():
        return origin.strip().rstrip("/")
    explicit = read_env("SITE_URL")
    if explicit:
        return explicit.rstrip("/")
    raise MissingSiteUrlError()


def build_sitemap_urls(base_url: str) -> List[str]:
    normalized = base_url.rstrip("/")
    return [f"{normalized}/sitemap.xml", f"{normalized}/sitemap-products.xml"]


def build_product_urls(base_url: str, slugs: Iterable[str]) -> List[str]:
    normalized = base_url.rstrip("/")
    return [f"{normalized}/p/{quote(slug, safe='')}" for slug in slugs]


def build_purge_set(
    site_url: str,
    extra_urls: Iterable[str] = (),
    include_product_urls: bool = False,
    slugs: Iterable[str] = (),
) -> Tuple[str, ...]:
    """Sitemaps, then extra URLs, then (optionally) product pages; no repeats."""
    urls: List[str] = list(build_sitemap_urls(site_url))
    urls.extend(extra_urls)
    if include_product_urls:
        urls.extend(build_product_urls(site_url, slugs))
    return dedupe(urls)


def chunk_urls(urls: Sequence[str], size: int = MAX_URLS_PER_REQUEST) -> List[List[str]]:
    return [list(urls[i:i + size]) for i in range(0, len(urls), size)]


@dataclass
class PurgeResult:
    ok: bool
    status: int
    ray_ids: List[str]
    latency_ms: int
    attempts: int
    mode: PurgeMode
    error: Any = None
    timed_out: bool = False


@dataclass
class CombinedPurgeResult:
    ok: bool
    ray_ids: List[str]
    latency_ms: int
    attempts: int
    timed_out: bool = False

    @property
    def error_code(self) -> Optional[str]:
        if self.ok:
            return None
        return "timeout" if self.timed_out else "http_error"

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": self.ok,
            "ray_ids": self.ray_ids,
            "latency_ms": self.latency_ms,
            "attempts": self.attempts,
        }
        if self.error_code:
            body["error_code"] = self.error_code
        return body


def combine_purge_results(results: Iterable[PurgeResult]) -> CombinedPurgeResult:
    results = list(results)
    return CombinedPurgeResult(
        ok=all(r.ok for r in results),
        ray_ids=[ray for r in results for ray in r.ray_ids],
        latency_ms=sum(r.latency_ms for r in results),
        attempts=sum(r.attempts for r in results),
        timed_out=any(r.timed_out and not r.ok for r in results),
    )


class PurgeClient:
    """Issues purge requests for one zone."""

    def __init__(
        self,
        config: PurgeConfig,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        api_base_url: str = API_BASE_URL,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.timeout = timeout
        self.endpoint = f"{api_base_url}/zones/{config.zone_id}/purge_cache"

    def _policy(self, retry_on_timeout: bool) -> RetryPolicy:
        return RetryPolicy(max_attempts=MAX_ATTEMPTS, timeout=self.timeout, retry_on_timeout=retry_on_timeout)

    def _send(self, body: Dict[str, Any], mode: PurgeMode, retry_on_timeout: bool) -> PurgeResult:
        zone = obfuscate_id(self.config.zone_id)

        def send(timeout: float) -> requests.Response:
            return self.session.post(
                self.endpoint,
                json=body,
                headers={"Authorization": f"Bearer {self.config.api_token}"},
                timeout=timeout,
            )

        report: RetryReport = call_with_retry(send, self._policy(retry_on_timeout), label=f"cdn_purge_{mode}")
        final = report.final

        if final.response is None:
            logger.error(
                f"cdn_purge_failed mode={mode} zone={zone} attempts={report.attempt_count} "
                f"timed_out={final.timed_out} error={final.error}"
            )
            return PurgeResult(
                ok=False,
                status=0,
                ray_ids=report.ray_ids,
                latency_ms=final.latency_ms,
                attempts=report.attempt_count,
                mode=mode,
                error=final.error,
                timed_out=final.timed_out,
            )

        data = safe_parse_json(final.response, context="cdn_purge")
        result = PurgeResult(
            ok=final.ok,
            status=final.status,
            ray_ids=report.ray_ids,
            latency_ms=final.latency_ms,
            attempts=report.attempt_count,
            mode=mode,
            error=None if final.ok else data,
        )
        log = logger.info if result.ok else logger.warning
        log(
            f"cdn_purge mode={mode} ok={result.ok} status={result.status} rays={result.ray_ids} "
            f"attempts={result.attempts} latency_ms={result.latency_ms} zone={zone}"
        )
        return result

    def purge(self, urls: Sequence[str], *, retry_on_timeout: bool = True) -> List[PurgeResult]:
        """Purge `urls`, one request per chunk, sequentially."""
        return [
            self._send({"files": chunk}, "selective", retry_on_timeout)
            for chunk in chunk_urls(list(urls))
        ]

    def purge_everything(self, *, retry_on_timeout: bool = False) -> PurgeResult:
        return self._send({"purge_everything": True}, "everything", retry_on_timeout)


def purge_on_publish(
    *,
    site_url: str,
    batches: Optional[PurgeBatchStore] = None,
    product_slugs: Iterable[str] = (),
    additional_urls: Iterable[str] = (),
    config: Optional[PurgeConfig] = None,
    client: Optional[PurgeClient] = None,
) -> Optional[List[PurgeResult]]:
    """Purge after a content change; None when purge-on-publish is off."""
    config = config or (client.config if client else None) or load_purge_config()
    if not config or not config.enable_purge_on_publish:
        return None

    urls = build_purge_set(site_url, additional_urls, config.include_product_urls, product_slugs)
    if batches is not None:
        batches.record(urls)
    client = client or PurgeClient(config)
    return client.purge(urls)
