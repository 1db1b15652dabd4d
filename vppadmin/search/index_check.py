"""Search index (Algolia) connectivity verification over its REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from vppadmin.config.env import first_env, read_env
from vppadmin.net.responses import safe_parse_json
from vppadmin.net.retry import RetryPolicy, call_with_retry
from vppadmin.storage.db_errors import classify_http_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_RETRIES = 1


@dataclass(frozen=True)
class SearchConfig:
    app_id: str
    api_key: str = field(repr=False)
    index_name: str = ""

    @property
    def base_url(self) -> str:
        return f"https://{self.app_id}-dsn.algolia.net"


@dataclass
class IndexCheckResult:
    ok: bool
    latency_ms: int
    attempts: int = 0
    status: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": self.ok, "latency_ms": self.latency_ms, "ray_ids": []}
        if not self.ok:
            body["error_code"] = self.error_code or "unknown"
            if self.error_message:
                body["details"] = self.error_message
        return body


def load_search_config() -> Optional[SearchConfig]:
    app_id = read_env("ALGOLIA_APP_ID")
    api_key = first_env("ALGOLIA_ADMIN_API_KEY", "ALGOLIA_API_KEY")
    index_name = first_env("ALGOLIA_INDEX_PRIMARY", "ALGOLIA_INDEX")
    if not app_id or not api_key or not index_name:
        return None
    return SearchConfig(app_id=app_id, api_key=api_key, index_name=index_name)


class SearchIndexClient:
    def __init__(
        self,
        config: SearchConfig,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retries: int = DEFAULT_RETRIES,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.policy = RetryPolicy(
            max_attempts=retries + 1,
            timeout=timeout,
            extra_retry_statuses=frozenset(),
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Algolia-Application-Id": self.config.app_id,
            "X-Algolia-API-Key": self.config.api_key,
        }

    def verify_index(self) -> IndexCheckResult:
        """Distinguish 'unreachable' from 'reachable but the index is missing'."""
        url = f"{self.config.base_url}/1/indexes"

        def send(timeout: float) -> requests.Response:
            return self.session.get(url, headers=self._headers(), timeout=timeout)

        report = call_with_retry(send, self.policy, label="search_index")
        final = report.final
        latency = sum(a.latency_ms for a in report.attempts)

        if final.response is None:
            code = "timeout" if final.timed_out else "unknown"
            message = (
                f"Algolia request timed out after {int(self.policy.timeout * 1000)}ms"
                if final.timed_out
                else "Algolia request failed"
            )
            result = IndexCheckResult(
                ok=False, latency_ms=latency, attempts=report.attempt_count, error_code=code, error_message=message
            )
        elif not final.ok:
            kind = classify_http_status(final.status)
            if kind == "auth_failed":
                message = "Algolia credentials were rejected"
            else:
                message = f"Algolia responded with HTTP {final.status}"
            result = IndexCheckResult(
                ok=False,
                latency_ms=latency,
                attempts=report.attempt_count,
                status=final.status,
                error_code=kind or "http_error",
                error_message=message,
            )
        else:
            data = safe_parse_json(final.response, context="search_index") or {}
            items = data.get("items") if isinstance(data, dict) else None
            names = {item.get("name") for item in items or [] if isinstance(item, dict)}
            exists = self.config.index_name in names
            result = IndexCheckResult(
                ok=exists,
                latency_ms=latency,
                attempts=report.attempt_count,
                status=final.status,
                error_code=None if exists else "index_not_found",
            )

        log = logger.info if result.ok else logger.warning
        log(
            f"search_index_check ok={result.ok} error_code={result.error_code} "
            f"latency_ms={result.latency_ms} attempts={result.attempts}"
        )
        return result
