"""Cloudflare Images API client."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Optional, Tuple, Union
from urllib.parse import quote

import requests

from vppadmin.config.env import read_bool_env, read_env
from vppadmin.net.responses import obfuscate_id, safe_parse_json
from vppadmin.net.retry import AttemptOutcome, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_RETRIES = 1


@dataclass(frozen=True)
class ImagesConfig:
    account_id: str
    token: str = field(repr=False)
    base_url: str = ""


@dataclass
class ImagesResponse:
    ok: bool
    status: int
    attempts: int
    latency_ms: int
    ray_id: Optional[str] = None
    data: Any = None
    error: Any = None
    timed_out: bool = False

    @property
    def ray_ids(self):
        return [self.ray_id] if self.ray_id else []


def normalize_base_url(base_url: str) -> str:
    trimmed = re.sub(r"\s+", "", base_url or "")
    return trimmed.rstrip("/")


def load_images_config() -> Optional[ImagesConfig]:
    if read_bool_env("CF_IMAGES_ENABLED") is not True:
        return None
    account_id = read_env("CF_IMAGES_ACCOUNT_ID")
    token = read_env("CF_IMAGES_TOKEN")
    base_url = read_env("CF_IMAGES_BASE_URL")
    if not account_id or not token or not base_url:
        return None
    return ImagesConfig(account_id=account_id, token=token, base_url=normalize_base_url(base_url))


class ImagesClient:
    def __init__(
        self,
        config: ImagesConfig,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retries: int = DEFAULT_RETRIES,
        api_base_url: str = API_BASE_URL,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.policy = RetryPolicy(
            max_attempts=retries + 1,
            timeout=timeout,
            extra_retry_statuses=frozenset(),
            retry_on_timeout=True,
            retry_on_transport_error=True,
        )
        self.account_url = f"{api_base_url}/accounts/{config.account_id}"

    def _log_retry(self, outcome: AttemptOutcome) -> None:
        logger.warning(
            f"cdn_images_retry attempt={outcome.attempt} status={outcome.status} "
            f"account={obfuscate_id(self.config.account_id)} ray={outcome.ray_id} error={outcome.error}"
        )

    def request(self, method: str, path: str, **kwargs: Any) -> ImagesResponse:
        url = f"{self.account_url}{path}"
        headers = {"Authorization": f"Bearer {self.config.token}"}
        headers.update(kwargs.pop("headers", None) or {})

        def send(timeout: float) -> requests.Response:
            return self.session.request(method, url, headers=headers, timeout=timeout, **kwargs)

        report = call_with_retry(send, self.policy, label="cdn_images", on_retry=self._log_retry)
        final = report.final
        if final.response is None:
            return ImagesResponse(
                ok=False,
                status=0,
                attempts=report.attempt_count,
                latency_ms=final.latency_ms,
                error=final.error,
                timed_out=final.timed_out,
            )
        data = safe_parse_json(final.response, context="cdn_images")
        return ImagesResponse(
            ok=final.ok,
            status=final.status,
            attempts=report.attempt_count,
            latency_ms=final.latency_ms,
            ray_id=final.ray_id,
            data=data,
            error=None if final.ok else data,
        )

    def test(self) -> ImagesResponse:
        """List a single image to prove the account and token work."""
        result = self.request("GET", "/images/v1", params={"page": 1, "per_page": 1})
        logger.info(
            f"cdn_images_test ok={result.ok} status={result.status} ray={result.ray_id} "
            f"attempts={result.attempts} latency_ms={result.latency_ms} "
            f"account={obfuscate_id(self.config.account_id)}"
        )
        return result

    def upload(
        self,
        file: Union[bytes, BinaryIO, Tuple[str, Any]],
        *,
        metadata: Optional[Dict[str, Any]] = None,
        variant: Optional[str] = None,
    ) -> ImagesResponse:
        params = {"variant": variant} if variant else None
        data = {"metadata": json.dumps(metadata, separators=(",", ":"))} if metadata else None
        return self.request("POST", "/images/v1", params=params, files={"file": file}, data=data)

    def delete(self, image_id: str) -> ImagesResponse:
        return self.request("DELETE", f"/images/v1/{quote(image_id, safe='')}")

    def delivery_url(self, image_id: str, variant: Optional[str] = None) -> str:
        suffix = f"/{quote(variant, safe='')}" if variant else ""
        return f"{normalize_base_url(self.config.base_url)}/{quote(image_id, safe='')}{suffix}"
