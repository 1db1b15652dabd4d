"""Bounded retry for single upstream HTTP calls.

A `RetryPolicy` is a plain value (attempt budget, per-attempt timeout and
which outcomes are retryable). `call_with_retry` runs one request under a
policy using tenacity and reports every attempt, so callers can collect
correlation ids and attempt counts without writing their own loops.

Attempts never raise for transport failures: a timeout or connection error
is captured on the `AttemptOutcome` and fed to the retry decision like an
HTTP status.

The per-attempt timeout is handed to requests as `timeout=`, which bounds the
connect and each socket read, not the whole exchange; a server that keeps
trickling bytes can hold one attempt past it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional

import requests
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_none

from vppadmin.net.responses import elapsed_ms, ray_id_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    timeout: float = 25.0
    retry_on_server_error: bool = True
    extra_retry_statuses: FrozenSet[int] = frozenset({524})
    retry_on_timeout: bool = False
    retry_on_transport_error: bool = False

    def is_retryable_status(self, status: int) -> bool:
        if status in self.extra_retry_statuses:
            return True
        return self.retry_on_server_error and status >= 500

    def should_retry(self, outcome: "AttemptOutcome") -> bool:
        if outcome.response is not None:
            return self.is_retryable_status(outcome.response.status_code)
        if outcome.timed_out:
            return self.retry_on_timeout
        return self.retry_on_transport_error


@dataclass
class AttemptOutcome:
    attempt: int
    latency_ms: int
    response: Optional[requests.Response] = None
    error: Optional[BaseException] = None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, (requests.Timeout, TimeoutError))

    @property
    def status(self) -> int:
        return self.response.status_code if self.response is not None else 0

    @property
    def ok(self) -> bool:
        return self.response is not None and self.response.ok

    @property
    def ray_id(self) -> Optional[str]:
        return ray_id_of(self.response)


@dataclass
class RetryReport:
    final: AttemptOutcome
    attempts: List[AttemptOutcome] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def ray_ids(self) -> List[str]:
        return [a.ray_id for a in self.attempts if a.ray_id]


Send = Callable[[float], requests.Response]


def call_with_retry(
    send: Send,
    policy: RetryPolicy,
    *,
    label: str = "upstream",
    on_retry: Optional[Callable[[AttemptOutcome], None]] = None,
) -> RetryReport:
    """Run `send(timeout)` until it succeeds, is not retryable, or the budget is spent."""
    attempts: List[AttemptOutcome] = []

    def _attempt() -> AttemptOutcome:
        started = time.monotonic()
        number = len(attempts) + 1
        try:
            response = send(policy.timeout)
            outcome = AttemptOutcome(attempt=number, latency_ms=elapsed_ms(started, time.monotonic()), response=response)
        except requests.RequestException as e:
            outcome = AttemptOutcome(attempt=number, latency_ms=elapsed_ms(started, time.monotonic()), error=e)
        attempts.append(outcome)
        return outcome

    def _before_retry(state: RetryCallState) -> None:
        outcome = state.outcome.result()
        if on_retry is not None:
            on_retry(outcome)
        else:
            logger.warning(
                f"{label}_retry attempt={outcome.attempt} status={outcome.status} "
                f"timed_out={outcome.timed_out} ray={outcome.ray_id}"
            )

    retrying = Retrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_none(),
        retry=retry_if_result(policy.should_retry),
        before_sleep=_before_retry,
        retry_error_callback=lambda state: state.outcome.result(),
    )
    final = retrying(_attempt)
    return RetryReport(final=final, attempts=attempts)
