"""Retries and per-resource circuit breakers for the REST backend.

A resource is one table (``users``) or one server function
(``rpc/transfer_funds``). A table that keeps timing out is cut off on its
own, so a flaky ``inventory`` endpoint does not block wallet reads.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from lifesim.domain.errors import RemoteStoreError


logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1/"
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
# A retried write could debit a wallet twice.
SAFE_TO_RETRY = frozenset({"GET", "HEAD"})


class CircuitOpenError(RemoteStoreError):
    code = "circuit_open"

    def __init__(self, resource: str, retry_at: float) -> None:
        super().__init__(f"Backend resource {resource} is cooling down until {int(retry_at)}")
        self.resource = resource
        self.retry_at = retry_at


def resource_for(path: str) -> str:
    """``/rest/v1/users`` -> ``users``; ``/rest/v1/rpc/decrease_hunger`` -> ``rpc/decrease_hunger``."""

    trimmed = path.split("?", 1)[0]
    if trimmed.startswith(REST_PREFIX):
        trimmed = trimmed[len(REST_PREFIX):]
    return trimmed.strip("/") or "root"


@dataclass
class _Tally:
    failures: int = 0
    open_until: float = 0.0


class ResourceBreakers:
    """Consecutive-failure counters, one per REST resource."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        threshold: int = 3,
        cooldown_seconds: float = 120.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.enabled = enabled
        self.threshold = max(1, int(threshold))
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self._clock = clock
        self._tallies: dict[str, _Tally] = {}

    @classmethod
    def from_env(cls) -> "ResourceBreakers":
        enabled = str(os.getenv("LIFESIM_HTTP_CIRCUIT_BREAKER_ENABLED", "1")).strip().lower() in {"1", "true", "yes"}
        return cls(
            enabled=enabled,
            threshold=int(os.getenv("LIFESIM_HTTP_CIRCUIT_FAILURE_THRESHOLD", "3")),
            cooldown_seconds=float(os.getenv("LIFESIM_HTTP_CIRCUIT_RESET_SECONDS", "120")),
        )

    def is_open(self, resource: str) -> bool:
        tally = self._tallies.get(resource)
        return bool(self.enabled and tally and tally.open_until > self._clock())

    def check(self, resource: str) -> None:
        if not self.enabled:
            return
        tally = self._tallies.get(resource)
        if tally is None or tally.open_until <= 0:
            return
        if tally.open_until > self._clock():
            raise CircuitOpenError(resource, tally.open_until)
        # half-open: the next call decides
        self._tallies[resource] = _Tally(failures=self.threshold - 1)

    def succeeded(self, resource: str) -> None:
        self._tallies.pop(resource, None)

    def failed(self, resource: str) -> None:
        if not self.enabled:
            return
        tally = self._tallies.setdefault(resource, _Tally())
        tally.failures += 1
        if tally.failures >= self.threshold and tally.open_until <= self._clock():
            tally.open_until = self._clock() + self.cooldown_seconds
            logger.warning(
                "REST resource cut off after repeated failures",
                extra={"resource": resource, "failures": tally.failures, "cooldown_s": self.cooldown_seconds},
            )

    def reset(self) -> None:
        self._tallies.clear()


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


def send_rest_request(
    client: httpx.Client,
    method: str,
    path: str,
    *,
    breakers: Optional[ResourceBreakers] = None,
    params: Any = None,
    json_body: Any = None,
    headers: dict[str, str] | None = None,
    retries: int = 0,
    backoff_seconds: float = 0.2,
) -> Any:
    """Send one REST call and decode its JSON body (``None`` when empty).

    Reads are retried with exponential backoff; writes and rpc calls are
    sent once. Transport failures and retryable statuses count against the
    resource's breaker; 4xx answers do not.
    """

    verb = method.upper()
    resource = resource_for(path)
    attempts = max(0, int(retries)) + 1 if verb in SAFE_TO_RETRY else 1

    for attempt in range(attempts):
        if breakers is not None:
            breakers.check(resource)
        try:
            response = client.request(verb, path, params=params, json=json_body, headers=headers)
            if response.status_code in RETRYABLE_STATUS_CODES:
                raise httpx.HTTPStatusError(
                    f"Retryable HTTP status: {response.status_code}",
                    request=response.request,
                    response=response,
                )
            response.raise_for_status()
        except Exception as exc:
            if not _retryable(exc):
                raise
            if breakers is not None:
                breakers.failed(resource)
            if attempt >= attempts - 1:
                raise
            delay = max(0.0, backoff_seconds) * (2 ** attempt)
            logger.debug("Retrying REST read", extra={"resource": resource, "attempt": attempt + 1, "delay_s": delay})
            if delay > 0:
                time.sleep(delay)
            continue
        if breakers is not None:
            breakers.succeeded(resource)
        return response.json() if response.content else None

    return None
