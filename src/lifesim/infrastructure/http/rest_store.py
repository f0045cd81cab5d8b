"""PostgREST-style client for a hosted backend (``/rest/v1/<table>``)."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence

import httpx

from lifesim.domain.errors import RemoteFunctionNotFound, RemoteStoreError
from lifesim.domain.repositories import (
    ALL_CHANGE_EVENTS,
    ChangeEvent,
    ChangeEventType,
    Filters,
    In,
    IsNull,
    Neq,
    RemoteStore,
    Subscription,
)
from lifesim.infrastructure.resilient_http import ResourceBreakers, send_rest_request


logger = logging.getLogger(__name__)


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quoted(value: Any) -> str:
    text_value = _literal(value)
    if any(ch in text_value for ch in ',()"'):
        escaped = text_value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text_value


def filter_params(filters: Optional[Filters]) -> list[tuple[str, str]]:
    """Translate store filters into PostgREST query operators."""

    params: list[tuple[str, str]] = []
    for column, expected in (filters or {}).items():
        if isinstance(expected, In):
            joined = ",".join(_quoted(value) for value in expected.values)
            params.append((column, f"in.({joined})"))
        elif isinstance(expected, Neq):
            params.append((column, f"neq.{_literal(expected.value)}"))
        elif isinstance(expected, IsNull) or expected is None:
            params.append((column, "is.null"))
        else:
            params.append((column, f"eq.{_literal(expected)}"))
    return params


class HttpRemoteStore(RemoteStore):
    """Talks to the hosted backend over its REST surface.

    This transport has no change feed and no multi-statement transactions;
    callers poll and use server functions for grouped writes.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 10.0,
        retries: int = 0,
        backoff_seconds: float = 0.2,
        http_client: httpx.Client | None = None,
        breakers: ResourceBreakers | None = None,
    ) -> None:
        self.breakers = breakers if breakers is not None else ResourceBreakers.from_env()
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = http_client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)

    @property
    def supports_push(self) -> bool:
        return False

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            return send_rest_request(
                self.client,
                method,
                path,
                params=params,
                json_body=json_body,
                headers=headers,
                breakers=self.breakers,
                retries=self._retries,
                backoff_seconds=self._backoff_seconds,
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise RemoteStoreError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _rows(payload: Any) -> List[dict[str, Any]]:
        if payload is None:
            return []
        if isinstance(payload, dict):
            return [payload]
        return [dict(row) for row in payload]

    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict[str, Any]]:
        params = [("select", "*")] + filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(max(0, int(limit)))))
        return self._rows(self._request("GET", f"/rest/v1/{table}", params=params))

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"/rest/v1/{table}",
            json_body=dict(row),
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(payload)
        return rows[0] if rows else dict(row)

    def update(self, table: str, changes: Mapping[str, Any], *, filters: Filters) -> List[dict[str, Any]]:
        return self._rows(
            self._request(
                "PATCH",
                f"/rest/v1/{table}",
                params=filter_params(filters),
                json_body=dict(changes),
                headers={"Prefer": "return=representation"},
            )
        )

    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"/rest/v1/{table}",
            params=[("on_conflict", ",".join(on_conflict))],
            json_body=dict(row),
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        rows = self._rows(payload)
        return rows[0] if rows else dict(row)

    def delete(self, table: str, *, filters: Filters) -> int:
        payload = self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=filter_params(filters),
            headers={"Prefer": "return=representation"},
        )
        return len(self._rows(payload))

    def invoke(self, function_name: str, payload: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        path = f"/rest/v1/rpc/{function_name}"
        try:
            result = send_rest_request(
                self.client,
                "POST",
                path,
                json_body=dict(payload or {}),
                breakers=self.breakers,
                retries=self._retries,
                backoff_seconds=self._backoff_seconds,
            )
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                raise RemoteFunctionNotFound(f"No server function named {function_name}") from exc
            raise RemoteStoreError(f"POST {path} failed: {exc}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise RemoteStoreError(f"POST {path} failed: {exc}") from exc
        if isinstance(result, dict):
            return result
        return {"result": result}

    def subscribe(
        self,
        table: str,
        handler: Callable[[ChangeEvent], None],
        *,
        events: Sequence[ChangeEventType] = ALL_CHANGE_EVENTS,
        filters: Optional[Filters] = None,
    ) -> Subscription:
        raise RemoteStoreError("The REST transport has no change feed; poll instead")

    def unsubscribe(self, subscription: Subscription) -> None:
        return None

    def close(self) -> None:
        self.client.close()
