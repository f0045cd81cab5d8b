from __future__ import annotations

import copy
import itertools
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from lifesim.domain.errors import RemoteFunctionNotFound
from lifesim.domain.repositories import (
    ALL_CHANGE_EVENTS,
    ChangeEvent,
    ChangeEventType,
    Filters,
    RemoteStore,
    Subscription,
    row_matches,
)


logger = logging.getLogger(__name__)

ServerFunction = Callable[[RemoteStore, Mapping[str, Any]], dict]


def _sort_key(value: Any) -> tuple:
    if value is None:
        return (0, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value, "")
    text_value = str(value)
    if text_value.isdigit():
        return (1, int(text_value), "")
    return (2, 0, text_value)


class InMemoryRemoteStore(RemoteStore):
    """Dict-of-tables store with synchronous change fan-out.

    Inside :meth:`transaction` change events are held back until the
    outermost block commits, and every table is restored if it raises.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, dict[str, Any]]] = {}
        self._sequences: Dict[str, itertools.count] = {}
        self._functions: Dict[str, ServerFunction] = {}
        self._subscriptions: Dict[int, Subscription] = {}
        self._subscription_ids = itertools.count(1)
        self._transaction_depth = 0
        self._pending_events: List[ChangeEvent] = []

    @property
    def supports_transactions(self) -> bool:
        return True

    def register_function(self, name: str, function: ServerFunction) -> None:
        self._functions[name] = function

    def _table(self, table: str) -> Dict[str, dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def _next_id(self, table: str) -> str:
        counter = self._sequences.setdefault(table, itertools.count(1))
        rows = self._table(table)
        while True:
            candidate = str(next(counter))
            if candidate not in rows:
                return candidate

    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict[str, Any]]:
        rows = [dict(row) for row in self._table(table).values() if row_matches(row, filters)]
        if order_by:
            rows.sort(key=lambda row: _sort_key(row.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[: max(0, int(limit))]
        return rows

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        if stored.get("id") is None:
            stored["id"] = self._next_id(table)
        stored["id"] = str(stored["id"])
        self._table(table)[stored["id"]] = stored
        self._emit(ChangeEvent(table=table, event_type="INSERT", new=dict(stored)))
        return dict(stored)

    def update(self, table: str, changes: Mapping[str, Any], *, filters: Filters) -> List[dict[str, Any]]:
        updated: List[dict[str, Any]] = []
        for row_id, row in list(self._table(table).items()):
            if not row_matches(row, filters):
                continue
            old = dict(row)
            row.update({key: value for key, value in changes.items() if key != "id"})
            updated.append(dict(row))
            self._emit(ChangeEvent(table=table, event_type="UPDATE", new=dict(row), old=old))
        return updated

    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]) -> dict[str, Any]:
        keys = {column: row.get(column) for column in on_conflict}
        existing = self.select(table, filters=keys, limit=1)
        if existing:
            return self.update(table, row, filters={"id": existing[0]["id"]})[0]
        return self.insert(table, row)

    def delete(self, table: str, *, filters: Filters) -> int:
        rows = self._table(table)
        doomed = [row_id for row_id, row in rows.items() if row_matches(row, filters)]
        for row_id in doomed:
            old = rows.pop(row_id)
            self._emit(ChangeEvent(table=table, event_type="DELETE", old=old))
        return len(doomed)

    def invoke(self, function_name: str, payload: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        function = self._functions.get(function_name)
        if function is None:
            raise RemoteFunctionNotFound(f"No server function named {function_name}")
        return function(self, dict(payload or {}))

    def subscribe(
        self,
        table: str,
        handler: Callable[[ChangeEvent], None],
        *,
        events: Sequence[ChangeEventType] = ALL_CHANGE_EVENTS,
        filters: Optional[Filters] = None,
    ) -> Subscription:
        subscription = Subscription(
            id=next(self._subscription_ids),
            table=table,
            handler=handler,
            events=tuple(events),
            filters=dict(filters or {}),
        )
        self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryRemoteStore"]:
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        snapshot = copy.deepcopy(self._tables)
        self._transaction_depth = 1
        try:
            yield self
        except Exception:
            self._tables = snapshot
            self._pending_events = []
            raise
        finally:
            self._transaction_depth = 0
        events, self._pending_events = self._pending_events, []
        for event in events:
            self._fan_out(event)

    def _emit(self, event: ChangeEvent) -> None:
        if self._transaction_depth:
            self._pending_events.append(event)
            return
        self._fan_out(event)

    def _fan_out(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions.values()):
            if not subscription.wants(event):
                continue
            try:
                subscription.handler(event)
            except Exception:
                logger.exception(
                    "Change handler failed",
                    extra={"table": event.table, "event_type": event.event_type, "subscription": subscription.id},
                )

    def table_rows(self, table: str) -> List[dict[str, Any]]:
        return [dict(row) for row in self._table(table).values()]
