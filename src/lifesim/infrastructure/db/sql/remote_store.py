"""RemoteStore over a relational database through SQLAlchemy ``text()`` queries."""

from __future__ import annotations

import itertools
import json
import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

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


logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

ServerFunction = Callable[[RemoteStore, Mapping[str, Any]], dict]


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(str(name)):
        raise RemoteStoreError(f"Invalid identifier: {name!r}")
    return name


def _bind_value(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return value


def _row_to_dict(row) -> dict[str, Any]:
    payload = dict(row._mapping)
    for column, value in payload.items():
        # ids cross the store boundary as strings, whatever the column type
        if (column == "id" or column.endswith("_id")) and isinstance(value, int) and not isinstance(value, bool):
            payload[column] = str(value)
    return payload


class _Where:
    def __init__(self) -> None:
        self.clauses: list[str] = []
        self.params: dict[str, Any] = {}
        self._counter = itertools.count()

    def bind(self, value: Any) -> str:
        name = f"p{next(self._counter)}"
        self.params[name] = _bind_value(value)
        return f":{name}"

    def add(self, column: str, expected: Any) -> None:
        col = _identifier(column)
        if isinstance(expected, In):
            if not expected.values:
                self.clauses.append("1 = 0")
                return
            placeholders = ", ".join(self.bind(value) for value in expected.values)
            self.clauses.append(f"{col} IN ({placeholders})")
        elif isinstance(expected, Neq):
            if expected.value is None:
                self.clauses.append(f"{col} IS NOT NULL")
            else:
                self.clauses.append(f"({col} IS NULL OR {col} <> {self.bind(expected.value)})")
        elif isinstance(expected, IsNull) or expected is None:
            self.clauses.append(f"{col} IS NULL")
        else:
            self.clauses.append(f"{col} = {self.bind(expected)}")

    @classmethod
    def build(cls, filters: Optional[Filters]) -> "_Where":
        where = cls()
        for column, expected in (filters or {}).items():
            where.add(column, expected)
        return where

    @property
    def sql(self) -> str:
        return f" WHERE {' AND '.join(self.clauses)}" if self.clauses else ""


class SqlRemoteStore(RemoteStore):
    """Each call runs in its own transaction unless an outer
    :meth:`transaction` block is open on the calling thread.

    Change events are delivered to in-process subscribers after commit.
    Writes made by other processes are not pushed, so clients poll.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._local = threading.local()
        self._functions: Dict[str, ServerFunction] = {}
        self._subscriptions: Dict[int, Subscription] = {}
        self._subscription_ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def supports_push(self) -> bool:
        return False

    @property
    def supports_transactions(self) -> bool:
        return True

    def register_function(self, name: str, function: ServerFunction) -> None:
        self._functions[name] = function

    @contextmanager
    def transaction(self) -> Iterator["SqlRemoteStore"]:
        if getattr(self._local, "session", None) is not None:
            yield self
            return

        self._local.events = []
        try:
            with self._session_factory.begin() as session:
                self._local.session = session
                try:
                    yield self
                finally:
                    self._local.session = None
        except SQLAlchemyError as exc:
            self._local.events = []
            raise RemoteStoreError(f"Database operation failed: {exc}") from exc
        except Exception:
            self._local.events = []
            raise
        events, self._local.events = self._local.events, []
        for event in events:
            self._fan_out(event)

    @property
    def _session(self):
        session = getattr(self._local, "session", None)
        if session is None:
            raise RemoteStoreError("No open database session")
        return session

    def _dialect(self) -> str:
        bind = self._session.bind
        return bind.dialect.name if bind is not None else "sqlite"

    def _emit(self, event: ChangeEvent) -> None:
        self._local.events.append(event)

    def _select_rows(self, table: str, filters: Optional[Filters], order_by=None, descending=False, limit=None):
        where = _Where.build(filters)
        sql = f"SELECT * FROM {_identifier(table)}{where.sql}"
        if order_by:
            sql += f" ORDER BY {_identifier(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += f" LIMIT {max(0, int(limit))}"
        return [_row_to_dict(row) for row in self._session.execute(text(sql), where.params).all()]

    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict[str, Any]]:
        with self.transaction():
            return self._select_rows(table, filters, order_by, descending, limit)

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        payload = {_identifier(column): _bind_value(value) for column, value in row.items()}
        if payload.get("id") is None:
            payload.pop("id", None)
        columns = ", ".join(payload)
        placeholders = ", ".join(f":{column}" for column in payload)
        with self.transaction():
            result = self._session.execute(
                text(f"INSERT INTO {_identifier(table)} ({columns}) VALUES ({placeholders})"),
                payload,
            )
            row_id = payload.get("id", result.lastrowid)
            stored = self._select_rows(table, {"id": row_id}, limit=1)
            created = stored[0] if stored else {**dict(row), "id": str(row_id)}
            self._emit(ChangeEvent(table=table, event_type="INSERT", new=dict(created)))
        return created

    def update(self, table: str, changes: Mapping[str, Any], *, filters: Filters) -> List[dict[str, Any]]:
        assignments = {_identifier(column): _bind_value(value) for column, value in changes.items() if column != "id"}
        with self.transaction():
            before = self._select_rows(table, filters)
            if not before or not assignments:
                return before
            ids = [row["id"] for row in before]
            where = _Where.build({"id": In(ids)})
            set_sql = ", ".join(f"{column} = :set_{column}" for column in assignments)
            params = dict(where.params)
            params.update({f"set_{column}": value for column, value in assignments.items()})
            self._session.execute(text(f"UPDATE {_identifier(table)} SET {set_sql}{where.sql}"), params)
            after = self._select_rows(table, {"id": In(ids)})
            old_by_id = {row["id"]: row for row in before}
            for row in after:
                self._emit(ChangeEvent(table=table, event_type="UPDATE", new=dict(row), old=old_by_id.get(row["id"])))
        return after

    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]) -> dict[str, Any]:
        keys = {column: row.get(column) for column in on_conflict}
        payload = {_identifier(column): _bind_value(value) for column, value in row.items() if column != "id"}
        with self.transaction():
            dialect = self._dialect()
            columns = ", ".join(payload)
            placeholders = ", ".join(f":{column}" for column in payload)
            updatable = [column for column in payload if column not in keys]
            if dialect in {"sqlite", "postgresql"} and updatable:
                conflict_cols = ", ".join(_identifier(column) for column in on_conflict)
                set_sql = ", ".join(f"{column} = excluded.{column}" for column in updatable)
                sql = (
                    f"INSERT INTO {_identifier(table)} ({columns}) VALUES ({placeholders}) "
                    f"ON CONFLICT ({conflict_cols}) DO UPDATE SET {set_sql}"
                )
            elif dialect.startswith("mysql") and updatable:
                set_sql = ", ".join(f"{column} = VALUES({column})" for column in updatable)
                sql = f"INSERT INTO {_identifier(table)} ({columns}) VALUES ({placeholders}) ON DUPLICATE KEY UPDATE {set_sql}"
            else:
                existing = self._select_rows(table, keys, limit=1)
                if existing:
                    return self.update(table, row, filters={"id": existing[0]["id"]})[0]
                return self.insert(table, row)
            previous = self._select_rows(table, keys, limit=1)
            self._session.execute(text(sql), payload)
            stored = self._select_rows(table, keys, limit=1)[0]
            if previous:
                self._emit(ChangeEvent(table=table, event_type="UPDATE", new=dict(stored), old=previous[0]))
            else:
                self._emit(ChangeEvent(table=table, event_type="INSERT", new=dict(stored)))
        return stored

    def delete(self, table: str, *, filters: Filters) -> int:
        with self.transaction():
            doomed = self._select_rows(table, filters)
            if not doomed:
                return 0
            where = _Where.build({"id": In([row["id"] for row in doomed])})
            self._session.execute(text(f"DELETE FROM {_identifier(table)}{where.sql}"), where.params)
            for row in doomed:
                self._emit(ChangeEvent(table=table, event_type="DELETE", old=row))
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
        with self._lock:
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
        with self._lock:
            self._subscriptions.pop(subscription.id, None)

    def _fan_out(self, event: ChangeEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            if not subscription.wants(event):
                continue
            try:
                subscription.handler(event)
            except Exception:
                logger.exception(
                    "Change handler failed",
                    extra={"table": event.table, "event_type": event.event_type, "subscription": subscription.id},
                )
