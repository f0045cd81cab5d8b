from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence

from lifesim.domain.errors import TransactionsUnsupported


ChangeEventType = str
ALL_CHANGE_EVENTS: tuple[ChangeEventType, ...] = ("INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class In:
    values: tuple[Any, ...]

    def __init__(self, values: Sequence[Any]) -> None:
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Neq:
    value: Any


@dataclass(frozen=True)
class IsNull:
    pass


Filters = Mapping[str, Any]


def row_matches(row: Mapping[str, Any], filters: Optional[Filters]) -> bool:
    for column, expected in (filters or {}).items():
        actual = row.get(column)
        if isinstance(expected, In):
            if not any(_same(actual, value) for value in expected.values):
                return False
        elif isinstance(expected, Neq):
            if _same(actual, expected.value):
                return False
        elif isinstance(expected, IsNull):
            if actual is not None:
                return False
        elif not _same(actual, expected):
            return False
    return True


def _same(actual: Any, expected: Any) -> bool:
    if actual is None or expected is None:
        return actual is None and expected is None
    # ids may come back as int from one backend and str from another
    return actual == expected or str(actual) == str(expected)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: ChangeEventType
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None

    @property
    def record(self) -> Optional[dict[str, Any]]:
        return self.new if self.new is not None else self.old


@dataclass
class Subscription:
    id: int
    table: str
    handler: Callable[[ChangeEvent], None]
    events: tuple[ChangeEventType, ...] = ALL_CHANGE_EVENTS
    filters: dict[str, Any] = field(default_factory=dict)

    def wants(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.event_type not in self.events:
            return False
        record = event.record or {}
        return row_matches(record, self.filters)


class RemoteStore(ABC):
    """Query/mutation client plus change feed of the managed backend."""

    @abstractmethod
    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update(self, table: str, changes: Mapping[str, Any], *, filters: Filters) -> List[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, table: str, *, filters: Filters) -> int:
        raise NotImplementedError

    @abstractmethod
    def invoke(self, function_name: str, payload: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def subscribe(
        self,
        table: str,
        handler: Callable[[ChangeEvent], None],
        *,
        events: Sequence[ChangeEventType] = ALL_CHANGE_EVENTS,
        filters: Optional[Filters] = None,
    ) -> Subscription:
        raise NotImplementedError

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        raise NotImplementedError

    @property
    def supports_push(self) -> bool:
        return True

    @property
    def supports_transactions(self) -> bool:
        return False

    @contextmanager
    def transaction(self) -> Iterator["RemoteStore"]:
        raise TransactionsUnsupported(f"{type(self).__name__} cannot group writes into one transaction")
        yield self  # pragma: no cover

    def select_one(self, table: str, *, filters: Filters) -> Optional[dict[str, Any]]:
        rows = self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None


class KeyValueCache(ABC):
    """Local, non-authoritative cache (session or per-device)."""

    @abstractmethod
    def get(self, key: str, *, ttl_seconds: Optional[int] = None, allow_stale: bool = False) -> Any:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError
