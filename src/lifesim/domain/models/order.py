from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from lifesim.domain.errors import InvalidTransitionError


class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ManagerStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MotoboyStatus(str, Enum):
    WAITING = "waiting"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DELIVERED = "delivered"


class DeliveryType(str, Enum):
    PICKUP = "pickup"
    MOTOBOY = "motoboy"


@dataclass(frozen=True)
class OrderLine:
    item_id: str
    name: str
    price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return int(self.price) * int(self.quantity)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.item_id, "name": self.name, "price": self.price, "quantity": self.quantity}


def parse_order_lines(raw_value: Any) -> list[OrderLine]:
    payload = raw_value
    if isinstance(raw_value, str):
        try:
            payload = json.loads(raw_value) if raw_value.strip() else []
        except ValueError:
            payload = []
    lines: list[OrderLine] = []
    for entry in payload or []:
        if not isinstance(entry, Mapping) or not entry.get("id"):
            continue
        try:
            price = int(entry.get("price") or 0)
            quantity = int(entry.get("quantity") or 0)
        except (TypeError, ValueError):
            continue
        if quantity <= 0:
            continue
        lines.append(OrderLine(item_id=str(entry["id"]), name=str(entry.get("name") or entry["id"]), price=price, quantity=quantity))
    return lines


def lines_to_json(lines: list[OrderLine]) -> str:
    return json.dumps([line.as_dict() for line in lines], ensure_ascii=False)


@dataclass
class Order:
    id: Optional[str]
    store_id: str
    user_id: str
    buyer_username: str
    lines: list[OrderLine] = field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    delivery_type: DeliveryType = DeliveryType.PICKUP
    total: Optional[int] = None

    def __post_init__(self) -> None:
        if self.total is None:
            self.total = sum(line.subtotal for line in self.lines)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        lines = parse_order_lines(row.get("items_json"))
        try:
            delivery_type = DeliveryType(str(row.get("delivery_type") or DeliveryType.PICKUP.value))
        except ValueError:
            delivery_type = DeliveryType.PICKUP
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            store_id=str(row.get("store_id") or ""),
            user_id=str(row.get("user_id") or ""),
            buyer_username=str(row.get("buyer_username") or ""),
            lines=lines,
            status=OrderStatus(str(row.get("status") or OrderStatus.PENDING.value)),
            delivery_type=delivery_type,
            total=int(row.get("total_amount") or 0),
        )


_MANAGER_TRANSITIONS: dict[ManagerStatus, set[ManagerStatus]] = {
    ManagerStatus.PENDING: {ManagerStatus.APPROVED, ManagerStatus.REJECTED},
    ManagerStatus.APPROVED: set(),
    ManagerStatus.REJECTED: set(),
}

_MOTOBOY_TRANSITIONS: dict[MotoboyStatus, set[MotoboyStatus]] = {
    MotoboyStatus.WAITING: {MotoboyStatus.ACCEPTED, MotoboyStatus.REJECTED},
    MotoboyStatus.ACCEPTED: {MotoboyStatus.DELIVERED, MotoboyStatus.REJECTED},
    MotoboyStatus.REJECTED: set(),
    MotoboyStatus.DELIVERED: set(),
}


@dataclass
class MotoboyOrder:
    id: Optional[str]
    order_id: str
    store_id: str
    customer_username: str
    lines: list[OrderLine] = field(default_factory=list)
    total: int = 0
    manager_status: ManagerStatus = ManagerStatus.PENDING
    motoboy_status: MotoboyStatus = MotoboyStatus.WAITING
    manager_notes: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MotoboyOrder":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            order_id=str(row.get("order_id") or ""),
            store_id=str(row.get("store_id") or ""),
            customer_username=str(row.get("customer_username") or ""),
            lines=parse_order_lines(row.get("items_json")),
            total=int(row.get("total_amount") or 0),
            manager_status=ManagerStatus(str(row.get("manager_status") or ManagerStatus.PENDING.value)),
            motoboy_status=MotoboyStatus(str(row.get("motoboy_status") or MotoboyStatus.WAITING.value)),
            manager_notes=str(row.get("manager_notes") or ""),
        )

    def manager_decide(self, approve: bool) -> None:
        target = ManagerStatus.APPROVED if approve else ManagerStatus.REJECTED
        if target not in _MANAGER_TRANSITIONS[self.manager_status]:
            raise InvalidTransitionError(f"Manager cannot move order from {self.manager_status.value} to {target.value}")
        self.manager_status = target
        self.motoboy_status = MotoboyStatus.WAITING if approve else MotoboyStatus.REJECTED

    def motoboy_move(self, target: MotoboyStatus) -> None:
        if self.manager_status != ManagerStatus.APPROVED:
            raise InvalidTransitionError("Motoboy can only handle orders approved by the manager")
        if target not in _MOTOBOY_TRANSITIONS[self.motoboy_status]:
            raise InvalidTransitionError(f"Motoboy cannot move order from {self.motoboy_status.value} to {target.value}")
        self.motoboy_status = target
