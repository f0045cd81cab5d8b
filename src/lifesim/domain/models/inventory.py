from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass
class InventoryEntry:
    id: Optional[str]
    user_id: str
    item_id: str
    quantity: int = 1
    sent_by_user_id: Optional[str] = None
    sent_by_username: Optional[str] = None
    received_at: Optional[str] = None

    @property
    def was_received(self) -> bool:
        return bool(self.sent_by_username or self.sent_by_user_id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InventoryEntry":
        try:
            quantity = max(0, int(row.get("quantity") or 0))
        except (TypeError, ValueError):
            quantity = 0
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            item_id=str(row.get("item_id") or ""),
            quantity=quantity,
            sent_by_user_id=None if row.get("sent_by_user_id") is None else str(row["sent_by_user_id"]),
            sent_by_username=row.get("sent_by_username") or None,
            received_at=None if row.get("received_at") is None else str(row["received_at"]),
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "user_id": self.user_id,
            "item_id": self.item_id,
            "quantity": int(self.quantity),
            "sent_by_user_id": self.sent_by_user_id,
            "sent_by_username": self.sent_by_username,
            "received_at": self.received_at,
        }
        if self.id is not None:
            row["id"] = self.id
        return row
