from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class TransactionType(str, Enum):
    TRANSFER = "transfer"
    PURCHASE = "purchase"
    STORE_TRANSFER = "store_transfer"


@dataclass(frozen=True)
class TransactionRecord:
    id: Optional[str]
    amount: int
    transaction_type: str
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    from_username: Optional[str] = None
    to_username: Optional[str] = None
    description: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TransactionRecord":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            amount=int(row.get("amount") or 0),
            transaction_type=str(row.get("transaction_type") or TransactionType.TRANSFER.value),
            from_user_id=None if row.get("from_user_id") is None else str(row["from_user_id"]),
            to_user_id=None if row.get("to_user_id") is None else str(row["to_user_id"]),
            from_username=row.get("from_username") or None,
            to_username=row.get("to_username") or None,
            description=str(row.get("description") or ""),
            created_at=None if row.get("created_at") is None else str(row["created_at"]),
        )


@dataclass(frozen=True)
class SaleRecord:
    id: Optional[str]
    manager_id: str
    order_id: str
    buyer_username: str
    item_name: str
    amount: int
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SaleRecord":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            manager_id=str(row.get("manager_id") or ""),
            order_id=str(row.get("order_id") or ""),
            buyer_username=str(row.get("buyer_username") or ""),
            item_name=str(row.get("item_name") or ""),
            amount=int(row.get("amount") or 0),
            created_at=None if row.get("created_at") is None else str(row["created_at"]),
        )


@dataclass
class StoreManager:
    id: Optional[str]
    store_id: str
    username: str
    balance: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StoreManager":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            store_id=str(row.get("store_id") or ""),
            username=str(row.get("username") or ""),
            balance=int(row.get("balance") or 0),
        )
