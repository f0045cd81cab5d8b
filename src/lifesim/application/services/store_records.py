"""Row-level helpers shared by the services that talk to the RemoteStore."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from lifesim.domain.errors import ValidationError
from lifesim.domain.models.inventory import InventoryEntry
from lifesim.domain.models.player import Player
from lifesim.domain.repositories import RemoteStore


USERS = "users"
INVENTORY = "inventory"
CUSTOM_ITEMS = "custom_items"
TRANSACTIONS = "transactions"
STORE_MANAGERS = "store_managers"
ORDERS = "orders"
MANAGER_SALES = "manager_sales"
MOTOBOY_ORDERS = "motoboy_orders"
PROPOSALS = "proposal_requests"
RELATIONSHIPS = "relationships"
TREATMENTS = "hospital_treatment_requests"
GAME_CLOCK = "game_clock"
FRIEND_REQUESTS = "friend_requests"
FRIENDSHIP_ITEMS = "friendship_item_requests"
CONNECTED_SOULS = "connected_souls"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_player(store: RemoteStore, username: str) -> Optional[Player]:
    row = store.select_one(USERS, filters={"username": username})
    return Player.from_row(row) if row else None


def find_player_by_id(store: RemoteStore, user_id: str) -> Optional[Player]:
    row = store.select_one(USERS, filters={"id": user_id})
    return Player.from_row(row) if row else None


def require_player(store: RemoteStore, username: str) -> Player:
    player = find_player(store, username)
    if player is None:
        raise ValidationError(f"Usuário {username} não encontrado", code="not_found")
    return player


def require_player_by_id(store: RemoteStore, user_id: str) -> Player:
    player = find_player_by_id(store, user_id)
    if player is None:
        raise ValidationError(f"Usuário {user_id} não encontrado", code="not_found")
    return player


def update_user(store: RemoteStore, user_id: str, changes: dict[str, Any]) -> Optional[dict[str, Any]]:
    rows = store.update(USERS, changes, filters={"id": user_id})
    return rows[0] if rows else None


def inventory_entry(store: RemoteStore, user_id: str, item_id: str) -> Optional[InventoryEntry]:
    rows = store.select(INVENTORY, filters={"user_id": user_id, "item_id": item_id}, order_by="id")
    return InventoryEntry.from_row(rows[0]) if rows else None


def owned_quantity(store: RemoteStore, user_id: str, item_id: str) -> int:
    rows = store.select(INVENTORY, filters={"user_id": user_id, "item_id": item_id})
    return sum(int(row.get("quantity") or 0) for row in rows)


def manager_row(store: RemoteStore, store_id: str) -> Optional[dict[str, Any]]:
    return store.select_one(STORE_MANAGERS, filters={"store_id": store_id})


def record_transaction(
    store: RemoteStore,
    *,
    from_user: Optional[Player],
    to_user: Optional[Player],
    amount: int,
    transaction_type: str,
    description: str = "",
    from_username: Optional[str] = None,
    to_username: Optional[str] = None,
) -> dict[str, Any]:
    return store.insert(
        TRANSACTIONS,
        {
            "from_user_id": from_user.id if from_user else None,
            "to_user_id": to_user.id if to_user else None,
            "from_username": from_username or (from_user.username if from_user else None),
            "to_username": to_username or (to_user.username if to_user else None),
            "amount": int(amount),
            "transaction_type": transaction_type,
            "description": description,
            "created_at": utc_now_iso(),
        },
    )
