"""Demo accounts for a fresh in-memory or SQL store."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from lifesim.application.services.balance_tables import INITIAL_WALLET_BALANCE
from lifesim.application.services.store_records import INVENTORY, STORE_MANAGERS, USERS, utc_now_iso
from lifesim.domain.models.stats import PlayerStats
from lifesim.domain.repositories import RemoteStore
from lifesim.domain.services.store_catalog import STORES


logger = logging.getLogger(__name__)

DEMO_PLAYERS: tuple[tuple[str, Optional[str]], ...] = (
    ("Aurora4821", None),
    ("Bento3307", "Bentinho"),
    ("Clara1950", None),
)

DEMO_STARTER_ITEMS: dict[str, tuple[tuple[str, int], ...]] = {
    "Aurora4821": (("bibimbap", 2), ("anel_alvorecer", 1)),
    "Bento3307": (("cha_gelado", 3),),
}


def ensure_player(store: RemoteStore, username: str, nickname: Optional[str] = None) -> dict:
    existing = store.select_one(USERS, filters={"username": username})
    if existing is not None:
        return existing
    row = {
        "username": username,
        "nickname": nickname,
        "wallet_balance": INITIAL_WALLET_BALANCE,
        "diseases_json": "[]",
        "relationship_status": "single",
        "created_at": utc_now_iso(),
        **PlayerStats().to_row(),
    }
    return store.insert(USERS, row)


def ensure_store_managers(store: RemoteStore) -> int:
    created = 0
    for shop in STORES.values():
        if store.select_one(STORE_MANAGERS, filters={"store_id": shop.id}) is None:
            store.insert(STORE_MANAGERS, {"store_id": shop.id, "username": shop.manager_username, "balance": 0})
            created += 1
        ensure_player(store, shop.manager_username)
    return created


def seed_demo_data(store: RemoteStore, players: Iterable[tuple[str, Optional[str]]] = DEMO_PLAYERS) -> None:
    players = tuple(players)
    ensure_store_managers(store)
    for username, nickname in players:
        if store.select_one(USERS, filters={"username": username}) is not None:
            continue
        row = ensure_player(store, username, nickname)
        for item_id, quantity in DEMO_STARTER_ITEMS.get(username, ()):
            store.insert(INVENTORY, {"user_id": row["id"], "item_id": item_id, "quantity": quantity})
    logger.info("Demo data ready", extra={"players": [name for name, _ in players]})
