"""Server-side functions backing ``RemoteStore.invoke`` for the local backends."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from lifesim.application.services.balance_tables import (
    ALCOHOLISM_DECAY_STEP,
    SERVER_ALCOHOLISM_DECAY_GATE_SECONDS,
    SERVER_HAPPINESS_DECAY_GATE_SECONDS,
    SERVER_HAPPINESS_DECAY_STEP,
    SERVER_HUNGER_DECAY_GATE_SECONDS,
    SERVER_HUNGER_DECAY_STEP,
)
from lifesim.application.services.store_records import GAME_CLOCK, TRANSACTIONS, USERS, utc_now_iso
from lifesim.domain.errors import InsufficientFundsError, ValidationError
from lifesim.domain.models.stats import STAT_COLUMNS, clamp_stat
from lifesim.domain.models.transaction import TransactionType
from lifesim.domain.repositories import RemoteStore


logger = logging.getLogger(__name__)


def _gate_open(store: RemoteStore, job: str, gate_seconds: float, now: float) -> bool:
    row = store.select_one(GAME_CLOCK, filters={"job": job})
    if row is not None and row.get("last_run_at") is not None:
        if now - float(row["last_run_at"]) < gate_seconds:
            return False
    store.upsert(GAME_CLOCK, {"job": job, "last_run_at": now}, on_conflict=("job",))
    return True


def _decay_column(store: RemoteStore, column: str, step: int) -> int:
    touched = 0
    for row in store.select(USERS):
        current = clamp_stat(row.get(column))
        if current <= 0:
            continue
        store.update(USERS, {column: max(0, current - step)}, filters={"id": row["id"]})
        touched += 1
    return touched


def decrease_hunger(store: RemoteStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    now = float(payload.get("now") or time.time())
    if not _gate_open(store, "decrease_hunger", SERVER_HUNGER_DECAY_GATE_SECONDS, now):
        return {"applied": False, "users": 0}
    touched = _decay_column(store, STAT_COLUMNS["hunger"], SERVER_HUNGER_DECAY_STEP)
    logger.info("Hunger decay applied", extra={"users": touched})
    return {"applied": True, "users": touched}


def decrease_alcoholism(store: RemoteStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    now = float(payload.get("now") or time.time())
    if not _gate_open(store, "decrease_alcoholism", SERVER_ALCOHOLISM_DECAY_GATE_SECONDS, now):
        return {"applied": False, "users": 0}
    touched = _decay_column(store, STAT_COLUMNS["alcoholism"], ALCOHOLISM_DECAY_STEP)
    return {"applied": True, "users": touched}


def decrease_happiness(store: RemoteStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    now = float(payload.get("now") or time.time())
    row = store.select_one(GAME_CLOCK, filters={"job": "decrease_happiness"})
    if not _gate_open(store, "decrease_happiness", SERVER_HAPPINESS_DECAY_GATE_SECONDS, now):
        waited = now - float(row["last_run_at"])
        return {
            "applied": False,
            "users": 0,
            "next_in_seconds": max(0.0, SERVER_HAPPINESS_DECAY_GATE_SECONDS - waited),
        }
    touched = _decay_column(store, STAT_COLUMNS["happiness"], SERVER_HAPPINESS_DECAY_STEP)
    logger.info("Happiness decay applied", extra={"users": touched})
    return {"applied": True, "users": touched}


def transfer_funds(store: RemoteStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Debit, credit and record a transfer in one store transaction."""

    try:
        amount = int(payload.get("amount") or 0)
    except (TypeError, ValueError):
        amount = 0
    if amount <= 0:
        raise ValidationError("Valor inválido", code="invalid_amount")
    with store.transaction():
        sender = store.select_one(USERS, filters={"id": payload.get("from_user_id")})
        receiver = store.select_one(USERS, filters={"id": payload.get("to_user_id")})
        if sender is None or receiver is None:
            raise ValidationError("Usuário não encontrado", code="not_found")
        from_balance = int(sender.get("wallet_balance") or 0)
        if from_balance < amount:
            raise InsufficientFundsError("Saldo insuficiente")
        to_balance = int(receiver.get("wallet_balance") or 0) + amount
        from_balance -= amount
        store.update(USERS, {"wallet_balance": to_balance}, filters={"id": receiver["id"]})
        store.update(USERS, {"wallet_balance": from_balance}, filters={"id": sender["id"]})
        record = store.insert(
            TRANSACTIONS,
            {
                "from_user_id": sender["id"],
                "to_user_id": receiver["id"],
                "from_username": sender.get("username"),
                "to_username": receiver.get("username"),
                "amount": amount,
                "transaction_type": TransactionType.TRANSFER.value,
                "description": payload.get("description") or "",
                "created_at": utc_now_iso(),
            },
        )
    return {"from_balance": from_balance, "to_balance": to_balance, "transaction_id": record.get("id")}


SERVER_FUNCTIONS: dict[str, Callable[[RemoteStore, Mapping[str, Any]], dict[str, Any]]] = {
    "decrease_hunger": decrease_hunger,
    "decrease_alcoholism": decrease_alcoholism,
    "decrease_happiness": decrease_happiness,
    "transfer_funds": transfer_funds,
}


def register_server_functions(store) -> None:
    for name, function in SERVER_FUNCTIONS.items():
        store.register_function(name, function)
