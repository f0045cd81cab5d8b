from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from lifesim.application.dtos import OperationResult, PlayerStatusView, TransactionView
from lifesim.application.services.balance_tables import USER_ID_CACHE_SECONDS
from lifesim.application.services.effect_resolver import TemporaryEffects, changed_stats
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.medicine_service import MedicineService
from lifesim.application.services.remote_calls import call_with_timeout
from lifesim.application.services.store_records import (
    INVENTORY,
    TRANSACTIONS,
    USERS,
    find_player,
    update_user,
)
from lifesim.domain.errors import ValidationError
from lifesim.domain.events import InventoryChanged, StatsChanged, WalletChanged
from lifesim.domain.models.player import Player, strip_disambiguator
from lifesim.domain.models.stats import stat_changes_to_row
from lifesim.domain.models.transaction import TransactionRecord
from lifesim.domain.repositories import ChangeEvent, In, KeyValueCache, RemoteStore, Subscription


logger = logging.getLogger(__name__)


class SessionState:
    """The logged-in player, hydrated from the store and kept in sync.

    Change-feed notifications trigger a full re-fetch rather than applying
    the pushed row.
    """

    def __init__(
        self,
        store: RemoteStore,
        cache: KeyValueCache,
        *,
        event_bus: EventBus | None = None,
        medicine: MedicineService | None = None,
        temporary_effects: TemporaryEffects | None = None,
        clock=time.time,
    ) -> None:
        self.store = store
        self.cache = cache
        self.event_bus = event_bus or EventBus()
        self.medicine = medicine or MedicineService(store, event_bus=self.event_bus)
        self.temporary_effects = temporary_effects or TemporaryEffects(cache, clock=clock)
        self.player: Optional[Player] = None
        self.stale = False
        self._subscriptions: list[Subscription] = []
        self._display_names: dict[str, str] = {}

    @property
    def logged_in(self) -> bool:
        return self.player is not None

    def require_player(self) -> Player:
        if self.player is None:
            raise ValidationError("Nenhum jogador conectado", code="not_logged_in")
        return self.player

    def login(self, username: str) -> OperationResult:
        name = (username or "").strip()
        if not name:
            return OperationResult.failure("invalid", "Informe o nome de usuário")
        try:
            player = call_with_timeout(lambda: find_player(self.store, name), label="login")
        except Exception:
            logger.exception("Login lookup failed", extra={"username": name})
            return OperationResult.failure("remote_error", "Não foi possível entrar agora")
        if player is None:
            return OperationResult.failure("not_found", f"Usuário {name} não encontrado")
        self.logout()
        self.player = player
        self.stale = False
        self._remember_snapshot(player)
        self._subscribe(player)
        if self.medicine.reconcile_disease_stat(player):
            logger.info("Disease stat repaired at login", extra={"user_id": player.id})
        return OperationResult.success(f"Bem-vindo, {player.display_name}!")

    def logout(self) -> None:
        for subscription in self._subscriptions:
            try:
                self.store.unsubscribe(subscription)
            except Exception:
                logger.warning("Unsubscribe failed", extra={"table": subscription.table}, exc_info=True)
        self._subscriptions = []
        self.player = None

    def _subscribe(self, player: Player) -> None:
        if not self.store.supports_push:
            return
        user_id = str(player.id)
        self._subscriptions = [
            self.store.subscribe(USERS, self._on_user_change, events=("UPDATE",), filters={"id": user_id}),
            self.store.subscribe(INVENTORY, self._on_inventory_change, filters={"user_id": user_id}),
        ]

    def _on_user_change(self, event: ChangeEvent) -> None:
        self.refresh()

    def _on_inventory_change(self, event: ChangeEvent) -> None:
        if self.player is None:
            return
        record = event.record or {}
        self.event_bus.publish(
            InventoryChanged(user_id=str(self.player.id), item_ids=[str(record.get("item_id") or "")], reason="remote")
        )

    def refresh(self) -> Optional[Player]:
        """Re-read the player row; on failure keep the last snapshot and mark it stale."""

        if self.player is None:
            return None
        current = self.player
        try:
            fresh = call_with_timeout(lambda: find_player(self.store, current.username), label="refresh")
        except Exception:
            logger.warning("Player refresh failed, keeping cached stats", extra={"user_id": current.id}, exc_info=True)
            self.stale = True
            return current
        if fresh is None:
            return current
        self.stale = False
        if fresh.stats != current.stats:
            self.event_bus.publish(
                StatsChanged(user_id=str(fresh.id), before=current.stats.as_dict(), after=fresh.stats.as_dict(), reason="sync")
            )
        if fresh.wallet_balance != current.wallet_balance:
            self.event_bus.publish(
                WalletChanged(
                    user_id=str(fresh.id),
                    balance=fresh.wallet_balance,
                    delta=fresh.wallet_balance - current.wallet_balance,
                    reason="sync",
                )
            )
        self.player = fresh
        self._remember_snapshot(fresh)
        return fresh

    def _remember_snapshot(self, player: Player) -> None:
        self.cache.set(f"user_id:{player.username}", {"id": player.id})

    def update_stats(self, **changes: int) -> OperationResult:
        player = self.require_player()
        before = player.stats
        after = before.with_values(**changes)
        diff = changed_stats(before, after)
        if not diff:
            return OperationResult.success()
        try:
            update_user(self.store, str(player.id), stat_changes_to_row(diff))
        except Exception:
            logger.exception("Stat update failed", extra={"user_id": player.id, "stats": sorted(diff)})
            return OperationResult.failure("remote_error", "Não foi possível salvar")
        player.stats = after
        self.event_bus.publish(StatsChanged(user_id=str(player.id), before=before.as_dict(), after=after.as_dict(), reason="update"))
        return OperationResult.success()

    def status(self) -> PlayerStatusView:
        player = self.require_player()
        return PlayerStatusView(
            user_id=player.id,
            username=player.username,
            display_name=player.display_name,
            stats=player.stats.as_dict(),
            wallet_balance=player.wallet_balance,
            diseases=player.disease_names,
            effects=self.temporary_effects.active(str(player.id)),
            relationship_status=player.relationship_status,
            stale=self.stale,
        )

    def user_id_for(self, username: str) -> Optional[str]:
        cached = self.cache.get(f"user_id:{username}", ttl_seconds=USER_ID_CACHE_SECONDS)
        if isinstance(cached, dict) and cached.get("id"):
            return str(cached["id"])
        player = find_player(self.store, username)
        if player is None:
            return None
        self._remember_snapshot(player)
        return str(player.id)

    def list_transactions(self, *, limit: int = 50) -> list[TransactionView]:
        """Wallet history, newest first, each entry marked sent or received."""

        player = self.require_player()
        user_id = str(player.id)
        rows = self.store.select(TRANSACTIONS, filters={"from_user_id": user_id}, order_by="created_at", descending=True, limit=limit)
        rows += self.store.select(TRANSACTIONS, filters={"to_user_id": user_id}, order_by="created_at", descending=True, limit=limit)
        seen: set[str] = set()
        views: list[TransactionView] = []
        for record in sorted((TransactionRecord.from_row(row) for row in rows), key=lambda r: r.created_at or "", reverse=True):
            key = record.id or f"{record.created_at}:{record.amount}"
            if key in seen:
                continue
            seen.add(key)
            sent = record.from_user_id == user_id
            counterparty = record.to_username if sent else record.from_username
            views.append(
                TransactionView(
                    id=record.id,
                    direction="sent" if sent else "received",
                    counterparty=self.display_name(counterparty) if counterparty else record.description,
                    amount=record.amount,
                    transaction_type=record.transaction_type,
                    description=record.description,
                    created_at=record.created_at,
                )
            )
        return views[:limit]

    def display_name(self, username: str) -> str:
        if username in self._display_names:
            return self._display_names[username]
        return self.display_names([username]).get(username, strip_disambiguator(username))

    def display_names(self, usernames: Iterable[str]) -> dict[str, str]:
        """Resolve nicknames for many usernames with one query."""

        wanted = [name for name in dict.fromkeys(usernames) if name]
        missing = [name for name in wanted if name not in self._display_names]
        if missing:
            try:
                rows = self.store.select(USERS, filters={"username": In(missing)})
                for row in rows:
                    username = str(row.get("username") or "")
                    self._display_names[username] = row.get("nickname") or strip_disambiguator(username)
            except Exception:
                logger.warning("Nickname lookup failed", extra={"usernames": missing}, exc_info=True)
                return {name: self._display_names.get(name) or strip_disambiguator(name) for name in wanted}
            for name in missing:
                self._display_names.setdefault(name, strip_disambiguator(name))
        return {name: self._display_names[name] for name in wanted}
