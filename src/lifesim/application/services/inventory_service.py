from __future__ import annotations

import logging
import random
import string
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from lifesim.application.dtos import DisplayItem, GrantResult, InventoryView, OperationResult, ShareOption, UseItemResult
from lifesim.application.services.balance_tables import (
    ALCOHOL_EFFECT_MESSAGE,
    ALCOHOL_EFFECT_MINUTES,
    CUSTOM_ITEM_PRICES,
    INVENTORY_FRESHNESS_SECONDS,
    INVENTORY_ITEM_CAP,
    SHARE_FRACTIONS,
    SHARE_MIN_VALUE,
)
from lifesim.application.services.effect_resolver import (
    EffectContext,
    TemporaryEffects,
    apply_delta,
    changed_stats,
    resolve,
)
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.inventory_projector import (
    CustomItemIndexBuilder,
    default_custom_effects,
    project_all,
    project_history,
)
from lifesim.application.services.medicine_service import MedicineService
from lifesim.application.services.remote_calls import call_with_timeout
from lifesim.application.services.store_records import (
    CUSTOM_ITEMS,
    INVENTORY,
    inventory_entry,
    owned_quantity,
    record_transaction,
    update_user,
    utc_now_iso,
)
from lifesim.domain.errors import LifeSimError
from lifesim.domain.events import InventoryChanged, StatsChanged, TemporaryEffectAdded, WalletChanged
from lifesim.domain.models.item import CustomItem, ItemEffect, ItemType
from lifesim.domain.models.player import Player, strip_disambiguator
from lifesim.domain.models.stats import stat_changes_to_row
from lifesim.domain.models.transaction import TransactionType
from lifesim.domain.repositories import KeyValueCache, RemoteStore
from lifesim.domain.services.item_categories import alcohol_level
from lifesim.domain.services.store_catalog import build_catalog_index, get_store


logger = logging.getLogger(__name__)


def share_options(effect: ItemEffect | None) -> list[ShareOption]:
    """Portions of an item's first effect that can be split off and shared."""

    if effect is None or abs(int(effect.value)) < SHARE_MIN_VALUE:
        return []
    return [ShareOption(percent=percent, value=int(effect.value) * percent // 100) for percent in SHARE_FRACTIONS]


def new_custom_item_id(*, clock=time.time, rng: random.Random | None = None) -> str:
    chooser = rng or random
    suffix = "".join(chooser.choice(string.ascii_lowercase + string.digits) for _ in range(9))
    return f"custom_{int(clock() * 1000)}_{suffix}"


class InventoryService:
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
        self.event_bus = event_bus
        self.medicine = medicine or MedicineService(store, event_bus=event_bus)
        self.temporary_effects = temporary_effects or TemporaryEffects(cache, clock=clock)
        self.catalog_index = build_catalog_index()
        self.custom_items = CustomItemIndexBuilder(store, cache)
        self._clock = clock
        self._held: Optional[list[InventoryChanged]] = None

    @staticmethod
    def _snapshot_key(user_id: str) -> str:
        return f"inventory:{user_id}"

    def invalidate(self, user_id: str) -> None:
        self.cache.delete(self._snapshot_key(user_id))

    @contextmanager
    def held_notifications(self, *, rolled_back_on_error: bool = True) -> Iterator[None]:
        """Hold inventory change events until the block finishes.

        Held events are published when the block exits normally. When it
        raises they are dropped if the writes were rolled back, and published
        otherwise. Snapshots of every touched bag are invalidated either way.
        """

        if self._held is not None:
            yield
            return
        self._held = held = []
        try:
            yield
        except BaseException:
            self._release(held, publish=not rolled_back_on_error)
            raise
        self._release(held, publish=True)

    def _release(self, held: list[InventoryChanged], *, publish: bool) -> None:
        self._held = None
        for event in held:
            self.invalidate(event.user_id)
            if publish:
                self._publish(event)

    def _changed(self, event: InventoryChanged) -> None:
        if self._held is not None:
            self._held.append(event)
            return
        self.invalidate(event.user_id)
        self._publish(event)

    def load(self, player: Player, *, force: bool = False) -> InventoryView:
        """Project the player's bag, serving a fresh snapshot from the local cache.

        When the remote read fails or times out the last snapshot is used and
        the view is marked stale.
        """

        user_id = str(player.id)
        key = self._snapshot_key(user_id)
        stale = False
        cached = None if force else self.cache.get(key, ttl_seconds=INVENTORY_FRESHNESS_SECONDS)
        if isinstance(cached, dict):
            rows = list(cached.get("rows") or [])
        else:
            try:
                rows = call_with_timeout(
                    lambda: self.store.select(INVENTORY, filters={"user_id": user_id}, order_by="id"),
                    label="inventory",
                )
                self.cache.set(key, {"rows": rows})
            except Exception:
                logger.warning("Inventory load failed, using cached snapshot", extra={"user_id": user_id}, exc_info=True)
                fallback = self.cache.get(key, allow_stale=True)
                rows = list(fallback.get("rows") or []) if isinstance(fallback, dict) else []
                stale = True

        custom_index = self.custom_items.build(str(row.get("item_id") or "") for row in rows)
        return InventoryView(
            items=project_all(rows, self.catalog_index, custom_index),
            received=project_history(rows, self.catalog_index, custom_index),
            stale=stale,
        )

    def find_item(self, player: Player, item_id: str) -> Optional[DisplayItem]:
        entry = inventory_entry(self.store, str(player.id), item_id)
        if entry is None:
            return None
        custom_index = self.custom_items.build([item_id])
        items = project_all([entry], self.catalog_index, custom_index)
        return items[0] if items else None

    def grant(
        self,
        user_id: str,
        item_id: str,
        quantity: int = 1,
        *,
        sender: Player | None = None,
    ) -> GrantResult:
        """Add up to ``quantity`` units, truncating at the per-item cap."""

        requested = int(quantity)
        if requested <= 0:
            return GrantResult.failure("invalid_amount", "Quantidade inválida", requested=requested)
        owned = owned_quantity(self.store, user_id, item_id)
        space = INVENTORY_ITEM_CAP - owned
        if space <= 0:
            return GrantResult.failure(
                "cap_reached",
                f"Limite de {INVENTORY_ITEM_CAP} unidades atingido",
                requested=requested,
                truncated=requested,
                quantity=owned,
            )
        granted = min(requested, space)
        sender_fields: dict[str, Any] = {}
        if sender is not None:
            sender_fields = {
                "sent_by_user_id": sender.id,
                "sent_by_username": sender.username,
                "received_at": utc_now_iso(),
            }
        entry = inventory_entry(self.store, user_id, item_id)
        if entry is None:
            self.store.insert(INVENTORY, {"user_id": user_id, "item_id": item_id, "quantity": granted, **sender_fields})
        else:
            self.store.update(INVENTORY, {"quantity": entry.quantity + granted, **sender_fields}, filters={"id": entry.id})
        self._changed(InventoryChanged(user_id=user_id, item_ids=[item_id], reason="grant"))
        truncated = requested - granted
        message = f"{granted} unidade(s) adicionada(s)"
        if truncated:
            message += f"; {truncated} excedente(s) descartado(s) pelo limite de {INVENTORY_ITEM_CAP}"
        return GrantResult(
            ok=True,
            message=message,
            requested=requested,
            granted=granted,
            truncated=truncated,
            quantity=owned + granted,
        )

    def consume(self, user_id: str, item_id: str, quantity: int = 1) -> int:
        """Remove ``quantity`` units; returns how many were actually removed."""

        entry = inventory_entry(self.store, user_id, item_id)
        if entry is None or entry.quantity <= 0:
            return 0
        removed = min(entry.quantity, max(0, int(quantity)))
        if removed >= entry.quantity:
            self.store.delete(INVENTORY, filters={"id": entry.id})
        else:
            self.store.update(INVENTORY, {"quantity": entry.quantity - removed}, filters={"id": entry.id})
        self._changed(InventoryChanged(user_id=user_id, item_ids=[item_id], reason="consume"))
        return removed

    def use_item(self, player: Player, item_id: str) -> UseItemResult:
        try:
            item = self.find_item(player, item_id)
            if item is None:
                return UseItemResult.failure("not_found", "Item não está na bolsa")
            if not item.usable:
                return UseItemResult.failure("not_usable", f"{item.name} não pode ser usado", item_name=item.name)
            if self.medicine.is_medicine(item.name):
                return self._use_medicine(player, item)
            return self._use_regular(player, item)
        except LifeSimError as exc:
            return UseItemResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Using item failed", extra={"user_id": player.id, "item_id": item_id})
            return UseItemResult.failure("remote_error", "Não foi possível usar o item")

    def _use_medicine(self, player: Player, item: DisplayItem) -> UseItemResult:
        before = player.stats.as_dict()
        disease_name = self.medicine.disease_cured_by(item.name, player)
        if disease_name is None or not self.medicine.try_cure(item.name, player):
            return UseItemResult.failure(
                "medicine_ineffective",
                f"{item.name} não faz efeito: você não tem a doença que ele cura",
                item_name=item.name,
                stats_before=before,
                stats_after=before,
            )
        self.consume(str(player.id), item.item_id)
        return UseItemResult(
            ok=True,
            message=f"Você usou {item.name} e curou {disease_name}",
            item_name=item.name,
            stats_before=before,
            stats_after=player.stats.as_dict(),
            cured_disease=disease_name,
        )

    def _use_regular(self, player: Player, item: DisplayItem) -> UseItemResult:
        item_type = ItemType(item.item_type)
        store = get_store(item.store_key) if item.store_key else None
        context = EffectContext(
            item_type=item_type,
            happiness_store=bool(store and store.happiness_store),
            price=item.price if not item.is_custom else None,
            price_satiety=True,
        )
        delta = resolve(item.effects, player.stats, context)
        before = player.stats
        after = apply_delta(before, delta)

        level = alcohol_level(item.store_key or "", item.item_id) if item_type == ItemType.DRINK else 0
        if level:
            after = after.with_values(alcoholism=after.alcoholism + level, mood=after.mood - level // 4)

        changes = changed_stats(before, after)
        if changes:
            update_user(self.store, str(player.id), stat_changes_to_row(changes))
        player.stats = after
        self.consume(str(player.id), item.item_id)

        verb = {ItemType.DRINK: "bebeu", ItemType.FOOD: "comeu"}.get(item_type, "usou")
        messages = list(delta.messages) or [f"Você {verb} {item.name}"]
        user_id = str(player.id)
        if delta.transient:
            self._add_transient(user_id, messages[0], "mood" if delta.get("mood") else item_type.value)
        if level:
            self._add_transient(user_id, ALCOHOL_EFFECT_MESSAGE, "alcoholism", minutes=ALCOHOL_EFFECT_MINUTES)
            messages.append(ALCOHOL_EFFECT_MESSAGE)
        if changes:
            self._publish(StatsChanged(user_id=user_id, before=before.as_dict(), after=after.as_dict(), reason=f"use:{item.item_id}"))
        return UseItemResult(
            ok=True,
            message=messages[0],
            item_name=item.name,
            stats_before=before.as_dict(),
            stats_after=after.as_dict(),
            messages=messages,
        )

    def _add_transient(self, user_id: str, message: str, effect_type: str, *, minutes: int | None = None) -> None:
        view = self.temporary_effects.add(user_id, message, effect_type, minutes=minutes)
        self._publish(TemporaryEffectAdded(user_id=user_id, message=view.message, effect_type=view.effect_type, expires_at=view.expires_at))

    def create_custom_item(
        self,
        player: Player,
        name: str,
        item_type: ItemType | str,
        *,
        description: str = "",
        icon: str = "",
    ) -> OperationResult:
        clean_name = (name or "").strip()
        if not clean_name:
            return OperationResult.failure("invalid", "Dê um nome ao item")
        try:
            kind = ItemType(item_type)
        except ValueError:
            return OperationResult.failure("invalid", f"Categoria desconhecida: {item_type}")
        price = CUSTOM_ITEM_PRICES[kind.value]
        if player.wallet_balance < price:
            return OperationResult.failure("insufficient_funds", f"Saldo insuficiente: o item custa {price}")
        user_id = str(player.id)
        item = CustomItem(
            id=new_custom_item_id(clock=self._clock),
            name=clean_name,
            item_type=kind,
            description=description.strip() or f"Item criado por {strip_disambiguator(player.username)}",
            icon=icon,
            created_by_user_id=user_id,
            effects=default_custom_effects(kind),
        )
        try:
            new_balance = player.wallet_balance - price
            update_user(self.store, user_id, {"wallet_balance": new_balance})
            player.wallet_balance = new_balance
            self.store.insert(INVENTORY, {"user_id": user_id, "item_id": item.id, "quantity": 1})
            self.store.insert(CUSTOM_ITEMS, {**item.to_row(), "created_at": utc_now_iso()})
            record_transaction(
                self.store,
                from_user=player,
                to_user=None,
                amount=price,
                transaction_type=TransactionType.PURCHASE.value,
                description=f"Criação de item: {clean_name}",
            )
        except Exception:
            logger.exception("Creating custom item failed", extra={"user_id": user_id})
            return OperationResult.failure("remote_error", "Não foi possível criar o item")
        finally:
            # the local copy keeps the item resolvable even if the remote row is missing
            self.custom_items.remember(item)
        self.invalidate(user_id)
        self._publish(WalletChanged(user_id=user_id, balance=player.wallet_balance, delta=-price, reason="custom_item"))
        self._publish(InventoryChanged(user_id=user_id, item_ids=[item.id], reason="custom_item"))
        return OperationResult.success(f"{clean_name} foi adicionado à sua bolsa")

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
