from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from lifesim.application.dtos import DisplayItem
from lifesim.application.services.balance_tables import CUSTOM_CONSUMABLE_HUNGER, CUSTOM_OBJECT_MOOD
from lifesim.application.services.store_records import CUSTOM_ITEMS
from lifesim.domain.models.inventory import InventoryEntry
from lifesim.domain.models.item import (
    CustomItem,
    ItemDefinition,
    ItemEffect,
    ItemType,
    Store,
    is_custom_item_id,
)
from lifesim.domain.models.player import strip_disambiguator
from lifesim.domain.repositories import In, KeyValueCache, RemoteStore
from lifesim.domain.services.item_categories import item_type_for


logger = logging.getLogger(__name__)

CatalogIndex = Mapping[str, tuple[Store, ItemDefinition]]
CustomItemIndex = Mapping[str, CustomItem]

FALLBACK_CUSTOM_NAME = "Item personalizado"
FALLBACK_CUSTOM_ICON = "📦"
_CUSTOM_CACHE_KEY = "custom_items"


def default_custom_effects(item_type: ItemType) -> tuple[ItemEffect, ...]:
    if item_type == ItemType.OBJECT:
        return (ItemEffect(type="mood", value=CUSTOM_OBJECT_MOOD),)
    return (ItemEffect(type="hunger", value=CUSTOM_CONSUMABLE_HUNGER),)


def project(
    raw_row: Mapping[str, Any] | InventoryEntry,
    catalog_index: CatalogIndex,
    custom_item_index: CustomItemIndex,
) -> Optional[DisplayItem]:
    """Resolve one inventory row into a display item.

    Custom ids missing from the index get a generic fallback item. Catalog
    ids missing from the catalog are orphans: logged and dropped.
    """

    entry = raw_row if isinstance(raw_row, InventoryEntry) else InventoryEntry.from_row(raw_row)
    if not entry.item_id or entry.quantity <= 0:
        logger.warning(
            "Dropping empty inventory row",
            extra={"item_id": entry.item_id, "row_id": entry.id, "user_id": entry.user_id, "quantity": entry.quantity},
        )
        return None

    if is_custom_item_id(entry.item_id):
        custom = custom_item_index.get(entry.item_id)
        if custom is None:
            return _fallback_custom(entry)
        return _from_custom(entry, custom)

    match = catalog_index.get(entry.item_id)
    if match is None:
        logger.warning(
            "Dropping inventory row with unknown item id",
            extra={"item_id": entry.item_id, "row_id": entry.id, "user_id": entry.user_id},
        )
        return None
    store, item = match
    return _from_catalog(entry, store, item)


def project_all(
    rows: Iterable[Mapping[str, Any] | InventoryEntry],
    catalog_index: CatalogIndex,
    custom_item_index: CustomItemIndex,
) -> list[DisplayItem]:
    items: list[DisplayItem] = []
    for row in rows:
        display = project(row, catalog_index, custom_item_index)
        if display is not None:
            items.append(display)
    return items


def project_history(
    rows: Iterable[Mapping[str, Any] | InventoryEntry],
    catalog_index: CatalogIndex,
    custom_item_index: CustomItemIndex,
) -> list[DisplayItem]:
    """Received-items list: only rows that carry a sender."""

    received: list[DisplayItem] = []
    for row in rows:
        entry = row if isinstance(row, InventoryEntry) else InventoryEntry.from_row(row)
        if not entry.was_received:
            continue
        display = project(entry, catalog_index, custom_item_index)
        if display is not None:
            received.append(display)
    received.sort(key=lambda item: item.received_at or "", reverse=True)
    return received


def _from_catalog(entry: InventoryEntry, store: Store, item: ItemDefinition) -> DisplayItem:
    item_type = item_type_for(store.key, item)
    relationship = item.relationship_type.value if item.relationship_type else None
    return DisplayItem(
        row_id=entry.id,
        item_id=item.id,
        name=item.name,
        quantity=entry.quantity,
        description=item.description,
        icon=item.icon,
        price=item.price,
        item_type=item_type.value,
        category=item.category,
        store_key=store.key,
        store_id=store.id,
        effects=item.effects,
        relationship_type=relationship,
        is_medicine=item.is_medicine,
        cures=item.cures,
        sendable=True,
        # rings are spent by proposals, not used from the bag
        usable=relationship is None,
        sent_by_username=entry.sent_by_username,
        received_at=entry.received_at,
    )


def _from_custom(entry: InventoryEntry, custom: CustomItem) -> DisplayItem:
    return DisplayItem(
        row_id=entry.id,
        item_id=custom.id,
        name=custom.name,
        quantity=entry.quantity,
        description=_custom_description(custom.description),
        icon=custom.icon or FALLBACK_CUSTOM_ICON,
        item_type=custom.item_type.value,
        effects=custom.effects or default_custom_effects(custom.item_type),
        is_custom=True,
        sent_by_username=entry.sent_by_username,
        received_at=entry.received_at,
    )


def _fallback_custom(entry: InventoryEntry) -> DisplayItem:
    return DisplayItem(
        row_id=entry.id,
        item_id=entry.item_id,
        name=FALLBACK_CUSTOM_NAME,
        quantity=entry.quantity,
        icon=FALLBACK_CUSTOM_ICON,
        item_type=ItemType.OBJECT.value,
        effects=default_custom_effects(ItemType.OBJECT),
        is_custom=True,
        sent_by_username=entry.sent_by_username,
        received_at=entry.received_at,
    )


def _custom_description(description: str) -> str:
    marker = "criado por "
    lowered = description.lower()
    position = lowered.rfind(marker)
    if position < 0:
        return description
    author = description[position + len(marker):].strip()
    return description[: position + len(marker)] + strip_disambiguator(author)


class CustomItemIndexBuilder:
    """Unions locally cached custom items with remote rows for owned ids only."""

    def __init__(self, store: RemoteStore, cache: KeyValueCache) -> None:
        self.store = store
        self.cache = cache

    def cached(self) -> dict[str, CustomItem]:
        payload = self.cache.get(_CUSTOM_CACHE_KEY, allow_stale=True)
        if not isinstance(payload, dict):
            return {}
        index: dict[str, CustomItem] = {}
        for item_id, row in (payload.get("items") or {}).items():
            if isinstance(row, dict):
                index[item_id] = CustomItem.from_row({"id": item_id, **row})
        return index

    def remember(self, item: CustomItem) -> None:
        payload = self.cache.get(_CUSTOM_CACHE_KEY, allow_stale=True)
        items = dict((payload or {}).get("items") or {}) if isinstance(payload, dict) else {}
        row = item.to_row()
        row["effect"] = [effect.as_dict() for effect in item.effects]
        items[item.id] = row
        self.cache.set(_CUSTOM_CACHE_KEY, {"items": items})

    def build(self, owned_item_ids: Iterable[str]) -> dict[str, CustomItem]:
        index = self.cached()
        missing = sorted({item_id for item_id in owned_item_ids if is_custom_item_id(item_id) and item_id not in index})
        if not missing:
            return index
        try:
            rows = self.store.select(CUSTOM_ITEMS, filters={"id": In(missing)})
        except Exception:
            logger.warning("Could not fetch custom items", extra={"item_ids": missing}, exc_info=True)
            return index
        for row in rows:
            item = CustomItem.from_row(row)
            index[item.id] = item
            self.remember(item)
        return index
