from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional


class ItemType(str, Enum):
    FOOD = "food"
    DRINK = "drink"
    OBJECT = "object"


class RelationshipType(str, Enum):
    DATING = "dating"
    ENGAGEMENT = "engagement"
    MARRIAGE = "marriage"
    FRIENDSHIP = "friendship"


# Ring catalogs use Portuguese names for the relationship tiers.
_RELATIONSHIP_ALIASES = {
    "namoro": RelationshipType.DATING,
    "noivado": RelationshipType.ENGAGEMENT,
    "casamento": RelationshipType.MARRIAGE,
    "amizade": RelationshipType.FRIENDSHIP,
}

EFFECT_TYPES = ("health", "hunger", "mood", "happiness", "energy", "alcoholism")
MULTIPLE = "multiple"
CUSTOM_ITEM_ID_PATTERN = re.compile(r"^custom_\d+_[a-z0-9]+$")


def normalize_relationship_type(value: Any) -> Optional[RelationshipType]:
    if value is None:
        return None
    if isinstance(value, RelationshipType):
        return value
    key = str(value).strip().lower()
    if key in _RELATIONSHIP_ALIASES:
        return _RELATIONSHIP_ALIASES[key]
    try:
        return RelationshipType(key)
    except ValueError:
        return None


def is_custom_item_id(item_id: str | None) -> bool:
    return bool(item_id) and CUSTOM_ITEM_ID_PATTERN.match(str(item_id)) is not None


@dataclass(frozen=True)
class ItemEffect:
    type: str
    value: int
    message: str = ""
    duration: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "value": self.value}
        if self.message:
            payload["message"] = self.message
        if self.duration is not None:
            payload["duration"] = self.duration
        return payload


def _parse_single_effect(raw: Any) -> Optional[ItemEffect]:
    if isinstance(raw, ItemEffect):
        return raw
    if not isinstance(raw, Mapping):
        return None
    effect_type = str(raw.get("type") or "").strip().lower()
    if not effect_type or effect_type == MULTIPLE:
        return None
    try:
        value = int(raw.get("value", 0))
    except (TypeError, ValueError):
        return None
    duration = raw.get("duration")
    try:
        duration = int(duration) if duration is not None else None
    except (TypeError, ValueError):
        duration = None
    return ItemEffect(type=effect_type, value=value, message=str(raw.get("message") or ""), duration=duration)


def parse_effect_spec(raw: Any) -> list[ItemEffect]:
    """Flatten a single effect, a list of effects or a ``multiple`` composite.

    Entries without a type are skipped rather than rejected.
    """

    if raw is None:
        return []
    if isinstance(raw, ItemEffect):
        return [raw]
    if isinstance(raw, Mapping):
        if str(raw.get("type") or "").strip().lower() == MULTIPLE:
            return parse_effect_spec(list(raw.get("effects") or []))
        single = _parse_single_effect(raw)
        return [single] if single is not None else []
    if isinstance(raw, (list, tuple)):
        effects: list[ItemEffect] = []
        for entry in raw:
            if isinstance(entry, Mapping) and str(entry.get("type") or "").strip().lower() == MULTIPLE:
                effects.extend(parse_effect_spec(entry))
                continue
            parsed = _parse_single_effect(entry)
            if parsed is not None:
                effects.append(parsed)
        return effects
    return []


def effects_to_spec(effects: Iterable[ItemEffect]) -> Optional[dict[str, Any]]:
    items = list(effects)
    if not items:
        return None
    if len(items) == 1:
        return items[0].as_dict()
    return {"type": MULTIPLE, "effects": [effect.as_dict() for effect in items]}


@dataclass(frozen=True)
class ItemDefinition:
    id: str
    name: str
    price: int = 0
    description: str = ""
    category: str = ""
    item_type: Optional[ItemType] = None
    icon: str = ""
    effects: tuple[ItemEffect, ...] = ()
    relationship_type: Optional[RelationshipType] = None
    kind: str = ""
    cures: Optional[str] = None

    @property
    def is_medicine(self) -> bool:
        return self.kind == "medicine" or bool(self.cures)

    @property
    def primary_effect(self) -> Optional[ItemEffect]:
        return self.effects[0] if self.effects else None


@dataclass(frozen=True)
class Store:
    key: str
    id: str
    name: str
    manager_username: str
    items: tuple[ItemDefinition, ...] = ()
    happiness_store: bool = False

    def find(self, item_id: str) -> Optional[ItemDefinition]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


@dataclass(frozen=True)
class CustomItem:
    id: str
    name: str
    item_type: ItemType
    description: str = ""
    icon: str = ""
    created_by_user_id: Optional[str] = None
    effects: tuple[ItemEffect, ...] = field(default=())

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomItem":
        raw_type = str(row.get("item_type") or row.get("itemType") or ItemType.OBJECT.value).lower()
        try:
            item_type = ItemType(raw_type)
        except ValueError:
            item_type = ItemType.OBJECT
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or "Item personalizado"),
            item_type=item_type,
            description=str(row.get("description") or ""),
            icon=str(row.get("icon") or ""),
            created_by_user_id=None if row.get("created_by_user_id") is None else str(row["created_by_user_id"]),
            effects=tuple(parse_effect_spec(row.get("effect"))),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "item_type": self.item_type.value,
            "icon": self.icon,
            "created_by_user_id": self.created_by_user_id,
        }
