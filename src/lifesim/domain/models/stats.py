from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping


STAT_MIN = 0
STAT_MAX = 100

# Stat name -> users table column.
STAT_COLUMNS: dict[str, str] = {
    "health": "life_percentage",
    "hunger": "hunger_percentage",
    "mood": "mood",
    "happiness": "happiness_percentage",
    "energy": "energy_percentage",
    "disease": "disease_percentage",
    "alcoholism": "alcoholism_percentage",
}

_STAT_DEFAULTS: dict[str, int] = {
    "health": 100,
    "hunger": 100,
    "mood": 100,
    "happiness": 100,
    "energy": 100,
    "disease": 0,
    "alcoholism": 0,
}


def clamp_stat(value: Any, *, default: int = STAT_MIN) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        # mood is sometimes persisted as free text
        try:
            number = int(float(str(value).strip()))
        except (TypeError, ValueError):
            number = default
    return max(STAT_MIN, min(STAT_MAX, number))


@dataclass(frozen=True)
class PlayerStats:
    health: int = 100
    hunger: int = 100
    mood: int = 100
    happiness: int = 100
    energy: int = 100
    disease: int = 0
    alcoholism: int = 0

    def get(self, stat: str) -> int:
        return int(getattr(self, stat))

    def with_values(self, **changes: int) -> "PlayerStats":
        known = {name: clamp_stat(value) for name, value in changes.items() if name in STAT_COLUMNS}
        return replace(self, **known)

    def as_dict(self) -> dict[str, int]:
        return {item.name: int(getattr(self, item.name)) for item in fields(self)}

    def to_row(self) -> dict[str, int]:
        return {STAT_COLUMNS[name]: value for name, value in self.as_dict().items()}

    @classmethod
    def from_row(cls, row: Mapping[str, Any] | None) -> "PlayerStats":
        payload = row or {}
        values: dict[str, int] = {}
        for stat, column in STAT_COLUMNS.items():
            raw = payload.get(column)
            default = _STAT_DEFAULTS[stat]
            values[stat] = default if raw is None else clamp_stat(raw, default=default)
        return cls(**values)


def stat_changes_to_row(changes: Mapping[str, int]) -> dict[str, int]:
    return {STAT_COLUMNS[name]: clamp_stat(value) for name, value in changes.items() if name in STAT_COLUMNS}
