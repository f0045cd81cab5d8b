from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from lifesim.application.dtos import StatDelta, TemporaryEffectView
from lifesim.application.services.balance_tables import TRANSIENT_EFFECT_MINUTES, price_satiety
from lifesim.domain.models.item import EFFECT_TYPES, ItemEffect, ItemType, parse_effect_spec
from lifesim.domain.models.stats import PlayerStats, clamp_stat
from lifesim.domain.repositories import KeyValueCache


# First non-zero bucket feeds happiness for happiness stores.
_HAPPINESS_SOURCES = ("mood", "hunger", "energy")


@dataclass(frozen=True)
class EffectContext:
    item_type: Optional[ItemType] = None
    happiness_store: bool = False
    price: Optional[int] = None
    price_satiety: bool = False


def resolve(effect_spec: Any, current_stats: PlayerStats | None = None, context: EffectContext | None = None) -> StatDelta:
    """Turn an effect spec into per-stat deltas.

    ``effect_spec`` may be a single ``{type, value}`` mapping, a list of them,
    a ``{"type": "multiple", "effects": [...]}`` composite or already parsed
    ``ItemEffect`` objects. Unknown stat types and malformed entries are skipped.
    ``current_stats`` is accepted for symmetry with :func:`apply_delta`; the
    deltas themselves do not depend on it.
    """

    context = context or EffectContext()
    effects = _as_effects(effect_spec)
    buckets: dict[str, int] = {}
    messages: list[str] = []
    for effect in effects:
        if effect.type not in EFFECT_TYPES:
            continue
        buckets[effect.type] = buckets.get(effect.type, 0) + int(effect.value)
        if effect.message:
            messages.append(effect.message)

    if context.happiness_store and not buckets.get("happiness"):
        for source in _HAPPINESS_SOURCES:
            if buckets.get(source):
                buckets["happiness"] = buckets[source]
                break

    if context.price_satiety and context.item_type == ItemType.FOOD and not buckets.get("hunger"):
        buckets["hunger"] = price_satiety(context.price)

    values = {stat: value for stat, value in buckets.items() if value}
    transient = bool(values.get("mood")) or context.item_type == ItemType.DRINK
    return StatDelta(values=values, messages=messages, transient=transient)


def apply_delta(current_stats: PlayerStats, delta: StatDelta) -> PlayerStats:
    changes = {stat: clamp_stat(current_stats.get(stat) + value) for stat, value in delta.values.items() if value}
    return current_stats.with_values(**changes)


def changed_stats(before: PlayerStats, after: PlayerStats) -> dict[str, int]:
    old_values = before.as_dict()
    return {stat: value for stat, value in after.as_dict().items() if old_values.get(stat) != value}


def _as_effects(effect_spec: Any) -> list[ItemEffect]:
    if isinstance(effect_spec, tuple) and all(isinstance(entry, ItemEffect) for entry in effect_spec):
        return list(effect_spec)
    return parse_effect_spec(effect_spec)


class TemporaryEffects:
    """Time-boxed "how am I feeling" messages kept in the local cache.

    Expired entries are dropped whenever the list is read.
    """

    def __init__(self, cache: KeyValueCache, *, clock=time.time) -> None:
        self._cache = cache
        self._clock = clock

    @staticmethod
    def _key(user_id: str) -> str:
        return f"temporary_effects:{user_id}"

    def add(
        self,
        user_id: str,
        message: str,
        effect_type: str,
        *,
        minutes: Optional[int] = None,
    ) -> TemporaryEffectView:
        duration = TRANSIENT_EFFECT_MINUTES if minutes is None else max(1, int(minutes))
        expires_at = self._clock() + duration * 60
        entries = self._load(user_id)
        entries.append(
            {
                "id": uuid.uuid4().hex,
                "message": message,
                "type": effect_type,
                "expires_at": expires_at,
            }
        )
        self._cache.set(self._key(user_id), {"effects": entries})
        return TemporaryEffectView(message=message, effect_type=effect_type, expires_at=expires_at)

    def active(self, user_id: str) -> list[TemporaryEffectView]:
        now = self._clock()
        entries = self._load(user_id)
        live = [entry for entry in entries if float(entry.get("expires_at") or 0) > now]
        if len(live) != len(entries):
            self._cache.set(self._key(user_id), {"effects": live})
        return [
            TemporaryEffectView(
                message=str(entry.get("message") or ""),
                effect_type=str(entry.get("type") or ""),
                expires_at=float(entry["expires_at"]),
            )
            for entry in live
        ]

    def clear(self, user_id: str) -> None:
        self._cache.delete(self._key(user_id))

    def _load(self, user_id: str) -> list[dict[str, Any]]:
        payload = self._cache.get(self._key(user_id), allow_stale=True)
        if not isinstance(payload, dict):
            return []
        entries: Iterable[Any] = payload.get("effects") or []
        return [dict(entry) for entry in entries if isinstance(entry, dict)]
