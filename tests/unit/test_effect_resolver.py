import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.effect_resolver import (
    EffectContext,
    TemporaryEffects,
    apply_delta,
    changed_stats,
    resolve,
)
from lifesim.domain.models.item import ItemEffect, ItemType
from lifesim.domain.models.stats import PlayerStats
from lifesim.infrastructure.local_cache import MemoryKeyValueCache


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class EffectResolverTests(unittest.TestCase):
    def test_single_effect_maps_to_one_stat(self) -> None:
        delta = resolve({"type": "hunger", "value": 30})

        self.assertEqual({"hunger": 30}, delta.values)
        self.assertFalse(delta.transient)

    def test_multiple_composite_sums_same_stat(self) -> None:
        spec = {
            "type": "multiple",
            "effects": [
                {"type": "hunger", "value": 10},
                {"type": "hunger", "value": 5},
                {"type": "energy", "value": -3},
            ],
        }

        delta = resolve(spec)

        self.assertEqual(15, delta.get("hunger"))
        self.assertEqual(-3, delta.get("energy"))

    def test_unknown_types_and_malformed_entries_are_skipped(self) -> None:
        delta = resolve([{"type": "charisma", "value": 10}, {"value": 4}, "junk", {"type": "mood", "value": "x"}])

        self.assertTrue(delta.is_empty())

    def test_none_spec_is_empty(self) -> None:
        self.assertTrue(resolve(None).is_empty())

    def test_mood_change_is_transient(self) -> None:
        delta = resolve({"type": "mood", "value": 12, "message": "Suave"})

        self.assertTrue(delta.transient)
        self.assertEqual(["Suave"], delta.messages)

    def test_drinks_are_transient_even_without_mood(self) -> None:
        delta = resolve({"type": "energy", "value": 10}, context=EffectContext(item_type=ItemType.DRINK))

        self.assertTrue(delta.transient)

    def test_happiness_store_copies_first_non_zero_bucket(self) -> None:
        context = EffectContext(item_type=ItemType.FOOD, happiness_store=True)

        delta = resolve({"type": "hunger", "value": 15}, context=context)

        self.assertEqual(15, delta.get("happiness"))
        self.assertEqual(15, delta.get("hunger"))

    def test_happiness_store_keeps_explicit_happiness(self) -> None:
        context = EffectContext(happiness_store=True)

        delta = resolve([{"type": "hunger", "value": 20}, {"type": "happiness", "value": 10}], context=context)

        self.assertEqual(10, delta.get("happiness"))

    def test_food_without_hunger_effect_gets_price_satiety(self) -> None:
        context = EffectContext(item_type=ItemType.FOOD, price=120, price_satiety=True)

        delta = resolve(None, context=context)

        self.assertEqual(40, delta.get("hunger"))

    def test_apply_delta_clamps_to_bounds(self) -> None:
        stats = PlayerStats(hunger=90, energy=5)

        after = apply_delta(stats, resolve([{"type": "hunger", "value": 30}, {"type": "energy", "value": -20}]))

        self.assertEqual(100, after.hunger)
        self.assertEqual(0, after.energy)

    def test_changed_stats_lists_only_differences(self) -> None:
        before = PlayerStats(hunger=40)
        after = apply_delta(before, resolve((ItemEffect(type="hunger", value=30),)))

        self.assertEqual({"hunger": 70}, changed_stats(before, after))


class TemporaryEffectsTests(unittest.TestCase):
    def test_effects_expire_after_their_window(self) -> None:
        clock = _Clock()
        effects = TemporaryEffects(MemoryKeyValueCache(clock=clock), clock=clock)

        effects.add("7", "Sentindo frescor", "mood")
        effects.add("7", "Tonto", "alcoholism", minutes=30)
        self.assertEqual(2, len(effects.active("7")))

        clock.now += 31 * 60
        active = effects.active("7")

        self.assertEqual(["Sentindo frescor"], [effect.message for effect in active])

        clock.now += 30 * 60
        self.assertEqual([], effects.active("7"))

    def test_effects_are_kept_per_user(self) -> None:
        clock = _Clock()
        effects = TemporaryEffects(MemoryKeyValueCache(clock=clock), clock=clock)

        effects.add("1", "Feliz", "mood")

        self.assertEqual([], effects.active("2"))


if __name__ == "__main__":
    unittest.main()
