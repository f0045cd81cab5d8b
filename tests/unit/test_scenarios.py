import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.store_records import (
    CUSTOM_ITEMS,
    INVENTORY,
    MANAGER_SALES,
    STORE_MANAGERS,
    TRANSACTIONS,
    USERS,
    find_player,
    owned_quantity,
)
from lifesim.bootstrap import build_app
from lifesim.domain.models.disease import MALNUTRITION
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.local_cache import MemoryKeyValueCache
from lifesim.infrastructure.seed_data import seed_demo_data
from lifesim.infrastructure.server_functions import register_server_functions


def _app(atomic: bool):
    store = InMemoryRemoteStore()
    register_server_functions(store)
    seed_demo_data(store)
    return build_app(store, MemoryKeyValueCache(), atomic=atomic)


_MODES = (True, False)


class EndToEndScenarioTests(unittest.TestCase):
    def test_both_transfer_modes_are_exercised(self) -> None:
        self.assertEqual([True, False], [_app(atomic).transfers.transactional for atomic in _MODES])

    def test_food_raises_only_hunger(self) -> None:
        for atomic in _MODES:
            with self.subTest(atomic=atomic):
                self._scenario_food_raises_only_hunger(_app(atomic))

    def _scenario_food_raises_only_hunger(self, app) -> None:
        clara = find_player(app.store, "Clara1950")
        app.store.update(USERS, {"hunger_percentage": 40}, filters={"id": clara.id})
        app.store.insert(
            CUSTOM_ITEMS,
            {"id": "custom_1700000000000_sopa", "name": "Sopa", "item_type": "food", "effect": {"type": "hunger", "value": 30}},
        )
        app.store.insert(INVENTORY, {"user_id": clara.id, "item_id": "custom_1700000000000_sopa", "quantity": 1})
        clara = find_player(app.store, "Clara1950")
        before = clara.stats.as_dict()

        result = app.inventory.use_item(clara, "custom_1700000000000_sopa")

        self.assertTrue(result.ok)
        after = find_player(app.store, "Clara1950").stats.as_dict()
        self.assertEqual(70, after["hunger"])
        self.assertEqual({k: v for k, v in before.items() if k != "hunger"}, {k: v for k, v in after.items() if k != "hunger"})

    def test_unrelated_item_leaves_diseases_alone(self) -> None:
        for atomic in _MODES:
            with self.subTest(atomic=atomic):
                self._scenario_unrelated_item_leaves_diseases_alone(_app(atomic))

    def _scenario_unrelated_item_leaves_diseases_alone(self, app) -> None:
        app.store.update(
            USERS,
            {"diseases_json": f'[{{"name": "{MALNUTRITION}"}}]', "disease_percentage": 15},
            filters={"username": "Aurora4821"},
        )
        aurora = find_player(app.store, "Aurora4821")

        self.assertTrue(app.inventory.use_item(aurora, "bibimbap").ok)

        saved = find_player(app.store, "Aurora4821")
        self.assertEqual([MALNUTRITION], saved.disease_names)
        self.assertEqual(15, saved.stats.disease)

    def test_overdrawn_transfer_writes_nothing(self) -> None:
        for atomic in _MODES:
            with self.subTest(atomic=atomic):
                self._scenario_overdrawn_transfer_writes_nothing(_app(atomic))

    def _scenario_overdrawn_transfer_writes_nothing(self, app) -> None:
        app.store.update(USERS, {"wallet_balance": 100}, filters={"username": "Aurora4821"})
        aurora = find_player(app.store, "Aurora4821")

        result = app.transfers.transfer_money(aurora, "Bento3307", 150)

        self.assertFalse(result.ok)
        self.assertEqual("insufficient_funds", result.code)
        self.assertEqual(100, find_player(app.store, "Aurora4821").wallet_balance)
        self.assertEqual(2000, find_player(app.store, "Bento3307").wallet_balance)
        self.assertEqual([], app.store.select(TRANSACTIONS))

    def test_manager_approval_settles_the_order(self) -> None:
        for atomic in _MODES:
            with self.subTest(atomic=atomic):
                self._scenario_manager_approval_settles_the_order(_app(atomic))

    def _scenario_manager_approval_settles_the_order(self, app) -> None:
        app.store.update(USERS, {"wallet_balance": 500}, filters={"username": "Clara1950"})
        app.store.update(STORE_MANAGERS, {"balance": 1000}, filters={"store_id": "restaurante"})
        clara = find_player(app.store, "Clara1950")
        app.orders.add_to_cart(clara, "restaurant", "bibimbap")
        app.orders.add_to_cart(clara, "restaurant", "bibimbap")
        app.orders.submit_order(clara, "restaurant")
        order = app.orders.pending_orders("restaurant")[0]
        self.assertEqual(200, order.total)

        result = app.transfers.approve_order(order.id)

        self.assertTrue(result.ok)
        self.assertEqual(300, find_player(app.store, "Clara1950").wallet_balance)
        self.assertEqual(1200, app.store.select_one(STORE_MANAGERS, filters={"store_id": "restaurante"})["balance"])
        self.assertEqual(2, owned_quantity(app.store, str(clara.id), "bibimbap"))
        self.assertEqual(1, len(app.store.select(INVENTORY, filters={"user_id": str(clara.id)})))
        self.assertEqual(len(order.lines), len(app.store.select(MANAGER_SALES)))
        purchases = app.store.select(TRANSACTIONS, filters={"transaction_type": "purchase"})
        self.assertEqual([200], [row["amount"] for row in purchases])


if __name__ == "__main__":
    unittest.main()
