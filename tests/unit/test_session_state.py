import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.store_records import USERS, find_player, record_transaction
from lifesim.bootstrap import build_app
from lifesim.domain.errors import ValidationError
from lifesim.domain.events import StatsChanged, WalletChanged
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.local_cache import MemoryKeyValueCache
from lifesim.infrastructure.seed_data import seed_demo_data


def _app():
    store = InMemoryRemoteStore()
    seed_demo_data(store)
    return build_app(store, MemoryKeyValueCache(), atomic=True)


class LoginTests(unittest.TestCase):
    def test_unknown_user(self) -> None:
        app = _app()

        result = app.session.login("Ninguem0000")

        self.assertEqual("not_found", result.code)
        self.assertFalse(app.session.logged_in)

    def test_blank_username(self) -> None:
        self.assertEqual("invalid", _app().session.login("   ").code)

    def test_login_greets_by_nickname(self) -> None:
        app = _app()

        result = app.session.login("Bento3307")

        self.assertTrue(result.ok)
        self.assertEqual("Bem-vindo, Bentinho!", result.message)
        self.assertEqual("Bento3307", app.session.status().username)

    def test_login_repairs_disease_stat_without_diseases(self) -> None:
        app = _app()
        app.store.update(USERS, {"disease_percentage": 30}, filters={"username": "Clara1950"})

        app.session.login("Clara1950")

        self.assertEqual(0, app.session.player.stats.disease)
        self.assertEqual(0, find_player(app.store, "Clara1950").stats.disease)

    def test_actions_require_login(self) -> None:
        app = _app()

        with self.assertRaises(ValidationError) as ctx:
            app.session.status()

        self.assertEqual("not_logged_in", ctx.exception.code)


class SyncTests(unittest.TestCase):
    def test_remote_row_change_refreshes_player(self) -> None:
        app = _app()
        app.session.login("Aurora4821")
        wallet_events: list[WalletChanged] = []
        app.event_bus.subscribe(WalletChanged, wallet_events.append)

        app.store.update(USERS, {"wallet_balance": 1500}, filters={"username": "Aurora4821"})

        self.assertEqual(1500, app.session.player.wallet_balance)
        self.assertEqual(-500, wallet_events[0].delta)

    def test_logout_stops_listening(self) -> None:
        app = _app()
        app.session.login("Aurora4821")
        player = app.session.player

        app.session.logout()
        app.store.update(USERS, {"wallet_balance": 1}, filters={"username": "Aurora4821"})

        self.assertEqual(2000, player.wallet_balance)
        self.assertIsNone(app.session.player)

    def test_refresh_failure_keeps_snapshot_and_marks_stale(self) -> None:
        app = _app()
        app.session.login("Aurora4821")

        def _offline(*_args, **_kwargs):
            raise RuntimeError("offline")

        app.store.select = _offline
        with self.assertLogs("lifesim.application.services.session_state", level="WARNING"):
            player = app.session.refresh()

        self.assertEqual("Aurora4821", player.username)
        self.assertTrue(app.session.status().stale)

    def test_update_stats_persists_changed_values(self) -> None:
        app = _app()
        app.session.login("Clara1950")
        changes: list[StatsChanged] = []
        app.event_bus.subscribe(StatsChanged, changes.append)

        result = app.session.update_stats(hunger=40, mood=100)

        self.assertTrue(result.ok)
        self.assertEqual(40, find_player(app.store, "Clara1950").stats.hunger)
        self.assertEqual(40, changes[-1].after["hunger"])

    def test_update_stats_clamps(self) -> None:
        app = _app()
        app.session.login("Clara1950")

        app.session.update_stats(energy=250)

        self.assertEqual(100, app.session.player.stats.energy)


class LookupTests(unittest.TestCase):
    def test_transactions_are_marked_and_newest_first(self) -> None:
        app = _app()
        aurora = find_player(app.store, "Aurora4821")
        bento = find_player(app.store, "Bento3307")
        app.transfers.transfer_money(aurora, "Bento3307", 100)
        record_transaction(
            app.store,
            from_user=bento,
            to_user=None,
            amount=50,
            transaction_type="purchase",
            description="Hospital: Check-up Básico",
        )
        app.session.login("Bento3307")

        history = app.session.list_transactions()

        self.assertEqual(["sent", "received"], [entry.direction for entry in history])
        self.assertEqual("Hospital: Check-up Básico", history[0].counterparty)
        self.assertEqual("Aurora", history[1].counterparty)
        self.assertEqual(100, history[1].amount)

    def test_display_names_use_nickname_or_stripped_username(self) -> None:
        app = _app()

        names = app.session.display_names(["Bento3307", "Clara1950", "Fantasma4040"])

        self.assertEqual({"Bento3307": "Bentinho", "Clara1950": "Clara", "Fantasma4040": "Fantasma"}, names)

    def test_user_id_lookup_is_cached(self) -> None:
        app = _app()
        expected = str(find_player(app.store, "Clara1950").id)

        self.assertEqual(expected, app.session.user_id_for("Clara1950"))
        app.store.delete(USERS, filters={"username": "Clara1950"})

        self.assertEqual(expected, app.session.user_id_for("Clara1950"))
        self.assertIsNone(app.session.user_id_for("Ninguem0000"))


if __name__ == "__main__":
    unittest.main()
