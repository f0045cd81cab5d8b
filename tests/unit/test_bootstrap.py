import os
import sys
from pathlib import Path
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim import bootstrap
from lifesim.application.services.store_records import STORE_MANAGERS, find_player
from lifesim.infrastructure.http.rest_store import HttpRemoteStore
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.local_cache import MemoryKeyValueCache


_CLEAN_ENV = {"LIFESIM_DATABASE_URL": "", "LIFESIM_REMOTE_URL": ""}


class CreateStoreTests(unittest.TestCase):
    def test_defaults_to_seeded_memory_store(self) -> None:
        with mock.patch.dict(os.environ, _CLEAN_ENV, clear=False):
            store, backend, notices = bootstrap.create_store()

        self.assertEqual("memory", backend)
        self.assertEqual([], notices)
        self.assertIsInstance(store, InMemoryRemoteStore)
        self.assertIsNotNone(find_player(store, "Aurora4821"))
        self.assertIsNotNone(store.select_one(STORE_MANAGERS, filters={"store_id": "farmacia"}))
        self.assertIn("applied", store.invoke("decrease_hunger", {"now": 1.0}))

    def test_sqlite_url_builds_migrated_sql_store(self) -> None:
        with mock.patch.dict(os.environ, {**_CLEAN_ENV, "LIFESIM_DATABASE_URL": "sqlite://"}, clear=False):
            store, backend, notices = bootstrap.create_store()

        self.assertEqual("sql", backend)
        self.assertEqual([], notices)
        self.assertFalse(store.supports_push)
        self.assertTrue(store.supports_transactions)
        self.assertEqual("Restaurante1212", store.select_one(STORE_MANAGERS, filters={"store_id": "restaurante"})["username"])

    def test_unreachable_local_database_falls_back_with_notice(self) -> None:
        env = {**_CLEAN_ENV, "LIFESIM_DATABASE_URL": "mysql+mysqlconnector://root@127.0.0.1:3307/lifesim"}
        with mock.patch.dict(os.environ, env, clear=False), mock.patch.object(
            bootstrap, "_looks_like_local_database_unreachable", return_value=True
        ), mock.patch.object(bootstrap, "_build_sql_store") as sql_builder:
            store, backend, notices = bootstrap.create_store()

        sql_builder.assert_not_called()
        self.assertEqual("memory", backend)
        self.assertIn("unreachable", notices[0])
        self.assertIsInstance(store, InMemoryRemoteStore)

    def test_failing_database_falls_back_with_reason(self) -> None:
        env = {**_CLEAN_ENV, "LIFESIM_DATABASE_URL": "postgresql://db.example.invalid/lifesim"}
        with mock.patch.dict(os.environ, env, clear=False), mock.patch.object(
            bootstrap, "_build_sql_store", side_effect=RuntimeError("auth failed")
        ):
            with self.assertLogs("lifesim.bootstrap", level="WARNING"):
                _, backend, notices = bootstrap.create_store()

        self.assertEqual("memory", backend)
        self.assertIn("auth failed", notices[0])

    def test_remote_url_builds_rest_store(self) -> None:
        env = {**_CLEAN_ENV, "LIFESIM_REMOTE_URL": "https://backend.test", "LIFESIM_REMOTE_KEY": "anon"}
        with mock.patch.dict(os.environ, env, clear=False):
            store, backend, _ = bootstrap.create_store()

        self.assertEqual("rest", backend)
        self.assertIsInstance(store, HttpRemoteStore)
        self.assertEqual("anon", store.client.headers["apikey"])
        store.close()


class LocalDatabaseReachabilityTests(unittest.TestCase):
    def test_only_local_server_urls_are_checked(self) -> None:
        with mock.patch.object(bootstrap.socket, "create_connection") as connect:
            self.assertFalse(bootstrap._looks_like_local_database_unreachable(""))
            self.assertFalse(bootstrap._looks_like_local_database_unreachable("sqlite:///lifesim.db"))
            self.assertFalse(bootstrap._looks_like_local_database_unreachable("mysql://root@db.example.invalid/lifesim"))

        connect.assert_not_called()

    def test_refused_local_connection_is_unreachable(self) -> None:
        with mock.patch.object(bootstrap.socket, "create_connection", side_effect=ConnectionRefusedError()):
            self.assertTrue(bootstrap._looks_like_local_database_unreachable("postgresql://localhost/lifesim"))


class BuildAppTests(unittest.TestCase):
    def test_atomic_flag_comes_from_environment(self) -> None:
        store = InMemoryRemoteStore()

        with mock.patch.dict(os.environ, {"LIFESIM_ATOMIC_TRANSFERS": "0"}, clear=False):
            sequential = bootstrap.build_app(store, MemoryKeyValueCache())
        with mock.patch.dict(os.environ, {"LIFESIM_ATOMIC_TRANSFERS": "yes"}, clear=False):
            atomic = bootstrap.build_app(store, MemoryKeyValueCache())

        self.assertFalse(sequential.transfers.transactional)
        self.assertTrue(atomic.transfers.transactional)

    def test_services_share_one_event_bus_and_store(self) -> None:
        store = InMemoryRemoteStore()

        app = bootstrap.build_app(store, MemoryKeyValueCache(), backend="memory")

        self.assertIs(app.event_bus, app.session.event_bus)
        self.assertIs(app.event_bus, app.inventory.event_bus)
        self.assertIs(store, app.orders.store)
        self.assertIs(app.medicine, app.hospital.medicine)
        self.assertEqual("memory", app.backend)


if __name__ == "__main__":
    unittest.main()
