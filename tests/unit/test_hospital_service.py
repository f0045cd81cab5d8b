import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.balance_tables import CHECKUP_TREATMENT, SURGERY_TREATMENT
from lifesim.application.services.hospital_service import treatment_price
from lifesim.application.services.store_records import TRANSACTIONS, TREATMENTS, USERS, find_player
from lifesim.bootstrap import build_app
from lifesim.domain.errors import LifeSimError
from lifesim.domain.events import WalletChanged
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.local_cache import MemoryKeyValueCache
from lifesim.infrastructure.seed_data import seed_demo_data


def _app():
    store = InMemoryRemoteStore()
    seed_demo_data(store)
    store.update(USERS, {"life_percentage": 50}, filters={"username": "Clara1950"})
    return build_app(store, MemoryKeyValueCache(), atomic=True)


def _clara(app):
    return find_player(app.store, "Clara1950")


class TreatmentPriceTests(unittest.TestCase):
    def test_menu_prices(self) -> None:
        self.assertEqual((50, 10), treatment_price(CHECKUP_TREATMENT))
        self.assertEqual((300, 50), treatment_price(SURGERY_TREATMENT))
        self.assertEqual((150, 20), treatment_price("Cura para Pele de Pedra"))

    def test_unknown_treatment_raises(self) -> None:
        with self.assertRaises(LifeSimError):
            treatment_price("Massagem")


class HospitalServiceTests(unittest.TestCase):
    def test_request_is_queued_without_charging(self) -> None:
        app = _app()

        result = app.hospital.request_treatment(_clara(app), CHECKUP_TREATMENT)

        self.assertTrue(result.ok)
        pending = app.hospital.pending_requests()
        self.assertEqual([CHECKUP_TREATMENT], [request.treatment_type for request in pending])
        self.assertEqual(2000, _clara(app).wallet_balance)

    def test_unknown_treatment_is_rejected(self) -> None:
        app = _app()

        self.assertEqual("invalid", app.hospital.request_treatment(_clara(app), "Massagem").code)
        self.assertEqual([], app.store.select(TREATMENTS))

    def test_request_requires_funds(self) -> None:
        app = _app()
        app.store.update(USERS, {"wallet_balance": 100}, filters={"username": "Clara1950"})

        result = app.hospital.request_treatment(_clara(app), SURGERY_TREATMENT)

        self.assertEqual("insufficient_funds", result.code)

    def test_accept_charges_and_heals(self) -> None:
        app = _app()
        wallet_events: list[WalletChanged] = []
        app.event_bus.subscribe(WalletChanged, wallet_events.append)
        app.hospital.request_treatment(_clara(app), CHECKUP_TREATMENT)
        request_id = app.hospital.pending_requests()[0].id

        result = app.hospital.accept(request_id, notes="tudo certo")

        self.assertTrue(result.ok)
        clara = _clara(app)
        self.assertEqual(1950, clara.wallet_balance)
        self.assertEqual(60, clara.stats.health)
        self.assertEqual("Hospital: Check-up Básico", app.store.select(TRANSACTIONS)[0]["description"])
        row = app.store.select_one(TREATMENTS, filters={"id": request_id})
        self.assertEqual("accepted", row["status"])
        self.assertEqual("tudo certo", row["manager_notes"])
        self.assertEqual(-50, wallet_events[0].delta)

    def test_cure_requires_the_disease(self) -> None:
        app = _app()

        self.assertEqual("invalid", app.hospital.request_cure(_clara(app), "Pele de Pedra").code)

    def test_accepted_cure_removes_disease(self) -> None:
        app = _app()
        app.store.update(
            USERS,
            {"diseases_json": '[{"name": "Pele de Pedra"}]', "disease_percentage": 15},
            filters={"username": "Clara1950"},
        )
        app.hospital.request_cure(_clara(app), "Pele de Pedra")
        request = app.hospital.pending_requests()[0]
        self.assertEqual("Pele de Pedra", request.disease_name)

        self.assertTrue(app.hospital.accept(request.id).ok)

        clara = _clara(app)
        self.assertEqual([], clara.diseases)
        self.assertEqual(0, clara.stats.disease)
        self.assertEqual(70, clara.stats.health)
        self.assertEqual(1850, clara.wallet_balance)

    def test_accept_rechecks_balance(self) -> None:
        app = _app()
        app.hospital.request_treatment(_clara(app), CHECKUP_TREATMENT)
        request_id = app.hospital.pending_requests()[0].id
        app.store.update(USERS, {"wallet_balance": 10}, filters={"username": "Clara1950"})

        result = app.hospital.accept(request_id)

        self.assertEqual("insufficient_funds", result.code)
        self.assertEqual("pending", app.store.select_one(TREATMENTS, filters={"id": request_id})["status"])

    def test_request_is_processed_once(self) -> None:
        app = _app()
        app.hospital.request_treatment(_clara(app), CHECKUP_TREATMENT)
        request_id = app.hospital.pending_requests()[0].id

        self.assertTrue(app.hospital.reject(request_id, notes="volte amanhã").ok)

        self.assertFalse(app.hospital.accept(request_id).ok)
        self.assertEqual(2000, _clara(app).wallet_balance)
        self.assertEqual([], app.hospital.pending_requests())
        self.assertEqual("rejected", app.hospital.requests_for(_clara(app))[0].status.value)


if __name__ == "__main__":
    unittest.main()
