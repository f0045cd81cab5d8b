import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.medicine_service import MedicineService
from lifesim.application.services.store_records import USERS, find_player
from lifesim.domain.events import DiseaseContracted, DiseaseCured
from lifesim.domain.models.disease import MALNUTRITION, Disease
from lifesim.domain.models.player import diseases_to_json
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.seed_data import ensure_player


def _store_with_patient(diseases: list[str], *, disease_stat: int, health: int = 50) -> InMemoryRemoteStore:
    store = InMemoryRemoteStore()
    row = ensure_player(store, "Dora1234")
    store.update(
        USERS,
        {
            "diseases_json": diseases_to_json([Disease(name) for name in diseases]),
            "disease_percentage": disease_stat,
            "life_percentage": health,
        },
        filters={"id": row["id"]},
    )
    return store


class MedicineServiceTests(unittest.TestCase):
    def test_matching_medicine_cures_and_zeroes_stat_when_none_left(self) -> None:
        store = _store_with_patient(["Gripe do Vento Gelado"], disease_stat=15)
        bus = EventBus()
        cured: list[DiseaseCured] = []
        bus.subscribe(DiseaseCured, cured.append)
        service = MedicineService(store, event_bus=bus)
        player = find_player(store, "Dora1234")

        self.assertTrue(service.try_cure("Elixir Refrescante de Gelo", player))

        saved = find_player(store, "Dora1234")
        self.assertEqual([], saved.diseases)
        self.assertEqual(0, saved.stats.disease)
        self.assertEqual(65, saved.stats.health)
        self.assertEqual("Gripe do Vento Gelado", cured[0].disease_name)

    def test_cure_with_remaining_diseases_lowers_stat(self) -> None:
        store = _store_with_patient(["Gripe do Vento Gelado", "Pele de Pedra"], disease_stat=40)
        service = MedicineService(store)
        player = find_player(store, "Dora1234")

        service.try_cure("Pomada da Fênix", player)

        saved = find_player(store, "Dora1234")
        self.assertEqual(["Gripe do Vento Gelado"], saved.disease_names)
        self.assertEqual(25, saved.stats.disease)

    def test_medicine_for_absent_disease_changes_nothing(self) -> None:
        store = _store_with_patient([MALNUTRITION], disease_stat=15)
        service = MedicineService(store)
        player = find_player(store, "Dora1234")

        self.assertFalse(service.try_cure("Elixir Refrescante de Gelo", player))

        saved = find_player(store, "Dora1234")
        self.assertEqual([MALNUTRITION], saved.disease_names)
        self.assertEqual(15, saved.stats.disease)
        self.assertEqual(50, saved.stats.health)

    def test_non_medicine_is_not_recognised(self) -> None:
        service = MedicineService(InMemoryRemoteStore())

        self.assertFalse(service.is_medicine("Bibimbap Encantado"))
        self.assertTrue(service.is_medicine("Pomada da Fênix"))

    def test_malnutrition_is_contracted_once_when_hunger_is_low(self) -> None:
        store = _store_with_patient([], disease_stat=0)
        bus = EventBus()
        contracted: list[DiseaseContracted] = []
        bus.subscribe(DiseaseContracted, contracted.append)
        service = MedicineService(store, event_bus=bus)
        row = store.select_one(USERS, filters={"username": "Dora1234"})
        store.update(USERS, {"hunger_percentage": 20}, filters={"id": row["id"]})
        player = find_player(store, "Dora1234")

        self.assertTrue(service.check_malnutrition(player))
        self.assertFalse(service.check_malnutrition(player))

        saved = find_player(store, "Dora1234")
        self.assertEqual([MALNUTRITION], saved.disease_names)
        self.assertEqual(15, saved.stats.disease)
        self.assertEqual(1, len(contracted))

    def test_well_fed_player_does_not_contract_malnutrition(self) -> None:
        store = _store_with_patient([], disease_stat=0)
        service = MedicineService(store)
        player = find_player(store, "Dora1234")

        self.assertFalse(service.check_malnutrition(player))

    def test_reconcile_resets_stale_stat(self) -> None:
        store = _store_with_patient([], disease_stat=30)
        service = MedicineService(store)
        player = find_player(store, "Dora1234")

        self.assertTrue(service.reconcile_disease_stat(player))
        self.assertEqual(0, find_player(store, "Dora1234").stats.disease)
        self.assertFalse(service.reconcile_disease_stat(player))


if __name__ == "__main__":
    unittest.main()
