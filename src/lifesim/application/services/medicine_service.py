from __future__ import annotations

import logging
from typing import Optional

from lifesim.application.services.balance_tables import (
    CURE_DISEASE_STAT_REDUCTION,
    CURE_HEALTH_BONUS,
    MALNUTRITION_HUNGER_THRESHOLD,
)
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.store_records import update_user
from lifesim.domain.events import DiseaseContracted, DiseaseCured, StatsChanged
from lifesim.domain.models.disease import MALNUTRITION, lookup_disease
from lifesim.domain.models.player import Player, diseases_to_json
from lifesim.domain.models.stats import STAT_COLUMNS, clamp_stat
from lifesim.domain.repositories import RemoteStore
from lifesim.domain.services.store_catalog import medicine_index


logger = logging.getLogger(__name__)


class MedicineService:
    """Keeps a player's disease set and numeric disease stat in step.

    Every write of the disease set also writes the stat, and
    :meth:`reconcile_disease_stat` repairs rows where an empty set still
    carries a non-zero stat.
    """

    def __init__(
        self,
        store: RemoteStore,
        *,
        event_bus: EventBus | None = None,
        medicines: dict[str, str] | None = None,
    ) -> None:
        self.store = store
        self.event_bus = event_bus
        self.medicines = dict(medicines) if medicines is not None else medicine_index()

    def disease_cured_by(self, item_name: str, player: Player) -> Optional[str]:
        disease_name = self.medicines.get(item_name)
        if disease_name and player.has_disease(disease_name):
            return disease_name
        return None

    def is_medicine(self, item_name: str) -> bool:
        return item_name in self.medicines

    def try_cure(self, item_name: str, player: Player) -> bool:
        """Cure the disease ``item_name`` treats, if the player has it.

        Returns False with no changes when the player lacks that disease.
        """

        disease_name = self.disease_cured_by(item_name, player)
        if disease_name is None:
            return False
        before = player.stats
        remaining = [disease for disease in player.diseases if disease.name != disease_name]
        disease_stat = 0 if not remaining else before.disease - CURE_DISEASE_STAT_REDUCTION
        player.diseases = remaining
        player.stats = before.with_values(health=before.health + CURE_HEALTH_BONUS, disease=disease_stat)
        self._persist(player, extra={STAT_COLUMNS["health"]: player.stats.health})
        self._publish(DiseaseCured(user_id=str(player.id), disease_name=disease_name, remaining=player.disease_names))
        self._publish_stats(player, before, reason=f"cure:{disease_name}")
        return True

    def remove_disease(self, player: Player, disease_name: str) -> bool:
        if not player.has_disease(disease_name):
            return False
        before = player.stats
        player.diseases = [disease for disease in player.diseases if disease.name != disease_name]
        if not player.diseases:
            player.stats = before.with_values(disease=0)
        else:
            player.stats = before.with_values(disease=before.disease - CURE_DISEASE_STAT_REDUCTION)
        self._persist(player)
        self._publish(DiseaseCured(user_id=str(player.id), disease_name=disease_name, remaining=player.disease_names))
        self._publish_stats(player, before, reason=f"treatment:{disease_name}")
        return True

    def add_disease(self, player: Player, disease_name: str) -> bool:
        if player.has_disease(disease_name):
            return False
        before = player.stats
        player.diseases = [*player.diseases, lookup_disease(disease_name)]
        player.stats = before.with_values(disease=before.disease + CURE_DISEASE_STAT_REDUCTION)
        self._persist(player)
        self._publish(DiseaseContracted(user_id=str(player.id), disease_name=disease_name))
        self._publish_stats(player, before, reason=f"disease:{disease_name}")
        return True

    def check_malnutrition(self, player: Player) -> bool:
        if player.stats.hunger > MALNUTRITION_HUNGER_THRESHOLD:
            return False
        return self.add_disease(player, MALNUTRITION)

    def reconcile_disease_stat(self, player: Player) -> bool:
        """Force the disease stat to zero when no diseases remain."""

        if player.diseases or player.stats.disease == 0:
            return False
        before = player.stats
        player.stats = before.with_values(disease=0)
        update_user(self.store, str(player.id), {STAT_COLUMNS["disease"]: 0})
        logger.info(
            "Reset stale disease stat",
            extra={"user_id": player.id, "previous": before.disease},
        )
        self._publish_stats(player, before, reason="disease_reconcile")
        return True

    def _persist(self, player: Player, *, extra: dict | None = None) -> None:
        changes = {
            "diseases_json": diseases_to_json(player.diseases),
            STAT_COLUMNS["disease"]: clamp_stat(player.stats.disease),
        }
        changes.update(extra or {})
        update_user(self.store, str(player.id), changes)

    def _publish_stats(self, player: Player, before, *, reason: str) -> None:
        if before == player.stats:
            return
        self._publish(StatsChanged(user_id=str(player.id), before=before.as_dict(), after=player.stats.as_dict(), reason=reason))

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
