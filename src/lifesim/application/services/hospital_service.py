from __future__ import annotations

import logging

from lifesim.application.dtos import OperationResult
from lifesim.application.services.balance_tables import (
    CURE_TREATMENT_COST,
    CURE_TREATMENT_HEALTH,
    HOSPITAL_TREATMENTS,
)
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.medicine_service import MedicineService
from lifesim.application.services.store_records import (
    TREATMENTS,
    record_transaction,
    require_player_by_id,
    update_user,
    utc_now_iso,
)
from lifesim.domain.errors import LifeSimError
from lifesim.domain.events import StatsChanged, WalletChanged
from lifesim.domain.models.hospital import CURE_TREATMENT_PREFIX, TreatmentRequest, TreatmentStatus
from lifesim.domain.models.player import Player
from lifesim.domain.models.stats import STAT_COLUMNS
from lifesim.domain.models.transaction import TransactionType
from lifesim.domain.repositories import RemoteStore


logger = logging.getLogger(__name__)


def treatment_price(treatment_type: str) -> tuple[int, int]:
    """(cost, health gain) for a treatment name."""

    if treatment_type.startswith(CURE_TREATMENT_PREFIX):
        return CURE_TREATMENT_COST, CURE_TREATMENT_HEALTH
    if treatment_type not in HOSPITAL_TREATMENTS:
        raise LifeSimError(f"Tratamento desconhecido: {treatment_type}")
    return HOSPITAL_TREATMENTS[treatment_type]


class HospitalService:
    def __init__(self, store: RemoteStore, medicine: MedicineService, *, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.medicine = medicine
        self.event_bus = event_bus

    def request_treatment(self, player: Player, treatment_type: str) -> OperationResult:
        try:
            cost, _ = treatment_price(treatment_type)
        except LifeSimError as exc:
            return OperationResult.failure("invalid", str(exc))
        if player.wallet_balance < cost:
            return OperationResult.failure("insufficient_funds", f"{treatment_type} custa {cost} CM")
        return self._file(player, treatment_type, cost)

    def request_cure(self, player: Player, disease_name: str) -> OperationResult:
        if not player.has_disease(disease_name):
            return OperationResult.failure("invalid", f"Você não tem {disease_name}")
        if player.wallet_balance < CURE_TREATMENT_COST:
            return OperationResult.failure("insufficient_funds", f"O tratamento custa {CURE_TREATMENT_COST} CM")
        return self._file(player, f"{CURE_TREATMENT_PREFIX}{disease_name}", CURE_TREATMENT_COST)

    def _file(self, player: Player, treatment_type: str, cost: int) -> OperationResult:
        try:
            self.store.insert(
                TREATMENTS,
                {
                    "user_id": player.id,
                    "username": player.username,
                    "treatment_type": treatment_type,
                    "treatment_cost": cost,
                    "status": TreatmentStatus.PENDING.value,
                    "created_at": utc_now_iso(),
                },
            )
        except Exception:
            logger.exception("Filing treatment request failed", extra={"user_id": player.id})
            return OperationResult.failure("remote_error", "Não foi possível enviar a solicitação")
        return OperationResult.success(f"Sua solicitação de {treatment_type} foi enviada aos médicos")

    def pending_requests(self) -> list[TreatmentRequest]:
        rows = self.store.select(TREATMENTS, filters={"status": TreatmentStatus.PENDING.value}, order_by="created_at")
        return [TreatmentRequest.from_row(row) for row in rows]

    def requests_for(self, player: Player) -> list[TreatmentRequest]:
        rows = self.store.select(TREATMENTS, filters={"user_id": str(player.id)}, order_by="created_at", descending=True)
        return [TreatmentRequest.from_row(row) for row in rows]

    def accept(self, request_id: str, *, notes: str = "") -> OperationResult:
        """Charge the patient and apply the treatment.

        The balance is checked again since the request may be old.
        """

        try:
            request = self._pending(request_id)
            patient = require_player_by_id(self.store, request.user_id)
            if patient.wallet_balance < request.treatment_cost:
                return OperationResult.failure(
                    "insufficient_funds",
                    f"{patient.display_name} não tem saldo para {request.treatment_type}",
                )
            _, health_gain = treatment_price(request.treatment_type)
            before = patient.stats
            patient.wallet_balance -= request.treatment_cost
            patient.stats = before.with_values(health=before.health + health_gain)
            update_user(
                self.store,
                str(patient.id),
                {"wallet_balance": patient.wallet_balance, STAT_COLUMNS["health"]: patient.stats.health},
            )
            record_transaction(
                self.store,
                from_user=patient,
                to_user=None,
                amount=request.treatment_cost,
                transaction_type=TransactionType.PURCHASE.value,
                description=f"Hospital: {request.treatment_type}",
            )
            if request.disease_name:
                self.medicine.remove_disease(patient, request.disease_name)
            self.store.update(
                TREATMENTS,
                {"status": TreatmentStatus.ACCEPTED.value, "manager_notes": notes, "processed_at": utc_now_iso()},
                filters={"id": request_id},
            )
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Accepting treatment failed", extra={"request_id": request_id})
            return OperationResult.failure("remote_error", "Não foi possível concluir o tratamento")

        user_id = str(patient.id)
        self._publish(WalletChanged(user_id=user_id, balance=patient.wallet_balance, delta=-request.treatment_cost, reason="hospital"))
        self._publish(StatsChanged(user_id=user_id, before=before.as_dict(), after=patient.stats.as_dict(), reason="hospital"))
        return OperationResult.success(f"{request.treatment_type} concluído para {patient.display_name}")

    def reject(self, request_id: str, *, notes: str = "") -> OperationResult:
        try:
            self._pending(request_id)
            self.store.update(
                TREATMENTS,
                {"status": TreatmentStatus.REJECTED.value, "manager_notes": notes, "processed_at": utc_now_iso()},
                filters={"id": request_id},
            )
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Rejecting treatment failed", extra={"request_id": request_id})
            return OperationResult.failure("remote_error", "Não foi possível recusar o tratamento")
        return OperationResult.success("Solicitação recusada")

    def _pending(self, request_id: str) -> TreatmentRequest:
        row = self.store.select_one(TREATMENTS, filters={"id": request_id})
        if row is None:
            raise LifeSimError("Solicitação não encontrada")
        request = TreatmentRequest.from_row(row)
        if request.status != TreatmentStatus.PENDING:
            raise LifeSimError(f"Solicitação já foi {request.status.value}")
        return request

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
