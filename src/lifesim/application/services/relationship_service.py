from __future__ import annotations

import logging
from typing import Optional

from lifesim.application.dtos import OperationResult
from lifesim.application.services.balance_tables import DIVORCE_DESCRIPTION, DIVORCE_FEE
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.inventory_service import InventoryService
from lifesim.application.services.store_records import (
    PROPOSALS,
    RELATIONSHIPS,
    USERS,
    find_player,
    record_transaction,
    require_player,
    update_user,
    utc_now_iso,
)
from lifesim.domain.errors import LifeSimError
from lifesim.domain.events import RelationshipChanged, WalletChanged
from lifesim.domain.models.item import RelationshipType, normalize_relationship_type
from lifesim.domain.models.player import Player
from lifesim.domain.models.relationship import (
    RELATIONSHIP_STATUS,
    UPGRADES,
    Proposal,
    ProposalStatus,
    Relationship,
)
from lifesim.domain.models.transaction import TransactionType
from lifesim.domain.repositories import RemoteStore


logger = logging.getLogger(__name__)

SINGLE = "single"


class RelationshipService:
    """Proposals with rings, and the relationship they create.

    Accepting a proposal leaves other pending proposals for the same players
    untouched.
    """

    def __init__(self, store: RemoteStore, inventory: InventoryService, *, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.inventory = inventory
        self.event_bus = event_bus

    def current(self, player: Player) -> Optional[Relationship]:
        user_id = str(player.id)
        for column in ("user1_id", "user2_id"):
            row = self.store.select_one(RELATIONSHIPS, filters={column: user_id})
            if row is not None:
                return Relationship.from_row(row)
        return None

    def pending_for(self, player: Player) -> list[Proposal]:
        rows = self.store.select(
            PROPOSALS,
            filters={"to_user_id": str(player.id), "status": ProposalStatus.PENDING.value},
            order_by="created_at",
            descending=True,
        )
        return [Proposal.from_row(row) for row in rows]

    def send_proposal(self, sender: Player, receiver_username: str, relationship_type, ring_item_id: str) -> OperationResult:
        wanted = normalize_relationship_type(relationship_type)
        if wanted is None:
            return OperationResult.failure("invalid", f"Tipo de relacionamento desconhecido: {relationship_type}")
        if receiver_username == sender.username:
            return OperationResult.failure("invalid", "Você não pode fazer uma proposta para si mesmo")
        ring = self.inventory.find_item(sender, ring_item_id)
        if ring is None:
            return OperationResult.failure("not_found", "Anel não está na bolsa")
        if ring.relationship_type != wanted.value:
            return OperationResult.failure("invalid", f"{ring.name} não serve para este tipo de proposta")
        try:
            receiver = find_player(self.store, receiver_username)
            if receiver is None:
                return OperationResult.failure("not_found", f"Usuário {receiver_username} não encontrado")
            duplicate = self.store.select_one(
                PROPOSALS,
                filters={
                    "from_user_id": str(sender.id),
                    "to_user_id": str(receiver.id),
                    "status": ProposalStatus.PENDING.value,
                },
            )
            if duplicate is not None:
                return OperationResult.failure("duplicate", f"Já existe uma proposta pendente para {receiver.display_name}")
            self.store.insert(
                PROPOSALS,
                {
                    "from_user_id": sender.id,
                    "to_user_id": receiver.id,
                    "from_username": sender.username,
                    "to_username": receiver.username,
                    "relationship_type": wanted.value,
                    "ring_item_id": ring_item_id,
                    "status": ProposalStatus.PENDING.value,
                    "created_at": utc_now_iso(),
                },
            )
            # the ring travels with the proposal
            self.inventory.consume(str(sender.id), ring_item_id, 1)
        except Exception:
            logger.exception("Sending proposal failed", extra={"user_id": sender.id, "to_username": receiver_username})
            return OperationResult.failure("remote_error", "Não foi possível enviar a proposta")
        return OperationResult.success(f"Proposta enviada para {receiver.display_name}")

    def accept(self, player: Player, proposal_id: str) -> OperationResult:
        try:
            proposal = self._pending_proposal(player, proposal_id)
            sender = require_player(self.store, proposal.from_username)
            self.store.update(PROPOSALS, {"status": ProposalStatus.ACCEPTED.value}, filters={"id": proposal.id})
            for user_id in (str(sender.id), str(player.id)):
                self.store.delete(RELATIONSHIPS, filters={"user1_id": user_id})
                self.store.delete(RELATIONSHIPS, filters={"user2_id": user_id})
            self.store.insert(
                RELATIONSHIPS,
                {
                    "user1_id": sender.id,
                    "user2_id": player.id,
                    "user1_username": sender.username,
                    "user2_username": player.username,
                    "relationship_type": proposal.relationship_type.value,
                    "started_at": utc_now_iso(),
                },
            )
            status = RELATIONSHIP_STATUS[proposal.relationship_type]
            self._set_status((sender, player), status)
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Accepting proposal failed", extra={"user_id": player.id, "proposal_id": proposal_id})
            return OperationResult.failure("remote_error", "Não foi possível aceitar a proposta")
        self._announce(player, sender, proposal.relationship_type, "started")
        return OperationResult.success(f"Você aceitou a proposta de {sender.display_name}")

    def reject(self, player: Player, proposal_id: str) -> OperationResult:
        try:
            proposal = self._pending_proposal(player, proposal_id)
            self.store.update(PROPOSALS, {"status": ProposalStatus.REJECTED.value}, filters={"id": proposal.id})
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Rejecting proposal failed", extra={"user_id": player.id, "proposal_id": proposal_id})
            return OperationResult.failure("remote_error", "Não foi possível rejeitar a proposta")
        return OperationResult.success(f"Proposta de {proposal.from_username} foi rejeitada")

    def upgrade(self, player: Player, ring_item_id: str) -> OperationResult:
        relationship = self.current(player)
        if relationship is None:
            return OperationResult.failure("not_found", "Você não está em um relacionamento")
        next_type = UPGRADES.get(relationship.relationship_type)
        if next_type is None:
            return OperationResult.failure("invalid_transition", "Este relacionamento não pode evoluir")
        ring = self.inventory.find_item(player, ring_item_id)
        if ring is None or ring.relationship_type != next_type.value:
            return OperationResult.failure("invalid", "Você precisa de um anel do próximo nível")
        try:
            partner_id, _ = relationship.partner_of(str(player.id))
            partner = self._player_by_id(partner_id)
            self.store.update(RELATIONSHIPS, {"relationship_type": next_type.value}, filters={"id": relationship.id})
            self._set_status((player, partner) if partner else (player,), RELATIONSHIP_STATUS[next_type])
            self.inventory.consume(str(player.id), ring_item_id, 1)
        except Exception:
            logger.exception("Upgrading relationship failed", extra={"user_id": player.id})
            return OperationResult.failure("remote_error", "Não foi possível atualizar o relacionamento")
        self._announce(player, partner, next_type, "upgraded")
        label = "noivos" if next_type == RelationshipType.ENGAGEMENT else "casados"
        return OperationResult.success(f"Agora vocês estão {label}!")

    def can_end(self, player: Player) -> bool:
        relationship = self.current(player)
        if relationship is None:
            return False
        if relationship.relationship_type == RelationshipType.MARRIAGE:
            return player.wallet_balance >= DIVORCE_FEE
        return True

    def end(self, player: Player) -> OperationResult:
        """End the current relationship; a marriage first charges the divorce fee."""

        relationship = self.current(player)
        if relationship is None:
            return OperationResult.failure("not_found", "Você não está em um relacionamento")
        is_marriage = relationship.relationship_type == RelationshipType.MARRIAGE
        try:
            if is_marriage:
                fresh = require_player(self.store, player.username)
                if fresh.wallet_balance < DIVORCE_FEE:
                    return OperationResult.failure(
                        "insufficient_funds",
                        f"O divórcio custa {DIVORCE_FEE} CM e você tem {fresh.wallet_balance} CM",
                    )
                player.wallet_balance = fresh.wallet_balance - DIVORCE_FEE
                update_user(self.store, str(player.id), {"wallet_balance": player.wallet_balance})
                record_transaction(
                    self.store,
                    from_user=player,
                    to_user=None,
                    amount=DIVORCE_FEE,
                    transaction_type=TransactionType.PURCHASE.value,
                    description=DIVORCE_DESCRIPTION,
                )
            partner_id, partner_username = relationship.partner_of(str(player.id))
            partner = self._player_by_id(partner_id)
            self.store.delete(RELATIONSHIPS, filters={"id": relationship.id})
            self._set_status((player, partner) if partner else (player,), SINGLE)
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Ending relationship failed", extra={"user_id": player.id})
            return OperationResult.failure("remote_error", "Não foi possível terminar o relacionamento")

        if is_marriage:
            self._publish(WalletChanged(user_id=str(player.id), balance=player.wallet_balance, delta=-DIVORCE_FEE, reason="divorce"))
        self._announce(player, partner, None, "ended")
        name = partner.display_name if partner else partner_username
        action = "divorciou" if is_marriage else "terminou o relacionamento"
        return OperationResult.success(f"Você {action} com {name}")

    def _pending_proposal(self, player: Player, proposal_id: str) -> Proposal:
        row = self.store.select_one(PROPOSALS, filters={"id": proposal_id})
        if row is None:
            raise LifeSimError("Proposta não encontrada")
        proposal = Proposal.from_row(row)
        if proposal.to_user_id != str(player.id):
            raise LifeSimError("Esta proposta não é para você")
        if proposal.status != ProposalStatus.PENDING:
            raise LifeSimError(f"Proposta já foi {proposal.status.value}")
        return proposal

    def _player_by_id(self, user_id: str) -> Optional[Player]:
        row = self.store.select_one(USERS, filters={"id": user_id})
        return Player.from_row(row) if row else None

    def _set_status(self, players, status: str) -> None:
        for member in players:
            update_user(self.store, str(member.id), {"relationship_status": status})
            member.relationship_status = status

    def _announce(self, player: Player, partner: Optional[Player], relationship_type: Optional[RelationshipType], action: str) -> None:
        kind = relationship_type.value if relationship_type else None
        partner_id = str(partner.id) if partner else None
        self._publish(RelationshipChanged(user_id=str(player.id), partner_id=partner_id, relationship_type=kind, action=action))
        if partner is not None:
            self._publish(RelationshipChanged(user_id=partner_id, partner_id=str(player.id), relationship_type=kind, action=action))

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
