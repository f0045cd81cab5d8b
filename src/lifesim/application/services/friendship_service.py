from __future__ import annotations

import json
import logging
from typing import Optional

from lifesim.application.dtos import OperationResult
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.inventory_service import InventoryService
from lifesim.application.services.store_records import (
    CONNECTED_SOULS,
    FRIEND_REQUESTS,
    FRIENDSHIP_ITEMS,
    find_player,
    find_player_by_id,
    utc_now_iso,
)
from lifesim.domain.errors import LifeSimError, ValidationError
from lifesim.domain.events import FriendshipChanged
from lifesim.domain.models.friendship import ConnectedSoul, FriendRequest, FriendshipItemRequest
from lifesim.domain.models.item import RelationshipType, normalize_relationship_type
from lifesim.domain.models.player import Player, strip_disambiguator
from lifesim.domain.models.relationship import ProposalStatus
from lifesim.domain.repositories import RemoteStore


logger = logging.getLogger(__name__)

PENDING = ProposalStatus.PENDING.value
ACCEPTED = ProposalStatus.ACCEPTED.value
REJECTED = ProposalStatus.REJECTED.value


class FriendshipService:
    """Friend requests, friendship items and the connected souls they create.

    A friend request is a row in ``friend_requests``; the pair are friends
    once either direction is accepted. Friendship items can only be sent to
    friends, and accepting one links both players as connected souls.
    """

    def __init__(self, store: RemoteStore, inventory: InventoryService, *, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.inventory = inventory
        self.event_bus = event_bus

    # friend requests

    def incoming_requests(self, player: Player) -> list[FriendRequest]:
        rows = self.store.select(
            FRIEND_REQUESTS,
            filters={"addressee_id": str(player.id), "status": PENDING},
            order_by="created_at",
            descending=True,
        )
        return [FriendRequest.from_row(row) for row in rows]

    def friends(self, player: Player) -> list[Player]:
        user_id = str(player.id)
        seen: set[str] = set()
        friends: list[Player] = []
        for request in self._requests_involving(user_id, status=ACCEPTED):
            friend_id, _ = request.other_side(user_id)
            if friend_id in seen:
                continue
            seen.add(friend_id)
            friend = find_player_by_id(self.store, friend_id)
            if friend is not None:
                friends.append(friend)
        return friends

    def are_friends(self, player: Player, other: Player) -> bool:
        return self._between(str(player.id), str(other.id), ACCEPTED) is not None

    def has_pending_request(self, player: Player, other: Player) -> bool:
        return self._between(str(player.id), str(other.id), PENDING) is not None

    def send_request(self, sender: Player, addressee_username: str) -> OperationResult:
        if addressee_username == sender.username:
            return OperationResult.failure("invalid", "Você não pode adicionar a si mesmo")
        try:
            addressee = find_player(self.store, addressee_username)
            if addressee is None:
                return OperationResult.failure("not_found", "Usuário não encontrado no sistema")
            name = addressee.display_name
            if self.are_friends(sender, addressee):
                return OperationResult.failure("duplicate", f"Você e {name} já são amigos")
            if self.has_pending_request(sender, addressee):
                return OperationResult.failure("duplicate", f"Você já enviou um pedido para {name}")
            self.store.insert(
                FRIEND_REQUESTS,
                {
                    "requester_id": sender.id,
                    "addressee_id": addressee.id,
                    "requester_username": sender.username,
                    "addressee_username": addressee.username,
                    "status": PENDING,
                    "created_at": utc_now_iso(),
                },
            )
        except Exception:
            logger.exception("Sending friend request failed", extra={"user_id": sender.id, "to_username": addressee_username})
            return OperationResult.failure("remote_error", "Não foi possível enviar o pedido de amizade")
        return OperationResult.success(f"Pedido de amizade enviado para {name}")

    def accept_request(self, player: Player, request_id: str) -> OperationResult:
        try:
            request = self._pending_request(player, request_id)
            self.store.update(
                FRIEND_REQUESTS,
                {"status": ACCEPTED, "updated_at": utc_now_iso()},
                filters={"id": request.id},
            )
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Accepting friend request failed", extra={"user_id": player.id, "request_id": request_id})
            return OperationResult.failure("remote_error", "Não foi possível aceitar o pedido")
        self._announce(player.id, request.requester_id, "friends")
        return OperationResult.success(f"Agora você e {strip_disambiguator(request.requester_username)} são amigos!")

    def reject_request(self, player: Player, request_id: str) -> OperationResult:
        try:
            request = self._pending_request(player, request_id)
            self.store.update(
                FRIEND_REQUESTS,
                {"status": REJECTED, "updated_at": utc_now_iso()},
                filters={"id": request.id},
            )
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Rejecting friend request failed", extra={"user_id": player.id, "request_id": request_id})
            return OperationResult.failure("remote_error", "Não foi possível recusar o pedido")
        return OperationResult.success("Pedido de amizade foi recusado")

    # friendship items

    def item_requests(self, player: Player) -> list[FriendshipItemRequest]:
        """Every friendship item the player sent or received, newest first."""

        user_id = str(player.id)
        rows = self.store.select(FRIENDSHIP_ITEMS, filters={"to_user_id": user_id})
        rows += self.store.select(FRIENDSHIP_ITEMS, filters={"from_user_id": user_id})
        requests = [FriendshipItemRequest.from_row(row) for row in rows]
        return sorted(requests, key=lambda request: (request.created_at or "", request.id or ""), reverse=True)

    def send_item(self, sender: Player, friend_username: str, item_id: str) -> OperationResult:
        item = self.inventory.find_item(sender, item_id)
        if item is None:
            return OperationResult.failure("not_found", "Item não está na bolsa")
        if normalize_relationship_type(item.relationship_type) != RelationshipType.FRIENDSHIP:
            return OperationResult.failure("invalid", f"{item.name} não é um item de amizade")
        try:
            friend = find_player(self.store, friend_username)
            if friend is None:
                return OperationResult.failure("not_found", "Usuário destinatário não encontrado")
            if not self.are_friends(sender, friend):
                return OperationResult.failure("invalid", f"Você precisa ser amigo de {friend.display_name}")
            self.store.insert(
                FRIENDSHIP_ITEMS,
                {
                    "from_user_id": sender.id,
                    "from_username": sender.username,
                    "to_user_id": friend.id,
                    "to_username": friend.username,
                    "item_data": json.dumps(
                        {"id": item.item_id, "name": item.name, "description": item.description, "icon": item.icon},
                        ensure_ascii=False,
                    ),
                    "status": PENDING,
                    "created_at": utc_now_iso(),
                },
            )
            self.inventory.consume(str(sender.id), item_id, 1)
        except Exception:
            logger.exception("Sending friendship item failed", extra={"user_id": sender.id, "item_id": item_id})
            return OperationResult.failure("remote_error", "Erro ao enviar item de amizade")
        return OperationResult.success(f"Você enviou {item.name} para {friend.display_name}!")

    def accept_item(self, player: Player, request_id: str) -> OperationResult:
        try:
            request = self._pending_item(player, request_id)
            self.store.update(
                FRIENDSHIP_ITEMS,
                {"status": ACCEPTED, "processed_at": utc_now_iso()},
                filters={"id": request.id},
            )
            self.store.insert(
                CONNECTED_SOULS,
                {
                    "user1_id": request.from_user_id,
                    "user1_username": request.from_username,
                    "user2_id": request.to_user_id,
                    "user2_username": request.to_username,
                    "item_name": request.item_name,
                    "item_data": json.dumps(request.item_data, ensure_ascii=False),
                    "connected_at": utc_now_iso(),
                },
            )
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Accepting friendship item failed", extra={"user_id": player.id, "request_id": request_id})
            return OperationResult.failure("remote_error", "Erro ao aceitar item de amizade")
        self._announce(player.id, request.from_user_id, "connected")
        return OperationResult.success(
            f"Você e {strip_disambiguator(request.from_username)} agora são almas conectadas!"
        )

    def reject_item(self, player: Player, request_id: str) -> OperationResult:
        try:
            request = self._pending_item(player, request_id)
            self.store.update(
                FRIENDSHIP_ITEMS,
                {"status": REJECTED, "processed_at": utc_now_iso()},
                filters={"id": request.id},
            )
        except LifeSimError as exc:
            return OperationResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Rejecting friendship item failed", extra={"user_id": player.id, "request_id": request_id})
            return OperationResult.failure("remote_error", "Erro ao rejeitar item de amizade")
        return OperationResult.success("Item de amizade rejeitado")

    # connected souls

    def connected_souls(self, player: Player) -> list[ConnectedSoul]:
        user_id = str(player.id)
        rows = self.store.select(CONNECTED_SOULS, filters={"user1_id": user_id})
        rows += self.store.select(CONNECTED_SOULS, filters={"user2_id": user_id})
        souls = [ConnectedSoul.from_row(row) for row in rows]
        return sorted(souls, key=lambda soul: (soul.connected_at or "", soul.id or ""), reverse=True)

    def remove_friendship(self, player: Player, soul_id: str) -> OperationResult:
        try:
            row = self.store.select_one(CONNECTED_SOULS, filters={"id": soul_id})
            if row is None:
                return OperationResult.failure("not_found", "Amizade não encontrada")
            soul = ConnectedSoul.from_row(row)
            if not soul.involves(str(player.id)):
                return OperationResult.failure("forbidden", "Esta amizade não é sua")
            self.store.delete(CONNECTED_SOULS, filters={"id": soul.id})
        except Exception:
            logger.exception("Removing friendship failed", extra={"user_id": player.id, "soul_id": soul_id})
            return OperationResult.failure("remote_error", "Erro ao desfazer amizade")
        partner_id, _ = soul.partner_of(str(player.id))
        self._announce(player.id, partner_id, "disconnected")
        return OperationResult.success("A amizade foi desfeita com sucesso")

    def _requests_involving(self, user_id: str, *, status: str) -> list[FriendRequest]:
        rows = self.store.select(FRIEND_REQUESTS, filters={"requester_id": user_id, "status": status})
        rows += self.store.select(FRIEND_REQUESTS, filters={"addressee_id": user_id, "status": status})
        return [FriendRequest.from_row(row) for row in rows]

    def _between(self, first_id: str, second_id: str, status: str) -> Optional[FriendRequest]:
        for requester_id, addressee_id in ((first_id, second_id), (second_id, first_id)):
            row = self.store.select_one(
                FRIEND_REQUESTS,
                filters={"requester_id": requester_id, "addressee_id": addressee_id, "status": status},
            )
            if row is not None:
                return FriendRequest.from_row(row)
        return None

    def _pending_request(self, player: Player, request_id: str) -> FriendRequest:
        row = self.store.select_one(FRIEND_REQUESTS, filters={"id": request_id})
        if row is None:
            raise ValidationError("Pedido não encontrado", code="not_found")
        request = FriendRequest.from_row(row)
        if request.addressee_id != str(player.id):
            raise ValidationError("Este pedido não é para você", code="forbidden")
        if request.status != ProposalStatus.PENDING:
            raise ValidationError(f"Pedido já foi {request.status.value}", code="invalid_transition")
        return request

    def _pending_item(self, player: Player, request_id: str) -> FriendshipItemRequest:
        row = self.store.select_one(FRIENDSHIP_ITEMS, filters={"id": request_id})
        if row is None:
            raise ValidationError("Item de amizade não encontrado", code="not_found")
        request = FriendshipItemRequest.from_row(row)
        if request.to_user_id != str(player.id):
            raise ValidationError("Este item não é para você", code="forbidden")
        if request.status != ProposalStatus.PENDING:
            raise ValidationError(f"Item já foi {request.status.value}", code="invalid_transition")
        return request

    def _announce(self, user_id, friend_id, action: str) -> None:
        if self.event_bus is None:
            return
        self.event_bus.publish(FriendshipChanged(user_id=str(user_id), friend_id=str(friend_id), action=action))
        self.event_bus.publish(FriendshipChanged(user_id=str(friend_id), friend_id=str(user_id), action=action))
