from __future__ import annotations

import logging
from contextlib import contextmanager, nullcontext
from typing import Iterator, Optional

from lifesim.application.dtos import TransferResult
from lifesim.application.services.balance_tables import INVENTORY_ITEM_CAP
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.inventory_service import InventoryService
from lifesim.application.services.store_records import (
    MANAGER_SALES,
    ORDERS,
    STORE_MANAGERS,
    find_player,
    manager_row,
    owned_quantity,
    record_transaction,
    require_player,
    require_player_by_id,
    update_user,
    utc_now_iso,
)
from lifesim.domain.errors import LifeSimError, RemoteFunctionNotFound
from lifesim.domain.events import InventoryChanged, OrderStatusChanged, WalletChanged
from lifesim.domain.models.order import MotoboyOrder, Order, OrderStatus
from lifesim.domain.models.player import Player
from lifesim.domain.models.transaction import StoreManager, TransactionType
from lifesim.domain.repositories import RemoteStore


logger = logging.getLogger(__name__)


def _parse_amount(amount) -> Optional[int]:
    try:
        value = int(amount)
    except (TypeError, ValueError):
        return None
    if isinstance(amount, float) and amount != value:
        return None
    return value if value > 0 else None


class TransferCoordinator:
    """Multi-step balance and inventory moves between two parties.

    With ``atomic`` set and a store that supports transactions, each operation
    runs in one store transaction. Otherwise the steps run one after the other
    and a failure midway leaves the earlier writes in place.
    """

    def __init__(
        self,
        store: RemoteStore,
        inventory: InventoryService,
        *,
        event_bus: EventBus | None = None,
        atomic: bool = False,
    ) -> None:
        self.store = store
        self.inventory = inventory
        self.event_bus = event_bus
        self.atomic = atomic

    @property
    def transactional(self) -> bool:
        return self.atomic and self.store.supports_transactions

    @contextmanager
    def _scope(self) -> Iterator[None]:
        context = self.store.transaction() if self.transactional else nullcontext()
        with self.inventory.held_notifications(rolled_back_on_error=self.transactional), context:
            yield

    def transfer_money(self, sender: Player, receiver_username: str, amount) -> TransferResult:
        value = _parse_amount(amount)
        if value is None:
            return TransferResult.failure("invalid_amount", "Valor inválido")
        if receiver_username == sender.username:
            return TransferResult.failure("invalid", "Você não pode transferir para si mesmo")
        try:
            fresh_sender = require_player(self.store, sender.username)
            receiver = find_player(self.store, receiver_username)
            if receiver is None:
                return TransferResult.failure("not_found", f"Usuário {receiver_username} não encontrado")
            if fresh_sender.wallet_balance < value:
                return TransferResult.failure(
                    "insufficient_funds",
                    "Saldo insuficiente",
                    amount=value,
                    sender_balance=fresh_sender.wallet_balance,
                    receiver_balance=receiver.wallet_balance,
                )
            if self.atomic and not self.store.supports_transactions:
                result = self._transfer_via_server(fresh_sender, receiver, value)
                if result is not None:
                    return self._finish_money(sender, receiver, result)

            sender_balance = fresh_sender.wallet_balance - value
            receiver_balance = receiver.wallet_balance + value
            with self._scope():
                update_user(self.store, str(receiver.id), {"wallet_balance": receiver_balance})
                update_user(self.store, str(fresh_sender.id), {"wallet_balance": sender_balance})
                record = record_transaction(
                    self.store,
                    from_user=fresh_sender,
                    to_user=receiver,
                    amount=value,
                    transaction_type=TransactionType.TRANSFER.value,
                    description=f"Transferência para {receiver.display_name}",
                )
        except LifeSimError as exc:
            return TransferResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception(
                "Money transfer failed",
                extra={"operation": "transfer_money", "user_id": sender.id, "to_username": receiver_username},
            )
            return TransferResult.failure("remote_error", "Não foi possível concluir a transferência")

        result = TransferResult(
            ok=True,
            message=f"Você enviou {value} para {receiver.display_name}",
            amount=value,
            sender_balance=sender_balance,
            receiver_balance=receiver_balance,
            transaction_id=None if record.get("id") is None else str(record["id"]),
        )
        return self._finish_money(sender, receiver, result)

    def _transfer_via_server(self, sender: Player, receiver: Player, amount: int) -> Optional[TransferResult]:
        try:
            payload = self.store.invoke(
                "transfer_funds",
                {"from_user_id": sender.id, "to_user_id": receiver.id, "amount": amount},
            )
        except RemoteFunctionNotFound:
            logger.info("transfer_funds not available, falling back to client-side steps")
            return None
        return TransferResult(
            ok=True,
            message=f"Você enviou {amount} para {receiver.display_name}",
            amount=amount,
            sender_balance=int(payload.get("from_balance", sender.wallet_balance - amount)),
            receiver_balance=int(payload.get("to_balance", receiver.wallet_balance + amount)),
            transaction_id=None if payload.get("transaction_id") is None else str(payload["transaction_id"]),
        )

    def _finish_money(self, sender: Player, receiver: Player, result: TransferResult) -> TransferResult:
        sender.wallet_balance = int(result.sender_balance or 0)
        self._publish(WalletChanged(user_id=str(sender.id), balance=sender.wallet_balance, delta=-result.amount, reason="transfer"))
        self._publish(
            WalletChanged(user_id=str(receiver.id), balance=int(result.receiver_balance or 0), delta=result.amount, reason="transfer")
        )
        return result

    def transfer_item(self, sender: Player, receiver_username: str, item_id: str, quantity=1) -> TransferResult:
        """Move items to another player, truncating at the receiver's cap."""

        requested = _parse_amount(quantity)
        if requested is None:
            return TransferResult.failure("invalid_amount", "Quantidade inválida")
        if receiver_username == sender.username:
            return TransferResult.failure("invalid", "Você não pode enviar itens para si mesmo")
        try:
            receiver = find_player(self.store, receiver_username)
            if receiver is None:
                return TransferResult.failure("not_found", f"Usuário {receiver_username} não encontrado")
            sender_id = str(sender.id)
            receiver_id = str(receiver.id)
            available = owned_quantity(self.store, sender_id, item_id)
            if available < requested:
                return TransferResult.failure("not_enough_items", "Você não tem unidades suficientes")
            space = INVENTORY_ITEM_CAP - owned_quantity(self.store, receiver_id, item_id)
            if space <= 0:
                return TransferResult.failure(
                    "cap_reached",
                    f"{receiver.display_name} já tem o máximo de {INVENTORY_ITEM_CAP} unidades",
                    truncated=requested,
                )
            moved = min(requested, space)
            with self._scope():
                self.inventory.consume(sender_id, item_id, moved)
                grant = self.inventory.grant(receiver_id, item_id, moved, sender=sender)
                if not grant.ok:
                    raise LifeSimError(grant.message)
        except LifeSimError as exc:
            return TransferResult.failure(getattr(exc, "code", "error"), str(exc))
        except Exception:
            logger.exception(
                "Item transfer failed",
                extra={"operation": "transfer_item", "user_id": sender.id, "item_id": item_id},
            )
            return TransferResult.failure("remote_error", "Não foi possível enviar o item")

        truncated = requested - moved
        message = f"Você enviou {moved} unidade(s) para {receiver.display_name}"
        if truncated:
            message += f" ({truncated} não couberam na bolsa)"
        return TransferResult(ok=True, message=message, quantity=moved, truncated=truncated)

    def approve_order(self, order_id: str) -> TransferResult:
        """Charge the buyer, pay the store and deliver every line of a pending order.

        The buyer's balance is checked again here because it may have changed
        since the order was placed.
        """

        try:
            row = self.store.select_one(ORDERS, filters={"id": order_id})
            if row is None:
                return TransferResult.failure("not_found", "Pedido não encontrado")
            order = Order.from_row(row)
            if order.status != OrderStatus.PENDING:
                return TransferResult.failure("invalid_transition", f"Pedido já está {order.status.value}")
            buyer = require_player_by_id(self.store, order.user_id)
            total = int(order.total or 0)
            if buyer.wallet_balance < total:
                return TransferResult.failure(
                    "insufficient_funds",
                    f"{buyer.display_name} não tem saldo suficiente",
                    amount=total,
                    sender_balance=buyer.wallet_balance,
                )
            manager = self._manager_for(order.store_id)
            buyer_balance = buyer.wallet_balance - total
            manager_balance = manager.balance + total
            truncated = 0
            with self._scope():
                update_user(self.store, str(buyer.id), {"wallet_balance": buyer_balance})
                self.store.update(STORE_MANAGERS, {"balance": manager_balance}, filters={"id": manager.id})
                for line in order.lines:
                    grant = self.inventory.grant(str(buyer.id), line.item_id, line.quantity)
                    truncated += grant.truncated
                    self.store.insert(
                        MANAGER_SALES,
                        {
                            "manager_id": manager.id,
                            "order_id": order.id,
                            "buyer_username": order.buyer_username,
                            "item_name": line.name,
                            "amount": line.subtotal,
                            "created_at": utc_now_iso(),
                        },
                    )
                record = record_transaction(
                    self.store,
                    from_user=buyer,
                    to_user=None,
                    to_username=manager.username,
                    amount=total,
                    transaction_type=TransactionType.PURCHASE.value,
                    description=f"Compra na loja {order.store_id}",
                )
                self.store.update(
                    ORDERS,
                    {"status": OrderStatus.APPROVED.value, "manager_approved": True, "approved_at": utc_now_iso()},
                    filters={"id": order.id},
                )
        except LifeSimError as exc:
            return TransferResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Order approval failed", extra={"operation": "approve_order", "order_id": order_id})
            return TransferResult.failure("remote_error", "Não foi possível aprovar o pedido")

        if truncated:
            logger.warning("Order lines truncated at inventory cap", extra={"order_id": order_id, "truncated": truncated})
        self._publish(WalletChanged(user_id=str(buyer.id), balance=buyer_balance, delta=-total, reason="order"))
        self._publish(InventoryChanged(user_id=str(buyer.id), item_ids=[line.item_id for line in order.lines], reason="order"))
        self._publish(OrderStatusChanged(order_id=str(order.id), status=OrderStatus.APPROVED.value))
        return TransferResult(
            ok=True,
            message=f"Pedido aprovado: {total} cobrados de {buyer.display_name}",
            amount=total,
            sender_balance=buyer_balance,
            receiver_balance=manager_balance,
            transaction_id=None if record.get("id") is None else str(record["id"]),
            truncated=truncated,
        )

    def charge_delivery(self, order: MotoboyOrder) -> TransferResult:
        """Charge a delivery order when the manager approves it.

        Items are granted later, when the rider delivers.
        """

        try:
            buyer = require_player(self.store, order.customer_username)
            total = int(order.total)
            if buyer.wallet_balance < total:
                return TransferResult.failure(
                    "insufficient_funds",
                    f"{buyer.display_name} não tem saldo suficiente",
                    amount=total,
                    sender_balance=buyer.wallet_balance,
                )
            manager = self._manager_for(order.store_id)
            buyer_balance = buyer.wallet_balance - total
            manager_balance = manager.balance + total
            with self._scope():
                update_user(self.store, str(buyer.id), {"wallet_balance": buyer_balance})
                self.store.update(STORE_MANAGERS, {"balance": manager_balance}, filters={"id": manager.id})
                for line in order.lines:
                    self.store.insert(
                        MANAGER_SALES,
                        {
                            "manager_id": manager.id,
                            "order_id": order.order_id,
                            "buyer_username": order.customer_username,
                            "item_name": line.name,
                            "amount": line.subtotal,
                            "created_at": utc_now_iso(),
                        },
                    )
                record = record_transaction(
                    self.store,
                    from_user=buyer,
                    to_user=None,
                    to_username=manager.username,
                    amount=total,
                    transaction_type=TransactionType.PURCHASE.value,
                    description=f"Entrega da loja {order.store_id}",
                )
        except LifeSimError as exc:
            return TransferResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Delivery charge failed", extra={"operation": "charge_delivery", "order_id": order.id})
            return TransferResult.failure("remote_error", "Não foi possível cobrar a entrega")
        self._publish(WalletChanged(user_id=str(buyer.id), balance=buyer_balance, delta=-total, reason="delivery"))
        return TransferResult(
            ok=True,
            message=f"{total} cobrados de {buyer.display_name}",
            amount=total,
            sender_balance=buyer_balance,
            receiver_balance=manager_balance,
            transaction_id=None if record.get("id") is None else str(record["id"]),
        )

    def reject_order(self, order_id: str) -> TransferResult:
        try:
            row = self.store.select_one(ORDERS, filters={"id": order_id})
            if row is None:
                return TransferResult.failure("not_found", "Pedido não encontrado")
            if str(row.get("status")) != OrderStatus.PENDING.value:
                return TransferResult.failure("invalid_transition", f"Pedido já está {row.get('status')}")
            self.store.update(ORDERS, {"status": OrderStatus.REJECTED.value, "manager_approved": False}, filters={"id": order_id})
        except Exception:
            logger.exception("Order rejection failed", extra={"operation": "reject_order", "order_id": order_id})
            return TransferResult.failure("remote_error", "Não foi possível recusar o pedido")
        self._publish(OrderStatusChanged(order_id=str(order_id), status=OrderStatus.REJECTED.value))
        return TransferResult(ok=True, message="Pedido recusado")

    def store_transfer(self, store_id: str, receiver_username: str, amount) -> TransferResult:
        """Pay a player out of a store's balance."""

        value = _parse_amount(amount)
        if value is None:
            return TransferResult.failure("invalid_amount", "Valor inválido")
        try:
            manager = self._manager_for(store_id)
            if manager.balance < value:
                return TransferResult.failure("insufficient_funds", "Saldo da loja insuficiente", sender_balance=manager.balance)
            receiver = find_player(self.store, receiver_username)
            if receiver is None:
                return TransferResult.failure("not_found", f"Usuário {receiver_username} não encontrado")
            manager_balance = manager.balance - value
            receiver_balance = receiver.wallet_balance + value
            with self._scope():
                self.store.update(STORE_MANAGERS, {"balance": manager_balance}, filters={"id": manager.id})
                update_user(self.store, str(receiver.id), {"wallet_balance": receiver_balance})
                record = record_transaction(
                    self.store,
                    from_user=None,
                    to_user=receiver,
                    from_username=manager.username,
                    amount=value,
                    transaction_type=TransactionType.STORE_TRANSFER.value,
                    description=f"Transferência da loja {store_id}",
                )
        except LifeSimError as exc:
            return TransferResult.failure(exc.code, str(exc))
        except Exception:
            logger.exception("Store transfer failed", extra={"operation": "store_transfer", "store_id": store_id})
            return TransferResult.failure("remote_error", "Não foi possível concluir a transferência")
        self._publish(WalletChanged(user_id=str(receiver.id), balance=receiver_balance, delta=value, reason="store_transfer"))
        return TransferResult(
            ok=True,
            message=f"{value} enviados para {receiver.display_name}",
            amount=value,
            sender_balance=manager_balance,
            receiver_balance=receiver_balance,
            transaction_id=None if record.get("id") is None else str(record["id"]),
        )

    def _manager_for(self, store_id: str) -> StoreManager:
        row = manager_row(self.store, store_id)
        if row is None:
            raise LifeSimError(f"Loja {store_id} não tem gerente cadastrado")
        return StoreManager.from_row(row)

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
