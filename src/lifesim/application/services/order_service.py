from __future__ import annotations

import logging
import uuid
from typing import Optional

from lifesim.application.dtos import CartView, GrantResult, OperationResult
from lifesim.application.services.balance_tables import INVENTORY_ITEM_CAP
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.inventory_service import InventoryService
from lifesim.application.services.store_records import (
    MOTOBOY_ORDERS,
    ORDERS,
    find_player,
    owned_quantity,
    utc_now_iso,
)
from lifesim.application.services.transfer_coordinator import TransferCoordinator
from lifesim.domain.errors import InvalidTransitionError
from lifesim.domain.events import InventoryChanged, OrderStatusChanged
from lifesim.domain.models.order import (
    DeliveryType,
    ManagerStatus,
    MotoboyOrder,
    MotoboyStatus,
    Order,
    OrderLine,
    OrderStatus,
    lines_to_json,
)
from lifesim.domain.models.player import Player
from lifesim.domain.repositories import Neq, RemoteStore
from lifesim.domain.services.store_catalog import get_store


logger = logging.getLogger(__name__)

MOTOBOY_SENDER = "motoboy"


class OrderService:
    """Per-store carts, order submission and the delivery workflow."""

    def __init__(
        self,
        store: RemoteStore,
        inventory: InventoryService,
        transfers: TransferCoordinator,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.inventory = inventory
        self.transfers = transfers
        self.event_bus = event_bus
        # (player id, store key) -> item id -> line
        self._carts: dict[tuple[str, str], dict[str, OrderLine]] = {}

    @staticmethod
    def _cart_key(player: Player, store_key: str) -> tuple[str, str]:
        shop = get_store(store_key)
        return str(player.id), shop.key if shop else store_key

    def cart(self, player: Player, store_key: str) -> CartView:
        cart_key = self._cart_key(player, store_key)
        key = cart_key[1]
        lines = list(self._carts.get(cart_key, {}).values())
        return CartView(store_key=key, lines=lines, total=sum(line.subtotal for line in lines))

    def add_to_cart(self, player: Player, store_key: str, item_id: str) -> OperationResult:
        shop = get_store(store_key)
        item = shop.find(item_id) if shop else None
        if shop is None or item is None:
            return OperationResult.failure("not_found", "Item não encontrado nesta loja")
        cart = self._carts.setdefault((str(player.id), shop.key), {})
        in_cart = cart[item_id].quantity if item_id in cart else 0
        try:
            owned = owned_quantity(self.store, str(player.id), item_id)
        except Exception:
            logger.exception("Inventory check failed", extra={"user_id": player.id, "item_id": item_id})
            return OperationResult.failure("remote_error", "Erro ao verificar limite de inventário")
        if owned + in_cart >= INVENTORY_ITEM_CAP:
            return OperationResult.failure(
                "cap_reached",
                f"Você já possui/tem no carrinho o máximo de {INVENTORY_ITEM_CAP} unidades de {item.name}",
            )
        cart[item_id] = OrderLine(item_id=item.id, name=item.name, price=item.price, quantity=in_cart + 1)
        return OperationResult.success(f"{item.name} adicionado ao carrinho")

    def remove_from_cart(self, player: Player, store_key: str, item_id: str) -> None:
        self._carts.get(self._cart_key(player, store_key), {}).pop(item_id, None)

    def clear_cart(self, player: Player, store_key: str) -> None:
        self._carts.pop(self._cart_key(player, store_key), None)

    def discard_carts(self, player: Player) -> None:
        for cart_key in [key for key in self._carts if key[0] == str(player.id)]:
            del self._carts[cart_key]

    def submit_order(self, player: Player, store_key: str, delivery: DeliveryType | str = DeliveryType.PICKUP) -> OperationResult:
        shop = get_store(store_key)
        if shop is None:
            return OperationResult.failure("not_found", "Loja desconhecida")
        view = self.cart(player, shop.key)
        if not view.lines:
            return OperationResult.failure("invalid", "Carrinho vazio")
        if player.wallet_balance < view.total:
            return OperationResult.failure(
                "insufficient_funds",
                f"Você tem {player.wallet_balance} CM, mas precisa de {view.total} CM para esta compra",
            )
        delivery_type = DeliveryType(delivery)
        items_json = lines_to_json(view.lines)
        try:
            if delivery_type == DeliveryType.MOTOBOY:
                row = self.store.insert(
                    MOTOBOY_ORDERS,
                    {
                        "order_id": str(uuid.uuid4()),
                        "store_id": shop.id,
                        "customer_username": player.username,
                        "items_json": items_json,
                        "total_amount": view.total,
                        "manager_status": ManagerStatus.PENDING.value,
                        "motoboy_status": MotoboyStatus.WAITING.value,
                    },
                )
                message = "Pedido enviado para o gerente! Aguarde a aprovação para envio ao motoboy"
            else:
                row = self.store.insert(
                    ORDERS,
                    {
                        "store_id": shop.id,
                        "user_id": player.id,
                        "buyer_username": player.username,
                        "items_json": items_json,
                        "total_amount": view.total,
                        "status": OrderStatus.PENDING.value,
                        "delivery_type": delivery_type.value,
                        "created_at": utc_now_iso(),
                    },
                )
                message = "Pedido enviado! Aguarde a aprovação do estabelecimento"
        except Exception:
            logger.exception("Order submission failed", extra={"user_id": player.id, "store_id": shop.id})
            return OperationResult.failure("remote_error", "Erro ao processar pedido")
        self.clear_cart(player, shop.key)
        kind = "motoboy" if delivery_type == DeliveryType.MOTOBOY else "order"
        self._publish(OrderStatusChanged(order_id=str(row.get("id")), status="pending", kind=kind))
        return OperationResult.success(message)

    def pending_orders(self, store_key: str) -> list[Order]:
        shop = get_store(store_key)
        if shop is None:
            return []
        rows = self.store.select(ORDERS, filters={"store_id": shop.id, "status": OrderStatus.PENDING.value}, order_by="created_at")
        return [Order.from_row(row) for row in rows]

    def motoboy_orders(self, *, store_key: Optional[str] = None, manager_status: Optional[ManagerStatus] = None) -> list[MotoboyOrder]:
        filters: dict[str, str] = {}
        if store_key is not None:
            shop = get_store(store_key)
            if shop is None:
                return []
            filters["store_id"] = shop.id
        if manager_status is not None:
            filters["manager_status"] = manager_status.value
        return [MotoboyOrder.from_row(row) for row in self.store.select(MOTOBOY_ORDERS, filters=filters, order_by="id")]

    def manager_handle_motoboy(self, motoboy_order_id: str, approve: bool, *, notes: str = "") -> OperationResult:
        """Approve (charging the buyer) or reject a delivery order.

        Rejecting also closes every other delivery row for the same order.
        """

        order = self._load_motoboy(motoboy_order_id)
        if order is None:
            return OperationResult.failure("not_found", "Pedido de entrega não encontrado")
        try:
            order.manager_decide(approve)
        except InvalidTransitionError as exc:
            return OperationResult.failure(exc.code, str(exc))

        if approve:
            charge = self.transfers.charge_delivery(order)
            if not charge.ok:
                return OperationResult.failure(charge.code, charge.message)

        now = utc_now_iso()
        changes = {
            "manager_status": order.manager_status.value,
            "motoboy_status": order.motoboy_status.value,
            "manager_notes": notes,
            "manager_processed_at": now,
        }
        try:
            self.store.update(MOTOBOY_ORDERS, changes, filters={"id": motoboy_order_id})
            if not approve and order.order_id:
                self.store.update(
                    MOTOBOY_ORDERS,
                    {
                        "manager_status": ManagerStatus.REJECTED.value,
                        "motoboy_status": MotoboyStatus.REJECTED.value,
                        "manager_processed_at": now,
                        "manager_notes": f"{notes} [duplicate closed]".strip(),
                    },
                    filters={"order_id": order.order_id, "id": Neq(motoboy_order_id)},
                )
        except Exception:
            logger.exception("Updating delivery order failed", extra={"order_id": motoboy_order_id})
            return OperationResult.failure("remote_error", "Não foi possível atualizar o pedido")
        self._publish(OrderStatusChanged(order_id=motoboy_order_id, status=order.manager_status.value, kind="motoboy"))
        return OperationResult.success("Pedido aprovado" if approve else "Pedido recusado")

    def motoboy_handle(self, motoboy_order_id: str, action: str) -> OperationResult:
        """Rider actions: ``accept``, ``reject`` or ``deliver``.

        Delivering grants the items to the customer, truncated at the cap.
        """

        targets = {
            "accept": MotoboyStatus.ACCEPTED,
            "reject": MotoboyStatus.REJECTED,
            "deliver": MotoboyStatus.DELIVERED,
            "complete": MotoboyStatus.DELIVERED,
        }
        target = targets.get(action)
        if target is None:
            return OperationResult.failure("invalid", f"Ação desconhecida: {action}")
        order = self._load_motoboy(motoboy_order_id)
        if order is None:
            return OperationResult.failure("not_found", "Pedido de entrega não encontrado")
        try:
            order.motoboy_move(target)
        except InvalidTransitionError as exc:
            return OperationResult.failure(exc.code, str(exc))

        changes: dict[str, str] = {"motoboy_status": target.value}
        if target == MotoboyStatus.DELIVERED:
            changes["delivered_at"] = utc_now_iso()
        else:
            changes["motoboy_accepted_at"] = utc_now_iso()
        try:
            self.store.update(MOTOBOY_ORDERS, changes, filters={"id": motoboy_order_id})
        except Exception:
            logger.exception("Updating delivery order failed", extra={"order_id": motoboy_order_id})
            return OperationResult.failure("remote_error", "Não foi possível atualizar o pedido")

        message = {"accept": "Entrega aceita", "reject": "Entrega recusada"}.get(action, "Pedido entregue")
        if target == MotoboyStatus.DELIVERED:
            skipped = self._deliver_items(order)
            if skipped:
                message += f" ({skipped} unidade(s) não couberam na bolsa)"
        self._publish(OrderStatusChanged(order_id=motoboy_order_id, status=target.value, kind="motoboy"))
        return OperationResult.success(message)

    def _deliver_items(self, order: MotoboyOrder) -> int:
        customer = find_player(self.store, order.customer_username)
        if customer is None:
            logger.warning("Delivery customer not found", extra={"order_id": order.id, "username": order.customer_username})
            return sum(line.quantity for line in order.lines)
        courier = Player(id=None, username=MOTOBOY_SENDER)
        skipped = 0
        for line in order.lines:
            result: GrantResult = self.inventory.grant(str(customer.id), line.item_id, line.quantity, sender=courier)
            skipped += result.truncated
        self._publish(InventoryChanged(user_id=str(customer.id), item_ids=[line.item_id for line in order.lines], reason="delivery"))
        return skipped

    def _load_motoboy(self, motoboy_order_id: str) -> Optional[MotoboyOrder]:
        row = self.store.select_one(MOTOBOY_ORDERS, filters={"id": motoboy_order_id})
        return MotoboyOrder.from_row(row) if row else None

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
