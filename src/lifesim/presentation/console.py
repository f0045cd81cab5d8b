"""Terminal front-end: a status dashboard plus a line-oriented command loop."""

from __future__ import annotations

import shlex
from typing import Callable, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from lifesim.application.dtos import OperationResult
from lifesim.application.services.balance_tables import HOSPITAL_TREATMENTS
from lifesim.application.services.inventory_service import share_options
from lifesim.bootstrap import LifeSimApp
from lifesim.domain.events import DiseaseContracted, DiseaseCured, TemporaryEffectAdded
from lifesim.domain.models.order import DeliveryType
from lifesim.domain.models.relationship import ProposalStatus
from lifesim.domain.services.store_catalog import STORES, get_store, store_for_manager


_TITLE_STYLE = "bold magenta"
_STAT_LABELS = {
    "health": "Vida",
    "hunger": "Fome",
    "mood": "Humor",
    "happiness": "Felicidade",
    "energy": "Energia",
    "disease": "Doença",
    "alcoholism": "Alcoolismo",
}

HELP_LINES = (
    ("login <usuário>", "entrar como jogador"),
    ("status", "painel com status, carteira e efeitos"),
    ("bolsa | recebidos", "itens na bolsa / itens recebidos"),
    ("usar <item>", "usar comida, bebida, objeto ou remédio"),
    ("info <item>", "detalhes e opções de compartilhamento"),
    ("pix <usuário> <valor>", "transferir dinheiro"),
    ("enviar <usuário> <item> [qtd]", "enviar item da bolsa"),
    ("extrato", "histórico da carteira"),
    ("lojas | loja <loja>", "catálogo"),
    ("add <loja> <item> | tirar <loja> <item>", "carrinho"),
    ("carrinho <loja> | comprar <loja> [pickup|motoboy]", "fechar pedido"),
    ("criar <food|drink|object> <nome>", "criar item personalizado"),
    ("pedidos | aprovar <id> | recusar <id>", "gerente: pedidos de retirada"),
    ("entregas | liberar <id> | barrar <id>", "gerente: pedidos de entrega"),
    ("pagar <usuário> <valor>", "gerente: pagar com o caixa da loja"),
    ("motoboy <id> <accept|reject|deliver>", "entregador"),
    ("propor <usuário> <tipo> <anel> | propostas", "relacionamentos"),
    ("aceitar <id> | rejeitar <id> | evoluir <anel> | terminar", "relacionamentos"),
    ("amigos | adicionar <usuário> | amizade <aceitar|recusar> <id>", "amizades"),
    ("presentear <amigo> <item> | laco <aceitar|recusar> <id> | desfazer <id>", "almas conectadas"),
    ("hospital | tratar <tratamento> | curar <doença>", "hospital"),
    ("fila | atender <id> | dispensar <id>", "equipe do hospital"),
    ("tick", "rodar tarefas periódicas agora"),
    ("sair", "encerrar"),
)


class ConsoleApp:
    def __init__(
        self,
        app: LifeSimApp,
        *,
        console: Console | None = None,
        input_func: Callable[[str], str] = input,
    ) -> None:
        self.app = app
        self.console = console or Console()
        self.input_func = input_func
        self._commands: dict[str, Callable[[list[str]], None]] = {
            "login": self._login,
            "logout": self._logout,
            "status": self._status,
            "bolsa": self._inventory,
            "recebidos": self._received,
            "usar": self._use,
            "info": self._info,
            "pix": self._send_money,
            "enviar": self._send_item,
            "extrato": self._history,
            "lojas": self._stores,
            "loja": self._store,
            "add": self._add_to_cart,
            "tirar": self._remove_from_cart,
            "carrinho": self._cart,
            "comprar": self._checkout,
            "criar": self._create_item,
            "pedidos": self._pending_orders,
            "aprovar": self._approve_order,
            "recusar": self._reject_order,
            "entregas": self._deliveries,
            "liberar": lambda args: self._handle_delivery(args, approve=True),
            "barrar": lambda args: self._handle_delivery(args, approve=False),
            "pagar": self._store_payout,
            "motoboy": self._motoboy,
            "propor": self._propose,
            "propostas": self._proposals,
            "aceitar": self._accept_proposal,
            "rejeitar": self._reject_proposal,
            "evoluir": self._upgrade,
            "terminar": self._end_relationship,
            "amigos": self._friends,
            "adicionar": self._add_friend,
            "amizade": self._answer_friend_request,
            "presentear": self._send_friendship_item,
            "laco": self._answer_friendship_item,
            "desfazer": self._remove_friendship,
            "hospital": self._hospital,
            "tratar": self._treat,
            "curar": self._cure,
            "fila": self._treatment_queue,
            "atender": lambda args: self._handle_treatment(args, accept=True),
            "dispensar": lambda args: self._handle_treatment(args, accept=False),
            "tick": self._tick,
            "ajuda": self._help,
            "help": self._help,
        }
        bus = app.event_bus
        bus.subscribe(TemporaryEffectAdded, lambda event: self._notify(event.message, "cyan"))
        bus.subscribe(DiseaseCured, lambda event: self._notify(f"Curado de {event.disease_name}!", "green"))
        bus.subscribe(DiseaseContracted, lambda event: self._notify(f"Você contraiu {event.disease_name}", "red"))

    def run(self) -> None:
        self.console.print(Panel.fit(f"[{_TITLE_STYLE}]LIFESIM[/{_TITLE_STYLE}]", subtitle=f"backend: {self.app.backend}"))
        for notice in self.app.notices:
            self.console.print(f"[yellow]{notice}[/yellow]")
        self.console.print("Digite 'ajuda' para ver os comandos.")
        while True:
            try:
                line = self.input_func("> ")
            except EOFError:
                break
            if not self.handle(line):
                break
        self._end_session()
        self.console.print("Até logo.")

    def handle(self, line: str) -> bool:
        """Run one command line; returns False when the loop should stop."""

        try:
            parts = shlex.split(line or "")
        except ValueError:
            parts = (line or "").split()
        if not parts:
            return True
        command, args = parts[0].lower(), parts[1:]
        if command in {"sair", "quit", "exit"}:
            return False
        handler = self._commands.get(command)
        if handler is None:
            self.console.print(f"[red]Comando desconhecido: {command}[/red]")
            return True
        if command not in {"login", "ajuda", "help", "lojas", "loja"} and not self.app.session.logged_in:
            self.console.print("[red]Entre primeiro com 'login <usuário>'[/red]")
            return True
        handler(args)
        self.app.scheduler.run_pending()
        return True

    @property
    def _player(self):
        return self.app.session.require_player()

    def _notify(self, message: str, color: str) -> None:
        self.console.print(f"[{color}]{escape(message)}[/{color}]")

    def _report(self, result: OperationResult) -> None:
        color = "green" if result.ok else "red"
        if result.message:
            self.console.print(f"[{color}]{escape(result.message)}[/{color}]")
        if result.ok:
            self.app.session.refresh()

    def _need(self, args: list[str], count: int, usage: str) -> bool:
        if len(args) < count:
            self.console.print(f"[yellow]Uso: {escape(usage)}[/yellow]")
            return False
        return True

    def _help(self, _args: list[str]) -> None:
        table = Table(show_header=False, box=None)
        table.add_column(style="bold")
        table.add_column()
        for command, description in HELP_LINES:
            table.add_row(escape(command), description)
        self.console.print(table)

    def _login(self, args: list[str]) -> None:
        if not self._need(args, 1, "login <usuário>"):
            return
        result = self.app.session.login(args[0])
        self._report(result)
        if result.ok:
            self._status([])

    def _end_session(self) -> None:
        if self.app.session.logged_in:
            self.app.orders.discard_carts(self._player)
        self.app.session.logout()

    def _logout(self, _args: list[str]) -> None:
        self._end_session()
        self.console.print("Sessão encerrada.")

    def _status(self, _args: list[str]) -> None:
        view = self.app.session.status()
        header = Table(show_header=False, box=None)
        header.add_column(style="bold magenta", justify="right")
        header.add_column(style="white")
        for stat, label in _STAT_LABELS.items():
            header.add_row(label, f"{view.stats.get(stat, 0)}%")
        header.add_row("Carteira", f"{view.wallet_balance} CM")
        header.add_row("Relacionamento", view.relationship_status)
        if view.diseases:
            header.add_row("Doenças", "\n".join(f"- {name}" for name in view.diseases))
        if view.effects:
            header.add_row("Efeitos", "\n".join(f"- {effect.message}" for effect in view.effects))
        subtitle = "dados em cache" if view.stale else None
        self.console.print(Panel(header, title=view.display_name, subtitle=subtitle, border_style="magenta"))

    def _inventory(self, _args: list[str]) -> None:
        view = self.app.inventory.load(self._player)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Item")
        table.add_column("Nome")
        table.add_column("Qtd", justify="right")
        table.add_column("Tipo")
        for item in view.items:
            table.add_row(item.item_id, f"{item.icon} {item.name}".strip(), str(item.quantity), item.category or item.item_type)
        title = "Bolsa (offline)" if view.stale else "Bolsa"
        self.console.print(Panel(table, title=title))

    def _received(self, _args: list[str]) -> None:
        view = self.app.inventory.load(self._player)
        if not view.received:
            self.console.print("Nenhum item recebido.")
            return
        names = self.app.session.display_names(item.sent_by_username for item in view.received if item.sent_by_username)
        for item in view.received:
            sender = names.get(item.sent_by_username or "", item.sent_by_username or "?")
            self.console.print(f"- {item.name} x{item.quantity} de {sender}")

    def _use(self, args: list[str]) -> None:
        if not self._need(args, 1, "usar <item>"):
            return
        result = self.app.inventory.use_item(self._player, args[0])
        self._report(result)
        for message in result.messages:
            self.console.print(f"  {message}")

    def _info(self, args: list[str]) -> None:
        if not self._need(args, 1, "info <item>"):
            return
        item = self.app.inventory.find_item(self._player, args[0])
        if item is None:
            self.console.print("[red]Item não está na bolsa[/red]")
            return
        lines = [item.description or "-", f"Quantidade: {item.quantity}"]
        for effect in item.effects:
            lines.append(f"Efeito: {effect.type} {effect.value:+d}")
        if item.cures:
            lines.append(f"Cura: {item.cures}")
        options = share_options(item.effects[0] if item.effects else None)
        if options:
            lines.append("Compartilhar: " + ", ".join(f"{option.percent}% ({option.value})" for option in options))
        self.console.print(Panel("\n".join(lines), title=f"{item.icon} {item.name}".strip()))

    def _send_money(self, args: list[str]) -> None:
        if not self._need(args, 2, "pix <usuário> <valor>"):
            return
        self._report(self.app.transfers.transfer_money(self._player, args[0], args[1]))

    def _send_item(self, args: list[str]) -> None:
        if not self._need(args, 2, "enviar <usuário> <item> [qtd]"):
            return
        quantity = args[2] if len(args) > 2 else 1
        self._report(self.app.transfers.transfer_item(self._player, args[0], args[1], quantity))

    def _history(self, _args: list[str]) -> None:
        entries = self.app.session.list_transactions()
        if not entries:
            self.console.print("Nenhuma transação.")
            return
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Quando")
        table.add_column("Tipo")
        table.add_column("Com")
        table.add_column("Valor", justify="right")
        for entry in entries:
            sign = "-" if entry.direction == "sent" else "+"
            table.add_row((entry.created_at or "")[:16], entry.transaction_type, entry.counterparty, f"{sign}{entry.amount}")
        self.console.print(table)

    def _stores(self, _args: list[str]) -> None:
        for key, shop in STORES.items():
            self.console.print(f"- {key}: {shop.name}")

    def _store(self, args: list[str]) -> None:
        if not self._need(args, 1, "loja <loja>"):
            return
        shop = get_store(args[0])
        if shop is None:
            self.console.print("[red]Loja desconhecida[/red]")
            return
        table = Table(show_header=True, header_style="bold magenta", title=shop.name)
        table.add_column("Item")
        table.add_column("Nome")
        table.add_column("Preço", justify="right")
        for item in shop.items:
            table.add_row(item.id, f"{item.icon} {item.name}".strip(), str(item.price))
        self.console.print(table)

    def _add_to_cart(self, args: list[str]) -> None:
        if not self._need(args, 2, "add <loja> <item>"):
            return
        self._report(self.app.orders.add_to_cart(self._player, args[0], args[1]))

    def _remove_from_cart(self, args: list[str]) -> None:
        if not self._need(args, 2, "tirar <loja> <item>"):
            return
        self.app.orders.remove_from_cart(self._player, args[0], args[1])
        self._cart(args[:1])

    def _cart(self, args: list[str]) -> None:
        if not self._need(args, 1, "carrinho <loja>"):
            return
        view = self.app.orders.cart(self._player, args[0])
        for line in view.lines:
            self.console.print(f"- {line.name} x{line.quantity} = {line.subtotal} CM")
        self.console.print(f"Total: {view.total} CM")

    def _checkout(self, args: list[str]) -> None:
        if not self._need(args, 1, "comprar <loja> [pickup|motoboy]"):
            return
        delivery = args[1].lower() if len(args) > 1 else DeliveryType.PICKUP.value
        if delivery not in {kind.value for kind in DeliveryType}:
            self.console.print("[red]Entrega deve ser pickup ou motoboy[/red]")
            return
        self._report(self.app.orders.submit_order(self._player, args[0], delivery))

    def _create_item(self, args: list[str]) -> None:
        if not self._need(args, 2, "criar <food|drink|object> <nome>"):
            return
        self._report(self.app.inventory.create_custom_item(self._player, " ".join(args[1:]), args[0]))

    def _managed_store(self):
        shop = store_for_manager(self._player.username)
        if shop is None:
            self.console.print("[red]Apenas gerentes de loja[/red]")
        return shop

    def _pending_orders(self, _args: list[str]) -> None:
        shop = self._managed_store()
        if shop is None:
            return
        orders = self.app.orders.pending_orders(shop.key)
        if not orders:
            self.console.print("Nenhum pedido pendente.")
        for order in orders:
            items = ", ".join(f"{line.name} x{line.quantity}" for line in order.lines)
            self.console.print(f"#{order.id} {order.buyer_username}: {items} ({order.total} CM)")

    def _approve_order(self, args: list[str]) -> None:
        if self._managed_store() is None or not self._need(args, 1, "aprovar <id>"):
            return
        self._report(self.app.transfers.approve_order(args[0]))

    def _reject_order(self, args: list[str]) -> None:
        if self._managed_store() is None or not self._need(args, 1, "recusar <id>"):
            return
        self._report(self.app.transfers.reject_order(args[0]))

    def _deliveries(self, _args: list[str]) -> None:
        shop = store_for_manager(self._player.username)
        orders = self.app.orders.motoboy_orders(store_key=shop.key if shop else None)
        if not orders:
            self.console.print("Nenhuma entrega.")
        for order in orders:
            self.console.print(
                f"#{order.id} {order.customer_username} ({order.total} CM) "
                f"gerente={order.manager_status.value} motoboy={order.motoboy_status.value}"
            )

    def _handle_delivery(self, args: list[str], *, approve: bool) -> None:
        if self._managed_store() is None or not self._need(args, 1, "liberar|barrar <id> [nota]"):
            return
        notes = " ".join(args[1:])
        self._report(self.app.orders.manager_handle_motoboy(args[0], approve, notes=notes))

    def _store_payout(self, args: list[str]) -> None:
        shop = self._managed_store()
        if shop is None or not self._need(args, 2, "pagar <usuário> <valor>"):
            return
        self._report(self.app.transfers.store_transfer(shop.id, args[0], args[1]))

    def _motoboy(self, args: list[str]) -> None:
        if not self._need(args, 2, "motoboy <id> <accept|reject|deliver>"):
            return
        self._report(self.app.orders.motoboy_handle(args[0], args[1].lower()))

    def _propose(self, args: list[str]) -> None:
        if not self._need(args, 3, "propor <usuário> <namoro|noivado|casamento|amizade> <anel>"):
            return
        self._report(self.app.relationships.send_proposal(self._player, args[0], args[1], args[2]))

    def _proposals(self, _args: list[str]) -> None:
        proposals = self.app.relationships.pending_for(self._player)
        if not proposals:
            self.console.print("Nenhuma proposta pendente.")
        names = self.app.session.display_names(proposal.from_username for proposal in proposals)
        for proposal in proposals:
            self.console.print(f"#{proposal.id} {names.get(proposal.from_username)}: {proposal.relationship_type.value}")
        current = self.app.relationships.current(self._player)
        if current is not None:
            _partner_id, partner = current.partner_of(str(self._player.id))
            self.console.print(f"Relacionamento atual: {current.relationship_type.value} com {self.app.session.display_name(partner)}")

    def _accept_proposal(self, args: list[str]) -> None:
        if self._need(args, 1, "aceitar <id>"):
            self._report(self.app.relationships.accept(self._player, args[0]))

    def _reject_proposal(self, args: list[str]) -> None:
        if self._need(args, 1, "rejeitar <id>"):
            self._report(self.app.relationships.reject(self._player, args[0]))

    def _upgrade(self, args: list[str]) -> None:
        if self._need(args, 1, "evoluir <anel>"):
            self._report(self.app.relationships.upgrade(self._player, args[0]))

    def _end_relationship(self, _args: list[str]) -> None:
        self._report(self.app.relationships.end(self._player))

    def _friends(self, _args: list[str]) -> None:
        friendships = self.app.friendships
        player = self._player
        friends = friendships.friends(player)
        self.console.print("Amigos: " + (", ".join(friend.display_name for friend in friends) if friends else "nenhum"))
        for request in friendships.incoming_requests(player):
            self.console.print(f"  pedido #{request.id} de {self.app.session.display_name(request.requester_username)}")
        user_id = str(player.id)
        for item in friendships.item_requests(player):
            if item.to_user_id == user_id and item.status == ProposalStatus.PENDING:
                self.console.print(f"  item #{item.id} {item.item_name} de {self.app.session.display_name(item.from_username)}")
        for soul in friendships.connected_souls(player):
            _partner_id, partner = soul.partner_of(user_id)
            self.console.print(f"  alma conectada #{soul.id}: {self.app.session.display_name(partner)} ({soul.item_name})")

    def _add_friend(self, args: list[str]) -> None:
        if self._need(args, 1, "adicionar <usuário>"):
            self._report(self.app.friendships.send_request(self._player, args[0]))

    def _answer_friend_request(self, args: list[str]) -> None:
        if not self._need(args, 2, "amizade <aceitar|recusar> <id>"):
            return
        if args[0] == "aceitar":
            self._report(self.app.friendships.accept_request(self._player, args[1]))
        else:
            self._report(self.app.friendships.reject_request(self._player, args[1]))

    def _send_friendship_item(self, args: list[str]) -> None:
        if self._need(args, 2, "presentear <amigo> <item>"):
            self._report(self.app.friendships.send_item(self._player, args[0], args[1]))

    def _answer_friendship_item(self, args: list[str]) -> None:
        if not self._need(args, 2, "laco <aceitar|recusar> <id>"):
            return
        if args[0] == "aceitar":
            self._report(self.app.friendships.accept_item(self._player, args[1]))
        else:
            self._report(self.app.friendships.reject_item(self._player, args[1]))

    def _remove_friendship(self, args: list[str]) -> None:
        if self._need(args, 1, "desfazer <id>"):
            self._report(self.app.friendships.remove_friendship(self._player, args[0]))

    def _hospital(self, _args: list[str]) -> None:
        for name, (cost, gain) in HOSPITAL_TREATMENTS.items():
            self.console.print(f"- {name}: {cost} CM, +{gain} de vida")
        for request in self.app.hospital.requests_for(self._player):
            self.console.print(f"  #{request.id} {request.treatment_type}: {request.status.value}")

    def _treat(self, args: list[str]) -> None:
        if self._need(args, 1, "tratar <tratamento>"):
            self._report(self.app.hospital.request_treatment(self._player, " ".join(args)))

    def _cure(self, args: list[str]) -> None:
        if self._need(args, 1, "curar <doença>"):
            self._report(self.app.hospital.request_cure(self._player, " ".join(args)))

    def _treatment_queue(self, _args: list[str]) -> None:
        requests = self.app.hospital.pending_requests()
        if not requests:
            self.console.print("Fila vazia.")
        for request in requests:
            self.console.print(f"#{request.id} {request.username}: {request.treatment_type} ({request.treatment_cost} CM)")

    def _handle_treatment(self, args: list[str], *, accept: bool) -> None:
        if not self._need(args, 1, "atender|dispensar <id> [nota]"):
            return
        notes = " ".join(args[1:])
        if accept:
            self._report(self.app.hospital.accept(args[0], notes=notes))
        else:
            self._report(self.app.hospital.reject(args[0], notes=notes))

    def _tick(self, _args: list[str]) -> None:
        ran = self.app.scheduler.run_all()
        self.console.print("Tarefas: " + (", ".join(ran) if ran else "nenhuma"))


def run_console(app: LifeSimApp, *, console: Optional[Console] = None) -> None:
    ConsoleApp(app, console=console).run()
