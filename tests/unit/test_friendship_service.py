import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.store_records import (
    CONNECTED_SOULS,
    FRIEND_REQUESTS,
    FRIENDSHIP_ITEMS,
    find_player,
    owned_quantity,
)
from lifesim.bootstrap import build_app
from lifesim.domain.events import FriendshipChanged
from lifesim.domain.models.relationship import ProposalStatus
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.local_cache import MemoryKeyValueCache
from lifesim.infrastructure.seed_data import seed_demo_data
from lifesim.infrastructure.server_functions import register_server_functions

BRACELET = "pulseira_amizade"


def _app():
    store = InMemoryRemoteStore()
    register_server_functions(store)
    seed_demo_data(store)
    return build_app(store, MemoryKeyValueCache(), atomic=True)


def _player(app, username: str):
    return find_player(app.store, username)


def _befriend(app, requester: str = "Aurora4821", addressee: str = "Bento3307") -> None:
    assert app.friendships.send_request(_player(app, requester), addressee).ok
    receiver = _player(app, addressee)
    request = app.friendships.incoming_requests(receiver)[0]
    assert app.friendships.accept_request(receiver, request.id).ok


class FriendRequestTests(unittest.TestCase):
    def test_request_waits_for_the_addressee(self) -> None:
        app = _app()
        aurora = _player(app, "Aurora4821")
        bento = _player(app, "Bento3307")

        result = app.friendships.send_request(aurora, "Bento3307")

        self.assertTrue(result.ok)
        self.assertEqual("Pedido de amizade enviado para Bentinho", result.message)
        incoming = app.friendships.incoming_requests(bento)
        self.assertEqual(["Aurora4821"], [request.requester_username for request in incoming])
        self.assertTrue(app.friendships.has_pending_request(bento, aurora))
        self.assertFalse(app.friendships.are_friends(aurora, bento))

    def test_duplicate_requests_are_refused_in_both_directions(self) -> None:
        app = _app()
        app.friendships.send_request(_player(app, "Aurora4821"), "Bento3307")

        again = app.friendships.send_request(_player(app, "Aurora4821"), "Bento3307")
        reverse = app.friendships.send_request(_player(app, "Bento3307"), "Aurora4821")

        self.assertEqual("duplicate", again.code)
        self.assertEqual("duplicate", reverse.code)
        self.assertEqual(1, len(app.store.select(FRIEND_REQUESTS)))

    def test_self_and_unknown_users(self) -> None:
        app = _app()
        aurora = _player(app, "Aurora4821")

        self.assertEqual("invalid", app.friendships.send_request(aurora, "Aurora4821").code)
        self.assertEqual("not_found", app.friendships.send_request(aurora, "Fantasma0000").code)

    def test_accepting_makes_both_sides_friends(self) -> None:
        app = _app()
        events: list[FriendshipChanged] = []
        app.event_bus.subscribe(FriendshipChanged, events.append)

        _befriend(app)

        aurora = _player(app, "Aurora4821")
        bento = _player(app, "Bento3307")
        self.assertTrue(app.friendships.are_friends(bento, aurora))
        self.assertEqual(["Bento3307"], [friend.username for friend in app.friendships.friends(aurora)])
        self.assertEqual(["Aurora4821"], [friend.username for friend in app.friendships.friends(bento)])
        self.assertEqual([], app.friendships.incoming_requests(bento))
        self.assertEqual({str(aurora.id), str(bento.id)}, {event.user_id for event in events})
        self.assertEqual("duplicate", app.friendships.send_request(aurora, "Bento3307").code)

    def test_only_the_addressee_decides(self) -> None:
        app = _app()
        app.friendships.send_request(_player(app, "Aurora4821"), "Bento3307")
        request_id = app.store.select(FRIEND_REQUESTS)[0]["id"]

        result = app.friendships.accept_request(_player(app, "Clara1950"), request_id)

        self.assertEqual("forbidden", result.code)
        self.assertEqual("pending", app.store.select_one(FRIEND_REQUESTS, filters={"id": request_id})["status"])

    def test_rejected_request_cannot_be_accepted_later(self) -> None:
        app = _app()
        app.friendships.send_request(_player(app, "Aurora4821"), "Bento3307")
        bento = _player(app, "Bento3307")
        request_id = app.friendships.incoming_requests(bento)[0].id

        self.assertTrue(app.friendships.reject_request(bento, request_id).ok)

        self.assertEqual("invalid_transition", app.friendships.accept_request(bento, request_id).code)
        self.assertEqual("not_found", app.friendships.accept_request(bento, "999").code)
        self.assertFalse(app.friendships.are_friends(bento, _player(app, "Aurora4821")))


class FriendshipItemTests(unittest.TestCase):
    def _with_bracelet(self, app, username: str = "Aurora4821") -> None:
        app.inventory.grant(str(_player(app, username).id), BRACELET, 1)

    def test_item_goes_only_to_friends(self) -> None:
        app = _app()
        self._with_bracelet(app)

        result = app.friendships.send_item(_player(app, "Aurora4821"), "Bento3307", BRACELET)

        self.assertEqual("invalid", result.code)
        self.assertEqual(1, owned_quantity(app.store, str(_player(app, "Aurora4821").id), BRACELET))
        self.assertEqual([], app.store.select(FRIENDSHIP_ITEMS))

    def test_only_friendship_items_can_be_sent(self) -> None:
        app = _app()
        _befriend(app)

        result = app.friendships.send_item(_player(app, "Aurora4821"), "Bento3307", "bibimbap")

        self.assertEqual("invalid", result.code)
        self.assertEqual("not_found", app.friendships.send_item(_player(app, "Clara1950"), "Bento3307", BRACELET).code)

    def test_sending_consumes_the_item_and_waits(self) -> None:
        app = _app()
        _befriend(app)
        self._with_bracelet(app)
        aurora = _player(app, "Aurora4821")

        result = app.friendships.send_item(aurora, "Bento3307", BRACELET)

        self.assertTrue(result.ok)
        self.assertEqual(0, owned_quantity(app.store, str(aurora.id), BRACELET))
        pending = app.friendships.item_requests(_player(app, "Bento3307"))
        self.assertEqual(1, len(pending))
        self.assertEqual(ProposalStatus.PENDING, pending[0].status)
        self.assertEqual("Pulseira da Amizade Eterna", pending[0].item_name)
        self.assertEqual(BRACELET, pending[0].item_data["id"])

    def test_accepting_connects_the_souls(self) -> None:
        app = _app()
        _befriend(app)
        self._with_bracelet(app)
        app.friendships.send_item(_player(app, "Aurora4821"), "Bento3307", BRACELET)
        bento = _player(app, "Bento3307")
        request = app.friendships.item_requests(bento)[0]

        result = app.friendships.accept_item(bento, request.id)

        self.assertTrue(result.ok)
        self.assertEqual("Você e Aurora agora são almas conectadas!", result.message)
        row = app.store.select_one(FRIENDSHIP_ITEMS, filters={"id": request.id})
        self.assertEqual("accepted", row["status"])
        self.assertIsNotNone(row["processed_at"])
        for username in ("Aurora4821", "Bento3307"):
            souls = app.friendships.connected_souls(_player(app, username))
            self.assertEqual(["Pulseira da Amizade Eterna"], [soul.item_name for soul in souls])
        self.assertEqual("invalid_transition", app.friendships.reject_item(bento, request.id).code)

    def test_rejecting_creates_no_soul(self) -> None:
        app = _app()
        _befriend(app)
        self._with_bracelet(app)
        app.friendships.send_item(_player(app, "Aurora4821"), "Bento3307", BRACELET)
        bento = _player(app, "Bento3307")
        request = app.friendships.item_requests(bento)[0]

        self.assertEqual("forbidden", app.friendships.accept_item(_player(app, "Aurora4821"), request.id).code)
        self.assertTrue(app.friendships.reject_item(bento, request.id).ok)

        self.assertEqual([], app.store.select(CONNECTED_SOULS))
        self.assertEqual(ProposalStatus.REJECTED, app.friendships.item_requests(bento)[0].status)


class ConnectedSoulTests(unittest.TestCase):
    def _connected(self, app) -> str:
        _befriend(app)
        app.inventory.grant(str(_player(app, "Aurora4821").id), BRACELET, 1)
        app.friendships.send_item(_player(app, "Aurora4821"), "Bento3307", BRACELET)
        bento = _player(app, "Bento3307")
        app.friendships.accept_item(bento, app.friendships.item_requests(bento)[0].id)
        return app.store.select(CONNECTED_SOULS)[0]["id"]

    def test_either_partner_can_remove_the_friendship(self) -> None:
        app = _app()
        soul_id = self._connected(app)
        events: list[FriendshipChanged] = []
        app.event_bus.subscribe(FriendshipChanged, events.append)

        result = app.friendships.remove_friendship(_player(app, "Bento3307"), soul_id)

        self.assertTrue(result.ok)
        self.assertEqual([], app.store.select(CONNECTED_SOULS))
        self.assertEqual(["disconnected", "disconnected"], [event.action for event in events])
        self.assertTrue(app.friendships.are_friends(_player(app, "Aurora4821"), _player(app, "Bento3307")))

    def test_outsiders_cannot_remove_it(self) -> None:
        app = _app()
        soul_id = self._connected(app)

        self.assertEqual("forbidden", app.friendships.remove_friendship(_player(app, "Clara1950"), soul_id).code)
        self.assertEqual("not_found", app.friendships.remove_friendship(_player(app, "Clara1950"), "999").code)
        self.assertEqual(1, len(app.store.select(CONNECTED_SOULS)))


if __name__ == "__main__":
    unittest.main()
