"""Hub message handling with fake sockets; no real network."""

import asyncio
import json

import websockets
from conftest import InMemoryLotStore

from petalbid.auction_hub import NOT_CONNECTED, AuctionHub, Connection, HubClient, encode, token_from_path
from petalbid.models import Product


class FakeSocket:
    def __init__(self, closed=False):
        self.sent = []
        self.closed = closed
        self.remote_address = ("127.0.0.1", 50000)

    async def send(self, payload):
        if self.closed:
            raise websockets.exceptions.ConnectionClosedOK(None, None)
        self.sent.append(json.loads(payload))

    def events(self):
        return [m["event"] for m in self.sent]

    def last(self, event):
        for m in reversed(self.sent):
            if m["event"] == event:
                return m["data"]
        return None


def lots():
    return [
        Product(id=21, name="Chrysant", species="Chrysanthemum", stock=50, minimum_price=0.3, max_price_per_unit=0.8, auction_id=3),
        Product(id=22, name="Gerbera", species="Gerbera", stock=20, minimum_price=0.4, auction_id=3),
    ]


class TestHelpers:
    def test_encode(self):
        assert json.loads(encode("PriceUpdate", 1.5)) == {"event": "PriceUpdate", "data": 1.5}

    def test_token_from_path(self):
        assert token_from_path("/auctionHub?access_token=abc.def") == "abc.def"
        assert token_from_path("/auctionHub") is None
        assert token_from_path(None) is None


class TestAuctionHub:
    def setup_method(self):
        self.synced = []

    def make_hub(self, users, store=None):
        def authenticate(user_id, token):
            return users.get(user_id) if token == "tok" else None

        def fetch_lots(auction_id, token):
            self.synced.append((auction_id, token))
            return lots()

        return AuctionHub(store or InMemoryLotStore(), authenticate=authenticate, fetch_lots=fetch_lots,
                          tick_rate_ms=60_000, grace_period_ms=60_000)

    def connect(self, token="tok"):
        sock = FakeSocket()
        return Connection(sock, token), sock

    def test_malformed_and_unknown_messages(self, buyer):
        async def scenario():
            hub = self.make_hub({buyer.id: buyer})
            conn, sock = self.connect()
            await hub.dispatch(conn, "{not json")
            await hub.dispatch(conn, json.dumps([1, 2]))
            await hub.dispatch(conn, json.dumps({"type": "Dance"}))
            return sock

        sock = asyncio.run(scenario())
        assert sock.events() == ["Error", "Error", "Error"]
        assert sock.sent[0]["data"] == "Ongeldig bericht."
        assert sock.sent[2]["data"] == "Onbekend berichttype: Dance"

    def test_identify(self, buyer):
        async def scenario():
            hub = self.make_hub({buyer.id: buyer})
            good, good_sock = self.connect()
            bad, bad_sock = self.connect(token="forged")
            await hub.dispatch(good, json.dumps({"type": "Identify", "userId": buyer.id}))
            await hub.dispatch(bad, json.dumps({"type": "Identify", "userId": buyer.id}))
            return good, good_sock, bad, bad_sock

        good, good_sock, bad, bad_sock = asyncio.run(scenario())
        assert good.user == buyer
        assert good_sock.last("Identified")["fullName"] == buyer.full_name
        assert bad.user is None
        assert bad_sock.last("Error") == "Niet geautoriseerd."

    def test_bid_requires_identified_buyer(self, auctioneer):
        async def scenario():
            hub = self.make_hub({})
            anonymous, anon_sock = self.connect()
            await hub.dispatch(anonymous, json.dumps({"type": "PlaceBid", "auctionId": 3, "quantity": 5}))
            meester, meester_sock = self.connect()
            meester.user = auctioneer
            await hub.dispatch(meester, json.dumps({"type": "PlaceBid", "auctionId": 3, "quantity": 5}))
            return anon_sock, meester_sock

        anon_sock, meester_sock = asyncio.run(scenario())
        assert anon_sock.last("BidRejected") == "Alleen kopers kunnen bieden."
        assert meester_sock.last("BidRejected") == "Alleen kopers kunnen bieden."

    def test_only_auctioneers_control_the_clock(self, buyer):
        async def scenario():
            hub = self.make_hub({})
            conn, sock = self.connect()
            conn.user = buyer
            await hub.dispatch(conn, json.dumps({"type": "StartAuction", "auctionId": 3}))
            return hub, sock

        hub, sock = asyncio.run(scenario())
        assert sock.last("Error") == "Alleen veilingmeesters kunnen de klok bedienen."
        assert hub.clock.get_state(3) is None
        assert self.synced == []

    def test_full_round(self, buyer, auctioneer):
        async def scenario():
            store = InMemoryLotStore()
            hub = self.make_hub({}, store)
            meester, meester_sock = self.connect()
            meester.user = auctioneer
            koper, koper_sock = self.connect()
            koper.user = buyer

            await hub.dispatch(meester, json.dumps({"type": "JoinAuctionGroup", "auctionId": 3}))
            await hub.dispatch(meester, json.dumps({"type": "StartAuction", "auctionId": 3}))
            await hub.dispatch(koper, json.dumps({"type": "JoinAuctionGroup", "auctionId": 3}))
            await hub.dispatch(koper, json.dumps({"type": "PlaceBid", "auctionId": 3, "quantity": 10}))
            await hub.dispatch(koper, json.dumps({"type": "PlaceBid", "auctionId": 3, "quantity": 999}))
            await hub.dispatch(meester, json.dumps({"type": "NextLot", "auctionId": 3}))
            await hub.dispatch(meester, json.dumps({"type": "EndAuction", "auctionId": 3}))
            hub.clock.shutdown()
            return store, meester_sock, koper_sock

        store, meester_sock, koper_sock = asyncio.run(scenario())
        assert self.synced == [(3, "tok")]
        assert set(store.lots) == {21, 22}

        # joining a running auction hands over the current state
        assert koper_sock.events()[0] == "AuctionState"
        assert koper_sock.sent[0]["data"]["currentPrice"] == 0.8

        assert meester_sock.last("LotSold")["buyerName"] == buyer.full_name
        assert koper_sock.last("BidRejected") == "Niet genoeg voorraad."
        assert "BidRejected" not in meester_sock.events()
        assert meester_sock.last("NextLot")["id"] == 22
        assert koper_sock.events()[-1] == "AuctionEnded"

    def test_invalid_auction_id(self, buyer):
        async def scenario():
            hub = self.make_hub({})
            conn, sock = self.connect()
            await hub.dispatch(conn, json.dumps({"type": "JoinAuctionGroup", "auctionId": "abc"}))
            return hub, sock

        hub, sock = asyncio.run(scenario())
        assert sock.last("Error") == "Ongeldige veiling."
        assert not hub.groups

    def test_leave_and_prune(self):
        async def scenario():
            hub = self.make_hub({})
            staying, staying_sock = self.connect()
            leaving, _ = self.connect()
            dead = Connection(FakeSocket(closed=True), "tok")
            for conn in (staying, leaving, dead):
                await hub.dispatch(conn, json.dumps({"type": "JoinAuctionGroup", "auctionId": 3}))
            await hub.dispatch(leaving, json.dumps({"type": "LeaveAuctionGroup", "auctionId": 3}))
            await hub.broadcast("auction-3", "PriceUpdate", 0.75)
            return hub, staying, leaving, dead, staying_sock

        hub, staying, leaving, dead, staying_sock = asyncio.run(scenario())
        assert hub.groups["auction-3"] == {staying}
        assert not leaving.groups
        assert not dead.groups
        assert staying_sock.last("PriceUpdate") == 0.75

    def test_drop_removes_empty_groups(self):
        async def scenario():
            hub = self.make_hub({})
            conn, _ = self.connect()
            await hub.dispatch(conn, json.dumps({"type": "JoinAuctionGroup", "auctionId": 5}))
            hub.drop(conn)
            return hub

        hub = asyncio.run(scenario())
        assert "auction-5" not in hub.groups


class TestHubClient:
    def test_send_requires_connection(self):
        client = HubClient(url="ws://hub.test/auctionHub")
        assert client.place_bid(3, 10) == (False, NOT_CONNECTED)
        assert client.join(3) == (False, NOT_CONNECTED)

    def test_drain_empties_queue(self):
        client = HubClient(url="ws://hub.test/auctionHub")
        client.message_queue.put(("PriceUpdate", 0.9))
        client.message_queue.put(("MinimumPriceReached", None))
        assert client.drain() == [("PriceUpdate", 0.9), ("MinimumPriceReached", None)]
        assert client.drain() == []

    def test_connect_failure_is_reported(self):
        client = HubClient(url="ws://127.0.0.1:9/auctionHub")
        ok, error = client.connect("tok", 7)
        assert ok is False
        assert error
        assert not client.connected
