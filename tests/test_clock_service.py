"""Authoritative hub clock, driven with asyncio.run and a recording broadcaster."""

import asyncio
import threading

import pytest
from conftest import InMemoryLotStore, Recorder

from petalbid import PetalBidError
from petalbid.clock_service import AuctionClockService, group_name
from petalbid.models import Product

AUCTION = 7
GROUP = "auction-7"


def lots():
    return [
        Product(id=1, name="Uitverkocht", stock=0, minimum_price=0.5, auction_id=AUCTION),
        Product(id=2, name="Roos", species="Rosa", stock=100, minimum_price=0.5, max_price_per_unit=1.0, auction_id=AUCTION),
        Product(id=3, name="Tulp", species="Tulipa", stock=40, minimum_price=0.2, auction_id=AUCTION),
        Product(id=9, name="Andere veiling", stock=10, minimum_price=0.2, auction_id=99),
    ]


def make_service(store=None, recorder=None, **kw):
    kw.setdefault("tick_rate_ms", 60_000)
    kw.setdefault("grace_period_ms", 60_000)
    return AuctionClockService(store or InMemoryLotStore(lots()), recorder or Recorder(), **kw)


def run(scenario):
    """Run ``scenario(service, store, recorder)`` on a fresh event loop."""
    store = InMemoryLotStore(lots())
    recorder = Recorder()

    async def main():
        service = make_service(store, recorder)
        try:
            return await scenario(service, store, recorder)
        finally:
            service.shutdown()

    return asyncio.run(main())


class TestStartStop:
    def test_group_name(self):
        assert group_name(12) == "auction-12"

    def test_invalid_settings_are_refused(self):
        with pytest.raises(PetalBidError):
            make_service(price_step=0)
        with pytest.raises(PetalBidError):
            make_service(tick_rate_ms=0)

    def test_start_loads_first_lot_with_stock(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            state = service.get_state(AUCTION)
            assert state.current_product.id == 2
            assert state.current_price == 1.0
            assert state.is_running
            assert service.has_timer(AUCTION)
            group, event, data = recorder.events[-1]
            assert (group, event) == (GROUP, "AuctionState")
            assert data["currentProduct"]["name"] == "Roos"
            assert data["isRunning"] is True

        run(scenario)

    def test_lot_without_max_price_uses_default(self):
        async def scenario(service, store, recorder):
            store.lots[2].stock = 0
            await service.start_auction(AUCTION)
            state = service.get_state(AUCTION)
            assert state.current_product.id == 3
            assert state.current_price == 2.0

        run(scenario)

    def test_start_without_lots(self):
        async def scenario(service, store, recorder):
            await service.start_auction(55)
            state = service.get_state(55)
            assert state.current_product is None
            assert not state.is_running
            assert not service.has_timer(55)
            assert recorder.names() == ["AuctionState"]

        run(scenario)

    def test_pause_and_resume_keep_price(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.tick(AUCTION)
            await service.pause_auction(AUCTION)
            state = service.get_state(AUCTION)
            assert state.is_paused and not state.is_running
            assert not service.has_timer(AUCTION)

            await service.start_auction(AUCTION)
            assert state.is_running
            assert state.current_price == 0.99
            assert state.current_product.id == 2
            assert service.has_timer(AUCTION)

        run(scenario)

    def test_start_on_running_auction_is_a_noop(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            recorder.clear()
            await service.start_auction(AUCTION)
            assert recorder.events == []

        run(scenario)

    def test_stop_drops_state(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.stop_auction(AUCTION)
            assert service.get_state(AUCTION) is None
            assert not service.has_timer(AUCTION)
            assert recorder.events[-1] == (GROUP, "AuctionEnded", None)

        run(scenario)

    def test_stop_unknown_auction_broadcasts_nothing(self):
        async def scenario(service, store, recorder):
            await service.stop_auction(123)
            assert recorder.events == []

        run(scenario)


class TestTick:
    def test_tick_lowers_price(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.tick(AUCTION)
            await service.tick(AUCTION)
            assert service.get_state(AUCTION).current_price == 0.98
            assert recorder.events[-1] == (GROUP, "PriceUpdate", 0.98)

        run(scenario)

    def test_tick_below_minimum_pauses_at_minimum(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            state = service.get_state(AUCTION)
            state.current_price = 0.5
            recorder.clear()

            await service.tick(AUCTION)
            assert state.current_price == 0.5
            assert state.is_paused and not state.is_running
            assert not service.has_timer(AUCTION)
            assert recorder.names() == ["AuctionState", "PriceUpdate", "MinimumPriceReached"]

        run(scenario)

    def test_tick_while_paused_does_nothing(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.pause_auction(AUCTION)
            recorder.clear()
            await service.tick(AUCTION)
            assert recorder.events == []

        run(scenario)

    def test_timer_ticks_on_its_own(self):
        async def main():
            recorder = Recorder()
            service = make_service(recorder=recorder, tick_rate_ms=10)
            await service.start_auction(AUCTION)
            await asyncio.sleep(0.2)
            price = service.get_state(AUCTION).current_price
            service.shutdown()
            return price, recorder

        price, recorder = asyncio.run(main())
        assert price < 1.0
        assert "PriceUpdate" in recorder.names()


class TestBids:
    def test_rejections(self):
        async def scenario(service, store, recorder):
            result = await service.process_bid(AUCTION, 7, "Bea", 10)
            assert (result.success, result.message) == (False, "Veiling niet actief.")

            await service.start_auction(AUCTION)
            result = await service.process_bid(AUCTION, 7, "Bea", 0)
            assert result.message == "Ongeldig aantal."
            result = await service.process_bid(AUCTION, 7, "Bea", 500)
            assert result.message == "Niet genoeg voorraad."
            assert store.sales == []

        run(scenario)

    def test_first_buy_opens_grace_period(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.tick(AUCTION)
            recorder.clear()

            result = await service.process_bid(AUCTION, 7, "Bea", 30)
            assert result.success
            state = service.get_state(AUCTION)
            assert state.is_grace_period and state.is_paused and not state.is_running
            assert not service.has_timer(AUCTION)
            assert service.has_grace_timer(AUCTION)
            assert state.current_product.stock == 70

            assert recorder.names() == ["LotSold", "AuctionState"]
            sold = recorder.last("LotSold")
            assert sold == {"buyerId": 7, "buyerName": "Bea", "quantity": 30, "price": 0.99, "productId": 2, "remainingStock": 70}

            sale = store.sales[0]
            assert sale["unitPrice"] == 99
            assert sale["sideBuy"] is False
            assert sale["paymentReference"].startswith("BID-")
            assert len(sale["paymentReference"]) == 12

        run(scenario)

    def test_side_buy_restarts_grace_timer(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.process_bid(AUCTION, 7, "Bea", 30)
            first_timer = service._grace_timers[AUCTION]

            result = await service.process_bid(AUCTION, 8, "Tom", 20)
            assert result.success
            assert service._grace_timers[AUCTION] is not first_timer
            state = service.get_state(AUCTION)
            assert state.is_grace_period
            assert state.current_price == 1.0
            assert store.lots[2].stock == 50

        run(scenario)

    def test_selling_out_ends_grace(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.process_bid(AUCTION, 7, "Bea", 60)
            await service.process_bid(AUCTION, 8, "Tom", 40)
            state = service.get_state(AUCTION)
            assert state.current_product.stock == 0
            assert state.is_paused
            assert not state.is_grace_period
            assert not service.has_timer(AUCTION)
            assert not service.has_grace_timer(AUCTION)

            result = await service.process_bid(AUCTION, 9, "Late", 1)
            assert result.message == "Niet genoeg voorraad."

        run(scenario)

    def test_grace_expiry_restarts_lot_from_start_price(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            for _ in range(5):
                await service.tick(AUCTION)
            await service.process_bid(AUCTION, 7, "Bea", 10)

            await service.end_grace_period(AUCTION)
            state = service.get_state(AUCTION)
            assert state.is_running
            assert not state.is_grace_period
            assert state.current_price == 1.0
            assert service.has_timer(AUCTION)
            assert not service.has_grace_timer(AUCTION)

        run(scenario)

    def test_grace_timer_fires(self):
        async def main():
            store = InMemoryLotStore(lots())
            service = make_service(store, grace_period_ms=10)
            await service.start_auction(AUCTION)
            await service.process_bid(AUCTION, 7, "Bea", 10)
            await asyncio.sleep(0.2)
            state = service.get_state(AUCTION)
            running, grace = state.is_running, state.is_grace_period
            service.shutdown()
            return running, grace

        running, grace = asyncio.run(main())
        assert running
        assert not grace


class TestNextLot:
    def test_moves_to_next_lot_with_stock(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.process_bid(AUCTION, 7, "Bea", 10)
            recorder.clear()

            await service.move_to_next_lot(AUCTION)
            state = service.get_state(AUCTION)
            assert state.current_product.id == 3
            assert state.current_price == 2.0
            assert state.is_running
            assert not state.is_grace_period
            assert not service.has_grace_timer(AUCTION)
            assert recorder.names() == ["NextLot", "AuctionState"]
            assert recorder.last("NextLot")["name"] == "Tulp"

        run(scenario)

    def test_no_more_lots_ends_auction(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.move_to_next_lot(AUCTION)
            await service.move_to_next_lot(AUCTION)
            assert service.get_state(AUCTION) is None
            assert recorder.names()[-1] == "AuctionEnded"

        run(scenario)

    def test_state_payload_has_no_image(self):
        async def scenario(service, store, recorder):
            store.lots[2].image_base64 = "aGVsbG8="
            await service.start_auction(AUCTION)
            assert "imageBase64" not in recorder.last("AuctionState")["currentProduct"]

        run(scenario)


class ThreadRecordingStore(InMemoryLotStore):
    """Notes which store calls ran and on which threads."""

    def __init__(self, lots=()):
        super().__init__(lots)
        self.calls = []
        self.threads = set()

    def _note(self, name):
        self.calls.append(name)
        self.threads.add(threading.get_ident())

    def first_lot(self, auction_id, after_id=None):
        self._note("first_lot")
        return super().first_lot(auction_id, after_id)

    def get_lot(self, product_id):
        self._note("get_lot")
        return super().get_lot(product_id)

    def record_sale(self, *args):
        self._note("record_sale")
        return super().record_sale(*args)


class TestStoreAccess:
    def test_store_calls_run_off_the_event_loop(self):
        store = ThreadRecordingStore(lots())

        async def main():
            service = make_service(store)
            try:
                await service.start_auction(AUCTION)
                await service.process_bid(AUCTION, 7, "Bea", 10)
                await service.move_to_next_lot(AUCTION)
            finally:
                service.shutdown()
            return threading.get_ident()

        loop_thread = asyncio.run(main())
        assert store.calls == ["first_lot", "get_lot", "record_sale", "first_lot"]
        assert loop_thread not in store.threads

    def test_side_buys_are_recorded_as_such(self):
        async def scenario(service, store, recorder):
            await service.start_auction(AUCTION)
            await service.process_bid(AUCTION, 7, "Bea", 30)
            await service.process_bid(AUCTION, 8, "Tom", 20)
            assert [s["sideBuy"] for s in store.sales] == [False, True]
            assert [s["productName"] for s in store.sales] == ["Roos", "Roos"]

        run(scenario)
