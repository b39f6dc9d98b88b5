"""
Authoritative Dutch clock for live auctions.

One ``AuctionState`` per running auction. A tick task lowers the price every
``tick_rate_ms``; a first buy stops it and opens a grace period in which
others can side-buy at the same price. When the grace period lapses the lot
restarts from its start price.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from petalbid import PetalBidError, config
from petalbid.clock import round2
from petalbid.models import Product

log = logging.getLogger(__name__)


def group_name(auction_id: int) -> str:
    return f"auction-{auction_id}"


def lot_payload(product: Optional[Product]):
    if product is None:
        return None
    data = product.to_dict()
    data.pop("imageBase64", None)
    return data


@dataclass
class AuctionState:
    auction_id: int
    current_product: Optional[Product] = None
    current_price: float = 0.0
    is_running: bool = False
    is_paused: bool = False
    is_grace_period: bool = False

    def to_dict(self) -> dict:
        return {
            "auctionId": self.auction_id,
            "currentProduct": lot_payload(self.current_product),
            "currentPrice": self.current_price,
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "isGracePeriod": self.is_grace_period,
        }


@dataclass
class BidResult:
    success: bool
    message: str = ""


class AuctionClockService:
    def __init__(
        self,
        store,
        broadcast,
        price_step: float = config.CLOCK_PRICE_STEP,
        tick_rate_ms: int = config.CLOCK_TICK_RATE_MS,
        grace_period_ms: int = config.CLOCK_GRACE_PERIOD_MS,
        default_start_price: float = config.CLOCK_DEFAULT_START_PRICE,
    ):
        if price_step <= 0 or tick_rate_ms <= 0 or grace_period_ms < 0:
            raise PetalBidError(f"Invalid clock settings: step={price_step} tick={tick_rate_ms}ms grace={grace_period_ms}ms")
        self.store = store
        self.broadcast = broadcast  # async (group, event, data)
        self.price_step = price_step
        self.tick_rate_ms = tick_rate_ms
        self.grace_period_ms = grace_period_ms
        self.default_start_price = default_start_price

        self._auctions = {}
        self._timers = {}
        self._grace_timers = {}

    def start_price_for(self, product: Product) -> float:
        return product.max_price_per_unit if product.max_price_per_unit is not None else self.default_start_price

    def get_state(self, auction_id: int) -> Optional[AuctionState]:
        return self._auctions.get(auction_id)

    # ------------------------------
    # Auctioneer controls
    # ------------------------------
    async def start_auction(self, auction_id: int):
        self._stop_grace_timer(auction_id)

        existing = self._auctions.get(auction_id)
        if existing is not None:
            if not existing.is_running:
                existing.is_running = True
                existing.is_paused = False
                existing.is_grace_period = False
                self._start_timer(auction_id)
                log.info(f"Auction {auction_id} resumed at {existing.current_price:.2f}")
                await self._broadcast_state(auction_id)
            return

        lot = await asyncio.to_thread(self.store.first_lot, auction_id)
        if auction_id in self._auctions:
            # started again while the lot was loading
            return
        state = AuctionState(
            auction_id=auction_id,
            current_product=lot,
            current_price=self.start_price_for(lot) if lot else self.default_start_price,
            is_running=lot is not None,
        )
        self._auctions[auction_id] = state
        if state.is_running:
            self._start_timer(auction_id)
            log.info(f"Auction {auction_id} started with lot {lot.id} at {state.current_price:.2f}")
        else:
            log.warning(f"Auction {auction_id} has no lots with stock")
        await self._broadcast_state(auction_id)

    async def pause_auction(self, auction_id: int):
        self._stop_grace_timer(auction_id)
        state = self._auctions.get(auction_id)
        if state is None:
            return
        state.is_running = False
        state.is_paused = True
        state.is_grace_period = False
        self._stop_timer(auction_id)
        log.info(f"Auction {auction_id} paused at {state.current_price:.2f}")
        await self._broadcast_state(auction_id)

    async def stop_auction(self, auction_id: int):
        self._stop_grace_timer(auction_id)
        if auction_id not in self._auctions:
            return
        self._stop_timer(auction_id)
        del self._auctions[auction_id]
        log.info(f"Auction {auction_id} ended")
        await self.broadcast(group_name(auction_id), "AuctionEnded", None)

    async def move_to_next_lot(self, auction_id: int):
        self._stop_grace_timer(auction_id)
        state = self._auctions.get(auction_id)
        if state is None:
            return

        after = state.current_product.id if state.current_product else None
        lot = await asyncio.to_thread(self.store.first_lot, auction_id, after)
        if self._auctions.get(auction_id) is not state:
            return
        if lot is None:
            await self.stop_auction(auction_id)
            return

        state.current_product = lot
        state.current_price = self.start_price_for(lot)
        state.is_running = True
        state.is_paused = False
        state.is_grace_period = False
        self._start_timer(auction_id)
        log.info(f"Auction {auction_id} moved to lot {lot.id}")
        await self.broadcast(group_name(auction_id), "NextLot", lot_payload(lot))
        await self._broadcast_state(auction_id)

    # ------------------------------
    # Bids
    # ------------------------------
    async def process_bid(self, auction_id: int, user_id: int, user_name: str, quantity: int) -> BidResult:
        state = self._auctions.get(auction_id)
        if state is None or state.current_product is None:
            return BidResult(False, "Veiling niet actief.")
        if quantity is None or quantity <= 0:
            return BidResult(False, "Ongeldig aantal.")

        # the price and mode at the moment the bid came in
        price = state.current_price
        side_buy = state.is_grace_period
        lot = await asyncio.to_thread(self.store.get_lot, state.current_product.id)
        if lot is None or lot.stock < quantity:
            return BidResult(False, "Niet genoeg voorraad.")

        new_stock = await asyncio.to_thread(self.store.record_sale, auction_id, lot.id, user_id, user_name, quantity, price, side_buy)
        if new_stock is None:
            return BidResult(False, "Niet genoeg voorraad.")
        current = state.current_product
        moved_on = self._auctions.get(auction_id) is not state or current is None or current.id != lot.id
        if not moved_on:
            current.stock = new_stock
        log.info(f"Auction {auction_id}: {user_name} bought {quantity} of lot {lot.id} at {price:.2f}, {new_stock} left")

        await self.broadcast(group_name(auction_id), "LotSold", {
            "buyerId": user_id,
            "buyerName": user_name,
            "quantity": quantity,
            "price": price,
            "productId": lot.id,
            "remainingStock": new_stock,
        })

        if moved_on:
            # the clock left this lot while the sale was being written
            return BidResult(True)
        if new_stock == 0:
            self._stop_timer(auction_id)
            self._stop_grace_timer(auction_id)
            state.is_running = False
            state.is_paused = True
            state.is_grace_period = False
            await self._broadcast_state(auction_id)
        elif state.is_running:
            # first buy: hold the price for side buys
            state.is_running = False
            state.is_paused = True
            state.is_grace_period = True
            self._stop_timer(auction_id)
            self._start_grace_timer(auction_id)
            await self._broadcast_state(auction_id)
        elif state.is_grace_period:
            # side buy: give the others a fresh window
            self._start_grace_timer(auction_id)
            await self._broadcast_state(auction_id)

        return BidResult(True)

    # ------------------------------
    # Clock
    # ------------------------------
    async def tick(self, auction_id: int):
        state = self._auctions.get(auction_id)
        if state is None:
            self._stop_timer(auction_id)
            return
        if not state.is_running or state.is_paused or state.current_product is None:
            return

        minimum = state.current_product.minimum_price
        new_price = round2(state.current_price - self.price_step)
        group = group_name(auction_id)

        if new_price < minimum:
            state.current_price = minimum
            state.is_running = False
            state.is_paused = True
            self._stop_timer(auction_id)
            log.info(f"Auction {auction_id} reached the minimum price {minimum:.2f}")
            await self._broadcast_state(auction_id)
            await self.broadcast(group, "PriceUpdate", state.current_price)
            await self.broadcast(group, "MinimumPriceReached", None)
        else:
            state.current_price = new_price
            await self.broadcast(group, "PriceUpdate", state.current_price)

    async def end_grace_period(self, auction_id: int):
        """No side buys came in: restart the lot from its start price."""
        self._stop_grace_timer(auction_id)
        state = self._auctions.get(auction_id)
        if state is None or state.current_product is None:
            return
        state.is_grace_period = False
        state.is_paused = False
        state.is_running = True
        state.current_price = self.start_price_for(state.current_product)
        self._start_timer(auction_id)
        log.info(f"Auction {auction_id} grace period over, lot {state.current_product.id} restarts")
        await self._broadcast_state(auction_id)

    async def _broadcast_state(self, auction_id: int):
        state = self._auctions.get(auction_id)
        if state is not None:
            await self.broadcast(group_name(auction_id), "AuctionState", state.to_dict())

    # ------------------------------
    # Timers
    # ------------------------------
    async def _tick_loop(self, auction_id: int):
        me = asyncio.current_task()
        while self._timers.get(auction_id) is me:
            await asyncio.sleep(self.tick_rate_ms / 1000)
            if self._timers.get(auction_id) is not me:
                return
            try:
                await self.tick(auction_id)
            except Exception as e:
                log.exception(f"Tick failed for auction {auction_id}: {e}")

    async def _grace_loop(self, auction_id: int):
        me = asyncio.current_task()
        await asyncio.sleep(self.grace_period_ms / 1000)
        if self._grace_timers.get(auction_id) is me:
            await self.end_grace_period(auction_id)

    def _start_timer(self, auction_id: int):
        self._stop_timer(auction_id)
        self._stop_grace_timer(auction_id)
        self._timers[auction_id] = asyncio.create_task(self._tick_loop(auction_id))

    def _stop_timer(self, auction_id: int):
        _cancel(self._timers.pop(auction_id, None))

    def _start_grace_timer(self, auction_id: int):
        self._stop_grace_timer(auction_id)
        self._grace_timers[auction_id] = asyncio.create_task(self._grace_loop(auction_id))

    def _stop_grace_timer(self, auction_id: int):
        _cancel(self._grace_timers.pop(auction_id, None))

    def has_timer(self, auction_id: int) -> bool:
        return auction_id in self._timers

    def has_grace_timer(self, auction_id: int) -> bool:
        return auction_id in self._grace_timers

    def shutdown(self):
        for task in list(self._timers.values()) + list(self._grace_timers.values()):
            _cancel(task)
        self._timers.clear()
        self._grace_timers.clear()


def _cancel(task):
    # a timer may stop itself from inside its own callback; let it finish
    if task is not None and task is not asyncio.current_task():
        task.cancel()
