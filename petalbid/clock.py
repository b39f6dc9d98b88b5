"""
Dutch clock simulation.

The price starts at ``start_price`` and drops by ``price_step`` per tick
until it hits ``floor_price``. A buyer stops the clock and takes part of the
lot; others may then side-buy (meekoop) at that same price before the clock
resumes.
"""
import logging
import math
import time
import uuid

from petalbid.models import Transaction

log = logging.getLogger(__name__)

MIN_TPS, MAX_TPS = 1, 20
UNKNOWN_BUYER = "Onbekend"


def clamp(n, lo, hi):
    return min(hi, max(lo, n))


def round2(n: float) -> float:
    # half-up on the cent
    return math.floor(n * 100 + 0.5) / 100


def validate_quantity(qty, remaining: int, min_per_buy: int, order_step: int):
    """First failing rule as a Dutch message, or None when the quantity is valid."""
    if qty is None or qty <= 0:
        return "Aantal moet groter dan 0 zijn"
    if qty > remaining:
        return f"Maximaal {remaining}"
    if qty < min_per_buy:
        return f"Minimale afname is {min_per_buy}"
    if (qty - min_per_buy) % order_step != 0:
        return f"Na de minimumafname in stappen van {order_step}"
    return None


def new_transaction_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class DutchClock:
    def __init__(
        self,
        product: str = "Rozen (A1)",
        species: str = "Rosa",
        origin: str = "Aalsmeer",
        total_qty: int = 100,
        min_per_buy: int = 10,
        order_step: int = 10,
        start_price: float = 0.5,
        floor_price: float = 0.2,
        price_step: float = 0.01,
        ticks_per_second: int = 3,
    ):
        self.product = product
        self.species = species
        self.origin = origin
        self._total_qty = max(0, int(total_qty))
        self.remaining_qty = self._total_qty
        self.min_per_buy = min_per_buy
        self.order_step = order_step
        self.start_price = start_price
        self.floor_price = floor_price
        self.price_step = price_step
        self.ticks_per_second = ticks_per_second

        self.running = False
        self.ticks = 0
        self.transactions = []
        self.paused_for_sale = False  # after a buy, so others can side-buy

        self.purchase_open = False
        self.buy_qty = self.min_per_buy
        self.side_buy_price = None
        self._anchor = None

    # ------------------------------
    # Settings (clamped like the form inputs)
    # ------------------------------
    @property
    def total_qty(self) -> int:
        return self._total_qty

    @total_qty.setter
    def total_qty(self, value):
        self._total_qty = max(0, int(value))
        self.remaining_qty = self._total_qty

    @property
    def min_per_buy(self) -> int:
        return self._min_per_buy

    @min_per_buy.setter
    def min_per_buy(self, value):
        self._min_per_buy = max(1, int(value))

    @property
    def order_step(self) -> int:
        return self._order_step

    @order_step.setter
    def order_step(self, value):
        self._order_step = max(1, int(value))

    @property
    def start_price(self) -> float:
        return self._start_price

    @start_price.setter
    def start_price(self, value):
        self._start_price = max(0.01, float(value))

    @property
    def floor_price(self) -> float:
        return self._floor_price

    @floor_price.setter
    def floor_price(self, value):
        self._floor_price = max(0.0, float(value))

    @property
    def price_step(self) -> float:
        return self._price_step

    @price_step.setter
    def price_step(self, value):
        self._price_step = max(0.001, float(value))

    @property
    def ticks_per_second(self) -> int:
        return self._tps

    @ticks_per_second.setter
    def ticks_per_second(self, value):
        self._tps = clamp(int(value), MIN_TPS, MAX_TPS)

    def set_remaining(self, value):
        self.remaining_qty = clamp(int(value), 0, self._total_qty)

    # ------------------------------
    # Derived values
    # ------------------------------
    @property
    def current_price(self) -> float:
        p = round2(self.start_price - self.ticks * self.price_step)
        return clamp(p, self.floor_price, self.start_price)

    @property
    def progress_pct(self) -> float:
        """0 at the start price, 100 at the floor."""
        price_range = max(0.00001, self.start_price - self.floor_price)
        dropped = self.start_price - self.current_price
        return clamp(dropped / price_range * 100, 0, 100)

    @property
    def tick_interval_ms(self) -> int:
        return max(10, round(1000 / self.ticks_per_second))

    @property
    def can_start(self) -> bool:
        return (
            self.total_qty > 0
            and self.start_price > self.floor_price
            and self.price_step > 0
            and self.ticks_per_second > 0
            and self.remaining_qty > 0
        )

    @property
    def at_floor(self) -> bool:
        return self.current_price <= self.floor_price + 1e-9

    @property
    def is_sold_out(self) -> bool:
        return self.remaining_qty <= 0

    @property
    def can_buy(self) -> bool:
        return self.remaining_qty > 0 and self.current_price > 0 and not self.purchase_open

    def can_buy_as(self, user) -> bool:
        return self.can_buy and user is not None

    @property
    def sold_total(self) -> int:
        return sum(t.qty for t in self.transactions)

    @property
    def revenue(self) -> float:
        return round2(sum(t.qty * t.price for t in self.transactions))

    @property
    def side_buy_mode(self) -> bool:
        return self.side_buy_price is not None

    # ------------------------------
    # Clock
    # ------------------------------
    def tick(self):
        if not self.running:
            return
        nxt = self.ticks + 1
        if round2(self.start_price - nxt * self.price_step) <= self.floor_price:
            self.running = False
            self.ticks = math.ceil((self.start_price - self.floor_price) / self.price_step)
            log.info(f"Clock for {self.product} reached the floor price {self.floor_price:.2f}")
        else:
            self.ticks = nxt

    def advance(self, elapsed_seconds: float) -> int:
        """Apply every whole tick that fits in ``elapsed_seconds``; returns ticks applied."""
        interval = self.tick_interval_ms / 1000
        return self._run_ticks(int(elapsed_seconds // interval))

    def _run_ticks(self, count: int) -> int:
        applied = 0
        for _ in range(count):
            if not self.running:
                break
            self.tick()
            applied += 1
        return applied

    def sync(self, now: float = None) -> int:
        """Catch up with the wall clock; meant to be called on every UI refresh."""
        now = time.monotonic() if now is None else now
        if not self.running:
            self._anchor = None
            return 0
        if self._anchor is None:
            self._anchor = now
            return 0
        interval = self.tick_interval_ms / 1000
        due = int((now - self._anchor) // interval)
        self._anchor += due * interval
        return self._run_ticks(due)

    def start_pause(self) -> bool:
        if not self.running:
            if not self.can_start:
                return False
            self.paused_for_sale = False
            self.running = True
            self._anchor = None
        else:
            self.running = False
        return self.running

    def reset(self):
        self.running = False
        self.ticks = 0
        self.remaining_qty = self.total_qty
        self.transactions = []
        self.paused_for_sale = False
        self.side_buy_price = None
        self.purchase_open = False
        self._anchor = None

    # ------------------------------
    # Buying
    # ------------------------------
    def validate_quantity(self, qty):
        return validate_quantity(qty, self.remaining_qty, self.min_per_buy, self.order_step)

    def open_buy(self, side_buy: bool = False) -> bool:
        if self.is_sold_out:
            return False
        self.running = False
        self.paused_for_sale = True
        self.side_buy_price = self.current_price if side_buy else None
        default_qty = max(self.min_per_buy, self.order_step or self.min_per_buy)
        self.buy_qty = min(default_qty, self.remaining_qty)
        self.purchase_open = True
        return True

    def cancel_purchase(self):
        self.purchase_open = False

    def commit_purchase(self, buyer: str, qty: int = None):
        """Returns (transaction, None) or (None, error). A rejected purchase changes nothing."""
        qty = self.buy_qty if qty is None else qty
        error = self.validate_quantity(qty)
        if error:
            return None, error

        price = self.side_buy_price if self.side_buy_price is not None else self.current_price
        tx = Transaction(
            buyer=(buyer or "").strip() or UNKNOWN_BUYER,
            qty=qty,
            price=price,
            side_buy=self.side_buy_mode,
            id=new_transaction_id(),
        )
        self.transactions.append(tx)
        self.remaining_qty -= qty
        self.purchase_open = False
        self.paused_for_sale = True
        if self.remaining_qty <= 0:
            self.running = False
        log.info(f"{tx.buyer} bought {qty} x {price:.2f} of {self.product}{' (meekoop)' if tx.side_buy else ''}")
        return tx, None

    def resume_after_sales(self) -> bool:
        self.paused_for_sale = False
        self.side_buy_price = None
        if self.remaining_qty > 0 and self.current_price > self.floor_price:
            self.running = True
            self._anchor = None
        return self.running

    def finish_lot(self):
        self.running = False
        self.paused_for_sale = False
        self.side_buy_price = None
        self.remaining_qty = 0
