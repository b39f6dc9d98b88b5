"""
Client-side mirror of a live auction, fed by hub events.

The hub owns the clock; this view only applies what it is told and answers
UI questions (can I bid, is my quantity valid, what did I buy).
"""
import logging
from datetime import datetime

from petalbid.clock import new_transaction_id, validate_quantity
from petalbid.models import Product, Purchase, Transaction, UserRole

log = logging.getLogger(__name__)


class LiveAuctionView:
    def __init__(self, auction_id: int, viewer=None, min_per_buy: int = 1, order_step: int = 1):
        self.auction_id = auction_id
        self.viewer = viewer
        self.min_per_buy = min_per_buy
        self.order_step = order_step

        self.product = None
        self.price = 0.0
        self.is_running = False
        self.is_paused = False
        self.is_grace_period = False
        self.at_minimum = False
        self.ended = False
        self.last_error = None
        self.transactions = []
        self._own_purchases = []
        self._purchase_seq = 0

        self._handlers = {
            "AuctionState": self._on_state,
            "PriceUpdate": self._on_price,
            "LotSold": self._on_lot_sold,
            "NextLot": self._on_next_lot,
            "MinimumPriceReached": self._on_minimum,
            "AuctionEnded": self._on_ended,
            "BidRejected": self._on_rejected,
            "Error": self._on_rejected,
        }

    def apply(self, event: str, data=None) -> bool:
        handler = self._handlers.get(event)
        if handler is None:
            log.debug(f"Ignoring hub event {event}")
            return False
        handler(data)
        return True

    def apply_all(self, events) -> int:
        return sum(1 for event, data in events if self.apply(event, data))

    # ------------------------------
    # Event handlers
    # ------------------------------
    def _on_state(self, data):
        if not data:
            return
        if data.get("auctionId") not in (None, self.auction_id):
            return
        product = data.get("currentProduct")
        if product is None:
            self.product = None
        elif self.product is None or self.product.id != product.get("id"):
            self.product = Product.from_dict(product)
            self.transactions = []
            self.at_minimum = False
        else:
            self.product.stock = int(product.get("stock", self.product.stock))
        self.price = float(data.get("currentPrice") or 0)
        self.is_running = bool(data.get("isRunning"))
        self.is_paused = bool(data.get("isPaused"))
        self.is_grace_period = bool(data.get("isGracePeriod"))
        if self.is_running:
            self.at_minimum = False

    def _on_price(self, data):
        self.price = float(data)

    def _on_lot_sold(self, data):
        qty = int(data.get("quantity") or 0)
        price = float(data.get("price") or self.price)
        # The first sale arrives while the clock still runs; later ones land in the grace period.
        side_buy = self.is_grace_period
        tx = Transaction(
            buyer=data.get("buyerName") or "Onbekend",
            qty=qty,
            price=price,
            side_buy=side_buy,
            id=new_transaction_id(),
        )
        self.transactions.append(tx)
        if self.product is not None and data.get("productId") in (None, self.product.id):
            self.product.stock = int(data.get("remainingStock", self.product.stock - qty))

        if self.viewer is not None and data.get("buyerId") == self.viewer.id:
            self._purchase_seq += 1
            self._own_purchases.append(Purchase(
                id=self._purchase_seq,
                user_id=str(self.viewer.id),
                buyer_name=tx.buyer,
                product_name=self.product.name if self.product else "",
                species=self.product.species if self.product else "",
                quantity=qty,
                purchase_price=price,
                purchase_date=datetime.utcnow().isoformat(),
                side_buy=side_buy,
            ))

    def _on_next_lot(self, data):
        self.product = Product.from_dict(data) if data else None
        self.transactions = []
        self.at_minimum = False
        self.last_error = None

    def _on_minimum(self, _data):
        self.at_minimum = True

    def _on_ended(self, _data):
        self.ended = True
        self.is_running = False
        self.is_grace_period = False

    def _on_rejected(self, data):
        self.last_error = data if isinstance(data, str) else str(data)

    # ------------------------------
    # Derived values
    # ------------------------------
    @property
    def remaining(self) -> int:
        return self.product.stock if self.product else 0

    @property
    def is_sold_out(self) -> bool:
        return self.remaining <= 0

    @property
    def start_price(self):
        return self.product.max_price_per_unit if self.product else None

    @property
    def minimum_price(self):
        return self.product.minimum_price if self.product else None

    def can_bid(self, user) -> bool:
        return (
            user is not None
            and user.role == UserRole.Buyer
            and not self.ended
            and (self.is_running or self.is_grace_period)
            and not self.is_sold_out
        )

    def validate_bid(self, qty):
        return validate_quantity(qty, self.remaining, self.min_per_buy, self.order_step)

    def drain_own_purchases(self) -> list:
        purchases, self._own_purchases = self._own_purchases, []
        return purchases

    @property
    def sold_total(self) -> int:
        return sum(t.qty for t in self.transactions)
