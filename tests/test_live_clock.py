"""LiveAuctionView applies hub events; it never ticks on its own."""

from petalbid.live_clock import LiveAuctionView


def lot(**overrides):
    data = {"id": 11, "name": "Tulp Strong Gold", "species": "Tulipa", "stock": 100, "minimumPrice": 0.3, "maxPricePerUnit": 1.2}
    data.update(overrides)
    return data


def state(**overrides):
    data = {
        "auctionId": 4,
        "currentProduct": lot(),
        "currentPrice": 1.2,
        "isRunning": True,
        "isPaused": False,
        "isGracePeriod": False,
    }
    data.update(overrides)
    return data


def sold(buyer_id=7, name="Bea Koper", qty=20, price=0.9, remaining=80):
    return {"buyerId": buyer_id, "buyerName": name, "quantity": qty, "price": price, "productId": 11, "remainingStock": remaining}


class TestLiveAuctionView:
    def setup_method(self):
        self.view = LiveAuctionView(4)

    def test_state_replaces_everything(self):
        self.view.apply("AuctionState", state())
        assert self.view.product.name == "Tulp Strong Gold"
        assert self.view.price == 1.2
        assert self.view.is_running
        assert self.view.remaining == 100
        assert self.view.start_price == 1.2
        assert self.view.minimum_price == 0.3

    def test_state_for_other_auction_is_ignored(self):
        self.view.apply("AuctionState", state(auctionId=99))
        assert self.view.product is None

    def test_price_update(self):
        self.view.apply("AuctionState", state())
        self.view.apply("PriceUpdate", 1.15)
        assert self.view.price == 1.15

    def test_first_sale_is_not_a_side_buy(self):
        self.view.apply_all([("AuctionState", state()), ("LotSold", sold())])
        tx = self.view.transactions[0]
        assert tx.buyer == "Bea Koper"
        assert tx.qty == 20
        assert tx.price == 0.9
        assert not tx.side_buy
        assert self.view.remaining == 80

    def test_sales_in_grace_period_are_side_buys(self):
        self.view.apply_all([
            ("AuctionState", state()),
            ("LotSold", sold()),
            ("AuctionState", state(currentProduct=lot(stock=80), currentPrice=0.9, isRunning=False, isPaused=True, isGracePeriod=True)),
            ("LotSold", sold(buyer_id=8, name="Tom", qty=30, remaining=50)),
        ])
        assert [t.side_buy for t in self.view.transactions] == [False, True]
        assert self.view.sold_total == 50
        assert self.view.remaining == 50

    def test_own_purchases_are_collected(self, buyer):
        view = LiveAuctionView(4, viewer=buyer)
        view.apply_all([("AuctionState", state()), ("LotSold", sold()), ("LotSold", sold(buyer_id=8, name="Tom"))])
        purchases = view.drain_own_purchases()
        assert len(purchases) == 1
        assert purchases[0].user_id == "7"
        assert purchases[0].product_name == "Tulp Strong Gold"
        assert purchases[0].quantity == 20
        assert view.drain_own_purchases() == []

        view.apply("LotSold", sold(remaining=60))
        again = view.drain_own_purchases()
        assert again[0].id != purchases[0].id

    def test_next_lot_clears_transactions(self):
        self.view.apply_all([("AuctionState", state()), ("LotSold", sold()), ("MinimumPriceReached", None)])
        self.view.apply("NextLot", lot(id=12, name="Roos"))
        assert self.view.product.id == 12
        assert self.view.transactions == []
        assert not self.view.at_minimum

    def test_minimum_and_end(self):
        self.view.apply("AuctionState", state())
        self.view.apply("MinimumPriceReached", None)
        assert self.view.at_minimum
        self.view.apply("AuctionEnded", None)
        assert self.view.ended
        assert not self.view.is_running

    def test_bid_rejected_keeps_message(self):
        assert self.view.apply("BidRejected", "Niet genoeg voorraad.")
        assert self.view.last_error == "Niet genoeg voorraad."

    def test_unknown_event_is_ignored(self):
        assert self.view.apply("SomethingElse", {}) is False

    def test_can_bid(self, buyer, auctioneer):
        self.view.apply("AuctionState", state())
        assert self.view.can_bid(buyer)
        assert not self.view.can_bid(auctioneer)
        assert not self.view.can_bid(None)

        self.view.apply("AuctionState", state(isRunning=False, isPaused=True))
        assert not self.view.can_bid(buyer)

        self.view.apply("AuctionState", state(currentProduct=lot(stock=0), isRunning=False, isGracePeriod=True))
        assert not self.view.can_bid(buyer)

    def test_validate_bid_uses_lot_rules(self):
        view = LiveAuctionView(4, min_per_buy=5, order_step=5)
        view.apply("AuctionState", state(currentProduct=lot(stock=30)))
        assert view.validate_bid(40) == "Maximaal 30"
        assert view.validate_bid(3) == "Minimale afname is 5"
        assert view.validate_bid(7) == "Na de minimumafname in stappen van 5"
        assert view.validate_bid(15) is None
