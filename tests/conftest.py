"""Shared fixtures: temp local storage, a mocked HTTP session and an in-memory lot store."""

import json
from dataclasses import replace
from unittest import mock

import pytest
import requests

from petalbid import api_client, session
from petalbid.api_client import ApiClient
from petalbid.local_storage import TOKEN_KEY, USER_KEY, LocalStorage
from petalbid.lot_store import payment_reference, to_cents
from petalbid.models import User, UserRole

BASE_URL = "http://api.test/api"


def make_response(status=200, body=None, reason="OK", raw=None):
    """A requests.Response double; ``raw`` sets non-JSON content."""
    resp = mock.Mock(spec=requests.Response)
    resp.status_code = status
    resp.ok = status < 400
    resp.reason = reason
    if raw is not None:
        resp.content = raw
        resp.json.side_effect = ValueError("not json")
    else:
        resp.content = b"" if body is None else json.dumps(body).encode()
        resp.json.return_value = body
    return resp


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "local_storage.json")


@pytest.fixture
def http():
    return mock.Mock(spec=requests.Session)


@pytest.fixture
def client(storage, http):
    """ApiClient wired to the mocked session and installed as the current client."""
    c = ApiClient(base_url=BASE_URL, storage=storage, session=http, timeout=1)
    api_client.set_client(c)
    session.reset_validation()
    yield c
    api_client.set_client(None)
    session.reset_validation()


@pytest.fixture
def buyer():
    return User(id=7, full_name="Bea Koper", email="bea@example.nl", role=UserRole.Buyer)


@pytest.fixture
def auctioneer():
    return User(id=2, full_name="Vera Meester", email="vera@example.nl", role=UserRole.Auctioneer)


@pytest.fixture
def logged_in(storage, buyer):
    storage.set_item(TOKEN_KEY, "tok")
    storage.set_item(USER_KEY, json.dumps(buyer.to_dict()))
    return buyer


class InMemoryLotStore:
    """Same interface as MongoLotStore, backed by a dict of Products."""

    def __init__(self, lots=()):
        self.lots = {p.id: replace(p) for p in lots}
        self.synced = {}
        self.sales = []

    def sync_lots(self, auction_id, products):
        ids = set()
        for p in products:
            if p.auction_id not in (None, auction_id):
                continue
            lot = self.lots.get(p.id)
            if lot is None:
                stock = p.stock
            else:
                stock = max(0, lot.stock + p.stock - self.synced.get(p.id, p.stock))
            self.lots[p.id] = replace(p, auction_id=auction_id, stock=stock)
            self.synced[p.id] = p.stock
            ids.add(p.id)
        for lot in self.lots.values():
            if lot.auction_id == auction_id and lot.id not in ids:
                lot.auction_id = None
        return len(ids)

    def first_lot(self, auction_id, after_id=None):
        candidates = sorted(
            (p for p in self.lots.values()
             if p.auction_id == auction_id and p.stock > 0 and (after_id is None or p.id > after_id)),
            key=lambda p: p.id,
        )
        return replace(candidates[0]) if candidates else None

    def get_lot(self, product_id):
        lot = self.lots.get(product_id)
        return replace(lot) if lot else None

    def record_sale(self, auction_id, product_id, buyer_id, buyer_name, quantity, unit_price, side_buy=False):
        lot = self.lots.get(product_id)
        if lot is None or lot.stock < quantity:
            return None
        lot.stock -= quantity
        self.sales.append({
            "auctionId": auction_id,
            "productId": product_id,
            "productName": lot.name,
            "species": lot.species,
            "supplierId": lot.supplier_id,
            "buyerId": buyer_id,
            "buyerName": buyer_name,
            "quantity": quantity,
            "unitPrice": to_cents(unit_price),
            "sideBuy": side_buy,
            "paymentReference": payment_reference(),
        })
        return lot.stock

    def sales_for_buyer(self, buyer_id):
        return [s for s in reversed(self.sales) if s["buyerId"] == buyer_id]

    def sales_for_supplier(self, supplier_id):
        return [s for s in reversed(self.sales) if s["supplierId"] == supplier_id]


class Recorder:
    """Async broadcaster that keeps every (group, event, data)."""

    def __init__(self):
        self.events = []

    async def __call__(self, group, event, data=None):
        self.events.append((group, event, data))

    def names(self):
        return [event for _, event, _ in self.events]

    def last(self, name):
        for _, event, data in reversed(self.events):
            if event == name:
                return data
        return None

    def clear(self):
        self.events = []
