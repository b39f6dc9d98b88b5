"""
MongoDB persistence for the hub: lots (products assigned to an auction) and
the sales recorded while clocking them. The front-end reads the same sales
for the buyer's purchases and the grower's sales history.
"""
import logging
import uuid
from datetime import datetime

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from petalbid import config
from petalbid.models import Product, Purchase

log = logging.getLogger(__name__)


def payment_reference() -> str:
    return "BID-" + uuid.uuid4().hex[:8].upper()


def to_cents(price: float) -> int:
    return int(round(price * 100))


def _to_product(doc):
    if not doc:
        return None
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    doc.pop("syncedStock", None)
    return Product.from_dict(doc)


def sale_to_purchase(doc: dict, purchase_id: int = 0) -> Purchase:
    occurred = doc.get("occurredAt")
    return Purchase(
        id=purchase_id,
        user_id=str(doc.get("buyerId", "")),
        buyer_name=doc.get("buyerName", ""),
        product_name=doc.get("productName", ""),
        quantity=int(doc.get("quantity") or 0),
        purchase_price=(doc.get("unitPrice") or 0) / 100,
        purchase_date=occurred.isoformat() if isinstance(occurred, datetime) else str(occurred or ""),
        species=doc.get("species", ""),
        origin=doc.get("origin", ""),
        side_buy=bool(doc.get("sideBuy", False)),
    )


class MongoLotStore:
    def __init__(self, db=None, uri: str = None, db_name: str = None, timeout_ms: int = None):
        if db is None:
            client = MongoClient(uri or config.MONGO_URI, serverSelectionTimeoutMS=timeout_ms or config.MONGO_TIMEOUT_MS)
            db = client[db_name or config.MONGO_DB]
        self.lots = db["lots"]
        self.sales = db["sales"]

    def ensure_indexes(self):
        self.lots.create_index([("auctionId", ASCENDING), ("stock", ASCENDING)])
        self.sales.create_index([("buyerId", ASCENDING), ("occurredAt", ASCENDING)])
        self.sales.create_index([("supplierId", ASCENDING), ("occurredAt", ASCENDING)])

    def sync_lots(self, auction_id: int, products) -> int:
        """
        Make the auction's lots match the backend's products.

        Sales made on the clock stay sold: a resync only applies the change in
        backend stock since the previous sync. Lots of this auction missing
        from ``products`` lose their ``auctionId``.
        """
        ids = []
        for p in products:
            if p.auction_id not in (None, auction_id):
                continue
            doc = p.to_dict()
            doc.pop("id", None)
            doc.pop("imageBase64", None)
            backend_stock = int(doc.pop("stock", 0) or 0)
            doc["auctionId"] = auction_id
            doc["syncedStock"] = backend_stock

            existing = self.lots.find_one({"_id": p.id}, {"stock": 1, "syncedStock": 1})
            if existing is None:
                doc["stock"] = backend_stock
            else:
                added = backend_stock - int(existing.get("syncedStock", backend_stock))
                doc["stock"] = max(0, int(existing.get("stock", 0)) + added)

            self.lots.update_one({"_id": p.id}, {"$set": doc}, upsert=True)
            ids.append(p.id)

        unlinked = self.lots.update_many(
            {"auctionId": auction_id, "_id": {"$nin": ids}},
            {"$unset": {"auctionId": ""}},
        )
        log.info(f"Synced {len(ids)} lots for auction {auction_id}, unlinked {unlinked.modified_count}")
        return len(ids)

    def first_lot(self, auction_id: int, after_id: int = None):
        """Lowest-id lot of the auction that still has stock (after ``after_id`` if given)."""
        query = {"auctionId": auction_id, "stock": {"$gt": 0}}
        if after_id is not None:
            query["_id"] = {"$gt": after_id}
        return _to_product(self.lots.find_one(query, sort=[("_id", ASCENDING)]))

    def get_lot(self, product_id: int):
        return _to_product(self.lots.find_one({"_id": product_id}))

    def record_sale(self, auction_id: int, product_id: int, buyer_id: int, buyer_name: str, quantity: int, unit_price: float, side_buy: bool = False):
        """
        Take ``quantity`` off the lot and log the sale. Returns the new stock,
        or None when the lot no longer has enough.
        """
        doc = self.lots.find_one_and_update(
            {"_id": product_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None
        self.sales.insert_one({
            "auctionId": auction_id,
            "productId": product_id,
            "productName": doc.get("name", ""),
            "species": doc.get("species", ""),
            "supplierId": doc.get("supplierId"),
            "buyerId": buyer_id,
            "buyerName": buyer_name,
            "quantity": quantity,
            "unitPrice": to_cents(unit_price),  # cents
            "sideBuy": side_buy,
            "paymentReference": payment_reference(),
            "occurredAt": datetime.utcnow(),
        })
        return int(doc["stock"])

    def sales_for_buyer(self, buyer_id: int) -> list:
        return list(self.sales.find({"buyerId": buyer_id}, {"_id": 0}).sort("occurredAt", DESCENDING))

    def sales_for_supplier(self, supplier_id: int) -> list:
        """Sales of every lot the grower supplied, newest first."""
        return list(self.sales.find({"supplierId": supplier_id}, {"_id": 0}).sort("occurredAt", DESCENDING))
