"""Purchases made during this session (buyer side)."""
import threading


class PurchaseLedger:
    def __init__(self):
        self._purchases = []
        self._lock = threading.Lock()

    @property
    def purchases(self) -> list:
        with self._lock:
            return list(self._purchases)

    def add_purchase(self, purchase):
        with self._lock:
            self._purchases.append(purchase)

    def get_purchases_by_user(self, user_id) -> list:
        with self._lock:
            return [p for p in self._purchases if p.user_id == str(user_id)]

    def clear_purchases(self):
        with self._lock:
            self._purchases = []
