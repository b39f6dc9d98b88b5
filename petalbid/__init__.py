"""PetalBid: Dutch flower-auction front-end and live auction hub."""

__version__ = "0.1.0"


class PetalBidError(Exception):
    """Base error for invalid PetalBid configuration or usage."""
