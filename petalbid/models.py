"""
Domain records mirrored from the PetalBid backend DTOs.

The backend speaks camelCase JSON; these records use snake_case and convert
at the edges via ``from_dict`` / ``to_dict``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Optional


class UserRole(IntEnum):
    Buyer = 0
    Auctioneer = 1
    Supplier = 2
    Admin = 3


class AuctionStatus(IntEnum):
    Pending = 0
    Active = 1
    Paused = 2
    Ended = 3


class ClockLocation(IntEnum):
    Naaldwijk = 0
    Aalsmeer = 1
    Rijnsburg = 2
    Eelde = 3


def _enum(enum_cls, value, default):
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return enum_cls[value]
        except KeyError:
            value = int(value) if value.isdigit() else value
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _opt_float(value):
    return None if value is None else float(value)


@dataclass
class User:
    id: int
    full_name: str
    email: str
    role: UserRole = UserRole.Buyer
    is_totp_enabled: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> "User":
        return cls(
            id=int(d.get("id", 0)),
            full_name=d.get("fullName", ""),
            email=d.get("email", ""),
            role=_enum(UserRole, d.get("role"), UserRole.Buyer),
            is_totp_enabled=bool(d.get("isTotpEnabled", False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fullName": self.full_name,
            "email": self.email,
            "role": int(self.role),
            "isTotpEnabled": self.is_totp_enabled,
        }


@dataclass
class Auction:
    id: int
    description: str
    starts_at: str
    quantity: int = 0
    reserve_price: float = 0
    clock_location: ClockLocation = ClockLocation.Naaldwijk
    status: AuctionStatus = AuctionStatus.Pending
    auctioneer: Optional[User] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Auction":
        auctioneer = d.get("auctioneer")
        return cls(
            id=int(d.get("id", 0)),
            description=d.get("description", ""),
            starts_at=d.get("startsAt", ""),
            quantity=int(d.get("quantity") or 0),
            reserve_price=float(d.get("reservePrice") or 0),
            clock_location=_enum(ClockLocation, d.get("clockLocation"), ClockLocation.Naaldwijk),
            status=_enum(AuctionStatus, d.get("status"), AuctionStatus.Pending),
            auctioneer=User.from_dict(auctioneer) if auctioneer else None,
        )

    @property
    def auctioneer_id(self) -> Optional[int]:
        return self.auctioneer.id if self.auctioneer else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "startsAt": self.starts_at,
            "quantity": self.quantity,
            "reservePrice": self.reserve_price,
            "clockLocation": int(self.clock_location),
            "status": int(self.status),
            "auctioneer": self.auctioneer.to_dict() if self.auctioneer else None,
        }


@dataclass
class Product:
    id: int
    name: str
    species: str = ""
    stock: int = 0
    minimum_price: float = 0.0
    weight: float = 0.0
    image_base64: str = ""
    pot_size: Optional[float] = None
    stem_length: Optional[float] = None
    supplier_id: Optional[int] = None
    auction_id: Optional[int] = None
    max_price_per_unit: Optional[float] = None
    sale_date: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "Product":
        auction_id = d.get("auctionId")
        supplier_id = d.get("supplierId")
        return cls(
            id=int(d.get("id", 0)),
            name=d.get("name", ""),
            species=d.get("species", ""),
            stock=int(d.get("stock") or 0),
            minimum_price=float(d.get("minimumPrice") or 0),
            weight=float(d.get("weight") or 0),
            image_base64=d.get("imageBase64") or "",
            pot_size=_opt_float(d.get("potSize")),
            stem_length=_opt_float(d.get("stemLength")),
            supplier_id=None if supplier_id is None else int(supplier_id),
            auction_id=None if auction_id is None else int(auction_id),
            max_price_per_unit=_opt_float(d.get("maxPricePerUnit")),
            sale_date=d.get("saleDate"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "species": self.species,
            "stock": self.stock,
            "minimumPrice": self.minimum_price,
            "weight": self.weight,
            "imageBase64": self.image_base64,
            "potSize": self.pot_size,
            "stemLength": self.stem_length,
            "supplierId": self.supplier_id,
            "auctionId": self.auction_id,
            "maxPricePerUnit": self.max_price_per_unit,
            "saleDate": self.sale_date,
        }

    def to_dto(self) -> dict:
        """Payload for create/update: server-managed fields left out."""
        dto = self.to_dict()
        for key in ("id", "supplierId", "auctionId"):
            dto.pop(key, None)
        return dto


@dataclass
class Purchase:
    id: int
    user_id: str
    buyer_name: str
    product_name: str
    quantity: int
    purchase_price: float
    purchase_date: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    species: str = ""
    origin: str = ""
    side_buy: bool = False

    @property
    def total(self) -> float:
        return round(self.quantity * self.purchase_price, 2)

    @classmethod
    def from_dict(cls, d: dict) -> "Purchase":
        return cls(
            id=int(d.get("id", 0)),
            user_id=str(d.get("userId", "")),
            buyer_name=d.get("buyerName", ""),
            product_name=d.get("productName", ""),
            quantity=int(d.get("quantity") or 0),
            purchase_price=float(d.get("purchasePrice") or 0),
            purchase_date=d.get("purchaseDate", ""),
            species=d.get("species", ""),
            origin=d.get("origin", ""),
            side_buy=bool(d.get("sideBuy", False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "buyerName": self.buyer_name,
            "productName": self.product_name,
            "species": self.species,
            "origin": self.origin,
            "quantity": self.quantity,
            "purchasePrice": self.purchase_price,
            "purchaseDate": self.purchase_date,
            "sideBuy": self.side_buy,
        }


@dataclass
class Transaction:
    buyer: str
    qty: int
    price: float  # per unit at transaction time
    side_buy: bool = False  # meekoop
    id: str = ""

    @property
    def total(self) -> float:
        return round(self.qty * self.price, 2)


@dataclass
class ApiResponse:
    data: Any = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error
