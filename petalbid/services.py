"""
Per-resource wrappers around the PetalBid REST API.

Each call returns an ``ApiResponse`` whose ``data`` holds model objects.
List endpoints go through the current client's ``CachedResource``s;
mutations invalidate them.
"""
import logging

from petalbid.api_client import get_client
from petalbid.models import ApiResponse, Auction, Product, Purchase, User, UserRole, ClockLocation

log = logging.getLogger(__name__)

UNEXPECTED = "Er is een onverwachte fout opgetreden bij het {action}. Probeer het opnieuw."

CACHED_ENDPOINTS = {
    "/auctions": "Veilingen ophalen mislukt!",
    "/products": "Producten ophalen mislukt.",
    "/users": "Gebruikers ophalen mislukt.",
    "/sales": "Aankopen ophalen mislukt.",
}


def _resource(endpoint: str):
    return get_client().resource(endpoint, fallback=CACHED_ENDPOINTS[endpoint])


def reset_caches():
    """Drop the current session's cached lists."""
    get_client().reset_caches()


def _convert(res: ApiResponse, factory, action: str) -> ApiResponse:
    if not res.ok:
        return res
    try:
        if isinstance(res.data, list):
            data = [factory(item) for item in res.data]
        else:
            data = factory(res.data)
    except (TypeError, ValueError, AttributeError) as e:
        log.error(f"Unexpected payload while {action}: {e}")
        return ApiResponse(error=UNEXPECTED.format(action=action))
    return ApiResponse(data=data, message=res.message)


# --------------------------------------------------------
# Auth
# --------------------------------------------------------
def register(full_name: str, email: str, password: str, role: UserRole) -> ApiResponse:
    body = {"fullName": full_name, "email": email, "password": password, "role": int(role)}
    res = get_client().post("/users/register", body, fallback="Registratie mislukt")
    return _convert(res, User.from_dict, "registreren")


def login(email: str, password: str, two_factor_code: str = None) -> ApiResponse:
    """On success ``data`` is ``{"token": str, "user": User}``."""
    body = {"email": email, "password": password}
    if two_factor_code:
        body["twoFactorCode"] = two_factor_code
    res = get_client().post("/users/login", body, fallback="Inloggen mislukt")
    if not res.ok:
        return res
    token = res.data.get("token") if isinstance(res.data, dict) else None
    user = res.data.get("user") if isinstance(res.data, dict) else None
    if not token or not user:
        return ApiResponse(error="Inloggen mislukt")
    return ApiResponse(data={"token": token, "user": User.from_dict(user)}, message=res.message)


def logout() -> ApiResponse:
    return get_client().post("/users/logout", auth=True, fallback="Uitloggen mislukt")


# --------------------------------------------------------
# Auctions
# --------------------------------------------------------
def create_auction(description: str, starts_at: str, clock_location: ClockLocation, auctioneer: User) -> ApiResponse:
    body = {
        "description": description,
        "startsAt": starts_at,
        "clockLocation": int(clock_location),
        "auctioneer": auctioneer.to_dict(),
    }
    res = get_client().post("/auctions", body, auth=True, fallback="Veiling aanmaken mislukt!")
    if res.ok:
        _resource("/auctions").invalidate()
    return _convert(res, Auction.from_dict, "aanmaken van de veiling")


def get_all_auctions(force: bool = False) -> ApiResponse:
    return _convert(_resource("/auctions").get(force), Auction.from_dict, "ophalen van de veilingen")


def get_auctions_by_auctioneer(auctioneer_id: int, force: bool = False) -> ApiResponse:
    res = get_all_auctions(force)
    if not res.ok:
        return res
    return ApiResponse(data=[a for a in res.data if a.auctioneer_id == auctioneer_id])


def _auction_action(auction_id: int, action: str, failed: str, done: str) -> ApiResponse:
    res = get_client().post(f"/auctions/{auction_id}/{action}", auth=True, fallback=failed)
    if not res.ok:
        return res
    _resource("/auctions").invalidate()
    return ApiResponse(data=None, message=done)


def start_auction(auction_id: int) -> ApiResponse:
    return _auction_action(auction_id, "start", "Veiling starten mislukt!", "Veiling succesvol gestart.")


def pause_auction(auction_id: int) -> ApiResponse:
    return _auction_action(auction_id, "pause", "Veiling pauzeren mislukt!", "Veiling succesvol gepauzeerd.")


def end_auction(auction_id: int) -> ApiResponse:
    return _auction_action(auction_id, "end", "Veiling beëindigen mislukt!", "Veiling succesvol beëindigd.")


# --------------------------------------------------------
# Products
# --------------------------------------------------------
def get_my_products(force: bool = False) -> ApiResponse:
    return _convert(_resource("/products").get(force), Product.from_dict, "ophalen van de producten")


def create_product(product: Product) -> ApiResponse:
    res = get_client().post("/products", product.to_dto(), auth=True, fallback="Product aanmaken mislukt.")
    if res.ok:
        _resource("/products").invalidate()
    return _convert(res, Product.from_dict, "aanmaken van het product")


def update_product(product_id: int, dto: dict) -> ApiResponse:
    res = get_client().put(f"/products/{product_id}", dto, auth=True, fallback="Product bijwerken mislukt.")
    if res.ok:
        _resource("/products").invalidate()
    return _convert(res, Product.from_dict, "bijwerken van het product")


def delete_product(product_id: int) -> ApiResponse:
    res = get_client().delete(f"/products/{product_id}", auth=True, fallback="Product verwijderen mislukt.")
    if not res.ok:
        return res
    _resource("/products").invalidate()
    return ApiResponse(data=None, message="Product succesvol verwijderd.")


def get_product_history(product_id: int) -> ApiResponse:
    """Supplier and market price statistics for the product's species."""
    return get_client().get(f"/products/{product_id}/history", auth=True, fallback="Prijshistorie ophalen mislukt.")


def _product_update(product: Product, **changes) -> ApiResponse:
    dto = product.to_dict()
    for key in ("id", "supplierId"):
        dto.pop(key, None)
    dto.update(changes)
    return update_product(product.id, dto)


def link_products(auction_id: int, products) -> list:
    """Assign each product to the auction; returns one response per product."""
    return [_product_update(p, auctionId=auction_id) for p in products]


def unlink_product(product: Product) -> ApiResponse:
    return _product_update(product, auctionId=None)


def set_max_price(product: Product, price: float) -> ApiResponse:
    if price is not None and price <= product.minimum_price:
        return ApiResponse(error="Startprijs moet hoger zijn dan de minimumprijs.")
    return _product_update(product, maxPricePerUnit=price)


# --------------------------------------------------------
# Users
# --------------------------------------------------------
def get_all_users(force: bool = False) -> ApiResponse:
    return _convert(_resource("/users").get(force), User.from_dict, "ophalen van de gebruikers")


def get_user(user_id: int, token: str = None) -> ApiResponse:
    res = get_client().get(f"/users/{user_id}", auth=True, token=token, fallback="Gebruiker ophalen mislukt.")
    return _convert(res, User.from_dict, "ophalen van de gebruiker")


def delete_user(user_id: int) -> ApiResponse:
    res = get_client().delete(f"/users/{user_id}", auth=True, fallback="Gebruiker verwijderen mislukt.")
    if not res.ok:
        return res
    _resource("/users").invalidate()
    # 204 No Content is a success
    return ApiResponse(data=None, message="Gebruiker succesvol verwijderd.")


def update_profile(full_name: str, email: str) -> ApiResponse:
    res = get_client().put("/users/me", {"fullName": full_name, "email": email}, auth=True, fallback="Profiel bijwerken mislukt.")
    return _convert(res, User.from_dict, "bijwerken van het profiel")


def change_password(current_password: str, new_password: str) -> ApiResponse:
    body = {"currentPassword": current_password, "newPassword": new_password}
    res = get_client().put("/users/me/password", body, auth=True, fallback="Wachtwoord wijzigen mislukt.")
    if not res.ok:
        return res
    return ApiResponse(data=None, message=res.message or "Wachtwoord succesvol gewijzigd.")


# --------------------------------------------------------
# Sales
# --------------------------------------------------------
def get_sales(force: bool = False) -> ApiResponse:
    return _convert(_resource("/sales").get(force), Purchase.from_dict, "ophalen van de aankopen")
