"""
Form validation for the auction, product, registration and clock forms.

Validators return a dict of field -> Dutch message; an empty dict means valid.
"""
import re
from datetime import datetime, timezone

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def parse_datetime(value):
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.astimezone()


def validate_auction(description: str, starts_at, now: datetime = None) -> dict:
    errors = {}
    if not (description or "").strip():
        errors["description"] = "Omschrijving is verplicht."
    start = parse_datetime(starts_at)
    now = now or datetime.now(timezone.utc)
    if start is None:
        errors["starts_at"] = "Ongeldige startdatum."
    elif _aware(start) <= _aware(now):
        errors["starts_at"] = "De startdatum en -tijd van de veiling moeten in de toekomst liggen."
    return errors


def validate_product(name: str, species: str, stock, weight, minimum_price, max_price_per_unit=None) -> dict:
    errors = {}
    if not (name or "").strip():
        errors["name"] = "Naam is verplicht."
    if not (species or "").strip():
        errors["species"] = "Soort is verplicht."
    if stock is None or int(stock) < 1:
        errors["stock"] = "Voorraad moet minimaal 1 zijn."
    if weight is None or float(weight) <= 0:
        errors["weight"] = "Gewicht moet groter dan 0 zijn."
    if minimum_price is None or float(minimum_price) < 0:
        errors["minimum_price"] = "Minimumprijs mag niet negatief zijn."
    elif max_price_per_unit is not None and float(max_price_per_unit) <= float(minimum_price):
        errors["max_price_per_unit"] = "Startprijs moet hoger zijn dan de minimumprijs."
    return errors


def validate_registration(full_name: str, email: str, password: str, role) -> dict:
    errors = {}
    full_name = (full_name or "").strip()
    email = (email or "").strip()
    if not full_name:
        errors["full_name"] = "Naam is verplicht."
    elif len(full_name) > 100:
        errors["full_name"] = "Naam mag maximaal 100 tekens zijn."
    if not email or not EMAIL_RE.match(email):
        errors["email"] = "Voer een geldig e-mailadres in."
    elif len(email) > 255:
        errors["email"] = "E-mailadres mag maximaal 255 tekens zijn."
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Wachtwoord moet minimaal {MIN_PASSWORD_LENGTH} tekens bevatten."
    if role is None:
        errors["role"] = "Kies een rol."
    return errors


def validate_clock_settings(start_price, floor_price, price_step, ticks_per_second, total_qty) -> dict:
    errors = {}
    if start_price <= floor_price:
        errors["start_price"] = "Startprijs moet hoger zijn dan de bodemprijs."
    if price_step <= 0:
        errors["price_step"] = "Prijsstap moet groter dan 0 zijn."
    if ticks_per_second <= 0:
        errors["ticks_per_second"] = "Snelheid moet groter dan 0 zijn."
    if total_qty <= 0:
        errors["total_qty"] = "Kavelomvang moet groter dan 0 zijn."
    return errors
