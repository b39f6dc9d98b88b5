"""
Alert queue, error-page texts, page titles and euro formatting.
"""
import logging
from dataclasses import dataclass

log = logging.getLogger(__name__)

SITE_NAME = "PetalBid"

ERROR_MESSAGES = {
    403: "Toegang geweigerd",
    404: "Pagina niet gevonden",
}
DEFAULT_ERROR = "Er is een fout opgetreden"


@dataclass
class Alert:
    title: str
    message: str
    severity: str = "error"  # error | warning | info | success


class AlertCenter:
    def __init__(self):
        self._pending = []

    def show_alert(self, title: str, message: str, severity: str = "error"):
        self._pending.append(Alert(title, message, severity))

    def alert_from_response(self, response, title: str = "Fout") -> bool:
        """Queue an alert when ``response`` carries an error. Returns True if it did."""
        if response.ok:
            return False
        log.info(f"{title}: {response.error}")
        self.show_alert(title, response.error)
        return True

    def drain(self) -> list:
        pending, self._pending = self._pending, []
        return pending

    def __len__(self):
        return len(self._pending)


def error_page_message(status_code: int) -> str:
    return ERROR_MESSAGES.get(status_code, DEFAULT_ERROR)


def error_image_url(status_code: int) -> str:
    return f"https://http.garden/{status_code}.avif"


def page_title(path: str, title_map: dict) -> str:
    title = title_map.get(path)
    return f"{title} | {SITE_NAME}" if title else SITE_NAME


def euro(amount) -> str:
    """nl-NL currency: € 1.234,56"""
    value = float(amount or 0)
    sign = "-" if value < 0 else ""
    whole, frac = f"{abs(value):,.2f}".split(".")
    return f"{sign}€ {whole.replace(',', '.')},{frac}"
