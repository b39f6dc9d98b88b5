import os
import logging
from pathlib import Path

# ------------------------------
# REST backend
# ------------------------------
API_BASE_URL = os.getenv("PETALBID_API_BASE_URL", "http://localhost:5048/api")
API_TIMEOUT = float(os.getenv("PETALBID_API_TIMEOUT", "10"))

# ------------------------------
# Auction hub (websockets)
# ------------------------------
HUB_HOST = os.getenv("PETALBID_HUB_HOST", "0.0.0.0")
HUB_PORT = int(os.getenv("PETALBID_HUB_PORT", 8765))
HUB_PATH = "/auctionHub"
HUB_URL = os.getenv("PETALBID_HUB_URL", f"ws://localhost:{HUB_PORT}{HUB_PATH}")

# ------------------------------
# Lot store (MongoDB)
# ------------------------------
MONGO_URI = os.getenv("PETALBID_MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("PETALBID_MONGO_DB", "petalbid")
MONGO_TIMEOUT_MS = int(os.getenv("PETALBID_MONGO_TIMEOUT_MS", 3000))

# Browser localStorage equivalent, one file per Streamlit session
STORAGE_DIR = Path(os.getenv("PETALBID_STORAGE_DIR", Path.home() / ".petalbid" / "sessions"))

LOG_LEVEL = os.getenv("PETALBID_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"

# ------------------------------
# Dutch clock (hub side)
# ------------------------------
CLOCK_PRICE_STEP = 0.01          # € per tick
CLOCK_TICK_RATE_MS = 250         # 4 ticks per second
CLOCK_GRACE_PERIOD_MS = 5000     # side-buy window after a first buy
CLOCK_DEFAULT_START_PRICE = 2.00 # when a lot has no max price per unit

# UI refresh while a live clock is on screen
UI_CLOCK_REFRESH_MS = 500


def setup_logging(level: str = None):
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
