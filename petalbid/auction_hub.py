"""
Real-time auction hub.

Browsers (the Streamlit app) connect over websockets to
``ws://HUB_HOST:HUB_PORT/auctionHub?access_token=<jwt>``, join an auction
group and receive the clock events broadcast by ``AuctionClockService``.

Client -> hub:  {"type": "PlaceBid", "auctionId": 3, "quantity": 20}
Hub -> client:  {"event": "LotSold", "data": {...}}
"""
import asyncio
import json
import logging
import queue
import threading
from collections import defaultdict
from urllib.parse import parse_qs, urlencode, urlsplit

import websockets
from websockets.asyncio.server import serve
from websockets.sync.client import connect as ws_connect

from petalbid import config, services
from petalbid.api_client import get_client
from petalbid.clock_service import AuctionClockService, group_name
from petalbid.lot_store import MongoLotStore
from petalbid.models import Product, UserRole

log = logging.getLogger(__name__)

NOT_CONNECTED = "Niet verbonden met de veilinghub."


def encode(event: str, data=None) -> str:
    return json.dumps({"event": event, "data": data}, default=str)


def token_from_path(path: str):
    query = parse_qs(urlsplit(path or "").query)
    values = query.get("access_token")
    return values[0] if values else None


def authenticate_user(user_id, token):
    """The token is only trusted if the backend hands out that user with it."""
    if not token or user_id is None:
        return None
    res = services.get_user(user_id, token=token)
    if not res.ok:
        log.warning(f"Hub identify rejected for user {user_id}: {res.error}")
        return None
    return res.data


def fetch_auction_lots(auction_id: int, token: str) -> list:
    res = get_client().get("/products", auth=True, token=token, fallback="Producten ophalen mislukt.")
    if not res.ok:
        log.error(f"Could not load lots for auction {auction_id}: {res.error}")
        return []
    return [p for p in map(Product.from_dict, res.data or []) if p.auction_id == auction_id]


class Connection:
    def __init__(self, websocket, token: str = None):
        self.websocket = websocket
        self.token = token
        self.user = None
        self.groups = set()

    @property
    def remote(self):
        return getattr(self.websocket, "remote_address", None)


class AuctionHub:
    def __init__(self, store, authenticate=authenticate_user, fetch_lots=fetch_auction_lots, **clock_options):
        self.store = store
        self.authenticate = authenticate
        self.fetch_lots = fetch_lots
        self.groups = defaultdict(set)
        self.clock = AuctionClockService(store, self.broadcast, **clock_options)

        self._handlers = {
            "Identify": self.on_identify,
            "JoinAuctionGroup": self.on_join,
            "LeaveAuctionGroup": self.on_leave,
            "PlaceBid": self.on_place_bid,
            "StartAuction": self.on_start,
            "PauseAuction": self.on_pause,
            "EndAuction": self.on_end,
            "NextLot": self.on_next_lot,
        }

    # ------------------------------
    # Sending
    # ------------------------------
    async def send(self, conn: Connection, event: str, data=None) -> bool:
        try:
            await conn.websocket.send(encode(event, data))
            return True
        except websockets.exceptions.ConnectionClosed:
            return False
        except Exception as e:
            log.warning(f"Error sending to WebSocket {conn.remote}: {e}")
            return False

    async def broadcast(self, group: str, event: str, data=None):
        members = self.groups.get(group)
        if not members:
            return
        disconnected = set()
        for conn in list(members):
            if not await self.send(conn, event, data):
                disconnected.add(conn)
        for conn in disconnected:
            self.drop(conn)

    # ------------------------------
    # Connections
    # ------------------------------
    async def handle(self, websocket):
        path = websocket.request.path if websocket.request else ""
        if urlsplit(path).path != config.HUB_PATH:
            await websocket.close(1008, "Onbekend pad")
            return

        conn = Connection(websocket, token_from_path(path))
        log.info(f"WebSocket client connected from {conn.remote}")
        try:
            async for message in websocket:
                await self.dispatch(conn, message)
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception as e:
            log.warning(f"WebSocket error: {e}")
        finally:
            self.drop(conn)
            log.info(f"WebSocket client disconnected from {conn.remote}")

    def drop(self, conn: Connection):
        for group in list(conn.groups):
            members = self.groups.get(group)
            if members is not None:
                members.discard(conn)
                if not members:
                    del self.groups[group]
        conn.groups.clear()

    async def dispatch(self, conn: Connection, raw):
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            await self.send(conn, "Error", "Ongeldig bericht.")
            return
        if not isinstance(msg, dict):
            await self.send(conn, "Error", "Ongeldig bericht.")
            return

        handler = self._handlers.get(msg.get("type"))
        if handler is None:
            await self.send(conn, "Error", f"Onbekend berichttype: {msg.get('type')}")
            return
        log.debug(f"WS message from {conn.remote}: {msg}")
        await handler(conn, msg)

    # ------------------------------
    # Handlers
    # ------------------------------
    async def on_identify(self, conn: Connection, msg: dict):
        user = await asyncio.to_thread(self.authenticate, msg.get("userId"), conn.token)
        if user is None:
            await self.send(conn, "Error", "Niet geautoriseerd.")
            return
        conn.user = user
        log.info(f"{user.full_name} identified from {conn.remote}")
        await self.send(conn, "Identified", user.to_dict())

    async def on_join(self, conn: Connection, msg: dict):
        auction_id = await self._auction_id(conn, msg)
        if auction_id is None:
            return
        group = group_name(auction_id)
        self.groups[group].add(conn)
        conn.groups.add(group)
        state = self.clock.get_state(auction_id)
        if state is not None:
            await self.send(conn, "AuctionState", state.to_dict())

    async def on_leave(self, conn: Connection, msg: dict):
        auction_id = await self._auction_id(conn, msg)
        if auction_id is None:
            return
        group = group_name(auction_id)
        conn.groups.discard(group)
        members = self.groups.get(group)
        if members is not None:
            members.discard(conn)
            if not members:
                del self.groups[group]

    async def on_place_bid(self, conn: Connection, msg: dict):
        if conn.user is None or conn.user.role != UserRole.Buyer:
            await self.send(conn, "BidRejected", "Alleen kopers kunnen bieden.")
            return
        auction_id = await self._auction_id(conn, msg)
        if auction_id is None:
            return
        try:
            quantity = int(msg.get("quantity"))
        except (TypeError, ValueError):
            await self.send(conn, "BidRejected", "Ongeldig aantal.")
            return

        result = await self.clock.process_bid(auction_id, conn.user.id, conn.user.full_name, quantity)
        if not result.success:
            await self.send(conn, "BidRejected", result.message)

    async def on_start(self, conn: Connection, msg: dict):
        auction_id = await self._auctioneer_auction_id(conn, msg)
        if auction_id is None:
            return
        if self.clock.get_state(auction_id) is None:
            lots = await asyncio.to_thread(self.fetch_lots, auction_id, conn.token)
            await asyncio.to_thread(self.store.sync_lots, auction_id, lots)
        await self.clock.start_auction(auction_id)

    async def on_pause(self, conn: Connection, msg: dict):
        auction_id = await self._auctioneer_auction_id(conn, msg)
        if auction_id is not None:
            await self.clock.pause_auction(auction_id)

    async def on_end(self, conn: Connection, msg: dict):
        auction_id = await self._auctioneer_auction_id(conn, msg)
        if auction_id is not None:
            await self.clock.stop_auction(auction_id)

    async def on_next_lot(self, conn: Connection, msg: dict):
        auction_id = await self._auctioneer_auction_id(conn, msg)
        if auction_id is not None:
            await self.clock.move_to_next_lot(auction_id)

    async def _auction_id(self, conn: Connection, msg: dict):
        try:
            return int(msg.get("auctionId"))
        except (TypeError, ValueError):
            await self.send(conn, "Error", "Ongeldige veiling.")
            return None

    async def _auctioneer_auction_id(self, conn: Connection, msg: dict):
        if conn.user is None or conn.user.role != UserRole.Auctioneer:
            await self.send(conn, "Error", "Alleen veilingmeesters kunnen de klok bedienen.")
            return None
        return await self._auction_id(conn, msg)


# ------------------------------
# UI-side client
# ------------------------------
class HubClient:
    """Blocking websocket client for Streamlit; a reader thread fills ``message_queue``."""

    def __init__(self, url: str = None):
        self.url = url or config.HUB_URL
        self.websocket = None
        self.connected = False
        self.message_queue = queue.Queue()
        self.error = None
        self._reader = None

    def connect(self, token: str, user_id: int):
        try:
            self.websocket = ws_connect(f"{self.url}?{urlencode({'access_token': token})}", open_timeout=5)
            self.websocket.send(json.dumps({"type": "Identify", "userId": user_id}))
            self.connected = True
            self.error = None
        except (OSError, websockets.exceptions.WebSocketException) as e:
            self.connected = False
            self.error = str(e)
            if self.websocket:
                self.websocket.close()
                self.websocket = None
            log.error(f"Could not connect to auction hub at {self.url}: {e}")
            return False, str(e)

        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()
        return True, None

    def _read_loop(self):
        try:
            for raw in self.websocket:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    log.warning(f"Ignoring malformed hub message: {raw!r}")
                    continue
                self.message_queue.put((msg.get("event"), msg.get("data")))
        except websockets.exceptions.ConnectionClosed as e:
            self.error = str(e)
        finally:
            self.connected = False

    def send(self, msg_type: str, **fields):
        if not self.connected or not self.websocket:
            return False, NOT_CONNECTED
        try:
            self.websocket.send(json.dumps({"type": msg_type, **fields}))
            return True, None
        except (OSError, websockets.exceptions.ConnectionClosed) as e:
            self.connected = False
            return False, str(e)

    def join(self, auction_id: int):
        return self.send("JoinAuctionGroup", auctionId=auction_id)

    def leave(self, auction_id: int):
        return self.send("LeaveAuctionGroup", auctionId=auction_id)

    def place_bid(self, auction_id: int, quantity: int):
        return self.send("PlaceBid", auctionId=auction_id, quantity=quantity)

    def start_auction(self, auction_id: int):
        return self.send("StartAuction", auctionId=auction_id)

    def pause_auction(self, auction_id: int):
        return self.send("PauseAuction", auctionId=auction_id)

    def end_auction(self, auction_id: int):
        return self.send("EndAuction", auctionId=auction_id)

    def next_lot(self, auction_id: int):
        return self.send("NextLot", auctionId=auction_id)

    def drain(self) -> list:
        events = []
        while True:
            try:
                events.append(self.message_queue.get_nowait())
            except queue.Empty:
                return events

    def disconnect(self):
        if self.websocket:
            self.websocket.close()
        self.connected = False
        self.websocket = None


# ------------------------------
# Server entry point
# ------------------------------
async def main(host: str = None, port: int = None):
    host = host or config.HUB_HOST
    port = port or config.HUB_PORT
    store = MongoLotStore()
    store.ensure_indexes()
    hub = AuctionHub(store)

    log.info(f"Starting WebSocket server on ws://{host}:{port}{config.HUB_PATH}")
    ws_server = await serve(hub.handle, host, port)
    log.info("WebSocket server ready")
    try:
        await ws_server.serve_forever()
    except asyncio.CancelledError:
        log.info("Hub cancelled")
    finally:
        hub.clock.shutdown()
        ws_server.close()
        await ws_server.wait_closed()
        log.info("Shutdown complete")


def run():
    config.setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Shutting down gracefully...")
    except Exception as e:
        log.exception(f"Fatal error: {e}")


if __name__ == "__main__":
    run()
