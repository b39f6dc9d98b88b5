"""
REST client for the PetalBid backend.

Every call returns an ``ApiResponse`` instead of raising, so pages can show
the error text directly. ``CachedResource`` adds a single-slot cache per
endpoint and shares one in-flight GET between concurrent callers. Caches
belong to one client, so two sessions never read each other's lists.
"""
import contextvars
import logging
import threading
from concurrent.futures import Future

import requests

from petalbid import config
from petalbid.local_storage import TOKEN_KEY
from petalbid.models import ApiResponse

log = logging.getLogger(__name__)

NETWORK_ERROR = "Netwerkfout. Probeer het opnieuw."
NO_TOKEN_ERROR = "Geen authenticatietoken gevonden."


def parse_error(body, reason: str) -> str:
    """message, then validation ``errors``, then the HTTP reason phrase."""
    if isinstance(body, dict):
        if body.get("message"):
            return str(body["message"])
        errors = body.get("errors")
        if errors:
            values = errors.values() if isinstance(errors, dict) else errors
            lines = []
            for v in values:
                lines.append(", ".join(map(str, v)) if isinstance(v, (list, tuple)) else str(v))
            return "\n".join(lines)
    return reason or "Onbekende fout"


class ApiClient:
    """
    One client per front-end session. Without ``storage`` there is no stored
    token and authenticated calls need an explicit ``token``.
    """

    def __init__(self, base_url: str = None, storage=None, session: requests.Session = None, timeout: float = None):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.storage = storage
        self.session = session or requests.Session()
        self.timeout = timeout or config.API_TIMEOUT
        self._resources = {}
        self._resources_lock = threading.Lock()

    @property
    def token(self):
        if self.storage is None:
            return None
        return self.storage.get_item(TOKEN_KEY)

    def headers(self, token: str = None) -> dict:
        token = token or self.token
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def request(self, endpoint: str, method: str = "GET", body=None, *, auth: bool = False, token: str = None, fallback: str = None) -> ApiResponse:
        """
        Send one request. With ``auth=True`` the call is refused locally when
        no token is stored. ``fallback`` replaces the HTTP reason phrase when
        the error body carries no message.
        """
        token = token or self.token
        if auth and not token:
            return ApiResponse(error=NO_TOKEN_ERROR)

        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(
                method,
                url,
                json=body,
                headers=self.headers(token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error(f"API error ({method} {endpoint}): {e}")
            return ApiResponse(error=NETWORK_ERROR)

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}

        if not resp.ok:
            log.warning(f"API {method} {endpoint} failed with {resp.status_code}")
            return ApiResponse(error=parse_error(data, fallback or resp.reason))

        message = data.get("message") if isinstance(data, dict) else None
        return ApiResponse(data=data, message=message)

    def get(self, url: str, **kw) -> ApiResponse:
        return self.request(url, "GET", **kw)

    def post(self, url: str, body=None, **kw) -> ApiResponse:
        return self.request(url, "POST", body, **kw)

    def put(self, url: str, body=None, **kw) -> ApiResponse:
        return self.request(url, "PUT", body, **kw)

    def delete(self, url: str, **kw) -> ApiResponse:
        return self.request(url, "DELETE", **kw)

    def resource(self, endpoint: str, fallback: str = None) -> "CachedResource":
        """The cached GET for ``endpoint``, created on first use."""
        with self._resources_lock:
            resource = self._resources.get(endpoint)
            if resource is None:
                resource = self._resources[endpoint] = CachedResource(endpoint, self, fallback=fallback)
        return resource

    def reset_caches(self):
        with self._resources_lock:
            resources = list(self._resources.values())
        for resource in resources:
            resource.invalidate()


class CachedResource:
    """Cached GET for one endpoint. Stale data is served until invalidated."""

    def __init__(self, endpoint: str, client: ApiClient, auth: bool = True, fallback: str = None):
        self.endpoint = endpoint
        self.client = client
        self.auth = auth
        self.fallback = fallback
        self._cache = None
        self._pending = None
        self._lock = threading.Lock()

    def get(self, force: bool = False) -> ApiResponse:
        with self._lock:
            if not force and self._cache is not None:
                return ApiResponse(data=self._cache)
            if not force and self._pending is not None:
                pending, owner = self._pending, False
            else:
                pending, owner = Future(), True
                self._pending = pending

        if not owner:
            return pending.result()

        try:
            res = self.client.get(self.endpoint, auth=self.auth, fallback=self.fallback)
        except Exception as e:
            with self._lock:
                if self._pending is pending:
                    self._pending = None
            pending.set_exception(e)
            raise

        with self._lock:
            if res.data is not None:
                self._cache = res.data
            if self._pending is pending:
                self._pending = None
        pending.set_result(res)
        return res

    def invalidate(self):
        with self._lock:
            self._cache = None


# The front-end installs its session's client at the start of every script
# run; the hub and other callers without one get a client with no stored token.
_current_client = contextvars.ContextVar("petalbid_api_client", default=None)
_fallback_client = None


def get_client() -> ApiClient:
    global _fallback_client
    client = _current_client.get()
    if client is not None:
        return client
    if _fallback_client is None:
        _fallback_client = ApiClient()
    return _fallback_client


def set_client(client: ApiClient):
    _current_client.set(client)
