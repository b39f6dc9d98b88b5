"""
Authentication state for the front-end (user + token, persisted to local storage).
"""
import json
import logging
import threading
from concurrent.futures import Future
from enum import Enum

from petalbid import services
from petalbid.api_client import NETWORK_ERROR
from petalbid.local_storage import TOKEN_KEY, USER_KEY
from petalbid.models import User

log = logging.getLogger(__name__)

LOADING_TEXT = "Authenticatie controleren..."

# Validations in flight, keyed by (user id, token). Concurrent callers for the
# same login share one request; nothing is kept once it has answered.
_validation_lock = threading.Lock()
_validations = {}


class AccessDecision(Enum):
    LOADING = "loading"
    LOGIN = "login"
    FORBIDDEN = "forbidden"
    ALLOWED = "allowed"


class AuthSession:
    def __init__(self, storage):
        self.storage = storage
        self.user = self._load_user()
        self.token = self.storage.get_item(TOKEN_KEY)
        self.is_loading = True

    def _load_user(self):
        raw = self.storage.get_item(USER_KEY)
        if not raw:
            return None
        try:
            return User.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            log.warning(f"Stored user is unreadable, treating session as logged out: {e}")
            return None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def login(self, email: str, password: str, two_factor_code: str = None):
        """Returns (success, error_message)."""
        res = services.login(email, password, two_factor_code)
        if not res.ok:
            return False, res.error
        self.user = res.data["user"]
        self.token = res.data["token"]
        self.storage.set_item(USER_KEY, json.dumps(self.user.to_dict()))
        self.storage.set_item(TOKEN_KEY, self.token)
        reset_validation()
        self.is_loading = False
        log.info(f"User {self.user.email} logged in as {self.user.role.name}")
        return True, None

    def logout(self):
        self.user = None
        self.token = None
        self.storage.remove_item(USER_KEY)
        self.storage.remove_item(TOKEN_KEY)
        reset_validation()

    def update_user(self, user: User):
        self.user = user
        self.storage.set_item(USER_KEY, json.dumps(user.to_dict()))

    def validate_session(self) -> bool:
        """
        Re-check a stored session against the backend, once per AuthSession.
        A rejected session is logged out; a network failure keeps it.
        """
        if not self.is_loading:
            return self.user is not None
        if self.user is None or not self.token:
            self.is_loading = False
            return self.user is not None

        key = (self.user.id, self.token)
        with _validation_lock:
            pending = _validations.get(key)
            owner = pending is None
            if owner:
                pending = _validations[key] = Future()

        if owner:
            try:
                res = services.get_user(self.user.id, token=self.token)
            except Exception as e:
                pending.set_exception(e)
                raise
            finally:
                with _validation_lock:
                    if _validations.get(key) is pending:
                        del _validations[key]
            if res.ok:
                result = "valid"
            elif res.error == NETWORK_ERROR:
                result = "unknown"
            else:
                result = "rejected"
            pending.set_result((result, res.data if res.ok else None))

        result, fresh_user = pending.result()
        if result == "valid" and fresh_user is not None:
            self.update_user(fresh_user)
        elif result == "rejected":
            log.info("Stored session was rejected by the backend, logging out")
            self.logout()
        self.is_loading = False
        return self.user is not None


def reset_validation():
    with _validation_lock:
        _validations.clear()


def check_access(user, allowed_roles=None, is_loading: bool = False) -> AccessDecision:
    if is_loading:
        return AccessDecision.LOADING
    if user is None:
        return AccessDecision.LOGIN
    if allowed_roles and user.role not in allowed_roles:
        return AccessDecision.FORBIDDEN
    return AccessDecision.ALLOWED
