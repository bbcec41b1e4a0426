"""CSRF token store and form guard.

The token lives in session-scoped storage: one active token per browser
session, created lazily and rotated explicitly. Forms embed it in a hidden
``_csrf`` field and API calls send it in the ``x-csrf-token`` header.
"""

from __future__ import annotations

import random
import time
import uuid
from html import escape
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from src.storage.kv import KeyValueStorage
from src.utils.logger import get_logger

LOGGER = get_logger("airad.session.csrf")

CSRF_TOKEN_KEY = "ai-rad-csrf-token"
CSRF_HEADER = "x-csrf-token"
CSRF_FIELD = "_csrf"
CSRF_COOKIE = "csrf-token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

T = TypeVar("T")


class CsrfError(RuntimeError):
    """Raised when a form submission carries a missing or invalid token."""

    def __init__(self, message: str = "Invalid security token. Please refresh the page and try again.") -> None:
        super().__init__(message)
        self.message = message


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, remainder = divmod(value, 36)
        out.append(digits[remainder])
    return "".join(reversed(out))


def _fallback_token() -> str:
    random_part = _to_base36(random.getrandbits(64))
    time_part = _to_base36(int(time.time() * 1000))
    return f"csrf-{random_part}{time_part}"


def generate_token() -> str:
    """Return a new random token, preferring the OS randomness source."""

    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        LOGGER.warning("OS randomness unavailable; using fallback CSRF token generator.")
        return _fallback_token()


def requires_csrf_protection(method: str) -> bool:
    """Return whether requests with ``method`` change state."""

    return method.upper() not in SAFE_METHODS


class TokenStore:
    """Per-session CSRF token held in session-scoped storage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self._storage = storage
        self._token_factory = token_factory

    def get_or_create_token(self) -> str:
        token = self._storage.get(CSRF_TOKEN_KEY)
        if isinstance(token, str) and token:
            return token
        token = self._token_factory()
        self._storage.set(CSRF_TOKEN_KEY, token)
        LOGGER.debug("Created CSRF token for session.")
        return token

    def regenerate(self) -> str:
        self._storage.remove(CSRF_TOKEN_KEY)
        return self.get_or_create_token()

    def clear(self) -> None:
        self._storage.remove(CSRF_TOKEN_KEY)

    def validate(self, candidate: Optional[str]) -> bool:
        """Compare ``candidate`` to the stored token without early exit on content."""

        if not candidate:
            LOGGER.warning("CSRF validation failed.", extra={"context": {"reason": "missing_token"}})
            return False

        stored = self._storage.get(CSRF_TOKEN_KEY)
        if not stored:
            LOGGER.warning("CSRF validation failed.", extra={"context": {"reason": "no_stored_token"}})
            return False

        if len(candidate) != len(stored):
            LOGGER.warning("CSRF validation failed.", extra={"context": {"reason": "length_mismatch"}})
            return False

        result = 0
        for left, right in zip(candidate, stored):
            result |= ord(left) ^ ord(right)

        if result != 0:
            LOGGER.warning("CSRF validation failed.", extra={"context": {"reason": "token_mismatch"}})
            return False
        return True


def csrf_headers(store: TokenStore) -> Dict[str, str]:
    """Headers to attach to state-changing API requests."""

    return {CSRF_HEADER: store.get_or_create_token()}


class CsrfGuard:
    """Form-level integration of :class:`TokenStore`.

    ``mount`` re-reads the token into the bound field value, the same way a
    form re-renders its hidden input. ``protect`` is the submit path: it
    validates the posted field and only then runs the state-changing action.
    """

    def __init__(self, store: TokenStore) -> None:
        self._store = store
        self._token = ""

    def mount(self) -> str:
        self._token = self._store.get_or_create_token()
        return self._token

    @property
    def token(self) -> str:
        return self._token

    @property
    def field_name(self) -> str:
        return CSRF_FIELD

    def hidden_field(self) -> str:
        return f'<input type="hidden" name="{CSRF_FIELD}" value="{escape(self._token, quote=True)}">'

    def validate_token(self, candidate: Optional[str]) -> bool:
        return self._store.validate(candidate)

    def regenerate_token(self) -> str:
        self._token = self._store.regenerate()
        return self._token

    def protect(self, form: Mapping[str, Any], action: Callable[[], T]) -> T:
        candidate = form.get(CSRF_FIELD)
        if not isinstance(candidate, str) or not self.validate_token(candidate):
            raise CsrfError()
        return action()
