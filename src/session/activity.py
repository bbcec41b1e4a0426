"""Activity tracking for session timeout handling.

The last interaction time is written to persistent client storage and
mirrored in the ``session-timestamp`` cookie so request handlers can judge
staleness on their own.
"""

from __future__ import annotations

from http.cookiejar import Cookie
from typing import Any, Dict, Optional

import httpx

from src.session.scheduler import Clock, system_clock
from src.storage.kv import KeyValueStorage
from src.utils.logger import get_logger

LOGGER = get_logger("airad.session.activity")

SESSION_TIMEOUT_MS = 30 * 60 * 1000
WARNING_BEFORE_MS = 5 * 60 * 1000
LAST_ACTIVITY_KEY = "ai-rad-last-activity"
SESSION_TIMESTAMP_COOKIE = "session-timestamp"


def parse_session_timestamp(raw: Any) -> Optional[int]:
    """Parse a stored or cookie timestamp; ``None`` when absent or malformed."""

    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def is_session_expired(
    last_activity: Optional[int],
    *,
    now: Optional[int] = None,
    timeout_ms: int = SESSION_TIMEOUT_MS,
) -> bool:
    """Server-side staleness check; a missing timestamp counts as expired."""

    if last_activity is None:
        return True
    current = system_clock() if now is None else now
    return current - last_activity >= timeout_ms


class ActivityTracker:
    """Record and query the last user interaction for one browser profile."""

    def __init__(
        self,
        storage: KeyValueStorage,
        cookies: Optional[httpx.Cookies] = None,
        *,
        clock: Clock = system_clock,
        timeout_ms: int = SESSION_TIMEOUT_MS,
        cookie_domain: str = "",
    ) -> None:
        self._storage = storage
        self.cookies = cookies if cookies is not None else httpx.Cookies()
        self._clock = clock
        self.timeout_ms = timeout_ms
        self._cookie_domain = cookie_domain

    @property
    def cookie_max_age(self) -> int:
        """Cookie lifetime in seconds, equal to the timeout window."""

        return self.timeout_ms // 1000

    def now(self) -> int:
        return self._clock()

    def record_activity(self, timestamp: Optional[int] = None) -> int:
        stamp = self._clock() if timestamp is None else timestamp
        self._storage.set(LAST_ACTIVITY_KEY, stamp)
        self._set_cookie(stamp)
        return stamp

    def last_activity(self) -> int:
        stored = parse_session_timestamp(self._storage.get(LAST_ACTIVITY_KEY))
        if stored is None:
            return self._clock()
        return stored

    def is_expired(self) -> bool:
        return self._clock() - self.last_activity() >= self.timeout_ms

    def clear(self) -> None:
        self._storage.remove(LAST_ACTIVITY_KEY)
        self.cookies.delete(SESSION_TIMESTAMP_COOKIE)

    def session_status(self) -> Dict[str, Any]:
        stored = parse_session_timestamp(self._storage.get(LAST_ACTIVITY_KEY))
        if stored is None:
            return {"expired": False, "lastActivity": None, "timeSinceActivity": 0}
        elapsed = self._clock() - stored
        return {
            "expired": elapsed >= self.timeout_ms,
            "lastActivity": stored,
            "timeSinceActivity": elapsed,
        }

    def _set_cookie(self, stamp: int) -> None:
        self.cookies.delete(SESSION_TIMESTAMP_COOKIE)
        expires = stamp // 1000 + self.cookie_max_age
        cookie = Cookie(
            version=0,
            name=SESSION_TIMESTAMP_COOKIE,
            value=str(stamp),
            port=None,
            port_specified=False,
            domain=self._cookie_domain,
            domain_specified=bool(self._cookie_domain),
            domain_initial_dot=False,
            path="/",
            path_specified=True,
            secure=False,
            expires=expires,
            discard=False,
            comment=None,
            comment_url=None,
            rest={"SameSite": "Strict"},
        )
        self.cookies.jar.set_cookie(cookie)
        LOGGER.debug(
            "Recorded session activity.",
            extra={"context": {"timestamp": stamp, "max_age": self.cookie_max_age}},
        )
