"""Client-side preferences cache.

Two tiers: the server is authoritative, the local cache serves offline reads
and takes every write immediately. Reconciliation is last-write-wins on the
next successful :meth:`PreferencesCache.load`.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol

from src.client.api import APIClientError
from src.session.channel import BroadcastChannel, ChannelMessage
from src.storage.kv import KeyValueStorage
from src.utils.logger import get_logger

LOGGER = get_logger("airad.preferences")

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "theme": "light",
    "defaultTemplate": None,
    "autoSave": True,
    "yoloMode": False,
    "onboardingCompleted": False,
    "compactMode": False,
}
CLIENT_ONLY_KEYS = frozenset({"compactMode"})
VALID_THEMES = ("light", "dark", "system")


class PreferencesRemote(Protocol):
    def fetch_preferences(self) -> Dict[str, Any]: ...

    def update_preferences(self, changes: Dict[str, Any]) -> Dict[str, Any]: ...


def storage_key(user_id: Optional[str]) -> str:
    return f"ai-rad-preferences-{user_id}" if user_id else "ai-rad-preferences"


class PreferencesCache:
    def __init__(
        self,
        storage: KeyValueStorage,
        remote: Optional[PreferencesRemote] = None,
        *,
        channel: Optional[BroadcastChannel] = None,
        origin: Optional[str] = None,
    ) -> None:
        self._storage = storage
        self._remote = remote
        self._channel = channel
        self.origin = origin
        self._user_id: Optional[str] = None
        self._preferences: Dict[str, Any] = dict(DEFAULT_PREFERENCES)
        self._listeners: list[Callable[[Dict[str, Any]], Any]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        if channel is not None:
            self._unsubscribe = channel.subscribe(self._on_channel_message)

    @property
    def preferences(self) -> Dict[str, Any]:
        return dict(self._preferences)

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def load(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Populate in-memory state from the server, falling back to the cache."""

        self._user_id = user_id
        cached = self._read_cache()

        if user_id and self._remote is not None:
            try:
                server = self._remote.fetch_preferences()
            except APIClientError as exc:
                LOGGER.warning(
                    "Failed to fetch preferences; using local cache.",
                    extra={"context": {"user_id": user_id, "error": str(exc)}},
                )
            else:
                merged = self._with_defaults(
                    {key: value for key, value in server.items() if key not in CLIENT_ONLY_KEYS}
                )
                for key in CLIENT_ONLY_KEYS:
                    if key in cached:
                        merged[key] = cached[key]
                self._preferences = merged
                self._storage.set(storage_key(user_id), dict(merged))
                self._notify()
                return self.preferences

        self._preferences = self._with_defaults(cached)
        self._notify()
        return self.preferences

    def update(self, key: str, value: Any) -> Dict[str, Any]:
        """Apply a change locally, broadcast it, then push it to the server."""

        if key not in DEFAULT_PREFERENCES:
            raise ValueError(f"Unknown preference '{key}'.")
        if key == "theme" and value not in VALID_THEMES:
            raise ValueError("Invalid theme value. Must be light, dark, or system.")

        self._preferences = {**self._preferences, key: value}
        snapshot = dict(self._preferences)
        cache_key = storage_key(self._user_id)
        self._storage.set(cache_key, snapshot)
        if self._channel is not None:
            self._channel.publish(ChannelMessage(key=cache_key, value=snapshot, origin=self.origin))
        self._notify()

        if key in CLIENT_ONLY_KEYS:
            return self.preferences
        if not self._user_id or self._remote is None:
            LOGGER.debug("No signed-in user; preference kept locally.", extra={"context": {"key": key}})
            return self.preferences

        try:
            self._remote.update_preferences({key: value})
        except APIClientError as exc:
            LOGGER.error(
                "Failed to save preference to server.",
                extra={"context": {"key": key, "error": str(exc)}},
            )
        return self.preferences

    def resolved_theme(self, system_theme: str = "light") -> str:
        theme = self._preferences.get("theme", "light")
        return system_theme if theme == "system" else theme

    def on_change(self, listener: Callable[[Dict[str, Any]], Any]) -> None:
        self._listeners.append(listener)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_channel_message(self, message: ChannelMessage) -> None:
        if message.origin == self.origin or message.key != storage_key(self._user_id):
            return
        if not isinstance(message.value, dict):
            return
        self._preferences = self._with_defaults(message.value)
        self._notify()

    def _read_cache(self) -> Dict[str, Any]:
        stored = self._storage.get(storage_key(self._user_id))
        if not isinstance(stored, dict):
            return {}
        return {key: value for key, value in stored.items() if key in DEFAULT_PREFERENCES}

    @staticmethod
    def _with_defaults(values: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(DEFAULT_PREFERENCES)
        merged.update({key: value for key, value in values.items() if key in DEFAULT_PREFERENCES})
        return merged

    def _notify(self) -> None:
        snapshot = self.preferences
        for listener in list(self._listeners):
            listener(snapshot)
