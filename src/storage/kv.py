"""Client-side key/value storage backends.

These mirror the two browser storage areas the session layer relies on:
session-scoped storage (cleared when the tab closes) and persistent local
storage. Values are JSON-serialisable objects.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from src.session.channel import BroadcastChannel, ChannelMessage
from src.utils.logger import get_logger

LOGGER = get_logger("airad.storage")


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Volatile storage held in process memory."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data


class FileStorage:
    """Persistent storage backed by a single JSON document on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning(
                "Failed to read storage file; starting empty.",
                extra={"context": {"path": str(self._path), "error": str(exc)}},
            )
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, default=str), encoding="utf-8")


class ObservableStorage:
    """Storage wrapper that broadcasts every write on a channel.

    Several tabs share one backing store; each wraps it with its own ``origin``
    so receivers can tell local writes from remote ones.
    """

    def __init__(self, backend: KeyValueStorage, channel: BroadcastChannel, origin: str) -> None:
        self._backend = backend
        self._channel = channel
        self.origin = origin

    @property
    def channel(self) -> BroadcastChannel:
        return self._channel

    def get(self, key: str) -> Any:
        return self._backend.get(key)

    def set(self, key: str, value: Any) -> None:
        self._backend.set(key, value)
        self._channel.publish(ChannelMessage(key=key, value=value, origin=self.origin))

    def remove(self, key: str) -> None:
        self._backend.remove(key)
        self._channel.publish(ChannelMessage(key=key, value=None, origin=self.origin))
