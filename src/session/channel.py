"""Publish/subscribe channel used to coordinate state between browser tabs."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol

from src.utils.logger import get_logger

LOGGER = get_logger("airad.session.channel")


@dataclass(frozen=True)
class ChannelMessage:
    """A single broadcast carrying a storage key and its new value.

    ``value`` is ``None`` when the key was removed. ``origin`` identifies the
    tab that produced the change so receivers can ignore their own writes.
    """

    key: str
    value: Any
    origin: Optional[str] = None


Subscriber = Callable[[ChannelMessage], None]


class BroadcastChannel(Protocol):
    def publish(self, message: ChannelMessage) -> None: ...

    def subscribe(self, callback: Subscriber) -> Callable[[], None]: ...


class InMemoryBroadcastChannel:
    """Deliver messages synchronously to every subscriber in this process."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def publish(self, message: ChannelMessage) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(message)
            except Exception:  # keep delivering to the remaining subscribers
                LOGGER.exception(
                    "Channel subscriber failed.",
                    extra={"context": {"key": message.key, "origin": message.origin}},
                )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
