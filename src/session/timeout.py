"""Session timeout supervisor.

Arms a deadline timer and a pre-expiry warning timer against the
:class:`~src.session.activity.ActivityTracker`, re-arms them on qualifying
interaction, and signs the user out once the deadline passes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional

from src.session.activity import LAST_ACTIVITY_KEY, WARNING_BEFORE_MS, ActivityTracker, parse_session_timestamp
from src.session.channel import BroadcastChannel, ChannelMessage
from src.session.scheduler import Scheduler, TimerHandle
from src.utils.logger import get_logger

LOGGER = get_logger("airad.session.timeout")

ACTIVITY_EVENTS = frozenset({"pointerdown", "pointermove", "keydown", "scroll", "touchstart", "click"})
SESSION_WARNING_EVENT = "session-warning"


class SessionState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    WARNING_FIRED = "warning_fired"
    EXPIRED = "expired"


class SessionTimeoutSupervisor:
    """Per-tab state machine guarding one authenticated session."""

    def __init__(
        self,
        tracker: ActivityTracker,
        scheduler: Scheduler,
        sign_out: Callable[[], Any],
        *,
        channel: Optional[BroadcastChannel] = None,
        origin: Optional[str] = None,
        warning_before_ms: int = WARNING_BEFORE_MS,
        on_warning: Optional[Callable[[int], Any]] = None,
    ) -> None:
        self._tracker = tracker
        self._scheduler = scheduler
        self._sign_out = sign_out
        self._channel = channel
        self.origin = origin
        self._warning_before_ms = warning_before_ms
        self._on_warning = on_warning

        self._state = SessionState.IDLE
        self._deadline: Optional[TimerHandle] = None
        self._warning: Optional[TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._armed_from: Optional[int] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.ARMED, SessionState.WARNING_FIRED)

    def start(self) -> SessionState:
        """Enter the armed state for a newly present user."""

        if self._state != SessionState.IDLE:
            return self._state

        if self._tracker.is_expired():
            LOGGER.info("Session already expired at start; signing out.")
            self._expire()
            return self._state

        if self._channel is not None:
            self._unsubscribe = self._channel.subscribe(self._on_channel_message)

        self._state = SessionState.ARMED
        self._rearm(self._tracker.record_activity())
        return self._state

    def handle_event(self, event_type: str) -> bool:
        """Feed an interaction event; return whether it re-armed the timers."""

        if event_type not in ACTIVITY_EVENTS or not self.is_active:
            return False
        stamp = self._tracker.record_activity()
        self._state = SessionState.ARMED
        self._rearm(stamp)
        return True

    def stop(self) -> None:
        """Tear down timers and subscriptions after the user signs out."""

        self._cancel_timers()
        self._detach()
        self._armed_from = None
        self._state = SessionState.IDLE

    def _on_channel_message(self, message: ChannelMessage) -> None:
        if message.key != LAST_ACTIVITY_KEY or message.origin == self.origin:
            return
        if not self.is_active:
            return
        stamp = parse_session_timestamp(message.value)
        if stamp is None:
            return
        # Another tab can only push the deadline back.
        stamp = max(stamp, self._tracker.last_activity())
        if self._armed_from is not None and stamp <= self._armed_from:
            return
        LOGGER.debug(
            "Activity from another tab; re-arming session timers.",
            extra={"context": {"origin": message.origin, "timestamp": stamp}},
        )
        self._state = SessionState.ARMED
        self._rearm(stamp)

    def _rearm(self, stamp: int) -> None:
        self._cancel_timers()
        self._armed_from = stamp
        remaining_ms = stamp + self._tracker.timeout_ms - self._tracker.now()
        self._deadline = self._scheduler.call_later(remaining_ms / 1000.0, self._on_deadline)

        warning_ms = remaining_ms - self._warning_before_ms
        if self._tracker.timeout_ms - self._warning_before_ms > 0 and warning_ms > 0:
            self._warning = self._scheduler.call_later(warning_ms / 1000.0, self._on_warning_timer)

    def _on_warning_timer(self) -> None:
        self._warning = None
        if self._state != SessionState.ARMED:
            return
        self._state = SessionState.WARNING_FIRED
        minutes_remaining = self._warning_before_ms // 60000
        LOGGER.info(
            "Session will expire soon.",
            extra={"context": {"minutes_remaining": minutes_remaining}},
        )
        if self._channel is not None:
            self._channel.publish(
                ChannelMessage(
                    key=SESSION_WARNING_EVENT,
                    value={"minutesRemaining": minutes_remaining},
                    origin=self.origin,
                )
            )
        if self._on_warning is not None:
            self._on_warning(minutes_remaining)

    def _on_deadline(self) -> None:
        self._deadline = None
        if not self.is_active:
            return
        LOGGER.info("Session expired due to inactivity.")
        self._expire()

    def _expire(self) -> None:
        self._cancel_timers()
        self._detach()
        self._tracker.clear()
        self._state = SessionState.EXPIRED
        self._sign_out()

    def _cancel_timers(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._warning is not None:
            self._warning.cancel()
            self._warning = None

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
