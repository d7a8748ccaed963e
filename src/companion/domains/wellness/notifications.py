"""Notification transports for caregiver alerts.

A transport delivers one alert to one caregiver and raises on failure.
:class:`QuietHoursTransport` wraps another transport and holds back
non-critical alerts overnight; critical alerts always go straight through.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from companion.domains.wellness.domain_logic.models import utcnow

logger = logging.getLogger(__name__)


class DeliveryFailed(Exception):
    """Raised by a transport that could not hand an alert over."""


@runtime_checkable
class NotificationTransport(Protocol):
    def deliver(
        self,
        caregiver_id: str,
        title: str,
        message: str,
        priority: str,
        payload: dict[str, Any],
    ) -> None: ...


class LoggingTransport:
    """Writes alerts to the log. The default when nothing else is wired."""

    def deliver(
        self,
        caregiver_id: str,
        title: str,
        message: str,
        priority: str,
        payload: dict[str, Any],
    ) -> None:
        log = logger.warning if priority in ("high", "critical") else logger.info
        log("Caregiver alert [%s] to %s: %s | %s", priority, caregiver_id, title, message)


@dataclass
class _HeldAlert:
    caregiver_id: str
    title: str
    message: str
    priority: str
    payload: dict[str, Any] = field(default_factory=dict)


class QuietHoursTransport:
    """Holds non-critical alerts during quiet hours.

    Held alerts are released by :meth:`flush`, which the re-evaluation tick
    calls, or by the next delivery made outside quiet hours.

    Args:
        inner: Transport that actually delivers.
        start_hour: Hour (0-23, local to ``clock``) quiet hours begin.
        end_hour: Hour quiet hours end. ``start_hour == end_hour`` disables them.
        clock: Returns the current time; defaults to UTC now.
    """

    def __init__(
        self,
        inner: NotificationTransport,
        start_hour: int = 22,
        end_hour: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._inner = inner
        self._start = start_hour
        self._end = end_hour
        self._clock = clock
        self._held: list[_HeldAlert] = []
        self._lock = threading.Lock()

    def is_quiet(self, when: datetime | None = None) -> bool:
        hour = (when or self._clock()).hour
        if self._start == self._end:
            return False
        if self._start < self._end:
            return self._start <= hour < self._end
        return hour >= self._start or hour < self._end

    @property
    def held_count(self) -> int:
        with self._lock:
            return len(self._held)

    def deliver(
        self,
        caregiver_id: str,
        title: str,
        message: str,
        priority: str,
        payload: dict[str, Any],
    ) -> None:
        if priority != "critical" and self.is_quiet():
            with self._lock:
                self._held.append(_HeldAlert(caregiver_id, title, message, priority, dict(payload)))
            logger.info("Quiet hours: holding %s alert for %s", priority, caregiver_id)
            return

        self.flush()
        self._inner.deliver(caregiver_id, title, message, priority, payload)

    def flush(self) -> int:
        """Deliver held alerts if quiet hours are over. Returns how many went out."""
        if self.is_quiet():
            return 0
        with self._lock:
            held, self._held = self._held, []

        sent = 0
        for i, alert in enumerate(held):
            try:
                self._inner.deliver(
                    alert.caregiver_id, alert.title, alert.message, alert.priority, alert.payload
                )
            except Exception:
                logger.warning("Releasing held alert failed; keeping %d held", len(held) - i,
                               exc_info=True)
                with self._lock:
                    self._held[:0] = held[i:]
                break
            sent += 1
        if sent:
            logger.info("Released %d held alert(s)", sent)
        return sent
