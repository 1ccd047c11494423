from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60
_LEADING_MINUTES = re.compile(r"\s*(\d+)")
TICK_SECONDS = 1.0


def duration_seconds(raw_minutes: Any, default_minutes: int = DEFAULT_DURATION_MINUTES) -> int:
    """Convert a configured duration in minutes into seconds.

    Only the leading integer is read, so ``"90 mins"`` means 90. Missing values,
    values without leading digits and non-positive values fall back to
    ``default_minutes``.
    """

    match = _LEADING_MINUTES.match(str(raw_minutes)) if raw_minutes is not None else None
    minutes = int(match.group(1)) if match else 0
    if raw_minutes is None or minutes <= 0:
        logger.warning(
            "Test duration %r is not usable; defaulting to %s minutes.", raw_minutes, default_minutes
        )
        minutes = default_minutes
    return minutes * 60


class CountdownTimer:
    """Counts a session's remaining seconds down to zero.

    ``tick()`` is the only thing that changes the remaining time. ``start()``
    runs a daemon thread that ticks once per second; tests leave it stopped and
    call ``tick()`` themselves. ``on_expired`` fires once, on the tick that
    reaches zero.
    """

    def __init__(
        self,
        total_seconds: int,
        on_expired: Callable[[], None] | None = None,
        *,
        interval: float = TICK_SECONDS,
    ) -> None:
        if total_seconds < 0:
            raise ValueError("total_seconds must not be negative")
        self.total_seconds = int(total_seconds)
        self.remaining_seconds = int(total_seconds)
        self.interval = interval
        self._on_expired = on_expired
        self._lock = threading.Lock()
        self._running = False
        self._expired = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def elapsed_seconds(self) -> int:
        return self.total_seconds - self.remaining_seconds

    def arm(self) -> None:
        """Allow ticks without spawning the background thread."""
        with self._lock:
            if not self._expired:
                self._running = True

    def start(self) -> None:
        self.arm()
        if self._thread is not None or not self._running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="countdown-timer", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            if not self.tick():
                break

    def tick(self) -> bool:
        """Advance the clock by one second. Returns ``False`` once ticking has ended."""

        fire = False
        with self._lock:
            if not self._running:
                return False
            if self.remaining_seconds > 0:
                self.remaining_seconds -= 1
            if self.remaining_seconds == 0 and not self._expired:
                self._expired = True
                self._running = False
                fire = True
        if fire:
            logger.info("Countdown reached zero after %s seconds.", self.total_seconds)
            if self._on_expired is not None:
                self._on_expired()
            return False
        return True

    def stop(self) -> None:
        with self._lock:
            self._running = False
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval * 2)


__all__ = ["CountdownTimer", "duration_seconds", "DEFAULT_DURATION_MINUTES"]
