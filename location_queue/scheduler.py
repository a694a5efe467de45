"""Timer-driven retry scheduling for the location queue."""
import enum
import threading
from typing import Callable, Optional

from location_queue import settings
from location_queue.logging_conf import logger


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RETRY_ARMED = "retry_armed"


class RetryScheduler:
    """Keeps at most one pending retry timer and triggers drain passes.

    Arming while a timer is pending replaces it. In recurring mode a new
    timer is armed after every fire, for hosts without a connectivity signal.
    """

    def __init__(self, drain: Callable[[], None], interval: float = None, recurring: bool = False):
        self.drain = drain
        self.interval = settings.RETRY_INTERVAL if interval is None else interval
        self.recurring = recurring
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._closed = False

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return SchedulerState.RETRY_ARMED if self._timer is not None else SchedulerState.IDLE

    def arm(self) -> None:
        """Start (or restart) the retry timer."""
        with self._lock:
            if self._closed:
                logger.debug("Scheduler closed; ignoring retry request")
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.interval, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.debug(f"Location queue retry armed ({self.interval}s)")

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def open(self) -> None:
        with self._lock:
            self._closed = False

    def close(self) -> None:
        """Cancel any pending timer and refuse further arming."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def on_connectivity_regained(self) -> None:
        """Drain now, out of band from the timer."""
        with self._lock:
            if self._closed:
                return
        self._run_drain()

    def _fire(self) -> None:
        me = threading.current_thread()
        with self._lock:
            # A replaced or cancelled timer may still get here.
            if self._timer is not me or self._closed:
                return
            self._timer = None
        self._run_drain()
        if self.recurring and self.state is SchedulerState.IDLE:
            self.arm()

    def _run_drain(self) -> None:
        try:
            self.drain()
        except Exception as e:
            logger.error(f"Scheduled drain failed: {e}", exc_info=True)
