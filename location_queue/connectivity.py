"""Network connectivity capability.

A queue is built with one of these. ``AbsentConnectivity`` stands in on
hosts with no connectivity signal, so the rest of the queue never has to
check whether an observer exists.
"""
import threading
from typing import Callable, List, Optional

import requests

from location_queue import settings
from location_queue.logging_conf import logger

Callback = Callable[[], None]


class Connectivity:
    """Base capability: a one-shot probe plus regained-edge subscriptions."""

    available = True

    def fetch_once(self) -> bool:
        raise NotImplementedError

    def subscribe(self, callback: Callback) -> Callback:
        """Call ``callback`` on every disconnected -> connected transition.

        Returns a function that removes the subscription.
        """
        raise NotImplementedError


class AbsentConnectivity(Connectivity):
    """No connectivity signal on this host; state is always unknown."""

    available = False

    def fetch_once(self) -> bool:
        # Unknown is treated as "go ahead and try".
        return True

    def subscribe(self, callback: Callback) -> Callback:
        return lambda: None


class _EdgeNotifier(Connectivity):
    """Tracks the last known state and notifies subscribers on regained edges."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Callback] = []
        self._connected: Optional[bool] = None

    def subscribe(self, callback: Callback) -> Callback:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _update(self, connected: bool) -> None:
        with self._lock:
            regained = connected and self._connected is False
            self._connected = connected
            subscribers = list(self._subscribers) if regained else []

        if regained:
            logger.info("Connectivity regained")
        elif not connected:
            logger.debug("Connectivity reported down")

        for callback in subscribers:
            try:
                callback()
            except Exception as e:
                logger.error(f"Connectivity subscriber failed: {e}", exc_info=True)


class ManualConnectivity(_EdgeNotifier):
    """Connectivity pushed in by the host application (e.g. from OS events)."""

    def __init__(self, connected: bool = True):
        super().__init__()
        self._connected = connected

    def fetch_once(self) -> bool:
        with self._lock:
            return bool(self._connected)

    def set_connected(self, connected: bool) -> None:
        self._update(bool(connected))


class HttpProbeConnectivity(_EdgeNotifier):
    """Polls a URL in a background thread and reports regained edges.

    Any HTTP response counts as connected; connection errors and timeouts
    count as disconnected. The polling thread runs only while there is at
    least one subscriber.
    """

    def __init__(
        self,
        url: str = None,
        interval: float = None,
        timeout: float = 5.0,
        session: requests.Session = None,
    ):
        super().__init__()
        self.url = url or settings.CONNECTIVITY_PROBE_URL
        if not self.url:
            raise settings.ConfigError("HttpProbeConnectivity needs a probe URL (CONNECTIVITY_PROBE_URL)")
        self.interval = interval if interval is not None else settings.CONNECTIVITY_POLL_INTERVAL
        self.timeout = timeout
        self.session = session or requests.Session()
        self.thread: Optional[threading.Thread] = None
        self.join_timeout = 10.0
        self._thread_lock = threading.Lock()
        self._stop = threading.Event()

    def fetch_once(self) -> bool:
        try:
            self.session.head(self.url, timeout=self.timeout, allow_redirects=True)
            return True
        except requests.exceptions.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False

    def subscribe(self, callback: Callback) -> Callback:
        remove = super().subscribe(callback)
        self._ensure_running()

        def unsubscribe():
            remove()
            if self.subscriber_count() == 0:
                self.stop()

        return unsubscribe

    def poll_once(self) -> bool:
        """Probe once and publish the result to subscribers."""
        connected = self.fetch_once()
        self._update(connected)
        return connected

    def stop(self) -> None:
        self._stop.set()
        thread = self.thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
        with self._thread_lock:
            if self.thread is not None and self.thread.is_alive():
                # The loop deregisters itself on its next check of the stop flag.
                if self.thread is not threading.current_thread():
                    logger.warning(f"Connectivity probe did not stop within {self.join_timeout}s")
                return
            self.thread = None

    def _ensure_running(self) -> None:
        with self._thread_lock:
            self._stop.clear()
            if self.thread is not None:
                # A registered loop re-checks the stop flag before exiting.
                return
            self.thread = threading.Thread(target=self._run, name="connectivity-probe", daemon=True)
            self.thread.start()
        logger.info(f"Connectivity probe started (interval: {self.interval}s)")

    def _run(self) -> None:
        me = threading.current_thread()
        while True:
            with self._thread_lock:
                if self._stop.is_set():
                    if self.thread is me:
                        self.thread = None
                    break
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Connectivity probe error: {e}", exc_info=True)
            self._stop.wait(self.interval)
        logger.info("Connectivity probe stopped")
