"""Public entry point: an offline-tolerant queue for location updates."""
import threading
from typing import Any, Callable, Dict, List, Optional

from location_queue import settings
from location_queue.connectivity import Connectivity, AbsentConnectivity
from location_queue.logging_conf import logger
from location_queue.observability import EventSink, LoggingSink, safe_emit
from location_queue.queue.models import QueueItem
from location_queue.queue.store import QueueStore
from location_queue.scheduler import RetryScheduler
from location_queue.transport import Transport
from location_queue.worker import DeliveryWorker


def _spawn(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="location-queue-eager-drain", daemon=True).start()


class LocationUpdateQueue:
    """Buffers location updates and replays them when delivery is possible.

    The host application owns the instance: construct it, call ``start()``
    once the app is up and ``stop()`` on shutdown. No method raises into the
    caller once constructed.

    Args:
        transport: Sends a single location event
        store: Persistence for pending items (defaults to a file store)
        connectivity: Connectivity capability; ``AbsentConnectivity`` when
            the host has no network signal
        sink: Receives queue events for logging/metrics
        run_async: Runs the eager post-enqueue drain and the drain on
            regained connectivity; defaults to a daemon thread so neither
            ``enqueue`` nor the connectivity notifier waits on delivery
        stop_timeout: Seconds ``stop()`` waits for a running pass to persist
    """

    def __init__(
        self,
        transport: Transport,
        store: QueueStore = None,
        connectivity: Connectivity = None,
        sink: EventSink = None,
        max_queue_size: int = None,
        max_retry_count: int = None,
        retry_interval: float = None,
        eager_delivery: bool = None,
        run_async: Callable[[Callable[[], None]], None] = None,
        stop_timeout: float = 10.0,
    ):
        self.max_queue_size = settings.MAX_QUEUE_SIZE if max_queue_size is None else max_queue_size
        self.max_retry_count = settings.MAX_RETRY_COUNT if max_retry_count is None else max_retry_count
        self.retry_interval = settings.RETRY_INTERVAL if retry_interval is None else retry_interval
        errors = settings.check_policy(self.max_queue_size, self.max_retry_count, self.retry_interval)
        if errors:
            raise settings.ConfigError("Config errors:\n  " + "\n  ".join(errors))

        self.eager_delivery = settings.EAGER_DELIVERY if eager_delivery is None else eager_delivery
        self.store = store or QueueStore()
        self.connectivity = connectivity or AbsentConnectivity()
        self.sink = sink or LoggingSink()
        self.run_async = run_async or _spawn
        self.stop_timeout = stop_timeout

        self.worker = DeliveryWorker(
            self.store,
            transport,
            connectivity=self.connectivity,
            sink=self.sink,
            max_retry_count=self.max_retry_count,
            max_queue_size=self.max_queue_size,
        )
        self.scheduler = RetryScheduler(
            self.worker.drain_once,
            interval=self.retry_interval,
            recurring=not self.connectivity.available,
        )
        self.worker.on_retry_needed = self.scheduler.arm

        self.running = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        """Subscribe to connectivity, drain once and arm the fallback timer."""
        if self.running:
            logger.warning("Location queue is already running")
            return

        self.running = True
        self.scheduler.open()
        if self.connectivity.available:
            try:
                self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_regained)
            except Exception as e:
                logger.error(f"Failed to subscribe to connectivity; relying on retry timer: {e}", exc_info=True)
        logger.info(
            f"Location queue started (max size: {self.max_queue_size}, "
            f"max retries: {self.max_retry_count}, retry interval: {self.retry_interval}s, "
            f"connectivity: {'observed' if self.connectivity.available else 'unavailable'})"
        )

        self.worker.drain_once()
        if not self.connectivity.available:
            self.scheduler.arm()

    def stop(self) -> None:
        """Unsubscribe, cancel any pending retry and wait for a running pass.

        Safe to call repeatedly, and before ``start()``.
        """
        self.scheduler.close()
        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            except Exception as e:
                logger.error(f"Failed to unsubscribe from connectivity: {e}", exc_info=True)
            self._unsubscribe = None
        if not self.worker.wait_idle(self.stop_timeout):
            logger.warning(f"Location queue drain still running after {self.stop_timeout}s")
        if self.running:
            self.running = False
            logger.info("Location queue stopped")

    def enqueue(self, data: Any, headers: Dict[str, Any] = None) -> None:
        """Queue a location update and try to deliver it in the background."""
        try:
            item = QueueItem.create(data, headers)
            saved, evicted = self.store.append(item, self.max_queue_size)
            for old in evicted:
                safe_emit(self.sink, "evicted", item_id=old.item_id)
            if not saved:
                safe_emit(self.sink, "persist_failed", size=self.max_queue_size)
            safe_emit(self.sink, "enqueued", item_id=item.item_id)

            if self.eager_delivery and not self.worker.draining:
                self.run_async(self.worker.drain_once)
        except Exception as e:
            logger.error(f"Error adding to location queue: {e}", exc_info=True)

    def flush(self) -> None:
        """Run one drain pass now, in the calling thread."""
        self.worker.drain_once()

    def pending(self) -> List[QueueItem]:
        return self.store.load()

    def size(self) -> int:
        return len(self.store.load())

    def _on_connectivity_regained(self) -> None:
        self.run_async(self.scheduler.on_connectivity_regained)
