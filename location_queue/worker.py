"""Delivery worker: drains the persisted location queue through the transport."""
import threading
from collections.abc import Mapping
from typing import Callable, List, Optional

from location_queue import settings
from location_queue.connectivity import Connectivity, AbsentConnectivity
from location_queue.logging_conf import logger
from location_queue.observability import EventSink, LoggingSink, safe_emit
from location_queue.queue.models import QueueItem
from location_queue.queue.store import QueueStore
from location_queue.transport import Transport


def _failed(result) -> bool:
    """Interpret a transport result; ``None`` counts as a failure."""
    if result is None:
        return True
    if isinstance(result, Mapping):
        return bool(result.get("error"))
    return bool(getattr(result, "error", False))


class DeliveryWorker:
    """Runs drain passes over the queue, one at a time."""

    def __init__(
        self,
        store: QueueStore,
        transport: Transport,
        connectivity: Connectivity = None,
        sink: EventSink = None,
        max_retry_count: int = None,
        max_queue_size: int = None,
        on_retry_needed: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.transport = transport
        self.connectivity = connectivity or AbsentConnectivity()
        self.sink = sink or LoggingSink()
        self.max_retry_count = settings.MAX_RETRY_COUNT if max_retry_count is None else max_retry_count
        self.max_queue_size = settings.MAX_QUEUE_SIZE if max_queue_size is None else max_queue_size
        self.on_retry_needed = on_retry_needed
        self._in_progress = threading.Lock()

    @property
    def draining(self) -> bool:
        return self._in_progress.locked()

    def wait_idle(self, timeout: float) -> bool:
        """Block until no pass is running. Returns False on timeout."""
        if not self._in_progress.acquire(timeout=timeout):
            return False
        self._in_progress.release()
        return True

    def drain_once(self) -> None:
        """Attempt every pending item once. Never raises.

        A call made while another pass is running returns immediately.
        """
        if not self._in_progress.acquire(blocking=False):
            safe_emit(self.sink, "drain_skipped", reason="in_progress")
            return
        try:
            self._drain()
        except Exception as e:
            logger.error(f"Location queue drain failed: {e}", exc_info=True)
        finally:
            self._in_progress.release()

    def _drain(self) -> None:
        if not self._is_connected():
            safe_emit(self.sink, "drain_skipped", reason="offline")
            self._request_retry()
            return

        snapshot = self.store.load()
        if not snapshot:
            return

        remaining: List[QueueItem] = []
        delivered = dropped = 0
        for item in snapshot:
            if self._attempt(item):
                delivered += 1
                safe_emit(self.sink, "delivered", item_id=item.item_id, retry_count=item.retry_count)
            elif item.retry_count >= self.max_retry_count:
                dropped += 1
                safe_emit(self.sink, "dropped", item_id=item.item_id, attempts=item.retry_count + 1)
            else:
                item.retry_count += 1
                remaining.append(item)

        pending = self._persist(snapshot, remaining)
        safe_emit(
            self.sink,
            "drain_completed",
            attempted=len(snapshot),
            delivered=delivered,
            dropped=dropped,
            remaining=len(pending),
        )

        if pending:
            safe_emit(self.sink, "retry_scheduled", remaining=len(pending))
            self._request_retry()

    def _persist(self, snapshot: List[QueueItem], remaining: List[QueueItem]) -> List[QueueItem]:
        """Write survivors back, keeping anything enqueued while the pass ran."""
        with self.store.lock:
            seen = {item.item_id for item in snapshot}
            arrived = [item for item in self.store.load() if item.item_id not in seen]
            pending = remaining + arrived
            while len(pending) > self.max_queue_size:
                evicted = pending.pop(0)
                safe_emit(self.sink, "evicted", item_id=evicted.item_id)
            if not self.store.save(pending):
                safe_emit(self.sink, "persist_failed", size=len(pending))
        return pending

    def _attempt(self, item: QueueItem) -> bool:
        try:
            return not _failed(self.transport.send(item.data, item.headers))
        except Exception as e:
            logger.warning(f"Transport raised for location update {item.item_id}: {e}")
            return False

    def _is_connected(self) -> bool:
        try:
            return bool(self.connectivity.fetch_once())
        except Exception as e:
            logger.warning(f"Connectivity probe raised; assuming offline: {e}")
            return False

    def _request_retry(self) -> None:
        if self.on_retry_needed is None:
            return
        try:
            self.on_retry_needed()
        except Exception as e:
            logger.error(f"Failed to schedule location queue retry: {e}", exc_info=True)
