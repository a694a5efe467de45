"""Durable key-value persistence for the pending location queue."""
import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from location_queue import settings
from location_queue.logging_conf import logger
from location_queue.queue.models import QueueItem


class KeyValueStore:
    """String-keyed get/set storage."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """In-process storage; does not survive restarts."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class FileKeyValueStore(KeyValueStore):
    """One file per key under a directory, replaced atomically on write."""

    def __init__(self, directory: Path = None):
        self.directory: Path = Path(directory or settings.QUEUE_STORAGE_DIR)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", key)[:200]
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=path.stem, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class QueueStore:
    """Serialized queue under a single well-known key.

    Read failures are reported as an empty queue and write failures as a
    ``False`` return; neither raises. ``lock`` serializes read-modify-write
    sequences between enqueue and the end of a drain pass.
    """

    def __init__(self, backend: KeyValueStore = None, key: str = None):
        self.backend = backend if backend is not None else FileKeyValueStore()
        self.key = key or settings.QUEUE_STORAGE_KEY
        self.lock = threading.RLock()

    def load(self) -> List[QueueItem]:
        try:
            raw = self.backend.get(self.key)
            if not raw:
                return []
            entries = json.loads(raw)
        except Exception as e:
            logger.error(f"Failed to read location queue: {e}", exc_info=True)
            return []

        if not isinstance(entries, list):
            logger.error(f"Location queue is not a list ({type(entries).__name__}); treating as empty")
            return []

        items = []
        for entry in entries:
            try:
                items.append(QueueItem.from_dict(entry))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable queue entry: {e}")
        return items

    def save(self, items: List[QueueItem]) -> bool:
        try:
            self.backend.set(self.key, json.dumps([item.to_dict() for item in items]))
            return True
        except Exception as e:
            logger.error(f"Failed to save location queue ({len(items)} items): {e}", exc_info=True)
            return False

    def append(self, item: QueueItem, max_size: int) -> Tuple[bool, List[QueueItem]]:
        """Append ``item``, evicting the oldest entries beyond ``max_size``.

        Returns whether the write succeeded and the evicted items.
        """
        with self.lock:
            items = self.load()
            items.append(item)
            evicted = []
            while len(items) > max_size:
                evicted.append(items.pop(0))
            return self.save(items), evicted
