"""Queue data models."""
import hashlib
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Any


def _now_ms() -> int:
    return int(time.time() * 1000)


def _legacy_id(data: Any, headers: Any, timestamp: Any) -> str:
    """Deterministic id for entries persisted without one."""
    raw = json.dumps([data, headers, timestamp], sort_keys=True, default=str)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


@dataclass
class QueueItem:
    """A location event waiting to be delivered."""

    data: Any  # Location event payload
    headers: Dict[str, Any]  # Transport context (auth etc.)
    timestamp: int = field(default_factory=_now_ms)  # ms since epoch, informational
    retry_count: int = 0
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def create(cls, data: Any, headers: Dict[str, Any] = None):
        """Factory method for a fresh item with no failed attempts."""
        return cls(data=data, headers=dict(headers or {}))

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form."""
        return {
            "id": self.item_id,
            "data": self.data,
            "headers": self.headers,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]):
        """Rebuild an item from its persisted form.

        Raises:
            ValueError: if the entry is not a valid queue item
        """
        if not isinstance(raw, dict) or "data" not in raw:
            raise ValueError(f"Not a queue item: {raw!r}")
        retry_count = int(raw.get("retryCount", 0))
        if retry_count < 0:
            raise ValueError(f"Negative retryCount: {retry_count}")
        headers = raw.get("headers") or {}
        timestamp = raw.get("timestamp", 0)
        return cls(
            data=raw["data"],
            headers=headers,
            timestamp=timestamp,
            retry_count=retry_count,
            item_id=raw.get("id") or _legacy_id(raw["data"], headers, timestamp),
        )
