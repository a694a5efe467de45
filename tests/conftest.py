"""Shared fixtures for location queue tests."""
import os
import tempfile
import threading

# Keep log files and default storage out of the source tree.
_scratch = tempfile.mkdtemp(prefix="location-queue-tests-")
os.environ.setdefault("LOGS_DIR", os.path.join(_scratch, "logs"))
os.environ.setdefault("QUEUE_STORAGE_DIR", os.path.join(_scratch, "data"))

import pytest

from location_queue.observability import CountingSink
from location_queue.queue.store import MemoryKeyValueStore, QueueStore
from location_queue.transport import SendResult, Transport


class FakeTransport(Transport):
    """Records calls; replies from a script of outcomes, then a default."""

    def __init__(self, outcomes=None, default=True):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def send(self, data, headers):
        with self._lock:
            self.calls.append((data, headers))
            outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return SendResult(error=not outcome)

    def sent_data(self):
        return [data for data, _ in self.calls]


class BlockingTransport(FakeTransport):
    """Holds every send until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send(self, data, headers):
        self.entered.set()
        self.release.wait(5)
        return super().send(data, headers)


class SpyBackend(MemoryKeyValueStore):
    """Memory backend that counts writes."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    def set(self, key, value):
        self.writes += 1
        super().set(key, value)


@pytest.fixture
def backend():
    return SpyBackend()


@pytest.fixture
def store(backend):
    return QueueStore(backend, key="test-queue")


@pytest.fixture
def sink():
    return CountingSink()


@pytest.fixture
def transport():
    return FakeTransport()


def run_inline(fn):
    """Synchronous stand-in for the background eager drain."""
    fn()
