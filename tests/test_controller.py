import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from conftest import BlockingTransport, FakeTransport, run_inline
from location_queue.connectivity import AbsentConnectivity, HttpProbeConnectivity, ManualConnectivity
from location_queue.controller import LocationUpdateQueue
from location_queue.scheduler import SchedulerState
from location_queue.settings import ConfigError


def _queue(store, transport, sink, **kwargs):
    kwargs.setdefault("max_queue_size", 50)
    kwargs.setdefault("max_retry_count", 3)
    kwargs.setdefault("retry_interval", 30)
    kwargs.setdefault("run_async", run_inline)
    return LocationUpdateQueue(transport, store=store, sink=sink, **kwargs)


@pytest.fixture
def queue_factory(store, sink):
    created = []

    def make(transport, **kwargs):
        q = _queue(store, transport, sink, **kwargs)
        created.append(q)
        return q

    yield make
    for q in created:
        q.stop()


def test_enqueue_then_flush_delivers(queue_factory, store):
    transport = FakeTransport()
    q = queue_factory(transport, eager_delivery=False)
    q.enqueue({"lat": 1, "lng": 2}, {"authorization": "Bearer t"})
    assert q.size() == 1
    q.flush()
    assert store.load() == []
    assert transport.calls == [({"lat": 1, "lng": 2}, {"authorization": "Bearer t"})]


def test_eager_delivery_on_enqueue(queue_factory, sink):
    transport = FakeTransport()
    q = queue_factory(transport, eager_delivery=True)
    q.enqueue({"lat": 1})
    assert q.size() == 0
    assert sink.count("delivered") == 1


def test_eager_drain_while_offline_leaves_item_queued(queue_factory):
    transport = FakeTransport()
    q = queue_factory(transport, connectivity=ManualConnectivity(False), eager_delivery=True)
    q.enqueue({"lat": 1})
    assert transport.calls == []
    assert q.size() == 1


def test_enqueue_beyond_capacity_keeps_most_recent(queue_factory):
    q = queue_factory(FakeTransport(), eager_delivery=False)
    for i in range(51):
        q.enqueue({"seq": i})
    seqs = [item.data["seq"] for item in q.pending()]
    assert len(seqs) == 50
    assert seqs == list(range(1, 51))


def test_capacity_bound_holds_for_long_runs(queue_factory, sink):
    q = queue_factory(FakeTransport(), eager_delivery=False, max_queue_size=5)
    for i in range(23):
        q.enqueue({"seq": i})
        assert q.size() <= 5
    assert [item.data["seq"] for item in q.pending()] == [18, 19, 20, 21, 22]
    assert sink.count("evicted") == 18


def test_no_connectivity_item_dropped_after_fourth_attempt(queue_factory, sink):
    transport = FakeTransport(default=False)
    q = queue_factory(transport, connectivity=AbsentConnectivity(), eager_delivery=False)
    q.enqueue({"lat": 1})

    for attempt in range(1, 4):
        q.flush()
        assert [i.retry_count for i in q.pending()] == [attempt]

    q.flush()
    assert q.size() == 0
    assert len(transport.calls) == 4
    assert sink.count("dropped") == 1


def test_start_without_connectivity_arms_fallback(queue_factory):
    q = queue_factory(FakeTransport(), connectivity=AbsentConnectivity())
    q.start()
    assert q.running
    assert q.scheduler.recurring
    assert q.scheduler.state is SchedulerState.RETRY_ARMED


def test_start_drains_pending_items(queue_factory, store):
    transport = FakeTransport()
    q = queue_factory(transport, eager_delivery=False)
    q.enqueue({"seq": 1})
    q.start()
    assert store.load() == []


def test_start_with_connectivity_subscribes(queue_factory):
    connectivity = ManualConnectivity(True)
    q = queue_factory(FakeTransport(), connectivity=connectivity)
    q.start()
    assert connectivity.subscriber_count() == 1
    assert not q.scheduler.recurring
    assert q.scheduler.state is SchedulerState.IDLE


def test_connectivity_regained_triggers_drain(queue_factory):
    connectivity = ManualConnectivity(False)
    transport = FakeTransport()
    q = queue_factory(transport, connectivity=connectivity)
    q.start()
    q.enqueue({"seq": 1})
    assert q.size() == 1

    connectivity.set_connected(True)
    assert q.size() == 0
    assert len(transport.calls) == 1


def test_offline_start_arms_retry(queue_factory):
    q = queue_factory(FakeTransport(), connectivity=ManualConnectivity(False))
    q.start()
    assert q.scheduler.state is SchedulerState.RETRY_ARMED


def test_stop_is_idempotent_and_safe_before_start(queue_factory):
    connectivity = ManualConnectivity(True)
    q = queue_factory(FakeTransport(), connectivity=connectivity)
    q.stop()
    q.start()
    q.stop()
    q.stop()
    assert not q.running
    assert connectivity.subscriber_count() == 0
    assert q.scheduler.state is SchedulerState.IDLE


def test_stop_prevents_further_retries(queue_factory):
    q = queue_factory(FakeTransport(default=False), eager_delivery=False)
    q.enqueue({"seq": 1})
    q.start()
    q.stop()
    q.flush()
    assert q.scheduler.state is SchedulerState.IDLE


def test_restart_after_stop(queue_factory):
    connectivity = ManualConnectivity(True)
    q = queue_factory(FakeTransport(), connectivity=connectivity)
    q.start()
    q.stop()
    q.start()
    assert q.running
    assert connectivity.subscriber_count() == 1


def test_start_twice_only_subscribes_once(queue_factory):
    connectivity = ManualConnectivity(True)
    q = queue_factory(FakeTransport(), connectivity=connectivity)
    q.start()
    q.start()
    assert connectivity.subscriber_count() == 1


def test_enqueue_never_raises(queue_factory, store):
    q = queue_factory(FakeTransport())
    with patch.object(store, "append", side_effect=RuntimeError("boom")):
        q.enqueue({"seq": 1})


def test_enqueue_reports_persist_failure(queue_factory, store, sink):
    q = queue_factory(FakeTransport(), eager_delivery=False)
    with patch.object(store, "save", return_value=False):
        q.enqueue({"seq": 1})
    assert sink.count("persist_failed") == 1


def test_invalid_policy_rejected(store, sink):
    with pytest.raises(ConfigError):
        _queue(store, FakeTransport(), sink, max_queue_size=0)
    with pytest.raises(ConfigError):
        _queue(store, FakeTransport(), sink, max_retry_count=-1)
    with pytest.raises(ConfigError):
        _queue(store, FakeTransport(), sink, retry_interval=0)


def test_default_eager_drain_runs_in_background(store, sink):
    transport = FakeTransport()
    q = LocationUpdateQueue(transport, store=store, sink=sink, eager_delivery=True)
    with patch("location_queue.controller.threading.Thread") as thread_cls:
        q.enqueue({"seq": 1})
    thread_cls.assert_called_once()
    assert thread_cls.call_args.kwargs["target"] == q.worker.drain_once
    thread_cls.return_value.start.assert_called_once()
    assert q.size() == 1


def test_stop_waits_for_running_pass_to_persist(queue_factory, store):
    transport = BlockingTransport()
    q = queue_factory(transport, eager_delivery=False)
    q.enqueue({"seq": 1})

    flusher = threading.Thread(target=q.flush)
    flusher.start()
    assert transport.entered.wait(5)

    releaser = threading.Timer(0.1, transport.release.set)
    releaser.start()
    q.stop()

    assert not q.worker.draining
    assert store.load() == []
    flusher.join(5)


def test_stop_gives_up_after_timeout(queue_factory):
    transport = BlockingTransport()
    q = queue_factory(transport, eager_delivery=False, stop_timeout=0.05)
    q.enqueue({"seq": 1})

    flusher = threading.Thread(target=q.flush)
    flusher.start()
    assert transport.entered.wait(5)

    q.stop()
    assert q.worker.draining

    transport.release.set()
    flusher.join(5)


def test_enqueue_does_not_probe_connectivity_in_caller_thread(queue_factory):
    connectivity = MagicMock()
    connectivity.available = True
    deferred = []
    q = queue_factory(FakeTransport(), connectivity=connectivity, run_async=deferred.append)

    q.enqueue({"seq": 1})

    connectivity.fetch_once.assert_not_called()
    assert deferred == [q.worker.drain_once]


def test_enqueue_returns_promptly_with_slow_probe(queue_factory):
    session = MagicMock()
    session.head.side_effect = lambda *args, **kwargs: time.sleep(1)
    connectivity = HttpProbeConnectivity("https://probe.example.com/health", session=session)
    q = queue_factory(FakeTransport(), connectivity=connectivity, run_async=lambda fn: None)

    started = time.monotonic()
    q.enqueue({"seq": 1})
    assert time.monotonic() - started < 0.5
    session.head.assert_not_called()


def test_regained_connectivity_drains_off_the_notifier_thread(queue_factory):
    connectivity = ManualConnectivity(False)
    transport = FakeTransport()
    deferred = []
    q = queue_factory(transport, connectivity=connectivity, run_async=deferred.append, eager_delivery=False)
    q.start()
    q.enqueue({"seq": 1})

    connectivity.set_connected(True)
    assert transport.calls == []
    assert deferred == [q.scheduler.on_connectivity_regained]

    deferred.pop()()
    assert len(transport.calls) == 1
    assert q.size() == 0
