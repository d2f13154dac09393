# Copyright (c) Syntropy Systems
"""Tests for the flush listener and completion signal."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from resultflow.flush import CompletionSignal, FlushListener


def _wait_for(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline
        time.sleep(0.005)


class TestFlushListener:
    """Tests for FlushListener."""

    def test_wait_times_out_without_acknowledgement(self) -> None:
        """Test that an unacknowledged flush reports a timeout."""
        listener = FlushListener()

        start = time.monotonic()
        assert listener.wait_for_flush("f1", 0.05) is False
        assert time.monotonic() - start >= 0.04

    def test_acknowledged_before_wait_returns_immediately(self) -> None:
        """Test that waiting on an already acknowledged flush does not block."""
        listener = FlushListener()
        listener.acknowledge_flush("f1")

        assert listener.wait_for_flush("f1", 0.0) is True
        assert listener.wait_for_flush("f1", 0.0) is True

    def test_acknowledge_releases_blocked_waiter(self) -> None:
        """Test that a blocked waiter is released by the acknowledgement."""
        listener = FlushListener()
        results: list[bool] = []

        waiter = threading.Thread(
            target=lambda: results.append(listener.wait_for_flush("f1", 5.0)),
        )
        waiter.start()
        time.sleep(0.05)
        listener.acknowledge_flush("f1")
        waiter.join(timeout=2.0)

        assert results == [True]

    def test_acknowledge_other_id_does_not_release(self) -> None:
        """Test that acknowledging one id leaves waiters on another blocked."""
        listener = FlushListener()
        listener.acknowledge_flush("other")

        assert listener.wait_for_flush("f1", 0.05) is False

    def test_clear_releases_waiters_as_satisfied(self) -> None:
        """Test that clear releases every waiter with True."""
        listener = FlushListener()
        results: dict[str, bool] = {}
        lock = threading.Lock()

        def wait(flush_id: str) -> None:
            acknowledged = listener.wait_for_flush(flush_id, 5.0)
            with lock:
                results[flush_id] = acknowledged

        threads = [threading.Thread(target=wait, args=(f"f{i}",)) for i in range(3)]
        for t in threads:
            t.start()
        time.sleep(0.05)
        listener.clear()
        for t in threads:
            t.join(timeout=2.0)

        assert results == {"f0": True, "f1": True, "f2": True}

    def test_wait_after_clear_returns_immediately(self) -> None:
        """Test that waits registered after clear do not hang."""
        listener = FlushListener()
        listener.clear()

        start = time.monotonic()
        assert listener.wait_for_flush("never-sent", 10.0) is True
        assert time.monotonic() - start < 1.0
        assert listener.cleared

    def test_pending_flush_ids(self) -> None:
        """Test that only unacknowledged ids with live waiters are pending."""
        listener = FlushListener()
        waiters = [
            threading.Thread(target=listener.wait_for_flush, args=(flush_id, 5.0))
            for flush_id in ("b", "a")
        ]
        for w in waiters:
            w.start()
        _wait_for(lambda: listener.pending_flush_ids() == ["a", "b"])

        listener.acknowledge_flush("b")
        assert listener.pending_flush_ids() == ["a"]

        listener.clear()
        for w in waiters:
            w.join(timeout=2.0)
        assert listener.pending_flush_ids() == []
        assert len(listener) == 0

    def test_timed_out_wait_is_unregistered(self) -> None:
        """Test a wait that times out leaves nothing pending."""
        listener = FlushListener()

        assert listener.wait_for_flush("f1", 0.01) is False
        assert listener.pending_flush_ids() == []
        assert len(listener) == 0

    def test_concurrent_waiters_share_one_entry(self) -> None:
        """Test an id stays registered until its last waiter leaves."""
        listener = FlushListener()
        results: list[bool] = []
        lock = threading.Lock()

        def wait(timeout: float) -> None:
            acknowledged = listener.wait_for_flush("f1", timeout)
            with lock:
                results.append(acknowledged)

        short = threading.Thread(target=wait, args=(0.05,))
        long = threading.Thread(target=wait, args=(5.0,))
        long.start()
        _wait_for(lambda: listener.pending_flush_ids() == ["f1"])
        short.start()
        short.join(timeout=2.0)

        assert results == [False]
        assert listener.pending_flush_ids() == ["f1"]

        listener.acknowledge_flush("f1")
        long.join(timeout=2.0)
        assert results == [False, True]
        assert listener.pending_flush_ids() == []

    def test_registry_stays_bounded(self) -> None:
        """Test that many flush cycles on a long job do not grow the registry."""
        listener = FlushListener(max_remembered=100)

        for i in range(10_000):
            listener.acknowledge_flush(f"ack-{i}")
            assert listener.wait_for_flush(f"ack-{i}", 0.0) is True
        for i in range(1_000):
            assert listener.wait_for_flush(f"timeout-{i}", 0.0) is False

        assert listener.pending_flush_ids() == []
        assert len(listener) <= 100
        assert listener.wait_for_flush("ack-9999", 0.0) is True
        assert listener.wait_for_flush("ack-0", 0.0) is False


class TestCompletionSignal:
    """Tests for CompletionSignal."""

    def test_wait_times_out_before_signal(self) -> None:
        """Test an optional timeout on an unsignalled wait."""
        signal = CompletionSignal()
        assert signal.is_set() is False
        assert signal.wait(0.01) is False

    def test_signal_is_idempotent(self) -> None:
        """Test that repeated signals are harmless."""
        signal = CompletionSignal()
        signal.signal()
        signal.signal()

        assert signal.is_set()
        assert signal.wait() is True

    def test_signal_releases_all_waiters(self) -> None:
        """Test that many waiters are released by one signal."""
        signal = CompletionSignal()
        released: list[int] = []
        lock = threading.Lock()

        def wait(i: int) -> None:
            _ = signal.wait()
            with lock:
                released.append(i)

        threads = [threading.Thread(target=wait, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        time.sleep(0.05)
        assert released == []

        signal.signal()
        for t in threads:
            t.join(timeout=2.0)

        assert sorted(released) == list(range(8))
