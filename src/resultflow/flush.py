# Copyright (c) Syntropy Systems
"""Wait primitives shared between the result processor and its callers."""
from __future__ import annotations

import logging
from collections import OrderedDict
from threading import Event, Lock

logger = logging.getLogger(__name__)

# Acknowledgements kept for callers that start waiting after the fact
MAX_REMEMBERED_ACKNOWLEDGEMENTS = 1024


class _FlushWaiters:
    """Event shared by every caller currently waiting on one flush id."""

    event: Event
    count: int

    def __init__(self) -> None:
        self.event = Event()
        self.count = 0


class FlushListener:
    """Registry of flush ids that callers can block on.

    Each flush id maps to its own event, so waiters on one id are never
    held up by another. An id is only registered while someone waits on it;
    the last waiter to leave removes it, whether it was acknowledged or
    timed out. The most recent acknowledgements are remembered so a caller
    that starts waiting after the acknowledgement returns at once.

    Once cleared, every current and future wait is satisfied, because no
    further acknowledgement can arrive for the run.
    """

    _lock: Lock
    _awaiting_flushed: dict[str, _FlushWaiters]
    _acknowledged: OrderedDict[str, None]
    _max_remembered: int
    _cleared: bool

    def __init__(self, max_remembered: int = MAX_REMEMBERED_ACKNOWLEDGEMENTS) -> None:
        self._lock = Lock()
        self._awaiting_flushed = {}
        self._acknowledged = OrderedDict()
        self._max_remembered = max_remembered
        self._cleared = False

    def wait_for_flush(self, flush_id: str, timeout: float) -> bool:
        """Block until ``flush_id`` is acknowledged or the listener is cleared.

        Args:
            flush_id: Id of the flush request to wait for
            timeout: Maximum seconds to wait

        Returns:
            True if the flush was acknowledged or the stream ended,
            False if the timeout expired first.

        """
        with self._lock:
            if self._cleared or flush_id in self._acknowledged:
                return True
            waiters = self._awaiting_flushed.get(flush_id)
            if waiters is None:
                waiters = _FlushWaiters()
                self._awaiting_flushed[flush_id] = waiters
            waiters.count += 1

        try:
            return waiters.event.wait(timeout=max(timeout, 0.0))
        finally:
            with self._lock:
                waiters.count -= 1
                if waiters.count == 0 and self._awaiting_flushed.get(flush_id) is waiters:
                    del self._awaiting_flushed[flush_id]

    def acknowledge_flush(self, flush_id: str) -> None:
        """Release all current and later waiters for ``flush_id``."""
        with self._lock:
            self._acknowledged[flush_id] = None
            self._acknowledged.move_to_end(flush_id)
            while len(self._acknowledged) > self._max_remembered:
                _ = self._acknowledged.popitem(last=False)
            waiters = self._awaiting_flushed.get(flush_id)
        if waiters is not None:
            waiters.event.set()

    def clear(self) -> None:
        """Release every waiter and satisfy all future waits."""
        with self._lock:
            self._cleared = True
            self._acknowledged.clear()
            events = [waiters.event for waiters in self._awaiting_flushed.values()]

        for event in events:
            event.set()
        if events:
            logger.debug("Released waiters on %d flush id(s) on clear", len(events))

    def pending_flush_ids(self) -> list[str]:
        """Return ids that have waiters but no acknowledgement yet."""
        with self._lock:
            return sorted(
                flush_id
                for flush_id, waiters in self._awaiting_flushed.items()
                if not waiters.event.is_set()
            )

    def __len__(self) -> int:
        """Number of ids currently tracked, waited on or remembered."""
        with self._lock:
            return len(self._awaiting_flushed) + len(self._acknowledged)

    @property
    def cleared(self) -> bool:
        """Return whether the listener has been cleared."""
        with self._lock:
            return self._cleared

class CompletionSignal:
    """One-shot signal that the result stream has been fully drained."""

    _event: Event

    def __init__(self) -> None:
        self._event = Event()

    def signal(self) -> None:
        """Mark the stream finished. Later calls are no-ops."""
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until signalled. Returns False only if ``timeout`` expired."""
        return self._event.wait(timeout=timeout)

    def is_set(self) -> bool:
        """Return whether the signal has fired."""
        return self._event.is_set()
