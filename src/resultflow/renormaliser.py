# Copyright (c) Syntropy Systems
"""Background renormalisation of scores when new quantiles arrive."""
from __future__ import annotations

import logging
from queue import Queue
from threading import Lock, Thread
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from resultflow.models.results import Quantiles

logger = logging.getLogger(__name__)

ScoresUpdater = Callable[["Quantiles", bool], None]

_SHUTDOWN = object()


class Renormaliser:
    """Queues renormalisation work and runs it on a single worker thread.

    Work items run in the order quantiles were submitted. Calls to
    ``renormalise`` return as soon as the item is queued, so the result
    stream is never held up by a slow update.
    """

    job_id: str
    _updater: ScoresUpdater | None
    _queue: Queue[object]
    _thread: Thread | None
    _lock: Lock
    _shutdown: bool
    _failure_count: int

    def __init__(self, job_id: str, updater: ScoresUpdater | None = None) -> None:
        """Initialize renormaliser.

        Args:
            job_id: Job whose scores are renormalised
            updater: Called with (quantiles, per_partition) for each item

        """
        self.job_id = job_id
        self._updater = updater
        self._queue = Queue()
        self._thread = None
        self._lock = Lock()
        self._shutdown = False
        self._failure_count = 0

    def renormalise(self, quantiles: Quantiles) -> None:
        """Queue a renormalisation across the whole job."""
        self._submit(quantiles, per_partition=False)

    def renormalise_with_partition(self, quantiles: Quantiles) -> None:
        """Queue a renormalisation within each partition."""
        self._submit(quantiles, per_partition=True)

    def _submit(self, quantiles: Quantiles, *, per_partition: bool) -> None:
        with self._lock:
            if self._shutdown:
                logger.warning(
                    "[%s] Renormaliser is shut down, ignoring quantiles at %d",
                    self.job_id,
                    quantiles.timestamp,
                )
                return
            if self._thread is None:
                self._thread = Thread(
                    target=self._work_loop,
                    name=f"renormaliser-{self.job_id}",
                    daemon=True,
                )
                self._thread.start()
            self._queue.put((quantiles, per_partition))

    def _work_loop(self) -> None:
        """Background work loop."""
        while True:
            item = self._queue.get()
            try:
                if item is _SHUTDOWN:
                    return
                quantiles, per_partition = item  # type: ignore[misc]
                self._run_update(quantiles, per_partition)
            finally:
                self._queue.task_done()

    def _run_update(self, quantiles: Quantiles, per_partition: bool) -> None:  # noqa: FBT001
        logger.debug(
            "[%s] Renormalising with quantiles at %d (per partition: %s)",
            self.job_id,
            quantiles.timestamp,
            per_partition,
        )
        if self._updater is None:
            return
        try:
            self._updater(quantiles, per_partition)
        except Exception as exc:
            with self._lock:
                self._failure_count += 1
            logger.exception("[%s] Renormalisation failed", self.job_id, exc_info=exc)

    def wait_until_idle(self) -> None:
        """Block until all queued renormalisations have finished."""
        self._queue.join()

    def shutdown(self) -> None:
        """Finish queued work and stop the worker thread."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            thread = self._thread
            if thread is not None:
                self._queue.put(_SHUTDOWN)

        if thread is not None:
            thread.join()
        logger.debug("[%s] Renormaliser shut down", self.job_id)

    @property
    def failure_count(self) -> int:
        """Number of renormalisations that raised."""
        with self._lock:
            return self._failure_count

    @property
    def is_shut_down(self) -> bool:
        """Return whether shutdown has been called."""
        with self._lock:
            return self._shutdown
