# Copyright (c) Syntropy Systems
"""Reads engine output and writes the results to the store."""
from __future__ import annotations

import logging
from datetime import timedelta
from threading import Lock, Thread
from typing import IO, TYPE_CHECKING, Protocol

from resultflow.flush import CompletionSignal, FlushListener
from resultflow.parser import AutodetectResultsParser

if TYPE_CHECKING:
    from collections.abc import Iterator
    from contextlib import AbstractContextManager

    from resultflow.models.results import (
        AnomalyRecord,
        AutodetectResult,
        Bucket,
        CategoryDefinition,
        Influencer,
        ModelDebugOutput,
        ModelSizeStats,
        ModelSnapshot,
        Quantiles,
    )

logger = logging.getLogger(__name__)


class _ResultsPersister(Protocol):
    def delete_interim_results(self, job_id: str) -> None:
        ...

    def persist_bucket(self, bucket: Bucket) -> None:
        ...

    def persist_records(self, records: list[AnomalyRecord]) -> None:
        ...

    def persist_influencers(self, influencers: list[Influencer]) -> None:
        ...

    def persist_category_definition(self, category: CategoryDefinition) -> None:
        ...

    def persist_model_debug_output(self, output: ModelDebugOutput) -> None:
        ...

    def persist_model_size_stats(self, stats: ModelSizeStats) -> None:
        ...

    def persist_model_snapshot(self, snapshot: ModelSnapshot) -> None:
        ...

    def persist_quantiles(self, quantiles: Quantiles) -> None:
        ...

    def commit_writes(self, job_id: str) -> None:
        ...


class _Renormaliser(Protocol):
    def renormalise(self, quantiles: Quantiles) -> None:
        ...

    def renormalise_with_partition(self, quantiles: Quantiles) -> None:
        ...

    def wait_until_idle(self) -> None:
        ...

    def shutdown(self) -> None:
        ...


class _ResultsParser(Protocol):
    def parse_results(
        self,
        stream: IO[bytes],
    ) -> AbstractContextManager[Iterator[AutodetectResult]]:
        ...


class Context:
    """Per-run state owned by the processing thread."""

    job_id: str
    is_per_partition_normalization: bool
    delete_interim_required: bool

    def __init__(self, job_id: str, is_per_partition_normalization: bool) -> None:  # noqa: FBT001
        self.job_id = job_id
        self.is_per_partition_normalization = is_per_partition_normalization
        # Interim results left by a previous run must go before the first bucket
        self.delete_interim_required = True


class AutodetectResultProcessor:
    """Reads the engine's result stream and persists each result.

    ``process`` is meant to run on one dedicated thread for the job's
    lifetime. Other threads can wait for the stream to finish, wait for a
    particular flush to be acknowledged, or read the latest model size stats.
    """

    _renormaliser: _Renormaliser
    _persister: _ResultsPersister
    _parser: _ResultsParser
    _flush_listener: FlushListener
    _completion: CompletionSignal
    _state_lock: Lock
    _started: bool
    _failed: bool
    _bucket_count: int
    _latest_model_size_stats: ModelSizeStats | None

    def __init__(
        self,
        renormaliser: _Renormaliser,
        persister: _ResultsPersister,
        parser: _ResultsParser | None = None,
        flush_listener: FlushListener | None = None,
    ) -> None:
        self._renormaliser = renormaliser
        self._persister = persister
        self._parser = parser or AutodetectResultsParser()
        self._flush_listener = FlushListener() if flush_listener is None else flush_listener
        self._completion = CompletionSignal()
        self._state_lock = Lock()
        self._started = False
        self._failed = False
        self._bucket_count = 0
        self._latest_model_size_stats = None

    def start(
        self,
        job_id: str,
        in_stream: IO[bytes],
        is_per_partition_normalization: bool = False,  # noqa: FBT001, FBT002
    ) -> Thread:
        """Run ``process`` on a new daemon thread and return the thread."""
        thread = Thread(
            target=self.process,
            args=(job_id, in_stream, is_per_partition_normalization),
            name=f"results-{job_id}",
            daemon=True,
        )
        thread.start()
        return thread

    def process(
        self,
        job_id: str,
        in_stream: IO[bytes],
        is_per_partition_normalization: bool = False,  # noqa: FBT001, FBT002
    ) -> None:
        """Consume the result stream until it ends.

        Errors from the stream or the store stop processing and are logged,
        never raised. Whatever the outcome, completion is signalled, all
        flush waiters are released and the renormaliser is shut down.
        """
        with self._state_lock:
            if self._started:
                msg = f"[{job_id}] Result processing has already been started"
                raise RuntimeError(msg)
            self._started = True

        logger.info("[%s] Processing results", job_id)
        try:
            with self._parser.parse_results(in_stream) as results:
                context = Context(job_id, is_per_partition_normalization)
                for result in results:
                    self.process_result(context, result)
                    if result.bucket is not None:
                        self._bucket_count += 1
                        logger.debug(
                            "[%s] Bucket number %d parsed from output",
                            job_id,
                            self._bucket_count,
                        )
                logger.info(
                    "[%s] %d buckets parsed from output - committing results",
                    job_id,
                    self._bucket_count,
                )
                self._persister.commit_writes(job_id)
            logger.info("[%s] Parse results complete", job_id)
        except Exception as exc:
            self._failed = True
            logger.exception(
                "[%s] Error processing results after %d bucket(s)",
                job_id,
                self._bucket_count,
                exc_info=exc,
            )
        finally:
            self._completion.signal()
            self._flush_listener.clear()
            self._renormaliser.shutdown()

    def process_result(self, context: Context, result: AutodetectResult) -> None:  # noqa: C901
        """Apply a single result to the store, in arrival order."""
        bucket = result.bucket
        if bucket is not None:
            if context.delete_interim_required:
                # Interim results come from a flush and are superseded by
                # the next finalized bucket
                logger.debug("[%s] Deleting interim results", context.job_id)
                self._persister.delete_interim_results(context.job_id)
                context.delete_interim_required = False
            if context.is_per_partition_normalization:
                _ = bucket.calc_max_normalized_probability_per_partition()
            self._persister.persist_bucket(bucket)

        if result.records:
            self._persister.persist_records(result.records)

        if result.influencers:
            self._persister.persist_influencers(result.influencers)

        if result.category_definition is not None:
            self._persister.persist_category_definition(result.category_definition)

        if result.model_debug_output is not None:
            self._persister.persist_model_debug_output(result.model_debug_output)

        stats = result.model_size_stats
        if stats is not None:
            logger.debug(
                "[%s] Parsed ModelSizeStats: %d / %d / %d / %d / %d / %s",
                context.job_id,
                stats.model_bytes,
                stats.total_by_field_count,
                stats.total_over_field_count,
                stats.total_partition_field_count,
                stats.bucket_allocation_failures_count,
                stats.memory_status.value,
            )
            with self._state_lock:
                self._latest_model_size_stats = stats
            self._persister.persist_model_size_stats(stats)

        if result.model_snapshot is not None:
            self._persister.persist_model_snapshot(result.model_snapshot)

        quantiles = result.quantiles
        if quantiles is not None:
            self._persister.persist_quantiles(quantiles)
            logger.debug(
                "[%s] Quantiles parsed from output - will trigger renormalisation of scores",
                context.job_id,
            )
            if context.is_per_partition_normalization:
                self._renormaliser.renormalise_with_partition(quantiles)
            else:
                self._renormaliser.renormalise(quantiles)

        ack = result.flush_acknowledgement
        if ack is not None:
            logger.debug(
                "[%s] Flush acknowledgement parsed from output for ID %s",
                context.job_id,
                ack.id,
            )
            # Waiters may only see the ack once the writes before it are durable
            self._persister.commit_writes(context.job_id)
            self._flush_listener.acknowledge_flush(ack.id)
            # The flush may have produced interim results
            context.delete_interim_required = True

    def await_completion(self, timeout: float | None = None) -> bool:
        """Block until the result stream has been fully processed."""
        return self._completion.wait(timeout)

    def wait_for_flush_acknowledgement(
        self,
        flush_id: str,
        timeout: timedelta | float,
    ) -> bool:
        """Block until a flush is acknowledged or the timeout expires.

        Args:
            flush_id: Id of the flush request to wait for
            timeout: How long to wait, as a timedelta or seconds

        Returns:
            True if the flush completed or processing finished,
            False if the timeout expired.

        """
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        return self._flush_listener.wait_for_flush(flush_id, timeout)

    def wait_until_renormaliser_is_idle(self) -> None:
        """Block until queued renormalisations have finished."""
        self._renormaliser.wait_until_idle()

    def model_size_stats(self) -> ModelSizeStats | None:
        """Return the most recent model size stats, if any were seen."""
        with self._state_lock:
            return self._latest_model_size_stats

    def pending_flush_ids(self) -> list[str]:
        """Return flush ids still being waited on."""
        return self._flush_listener.pending_flush_ids()

    @property
    def is_complete(self) -> bool:
        """Return whether processing has finished."""
        return self._completion.is_set()

    @property
    def failed(self) -> bool:
        """Return whether processing stopped on an error."""
        return self._failed

    @property
    def bucket_count(self) -> int:
        """Number of buckets processed so far."""
        return self._bucket_count
