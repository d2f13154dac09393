"""FastAPI application exposing a running result processor."""

from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from ..processor import AutodetectResultProcessor
from .models import (
    ErrorResponse,
    FlushResponse,
    HealthResponse,
    ModelSizeStatsResponse,
    StatusResponse,
)

# Upper bound on a single flush wait so a request can't pin a worker thread forever
MAX_FLUSH_TIMEOUT = 300.0


def get_processor(request: Request) -> AutodetectResultProcessor:
    """Get the processor the app was created for."""
    return request.app.state.processor


def create_app(
    processor: AutodetectResultProcessor,
    job_id: Optional[str] = None,
    default_flush_timeout: float = 30.0,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        processor: Processor whose state is exposed
        job_id: Job the processor is handling, reported in status
        default_flush_timeout: Seconds to wait when a request gives no timeout

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="resultflow",
        description="Result processing status for a streaming anomaly detection job",
        version="0.1.0",
    )
    app.state.processor = processor
    app.state.job_id = job_id

    @app.get("/health", response_model=HealthResponse)
    def health():
        """Liveness check."""
        return HealthResponse()

    @app.get("/status", response_model=StatusResponse)
    def status(proc: AutodetectResultProcessor = Depends(get_processor)):
        """Report whether processing has finished."""
        return StatusResponse(
            job_id=app.state.job_id,
            complete=proc.is_complete,
            failed=proc.failed,
            bucket_count=proc.bucket_count,
            pending_flush_ids=proc.pending_flush_ids(),
        )

    @app.get("/flush/{flush_id}", response_model=FlushResponse)
    def wait_for_flush(
        flush_id: str,
        timeout: Optional[float] = Query(
            None,
            ge=0.0,
            le=MAX_FLUSH_TIMEOUT,
            description="Seconds to wait for the acknowledgement",
        ),
        proc: AutodetectResultProcessor = Depends(get_processor),
    ):
        """Block until the flush is acknowledged, processing ends, or the timeout expires."""
        wait = default_flush_timeout if timeout is None else timeout
        acknowledged = proc.wait_for_flush_acknowledgement(flush_id, wait)
        return FlushResponse(flush_id=flush_id, acknowledged=acknowledged)

    @app.get(
        "/model_size_stats",
        response_model=ModelSizeStatsResponse,
        responses={404: {"model": ErrorResponse}},
    )
    def model_size_stats(proc: AutodetectResultProcessor = Depends(get_processor)):
        """Return the latest model size stats."""
        stats = proc.model_size_stats()
        if stats is None:
            raise HTTPException(status_code=404, detail="No model size stats yet")
        return ModelSizeStatsResponse(model_size_stats=stats)

    return app
