"""Pydantic models for the resultflow status API."""

from typing import Optional

from pydantic import BaseModel, Field

from resultflow.models.results import ModelSizeStats


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"


class StatusResponse(BaseModel):
    """Processing status for the served job."""

    job_id: Optional[str] = None
    complete: bool
    failed: bool
    bucket_count: int
    pending_flush_ids: list[str] = Field(default_factory=list)


class FlushResponse(BaseModel):
    """Outcome of waiting on a flush acknowledgement."""

    flush_id: str
    acknowledged: bool = Field(
        ...,
        description="False when the wait timed out before the flush completed",
    )


class ModelSizeStatsResponse(BaseModel):
    """Latest model size stats seen in the stream."""

    model_size_stats: ModelSizeStats

    model_config = {"protected_namespaces": ()}


class ErrorResponse(BaseModel):
    """Error response."""

    detail: str
