# Copyright (c) Syntropy Systems
"""Pydantic models for the result kinds emitted by the analytic engine."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from .base import MutableResultModel, ResultflowBaseModel


class MemoryStatus(str, Enum):
    """Memory pressure reported alongside model size stats."""

    OK = "ok"
    SOFT_LIMIT = "soft_limit"
    HARD_LIMIT = "hard_limit"


class AnomalyRecord(ResultflowBaseModel):
    """A single anomalous observation within a bucket."""

    job_id: str
    timestamp: int
    bucket_span: int | None = None
    sequence_num: int = 0
    probability: float = 0.0
    normalized_probability: float = 0.0
    initial_normalized_probability: float = 0.0
    anomaly_score: float = 0.0
    function: str | None = None
    field_name: str | None = None
    by_field_name: str | None = None
    by_field_value: str | None = None
    over_field_name: str | None = None
    over_field_value: str | None = None
    partition_field_name: str | None = None
    partition_field_value: str | None = None
    actual: list[float] | None = None
    typical: list[float] | None = None
    is_interim: bool = False


class BucketInfluencer(ResultflowBaseModel):
    """Influence of one field on the bucket's overall score."""

    influencer_field_name: str
    probability: float = 0.0
    raw_anomaly_score: float = 0.0
    anomaly_score: float = 0.0
    initial_anomaly_score: float = 0.0


class Bucket(MutableResultModel):
    """Results for one bucket span of the job's time series."""

    job_id: str
    timestamp: int
    bucket_span: int
    anomaly_score: float = 0.0
    initial_anomaly_score: float = 0.0
    max_normalized_probability: float = 0.0
    record_count: int = 0
    event_count: int = 0
    is_interim: bool = False
    records: list[AnomalyRecord] = Field(default_factory=list)
    bucket_influencers: list[BucketInfluencer] = Field(default_factory=list)
    per_partition_max_probability: dict[str, float] = Field(default_factory=dict)

    def calc_max_normalized_probability_per_partition(self) -> dict[str, float]:
        """Fill ``per_partition_max_probability`` from the bucket's records.

        Records without a partition value are grouped under the empty string.
        """
        maxima: dict[str, float] = {}
        for record in self.records:
            key = record.partition_field_value or ""
            current = maxima.get(key)
            if current is None or record.normalized_probability > current:
                maxima[key] = record.normalized_probability
        self.per_partition_max_probability = maxima
        return maxima


class Influencer(ResultflowBaseModel):
    """An influencer value and its anomaly score for a bucket."""

    job_id: str
    timestamp: int
    influencer_field_name: str
    influencer_field_value: str
    probability: float = 0.0
    anomaly_score: float = 0.0
    initial_anomaly_score: float = 0.0
    is_interim: bool = False


class CategoryDefinition(ResultflowBaseModel):
    """A message category discovered by categorization."""

    job_id: str
    category_id: int
    terms: str = ""
    regex: str = ""
    max_matching_length: int = 0
    examples: list[str] = Field(default_factory=list)


class ModelDebugOutput(ResultflowBaseModel):
    """Model bounds emitted when debug output is enabled."""

    job_id: str
    timestamp: int
    partition_field_name: str | None = None
    partition_field_value: str | None = None
    over_field_name: str | None = None
    over_field_value: str | None = None
    by_field_name: str | None = None
    by_field_value: str | None = None
    debug_feature: str | None = None
    debug_lower: float = 0.0
    debug_upper: float = 0.0
    debug_median: float = 0.0
    actual: float = 0.0


class ModelSizeStats(ResultflowBaseModel):
    """Memory usage statistics of the engine's models."""

    job_id: str
    model_bytes: int = 0
    total_by_field_count: int = 0
    total_over_field_count: int = 0
    total_partition_field_count: int = 0
    bucket_allocation_failures_count: int = 0
    memory_status: MemoryStatus = MemoryStatus.OK
    log_time: int | None = None
    timestamp: int | None = None


class Quantiles(ResultflowBaseModel):
    """Normalizer state used to renormalise previously written scores."""

    job_id: str
    timestamp: int
    quantile_state: str = ""


class ModelSnapshot(ResultflowBaseModel):
    """A persisted point-in-time copy of the engine's model state."""

    job_id: str
    snapshot_id: str
    timestamp: int | None = None
    description: str | None = None
    restore_priority: int = 0
    snapshot_doc_count: int = 0
    latest_record_time_stamp: int | None = None
    latest_result_time_stamp: int | None = None
    model_size_stats: ModelSizeStats | None = None
    quantiles: Quantiles | None = None


class FlushAcknowledgement(ResultflowBaseModel):
    """Marker that all output preceding a flush request has been emitted."""

    id: str


class AutodetectResult(ResultflowBaseModel):
    """One element of the engine's output stream.

    The engine populates a single field per element.
    """

    bucket: Bucket | None = None
    records: list[AnomalyRecord] | None = None
    influencers: list[Influencer] | None = None
    category_definition: CategoryDefinition | None = None
    model_debug_output: ModelDebugOutput | None = None
    model_size_stats: ModelSizeStats | None = None
    model_snapshot: ModelSnapshot | None = None
    quantiles: Quantiles | None = None
    flush_acknowledgement: FlushAcknowledgement | None = Field(
        default=None,
        alias="flush",
    )
