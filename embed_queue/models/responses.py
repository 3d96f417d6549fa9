# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API. Embedding
# vectors are never part of any response.
#
# All models serialize camelCase (`jobId`, `durationMs`); FastAPI's
# response_model_by_alias=True default takes care of that.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(_CamelModel):
    """
    Response for GET /health.

    `status` is "ok" when the database answered, "degraded" when it did not.
    """

    status: str = "ok"
    version: str
    service: str
    db_ok: bool


class CreateJobResponse(_CamelModel):
    """Response for POST /jobs/create."""

    job_id: str = Field(description="ID of the new or already-active job")
    status: str = Field(description="Current job status")
    message: str
    created: bool = Field(
        description="False when an active job for the document already existed",
    )


class ProcessJobsResponse(_CamelModel):
    """Response for POST /jobs/process — counters for one dispatch cycle."""

    processed: int = Field(description="Jobs that completed")
    failed: int = Field(description="Jobs that failed permanently or crashed")
    retried: int = Field(default=0, description="Jobs returned to pending")
    skipped: int = Field(
        default=0,
        description="Jobs skipped because another pass holds them",
    )
    duration_ms: int
    message: str


class JobStatsResponse(_CamelModel):
    """Response for GET /jobs/stats — job counts over the trailing window."""

    pending: int
    processing: int
    complete: int
    error: int
    total: int


class JobResponse(_CamelModel):
    """One embedding job as exposed by the listing endpoints."""

    id: str
    document_id: str
    status: str
    priority: int
    retry_count: int
    max_retries: int
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobListResponse(_CamelModel):
    """Response for GET /jobs."""

    jobs: list[JobResponse]
    total: int


class RecoverDocumentResponse(_CamelModel):
    """Response for POST /jobs/documents/{document_id}/recover."""

    document_id: str
    embedding_status: str
    requeued_jobs: int
