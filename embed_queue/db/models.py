# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌────────────────────┐       ┌──────────────────────────────────┐
# │  documents         │       │  chunks                          │
# ├────────────────────┤       ├──────────────────────────────────┤
# │ id (PK)            │──1:N─▶│ id (PK)                          │
# │ filename           │       │ document_id (FK → documents.id)  │
# │ embedding_status   │       │ chunk_index / page_number        │
# │ created_at         │       │ content (text)                   │
# │ updated_at         │       │ embedding (vector, nullable)     │
# └────────────────────┘       │ embedding_model / embedded_at    │
#           │                  └──────────────────────────────────┘
#           │1:N
#           ▼
# ┌──────────────────────────────────┐
# │  embedding_jobs                  │
# ├──────────────────────────────────┤
# │ id (PK)                          │
# │ document_id (FK → documents.id)  │
# │ status / priority                │
# │ retry_count / max_retries        │
# │ created_at / started_at /        │
# │ completed_at / error_message     │
# └──────────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. `documents.embedding_status` is the per-document lock. `processing`
#    means an embedding pass is in flight. There is no lock table; the
#    LockManager flips this column with a single conditional UPDATE.
#
# 2. Job and document statuses are separate enums. A job can finish
#    `complete` while its document ends `partial` or `error`: the job
#    tracks "did the run finish", the document tracks "how many chunks
#    made it".
#
# 3. String enums stored by value ("pending", not "PENDING") so that the
#    table reads naturally in psql and in ops dashboards.
#
# 4. UUID string primary keys: job ids are handed to HTTP clients and must
#    not be guessable or sequential.
# =============================================================================

import enum
import uuid
from datetime import UTC, datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from embed_queue.config import settings


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware UTC now. Used for all timestamps written by the queue."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class EmbeddingStatus(str, enum.Enum):
    """
    Embedding state of a document, doubling as its lock flag.

        IDLE ──acquire──▶ PROCESSING ──release──▶ COMPLETE | PARTIAL | ERROR
          ▲                                           │
          └──────────────── next acquire ─────────────┘
    """

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETE = "complete"
    PARTIAL = "partial"
    ERROR = "error"


class JobStatus(str, enum.Enum):
    """
    Lifecycle of an embedding job.

    State machine:
        PENDING → PROCESSING → COMPLETE
                             → ERROR     (retries exhausted)
                             → PENDING   (retry, retry_count += 1)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Document(Base):
    """
    A document whose chunks get embedded.

    Document ingestion (upload, OCR, chunking) happens elsewhere; this
    service only owns `embedding_status`.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    filename: Mapped[str | None] = mapped_column(String(500), nullable=True)

    embedding_status: Mapped[EmbeddingStatus] = mapped_column(
        Enum(
            EmbeddingStatus,
            name="embedding_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=EmbeddingStatus.IDLE,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    chunks: Mapped[list["Chunk"]] = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, filename='{self.filename}', "
            f"embedding_status={self.embedding_status})>"
        )


class Chunk(Base):
    """
    A unit of document text embedded independently.

    Selected for embedding by `embedding IS NULL`; once a vector is stored
    the chunk is never re-submitted.
    """

    __tablename__ = "chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Position within the document (0-indexed)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Page of the source PDF, for citations (1-indexed)
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    # Provider model that produced `embedding`, so vectors from different
    # models are never compared against each other.
    embedding_model: Mapped[str | None] = mapped_column(String(200), nullable=True)

    embedded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, doc_id={self.document_id}, "
            f"index={self.chunk_index}, embedded={self.embedded_at is not None})>"
        )


class EmbeddingJob(Base):
    """One request to embed all un-embedded chunks of a document."""

    __tablename__ = "embedding_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", values_callable=_enum_values),
        nullable=False,
        default=JobStatus.PENDING,
    )

    # Lower sorts first
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=lambda: settings.job_max_retries,
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set client-side: eligibility order is (priority, created_at) and
    # server_default=now() collapses jobs enqueued in the same transaction.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<EmbeddingJob(id={self.id}, doc_id={self.document_id}, "
            f"status={self.status}, retry={self.retry_count}/{self.max_retries})>"
        )


# =============================================================================
# Database Indexes
# =============================================================================

# Unembedded chunk lookup per document
chunk_document_idx = Index(
    "idx_chunk_document_id",
    Chunk.document_id,
    Chunk.chunk_index,
)

# Eligibility scan: WHERE status = 'pending' ORDER BY priority, created_at
job_eligibility_idx = Index(
    "idx_embedding_job_eligibility",
    EmbeddingJob.status,
    EmbeddingJob.priority,
    EmbeddingJob.created_at,
)

# Active-job lookup on enqueue
job_document_status_idx = Index(
    "idx_embedding_job_document_status",
    EmbeddingJob.document_id,
    EmbeddingJob.status,
)

# Stats window
job_created_at_idx = Index(
    "idx_embedding_job_created_at",
    EmbeddingJob.created_at,
)
