# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engine, session factories, and ORM models.
#
# Key exports:
#   - async_session_factory / get_session_factory: shared session factory
#   - create_worker_session_factory: NullPool factory for Celery runs
#   - Base: SQLAlchemy declarative base for ORM models
#   - Document, Chunk, EmbeddingJob: ORM models
# =============================================================================
