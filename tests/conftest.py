# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Queue tests run against a temporary SQLite file instead of PostgreSQL:
#   - schema created and rows seeded through a plain sync engine
#   - queue components driven through `sqlite+aiosqlite` with NullPool, so
#     every asyncio.run() (and every TestClient request) opens fresh
#     connections on its own event loop
#
# The pgvector column type is dialect-agnostic: on SQLite it stores the
# '[x,y,z]' text form and reads it back as a numpy array.
# =============================================================================

import os

# Must be set before embed_queue.config is imported anywhere
os.environ.setdefault("EMBEDDING_DIMENSIONS", "3")
os.environ.setdefault("EMBEDDING_MODEL", "test-embedding-model")
os.environ.setdefault("JOB_MAX_RETRIES", "3")

from collections.abc import Sequence  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from embed_queue.db.models import (  # noqa: E402
    Base,
    Chunk,
    Document,
    EmbeddingStatus,
)
from embed_queue.services.embedder import BatchEmbeddingResult  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    """SQLite file with the full schema created."""
    path = tmp_path / "queue.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def db_url(db_path) -> str:
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture
def session_factory(db_url) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(db_url, poolclass=NullPool)
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def sync_factory(db_path):
    """
    Sync session factory for seeding rows and asserting on them.

    Use one short `with sync_factory() as s:` block per read so no SQLite
    lock is held while the async code under test writes.
    """
    engine = create_engine(f"sqlite:///{db_path}")
    yield sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def make_document(sync_factory):
    """Insert a document with `chunks` unembedded chunks. Returns its id."""

    def _make(
        document_id: str | None = None,
        chunks: Sequence[str] = (),
        status: EmbeddingStatus = EmbeddingStatus.IDLE,
    ) -> str:
        doc = Document(filename="paper.pdf", embedding_status=status)
        if document_id is not None:
            doc.id = document_id
        with sync_factory() as session:
            session.add(doc)
            session.flush()
            for index, content in enumerate(chunks):
                session.add(
                    Chunk(document_id=doc.id, chunk_index=index, content=content)
                )
            session.commit()
        return doc.id

    return _make


class FakeExecutor:
    """
    Stand-in for EmbeddingExecutor.

    Returns [index, 0, 1] vectors, failing the configured indices, or raises
    `error` on every call.
    """

    model = "test-embedding-model"

    def __init__(self, failed: Sequence[int] = (), error: Exception | None = None):
        self.failed = set(failed)
        self.error = error
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return BatchEmbeddingResult(
            embeddings=[
                None if i in self.failed else [float(i), 0.0, 1.0]
                for i in range(len(texts))
            ],
            total_tokens=10 * len(texts),
            failed_indices=set(self.failed),
        )


@pytest.fixture
def fake_executor():
    """The FakeExecutor class, for building executors inside tests."""
    return FakeExecutor
