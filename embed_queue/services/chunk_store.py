# =============================================================================
# Chunk Store — Unembedded Chunk Reads & Per-Chunk Embedding Writes
# =============================================================================
#
# DESIGN DECISION: One session per chunk write.
# A document can have hundreds of chunks. If they were all written in one
# transaction, a single bad row (dimension mismatch, deleted chunk, dropped
# connection) would abort the whole batch on PostgreSQL. Writing each chunk
# in its own short transaction keeps failures isolated to that chunk, which
# is what lets a run end `partial` instead of `error`.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from embed_queue.db.models import Chunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingChunk:
    """The slice of a chunk row the processor needs."""

    id: str
    content: str


class ChunkStore:
    """Reads and writes the `chunks` table on behalf of the job processor."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def fetch_unembedded(self, document_id: str) -> list[PendingChunk]:
        """Chunks of the document with a NULL embedding, in document order."""
        stmt = (
            select(Chunk.id, Chunk.content)
            .where(
                Chunk.document_id == document_id,
                Chunk.embedding.is_(None),
            )
            .order_by(Chunk.chunk_index.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [PendingChunk(id=row.id, content=row.content) for row in rows]

    async def save_embedding(
        self,
        chunk_id: str,
        embedding: Sequence[float],
        model: str,
        embedded_at: datetime,
    ) -> bool:
        """
        Store one chunk's vector.

        Returns False if the chunk no longer exists. Store errors propagate;
        the processor counts them per chunk.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(Chunk)
                .where(Chunk.id == chunk_id)
                .values(
                    embedding=list(embedding),
                    embedding_model=model,
                    embedded_at=embedded_at,
                )
            )
            await session.commit()
        return result.rowcount == 1
