# =============================================================================
# Lock Manager — Per-Document Mutual Exclusion
# =============================================================================
#
# Guarantees at most one embedding pass in flight per document. The lock is
# the document's own `embedding_status` column: `processing` = locked.
# There is no lock table.
#
# HOW ACQUIRE STAYS RACE-FREE:
# acquire() is ONE statement:
#
#   UPDATE documents
#      SET embedding_status = 'processing'
#    WHERE id = :document_id
#      AND embedding_status <> 'processing'
#
# The database evaluates the predicate against the row's current value
# under its row lock, so of N concurrent callers exactly one sees
# rowcount == 1. A SELECT followed by an UPDATE would let two callers both
# observe "not processing" and both proceed.
#
# NO EXPIRY:
# A worker killed mid-run leaves the document `processing` forever. Nothing
# reclaims it automatically; an operator resets it through
# POST /jobs/documents/{id}/recover.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from embed_queue.db.models import Document, EmbeddingStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockHeldError(Exception):
    """An embedding pass is already in flight for this document."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(
            f"Embedding generation already in progress for document "
            f"{document_id}"
        )


class LockManager:
    """Acquire / release the `processing` flag on documents.embedding_status."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def acquire(self, document_id: str) -> bool:
        """
        Atomically flip the document to `processing`.

        Returns True if this call changed the status, False if the document
        was already `processing` (or does not exist). Store errors propagate.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.embedding_status != EmbeddingStatus.PROCESSING,
                )
                .values(embedding_status=EmbeddingStatus.PROCESSING)
            )
            await session.commit()

        acquired = result.rowcount == 1
        if acquired:
            logger.info("Acquired embedding lock for document %s", document_id)
        else:
            logger.info(
                "Document %s is already locked or missing", document_id,
            )
        return acquired

    async def release(
        self,
        document_id: str,
        final_status: EmbeddingStatus,
    ) -> None:
        """
        Set the document's final embedding status.

        Best-effort: a failure is logged and swallowed, never retried. The
        document then stays `processing` until an operator resets it.
        """
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(Document)
                    .where(Document.id == document_id)
                    .values(embedding_status=final_status)
                )
                await session.commit()
        except Exception:
            logger.exception(
                "Failed to release embedding lock for document %s "
                "(wanted status=%s); document stays locked",
                document_id, final_status.value,
            )
            return

        logger.info(
            "Released embedding lock for document %s (status=%s)",
            document_id, final_status.value,
        )

    async def is_locked(self, document_id: str) -> bool:
        """
        Point-in-time read of `embedding_status == processing`.

        Advisory only: the answer may be stale by the time the caller acts
        on it. Never gate a mutation on this; use acquire().
        """
        try:
            async with self._session_factory() as session:
                status = (
                    await session.execute(
                        select(Document.embedding_status)
                        .where(Document.id == document_id)
                    )
                ).scalar_one_or_none()
        except Exception:
            logger.exception("Failed to check lock for document %s", document_id)
            return False

        return status == EmbeddingStatus.PROCESSING

    async def with_lock(
        self,
        document_id: str,
        final_status: EmbeddingStatus | Callable[[T], EmbeddingStatus],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run `operation` while holding the document lock.

        Args:
            document_id: Document to lock.
            final_status: Status written on release. Either fixed, or a
                callable deriving it from the operation's result. When the
                operation raises and `final_status` is a callable, the lock
                is released with ERROR.
            operation: Zero-argument coroutine function.

        Raises:
            LockHeldError: The lock was not acquired; `operation` never ran.
        """
        if not await self.acquire(document_id):
            raise LockHeldError(document_id)

        status_on_exit = (
            EmbeddingStatus.ERROR if callable(final_status) else final_status
        )
        try:
            result = await operation()
            if callable(final_status):
                status_on_exit = final_status(result)
            return result
        finally:
            await self.release(document_id, status_on_exit)
