# =============================================================================
# Batch Embedding Executor — Provider-Agnostic Vector Generation
# =============================================================================
#
# Sends chunk texts to any OpenAI-compatible embedding API in bounded
# sub-batches and reports per-item success or failure.
#
# DESIGN DECISION: OpenAI SDK with configurable base_url.
# OpenAI, OpenRouter, DashScope and most self-hosted gateways expose the
# OpenAI /embeddings contract, so one client covers all of them.
#
# DESIGN DECISION: Failures are data, not exceptions.
# A provider error or a malformed response body on one sub-batch marks
# every index of that sub-batch as failed and moves on to the next
# sub-batch. Items the provider silently drops, or returns with the wrong
# dimensionality, are failed individually. The caller gets a full-length
# result and decides what "partial" means.
#
# A missing API key is a configuration error, not a provider failure: it
# raises, and the job goes through its retries with that message.
#
# DESIGN DECISION: No retry logic here. Retries happen at the job level
# (retry_count / max_retries), on the next dispatch cycle, which gives a
# rate-limited provider time to recover.
#
# This module never touches the database or the lock manager.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import openai
from openai import AsyncOpenAI

from embed_queue.config import settings

logger = logging.getLogger(__name__)


@dataclass
class BatchEmbeddingResult:
    """
    Output of embed_batch(), positionally aligned with the input texts.

    embeddings[i] is None exactly when i is in failed_indices.
    """

    embeddings: list[list[float] | None]
    total_tokens: int = 0
    failed_indices: set[int] = field(default_factory=set)

    @property
    def succeeded(self) -> int:
        return len(self.embeddings) - len(self.failed_indices)


# ---------------------------------------------------------------------------
# Embedding Client — Lazy Singleton
# ---------------------------------------------------------------------------
# The OpenAI client manages its own HTTP connection pool. Lazy
# initialization avoids import-time failures when no API key is set.
# ---------------------------------------------------------------------------

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    """Lazily initialize and cache the embedding client."""
    global _client
    if _client is None:
        resolved_key = settings.embedding_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set EMBEDDING_API_KEY or OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {
            "api_key": resolved_key,
            "timeout": settings.embedding_timeout_seconds,
            # Job-level retries own the retry policy
            "max_retries": 0,
        }
        if settings.embedding_base_url:
            client_kwargs["base_url"] = settings.embedding_base_url

        _client = AsyncOpenAI(**client_kwargs)

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            settings.embedding_model,
            settings.embedding_base_url or "https://api.openai.com/v1",
        )
    return _client


class EmbeddingExecutor:
    """
    Turns an ordered list of texts into an ordered list of vectors/absences.

    Args:
        client: AsyncOpenAI-compatible client. Defaults to the lazily
            created module client.
        model: Embedding model id. Defaults to settings.embedding_model.
        dimensions: Expected vector length. Defaults to
            settings.embedding_dimensions.
        batch_size: Texts per provider call. Defaults to
            settings.embedding_batch_size.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        batch_size: int | None = None,
    ):
        self._client = client
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.batch_size = batch_size or settings.embedding_batch_size

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = _get_client()
        return self._client

    async def embed_batch(self, texts: Sequence[str]) -> BatchEmbeddingResult:
        """
        Embed `texts`, preserving order.

        Blank texts are failed up front (providers reject empty input and
        would take the rest of the sub-batch down with them).
        """
        result = BatchEmbeddingResult(embeddings=[None] * len(texts))
        if not texts:
            return result

        for start in range(0, len(texts), self.batch_size):
            stop = min(start + self.batch_size, len(texts))
            await self._embed_sub_batch(texts, start, stop, result)

        logger.info(
            "Embedded %d/%d texts (model=%s, tokens=%d, failed=%d)",
            result.succeeded, len(texts), self.model,
            result.total_tokens, len(result.failed_indices),
        )
        return result

    async def _embed_sub_batch(
        self,
        texts: Sequence[str],
        start: int,
        stop: int,
        result: BatchEmbeddingResult,
    ) -> None:
        # Positions (absolute) of the texts actually sent to the provider
        positions: list[int] = []
        for i in range(start, stop):
            if texts[i] and texts[i].strip():
                positions.append(i)
            else:
                result.failed_indices.add(i)

        if not positions:
            return

        logger.info(
            "Embedding batch %d–%d of %d texts (model=%s)",
            start + 1, stop, len(texts), self.model,
        )

        create_kwargs: dict = {
            "model": self.model,
            "input": [texts[i] for i in positions],
        }
        if self.dimensions:
            create_kwargs["dimensions"] = self.dimensions

        try:
            response = await self.client.embeddings.create(**create_kwargs)
        except openai.OpenAIError as exc:
            logger.warning(
                "Embedding provider failed for batch %d–%d: %s",
                start + 1, stop, exc,
            )
            result.failed_indices.update(positions)
            return

        # An unreadable 200 body fails the sub-batch like an HTTP error
        try:
            vectors, tokens = self._read_response(response, positions)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning(
                "Malformed embedding response for batch %d–%d: %s",
                start + 1, stop, exc,
            )
            result.failed_indices.update(positions)
            return

        for position, vector in vectors.items():
            result.embeddings[position] = vector
        result.failed_indices.update(p for p in positions if p not in vectors)
        result.total_tokens += tokens

    def _read_response(
        self,
        response,
        positions: list[int],
    ) -> tuple[dict[int, list[float]], int]:
        """Map response items back to absolute positions. Returns (vectors, tokens)."""
        vectors: dict[int, list[float]] = {}
        for item in response.data:
            if item.index < 0 or item.index >= len(positions):
                logger.warning("Provider returned out-of-range index %d", item.index)
                continue
            position = positions[item.index]
            embedding = [float(x) for x in item.embedding]
            if self.dimensions and len(embedding) != self.dimensions:
                logger.warning(
                    "Discarding embedding for text %d: expected %d dimensions, "
                    "got %d",
                    position, self.dimensions, len(embedding),
                )
                continue
            vectors[position] = embedding

        tokens = 0
        if response.usage is not None:
            tokens = response.usage.prompt_tokens or response.usage.total_tokens or 0
        return vectors, tokens
