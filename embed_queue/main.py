# =============================================================================
# FastAPI Application
# =============================================================================
#
# Run locally:
#   uvicorn embed_queue.main:app --reload
#
# Trigger a dispatch cycle by hand:
#   curl -X POST -H "x-cron-secret: $CRON_SECRET" localhost:8000/jobs/process
# =============================================================================

import logging

from fastapi import FastAPI
from sqlalchemy import text

from embed_queue.api.jobs import router as jobs_router
from embed_queue.config import settings
from embed_queue.db.engine import async_session_factory
from embed_queue.models.responses import HealthResponse

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Durable, retryable embedding job queue. Documents are enqueued, "
        "dispatched in small priority-ordered batches, and embedded chunk by "
        "chunk with at most one pass per document at a time."
    ),
)
app.include_router(jobs_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    db_ok = True
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Health check: database unreachable: %s", exc)
        db_ok = False

    return HealthResponse(
        status="ok" if db_ok else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        db_ok=db_ok,
    )
