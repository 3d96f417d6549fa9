# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery beat is the time-based trigger of the embedding queue. Every
# `dispatch_interval_seconds` it enqueues one `dispatch_embedding_jobs`
# task; a worker runs one dispatch cycle for it.
#
# ARCHITECTURE:
# ┌────────────┐     ┌───────┐     ┌──────────────┐     ┌────────────┐
# │ Celery beat│────▶│ Redis │────▶│ Celery Worker│────▶│ PostgreSQL │
# │ (schedule) │     │(broker)│    │ (dispatcher)  │    │ (job rows) │
# └────────────┘     └───────┘     └──────────────┘     └────────────┘
#
# The queue itself lives in PostgreSQL (embedding_jobs). Redis only carries
# the "run a cycle now" tick, so losing a tick costs one cycle of latency
# and nothing else.
#
# Run:
#   celery -A embed_queue.workers.celery_app worker --beat --loglevel=info
# =============================================================================

from celery import Celery

from embed_queue.config import settings

celery_app = Celery(
    "embed_queue.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only. Pickle can execute arbitrary code on deserialization.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # A dispatch tick lost to a worker crash is harmless (the next tick
    # re-derives everything from the database), but acks_late keeps it.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # Wall-clock budget for one dispatch cycle. A cycle killed here can
    # leave a document locked; see POST /jobs/documents/{id}/recover.
    task_soft_time_limit=300,
    task_time_limit=360,

    # --- Results ---
    result_expires=3600,

    # --- Schedule ---
    beat_schedule={
        "dispatch-embedding-jobs": {
            "task": "dispatch_embedding_jobs",
            "schedule": float(settings.dispatch_interval_seconds),
            # A tick older than one interval is superseded by the next one
            "options": {"expires": settings.dispatch_interval_seconds},
        },
    },

    include=["embed_queue.workers.tasks"],
)
