# =============================================================================
# Document Embedding Queue
# =============================================================================
# A durable, retryable job queue that turns uploaded documents into vector
# embeddings. Each document is embedded by at most one pass at a time, with
# the document's own `embedding_status` column acting as the lock.
#
# Package structure:
#   embed_queue/
#   ├── api/          → FastAPI route handlers (create, process, stats, list)
#   ├── db/           → Database engine, session factories, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Queue core (job store, lock manager, embedder,
#   │                    processor, dispatcher, stats)
#   └── workers/      → Celery app and the periodic dispatch task
# =============================================================================
