# =============================================================================
# Services Package — Queue Core
# =============================================================================
# Leaves first:
#   - job_store.py: data access for embedding_jobs rows
#   - chunk_store.py: unembedded chunk reads, per-chunk embedding writes
#   - lock_manager.py: per-document mutex on documents.embedding_status
#   - embedder.py: batch embedding executor (OpenAI-compatible provider)
#   - processor.py: runs one job end-to-end, classifies the outcome
#   - dispatcher.py: picks a bounded batch of jobs and runs them in order
#   - stats.py: read-only job counts over a trailing window
# =============================================================================
