# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, kept separate from the ORM models
# in embed_queue/db/models.py so that embedding vectors and internal columns
# never leak onto the wire.
# =============================================================================
