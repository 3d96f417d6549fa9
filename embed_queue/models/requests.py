# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Wire format is camelCase (`documentId`), Python attributes are snake_case.
# `populate_by_name=True` lets tests and internal callers use either.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CreateJobRequest(BaseModel):
    """
    Request body for POST /jobs/create — enqueue a document for embedding.

    Example:
        {"documentId": "3f0c…", "priority": 0}
    """

    # Optional at the schema level so a missing id is reported as 400
    # (the documented contract) rather than FastAPI's default 422.
    document_id: str | None = Field(
        default=None,
        description="ID of the document whose chunks should be embedded",
    )

    priority: int = Field(
        default=0,
        description="Lower values are dispatched first. Ties go to the oldest job.",
        examples=[0],
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"documentId": "0b9a6f1e-3c41-4b8e-9d2a-5f0e1c7d8a90", "priority": 0},
            ]
        },
    )
