"""Pydantic models for cross-reference API responses."""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class CrossReferenceResponse(BaseModel):
    """A typed edge between two SSG objects.

    The stored metadata JSON string is decoded into ``metadata``.
    """

    id: int
    source_type: str
    source_id: str
    target_type: str
    target_id: str
    link_type: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def decode_metadata(cls, data: Any) -> Any:
        raw = getattr(data, "metadata_json", None)
        if raw is None:
            return data
        try:
            metadata = json.loads(raw or "{}")
        except ValueError:
            metadata = {}
        return {
            "id": data.id,
            "source_type": data.source_type,
            "source_id": data.source_id,
            "target_type": data.target_type,
            "target_id": data.target_id,
            "link_type": data.link_type,
            "metadata": metadata,
            "created_at": data.created_at,
        }


class CrossReferenceListResponse(BaseModel):
    """One page of edges; count is the page length."""

    items: list[CrossReferenceResponse]
    count: int


class MaterializeResponse(BaseModel):
    """Result of a closure pass over all extracted edges."""

    input_edges: int
    edges: int
