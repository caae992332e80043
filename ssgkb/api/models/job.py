"""Pydantic models for import job API requests."""

from pydantic import BaseModel, Field


class StartImportRequest(BaseModel):
    """Request model for starting an import run."""

    run_id: str | None = Field(
        default=None,
        max_length=64,
        description="Optional run id; a random one is generated when omitted",
    )
