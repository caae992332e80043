"""Pydantic models for mapping table and manifest API responses."""

from datetime import datetime

from pydantic import BaseModel


class TableResponse(BaseModel):
    """Response model for a mapping table."""

    id: str
    product: str
    table_type: str
    title: str
    description: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TableListResponse(BaseModel):
    items: list[TableResponse]
    total: int


class TableEntryResponse(BaseModel):
    """One row of a mapping table."""

    id: int
    table_id: str
    mapping: str
    rule_title: str
    description: str
    rationale: str

    model_config = {"from_attributes": True}


class TableEntryListResponse(BaseModel):
    """Paginated response for listing table rows in source order."""

    items: list[TableEntryResponse]
    total: int


class ManifestResponse(BaseModel):
    id: str
    product: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ManifestListResponse(BaseModel):
    items: list[ManifestResponse]
    total: int


class ProfileResponse(BaseModel):
    """Response model for a manifest profile."""

    id: str
    manifest_id: str
    product: str
    profile_id: str
    rule_count: int

    model_config = {"from_attributes": True}


class ProfileListResponse(BaseModel):
    items: list[ProfileResponse]
    total: int


class ProfileRulesResponse(BaseModel):
    """Rule short ids listed by a profile, in manifest order."""

    profile_id: str
    rules: list[str]
