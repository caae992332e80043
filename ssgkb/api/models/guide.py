"""Pydantic models for guide, group and rule API responses."""

from datetime import datetime

from pydantic import BaseModel, Field


class GuideResponse(BaseModel):
    """Response model for a stored HTML guide (without its HTML)."""

    id: str
    product: str
    profile_id: str
    short_id: str
    title: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class GuideListResponse(BaseModel):
    """Paginated response for listing guides."""

    items: list[GuideResponse]
    total: int


class GroupResponse(BaseModel):
    """Response model for a group recovered from a guide."""

    guide_id: str
    id: str
    parent_id: str
    title: str
    description: str
    level: int
    group_count: int
    rule_count: int

    model_config = {"from_attributes": True}


class ReferenceResponse(BaseModel):
    href: str
    label: str
    value: str

    model_config = {"from_attributes": True}


class RuleResponse(BaseModel):
    """Response model for a rule recovered from a guide."""

    guide_id: str
    id: str
    group_id: str
    short_id: str
    title: str
    description: str
    rationale: str
    severity: str
    level: int
    references: list[ReferenceResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class RuleListResponse(BaseModel):
    """Paginated response for listing rules."""

    items: list[RuleResponse]
    total: int


class TreeNodeResponse(BaseModel):
    """A node of the group/rule forest; groups carry counts, rules carry severity."""

    kind: str
    id: str
    parent_id: str
    level: int
    title: str
    severity: str = ""
    group_count: int = 0
    rule_count: int = 0
    children: list["TreeNodeResponse"] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class GuideTreeResponse(BaseModel):
    """Response model for a guide's full tree."""

    guide: GuideResponse
    groups: list[GroupResponse]
    rules: list[RuleResponse]
    nodes: list[TreeNodeResponse]
