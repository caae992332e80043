"""Pydantic models for data-stream API responses."""

from datetime import datetime

from pydantic import BaseModel, Field


class BenchmarkResponse(BaseModel):
    """Response model for the benchmark embedded in a data stream."""

    id: str
    data_stream_id: str
    title: str
    description: str
    version: str
    status: str
    status_date: str
    profile_count: int
    group_count: int
    rule_count: int

    model_config = {"from_attributes": True}


class DataStreamResponse(BaseModel):
    """Response model for a data stream and its benchmark(s)."""

    id: str
    product: str
    scap_version: str
    timestamp: str
    created_at: datetime
    benchmarks: list[BenchmarkResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DataStreamListResponse(BaseModel):
    items: list[DataStreamResponse]
    total: int


class DSProfileRuleResponse(BaseModel):
    rule_id: str
    selected: bool

    model_config = {"from_attributes": True}


class DSProfileResponse(BaseModel):
    """Response model for an XCCDF profile and its select list."""

    benchmark_id: str
    id: str
    title: str
    description: str
    version: str
    rule_count: int
    selected_rules: list[DSProfileRuleResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DSGroupResponse(BaseModel):
    benchmark_id: str
    id: str
    parent_id: str
    title: str
    description: str
    level: int
    group_count: int
    rule_count: int

    model_config = {"from_attributes": True}


class DSRuleReferenceResponse(BaseModel):
    href: str
    ref_id: str

    model_config = {"from_attributes": True}


class DSRuleIdentifierResponse(BaseModel):
    system: str
    identifier: str

    model_config = {"from_attributes": True}


class DSRuleResponse(BaseModel):
    """Response model for an XCCDF rule inside a benchmark."""

    benchmark_id: str
    id: str
    group_id: str
    title: str
    description: str
    rationale: str
    severity: str
    selected: bool
    weight: str
    version: str
    references: list[DSRuleReferenceResponse] = Field(default_factory=list)
    identifiers: list[DSRuleIdentifierResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DSRuleListResponse(BaseModel):
    """Paginated response for listing benchmark rules."""

    items: list[DSRuleResponse]
    total: int
