"""Data-stream and benchmark endpoints."""

from fastapi import APIRouter, Depends, Query

from ssgkb.api.dependencies import get_store
from ssgkb.api.models.datastream import (
    BenchmarkResponse,
    DataStreamListResponse,
    DataStreamResponse,
    DSGroupResponse,
    DSProfileResponse,
    DSRuleListResponse,
    DSRuleResponse,
)
from ssgkb.db.store import SSGStore

router = APIRouter(prefix="/datastreams", tags=["Data streams"])
benchmarks_router = APIRouter(prefix="/benchmarks", tags=["Data streams"])


@router.get("", response_model=DataStreamListResponse)
async def list_data_streams(
    product: str = Query(default=""),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> DataStreamListResponse:
    streams, total = await store.list_data_streams(product, offset, limit)
    return DataStreamListResponse(
        items=[DataStreamResponse.model_validate(ds) for ds in streams],
        total=total,
    )


@router.get("/{data_stream_id}", response_model=DataStreamResponse)
async def get_data_stream(data_stream_id: str, store: SSGStore = Depends(get_store)) -> DataStreamResponse:
    """Fetch a data stream with its embedded benchmark(s)."""
    ds = await store.get_data_stream(data_stream_id)
    benchmarks = await store.list_benchmarks(data_stream_id)
    response = DataStreamResponse.model_validate(ds)
    response.benchmarks = [BenchmarkResponse.model_validate(b) for b in benchmarks]
    return response


@benchmarks_router.get("/{benchmark_id}", response_model=BenchmarkResponse)
async def get_benchmark(benchmark_id: str, store: SSGStore = Depends(get_store)) -> BenchmarkResponse:
    benchmark = await store.get_benchmark(benchmark_id)
    return BenchmarkResponse.model_validate(benchmark)


@benchmarks_router.get("/{benchmark_id}/profiles", response_model=list[DSProfileResponse])
async def list_ds_profiles(
    benchmark_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> list[DSProfileResponse]:
    await store.get_benchmark(benchmark_id)
    profiles, _ = await store.list_ds_profiles(benchmark_id, offset, limit)
    return [DSProfileResponse.model_validate(p) for p in profiles]


@benchmarks_router.get("/{benchmark_id}/profiles/{profile_id}", response_model=DSProfileResponse)
async def get_ds_profile(
    benchmark_id: str, profile_id: str, store: SSGStore = Depends(get_store)
) -> DSProfileResponse:
    profile = await store.get_ds_profile(benchmark_id, profile_id)
    return DSProfileResponse.model_validate(profile)


@benchmarks_router.get("/{benchmark_id}/groups", response_model=list[DSGroupResponse])
async def list_ds_groups(
    benchmark_id: str,
    parent_id: str | None = Query(default=None, description="Empty string selects top-level groups"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> list[DSGroupResponse]:
    await store.get_benchmark(benchmark_id)
    groups, _ = await store.list_ds_groups(benchmark_id, parent_id, offset, limit)
    return [DSGroupResponse.model_validate(g) for g in groups]


@benchmarks_router.get("/{benchmark_id}/groups/{group_id}", response_model=DSGroupResponse)
async def get_ds_group(benchmark_id: str, group_id: str, store: SSGStore = Depends(get_store)) -> DSGroupResponse:
    group = await store.get_ds_group(benchmark_id, group_id)
    return DSGroupResponse.model_validate(group)


@benchmarks_router.get("/{benchmark_id}/rules", response_model=DSRuleListResponse)
async def list_ds_rules(
    benchmark_id: str,
    group_id: str = Query(default=""),
    severity: str = Query(default="", pattern="^(|low|medium|high|unknown)$"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> DSRuleListResponse:
    await store.get_benchmark(benchmark_id)
    rules, total = await store.list_ds_rules(benchmark_id, group_id, severity, offset, limit)
    return DSRuleListResponse(items=[DSRuleResponse.model_validate(r) for r in rules], total=total)


@benchmarks_router.get("/{benchmark_id}/rules/{rule_id}", response_model=DSRuleResponse)
async def get_ds_rule(benchmark_id: str, rule_id: str, store: SSGStore = Depends(get_store)) -> DSRuleResponse:
    rule = await store.get_ds_rule(benchmark_id, rule_id)
    return DSRuleResponse.model_validate(rule)
