"""Cross-reference query and closure endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from ssgkb.api.dependencies import get_bus, get_store
from ssgkb.api.models.crossref import (
    CrossReferenceListResponse,
    CrossReferenceResponse,
    MaterializeResponse,
)
from ssgkb.db.store import SSGStore
from ssgkb.worker.rpc import LOCAL_TARGET, LocalRPCBus

router = APIRouter(prefix="/crossrefs", tags=["Cross references"])


def _edge_page(edges: list) -> CrossReferenceListResponse:
    items = [CrossReferenceResponse.model_validate(e) for e in edges]
    return CrossReferenceListResponse(items=items, count=len(items))


@router.get("/outgoing", response_model=CrossReferenceListResponse)
async def get_outgoing(
    source_type: str = Query(..., min_length=1),
    source_id: str = Query(..., min_length=1),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=0, ge=0, le=1000, description="0 returns every edge"),
    store: SSGStore = Depends(get_store),
) -> CrossReferenceListResponse:
    edges = await store.get_cross_references(source_type, source_id, limit, offset)
    return _edge_page(edges)


@router.get("/incoming", response_model=CrossReferenceListResponse)
async def get_incoming(
    target_type: str = Query(..., min_length=1),
    target_id: str = Query(..., min_length=1),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=0, ge=0, le=1000, description="0 returns every edge"),
    store: SSGStore = Depends(get_store),
) -> CrossReferenceListResponse:
    edges = await store.get_cross_references_by_target(target_type, target_id, limit, offset)
    return _edge_page(edges)


@router.get("/related", response_model=CrossReferenceListResponse)
async def find_related(
    object_type: str = Query(..., min_length=1),
    object_id: str = Query(..., min_length=1),
    link_type: str = Query(default="", pattern="^(|rule_id|cce|product|profile_id)$"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=0, ge=0, le=1000, description="0 returns every edge"),
    store: SSGStore = Depends(get_store),
) -> CrossReferenceListResponse:
    """Edges touching an object in either direction."""
    edges = await store.find_related_objects(object_type, object_id, link_type, limit, offset)
    return _edge_page(edges)


@router.post("/materialize", response_model=MaterializeResponse)
async def materialize(bus: LocalRPCBus = Depends(get_bus)) -> MaterializeResponse:
    """Run the closure pass over every stored identifier edge."""
    resp = await bus.invoke(LOCAL_TARGET, "MaterializeCrossReferences")
    if resp.is_error:
        logger.error("Cross reference materialization failed: {}", resp.error)
        raise HTTPException(status_code=500, detail=resp.error)
    return MaterializeResponse(**resp.payload)
