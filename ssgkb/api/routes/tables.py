"""Mapping table endpoints."""

from fastapi import APIRouter, Depends, Query

from ssgkb.api.dependencies import get_store
from ssgkb.api.models.content import (
    TableEntryListResponse,
    TableEntryResponse,
    TableListResponse,
    TableResponse,
)
from ssgkb.db.store import SSGStore

router = APIRouter(prefix="/tables", tags=["Tables"])


@router.get("", response_model=TableListResponse)
async def list_tables(
    product: str = Query(default=""),
    table_type: str = Query(default="", description='Mapping type, e.g. "cces" or "nistrefs"'),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> TableListResponse:
    tables, total = await store.list_tables(product, table_type, offset, limit)
    return TableListResponse(items=[TableResponse.model_validate(t) for t in tables], total=total)


@router.get("/{table_id}", response_model=TableResponse)
async def get_table(table_id: str, store: SSGStore = Depends(get_store)) -> TableResponse:
    table = await store.get_table(table_id)
    return TableResponse.model_validate(table)


@router.get("/{table_id}/entries", response_model=TableEntryListResponse)
async def list_table_entries(
    table_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> TableEntryListResponse:
    """List a table's rows in source order."""
    await store.get_table(table_id)
    entries, total = await store.list_table_entries(table_id, offset, limit)
    return TableEntryListResponse(
        items=[TableEntryResponse.model_validate(e) for e in entries],
        total=total,
    )
