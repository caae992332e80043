"""Manifest and profile endpoints."""

from fastapi import APIRouter, Depends, Query

from ssgkb.api.dependencies import get_store
from ssgkb.api.models.content import (
    ManifestListResponse,
    ManifestResponse,
    ProfileListResponse,
    ProfileResponse,
    ProfileRulesResponse,
)
from ssgkb.db.store import SSGStore

router = APIRouter(prefix="/manifests", tags=["Manifests"])
profiles_router = APIRouter(prefix="/profiles", tags=["Manifests"])


@router.get("", response_model=ManifestListResponse)
async def list_manifests(
    product: str = Query(default=""),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> ManifestListResponse:
    manifests, total = await store.list_manifests(product, offset, limit)
    return ManifestListResponse(
        items=[ManifestResponse.model_validate(m) for m in manifests],
        total=total,
    )


@router.get("/{manifest_id}", response_model=ManifestResponse)
async def get_manifest(manifest_id: str, store: SSGStore = Depends(get_store)) -> ManifestResponse:
    manifest = await store.get_manifest(manifest_id)
    return ManifestResponse.model_validate(manifest)


@profiles_router.get("", response_model=ProfileListResponse)
async def list_profiles(
    product: str = Query(default=""),
    manifest_id: str = Query(default=""),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> ProfileListResponse:
    profiles, total = await store.list_profiles(product, manifest_id, offset, limit)
    return ProfileListResponse(
        items=[ProfileResponse.model_validate(p) for p in profiles],
        total=total,
    )


@profiles_router.get("/{profile_id}", response_model=ProfileResponse)
async def get_profile(profile_id: str, store: SSGStore = Depends(get_store)) -> ProfileResponse:
    """Fetch a manifest profile by its "{product}:{short}" id."""
    profile = await store.get_profile(profile_id)
    return ProfileResponse.model_validate(profile)


@profiles_router.get("/{profile_id}/rules", response_model=ProfileRulesResponse)
async def get_profile_rules(profile_id: str, store: SSGStore = Depends(get_store)) -> ProfileRulesResponse:
    await store.get_profile(profile_id)
    rows = await store.get_profile_rules(profile_id)
    return ProfileRulesResponse(profile_id=profile_id, rules=[r.rule_short_id for r in rows])
