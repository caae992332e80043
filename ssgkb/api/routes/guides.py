"""Guide, group and rule browsing endpoints."""

from fastapi import APIRouter, Depends, Query, Response
from loguru import logger

from ssgkb.api.dependencies import get_store
from ssgkb.api.models.guide import (
    GroupResponse,
    GuideListResponse,
    GuideResponse,
    GuideTreeResponse,
    RuleListResponse,
    RuleResponse,
    TreeNodeResponse,
)
from ssgkb.db.store import SSGStore

router = APIRouter(prefix="/guides", tags=["Guides"])
rules_router = APIRouter(prefix="/rules", tags=["Guides"])


@router.get("", response_model=GuideListResponse)
async def list_guides(
    product: str = Query(default=""),
    profile_id: str = Query(default=""),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> GuideListResponse:
    """List guides ordered by title, optionally filtered by product or profile."""
    guides, total = await store.list_guides(product, profile_id, offset, limit)
    return GuideListResponse(
        items=[GuideResponse.model_validate(g) for g in guides],
        total=total,
    )


@router.get("/{guide_id}", response_model=GuideResponse)
async def get_guide(guide_id: str, store: SSGStore = Depends(get_store)) -> GuideResponse:
    guide = await store.get_guide(guide_id)
    return GuideResponse.model_validate(guide)


@router.delete("/{guide_id}", status_code=204)
async def delete_guide(guide_id: str, store: SSGStore = Depends(get_store)) -> Response:
    """Delete a guide together with its groups, rules and references."""
    await store.delete_guide(guide_id)
    logger.info("Deleted guide via API: {}", guide_id)
    return Response(status_code=204)


@router.get("/{guide_id}/tree", response_model=GuideTreeResponse)
async def get_guide_tree(guide_id: str, store: SSGStore = Depends(get_store)) -> GuideTreeResponse:
    """Return the guide with its flat group/rule lists and the nested forest."""
    tree = await store.get_tree(guide_id)
    nodes = await store.build_tree_nodes(guide_id)
    return GuideTreeResponse(
        guide=GuideResponse.model_validate(tree.guide),
        groups=[GroupResponse.model_validate(g) for g in tree.groups],
        rules=[RuleResponse.model_validate(r) for r in tree.rules],
        nodes=[TreeNodeResponse.model_validate(n.to_dict()) for n in nodes],
    )


@router.get("/{guide_id}/groups", response_model=list[GroupResponse])
async def list_root_groups(guide_id: str, store: SSGStore = Depends(get_store)) -> list[GroupResponse]:
    await store.get_guide(guide_id)
    groups = await store.get_root_groups(guide_id)
    return [GroupResponse.model_validate(g) for g in groups]


@router.get("/{guide_id}/groups/{group_id}", response_model=GroupResponse)
async def get_group(guide_id: str, group_id: str, store: SSGStore = Depends(get_store)) -> GroupResponse:
    group = await store.get_group(guide_id, group_id)
    return GroupResponse.model_validate(group)


@router.get("/{guide_id}/groups/{group_id}/children")
async def get_group_children(guide_id: str, group_id: str, store: SSGStore = Depends(get_store)) -> dict:
    """Direct child groups and rules of a group, each ordered by title."""
    await store.get_group(guide_id, group_id)
    groups = await store.get_child_groups(guide_id, group_id)
    rules = await store.get_child_rules(guide_id, group_id)
    return {
        "groups": [GroupResponse.model_validate(g).model_dump() for g in groups],
        "rules": [RuleResponse.model_validate(r).model_dump() for r in rules],
    }


@router.get("/{guide_id}/rules/{rule_id}", response_model=RuleResponse)
async def get_rule(guide_id: str, rule_id: str, store: SSGStore = Depends(get_store)) -> RuleResponse:
    rule = await store.get_rule(guide_id, rule_id)
    return RuleResponse.model_validate(rule)


@rules_router.get("", response_model=RuleListResponse)
async def list_rules(
    guide_id: str = Query(default=""),
    group_id: str = Query(default=""),
    severity: str = Query(default="", pattern="^(|low|medium|high|unknown)$"),
    profile: str = Query(default="", description='Manifest profile id, e.g. "al2023:cis"'),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    store: SSGStore = Depends(get_store),
) -> RuleListResponse:
    """List guide rules across all guides with optional filters."""
    rules, total = await store.list_rules(guide_id, group_id, severity, profile, offset, limit)
    return RuleListResponse(
        items=[RuleResponse.model_validate(r) for r in rules],
        total=total,
    )
