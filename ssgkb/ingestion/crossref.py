"""Cross-reference extraction and closure.

Extraction turns each parsed object into edges pointing at identifier nodes
(rule ids, CCE numbers, products, profiles). The closure pass then links
every pair of objects that point at the same identifier, in both directions,
so that any object can find every other object it shares an identifier with.

All functions here are pure: they build transient CrossReference rows and
never touch the store.
"""

import json
from typing import Any

from ssgkb.db.models import (
    CrossReference,
    DataStream,
    DSProfile,
    DSRule,
    Guide,
    Manifest,
    Profile,
    Table,
    TableEntry,
)
from ssgkb.types import (
    CCE_PATTERN,
    CCE_SYSTEMS,
    IDENTIFIER_TYPES,
    PROFILE_ID_PREFIX,
    RULE_ID_PATTERN,
    RULE_ID_PREFIX,
    LinkType,
    ObjectType,
)


def _edge(
    source_type: ObjectType,
    source_id: str,
    target_type: ObjectType,
    target_id: str,
    link_type: LinkType,
    metadata: dict[str, Any],
) -> CrossReference:
    return CrossReference(
        source_type=source_type.value,
        source_id=source_id,
        target_type=target_type.value,
        target_id=target_id,
        link_type=link_type.value,
        metadata_json=json.dumps(metadata, sort_keys=True),
    )


def _rule_edge(source_type: ObjectType, source_id: str, full_rule_id: str) -> CrossReference:
    short_id = full_rule_id[len(RULE_ID_PREFIX) :] if full_rule_id.startswith(RULE_ID_PREFIX) else full_rule_id
    return _edge(
        source_type,
        source_id,
        ObjectType.RULE,
        full_rule_id,
        LinkType.RULE_ID,
        {"rule_short_id": short_id, "full_rule_id": full_rule_id},
    )


def _product_edge(source_type: ObjectType, source_id: str, product: str) -> CrossReference:
    return _edge(
        source_type, source_id, ObjectType.PRODUCT, product, LinkType.PRODUCT, {"product_name": product}
    )


def extract_guide_edges(guide: Guide) -> list[CrossReference]:
    """Edges for a guide: rule ids found in its HTML, its product and its profile.

    Rule ids are deduplicated by full id, in order of first appearance.
    """
    edges: list[CrossReference] = []
    seen: set[str] = set()
    for match in RULE_ID_PATTERN.finditer(guide.html_content or ""):
        full_id = match.group(0)
        if full_id in seen:
            continue
        seen.add(full_id)
        edges.append(_rule_edge(ObjectType.GUIDE, guide.id, full_id))

    if guide.product:
        edges.append(_product_edge(ObjectType.GUIDE, guide.id, guide.product))
    if guide.profile_id:
        edges.append(
            _edge(
                ObjectType.GUIDE,
                guide.id,
                ObjectType.PROFILE,
                guide.profile_id,
                LinkType.PROFILE_ID,
                {"profile_id": guide.profile_id, "profile_name": guide.title or ""},
            )
        )
    return edges


def extract_table_edges(table: Table, entries: list[TableEntry]) -> list[CrossReference]:
    """Edges for a table: one per distinct CCE mapping plus its product."""
    edges: list[CrossReference] = []
    seen: set[str] = set()
    for entry in entries:
        mapping = (entry.mapping or "").strip()
        if not CCE_PATTERN.fullmatch(mapping) or mapping in seen:
            continue
        seen.add(mapping)
        edges.append(
            _edge(
                ObjectType.TABLE,
                table.id,
                ObjectType.CCE,
                mapping,
                LinkType.CCE,
                {"cce_number": mapping, "rule_title": entry.rule_title or ""},
            )
        )
    if table.product:
        edges.append(_product_edge(ObjectType.TABLE, table.id, table.product))
    return edges


def extract_manifest_edges(manifest: Manifest, profiles: list[Profile]) -> list[CrossReference]:
    """Edges for a manifest: one per profile plus its product.

    Profile edges target the full XCCDF profile id, the same identifier guides
    and data streams point at.
    """
    edges = [
        _edge(
            ObjectType.MANIFEST,
            manifest.id,
            ObjectType.PROFILE,
            f"{PROFILE_ID_PREFIX}{profile.profile_id}",
            LinkType.PROFILE_ID,
            {"profile_id": profile.profile_id, "rule_count": profile.rule_count or 0},
        )
        for profile in profiles
    ]
    if manifest.product:
        edges.append(_product_edge(ObjectType.MANIFEST, manifest.id, manifest.product))
    return edges


def extract_data_stream_edges(
    data_stream: DataStream, profiles: list[DSProfile], rules: list[DSRule]
) -> list[CrossReference]:
    """Edges for a data stream: rule ids, CCE identifiers, profiles and product."""
    edges: list[CrossReference] = []
    seen_rules: set[str] = set()
    seen_cces: set[str] = set()

    for rule in rules:
        if rule.id and rule.id not in seen_rules:
            seen_rules.add(rule.id)
            edges.append(_rule_edge(ObjectType.DATASTREAM, data_stream.id, rule.id))
        for ident in rule.identifiers:
            value = (ident.identifier or "").strip()
            if ident.system not in CCE_SYSTEMS or not CCE_PATTERN.fullmatch(value) or value in seen_cces:
                continue
            seen_cces.add(value)
            edges.append(
                _edge(
                    ObjectType.DATASTREAM,
                    data_stream.id,
                    ObjectType.CCE,
                    value,
                    LinkType.CCE,
                    {"cce_number": value, "full_rule_id": rule.id},
                )
            )

    for profile in profiles:
        edges.append(
            _edge(
                ObjectType.DATASTREAM,
                data_stream.id,
                ObjectType.PROFILE,
                profile.id,
                LinkType.PROFILE_ID,
                {"profile_id": profile.id, "profile_name": profile.title or ""},
            )
        )

    if data_stream.product:
        edges.append(_product_edge(ObjectType.DATASTREAM, data_stream.id, data_stream.product))
    return edges


def materialize_closure(edges: list[CrossReference]) -> list[CrossReference]:
    """Link objects that share an identifier.

    Edges are bucketed by (link_type, target_id); only edges whose target is
    an identifier node take part. For every pair of edges in a bucket with
    distinct sources, an edge is emitted in each direction, carrying the
    metadata of the edge it starts from. Output is deduplicated and
    deterministic for a given input order.

    Args:
        edges: Extracted edges (any order).

    Returns:
        New object-to-object edges.
    """
    buckets: dict[tuple[str, str], list[CrossReference]] = {}
    for edge in edges:
        if edge.target_type not in IDENTIFIER_TYPES:
            continue
        buckets.setdefault((edge.link_type, edge.target_id), []).append(edge)

    out: list[CrossReference] = []
    seen: set[tuple[str, str, str, str, str]] = set()
    for (link_type, _), bucket in buckets.items():
        for i, a in enumerate(bucket):
            for b in bucket[i + 1 :]:
                if (a.source_type, a.source_id) == (b.source_type, b.source_id):
                    continue
                for src, dst in ((a, b), (b, a)):
                    key = (src.source_type, src.source_id, dst.source_type, dst.source_id, link_type)
                    if key in seen:
                        continue
                    seen.add(key)
                    out.append(
                        CrossReference(
                            source_type=src.source_type,
                            source_id=src.source_id,
                            target_type=dst.source_type,
                            target_id=dst.source_id,
                            link_type=link_type,
                            metadata_json=src.metadata_json,
                        )
                    )
    return out
