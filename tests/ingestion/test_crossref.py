"""Tests for cross-reference extraction and the closure pass."""

import json
from pathlib import Path

from ssgkb.db.models import CrossReference, DataStream, DSProfile, Guide, Table, TableEntry
from ssgkb.ingestion.crossref import (
    extract_data_stream_edges,
    extract_guide_edges,
    extract_manifest_edges,
    extract_table_edges,
    materialize_closure,
)
from ssgkb.ingestion.datastream import parse_data_stream
from ssgkb.ingestion.guide import parse_guide
from ssgkb.ingestion.manifest import parse_manifest
from ssgkb.ingestion.table import parse_table

SSG_DIR = Path(__file__).parents[1] / "fixtures" / "ssg"
PROFILE = "xccdf_org.ssgproject.content_profile_"


def _edge(source_type, source_id, target_type, target_id, link_type, metadata=None) -> CrossReference:
    return CrossReference(
        source_type=source_type,
        source_id=source_id,
        target_type=target_type,
        target_id=target_id,
        link_type=link_type,
        metadata_json=json.dumps(metadata or {}),
    )


def _keys(edges: list[CrossReference]) -> list[tuple[str, str, str, str, str]]:
    return [(e.source_type, e.source_id, e.target_type, e.target_id, e.link_type) for e in edges]


class TestExtractEdges:
    """Tests for the per-format extractors."""

    def test_guide_edges(self) -> None:
        parsed = parse_guide(SSG_DIR / "guides" / "ssg-test-guide-cis.html")
        edges = extract_guide_edges(parsed.guide)

        assert len(edges) == 5
        rule_edges = [e for e in edges if e.link_type == "rule_id"]
        # Deduplicated by full id, in order of first appearance
        assert [e.target_id for e in rule_edges] == [
            "xccdf_org.ssgproject.content_rule_package_aide_installed",
            "xccdf_org.ssgproject.content_rule_aide_build_database",
            "xccdf_org.ssgproject.content_rule_account_disable_post_pw_expiration",
        ]
        assert all(e.source_type == "guide" and e.source_id == "ssg-test-guide-cis" for e in edges)
        assert json.loads(rule_edges[0].metadata_json) == {
            "full_rule_id": "xccdf_org.ssgproject.content_rule_package_aide_installed",
            "rule_short_id": "package_aide_installed",
        }
        assert ("guide", "ssg-test-guide-cis", "product", "test", "product") in _keys(edges)
        assert (
            "guide",
            "ssg-test-guide-cis",
            "profile",
            "xccdf_org.ssgproject.content_profile_cis_server_l1",
            "profile_id",
        ) in _keys(edges)

    def test_table_edges(self) -> None:
        parsed = parse_table(SSG_DIR / "tables" / "table-test-cces.html")
        edges = extract_table_edges(parsed.table, parsed.entries)

        assert _keys(edges) == [
            ("table", "table-test-cces", "cce", "CCE-80644-8", "cce"),
            ("table", "table-test-cces", "cce", "CCE-80647-1", "cce"),
            ("table", "table-test-cces", "product", "test", "product"),
        ]
        assert json.loads(edges[0].metadata_json)["rule_title"] == "Install the tmux Package"

    def test_table_edges_skip_non_cce_and_duplicates(self) -> None:
        table = Table(id="table-x-cces", product="", table_type="cces", title="x")
        entries = [
            TableEntry(table_id=table.id, mapping="CCE-1-2", rule_title="a"),
            TableEntry(table_id=table.id, mapping="CCE-1-2", rule_title="b"),
            TableEntry(table_id=table.id, mapping="AC-2(1)", rule_title="c"),
        ]
        edges = extract_table_edges(table, entries)
        assert _keys(edges) == [("table", "table-x-cces", "cce", "CCE-1-2", "cce")]

    def test_manifest_edges(self) -> None:
        parsed = parse_manifest(SSG_DIR / "manifests" / "manifest-test.json")
        edges = extract_manifest_edges(parsed.manifest, parsed.profiles)

        assert _keys(edges) == [
            ("manifest", "manifest-test", "profile", f"{PROFILE}cis", "profile_id"),
            ("manifest", "manifest-test", "profile", f"{PROFILE}stig", "profile_id"),
            ("manifest", "manifest-test", "product", "test", "product"),
        ]
        assert json.loads(edges[1].metadata_json) == {"profile_id": "stig", "rule_count": 3}

    def test_data_stream_edges(self) -> None:
        parsed = parse_data_stream(SSG_DIR / "datastreams" / "ssg-test-ds.xml")
        edges = extract_data_stream_edges(parsed.data_stream, parsed.profiles, parsed.rules)

        keys = _keys(edges)
        assert len(edges) == 6
        assert ("datastream", "scap_test_datastream", "cce", "CCE-12345-6", "cce") in keys
        # Both CCE identifier systems are accepted
        assert ("datastream", "scap_test_datastream", "cce", "CCE-12346-7", "cce") in keys
        assert (
            "datastream",
            "scap_test_datastream",
            "profile",
            "xccdf_org.ssgproject.content_profile_test_cis",
            "profile_id",
        ) in keys
        assert keys[-1] == ("datastream", "scap_test_datastream", "product", "test", "product")

    def test_data_stream_edges_ignore_other_ident_systems(self) -> None:
        parsed = parse_data_stream(SSG_DIR / "datastreams" / "ssg-test-ds.xml")
        parsed.rules[0].identifiers[0].system = "http://example.org/other"
        edges = extract_data_stream_edges(parsed.data_stream, parsed.profiles, parsed.rules)
        assert "CCE-12345-6" not in [e.target_id for e in edges]


class TestMaterializeClosure:
    """Tests for the symmetric closure pass."""

    def test_shared_cce_links_both_ways(self) -> None:
        edges = [
            _edge("guide", "guide-1", "cce", "CCE-80644-8", "cce"),
            _edge("datastream", "ds-1", "cce", "CCE-80644-8", "cce"),
        ]
        closure = materialize_closure(edges)
        assert _keys(closure) == [
            ("guide", "guide-1", "datastream", "ds-1", "cce"),
            ("datastream", "ds-1", "guide", "guide-1", "cce"),
        ]

    def test_every_edge_has_its_inverse(self) -> None:
        edges = [
            _edge("guide", "g1", "product", "p", "product"),
            _edge("table", "t1", "product", "p", "product"),
            _edge("manifest", "m1", "product", "p", "product"),
            _edge("guide", "g1", "rule", "r1", "rule_id"),
            _edge("datastream", "d1", "rule", "r1", "rule_id"),
        ]
        closure = materialize_closure(edges)
        keys = set(_keys(closure))
        assert len(closure) == 8
        for st, sid, tt, tid, lt in keys:
            assert (tt, tid, st, sid, lt) in keys

    def test_metadata_comes_from_the_source_edge(self) -> None:
        edges = [
            _edge("guide", "g1", "product", "p", "product", {"side": "guide"}),
            _edge("table", "t1", "product", "p", "product", {"side": "table"}),
        ]
        closure = materialize_closure(edges)
        assert json.loads(closure[0].metadata_json) == {"side": "guide"}
        assert json.loads(closure[1].metadata_json) == {"side": "table"}

    def test_same_source_is_not_linked_to_itself(self) -> None:
        edges = [
            _edge("guide", "g1", "cce", "CCE-1-1", "cce"),
            _edge("guide", "g1", "cce", "CCE-1-1", "cce"),
        ]
        assert materialize_closure(edges) == []

    def test_object_targets_are_skipped(self) -> None:
        edges = [
            _edge("guide", "g1", "datastream", "d1", "cce"),
            _edge("table", "t1", "datastream", "d1", "cce"),
        ]
        assert materialize_closure(edges) == []

    def test_different_link_types_do_not_mix(self) -> None:
        edges = [
            _edge("guide", "g1", "profile", "x", "profile_id"),
            _edge("table", "t1", "product", "x", "product"),
        ]
        assert materialize_closure(edges) == []

    def test_duplicates_collapse(self) -> None:
        edges = [
            _edge("guide", "g1", "cce", "CCE-1-1", "cce"),
            _edge("table", "t1", "cce", "CCE-1-1", "cce"),
            _edge("table", "t1", "cce", "CCE-1-1", "cce"),
        ]
        assert len(materialize_closure(edges)) == 2

    def test_shared_profile_links_manifest_guide_and_data_stream(self, tmp_path) -> None:
        path = tmp_path / "manifest-rhel9.json"
        path.write_text(json.dumps({"product_name": "rhel9", "profiles": {"cis": {"rules": ["a"]}}}))
        manifest = parse_manifest(path)
        profile_id = f"{PROFILE}cis"

        edges = [
            *extract_manifest_edges(manifest.manifest, manifest.profiles),
            *extract_guide_edges(Guide(id="ssg-rhel9-guide-cis", profile_id=profile_id)),
            *extract_data_stream_edges(
                DataStream(id="ds-rhel9"), [DSProfile(benchmark_id="b", id=profile_id, title="CIS")], []
            ),
        ]
        closure = [e for e in materialize_closure(edges) if e.link_type == "profile_id"]

        peers = {(e.source_id, e.target_id) for e in closure}
        assert peers == {
            ("manifest-rhel9", "ssg-rhel9-guide-cis"),
            ("manifest-rhel9", "ds-rhel9"),
            ("ssg-rhel9-guide-cis", "manifest-rhel9"),
            ("ssg-rhel9-guide-cis", "ds-rhel9"),
            ("ds-rhel9", "manifest-rhel9"),
            ("ds-rhel9", "ssg-rhel9-guide-cis"),
        }
