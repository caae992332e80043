"""End-to-end pipeline tests: Fetch -> List -> Parse -> Store -> Cross-link.

Runs the real importer over a copy of the fixture content tree with an
in-memory database; no network or git calls.
"""

import pytest

from ssgkb.types import JobState

GUIDE_ID = "ssg-test-guide-cis"


class TestEndToEndPipeline:
    """Full pipeline integration tests."""

    @pytest.mark.asyncio
    async def test_full_import(self, importer, store) -> None:
        await importer.start("e2e")
        run = await importer.wait()

        assert run.state == JobState.COMPLETED
        assert run.error == ""
        p = run.progress
        assert (p.processed_tables, p.processed_guides, p.processed_manifests, p.processed_datastreams) == (
            1,
            1,
            1,
            1,
        )
        assert (p.failed_tables, p.failed_guides, p.failed_manifests, p.failed_datastreams) == (0, 0, 0, 0)

        tree = await store.get_tree(GUIDE_ID)
        assert len(tree.groups) == 3
        assert len(tree.rules) == 3
        entries, _ = await store.list_table_entries("table-test-cces")
        assert len(entries) == 2
        profiles, _ = await store.list_profiles(manifest_id="manifest-test")
        assert len(profiles) == 2
        rules, _ = await store.list_ds_rules("xccdf_org.ssgproject.content_benchmark_TEST")
        assert len(rules) == 2

    @pytest.mark.asyncio
    async def test_closure_links_objects_sharing_a_product(self, importer, store) -> None:
        await importer.start("e2e")
        run = await importer.wait()
        assert run.metadata["cross_references"] == 12

        related = await store.find_related_objects("guide", GUIDE_ID, link_type="product")
        peers = {
            (e.target_type, e.target_id) if e.source_id == GUIDE_ID else (e.source_type, e.source_id)
            for e in related
        }
        assert peers == {
            ("product", "test"),
            ("table", "table-test-cces"),
            ("manifest", "manifest-test"),
            ("datastream", "scap_test_datastream"),
        }

    @pytest.mark.asyncio
    async def test_closure_edges_are_symmetric(self, importer, store) -> None:
        await importer.start("e2e")
        await importer.wait()

        for source_type, source_id in (
            ("guide", GUIDE_ID),
            ("table", "table-test-cces"),
            ("manifest", "manifest-test"),
            ("datastream", "scap_test_datastream"),
        ):
            for edge in await store.get_cross_references(source_type, source_id):
                if edge.target_type in ("product", "rule", "cce", "profile"):
                    continue
                inverse = await store.get_cross_references(edge.target_type, edge.target_id)
                assert any(
                    e.target_type == source_type and e.target_id == source_id and e.link_type == edge.link_type
                    for e in inverse
                )

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(self, importer, store) -> None:
        await importer.start("first")
        await importer.wait()
        before = await store.get_cross_references("guide", GUIDE_ID)

        await importer.start("second")
        run = await importer.wait()

        assert run.state == JobState.COMPLETED
        after = await store.get_cross_references("guide", GUIDE_ID)
        assert [e.id for e in after] == [e.id for e in before]
        rules, total = await store.list_rules(guide_id=GUIDE_ID)
        assert total == 3

    @pytest.mark.asyncio
    async def test_bad_file_is_counted_not_fatal(self, importer, source_tree) -> None:
        (source_tree / "datastreams" / "ssg-broken-ds.xml").write_text("<collection><unclosed>")

        await importer.start("e2e")
        run = await importer.wait()

        assert run.state == JobState.COMPLETED
        assert run.progress.total_datastreams == 2
        assert run.progress.failed_datastreams == 1
        assert run.progress.processed_datastreams == 1
