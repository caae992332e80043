"""Tests for Pydantic API request/response models."""

import pytest
from datetime import datetime, timezone

from ssgkb.api.models.crossref import CrossReferenceResponse
from ssgkb.api.models.guide import TreeNodeResponse
from ssgkb.api.models.job import StartImportRequest
from ssgkb.db.models import CrossReference
from ssgkb.db.tree import TreeNode


class TestCrossReferenceResponse:
    """Tests for decoding stored edges."""

    def _edge(self, metadata_json: str) -> CrossReference:
        return CrossReference(
            id=7,
            source_type="table",
            source_id="table-al2023-cces",
            target_type="cce",
            target_id="CCE-80644-8",
            link_type="cce",
            metadata_json=metadata_json,
            created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )

    def test_metadata_is_decoded(self) -> None:
        resp = CrossReferenceResponse.model_validate(self._edge('{"cce_number": "CCE-80644-8"}'))
        assert resp.id == 7
        assert resp.metadata == {"cce_number": "CCE-80644-8"}

    def test_broken_metadata_becomes_empty(self) -> None:
        resp = CrossReferenceResponse.model_validate(self._edge("{not json"))
        assert resp.metadata == {}

    def test_plain_dict_input(self) -> None:
        resp = CrossReferenceResponse.model_validate(
            {
                "id": 1,
                "source_type": "guide",
                "source_id": "g",
                "target_type": "product",
                "target_id": "al2023",
                "link_type": "product",
                "metadata": {"product_name": "al2023"},
            }
        )
        assert resp.metadata["product_name"] == "al2023"
        assert resp.created_at is None


class TestTreeNodeResponse:
    def test_nested_nodes(self) -> None:
        root = TreeNode(kind="group", id="g", parent_id="", level=0, title="G", rule_count=1)
        root.children.append(TreeNode(kind="rule", id="r", parent_id="g", level=1, title="R", severity="high"))

        resp = TreeNodeResponse.model_validate(root.to_dict())

        assert resp.kind == "group"
        assert resp.children[0].severity == "high"


class TestStartImportRequest:
    def test_run_id_optional(self) -> None:
        assert StartImportRequest().run_id is None

    def test_run_id_too_long(self) -> None:
        with pytest.raises(Exception):
            StartImportRequest(run_id="x" * 65)
