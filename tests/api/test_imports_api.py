"""Tests for the import job control endpoints."""

import asyncio

import pytest


async def _wait_terminal(client, timeout: float = 10.0) -> dict:
    async def _poll() -> dict:
        while True:
            data = (await client.get("/api/v1/imports/current")).json()
            if data["state"] in ("completed", "failed", "stopped"):
                return data
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(_poll(), timeout)


class TestImportEndpoints:
    """Tests for /api/v1/imports."""

    @pytest.mark.asyncio
    async def test_no_run_yet(self, client) -> None:
        response = await client.get("/api/v1/imports/current")
        assert response.status_code == 404
        assert response.json()["detail"] == "No import run yet"

    @pytest.mark.asyncio
    async def test_start_and_complete(self, client) -> None:
        response = await client.post("/api/v1/imports", json={"run_id": "api-run"})
        assert response.status_code == 202
        data = response.json()
        assert data["run_id"] == "api-run"
        assert data["state"] == "running"
        assert "files" not in data

        final = await _wait_terminal(client)
        assert final["state"] == "completed"
        progress = final["progress"]
        assert progress["processed_guides"] == 1
        assert progress["processed_tables"] == 1
        assert progress["processed_manifests"] == 1
        assert progress["processed_datastreams"] == 1
        assert final["metadata"]["cross_references"] == 12

        response = await client.get("/api/v1/guides/ssg-test-guide-cis")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_generated_run_id(self, client) -> None:
        response = await client.post("/api/v1/imports")
        assert response.status_code == 202
        assert len(response.json()["run_id"]) == 12
        await _wait_terminal(client)

    @pytest.mark.asyncio
    async def test_illegal_transitions_answer_conflict(self, client) -> None:
        response = await client.post("/api/v1/imports/current/pause")
        assert response.status_code == 409
        assert response.json()["error"] == "JobStateError"

        await client.post("/api/v1/imports", json={"run_id": "r1"})
        await _wait_terminal(client)

        for action in ("pause", "resume", "stop"):
            response = await client.post(f"/api/v1/imports/current/{action}")
            assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_failed_fetch_is_reported(self, client, source_tree) -> None:
        (source_tree / "guides").rename(source_tree / "gone")
        await client.post("/api/v1/imports", json={"run_id": "broken"})

        final = await _wait_terminal(client)
        assert final["state"] == "failed"
        assert final["error"].startswith("list guides failed:")
