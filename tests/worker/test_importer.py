"""Tests for the SSG import orchestrator.

A fake invoker stands in for the fetcher and storage handlers so the tests
can control listings, delays and failures.
"""

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import pytest_asyncio

from ssgkb.errors import JobStateError, RPCError
from ssgkb.types import JobState
from ssgkb.worker.importer import SSGImporter
from ssgkb.worker.rpc import LOCAL_TARGET, RPCMessage

LIST_METHODS = {
    "FetcherListTables": "tables",
    "FetcherListGuides": "guides",
    "FetcherListManifests": "manifests",
    "FetcherListDataStreams": "datastreams",
}


class FakeInvoker:
    """Scriptable RPC invoker recording every import it receives."""

    def __init__(self, files: dict[str, list[str]] | None = None) -> None:
        self.files = files or {"tables": [], "guides": [], "manifests": [], "datastreams": []}
        self.calls: list[tuple[str, str]] = []
        self.imported: list[str] = []
        self.error_responses: dict[str, str] = {}
        self.raises: dict[str, Exception] = {}
        self.failing_files: set[str] = set()
        self.delays: dict[str, float] = {}
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def invoke(self, target: str, method: str, params: dict[str, Any] | None = None) -> RPCMessage:
        params = params or {}
        self.calls.append((target, method))
        if method in self.raises:
            raise self.raises[method]
        if method in self.error_responses:
            return RPCMessage.fail(self.error_responses[method])
        if method == "FetcherPull":
            return RPCMessage.ok({"root": "/srv/ssg"})
        if method in LIST_METHODS:
            files = self.files.get(LIST_METHODS[method], [])
            return RPCMessage.ok({"files": files, "count": len(files)})
        if method == "FetcherGetFilePath":
            return RPCMessage.ok({"path": f"/srv/ssg/{params['filename']}"})
        if method == "MaterializeCrossReferences":
            return RPCMessage.ok({"input_edges": 3, "edges": 7})

        name = Path(params["path"]).name
        self.imported.append(name)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.failing_files:
            return RPCMessage.fail(f"cannot parse {name}")
        return RPCMessage.ok({"id": name})


@pytest.fixture
def invoker() -> FakeInvoker:
    return FakeInvoker(
        {
            "tables": ["t1", "t2"],
            "guides": ["g1"],
            "manifests": ["m1", "m2", "m3"],
            "datastreams": [],
        }
    )


@pytest_asyncio.fixture
async def orchestrator(invoker):
    importer = SSGImporter(invoker, file_timeout=5.0, poll_interval=0.01)
    yield importer
    if invoker.gate is not None:
        invoker.gate.set()
    run = await importer.get_status()
    if run is not None and not run.state.is_terminal:
        await importer.stop()
    await importer.wait()


async def _until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not await predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class TestImportSchedule:
    """Tests for the interleaved visit order and the counters."""

    @pytest.mark.asyncio
    async def test_interleaves_categories(self, orchestrator, invoker) -> None:
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert invoker.imported == ["t1", "g1", "m1", "t2", "m2", "m3"]
        assert run.state == JobState.COMPLETED
        assert run.error == ""
        assert run.finished_at is not None

    @pytest.mark.asyncio
    async def test_progress_counters(self, orchestrator) -> None:
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        p = run.progress
        assert (p.total_tables, p.processed_tables, p.failed_tables) == (2, 2, 0)
        assert (p.total_guides, p.processed_guides, p.failed_guides) == (1, 1, 0)
        assert (p.total_manifests, p.processed_manifests, p.failed_manifests) == (3, 3, 0)
        assert (p.total_datastreams, p.processed_datastreams) == (0, 0)
        assert p.current_phase == ""
        assert run.metadata == {"cross_references": 7}

    @pytest.mark.asyncio
    async def test_materializes_after_last_file(self, orchestrator, invoker) -> None:
        await orchestrator.start("run-1")
        await orchestrator.wait()
        assert invoker.calls[-1] == (LOCAL_TARGET, "MaterializeCrossReferences")

    @pytest.mark.asyncio
    async def test_failed_file_is_counted_and_run_continues(self, orchestrator, invoker) -> None:
        invoker.failing_files = {"m2"}
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert run.state == JobState.COMPLETED
        assert (run.progress.processed_manifests, run.progress.failed_manifests) == (2, 1)
        assert invoker.imported[-1] == "m3"

    @pytest.mark.asyncio
    async def test_file_timeout_counts_as_failure(self, invoker) -> None:
        invoker.delays = {"g1": 1.0}
        importer = SSGImporter(invoker, file_timeout=0.05, poll_interval=0.01)
        await importer.start("run-1")
        run = await importer.wait()

        assert run.state == JobState.COMPLETED
        assert (run.progress.processed_guides, run.progress.failed_guides) == (0, 1)
        assert run.progress.processed_tables == 2

    @pytest.mark.asyncio
    async def test_file_timeout_is_logged_as_import_timeout(self, invoker) -> None:
        invoker.delays = {"g1": 1.0}
        importer = SSGImporter(invoker, file_timeout=0.05, poll_interval=0.01)
        with patch("ssgkb.worker.importer.logger") as mock_logger:
            await importer.start("run-1")
            await importer.wait()

        warnings = [c.args for c in mock_logger.warning.call_args_list]
        assert ("Import of {} failed: {}", "g1", "timed out after 0.05s") in warnings

    @pytest.mark.asyncio
    async def test_materialize_error_does_not_fail_the_run(self, orchestrator, invoker) -> None:
        invoker.error_responses = {"MaterializeCrossReferences": "disk full"}
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert run.state == JobState.COMPLETED
        assert run.metadata == {"materialize_error": "disk full"}


class TestImportFailures:
    """Run-terminating failures."""

    @pytest.mark.asyncio
    async def test_fetch_failure(self, orchestrator, invoker) -> None:
        invoker.error_responses = {"FetcherPull": "network unreachable"}
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert run.state == JobState.FAILED
        assert run.error == "fetch failed: network unreachable"
        assert invoker.imported == []

    @pytest.mark.asyncio
    async def test_list_failure(self, orchestrator, invoker) -> None:
        invoker.error_responses = {"FetcherListManifests": "permission denied"}
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert run.state == JobState.FAILED
        assert run.error == "list manifests failed: permission denied"

    @pytest.mark.asyncio
    async def test_transport_error_is_folded_into_list_failure(self, orchestrator, invoker) -> None:
        invoker.raises = {"FetcherListTables": RPCError("unknown method remote.FetcherListTables")}
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert run.state == JobState.FAILED
        assert run.error == "list tables failed: unknown method remote.FetcherListTables"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_a_panic(self, orchestrator, invoker) -> None:
        invoker.raises = {"MaterializeCrossReferences": RuntimeError("kaboom")}
        await orchestrator.start("run-1")
        run = await orchestrator.wait()

        assert run.state == JobState.FAILED
        assert run.error == "panic: kaboom"


class TestImportStateMachine:
    """Tests for start, pause, resume and stop."""

    @pytest.mark.asyncio
    async def test_status_before_first_run(self, orchestrator) -> None:
        assert await orchestrator.get_status() is None

    @pytest.mark.asyncio
    async def test_start_refused_while_running(self, orchestrator, invoker) -> None:
        await orchestrator.start("r1")
        first = await orchestrator.wait()
        assert first.state == JobState.COMPLETED

        invoker.gate = asyncio.Event()
        invoker.entered.clear()
        second = await orchestrator.start("r2")
        assert second.state == JobState.RUNNING
        await asyncio.wait_for(invoker.entered.wait(), 2.0)

        with pytest.raises(JobStateError):
            await orchestrator.start("r3")
        status = await orchestrator.get_status()
        assert status.run_id == "r2"

        invoker.gate.set()
        run = await orchestrator.wait()
        assert run.run_id == "r2"
        assert run.state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_pause_parks_and_resume_continues(self, orchestrator, invoker) -> None:
        invoker.gate = asyncio.Event()
        await orchestrator.start("run-1")
        await asyncio.wait_for(invoker.entered.wait(), 2.0)

        paused = await orchestrator.pause()
        assert paused.state == JobState.PAUSED
        invoker.gate.set()

        async def _cursor_moved() -> bool:
            run = await orchestrator.get_status()
            return run.next_category == 1

        await _until(_cursor_moved)
        await asyncio.sleep(0.05)
        status = await orchestrator.get_status()
        assert status.state == JobState.PAUSED
        assert invoker.imported == ["t1"]
        assert (status.next_index, status.next_category) == (0, 1)

        resumed = await orchestrator.resume()
        assert resumed.state == JobState.RUNNING
        run = await orchestrator.wait()
        assert run.state == JobState.COMPLETED
        assert invoker.imported == ["t1", "g1", "m1", "t2", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_stop_takes_effect_immediately(self, orchestrator, invoker) -> None:
        invoker.gate = asyncio.Event()
        await orchestrator.start("run-1")
        await asyncio.wait_for(invoker.entered.wait(), 2.0)

        stopped = await orchestrator.stop()
        assert stopped.state == JobState.STOPPED
        assert stopped.finished_at is not None

        invoker.gate.set()
        run = await orchestrator.wait()
        assert run.state == JobState.STOPPED
        assert invoker.imported == ["t1"]
        assert (LOCAL_TARGET, "MaterializeCrossReferences") not in invoker.calls

    @pytest.mark.asyncio
    async def test_stopped_driver_does_not_touch_the_next_run(self, orchestrator, invoker) -> None:
        invoker.gate = asyncio.Event()
        await orchestrator.start("run-1")
        await asyncio.wait_for(invoker.entered.wait(), 2.0)
        await orchestrator.stop()

        invoker.files = {"tables": [], "guides": [], "manifests": [], "datastreams": []}
        await orchestrator.start("run-2")
        await orchestrator.wait()
        # Let the first driver's in-flight import return
        invoker.gate.set()
        await asyncio.sleep(0.1)

        run = await orchestrator.get_status()
        assert run.run_id == "run-2"
        assert run.state == JobState.COMPLETED
        p = run.progress
        assert (p.total_tables, p.processed_tables, p.failed_tables) == (0, 0, 0)
        assert (run.next_index, run.next_category) == (0, 0)
        assert invoker.imported == ["t1"]

    @pytest.mark.asyncio
    async def test_stop_while_paused(self, orchestrator, invoker) -> None:
        invoker.gate = asyncio.Event()
        await orchestrator.start("run-1")
        await asyncio.wait_for(invoker.entered.wait(), 2.0)
        await orchestrator.pause()
        invoker.gate.set()

        await orchestrator.stop()
        run = await orchestrator.wait()
        assert run.state == JobState.STOPPED

    @pytest.mark.asyncio
    async def test_illegal_transitions_without_a_run(self, orchestrator) -> None:
        for transition in (orchestrator.pause, orchestrator.resume, orchestrator.stop):
            with pytest.raises(JobStateError):
                await transition()
        assert await orchestrator.get_status() is None

    @pytest.mark.asyncio
    async def test_illegal_transitions_while_running_and_paused(self, orchestrator, invoker) -> None:
        invoker.gate = asyncio.Event()
        await orchestrator.start("run-1")
        await asyncio.wait_for(invoker.entered.wait(), 2.0)

        with pytest.raises(JobStateError):
            await orchestrator.resume()
        assert (await orchestrator.get_status()).state == JobState.RUNNING

        await orchestrator.pause()
        with pytest.raises(JobStateError):
            await orchestrator.pause()
        assert (await orchestrator.get_status()).state == JobState.PAUSED

    @pytest.mark.asyncio
    async def test_illegal_transitions_after_completion(self, orchestrator) -> None:
        await orchestrator.start("run-1")
        done = await orchestrator.wait()

        for transition in (orchestrator.pause, orchestrator.resume, orchestrator.stop):
            with pytest.raises(JobStateError):
                await transition()
        after = await orchestrator.get_status()
        assert after.model_dump() == done.model_dump()

    @pytest.mark.asyncio
    async def test_status_is_a_copy(self, orchestrator) -> None:
        await orchestrator.start("run-1")
        run = await orchestrator.wait()
        run.progress.processed_tables = 99
        assert (await orchestrator.get_status()).progress.processed_tables == 2
