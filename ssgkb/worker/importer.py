"""SSG import orchestrator.

Runs one import at a time over the four SSG file categories with a
"tick-tock-tock-tock" schedule: for each index i it imports tables[i],
guides[i], manifests[i] and data streams[i], in that order, before moving on
to i + 1. Every step goes through an RPC invoker, so the orchestrator never
touches the fetcher or the store directly.

State machine:

    queued -> running <-> paused -> completed | failed | stopped

Pause and stop are cooperative: the driver checks the run state before each
of the four sub-steps. A paused driver parks at that checkpoint, polling;
stop takes effect immediately in the run record and the driver leaves at
its next checkpoint.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from ssgkb.config import settings
from ssgkb.errors import ImportTimeoutError, JobStateError, RPCError, SSGError
from ssgkb.types import JobState
from ssgkb.worker.rpc import LOCAL_TARGET, REMOTE_TARGET, RPCInvoker, RPCMessage


@dataclass(frozen=True)
class FileCategory:
    """One input list of the import schedule."""

    name: str  # plural, used in progress field names
    list_method: str
    import_method: str


# Visit order within one index.
CATEGORIES: tuple[FileCategory, ...] = (
    FileCategory("tables", "FetcherListTables", "ImportTable"),
    FileCategory("guides", "FetcherListGuides", "ImportGuide"),
    FileCategory("manifests", "FetcherListManifests", "ImportManifest"),
    FileCategory("datastreams", "FetcherListDataStreams", "ImportDataStream"),
)


class JobProgress(BaseModel):
    """Per-category counters plus what the driver is doing right now."""

    total_tables: int = 0
    processed_tables: int = 0
    failed_tables: int = 0
    total_guides: int = 0
    processed_guides: int = 0
    failed_guides: int = 0
    total_manifests: int = 0
    processed_manifests: int = 0
    failed_manifests: int = 0
    total_datastreams: int = 0
    processed_datastreams: int = 0
    failed_datastreams: int = 0
    current_phase: str = ""
    current_file: str = ""


class JobRun(BaseModel):
    """Authoritative record of one import run."""

    run_id: str
    state: JobState = JobState.QUEUED
    progress: JobProgress = Field(default_factory=JobProgress)
    error: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    # Resume cursor: next index and next category within that index.
    next_index: int = 0
    next_category: int = 0
    files: dict[str, list[str]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _bump(progress: JobProgress, outcome: str, category: FileCategory) -> None:
    field = f"{outcome}_{category.name}"
    setattr(progress, field, getattr(progress, field) + 1)


class SSGImporter:
    """Drives import runs over an RPC invoker.

    Args:
        invoker: Delivers requests to the fetcher ("remote") and storage ("local").
        file_timeout: Per-file import deadline in seconds.
        poll_interval: Pause barrier granularity in seconds.
    """

    def __init__(
        self,
        invoker: RPCInvoker,
        file_timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._invoker = invoker
        self.file_timeout = settings.import_file_timeout_seconds if file_timeout is None else file_timeout
        self.poll_interval = settings.import_pause_poll_seconds if poll_interval is None else poll_interval
        self._lock = asyncio.Lock()
        self._run: JobRun | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def start(self, run_id: str) -> JobRun:
        """Start a new run.

        Raises:
            JobStateError: If the current run has not reached a terminal state.
        """
        async with self._lock:
            if self._run is not None and not self._run.state.is_terminal:
                raise JobStateError(
                    f"import run {self._run.run_id} is {self._run.state.value}",
                    details={"run_id": self._run.run_id, "state": self._run.state.value},
                )
            self._run = JobRun(run_id=run_id)
            self._stop_event = asyncio.Event()
            self._run.state = JobState.RUNNING
            self._run.started_at = datetime.now(timezone.utc)
            snapshot = self._run.model_copy(deep=True)
            self._task = asyncio.create_task(self._drive(self._run, fresh=True))
        logger.info("Import run {} started", run_id)
        return snapshot

    async def pause(self) -> JobRun:
        """Pause the running run.

        Raises:
            JobStateError: If there is no run in state running.
        """
        async with self._lock:
            run = self._require(JobState.RUNNING)
            run.state = JobState.PAUSED
            snapshot = run.model_copy(deep=True)
        logger.info("Import run {} paused at index {}", snapshot.run_id, snapshot.next_index)
        return snapshot

    async def resume(self) -> JobRun:
        """Resume a paused run.

        The driver is relaunched from the recorded cursor when it is no longer
        alive; otherwise it is still parked at a checkpoint and just continues.

        Raises:
            JobStateError: If there is no run in state paused.
        """
        async with self._lock:
            run = self._require(JobState.PAUSED)
            run.state = JobState.RUNNING
            if self._task is None or self._task.done():
                self._task = asyncio.create_task(self._drive(run, fresh=False))
            snapshot = run.model_copy(deep=True)
        logger.info("Import run {} resumed at index {}", snapshot.run_id, snapshot.next_index)
        return snapshot

    async def stop(self) -> JobRun:
        """Stop the current run immediately.

        Raises:
            JobStateError: If there is no run or it is already terminal.
        """
        async with self._lock:
            if self._run is None or self._run.state.is_terminal:
                state = self._run.state.value if self._run else "absent"
                raise JobStateError(f"no active import run to stop (state {state})", details={"state": state})
            self._run.state = JobState.STOPPED
            self._run.finished_at = datetime.now(timezone.utc)
            self._stop_event.set()
            snapshot = self._run.model_copy(deep=True)
        logger.info("Import run {} stopped", snapshot.run_id)
        return snapshot

    async def get_status(self) -> JobRun | None:
        """Return a copy of the current run record, or None before the first run."""
        async with self._lock:
            return self._run.model_copy(deep=True) if self._run else None

    async def wait(self) -> JobRun | None:
        """Wait until the driver exits (following relaunches) and return the run."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)
        return await self.get_status()

    def _require(self, state: JobState) -> JobRun:
        if self._run is None or self._run.state != state:
            current = self._run.state.value if self._run else "absent"
            raise JobStateError(
                f"import run must be {state.value}, is {current}",
                details={"expected": state.value, "state": current},
            )
        return self._run

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def _drive(self, run: JobRun, fresh: bool) -> None:
        """Run the pipeline against one run record.

        The driver only ever touches the record it was started for; once that
        record is no longer current it leaves at the next checkpoint.
        """
        with logger.contextualize(run_id=run.run_id):
            try:
                if fresh and not await self._prepare(run):
                    return
                if not await self._loop(run):
                    return
                await self._materialize(run)
                await self._finish(run, JobState.COMPLETED)
            except Exception as e:
                logger.exception("Import run {} panicked", run.run_id)
                await self._fail(run, f"panic: {e}")

    async def _call(self, target: str, method: str, params: dict[str, Any] | None = None) -> RPCMessage:
        """Invoke an RPC, folding transport errors into an error envelope."""
        try:
            resp = await self._invoker.invoke(target, method, params or {})
        except SSGError as e:
            return RPCMessage.fail(e.message)
        if not isinstance(resp, RPCMessage):
            return RPCMessage.fail(f"malformed response from {method}")
        return resp

    async def _prepare(self, run: JobRun) -> bool:
        """Pull the snapshot and list the four categories; False ends the run."""
        resp = await self._call(REMOTE_TARGET, "FetcherPull")
        if resp.is_error:
            logger.error("Fetching SSG content failed: {}", resp.error)
            await self._fail(run, f"fetch failed: {resp.error}")
            return False

        for category in CATEGORIES:
            if not await self._checkpoint(run):
                return False
            resp = await self._call(REMOTE_TARGET, category.list_method)
            files = resp.payload.get("files")
            if resp.is_error or not isinstance(files, list) or not all(isinstance(f, str) for f in files):
                error = resp.error or f"malformed response from {category.list_method}"
                logger.error("Listing {} failed: {}", category.name, error)
                await self._fail(run, f"list {category.name} failed: {error}")
                return False
            async with self._lock:
                run.files[category.name] = list(files)
                setattr(run.progress, f"total_{category.name}", len(files))
            logger.info("Found {} {} to import", len(files), category.name)
        return True

    async def _checkpoint(self, run: JobRun) -> bool:
        """Block while paused; False when the run must exit or was superseded."""
        while True:
            async with self._lock:
                if run is not self._run:
                    return False
                state = run.state
                stop_event = self._stop_event
            if state == JobState.RUNNING:
                return True
            if state != JobState.PAUSED:
                return False
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _loop(self, run: JobRun) -> bool:
        """Interleave the four lists; False if the run was stopped or ended."""
        async with self._lock:
            files = {name: list(names) for name, names in run.files.items()}
            start_index = run.next_index
            start_category = run.next_category
        max_len = max((len(names) for names in files.values()), default=0)

        for i in range(start_index, max_len):
            first = start_category if i == start_index else 0
            for k in range(first, len(CATEGORIES)):
                if not await self._checkpoint(run):
                    return False
                category = CATEGORIES[k]
                names = files.get(category.name, [])
                if i < len(names):
                    await self._import_file(run, category, names[i])
                async with self._lock:
                    if k + 1 < len(CATEGORIES):
                        run.next_index, run.next_category = i, k + 1
                    else:
                        run.next_index, run.next_category = i + 1, 0
        return await self._checkpoint(run)

    async def _import_file(self, run: JobRun, category: FileCategory, filename: str) -> None:
        async with self._lock:
            run.progress.current_phase = f"importing {category.name}"
            run.progress.current_file = filename

        try:
            resp = await self._call(REMOTE_TARGET, "FetcherGetFilePath", {"filename": filename})
            path = resp.payload.get("path")
            if resp.is_error or not isinstance(path, str) or not path:
                raise RPCError(resp.error or "malformed response from FetcherGetFilePath")
            try:
                resp = await asyncio.wait_for(
                    self._call(LOCAL_TARGET, category.import_method, {"path": path}),
                    timeout=self.file_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ImportTimeoutError(
                    f"timed out after {self.file_timeout}s",
                    details={"filename": filename, "timeout": self.file_timeout},
                ) from e
            if resp.is_error:
                raise RPCError(resp.error)
        except SSGError as e:
            logger.warning("Import of {} failed: {}", filename, e.message)
            outcome = "failed"
        else:
            logger.debug("Imported {}", filename)
            outcome = "processed"

        async with self._lock:
            _bump(run.progress, outcome, category)

    async def _materialize(self, run: JobRun) -> None:
        async with self._lock:
            run.progress.current_phase = "materializing cross references"
            run.progress.current_file = ""
        resp = await self._call(LOCAL_TARGET, "MaterializeCrossReferences")
        async with self._lock:
            if resp.is_error:
                logger.error("Cross reference materialization failed: {}", resp.error)
                run.metadata["materialize_error"] = resp.error
            else:
                run.metadata["cross_references"] = resp.payload.get("edges", 0)

    async def _finish(self, run: JobRun, state: JobState) -> None:
        async with self._lock:
            if run.state.is_terminal:
                return
            run.state = state
            run.finished_at = datetime.now(timezone.utc)
            run.progress.current_phase = ""
            run.progress.current_file = ""
            progress = run.progress.model_copy()
        logger.info(
            "Import run {} {}: tables {}/{}, guides {}/{}, manifests {}/{}, datastreams {}/{}",
            run.run_id,
            state.value,
            progress.processed_tables,
            progress.total_tables,
            progress.processed_guides,
            progress.total_guides,
            progress.processed_manifests,
            progress.total_manifests,
            progress.processed_datastreams,
            progress.total_datastreams,
        )

    async def _fail(self, run: JobRun, error: str) -> None:
        async with self._lock:
            if run.state.is_terminal:
                return
            run.state = JobState.FAILED
            run.error = error
            run.finished_at = datetime.now(timezone.utc)
        logger.error("Import run {} failed: {}", run.run_id, error)
