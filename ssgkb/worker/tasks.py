"""Background task definitions for the import worker.

Tasks follow the queue-worker calling convention (context dict first) so
they can be scheduled by a Redis-backed task queue or called directly.
"""

from typing import Any

from loguru import logger

from ssgkb.db.session import init_db
from ssgkb.db.store import SSGStore
from ssgkb.worker.fetcher import SourceFetcher
from ssgkb.worker.handlers import build_bus
from ssgkb.worker.importer import SSGImporter


def _build_importer() -> SSGImporter:
    """Wire the default store, fetcher and bus from settings."""
    bus = build_bus(SSGStore(), SourceFetcher())
    return SSGImporter(bus)


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook: make sure the schema exists and share one importer."""
    await init_db()
    ctx["importer"] = _build_importer()
    logger.info("Import worker ready")


async def run_import_task(ctx: dict[str, Any], run_id: str) -> dict[str, Any]:
    """Background task: run a full SSG import and wait for it to finish.

    Args:
        ctx: Worker context dict; an "importer" entry is reused when present.
        run_id: Identifier for the new run.

    Returns:
        The final run record as JSON-compatible data.
    """
    importer: SSGImporter | None = ctx.get("importer")
    if importer is None:
        importer = _build_importer()
        ctx["importer"] = importer

    logger.info("Starting import task {}", run_id)
    await importer.start(run_id)
    run = await importer.wait()
    summary = run.model_dump(mode="json", exclude={"files"})
    logger.info("Import task {} finished: {}", run_id, summary["state"])
    return summary
