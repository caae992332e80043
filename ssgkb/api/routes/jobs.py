"""Import job control endpoints.

Only one run is tracked at a time; illegal transitions answer 409.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from ssgkb.api.dependencies import get_importer
from ssgkb.api.models.job import StartImportRequest
from ssgkb.worker.importer import JobRun, SSGImporter

router = APIRouter(prefix="/imports", tags=["Imports"])

# File lists can be large; status responses carry only counters and cursor.
_EXCLUDE = {"files"}


@router.post("", response_model=JobRun, response_model_exclude=_EXCLUDE, status_code=202)
async def start_import(
    request: StartImportRequest | None = None,
    importer: SSGImporter = Depends(get_importer),
) -> JobRun:
    """Start a full import run in the background."""
    run_id = (request.run_id if request else None) or uuid.uuid4().hex[:12]
    return await importer.start(run_id)


@router.get("/current", response_model=JobRun, response_model_exclude=_EXCLUDE)
async def get_import_status(importer: SSGImporter = Depends(get_importer)) -> JobRun:
    run = await importer.get_status()
    if run is None:
        raise HTTPException(status_code=404, detail="No import run yet")
    return run


@router.post("/current/pause", response_model=JobRun, response_model_exclude=_EXCLUDE)
async def pause_import(importer: SSGImporter = Depends(get_importer)) -> JobRun:
    return await importer.pause()


@router.post("/current/resume", response_model=JobRun, response_model_exclude=_EXCLUDE)
async def resume_import(importer: SSGImporter = Depends(get_importer)) -> JobRun:
    return await importer.resume()


@router.post("/current/stop", response_model=JobRun, response_model_exclude=_EXCLUDE)
async def stop_import(importer: SSGImporter = Depends(get_importer)) -> JobRun:
    return await importer.stop()
