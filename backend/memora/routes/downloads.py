"""
Memora Backend — Raw File Download Routes
===========================================

What:  ZIP download of a raw-files phase for its guest.

    POST /api/public/raw-files/{id}/download              start job (202)
    GET  /api/public/raw-files/{id}/download/{job_id}     poll status
    GET  /api/public/raw-files/{id}/download/{job_id}/file  fetch the ZIP

A phase with a download PIN requires it in X-Download-PIN on every call.
Downloads work on active and completed phases.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from memora.database import get_db_session
from memora.dependencies import extract_guest_token
from memora.exceptions import AccessDeniedError, ErrorCode
from memora.models.phase import PhaseKind
from memora.schemas.common import ErrorResponse
from memora.schemas.phase import DownloadJobResponse
from memora.security import verify_secret
from memora.services.archive_service import archive_service
from memora.services.guest_access_service import GuestContext, guest_access_service
from memora.services.media_service import media_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/public/raw-files",
    tags=["Downloads"],
    responses={
        401: {"description": "Guest token missing", "model": ErrorResponse},
        403: {"description": "Invalid PIN or token", "model": ErrorResponse},
        404: {"description": "Phase or job not found", "model": ErrorResponse},
    },
)


async def _authorize(
    db: AsyncSession,
    phase_id: UUID,
    token: Optional[str],
    pin: Optional[str],
) -> GuestContext:
    ctx = await guest_access_service.resolve(db, PhaseKind.RAW_FILE, phase_id, token)
    pin_hash = ctx.phase.download_pin_hash
    if pin_hash and (not pin or not verify_secret(pin, pin_hash)):
        logger.info("Download PIN rejected for raw files %s (%s)", phase_id, ctx.email)
        raise AccessDeniedError(message="Incorrect download PIN", code=ErrorCode.INVALID_PIN)
    return ctx


@router.post(
    "/{phase_id}/download",
    response_model=DownloadJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a ZIP download",
    description="Archives the selected raw files (every file when none are selected).",
)
async def start_download(
    phase_id: UUID,
    background_tasks: BackgroundTasks,
    set_id: Optional[UUID] = Query(default=None),
    x_download_pin: Optional[str] = Header(default=None, alias="X-Download-PIN"),
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> DownloadJobResponse:
    ctx = await _authorize(db, phase_id, token, x_download_pin)
    media = await media_service.media_for_download(db, ctx.caps, ctx.phase, set_id)
    files = [(m.filename, m.file_path) for m in media]

    job_id = archive_service.start_job(ctx.phase.id, len(files))
    background_tasks.add_task(archive_service.build_zip, job_id, files)
    return DownloadJobResponse(job_id=job_id, status="processing", file_count=len(files))


@router.get(
    "/{phase_id}/download/{job_id}",
    response_model=DownloadJobResponse,
    summary="Download job status",
)
async def download_status(
    phase_id: UUID,
    job_id: str,
    x_download_pin: Optional[str] = Header(default=None, alias="X-Download-PIN"),
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> DownloadJobResponse:
    await _authorize(db, phase_id, token, x_download_pin)
    job = archive_service.get_job(job_id, phase_id)
    return DownloadJobResponse(
        job_id=job_id,
        status=job["status"],
        file_count=job.get("file_count"),
        error=job.get("error"),
    )


@router.get(
    "/{phase_id}/download/{job_id}/file",
    response_class=FileResponse,
    responses={400: {"description": "Archive not ready", "model": ErrorResponse}},
    summary="Fetch the finished ZIP",
)
async def download_file(
    phase_id: UUID,
    job_id: str,
    x_download_pin: Optional[str] = Header(default=None, alias="X-Download-PIN"),
    token: Optional[str] = Depends(extract_guest_token),
    db: AsyncSession = Depends(get_db_session),
) -> FileResponse:
    ctx = await _authorize(db, phase_id, token, x_download_pin)
    path = archive_service.archive_path(job_id, phase_id)
    return FileResponse(
        path=str(path),
        media_type="application/zip",
        filename=f"{ctx.phase.name or 'raw-files'}.zip",
    )
