"""
Memora Backend — Raw File Archive Service
===========================================

What:  Builds ZIP archives of raw-file media for guest download.
Why:   Zipping hundreds of originals takes longer than a request should, so
       the request only starts a job and the client polls for it.
How:   start_job() records `zip_job:{id}` = processing in the TTL cache; a
       FastAPI background task streams the files into a ZIP on a worker
       thread under <storage_root>/archives and flips the job to completed
       (or failed).
Who:   routes/downloads.py.

Job lifecycle:
    processing ──▶ completed   (archive_path set)
        └────────▶ failed      (error set)
    Entries expire after zip_job_ttl_seconds; there is no cancellation.
    Archives older than the same TTL are swept from disk by
    purge_stale_archives() (startup and the periodic maintenance loop).

Security Model:
    Media file_path values are resolved against storage_root and rejected if
    they escape it. Archive entries use the media filename only.
"""

import asyncio
import logging
import os
import time
import uuid
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles.os

from memora.config import settings
from memora.exceptions import ErrorCode, FileStorageError, NotFoundError, ValidationError
from memora.services.cache_service import TTLCache, cache

logger = logging.getLogger(__name__)

JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

PARTIAL_SUFFIX = ".part"


def job_key(job_id: str) -> str:
    return f"zip_job:{job_id}"


class ArchiveService:

    def __init__(self, storage_root: Optional[str] = None, job_cache: Optional[TTLCache] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.archive_dir = self.storage_root / "archives"
        self.cache = job_cache if job_cache is not None else cache

    def resolve_media_path(self, relative_path: str) -> Path:
        """Absolute path of a stored media file; refuses paths outside storage_root."""
        candidate = (self.storage_root / relative_path).resolve()
        if not candidate.is_relative_to(self.storage_root):
            raise ValidationError(
                message="Media path escapes the storage root",
                field="file_path",
                context={"file_path": relative_path},
            )
        return candidate

    # ── Jobs ──────────────────────────────────────────────────────────────

    def start_job(self, phase_id: uuid.UUID, file_count: int) -> str:
        job_id = uuid.uuid4().hex
        self.cache.set(
            job_key(job_id),
            {
                "status": JOB_PROCESSING,
                "phase_id": str(phase_id),
                "file_count": file_count,
                "archive_path": None,
                "error": None,
            },
            ttl=settings.zip_job_ttl_seconds,
        )
        logger.info("ZIP job %s started for phase %s (%d files)", job_id, phase_id, file_count)
        return job_id

    def get_job(self, job_id: str, phase_id: uuid.UUID) -> Dict[str, Any]:
        """Job state; jobs of other phases are reported as missing."""
        job = self.cache.get(job_key(job_id))
        if job is None or job.get("phase_id") != str(phase_id):
            raise NotFoundError(resource="download job", resource_id=job_id)
        return job

    def archive_path(self, job_id: str, phase_id: uuid.UUID) -> Path:
        job = self.get_job(job_id, phase_id)
        if job["status"] != JOB_COMPLETED or not job.get("archive_path"):
            raise ValidationError(
                message="The archive is not ready yet",
                code=ErrorCode.DOWNLOAD_NOT_READY,
                context={"status": job["status"]},
            )
        path = Path(job["archive_path"])
        if not path.exists():
            raise NotFoundError(resource="archive", resource_id=job_id)
        return path

    # ── Background build ──────────────────────────────────────────────────

    async def build_zip(self, job_id: str, files: List[Tuple[str, str]]) -> None:
        """
        Background task body. `files` is a list of (filename, file_path).

        Never raises: any failure is recorded on the job and logged.
        """
        key = job_key(job_id)
        ttl = settings.zip_job_ttl_seconds
        try:
            used_names: Dict[str, int] = {}
            entries = [
                (self.resolve_media_path(file_path), self._unique_name(filename, used_names))
                for filename, file_path in files
            ]
            destination = self.archive_dir / f"{job_id}.zip"
            await asyncio.to_thread(self._write_archive, destination, entries)

            self.cache.update(key, ttl, status=JOB_COMPLETED, archive_path=str(destination))
            logger.info("ZIP job %s completed (%d files)", job_id, len(files))
        except Exception as e:
            self.cache.update(key, ttl, status=JOB_FAILED, error=str(e))
            logger.error("ZIP job %s failed: %s", job_id, str(e), exc_info=True)

    def _write_archive(self, destination: Path, entries: List[Tuple[Path, str]]) -> None:
        """
        Runs on a worker thread. Files are copied into the archive in chunks
        and stored uncompressed.
        The archive only appears under its final name once it is complete.
        """
        partial = destination.with_suffix(PARTIAL_SUFFIX)
        try:
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_STORED) as archive:
                for source, name in entries:
                    archive.write(source, arcname=name)
            os.replace(partial, destination)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise FileStorageError(
                message="Failed to write the archive",
                context={"os_error": str(e)},
            )

    # ── Cleanup ───────────────────────────────────────────────────────────

    async def purge_stale_archives(
        self, max_age_seconds: Optional[int] = None, now: Optional[float] = None
    ) -> int:
        """Deletes archives (and abandoned partial files) older than the job TTL."""
        max_age = max_age_seconds if max_age_seconds is not None else settings.zip_job_ttl_seconds
        now = time.time() if now is None else now
        try:
            names = await aiofiles.os.listdir(self.archive_dir)
        except FileNotFoundError:
            return 0

        removed = 0
        for name in names:
            if not name.endswith((".zip", PARTIAL_SUFFIX)):
                continue
            path = self.archive_dir / name
            try:
                stat = await aiofiles.os.stat(path)
                if now - stat.st_mtime < max_age:
                    continue
                await aiofiles.os.remove(path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not remove stale archive %s: %s", name, str(e))
        if removed:
            logger.info("Removed %d stale archive(s) from %s", removed, self.archive_dir)
        return removed

    @staticmethod
    def _unique_name(filename: str, used: Dict[str, int]) -> str:
        name = Path(filename).name or "file"
        count = used.get(name, 0)
        used[name] = count + 1
        if count == 0:
            return name
        stem, suffix = Path(name).stem, Path(name).suffix
        return f"{stem} ({count}){suffix}"


# ── Singleton Instance ────────────────────────────────────────────────────
archive_service = ArchiveService()
