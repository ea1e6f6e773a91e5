"""
Memora Backend — Raw File Archive Tests
=========================================

What we test:
    ✅ build_zip writes the archive and marks the job completed
    ✅ Duplicate filenames inside one archive get numbered
    ✅ A missing source file fails the job instead of raising
    ✅ Paths escaping the storage root are refused
    ✅ Jobs are scoped to their phase and unready archives are refused
    ✅ Archives are stored uncompressed and written without leftovers
    ✅ Archives older than the job TTL are swept from disk
"""

import os
import time
import uuid
import zipfile

import pytest

from memora.exceptions import ErrorCode, NotFoundError, ValidationError
from memora.services.archive_service import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PROCESSING,
    ArchiveService,
)
from memora.services.cache_service import TTLCache


@pytest.fixture
def storage(tmp_path):
    (tmp_path / "shoot").mkdir()
    (tmp_path / "shoot" / "IMG_1.cr3").write_bytes(b"raw-one")
    (tmp_path / "shoot" / "IMG_2.cr3").write_bytes(b"raw-two")
    (tmp_path / "backup").mkdir()
    (tmp_path / "backup" / "IMG_1.cr3").write_bytes(b"raw-one-backup")
    return tmp_path


@pytest.fixture
def service(storage):
    return ArchiveService(storage_root=str(storage), job_cache=TTLCache())


class TestBuildZip:

    @pytest.mark.asyncio
    async def test_completed_archive_contains_every_file(self, service):
        phase_id = uuid.uuid4()
        job_id = service.start_job(phase_id, 2)
        assert service.get_job(job_id, phase_id)["status"] == JOB_PROCESSING

        await service.build_zip(
            job_id, [("IMG_1.cr3", "shoot/IMG_1.cr3"), ("IMG_2.cr3", "shoot/IMG_2.cr3")]
        )

        job = service.get_job(job_id, phase_id)
        assert job["status"] == JOB_COMPLETED
        path = service.archive_path(job_id, phase_id)
        with zipfile.ZipFile(path) as archive:
            assert sorted(archive.namelist()) == ["IMG_1.cr3", "IMG_2.cr3"]
            assert archive.read("IMG_2.cr3") == b"raw-two"
            assert {info.compress_type for info in archive.infolist()} == {zipfile.ZIP_STORED}
        assert [p.name for p in service.archive_dir.iterdir()] == [f"{job_id}.zip"]

    @pytest.mark.asyncio
    async def test_duplicate_names_are_numbered(self, service):
        phase_id = uuid.uuid4()
        job_id = service.start_job(phase_id, 2)

        await service.build_zip(
            job_id, [("IMG_1.cr3", "shoot/IMG_1.cr3"), ("IMG_1.cr3", "backup/IMG_1.cr3")]
        )

        with zipfile.ZipFile(service.archive_path(job_id, phase_id)) as archive:
            assert sorted(archive.namelist()) == ["IMG_1 (1).cr3", "IMG_1.cr3"]
            assert archive.read("IMG_1 (1).cr3") == b"raw-one-backup"

    @pytest.mark.asyncio
    async def test_missing_file_fails_the_job(self, service):
        phase_id = uuid.uuid4()
        job_id = service.start_job(phase_id, 1)

        await service.build_zip(job_id, [("GONE.cr3", "shoot/GONE.cr3")])

        job = service.get_job(job_id, phase_id)
        assert job["status"] == JOB_FAILED
        assert job["error"]
        assert list(service.archive_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_escaping_path_fails_the_job(self, service):
        phase_id = uuid.uuid4()
        job_id = service.start_job(phase_id, 1)

        await service.build_zip(job_id, [("passwd", "../../etc/passwd")])

        assert service.get_job(job_id, phase_id)["status"] == JOB_FAILED


class TestPaths:

    def test_resolves_inside_root(self, service, storage):
        assert service.resolve_media_path("shoot/IMG_1.cr3") == (
            storage / "shoot" / "IMG_1.cr3"
        ).resolve()

    def test_refuses_escape(self, service):
        with pytest.raises(ValidationError):
            service.resolve_media_path("../outside.cr3")


class TestJobLookup:

    def test_job_of_another_phase_is_missing(self, service):
        job_id = service.start_job(uuid.uuid4(), 1)
        with pytest.raises(NotFoundError):
            service.get_job(job_id, uuid.uuid4())

    def test_unknown_job(self, service):
        with pytest.raises(NotFoundError):
            service.get_job("nope", uuid.uuid4())

    def test_archive_not_ready(self, service):
        phase_id = uuid.uuid4()
        job_id = service.start_job(phase_id, 1)
        with pytest.raises(ValidationError) as exc_info:
            service.archive_path(job_id, phase_id)
        assert exc_info.value.code == ErrorCode.DOWNLOAD_NOT_READY


class TestStaleArchives:

    @pytest.mark.asyncio
    async def test_old_archives_are_removed(self, service):
        service.archive_dir.mkdir(parents=True)
        stale = service.archive_dir / "old.zip"
        fresh = service.archive_dir / "new.zip"
        abandoned = service.archive_dir / "crashed.part"
        for path in (stale, fresh, abandoned):
            path.write_bytes(b"PK")
        now = time.time()
        os.utime(stale, (now - 7200, now - 7200))
        os.utime(abandoned, (now - 7200, now - 7200))

        removed = await service.purge_stale_archives(max_age_seconds=3600, now=now)

        assert removed == 2
        assert sorted(p.name for p in service.archive_dir.iterdir()) == ["new.zip"]

    @pytest.mark.asyncio
    async def test_other_files_are_left_alone(self, service):
        service.archive_dir.mkdir(parents=True)
        note = service.archive_dir / "README.txt"
        note.write_text("keep")
        os.utime(note, (0, 0))

        assert await service.purge_stale_archives(max_age_seconds=60) == 0
        assert note.exists()

    @pytest.mark.asyncio
    async def test_missing_archive_dir(self, service):
        assert await service.purge_stale_archives() == 0

    @pytest.mark.asyncio
    async def test_expired_job_archive_is_swept(self, service):
        phase_id = uuid.uuid4()
        job_id = service.start_job(phase_id, 1)
        await service.build_zip(job_id, [("IMG_1.cr3", "shoot/IMG_1.cr3")])
        path = service.archive_path(job_id, phase_id)

        removed = await service.purge_stale_archives(
            max_age_seconds=3600, now=path.stat().st_mtime + 3601
        )

        assert removed == 1
        assert not path.exists()
