"""
test_pipeline.py
~~~~~~~~~~~~~~~~
Job lifecycle: submit → process → completed / failed, retries, redelivery,
temp directory reclamation.
"""
import os
import sqlite3

import pytest

from trustforge.core.errors import (
    InfrastructureError,
    InvalidStateTransition,
    JobNotFound,
    MandatoryProviderFailure,
    PersistenceError,
    ValidationError,
)
from trustforge.services.job_store import JobStatus
from trustforge.services.pipeline import ScanPipeline
from trustforge.services.queue import JobDescriptor, JobQueue

from tests.factories import APK_BYTES, full_bundle


class FakeOrchestrator:
    def __init__(self, result, seen):
        self.result = result
        self.seen = seen

    async def run_all(self, file_path):
        self.seen.append((file_path, os.path.exists(file_path)))
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result

    async def aclose(self):
        pass


class BrokenQueue(JobQueue):
    def enqueue(self, descriptor):
        raise ConnectionError("redis unreachable")


def fake_renderer(bundle, trust_score, recommendations, metadata):
    return b"%PDF-1.4 " + metadata.job_id.encode()


@pytest.fixture
def scans():
    """Paths the fake orchestrator was asked to scan, with whether the file existed."""
    return []


@pytest.fixture
def make_pipeline(store, storage, queue, temp_root, scans):
    def _make(result=None, job_queue=None):
        result = full_bundle() if result is None else result
        return ScanPipeline(
            store,
            storage,
            job_queue or queue,
            orchestrator_factory=lambda: FakeOrchestrator(result, scans),
            renderer=fake_renderer,
            temp_root=temp_root,
        )
    return _make


def count_jobs(db_path):
    with sqlite3.connect(db_path) as conn:
        return conn.execute("SELECT COUNT(*) FROM scans").fetchone()[0]


# ─── Submit ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_submit_stores_file_and_enqueues(make_pipeline, store, storage, queue):
    pipeline = make_pipeline()

    job_id = await pipeline.submit("owner-1", "My App.apk", APK_BYTES)

    job = await store.get(job_id)
    assert job.status is JobStatus.PENDING
    assert job.filename == "My_App.apk"
    assert job.file_ref.startswith("app-uploads/owner-1/")
    assert job.file_ref.endswith("_My_App.apk")
    assert storage.fetch(job.file_ref) == APK_BYTES
    assert queue.items == [JobDescriptor(job_id, 0)]


@pytest.mark.asyncio
@pytest.mark.parametrize("filename, content", [
    ("app.exe", APK_BYTES),
    ("", APK_BYTES),
    ("app.apk", b"MZ\x90\x00 not a zip"),
    ("app.apk", b""),
])
async def test_invalid_upload_never_creates_a_job(make_pipeline, queue, db_path, filename, content):
    pipeline = make_pipeline()

    with pytest.raises(ValidationError):
        await pipeline.submit("owner-1", filename, content)

    assert count_jobs(db_path) == 0
    assert queue.items == []


@pytest.mark.asyncio
async def test_enqueue_failure_leaves_job_failed_and_retryable(make_pipeline, store, queue, db_path):
    pipeline = make_pipeline(job_queue=BrokenQueue())

    with pytest.raises(InfrastructureError):
        await pipeline.submit("owner-1", "app.apk", APK_BYTES)

    with sqlite3.connect(db_path) as conn:
        job_id, status = conn.execute("SELECT scan_id, status FROM scans").fetchone()
    assert status == "failed"

    lease = await make_pipeline().retry(job_id)
    assert queue.items == [JobDescriptor(job_id, lease)]


# ─── Process ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_process_completes_job(make_pipeline, store, storage, queue, temp_root, scans):
    pipeline = make_pipeline()
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    status = await pipeline.process(descriptor.job_id, descriptor.lease)

    assert status is JobStatus.COMPLETED
    job = await store.get(job_id)
    assert job.status is JobStatus.COMPLETED
    assert job.trust_score == 100
    assert job.report_ref == f"app-pdf-reports/owner-1/{job_id}/app_report.pdf"
    assert storage.fetch(job.report_ref).startswith(b"%PDF")
    # The orchestrator saw a real local copy, and the copy is gone afterwards.
    assert scans[0][1] is True
    assert os.listdir(temp_root) == []


@pytest.mark.asyncio
async def test_mandatory_failure_persists_no_bundle(make_pipeline, store, queue, temp_root):
    pipeline = make_pipeline(result=MandatoryProviderFailure("mobsf scan failed: timed out"))
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    status = await pipeline.process(descriptor.job_id, descriptor.lease)

    assert status is JobStatus.FAILED
    job = await store.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.result is None
    assert job.trust_score is None
    assert job.report_ref is None
    assert "mobsf" in job.error
    assert os.listdir(temp_root) == []


@pytest.mark.asyncio
async def test_duplicate_delivery_runs_once(make_pipeline, queue, scans):
    pipeline = make_pipeline()
    await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    first = await pipeline.process(descriptor.job_id, descriptor.lease)
    second = await pipeline.process(descriptor.job_id, descriptor.lease)

    assert first is JobStatus.COMPLETED
    assert second is None
    assert len(scans) == 1


@pytest.mark.asyncio
async def test_unknown_job_descriptor_is_dropped(make_pipeline):
    assert await make_pipeline().process("no-such-job", 0) is None


@pytest.mark.asyncio
async def test_terminal_write_failure_marks_job_failed(make_pipeline, store, queue, monkeypatch):
    pipeline = make_pipeline()
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    async def broken_complete(*args, **kwargs):
        raise PersistenceError("disk I/O error")

    monkeypatch.setattr(store, "complete", broken_complete)
    status = await pipeline.process(descriptor.job_id, descriptor.lease)

    assert status is JobStatus.FAILED
    job = await store.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.result is None


@pytest.mark.asyncio
async def test_lost_failure_write_leaves_job_processing_until_recovered(make_pipeline, store, queue, monkeypatch):
    pipeline = make_pipeline(result=MandatoryProviderFailure("mobsf down"))
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    async def broken_fail(*args, **kwargs):
        raise PersistenceError("database is locked")

    with monkeypatch.context() as m:
        m.setattr(store, "fail", broken_fail)
        await pipeline.process(descriptor.job_id, descriptor.lease)

    assert (await store.get(job_id)).status is JobStatus.PROCESSING
    assert await pipeline.recover_stale(max_age_seconds=-1) == [job_id]
    assert (await store.get(job_id)).status is JobStatus.FAILED


@pytest.mark.asyncio
async def test_temp_dir_failure_marks_job_failed(store, storage, queue, tmp_path, scans):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")
    pipeline = ScanPipeline(
        store,
        storage,
        queue,
        orchestrator_factory=lambda: FakeOrchestrator(full_bundle(), scans),
        renderer=fake_renderer,
        temp_root=str(blocker),
    )
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    status = await pipeline.process(descriptor.job_id, descriptor.lease)

    assert status is JobStatus.FAILED
    assert (await store.get(job_id)).status is JobStatus.FAILED
    assert scans == []


@pytest.mark.asyncio
async def test_store_error_before_claim_leaves_descriptor_redeliverable(make_pipeline, store, queue, monkeypatch):
    pipeline = make_pipeline()
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    async def locked_get(*args, **kwargs):
        raise PersistenceError("database is locked")

    with monkeypatch.context() as m:
        m.setattr(store, "get", locked_get)
        with pytest.raises(PersistenceError):
            await pipeline.process(descriptor.job_id, descriptor.lease)

    assert (await store.get(job_id)).status is JobStatus.PENDING
    # The worker task redelivers the same descriptor once the store is back.
    assert await pipeline.process(descriptor.job_id, descriptor.lease) is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_abandoned_pending_job_is_recovered_and_retryable(make_pipeline, store, queue, monkeypatch):
    pipeline = make_pipeline()
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]

    async def locked_claim(*args, **kwargs):
        raise PersistenceError("database is locked")

    with monkeypatch.context() as m:
        m.setattr(store, "claim", locked_claim)
        with pytest.raises(PersistenceError):
            await pipeline.process(descriptor.job_id, descriptor.lease)

    assert await pipeline.recover_stale(max_age_seconds=-1) == [job_id]
    assert (await store.get(job_id)).status is JobStatus.FAILED
    # A late copy of the dropped descriptor no longer holds the lease.
    assert await pipeline.process(descriptor.job_id, descriptor.lease) is None

    lease = await pipeline.retry(job_id, "owner-1")
    assert await pipeline.process(job_id, lease) is JobStatus.COMPLETED


# ─── Retry ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_retry_only_from_failed_then_completes(make_pipeline, store, queue):
    failing = make_pipeline(result=MandatoryProviderFailure("mobsf down"))
    job_id = await failing.submit("owner-1", "app.apk", APK_BYTES)

    with pytest.raises(InvalidStateTransition):
        await failing.retry(job_id)

    descriptor = queue.drain()[0]
    await failing.process(descriptor.job_id, descriptor.lease)

    healthy = make_pipeline()
    lease = await healthy.retry(job_id, owner_id="owner-1")
    retried = queue.drain()
    assert retried == [JobDescriptor(job_id, lease)]

    assert await healthy.process(job_id, lease) is JobStatus.COMPLETED
    with pytest.raises(InvalidStateTransition):
        await healthy.retry(job_id)


# ─── Status / Report ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_status_exposes_public_fields_only(make_pipeline, queue):
    pipeline = make_pipeline(result=MandatoryProviderFailure("internal detail: api key rejected"))
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)
    descriptor = queue.drain()[0]
    await pipeline.process(descriptor.job_id, descriptor.lease)

    status = await pipeline.get_status(job_id, "owner-1")

    assert status["status"] == "failed"
    assert "error" not in status
    assert "result" not in status
    assert "api key" not in str(status)
    with pytest.raises(JobNotFound):
        await pipeline.get_status(job_id, "owner-2")


@pytest.mark.asyncio
async def test_report_only_for_completed_jobs(make_pipeline, queue):
    pipeline = make_pipeline()
    job_id = await pipeline.submit("owner-1", "app.apk", APK_BYTES)

    with pytest.raises(InvalidStateTransition):
        await pipeline.get_report(job_id, "owner-1")

    descriptor = queue.drain()[0]
    await pipeline.process(descriptor.job_id, descriptor.lease)

    name, data = await pipeline.get_report(job_id, "owner-1")
    assert name == "app_report.pdf"
    assert data.startswith(b"%PDF")
    with pytest.raises(JobNotFound):
        await pipeline.get_report(job_id, "owner-2")
