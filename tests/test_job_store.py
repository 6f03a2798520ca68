import sqlite3

import pytest

from trustforge.core.errors import InvalidStateTransition, JobNotFound
from trustforge.services.job_store import JobStatus

from tests.factories import full_bundle


async def _create(store, owner="owner-1"):
    return await store.create(owner, "app.apk", f"app-uploads/{owner}/x_app.apk")


# ─── Create / Read ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_and_get(store):
    job = await _create(store)

    loaded = await store.get(job.id)

    assert loaded.status is JobStatus.PENDING
    assert loaded.version == 0
    assert loaded.owner_id == "owner-1"
    assert loaded.result is None
    assert loaded.created_at == loaded.updated_at


@pytest.mark.asyncio
async def test_get_hides_other_owners_jobs(store):
    job = await _create(store)

    assert await store.get(job.id, owner_id="someone-else") is None
    assert await store.get(job.id, owner_id="owner-1") is not None
    assert await store.get("missing") is None


# ─── Leases ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_claim_is_granted_once_per_lease(store):
    job = await _create(store)

    first = await store.claim(job.id, job.version)
    second = await store.claim(job.id, job.version)

    assert first == job.version + 1
    assert second is None
    assert (await store.get(job.id)).status is JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_complete_writes_everything_in_one_step(store):
    job = await _create(store)
    lease = await store.claim(job.id, 0)
    bundle = full_bundle()

    assert await store.complete(job.id, lease, bundle, 88, ["Fix it."], "reports/r.pdf")

    done = await store.get(job.id)
    assert done.status is JobStatus.COMPLETED
    assert done.trust_score == 88
    assert done.recommendations == ["Fix it."]
    assert done.report_ref == "reports/r.pdf"
    assert done.result.to_dict() == bundle.to_dict()


@pytest.mark.asyncio
async def test_stale_lease_cannot_complete_or_reclaim(store):
    job = await _create(store)
    lease = await store.claim(job.id, 0)

    assert not await store.complete(job.id, lease - 1, full_bundle(), 50, [], "r.pdf")
    assert await store.complete(job.id, lease, full_bundle(), 50, [], "r.pdf")
    assert await store.claim(job.id, lease + 1) is None
    assert not await store.fail(job.id, lease + 1, "late failure")
    assert (await store.get(job.id)).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_fail_keeps_result_empty(store):
    job = await _create(store)
    lease = await store.claim(job.id, 0)

    assert await store.fail(job.id, lease, "mobsf: Scan failed")

    failed = await store.get(job.id)
    assert failed.status is JobStatus.FAILED
    assert failed.error == "mobsf: Scan failed"
    assert failed.result is None
    assert failed.trust_score is None


# ─── Retry ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_retry_only_from_failed(store):
    job = await _create(store)

    with pytest.raises(InvalidStateTransition):
        await store.begin_retry(job.id)

    lease = await store.claim(job.id, 0)
    with pytest.raises(InvalidStateTransition):
        await store.begin_retry(job.id)

    await store.fail(job.id, lease, "boom")
    new_lease = await store.begin_retry(job.id)

    retried = await store.get(job.id)
    assert retried.status is JobStatus.PROCESSING
    assert retried.version == new_lease
    assert retried.error is None

    with pytest.raises(InvalidStateTransition):
        await store.begin_retry(job.id)


@pytest.mark.asyncio
async def test_retry_from_completed_is_rejected(store):
    job = await _create(store)
    lease = await store.claim(job.id, 0)
    await store.complete(job.id, lease, full_bundle(), 100, [], "r.pdf")

    with pytest.raises(InvalidStateTransition) as excinfo:
        await store.begin_retry(job.id)
    assert excinfo.value.current == "completed"


@pytest.mark.asyncio
async def test_retry_unknown_or_foreign_job(store):
    job = await _create(store)
    lease = await store.claim(job.id, 0)
    await store.fail(job.id, lease, "boom")

    with pytest.raises(JobNotFound):
        await store.begin_retry("does-not-exist")
    with pytest.raises(JobNotFound):
        await store.begin_retry(job.id, owner_id="intruder")


# ─── Stale Recovery ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fail_stale_moves_old_processing_jobs(store, db_path):
    old = await _create(store)
    fresh = await _create(store)
    await store.claim(old.id, 0)
    await store.claim(fresh.id, 0)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "UPDATE scans SET updated_at = ? WHERE scan_id = ?",
            ("2000-01-01T00:00:00.000000Z", old.id),
        )

    recovered = await store.fail_stale(3600)

    assert recovered == [old.id]
    assert (await store.get(old.id)).status is JobStatus.FAILED
    assert (await store.get(fresh.id)).status is JobStatus.PROCESSING
    # The zombie worker's lease no longer matches.
    assert not await store.complete(old.id, 1, full_bundle(), 100, [], "r.pdf")
    assert await store.begin_retry(old.id) == 3


@pytest.mark.asyncio
async def test_fail_stale_also_moves_old_pending_jobs(store, db_path):
    stranded = await _create(store)
    completed = await _create(store)
    await store.claim(completed.id, 0)
    await store.complete(completed.id, 1, full_bundle(), 100, [], "r.pdf")
    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE scans SET updated_at = ?", ("2000-01-01T00:00:00.000000Z",))

    recovered = await store.fail_stale(3600)

    assert recovered == [stranded.id]
    assert (await store.get(stranded.id)).status is JobStatus.FAILED
    assert (await store.get(completed.id)).status is JobStatus.COMPLETED
    # The original descriptor's lease (0) can no longer claim the job.
    assert await store.claim(stranded.id, 0) is None
