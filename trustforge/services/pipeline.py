"""
pipeline.py
~~~~~~~~~~~
Durable scan-job pipeline.

    submit  → validate, store file, create ``pending`` record, enqueue
    process → claim (``processing``), scan, score, render, store report,
              single terminal write (``completed``), or ``failed`` on any error
    retry   → ``failed`` → ``processing`` and re-enqueue

The pipeline is the only component that writes ``failed``. Every job gets a
private temp directory that is removed before ``process`` returns.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from trustforge.core.config import settings
from trustforge.core.errors import (
    InfrastructureError,
    InvalidStateTransition,
    JobNotFound,
    PersistenceError,
)
from trustforge.core.file_validation import safe_key_segment, sanitize_filename, validate_package
from trustforge.services.cleanup import remove_job_dir
from trustforge.services.job_store import JobStatus, JobStore, ScanJob, job_store
from trustforge.services.orchestrator import ScanOrchestrator
from trustforge.services.outcomes import ScanResultBundle
from trustforge.services.queue import CeleryJobQueue, JobDescriptor, JobQueue
from trustforge.services.report_renderer import ReportMetadata, render_report
from trustforge.services.scanners.registry import build_clients
from trustforge.services.scoring import score_bundle
from trustforge.services.storage import StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

Renderer = Callable[[ScanResultBundle, int, List[str], ReportMetadata], bytes]


def default_orchestrator() -> ScanOrchestrator:
    mandatory, optional = build_clients(settings)
    return ScanOrchestrator(mandatory, optional)


def report_reference(owner_id: str, job_id: str, filename: str) -> str:
    stem = os.path.splitext(filename)[0]
    return f"{settings.REPORT_PREFIX}/{safe_key_segment(owner_id)}/{job_id}/{stem}_report.pdf"


class ScanPipeline:
    def __init__(
        self,
        store: JobStore,
        storage: StorageProvider,
        queue: JobQueue,
        orchestrator_factory: Callable[[], ScanOrchestrator] = default_orchestrator,
        renderer: Renderer = render_report,
        temp_root: Optional[str] = None,
    ):
        self.store = store
        self.storage = storage
        self.queue = queue
        self.orchestrator_factory = orchestrator_factory
        self.renderer = renderer
        self.temp_root = temp_root or settings.TEMP_ROOT

    # ─── Submission ──────────────────────────────────────────────────────────
    async def submit(self, owner_id: str, filename: str, content: bytes) -> str:
        """
        Accept an upload and return the new job id.

        Raises:
            ValidationError: the package is rejected; no job is created.
            InfrastructureError: the object store, job store or queue is unavailable.
        """
        owner_segment = safe_key_segment(owner_id)
        safe_name = sanitize_filename(filename)
        validate_package(safe_name, content)

        job_id = str(uuid.uuid4())
        file_ref = f"{settings.UPLOAD_PREFIX}/{owner_segment}/{uuid.uuid4()}_{safe_name}"

        try:
            await asyncio.to_thread(self.storage.store, file_ref, content)
        except PersistenceError as e:
            raise InfrastructureError(f"Object store unavailable: {e}") from e

        try:
            job = await self.store.create(owner_id, safe_name, file_ref, job_id=job_id)
        except PersistenceError as e:
            await asyncio.to_thread(self.storage.delete, file_ref)
            raise InfrastructureError(f"Job store unavailable: {e}") from e

        try:
            self.queue.enqueue(JobDescriptor(job_id, job.version))
        except Exception as e:
            # Leave the job retryable rather than stranded in pending.
            await self._record_failure(job_id, job.version, f"Enqueue failed: {e}")
            raise InfrastructureError(f"Queue unavailable: {e}") from e

        logger.info(f"[job_id={job_id}] Accepted {safe_name} ({len(content)} bytes) from {owner_id}")
        return job_id

    # ─── Worker Side ─────────────────────────────────────────────────────────
    async def process(self, job_id: str, lease: int) -> Optional[JobStatus]:
        """
        Run one job to a terminal state.

        Returns the terminal status written by this call, or None when the
        descriptor was dropped (unknown job, already completed, stale lease).
        """
        job = await self.store.get(job_id)
        if job is None:
            logger.warning(f"[job_id={job_id}] Descriptor for unknown job dropped")
            return None
        if job.status is JobStatus.COMPLETED:
            logger.info(f"[job_id={job_id}] Already completed; redelivery skipped")
            return None

        claimed = await self.store.claim(job_id, lease)
        if claimed is None:
            logger.info(f"[job_id={job_id}] Lease {lease} is stale; another consumer owns this job")
            return None
        logger.info(f"[job_id={job_id}] Processing started (lease {claimed})")

        work_dir = None
        try:
            try:
                os.makedirs(self.temp_root, exist_ok=True)
                work_dir = tempfile.mkdtemp(prefix=f"{job_id}_", dir=self.temp_root)
                bundle, trust_score, recommendations, report_ref = await self._run(job, work_dir)
            except Exception as e:
                logger.error(f"[job_id={job_id}] Scan failed: {e}", exc_info=True)
                await self._record_failure(job_id, claimed, str(e))
                return JobStatus.FAILED

            try:
                written = await self.store.complete(
                    job_id, claimed, bundle, trust_score, recommendations, report_ref
                )
            except PersistenceError as e:
                logger.error(f"[job_id={job_id}] Terminal write failed: {e}")
                await self._record_failure(job_id, claimed, f"Could not persist result: {e}")
                return JobStatus.FAILED

            if not written:
                logger.warning(f"[job_id={job_id}] Lease {claimed} lost before completion; result discarded")
                return None
            logger.info(f"[job_id={job_id}] Completed with trust score {trust_score}")
            return JobStatus.COMPLETED
        finally:
            if work_dir is not None:
                remove_job_dir(work_dir)

    async def _run(self, job: ScanJob, work_dir: str) -> Tuple[ScanResultBundle, int, List[str], str]:
        content = await asyncio.to_thread(self.storage.fetch, job.file_ref)
        local_path = os.path.join(work_dir, job.filename)
        await asyncio.to_thread(_write_file, local_path, content)

        orchestrator = self.orchestrator_factory()
        try:
            bundle = await orchestrator.run_all(local_path)
        finally:
            await orchestrator.aclose()

        trust_score, recommendations = score_bundle(bundle)
        logger.info(f"[job_id={job.id}] Trust score {trust_score}, {len(recommendations)} recommendation(s)")

        metadata = ReportMetadata(
            filename=job.filename,
            job_id=job.id,
            generated_at=datetime.now(timezone.utc),
        )
        pdf_bytes = await asyncio.to_thread(self.renderer, bundle, trust_score, recommendations, metadata)

        report_ref = report_reference(job.owner_id, job.id, job.filename)
        await asyncio.to_thread(self.storage.store, report_ref, pdf_bytes)
        logger.info(f"[job_id={job.id}] Report stored at {report_ref}")
        return bundle, trust_score, recommendations, report_ref

    async def _record_failure(self, job_id: str, lease: int, error: str) -> None:
        try:
            await self.store.fail(job_id, lease, error)
        except PersistenceError as e:
            logger.critical(
                f"[job_id={job_id}] Could not record failure ({e}); job stays processing until recover_stale"
            )

    # ─── Caller Operations ───────────────────────────────────────────────────
    async def retry(self, job_id: str, owner_id: Optional[str] = None) -> int:
        """
        Re-run a failed job. Returns the new lease.

        Raises:
            JobNotFound / InvalidStateTransition: from the job store.
            InfrastructureError: the queue is unavailable (the job is failed again).
        """
        lease = await self.store.begin_retry(job_id, owner_id)
        try:
            self.queue.enqueue(JobDescriptor(job_id, lease))
        except Exception as e:
            await self._record_failure(job_id, lease, f"Enqueue failed: {e}")
            raise InfrastructureError(f"Queue unavailable: {e}") from e
        return lease

    async def get_status(self, job_id: str, owner_id: Optional[str] = None) -> Dict[str, Any]:
        job = await self.store.get(job_id, owner_id)
        if job is None:
            raise JobNotFound(job_id)
        return job.public_view()

    async def get_report(self, job_id: str, owner_id: Optional[str] = None) -> Tuple[str, bytes]:
        """Return ``(download_name, pdf_bytes)`` for a completed job owned by ``owner_id``."""
        job = await self.store.get(job_id, owner_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.status is not JobStatus.COMPLETED or not job.report_ref:
            raise InvalidStateTransition(job_id, job.status.value, "download report")
        try:
            data = await asyncio.to_thread(self.storage.fetch, job.report_ref)
        except PersistenceError as e:
            raise InfrastructureError(f"Report unavailable: {e}") from e
        return os.path.basename(job.report_ref), data

    async def recover_stale(self, max_age_seconds: Optional[int] = None) -> List[str]:
        """Operator action: fail jobs stuck in pending or processing so they become retryable."""
        threshold = max_age_seconds if max_age_seconds is not None else settings.STALE_JOB_SECONDS
        return await self.store.fail_stale(threshold)


def _write_file(path: str, content: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(content)


def build_pipeline() -> ScanPipeline:
    return ScanPipeline(job_store, get_storage_provider(), CeleryJobQueue())
