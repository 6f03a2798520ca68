import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from trustforge.core.errors import InvalidStateTransition, JobNotFound, PersistenceError, TrustForgeError
from trustforge.db import format_ts, get_async_db_connection, utcnow_iso
from trustforge.services.outcomes import ScanResultBundle

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScanJob:
    id: str
    owner_id: str
    filename: str
    file_ref: str
    status: JobStatus
    version: int = 0  # Lease counter for optimistic locking
    result: Optional[ScanResultBundle] = None
    trust_score: Optional[int] = None
    recommendations: List[str] = field(default_factory=list)
    report_ref: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def public_view(self) -> Dict[str, Any]:
        """Fields safe to return to the job's owner. Never the bundle or the error."""
        return {
            "job_id": self.id,
            "status": self.status.value,
            "filename": self.filename,
            "trust_score": self.trust_score,
            "recommendations": list(self.recommendations),
            "report_available": self.status is JobStatus.COMPLETED and bool(self.report_ref),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _row_to_job(row) -> ScanJob:
    result = None
    if row["result_json"]:
        result = ScanResultBundle.from_dict(json.loads(row["result_json"]))
    recommendations = json.loads(row["recommendations"]) if row["recommendations"] else []
    return ScanJob(
        id=row["scan_id"],
        owner_id=row["owner_id"],
        filename=row["filename"],
        file_ref=row["file_ref"],
        status=JobStatus(row["status"]),
        version=row["version"],
        result=result,
        trust_score=row["trust_score"],
        recommendations=recommendations,
        report_ref=row["report_ref"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


@asynccontextmanager
async def _db():
    """Connection whose driver errors surface as PersistenceError."""
    try:
        async with get_async_db_connection() as conn:
            yield conn
    except TrustForgeError:
        raise
    except Exception as e:
        raise PersistenceError(f"Job store operation failed: {e}") from e


class JobStore:
    """
    Durable scan-job records.

    Every state change is one conditional UPDATE guarded by ``version`` (the
    lease). A writer holding a stale lease changes nothing and gets ``None`` /
    ``False`` back, so at most one worker ever owns a job.
    """

    async def create(self, owner_id: str, filename: str, file_ref: str, job_id: Optional[str] = None) -> ScanJob:
        job_id = job_id or str(uuid.uuid4())
        now = utcnow_iso()
        async with _db() as conn:
            await conn.execute(
                """
                INSERT INTO scans (scan_id, owner_id, filename, file_ref, status, version, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (job_id, owner_id, filename, file_ref, JobStatus.PENDING.value, 0, now, now),
            )
            await conn.commit()
        logger.info(f"[job_id={job_id}] Job created for owner {owner_id}")
        return ScanJob(
            id=job_id,
            owner_id=owner_id,
            filename=filename,
            file_ref=file_ref,
            status=JobStatus.PENDING,
            version=0,
            created_at=now,
            updated_at=now,
        )

    async def get(self, job_id: str, owner_id: Optional[str] = None) -> Optional[ScanJob]:
        """Return the job, or None if it does not exist or belongs to another owner."""
        async with _db() as conn:
            cursor = await conn.execute("SELECT * FROM scans WHERE scan_id = ?", (job_id,))
            row = await cursor.fetchone()
        if not row:
            return None
        job = _row_to_job(row)
        if owner_id is not None and job.owner_id != owner_id:
            return None
        return job

    async def _update_returning(self, sql: str, params: tuple) -> Optional[int]:
        async with _db() as conn:
            cursor = await conn.execute(sql, params)
            # Drain the cursor so the statement is finished before commit.
            rows = await cursor.fetchall()
            await conn.commit()
        return rows[0]["version"] if rows else None

    async def claim(self, job_id: str, lease: int) -> Optional[int]:
        """
        Take ownership of a pending (or freshly retried) job.

        Returns the new lease, or None when ``lease`` is stale or the job is
        already terminal.
        """
        return await self._update_returning(
            """
            UPDATE scans
            SET status = ?, version = version + 1, updated_at = ?
            WHERE scan_id = ? AND version = ? AND status IN (?, ?)
            RETURNING version
            """,
            (
                JobStatus.PROCESSING.value, utcnow_iso(), job_id, lease,
                JobStatus.PENDING.value, JobStatus.PROCESSING.value,
            ),
        )

    async def complete(
        self,
        job_id: str,
        lease: int,
        bundle: ScanResultBundle,
        trust_score: int,
        recommendations: List[str],
        report_ref: str,
    ) -> bool:
        """Single-statement terminal write: bundle, score, recommendations and report together."""
        version = await self._update_returning(
            """
            UPDATE scans
            SET status = ?, result_json = ?, trust_score = ?, recommendations = ?,
                report_ref = ?, error = NULL, version = version + 1, updated_at = ?
            WHERE scan_id = ? AND version = ? AND status = ?
            RETURNING version
            """,
            (
                JobStatus.COMPLETED.value,
                json.dumps(bundle.to_dict()),
                trust_score,
                json.dumps(recommendations),
                report_ref,
                utcnow_iso(),
                job_id,
                lease,
                JobStatus.PROCESSING.value,
            ),
        )
        return version is not None

    async def fail(self, job_id: str, lease: int, error: str) -> bool:
        """Mark a non-terminal job failed. The bundle is never written here."""
        version = await self._update_returning(
            """
            UPDATE scans
            SET status = ?, error = ?, version = version + 1, updated_at = ?
            WHERE scan_id = ? AND version = ? AND status IN (?, ?)
            RETURNING version
            """,
            (
                JobStatus.FAILED.value, error, utcnow_iso(), job_id, lease,
                JobStatus.PENDING.value, JobStatus.PROCESSING.value,
            ),
        )
        if version is not None:
            logger.error(f"[job_id={job_id}] Job marked as FAILED: {error}")
        return version is not None

    async def begin_retry(self, job_id: str, owner_id: Optional[str] = None) -> int:
        """
        Move a failed job back to processing and return the new lease.

        Raises:
            JobNotFound: no such job for this owner.
            InvalidStateTransition: the job is not in ``failed``.
        """
        sql = """
            UPDATE scans
            SET status = ?, error = NULL, version = version + 1, updated_at = ?
            WHERE scan_id = ? AND status = ?
        """
        params: tuple = (JobStatus.PROCESSING.value, utcnow_iso(), job_id, JobStatus.FAILED.value)
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params += (owner_id,)
        version = await self._update_returning(sql + " RETURNING version", params)
        if version is not None:
            logger.info(f"[job_id={job_id}] Retry accepted (lease {version})")
            return version

        job = await self.get(job_id, owner_id)
        if job is None:
            raise JobNotFound(job_id)
        raise InvalidStateTransition(job_id, job.status.value, "retry")

    async def fail_stale(self, max_age_seconds: int) -> List[str]:
        """
        Fail every job left in pending or processing for longer than ``max_age_seconds``.

        Pending covers descriptors the worker dropped before its claim; the version
        bump makes any late redelivery of those descriptors a no-op.
        """
        cutoff = format_ts(datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds))
        async with _db() as conn:
            cursor = await conn.execute(
                """
                UPDATE scans
                SET status = ?, error = ?, version = version + 1, updated_at = ?
                WHERE status IN (?, ?) AND updated_at < ?
                RETURNING scan_id
                """,
                (
                    JobStatus.FAILED.value,
                    f"No progress for {max_age_seconds}s; marked failed by recovery",
                    utcnow_iso(),
                    JobStatus.PENDING.value,
                    JobStatus.PROCESSING.value,
                    cutoff,
                ),
            )
            rows = await cursor.fetchall()
            await conn.commit()
        job_ids = [row["scan_id"] for row in rows]
        for job_id in job_ids:
            logger.warning(f"[job_id={job_id}] Stale job moved to failed")
        return job_ids


job_store = JobStore()
