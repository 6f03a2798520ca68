"""
Scan API routes: upload, status, retry, report download.

Owner identity comes from the ``X-User-Id`` header; authentication itself is
handled in front of this service.
"""
import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Header, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from trustforge.core.errors import ValidationError
from trustforge.core.limiter import REPORT_LIMIT, RETRY_LIMIT, STATUS_LIMIT, UPLOAD_LIMIT, limiter
from trustforge.services.pipeline import ScanPipeline, build_pipeline

logger = logging.getLogger(__name__)
router = APIRouter()


@lru_cache
def get_pipeline() -> ScanPipeline:
    return build_pipeline()


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise ValidationError("X-User-Id header is required")
    return x_user_id.strip()


# ─── Data Models ─────────────────────────────────────────────────────────────
class ScanAccepted(BaseModel):
    job_id: str
    status: str
    message: str


class ScanStatus(BaseModel):
    job_id: str
    status: str
    filename: str
    trust_score: Optional[int] = None
    recommendations: List[str] = []
    report_available: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ─── Endpoints ───────────────────────────────────────────────────────────────
@router.post("/scans", response_model=ScanAccepted, status_code=202)
@limiter.limit(UPLOAD_LIMIT)
async def submit_scan(
    request: Request,
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    pipeline: ScanPipeline = Depends(get_pipeline),
):
    """
    Accept an .apk/.ipa upload and queue it for scanning.
    Returns the job id immediately.
    """
    content = await file.read()
    job_id = await pipeline.submit(owner_id, file.filename or "", content)
    return ScanAccepted(job_id=job_id, status="pending", message="File uploaded. Scan queued.")


@router.get("/scans/{job_id}", response_model=ScanStatus)
@limiter.limit(STATUS_LIMIT)
async def get_scan_status(
    request: Request,
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: ScanPipeline = Depends(get_pipeline),
):
    return ScanStatus(**await pipeline.get_status(job_id, owner_id))


@router.post("/scans/{job_id}/retry", response_model=ScanAccepted, status_code=202)
@limiter.limit(RETRY_LIMIT)
async def retry_scan(
    request: Request,
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: ScanPipeline = Depends(get_pipeline),
):
    """Re-run a failed scan. Any other state is rejected with 400."""
    await pipeline.retry(job_id, owner_id)
    return ScanAccepted(job_id=job_id, status="processing", message="Retry queued.")


@router.get("/scans/{job_id}/report")
@limiter.limit(REPORT_LIMIT)
async def download_report(
    request: Request,
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: ScanPipeline = Depends(get_pipeline),
):
    """Download the PDF report of a completed scan."""
    name, data = await pipeline.get_report(job_id, owner_id)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{name}"'},
    )
