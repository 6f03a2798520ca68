"""
Hybrid Analysis behavioural sandbox client.

Protocol: multipart submit (expects 201) → ``job_id`` → poll report state →
fetch the summary once the state is ``SUCCESS``.
"""
from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from trustforge.core.config import ProviderConfig
from trustforge.core.errors import MalformedResponse, ProviderFailure, ProviderSkipped
from trustforge.core.file_validation import package_extension
from trustforge.services.outcomes import ProviderCategory, SandboxReport
from trustforge.services.scanners.base import ProviderHandle, ScannerClient
from trustforge.services.scanners.poller import PollOutcome

logger = logging.getLogger(__name__)

ANDROID_STATIC_ENVIRONMENT = 200
PENDING_STATES = ("IN_QUEUE", "IN_PROGRESS")


def parse_summary(summary: dict[str, Any]) -> SandboxReport:
    threats = summary.get("threats") or []
    if not isinstance(threats, list):
        raise MalformedResponse("hybrid_analysis: summary threats is not a list")
    score = summary.get("threat_score")
    return SandboxReport(
        verdict=summary.get("verdict"),
        threats=tuple(str(t) for t in threats),
        threat_score=int(score) if isinstance(score, (int, float)) else None,
    )


class HybridAnalysisClient(ScannerClient):
    name = "hybrid_analysis"
    category = ProviderCategory.SANDBOX

    def __init__(
        self,
        config: ProviderConfig,
        http: httpx.AsyncClient | None = None,
        environment_id: int = ANDROID_STATIC_ENVIRONMENT,
    ):
        super().__init__(config, http)
        self.environment_id = environment_id

    def _headers(self) -> dict[str, str]:
        return {"api-key": self.config.api_key, "accept": "application/json"}

    def check_preconditions(self, file_path: str) -> None:
        super().check_preconditions(file_path)
        if package_extension(file_path) != ".apk":
            raise ProviderSkipped(self.name, "Invalid file type. Only APK files are allowed.")

    async def submit(self, file_path: str) -> ProviderHandle:
        form = {
            "environment_id": str(self.environment_id),
            "no_share_third_party": "1",
            "allow_community_access": "true",
        }
        with open(file_path, "rb") as fh:
            upload = await self._http.post(
                self.url("/submit/file"),
                data=form,
                files={"file": (os.path.basename(file_path), fh, "application/octet-stream")},
                headers=self._headers(),
            )
        if upload.status_code != 201:
            logger.error(f"Hybrid Analysis upload failed: {upload.text}")
            raise ProviderFailure(self.name, f"Hybrid Analysis upload failed with status {upload.status_code}")

        job_id = self.json_body(upload).get("job_id")
        if not job_id:
            raise ProviderFailure(self.name, "submission response did not include a job_id")
        logger.info(f"Hybrid Analysis job ID: {job_id}")
        return ProviderHandle(self.name, str(job_id))

    async def poll(self, handle: ProviderHandle) -> PollOutcome:
        response = await self._http.get(self.url(f"/report/{handle.ref}/state"), headers=self._headers())
        # 404 while the job is registered is normal; the poll driver treats it as transient.
        response.raise_for_status()
        state = self.json_body(response).get("state")
        logger.info(f"Hybrid Analysis scan state: {state}")

        if state == "SUCCESS":
            summary = await self._http.get(self.url(f"/report/{handle.ref}/summary"), headers=self._headers())
            summary.raise_for_status()
            return PollOutcome.done(parse_summary(self.json_body(summary)))
        if state in PENDING_STATES:
            return PollOutcome.pending(state)
        if state == "ERROR":
            return PollOutcome.failed("Hybrid Analysis scan failed")
        raise MalformedResponse(f"hybrid_analysis: unrecognised report state {state!r}")
