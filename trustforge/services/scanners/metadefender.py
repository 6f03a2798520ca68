"""
MetaDefender file-reputation client.

Protocol: raw octet-stream upload → ``data_id`` → poll until
``scan_results.progress_percentage`` reaches 100.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from trustforge.core.errors import MalformedResponse, ProviderFailure, ProviderSkipped
from trustforge.core.file_validation import is_zip_container
from trustforge.services.outcomes import ProviderCategory, ReputationReport
from trustforge.services.scanners.base import ProviderHandle, ScannerClient
from trustforge.services.scanners.poller import PollOutcome

logger = logging.getLogger(__name__)

ABORTED_RESULTS = ("aborted", "cancelled")


def parse_scan_results(scan_results: dict[str, Any]) -> ReputationReport:
    """Turn a finished ``scan_results`` object into a ReputationReport."""
    details = scan_results.get("scan_details")
    if not isinstance(details, dict):
        raise MalformedResponse("metadefender: finished scan has no scan_details")
    detections = {}
    for engine, detail in details.items():
        threat = detail.get("threat_found") if isinstance(detail, dict) else None
        detections[engine] = threat or None
    return ReputationReport(detections=detections, overall_result=scan_results.get("scan_all_result_a"))


def _read_file(file_path: str) -> bytes:
    with open(file_path, "rb") as fh:
        return fh.read()


class MetaDefenderClient(ScannerClient):
    name = "metadefender"
    category = ProviderCategory.REPUTATION

    def check_preconditions(self, file_path: str) -> None:
        super().check_preconditions(file_path)
        with open(file_path, "rb") as fh:
            header = fh.read(8)
        if not is_zip_container(header):
            raise ProviderSkipped(self.name, "Invalid file type. Only APK or IPA files are allowed.")

    async def submit(self, file_path: str) -> ProviderHandle:
        content = await asyncio.to_thread(_read_file, file_path)
        upload = await self._http.post(
            self.url("/file"),
            content=content,
            headers={"apikey": self.config.api_key, "Content-Type": "application/octet-stream"},
        )
        if upload.status_code != 200:
            raise ProviderFailure(self.name, f"MetaDefender upload failed with status {upload.status_code}")

        data_id = self.json_body(upload).get("data_id")
        if not data_id:
            raise ProviderFailure(self.name, "upload response did not include a data_id")
        logger.info(f"MetaDefender data ID: {data_id}")
        return ProviderHandle(self.name, str(data_id))

    async def poll(self, handle: ProviderHandle) -> PollOutcome:
        response = await self._http.get(
            self.url(f"/file/{handle.ref}"),
            headers={"apikey": self.config.api_key},
        )
        response.raise_for_status()
        scan_results = self.json_body(response).get("scan_results")
        if not isinstance(scan_results, dict):
            raise MalformedResponse("metadefender: response has no scan_results")

        progress = scan_results.get("progress_percentage")
        logger.info(f"MetaDefender scan progress: {progress}%")

        overall = str(scan_results.get("scan_all_result_a") or "").lower()
        if overall in ABORTED_RESULTS:
            return PollOutcome.failed(f"MetaDefender scan {overall}")
        if progress != 100:
            return PollOutcome.pending()

        try:
            return PollOutcome.done(parse_scan_results(scan_results))
        except MalformedResponse as e:
            # A finished scan never gains details later, so polling again cannot help.
            return PollOutcome.failed(str(e))
