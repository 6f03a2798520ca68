"""
VirusTotal multi-engine AV aggregator client.

Protocol: request an upload URL → upload → poll the analysis → per-engine results.
Uploads rejected as too large (HTTP 413) fall back to a SHA-256 hash lookup of
the file's last analysis.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from typing import Any

from trustforge.core.errors import MalformedResponse, ProviderFailure
from trustforge.services.outcomes import AVAggregateReport, EngineVerdict, ProviderCategory
from trustforge.services.scanners.base import ProviderHandle, ScannerClient
from trustforge.services.scanners.poller import PollOutcome

logger = logging.getLogger(__name__)

PENDING_STATUSES = ("queued", "in-progress")


def parse_engine_results(results: Any) -> AVAggregateReport:
    """Turn a VirusTotal ``engine → {category, result}`` map into an AVAggregateReport."""
    if not isinstance(results, dict):
        raise MalformedResponse("virustotal: analysis results are not an object")
    engines = {}
    for engine, verdict in results.items():
        if not isinstance(verdict, dict):
            raise MalformedResponse(f"virustotal: verdict for {engine} is not an object")
        engines[engine] = EngineVerdict(
            category=str(verdict.get("category", "")),
            result=verdict.get("result"),
        )
    return AVAggregateReport(engines=engines)


def _sha256(file_path: str) -> str:
    digest = hashlib.sha256()
    with open(file_path, "rb") as fh:
        for chunk in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


class VirusTotalClient(ScannerClient):
    name = "virustotal"
    category = ProviderCategory.AV_AGGREGATOR

    def _headers(self) -> dict[str, str]:
        return {"x-apikey": self.config.api_key}

    async def submit(self, file_path: str) -> ProviderHandle:
        url_response = await self._http.get(self.url("/files/upload_url"), headers=self._headers())
        url_response.raise_for_status()
        upload_url = self.json_body(url_response).get("data")
        if not upload_url:
            raise ProviderFailure(self.name, "no upload URL returned")
        logger.info("Obtained VirusTotal upload URL")

        with open(file_path, "rb") as fh:
            upload = await self._http.post(
                upload_url,
                files={"file": (os.path.basename(file_path), fh, "application/octet-stream")},
                headers=self._headers(),
            )
        if upload.status_code == 413:
            logger.warning("VirusTotal rejected upload as too large; attempting hash lookup as fallback")
            return await self._hash_lookup(file_path)
        if upload.status_code != 200:
            raise ProviderFailure(self.name, f"VirusTotal upload failed with status {upload.status_code}")

        analysis_id = (self.json_body(upload).get("data") or {}).get("id")
        if not analysis_id:
            raise ProviderFailure(self.name, "upload response did not include an analysis id")
        logger.info(f"VirusTotal analysis ID: {analysis_id}")
        return ProviderHandle(self.name, analysis_id)

    async def _hash_lookup(self, file_path: str) -> ProviderHandle:
        digest = await asyncio.to_thread(_sha256, file_path)
        response = await self._http.get(self.url(f"/files/{digest}"), headers=self._headers())
        if response.status_code != 200:
            raise ProviderFailure(self.name, f"hash lookup failed with status {response.status_code}")
        try:
            results = self.json_body(response)["data"]["attributes"]["last_analysis_results"]
        except (KeyError, TypeError):
            raise ProviderFailure(self.name, "hash lookup returned no analysis results")
        # Results are already final; carry them on the handle so the first poll returns them.
        return ProviderHandle(self.name, digest, extra={"prefetched": results})

    async def poll(self, handle: ProviderHandle) -> PollOutcome:
        if "prefetched" in handle.extra:
            return PollOutcome.done(parse_engine_results(handle.extra["prefetched"]))

        response = await self._http.get(self.url(f"/analyses/{handle.ref}"), headers=self._headers())
        response.raise_for_status()
        try:
            attributes = self.json_body(response)["data"]["attributes"]
            status = attributes["status"]
        except (KeyError, TypeError):
            raise MalformedResponse("virustotal: analysis response has no status")
        logger.info(f"VirusTotal scan status: {status}")

        if status == "completed":
            return PollOutcome.done(parse_engine_results(attributes.get("results")))
        if status in PENDING_STATUSES:
            return PollOutcome.pending(status)
        if status == "failed":
            return PollOutcome.failed("VirusTotal analysis failed")
        raise MalformedResponse(f"virustotal: unrecognised analysis status {status!r}")
