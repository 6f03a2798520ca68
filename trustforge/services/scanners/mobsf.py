"""
MobSF static-analysis client (mandatory provider).

Protocol: upload → start scan → poll scan logs → fetch JSON report.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any

from trustforge.core.errors import MalformedResponse, ProviderFailure
from trustforge.core.file_validation import ALLOWED_EXTENSIONS, package_extension
from trustforge.services.outcomes import Finding, Permission, ProviderCategory, StaticAnalysisReport
from trustforge.services.scanners.base import ProviderHandle, ScannerClient
from trustforge.services.scanners.poller import PollOutcome

logger = logging.getLogger(__name__)

COMPLETION_MARKERS = (
    "scan completed",
    "scan finished",
    "scan done",
    "saving to database",
    "static analyzer completed",
)
FAILURE_MARKERS = ("scan failed", "error")


def _findings(raw: Any, bucket: str) -> tuple[Finding, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise MalformedResponse(f"mobsf: appsec.{bucket} is not a list")
    findings = []
    for item in raw:
        if isinstance(item, dict):
            findings.append(Finding.from_dict(item))
        else:
            findings.append(Finding(title=str(item)))
    return tuple(findings)


def _permission(name: str, detail: Any) -> Permission:
    if isinstance(detail, dict):
        return Permission(
            name=name,
            status=str(detail.get("status") or ""),
            info=str(detail.get("info") or ""),
            description=str(detail.get("description") or detail.get("reason") or ""),
        )
    return Permission(name=name, description="" if detail is None else str(detail))


def _permissions(raw: Any) -> tuple[Permission, ...]:
    """Android reports a name → detail map; some iOS reports use a list of named entries."""
    if isinstance(raw, dict):
        return tuple(_permission(str(name), detail) for name, detail in raw.items())
    if isinstance(raw, list):
        return tuple(
            _permission(str(item.get("name", "")), item) if isinstance(item, dict) else Permission(name=str(item))
            for item in raw
        )
    if raw is not None:
        logger.warning(f"mobsf: ignoring permissions section of type {type(raw).__name__}")
    return ()


def parse_static_report(report: dict[str, Any]) -> StaticAnalysisReport:
    """Turn a MobSF ``report_json`` body into a StaticAnalysisReport, or raise MalformedResponse."""
    appsec = report.get("appsec")
    if not isinstance(appsec, dict):
        raise MalformedResponse("mobsf: report has no appsec section")

    return StaticAnalysisReport(
        high=_findings(appsec.get("high"), "high"),
        medium=_findings(appsec.get("medium", appsec.get("warning")), "medium"),
        low=_findings(appsec.get("low"), "low"),
        info=_findings(appsec.get("info"), "info"),
        permissions=_permissions(report.get("permissions")),
        app_name=report.get("app_name"),
        md5=report.get("md5"),
        sha1=report.get("sha1"),
        sha256=report.get("sha256"),
        size=str(report["size"]) if report.get("size") is not None else None,
    )


def _log_entry(entry: Any) -> tuple[str, str, bool]:
    """Return (timestamp, text, has_exception) for one scan-log entry."""
    if isinstance(entry, str):
        return entry.split(" - ")[0], entry, False
    if isinstance(entry, dict):
        return str(entry.get("timestamp", "")), json.dumps(entry), bool(entry.get("exception"))
    return "", str(entry), False


class MobSFClient(ScannerClient):
    name = "mobsf"
    category = ProviderCategory.STATIC_ANALYSIS

    def _headers(self) -> dict[str, str]:
        return {"X-Mobsf-Api-Key": self.config.api_key}

    def check_preconditions(self, file_path: str) -> None:
        # The job cannot be scored without this provider, so there is no skip path.
        ext = package_extension(file_path)
        if ext not in ALLOWED_EXTENSIONS:
            raise ProviderFailure(self.name, f"Unsupported file type '{ext}'. Only APK or IPA files are allowed.")
        super().check_preconditions(file_path)

    async def submit(self, file_path: str) -> ProviderHandle:
        with open(file_path, "rb") as fh:
            upload = await self._http.post(
                self.url("/api/v1/upload"),
                files={"file": (os.path.basename(file_path), fh, "application/octet-stream")},
                headers=self._headers(),
            )
        upload.raise_for_status()
        file_hash = self.json_body(upload).get("hash")
        if not file_hash:
            raise ProviderFailure(self.name, "upload response did not include a file hash")
        logger.info(f"File uploaded successfully. Hash: {file_hash}")

        started = await self._http.post(
            self.url("/api/v1/scan"),
            data={"hash": file_hash},
            headers=self._headers(),
        )
        started.raise_for_status()
        logger.info("MobSF scan started successfully")
        return ProviderHandle(self.name, file_hash)

    async def poll(self, handle: ProviderHandle) -> PollOutcome:
        response = await self._http.post(
            self.url("/api/v1/scan_logs"),
            data={"hash": handle.ref},
            headers=self._headers(),
        )
        response.raise_for_status()
        logs = self.json_body(response).get("logs")
        if not isinstance(logs, list):
            raise MalformedResponse("mobsf: invalid logs response format")
        if not logs:
            return PollOutcome.pending("no logs available yet")

        timestamp, text, has_exception = _log_entry(logs[-1])
        if timestamp and timestamp == handle.extra.get("last_log_timestamp"):
            return PollOutcome.pending()
        logger.info(f"MobSF scan log: {text}")

        lowered = text.lower()
        completed = any(marker in lowered for marker in COMPLETION_MARKERS)
        failed = has_exception or any(marker in lowered for marker in FAILURE_MARKERS)

        if completed:
            try:
                return PollOutcome.done(await self.fetch_report(handle))
            except MalformedResponse:
                if failed:
                    return PollOutcome.failed(f"Scan failed: {text}")
                raise
        # Only remembered once no report fetch is pending, so a failed fetch is retried.
        handle.extra["last_log_timestamp"] = timestamp
        if failed:
            return PollOutcome.failed(f"Scan failed: {text}")
        return PollOutcome.pending()

    async def fetch_report(self, handle: ProviderHandle) -> StaticAnalysisReport:
        response = await self._http.post(
            self.url("/api/v1/report_json"),
            data={"hash": handle.ref},
            headers=self._headers(),
        )
        response.raise_for_status()
        return parse_static_report(self.json_body(response))
