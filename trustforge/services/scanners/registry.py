"""
Builds the configured scanner clients from settings.

The static-analysis client is mandatory; the rest are optional and may fail
or be skipped without failing the job.
"""
from __future__ import annotations

import httpx

from trustforge.core.config import Settings
from trustforge.services.scanners.base import ScannerClient
from trustforge.services.scanners.hybrid_analysis import HybridAnalysisClient
from trustforge.services.scanners.metadefender import MetaDefenderClient
from trustforge.services.scanners.mobsf import MobSFClient
from trustforge.services.scanners.virustotal import VirusTotalClient

OPTIONAL_PROVIDERS = ("virustotal", "metadefender", "hybrid_analysis")


def build_clients(
    settings: Settings,
    http: httpx.AsyncClient | None = None,
) -> tuple[ScannerClient, list[ScannerClient]]:
    """Return ``(mandatory, optional)`` clients, all sharing ``http`` when given."""
    mandatory = MobSFClient(settings.provider_config("mobsf"), http)
    optional: list[ScannerClient] = [
        VirusTotalClient(settings.provider_config("virustotal"), http),
        MetaDefenderClient(settings.provider_config("metadefender"), http),
        HybridAnalysisClient(
            settings.provider_config("hybrid_analysis"),
            http,
            environment_id=settings.HYBRID_ANALYSIS_ENVIRONMENT_ID,
        ),
    ]
    return mandatory, optional
