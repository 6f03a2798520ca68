"""
orchestrator.py
~~~~~~~~~~~~~~~
Runs every configured scanner against one local file and assembles the
ScanResultBundle.

Optional providers are started as tasks before the mandatory provider is
awaited, so all providers run concurrently. An optional provider can only
ever contribute a Failed or Skipped outcome; the mandatory provider's failure
aborts the whole run.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from trustforge.core.errors import MandatoryProviderFailure, ProviderSkipped
from trustforge.services.outcomes import (
    Failed,
    ProviderOutcome,
    ScanResultBundle,
    Skipped,
    Success,
)
from trustforge.services.scanners.base import ScannerClient

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    def __init__(self, mandatory: ScannerClient, optional: Sequence[ScannerClient] = ()):
        names = [mandatory.name] + [c.name for c in optional]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate provider names: {names}")
        self.mandatory = mandatory
        self.optional = list(optional)

    async def _run_optional(self, client: ScannerClient, file_path: str) -> ProviderOutcome:
        try:
            return Success(await client.scan(file_path))
        except asyncio.CancelledError:
            raise
        except ProviderSkipped as e:
            logger.info(f"{client.name} skipped: {e}")
            return Skipped(str(e))
        except Exception as e:
            logger.warning(f"{client.name} scan failed: {e}")
            return Failed(str(e))

    async def run_all(self, file_path: str) -> ScanResultBundle:
        """
        Scan ``file_path`` with every provider.

        Raises:
            MandatoryProviderFailure: the static-analysis provider failed, timed
                out or could not accept the file. Outstanding optional scans are
                cancelled before this propagates.
        """
        tasks = {
            client.name: asyncio.create_task(self._run_optional(client, file_path))
            for client in self.optional
        }

        try:
            static_payload = await self.mandatory.scan(file_path)
        except Exception as e:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            logger.error(f"{self.mandatory.name} (mandatory) scan failed: {e}")
            raise MandatoryProviderFailure(f"{self.mandatory.name} scan failed: {e}") from e

        outcomes: dict[str, ProviderOutcome] = {self.mandatory.name: Success(static_payload)}
        settled = await asyncio.gather(*tasks.values())
        outcomes.update(zip(tasks.keys(), settled))

        summary = ", ".join(f"{name}={o.status.value}" for name, o in outcomes.items())
        logger.info(f"All scans settled: {summary}")
        return ScanResultBundle(outcomes)

    async def aclose(self) -> None:
        for client in [self.mandatory, *self.optional]:
            await client.aclose()
