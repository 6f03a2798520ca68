"""
base.py
~~~~~~~
Uniform capability interface shared by every scanning provider.

Each concrete client knows three things about its vendor:
    check_preconditions: can this provider handle the file at all?
    submit:              upload the file, return an opaque handle
    poll:                ask once how the scan is going

The generic poll driver turns submit/poll into a bounded wait; ``scan`` wires
the three together.
"""
from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from trustforge.core.config import ProviderConfig
from trustforge.core.errors import MalformedResponse, ProviderSkipped
from trustforge.services.outcomes import Payload, ProviderCategory
from trustforge.services.scanners.poller import PollOutcome, PollPolicy, poll_until_done

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderHandle:
    """Opaque reference to a submitted scan (hash, analysis id, job id, ...)."""
    provider: str
    ref: str
    extra: dict[str, Any] = field(default_factory=dict)


class ScannerClient(abc.ABC):
    """
    Base class for one external scanning provider.

    Subclasses set ``name`` and ``category`` and implement ``submit`` / ``poll``.
    The HTTP client may be injected (tests pass one backed by
    ``httpx.MockTransport``); otherwise one is created per client.
    """

    name: str = ""
    category: ProviderCategory

    def __init__(self, config: ProviderConfig, http: httpx.AsyncClient | None = None):
        self.config = config
        self.policy = PollPolicy.from_config(config)
        self._http = http or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._owns_http = http is None

    # ─── Provider Contract ───────────────────────────────────────────────────
    def check_preconditions(self, file_path: str) -> None:
        """Raise ProviderSkipped / ProviderFailure when the file cannot be scanned here."""
        limit = self.config.max_file_size_mb
        if limit is None:
            return
        size_mb = os.path.getsize(file_path) / (1024 * 1024)
        if size_mb > limit:
            raise ProviderSkipped(
                self.name,
                f"File too large for {self.name} scan ({size_mb:.2f}MB > {limit:g}MB limit)",
            )

    @abc.abstractmethod
    async def submit(self, file_path: str) -> ProviderHandle:
        ...

    @abc.abstractmethod
    async def poll(self, handle: ProviderHandle) -> PollOutcome:
        ...

    async def scan(self, file_path: str) -> Payload:
        """Preconditions → submit → poll until done. Returns the provider payload."""
        self.check_preconditions(file_path)
        logger.info(f"Starting {self.name} scan for file: {os.path.basename(file_path)}")
        handle = await self.submit(file_path)
        logger.info(f"{self.name} submission accepted: {handle.ref}")
        return await poll_until_done(self, handle, self.policy)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ─── Helpers ─────────────────────────────────────────────────────────────
    def url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def json_body(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body or raise MalformedResponse."""
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse(f"{self.name}: response is not JSON ({e})")
        if not isinstance(body, dict):
            raise MalformedResponse(f"{self.name}: expected a JSON object, got {type(body).__name__}")
        return body
